# file: moodle_course_upload/course.py

import re
import time
from enum import IntEnum
from typing import List, Dict, Union

from moodle_course_upload.config import config
from moodle_course_upload.errors import RowError, message
from moodle_course_upload.logger import logger
from moodle_course_upload import content as templating
from moodle_course_upload import enrolment as enrol
from moodle_course_upload import helper
from moodle_course_upload import util


class Mode(IntEnum):
    CREATE_NEW = 1          # only new courses.  An existing shortname is an error.
    CREATE_ALL = 2          # always create.  An existing shortname gets incremented.
    CREATE_OR_UPDATE = 3
    UPDATE_ONLY = 4


class UpdateMode(IntEnum):
    NOTHING = 0
    ALL_WITH_DATA_ONLY = 1
    ALL_WITH_DATA_OR_DEFAULTS = 2
    MISSING_WITH_DATA_OR_DEFAULTS = 3


class MoodleCourseProvider:
    """
    This is meant to be a base class.

    Look up courses and categories in a Moodle site, and create, update, delete, restore and reset courses.
    Override this class to talk to Moodle through the web services, straight to the database, or to a fake
    Moodle in the tests.

    The data formats and field names for the course dict
    should exactly match the data format to/from Moodle and the moodle field name.
    Course format options are flattened into the course dict.
    """

    r"""{  # This is what gets returned for a course
                        'id': 1901,
                        'shortname':  'EXPRES-ACC-104',
                        'category': 13,
                        'fullname': 'EXPRES Accesibilidad en documentos 104',
                        'idnumber': '',
                        'summary': '<p>Curso exprés</p>',
                        'summaryformat': 1,
                        'format': 'topics',
                        'showgrades': 1,
                        'newsitems': 0,
                        'startdate': 1711353600,
                        'enddate': 1711407540,
                        'numsections': 1,
                        'visible': 1,
                        'hiddensections': 0,
                        'coursedisplay': 0,
                        'enablecompletion': 1,
                        'lang': '',
                        }
                """

    # the course formats installed on the site.
    course_formats = ['topics', 'weeks', 'social', 'singleactivity', 'tiles']
    format_option_fields = ['hiddensections', 'coursedisplay', 'automaticenddate']

    # custom course fields keyed on shortname.  See helper.get_custom_course_field_data for the keys.
    custom_fields = {}

    def get_course(self, shortname_or_id: Union[str, int]) -> Union[dict, None]:
        """
        A str is a shortname, an int is a course id.
        """
        raise NotImplementedError("No course getter provided.")

    def course_exists(self, shortname: str) -> bool:
        if util.is_blank(shortname):
            return False
        return self.get_course(str(shortname)) is not None

    def get_site_course(self) -> dict:
        # the front page is course 1 on every Moodle site.
        return self.get_course(1)

    def count_courses_with_idnumber(self, idnumber: str, exclude_shortname: Union[str, None] = None) -> int:
        raise NotImplementedError("No idnumber counter provided.")

    def get_highest_shortname(self, prefix: str, length: int) -> Union[str, None]:
        """
        The highest shortname (string order) that starts with the prefix and is exactly length characters long.
        """
        raise NotImplementedError("No shortname lookup provided.")

    def create_course(self, course: Dict) -> int:
        """
        :return: the new course id
        """
        raise NotImplementedError("No creator provided.")

    def update_course(self, course: Dict):
        """
        Update the course.  The dict must have the course id.  Only the keys present are written.
        """
        raise NotImplementedError("No updater provided.")

    def delete_course(self, course_id: int) -> bool:
        raise NotImplementedError("No course remover provided.")

    def get_category(self, category_id: int) -> Union[dict, None]:
        raise NotImplementedError("No category getter provided.")

    def get_category_by_idnumber(self, idnumber: str) -> Union[dict, None]:
        raise NotImplementedError("No category getter provided.")

    def find_categories(self, name: str, parent: Union[int, None] = None) -> List[Dict]:
        """
        Categories with that name.  parent None means anywhere, 0 means top level.
        """
        raise NotImplementedError("No category finder provided.")

    def create_category(self, name: str, parent: int = 0, description: str = '') -> int:
        raise NotImplementedError("No category creator provided.")

    def get_course_formats(self) -> List[str]:
        return self.course_formats

    def get_custom_fields(self) -> Dict[str, Dict]:
        return self.custom_fields

    def get_coursesection_count(self, shortname: str) -> int:
        """
        Number of sections, not counting section 0, of the course with that shortname.  0 if there is no such course.
        """
        raise NotImplementedError("No section counter provided.")

    def get_default_numsections(self) -> int:
        return config.default_numsections

    def can_force_language(self, course_id: Union[int, None] = None, category_id: Union[int, None] = None) -> bool:
        return True

    def can_change_locked_fields(self, course_id: Union[int, None] = None,
                                 category_id: Union[int, None] = None) -> bool:
        return True

    def can_configure_download_content(self, course_id: Union[int, None] = None) -> bool:
        return True

    def can_restore_backup_files(self) -> bool:
        """
        Whether restore_course takes {'backupfile': path}.  Importing from another course is always possible.
        """
        return False

    def restore_course(self, course_id: int, source: Dict) -> bool:
        """
        Import content into the course, adding to what is there.
        :param source: {'backupfile': path} or {'course_id': id, 'shortname': shortname}
        :return: True if the content was restored.
        """
        raise NotImplementedError("No course restorer provided.")

    def reset_course(self, reset_data: Dict):
        """
        Reset user data in a course.  reset_data has the course id and the reset_* / unenrol_users options.
        """
        raise NotImplementedError("No course resetter provided.")

    def mark_dirty(self, course_id: int):
        """
        Invalidate the cached course data so users see the changes.
        """
        raise NotImplementedError("No course cache invalidation provided.")


class CourseImport:
    """
    One CSV row.  Decide what to do with it, then do it.

        course = CourseImport(Mode.CREATE_OR_UPDATE, UpdateMode.ALL_WITH_DATA_ONLY, row,
                              courses=courses, enrolments=enrolments, content=content, run_log=run_log)
        if course.prepare():
            course.proceed()
        else:
            print(course.get_errors())

    prepare() does all the checks and never changes Moodle.  It can only be called once per row.
    proceed() makes the changes.  It refuses to run if prepare() found errors.

    Errors and statuses are dicts of code -> message.
    """

    DO_CREATE = 1
    DO_UPDATE = 2
    DO_DELETE = 3

    # the row columns that are course fields.  idnumber is not one of them: that column holds student ID numbers.
    validfields = [
        'fullname', 'shortname', 'category', 'summary', 'format', 'showgrades', 'newsitems', 'startdate',
        'enddate', 'relativedatesmode', 'marker', 'maxbytes', 'legacyfiles', 'showreports', 'visible',
        'groupmode', 'groupmodeforce', 'defaultgroupingid', 'enablecompletion', 'completionnotify', 'lang',
        'theme', 'calendartype', 'numsections', 'downloadcontent', 'showactivitydates',
        'showcompletionconditions',
    ]

    mandatoryfields = ['fullname', 'category']

    # the row options and their defaults.
    optionfields = {'delete': False, 'rename': None, 'backupfile': None, 'templatecourse': None, 'reset': False}

    importoptionsdefaults = {
        'canrename': False, 'candelete': False, 'canreset': False, 'reset': False,
        'restorefile': None, 'shortnametemplate': None, 'templatecourse': None,
    }

    shortname_max_length = 255
    fullname_max_length = 254
    downloadcontent_values = ['0', '1', '2']  # disabled, enabled, site default

    # new course formats, by the mode column.
    mode_formats = {'EXPRES': 'topics', 'WEBINAR': 'tiles', 'PRESENCIAL': 'tiles', 'ONLINE SINCRONA': 'tiles'}

    def __init__(self, mode: int, updatemode: int, rawdata: Dict, defaults: Union[Dict, None] = None,
                 importoptions: Union[Dict, None] = None, courses: MoodleCourseProvider = None,
                 enrolments: enrol.MoodleEnrolmentProvider = None,
                 content: Union[templating.MoodleContentProvider, None] = None, run_log=None):
        """
        :param mode: Mode
        :param updatemode: UpdateMode
        :param rawdata: the CSV row as a dict
        :param defaults: course field defaults
        :param importoptions: canrename, candelete, canreset, reset, restorefile, shortnametemplate, templatecourse
        :param content: without a content provider the courses are not templated.
        :param run_log: a RunLog.  Students that cannot be enrolled are logged there.
        """
        if mode not in list(Mode):
            raise ValueError('Incorrect mode.')
        if updatemode not in list(UpdateMode):
            raise ValueError('Incorrect update mode.')
        if courses is None or enrolments is None:
            raise ValueError('A course provider and an enrolment provider are required.')

        self.mode = Mode(mode)
        self.updatemode = UpdateMode(updatemode)
        self.courses = courses
        self.enrolments = enrolments
        self.content = content
        self.run_log = run_log
        self.templater = templating.CourseTemplater(courses, enrolments, content, run_log) if content else None

        self.rawdata = dict(rawdata)
        if self.mode in (Mode.CREATE_NEW, Mode.CREATE_ALL):
            course_mode = str(self.rawdata.get('mode') or '').strip().upper()
            if course_mode in self.mode_formats:
                self.rawdata['format'] = self.mode_formats[course_mode]
                if self.mode_formats[course_mode] == 'tiles':
                    self.rawdata['enablecompletion'] = 1

        self.shortname = self.rawdata.get('shortname')
        if self.shortname is not None:
            self.shortname = str(self.shortname)
        self.defaults = dict(defaults or {})

        self.options = {}
        for option, default in self.optionfields.items():
            self.options[option] = self.rawdata[option] if option in self.rawdata else default

        self.importoptions = dict(self.importoptionsdefaults)
        self.importoptions.update(importoptions or {})

        self.data = {}
        self.errors = {}
        self.statuses = {}
        self.outcome = None
        self.prepared = False
        self.processstarted = False
        self.id = None
        self.existing = None
        self.enrolmentdata = None
        self.restoredata = None

    #
    #   what is allowed
    #

    def can_create(self) -> bool:
        return self.mode in (Mode.CREATE_ALL, Mode.CREATE_NEW, Mode.CREATE_OR_UPDATE)

    def can_delete(self) -> bool:
        return bool(self.importoptions['candelete'])

    def can_only_create(self) -> bool:
        return self.mode in (Mode.CREATE_ALL, Mode.CREATE_NEW)

    def can_rename(self) -> bool:
        return bool(self.importoptions['canrename'])

    def can_reset(self) -> bool:
        return bool(self.importoptions['canreset'])

    def can_update(self) -> bool:
        return self.mode in (Mode.UPDATE_ONLY, Mode.CREATE_OR_UPDATE) and self.updatemode != UpdateMode.NOTHING

    def can_use_defaults(self) -> bool:
        return self.updatemode in (UpdateMode.ALL_WITH_DATA_OR_DEFAULTS, UpdateMode.MISSING_WITH_DATA_OR_DEFAULTS)

    #
    #   state
    #

    def error(self, code: str, text: str):
        if code in self.errors:
            raise RuntimeError(f'Error code {code} already defined')
        self.errors[code] = text

    def status(self, code: str, text: str):
        if code in self.statuses:
            raise RuntimeError(f'Status code {code} already defined')
        self.statuses[code] = text

    def _decide(self, outcome: int):
        if self.outcome is not None:
            raise RuntimeError('The outcome of this row has already been decided.')
        self.outcome = outcome

    def exists(self, shortname: Union[str, None] = None) -> bool:
        shortname = self.shortname if shortname is None else shortname
        return self.courses.course_exists(shortname)

    def get_existing_course(self) -> Union[dict, None]:
        if self.existing is None:
            self.existing = self.courses.get_course(self.shortname)
        return self.existing

    def get_data(self) -> Dict:
        return self.data

    def get_errors(self) -> Dict[str, str]:
        return self.errors

    def get_statuses(self) -> Dict[str, str]:
        return self.statuses

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def get_id(self) -> int:
        if not self.processstarted:
            raise RuntimeError('The course has not been processed yet.')
        return self.id

    def get_valid_fields(self) -> List[str]:
        return self.validfields + [f'customfield_{name}' for name in self.courses.get_custom_fields()]

    #
    #   the data that goes to Moodle
    #

    def get_final_create_data(self, data: Dict) -> Dict:
        """
        The row values, with the defaults filling in the valid fields the row does not have.
        """
        for field in self.get_valid_fields():
            if field not in data and self.defaults.get(field) is not None:
                data[field] = self.defaults[field]
        data['shortname'] = self.shortname
        return data

    def get_final_update_data(self, data: Dict, usedefaults: bool = False, missingonly: bool = False) -> Dict:
        """
        :param usedefaults: a field not in the row takes the default value.
        :param missingonly: only fields that are empty on the existing course get a value.
        """
        existing = self.get_existing_course()
        newdata = {}
        for field in self.get_valid_fields():
            if missingonly and not util.is_blank(existing.get(field)):
                continue
            if data.get(field) is not None:
                newdata[field] = data[field]
            elif usedefaults and self.defaults.get(field) is not None:
                newdata[field] = self.defaults[field]
        newdata['id'] = existing['id']
        return newdata

    def get_restore_source(self) -> Union[Dict, None]:
        """
        The row's backup file, else the row's template course, else the template course for the course kind,
        else the import's backup file.
        """
        backupfile, shortname = None, None
        if not util.is_blank(self.options['backupfile']):
            backupfile = self.options['backupfile']
        elif not util.is_blank(self.options['templatecourse']):
            shortname = self.options['templatecourse']
        else:
            shortname = templating.template_course(self.data.get('shortname', self.shortname))

        source = helper.get_restore_source(self.courses, backupfile=backupfile, shortname=shortname)
        if source is None and not util.is_blank(self.importoptions['restorefile']):
            source = helper.get_restore_source(self.courses, backupfile=self.importoptions['restorefile'])
        return source

    #
    #   prepare
    #

    def prepare(self) -> bool:
        """
        Validate the row and work out what to do with it.
        :return: True if the row can proceed.  Otherwise the errors say why not.
        """
        if self.prepared:
            raise RuntimeError('The course has already been prepared.')
        self.prepared = True
        try:
            return self._prepare()
        except RowError as e:
            self.error(e.code, e.message)
            return False

    def _prepare(self) -> bool:
        if not util.is_blank(self.shortname):
            if self.shortname != util.clean_text(self.shortname):
                raise RowError('invalidshortname')
            if len(self.shortname) > self.shortname_max_length:
                raise RowError('invalidshortnametoolong', a=self.shortname_max_length)

        exists = self.exists()

        if util.is_set(self.options['delete']):
            if not exists:
                raise RowError('cannotdeletecoursenotexist')
            if not self.can_delete():
                raise RowError('coursedeletionnotallowed')
            self._decide(self.DO_DELETE)
            return True

        if exists:
            if self.mode == Mode.CREATE_NEW:
                raise RowError('courseexistsanduploadnotallowed')
            if self.can_update() and self.shortname == self.courses.get_site_course()['shortname']:
                raise RowError('cannotupdatefrontpage')
        elif not self.can_create():
            raise RowError('coursedoesnotexistandcreatenotallowed')

        coursedata = {field: value for field, value in self.rawdata.items()
                      if field in self.validfields and field != 'shortname'}

        category_id = helper.resolve_category(self.rawdata, self.courses)
        if category_id is None:
            coursedata.pop('category', None)
        else:
            coursedata['category'] = category_id

        if len(str(coursedata.get('fullname') or '')) > self.fullname_max_length:
            raise RowError('invalidfullnametoolong', a=self.fullname_max_length)

        if not exists or self.mode == Mode.CREATE_ALL:
            missing = [field for field in self.mandatoryfields
                       if util.is_blank(coursedata.get(field)) and util.is_blank(self.defaults.get(field))]
            if missing:
                raise RowError('missingmandatoryfields', a=', '.join(missing))

        rename = self.options['rename']
        if not util.is_blank(rename):
            rename = str(rename)
            if not self.can_update():
                raise RowError('canonlyrenameinupdatemode')
            if not exists:
                raise RowError('cannotrenamecoursenotexist')
            if not self.can_rename():
                raise RowError('courserenamingnotallowed')
            if rename != util.clean_text(rename):
                raise RowError('invalidshortname')
            if self.exists(rename):
                raise RowError('cannotrenameshortnamealreadyinuse')
            if not util.is_blank(coursedata.get('idnumber')) and self.courses.count_courses_with_idnumber(
                    coursedata['idnumber'], exclude_shortname=self.shortname) > 0:
                raise RowError('cannotrenameidnumberconflict')
            coursedata['shortname'] = rename
            self.status('courserenamed', message('courserenamed', from_=self.shortname, to=rename))

        if util.is_blank(self.shortname):
            template = self.importoptions['shortnametemplate']
            if util.is_blank(template):
                raise RowError('missingshortnamenotemplate')
            if not self.can_only_create():
                raise RowError('cannotgenerateshortnameupdatemode')
            generated = helper.generate_shortname(coursedata, template)
            if generated is None:
                raise RowError('generatedshortnameinvalid')
            if self.exists(generated):
                if self.mode == Mode.CREATE_NEW:
                    raise RowError('generatedshortnamealreadyinuse')
                exists = True
            self.status('courseshortnamegenerated', message('courseshortnamegenerated', a=generated))
            self.shortname = generated

        if self.mode == Mode.CREATE_ALL:
            exists = self._increment_shortname(coursedata)

        if not exists and not util.is_blank(coursedata.get('idnumber')):
            if self.courses.count_courses_with_idnumber(coursedata['idnumber']) > 0:
                raise RowError('idnumberalreadyinuse')

        for field in ('startdate', 'enddate'):
            if not util.is_blank(coursedata.get(field)):
                coursedata[field] = util.to_timestamp(coursedata[field])

        if not util.is_blank(coursedata.get('lang')):
            if exists:
                allowed = self.courses.can_force_language(course_id=self.get_existing_course()['id'])
            else:
                allowed = self.courses.can_force_language(category_id=coursedata.get('category'))
            if not allowed:
                raise RowError('cannotforcelang')

        if not util.is_set(coursedata.get('enablecompletion')):
            coursedata['enablecompletion'] = 1
            coursedata['newsitems'] = 0

        if self.mode in (Mode.CREATE_NEW, Mode.CREATE_ALL):
            if exists:
                raise RowError('courseexistsanduploadnotallowed')
        elif self.mode in (Mode.UPDATE_ONLY, Mode.CREATE_OR_UPDATE):
            if self.mode == Mode.UPDATE_ONLY and not exists:
                raise RowError('coursedoesnotexistandcreatenotallowed')
            if exists and self.updatemode == UpdateMode.NOTHING:
                raise RowError('updatemodedoessettonothing')
        else:
            raise RowError('unknownimportmode')

        if exists:
            missingonly = self.updatemode == UpdateMode.MISSING_WITH_DATA_OR_DEFAULTS
            coursedata = self.get_final_update_data(coursedata, self.can_use_defaults(), missingonly)
            if coursedata['id'] == self.courses.get_site_course()['id']:
                raise RowError('cannotupdatefrontpage')
            self._decide(self.DO_UPDATE)
        else:
            coursedata['summaryformat'] = 1
            coursedata = self.get_final_create_data(coursedata)
            self._decide(self.DO_CREATE)

        if exists:
            existing = self.get_existing_course()
            for field in ('startdate', 'enddate'):
                if util.is_blank(coursedata.get(field)):
                    coursedata[field] = existing.get(field, 0)
        self._validate_dates(coursedata)

        coursedata.update(helper.get_role_names(self.rawdata, self.enrolments.get_role_ids()))

        if exists:
            can_change_locked = self.courses.can_change_locked_fields(course_id=coursedata['id'])
        else:
            can_change_locked = self.courses.can_change_locked_fields(category_id=coursedata.get('category'))
        coursedata.update(helper.get_custom_course_field_data(
            self.rawdata, self.defaults, self.courses.get_custom_fields(), can_change_locked))

        self._prepare_format(coursedata, exists)

        visible = coursedata.get('visible')
        if not util.is_blank(visible) and str(visible).strip() not in ('0', '1'):
            raise RowError('invalidvisibilitymode')

        if util.is_blank(coursedata.get('downloadcontent')):
            coursedata.pop('downloadcontent', None)
        else:
            if not config.download_content_allowed or not self.courses.can_configure_download_content(
                    coursedata.get('id')):
                raise RowError('downloadcontentnotallowed')
            if str(coursedata['downloadcontent']).strip() not in self.downloadcontent_values:
                raise RowError('invaliddownloadcontent')

        self.data = coursedata

        self.enrolmentdata = helper.get_enrolment_data(self.rawdata, self.enrolments.get_enrolment_plugins())
        if exists:
            errors = enrol.validate_enrolment_data(self.enrolments, coursedata['id'], self.enrolmentdata)
            if errors:
                for code, text in errors.items():
                    self.error(code, text)
                return False

        if not util.is_blank(self.rawdata.get('tags')):
            self.data['tags'] = [tag for tag in re.split(r'\s*,\s*', str(self.rawdata['tags']).strip()) if tag]

        self.restoredata = self.get_restore_source()
        if self.restoredata and 'backupfile' in self.restoredata and not self.courses.can_restore_backup_files():
            raise RowError('cannotrestorebackupfile')

        if util.is_set(self.importoptions['reset']) or util.is_set(self.options['reset']):
            if self.outcome != self.DO_UPDATE:
                raise RowError('canonlyresetcourseinupdatemode')
            if not self.can_reset():
                raise RowError('courseresetnotallowed')

        return True

    def _increment_shortname(self, coursedata: Dict) -> bool:
        """
        Create-all mode: swap the last 3 characters for 100 and continue after the highest course numbered
        like that.  Always returns False, the course is new from here on.
        """
        original = self.shortname
        candidate = original[:-3] + '100'
        highest = self.courses.get_highest_shortname(candidate[:-3], len(original))

        def leading_int(value: str) -> int:
            matches = re.match(r'\d+', value)
            return int(matches.group()) if matches else 0

        if highest is not None and candidate[-3:] <= highest[-3:] and leading_int(highest[-3:]) >= 100:
            self.shortname = helper.increment_shortname(highest, self.exists)
            if not util.is_blank(coursedata.get('fullname')):
                coursedata['fullname'] = str(coursedata['fullname'])[:-3] + self.shortname[-3:]

        if self.shortname != original:
            self.status('courseshortnameincremented', message('courseshortnameincremented'))
            if not util.is_blank(coursedata.get('idnumber')):
                idnumber = str(coursedata['idnumber'])
                coursedata['idnumber'] = helper.increment_idnumber(
                    idnumber, lambda value: self.courses.count_courses_with_idnumber(value) > 0)
                if coursedata['idnumber'] != idnumber:
                    self.status('courseidnumberincremented', message(
                        'courseidnumberincremented', from_=idnumber, to=coursedata['idnumber']))
        return False

    def _validate_dates(self, coursedata: Dict):
        startdate = coursedata.get('startdate') or 0
        enddate = coursedata.get('enddate') or 0
        if startdate and enddate and int(enddate) < int(startdate):
            raise RowError('enddatebeforestartdate')
        if not startdate and enddate:
            raise RowError('nostartdatenoenddate')

    def _prepare_format(self, coursedata: Dict, exists: bool):
        course_format = coursedata.get('format')
        if not util.is_blank(course_format) and course_format not in self.courses.get_course_formats():
            raise RowError('invalidcourseformat')

        if not util.is_blank(course_format):
            if 'EXPRES' not in str(coursedata.get('shortname', self.shortname)):
                coursedata['format'] = 'tiles'
        if not util.is_blank(course_format) or exists:
            for field in self.courses.format_option_fields:
                if not util.is_blank(self.rawdata.get(field)):
                    coursedata[field] = self.rawdata[field]

        if not exists or 'numsections' not in coursedata:
            numsections = str(self.rawdata.get('numsections') or '').strip()
            templatecourse = self.importoptions['templatecourse']
            if numsections.isdigit():
                coursedata['numsections'] = int(numsections)
            elif not util.is_blank(templatecourse):
                count = self.courses.get_coursesection_count(templatecourse)
                coursedata['numsections'] = count if count else self.courses.get_default_numsections()
            else:
                coursedata['numsections'] = self.courses.get_default_numsections()

    #
    #   proceed
    #

    def proceed(self) -> bool:
        """
        Make the changes prepare() decided on.
        :return: True when done.  Problems along the way end up in the errors.
        """
        if not self.prepared:
            raise RuntimeError('The course has not been prepared.')
        if self.has_errors():
            raise RuntimeError('Cannot proceed, errors were detected.')
        if self.processstarted:
            raise RuntimeError('The process has already been started.')
        self.processstarted = True

        if self.outcome == self.DO_DELETE:
            if self.delete():
                self.status('coursedeleted', message('coursedeleted'))
            else:
                self.error('errorwhiledeletingcourse', message('errorwhiledeletingcourse'))
            return True

        if self.outcome == self.DO_CREATE:
            logger.info(f"Creating course {self.shortname}")
            self.id = self.courses.create_course(dict(self.data))
            course = dict(self.data, id=self.id)
            self.status('coursecreated', message('coursecreated'))
        elif self.outcome == self.DO_UPDATE:
            logger.info(f"Updating course {self.shortname}")
            course = dict(self.data, summaryformat=1)
            self.courses.update_course(course)
            self.id = course['id']
            existing = self.get_existing_course()
            course.setdefault('fullname', existing.get('fullname', ''))
            course.setdefault('shortname', self.shortname)
            if not self.restoredata:
                self.apply_template(course)
            self.status('courseupdated', message('courseupdated'))
        else:
            raise RuntimeError('Unknown outcome!')

        if self.restoredata:
            if self.courses.restore_course(self.id, self.restoredata):
                self.apply_template(course)
                self.status('courserestored', message('courserestored'))
            else:
                self.error('errorwhilerestoringcourse', message('errorwhilerestoringcourse'))

        for code, text in enrol.process_enrolment_data(self.enrolments, self.id, self.enrolmentdata).items():
            self.error(code, text)

        if (util.is_set(self.importoptions['reset']) or util.is_set(self.options['reset'])) \
                and self.outcome == self.DO_UPDATE and self.can_reset():
            self.reset(course)
            self.status('coursereset', message('coursereset'))

        self.courses.mark_dirty(self.id)
        return True

    def apply_template(self, course: Dict):
        if self.templater is None:
            return
        self.templater.apply(course, self.rawdata)

    def delete(self) -> bool:
        course = self.get_existing_course()
        self.id = course['id']
        logger.info(f"Deleting course {course['id']} {self.shortname}")
        return self.courses.delete_course(self.id)

    def reset(self, course: Dict):
        """
        Remove user data.  Activities and their settings stay.
        """
        existing = self.get_existing_course() or {}
        reset_data = {
            'id': course['id'],
            'reset_start_date': int(time.time()),
            'reset_start_date_old': course.get('startdate', existing.get('startdate', 0)),
            'reset_end_date_old': course.get('enddate', existing.get('enddate', 0)),
            'reset_events': 1,
            'reset_notes': 1,
            'delete_blog_associations': 1,
            'reset_completion': 1,
            'reset_roles_overrides': 1,
            'reset_roles_local': 1,
            'reset_groups_members': 1,
            'reset_groups_remove': 1,
            'reset_groupings_members': 1,
            'reset_groupings_remove': 1,
            'reset_gradebook_items': 1,
            'reset_gradebook_grades': 1,
            'reset_comments': 1,
            'unenrol_users': list(self.enrolments.get_role_ids().values()) + [0],
        }
        logger.info(f"Resetting course {course['id']} {self.shortname}")
        return self.courses.reset_course(reset_data)
