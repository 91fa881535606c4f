# file: moodle_course_upload/processor.py

import re
import smtplib
import uuid
from typing import List, Dict, Union

import pymysql
import requests

from moodle_course_upload.config import config
from moodle_course_upload.course import CourseImport, Mode, UpdateMode
from moodle_course_upload.errors import RowError, message
from moodle_course_upload.logger import logger
from moodle_course_upload.notify import EmailNotifier
from moodle_course_upload.provider_csv import CSVCourseReader, RunLog
from moodle_course_upload.tracker import Tracker
from moodle_course_upload import util

"""
Run a whole CSV through CourseImport.

    reader = CSVCourseReader('cursos.csv')
    processor = CourseProcessor(reader, {'mode': Mode.CREATE_ALL, 'updatemode': UpdateMode.NOTHING},
                                courses=courses, enrolments=enrolments, content=content)
    processor.execute(Tracker(Tracker.OUTPUT_PLAIN))

Options (form style keys like options[mode] work too):

    mode                1 - 4, see course.Mode.  Required.
    updatemode          0 - 3, see course.UpdateMode.  Defaults to 0, nothing.
    allowdeletes, allowrenames, allowresets
    reset               reset every updated course.
    restorefile         a backup file to restore into every course.
    templatecourse      shortname of a course to restore into every course.
    shortnametemplate   see helper.generate_shortname
"""

option_key_re = re.compile(r'^options\[(.+)\]$')

# failures talking to Moodle.  They fail the row, not the run.
platform_errors = (requests.exceptions.RequestException, pymysql.MySQLError, OSError, ValueError,
                   NotImplementedError)


def normalize_options(options: Dict) -> Dict:
    result = {}
    for key, value in options.items():
        matches = option_key_re.match(str(key))
        result[matches.group(1) if matches else key] = value
    return result


class CourseProcessor:

    def __init__(self, reader: CSVCourseReader, options: Dict, defaults: Union[Dict, None] = None,
                 courses=None, enrolments=None, content=None, run_log: Union[RunLog, None] = None,
                 notifier: Union[EmailNotifier, None] = None):
        """
        :param reader: the CSV
        :param options: see the module doc
        :param defaults: course field defaults
        :param courses: MoodleCourseProvider
        :param enrolments: MoodleEnrolmentProvider
        :param content: MoodleContentProvider.  Courses are not templated without one.
        :param run_log: where the course and enrolment logs go.  One is made up from a new run id if None.
        :param notifier: mails the summary at the end of execute()
        """
        options = normalize_options(options)
        try:
            self.mode = Mode(int(options.get('mode')))
        except (TypeError, ValueError):
            raise ValueError('Unknown process mode')
        self.updatemode = UpdateMode(int(options['updatemode'])) \
            if not util.is_blank(options.get('updatemode')) else UpdateMode.NOTHING

        self.allowdeletes = util.is_set(options.get('allowdeletes'))
        self.allowrenames = util.is_set(options.get('allowrenames'))
        self.allowresets = util.is_set(options.get('allowresets'))
        self.reset_courses = util.is_set(options.get('reset'))
        self.restorefile = options.get('restorefile')
        self.templatecourse = options.get('templatecourse')
        self.shortnametemplate = options.get('shortnametemplate')

        self.reader = reader
        self.defaults = dict(defaults or {})
        self.courses = courses
        self.enrolments = enrolments
        self.content = content
        self.run_id = uuid.uuid4().hex[:13]
        self.run_log = run_log if run_log is not None else RunLog(self.run_id)
        self.notifier = notifier if notifier is not None else EmailNotifier()

        self.columns = reader.get_columns()
        self.errors = {}
        self.linenb = 0
        self.processstarted = False
        self.validate()
        self.reset()

    def validate(self):
        if not self.columns:
            raise ValueError(f"cannotreadtmpfile: {message('cannotreadtmpfile')}")
        if len(self.columns) < 2:
            raise ValueError(f"csvfewcolumns: {message('csvfewcolumns')}")

    def reset(self):
        self.processstarted = False
        self.linenb = 0
        self.reader.init()
        self.errors = {}

    def get_errors(self) -> Dict[int, Dict[str, str]]:
        """
        Errors keyed on CSV line number.
        """
        return self.errors

    def log_error(self, errors: Dict[str, str]):
        if not errors:
            return
        line_errors = self.errors.setdefault(self.linenb, {})
        for code, text in errors.items():
            line_errors[code] = text
            logger.warning(f"Line {self.linenb}: {code} {text}")

    def row_exception(self, e: Exception, course: Union[CourseImport, None], data: Dict, tracker: Tracker):
        """
        Record an exception against the current line.
        A course that got created before things went wrong still goes in the course log.
        """
        row_error = {'rowexception': message('rowexception', a=f"{type(e).__name__}: {e}")}
        self.log_error(row_error)
        if course is not None and course.get_id() and 'coursecreated' in course.get_statuses():
            self.run_log.write_course({**data, **course.get_data(), 'id': course.get_id()})
        tracker.output(self.linenb, False, row_error, data)

    def parse_line(self, line: List[str]) -> Dict:
        # cells past the last column are dropped.
        return {self.columns[i]: value for i, value in enumerate(line) if i < len(self.columns)}

    def get_importoptions(self) -> Dict:
        return {
            'candelete': self.allowdeletes,
            'canrename': self.allowrenames,
            'canreset': self.allowresets,
            'reset': self.reset_courses,
            'restorefile': self.restorefile,
            'templatecourse': self.templatecourse,
            'shortnametemplate': self.shortnametemplate,
        }

    def get_course(self, data: Dict) -> CourseImport:
        return CourseImport(self.mode, self.updatemode, data, self.defaults, self.get_importoptions(),
                            courses=self.courses, enrolments=self.enrolments, content=self.content,
                            run_log=self.run_log)

    def _find_category(self, name: str, parent: Union[int, None] = None) -> Dict:
        matches = self.courses.find_categories(name, parent)
        if not matches:
            raise RowError('missingcategoryfield', a=name)
        return matches[0]

    def set_course_category(self, data: Dict) -> int:
        """
        Place the course by its applicative column.

            EXPRES rows:  <express category> / applicative
            other rows:   scope / mode / applicative

        A missing applicative category is made.  A missing scope or mode category fails the row.
        :return: the category id
        """
        applicative = str(data.get('applicative') or '').strip()
        scope = str(data.get('scope') or '').strip()
        mode = str(data.get('mode') or '').strip()

        if mode.upper() == 'EXPRES':
            parent = self._find_category(config.express_category_name)
            scope_name, mode_name = scope or parent['name'], parent['name']
        else:
            scope_category = self._find_category(scope)
            parent = self._find_category(mode, scope_category['id'])
            scope_name, mode_name = scope_category['name'], parent['name']

        if not applicative:
            return parent['id']

        existing = self.courses.find_categories(applicative, parent['id'])
        if existing:
            return existing[0]['id']

        logger.info(f"Creating category {applicative} under {mode_name}")
        return self.courses.create_category(applicative, parent['id'],
                                            description=f"{applicative} ({scope_name} / {mode_name} )")

    def execute(self, tracker: Union[Tracker, None] = None) -> Dict[str, int]:
        """
        Process every row, write the course log and mail the summary.
        :return: the counts: total, created, updated, deleted, errors
        """
        if self.processstarted:
            raise RuntimeError('Process has already been started')
        self.processstarted = True

        if tracker is None:
            tracker = Tracker(Tracker.NO_OUTPUT)
        tracker.start()

        total, created, updated, deleted, errors = 0, 0, 0, 0, 0
        while (line := self.reader.next()) is not None:
            self.linenb += 1
            total += 1
            data = self.parse_line(line)

            action = 'placing the course'
            course = None
            try:
                if 'applicative' in data:
                    data['category'] = self.set_course_category(data)
                course = self.get_course(data)
                action = 'preparing the course'
                if not course.prepare():
                    errors += 1
                    self.log_error(course.get_errors())
                    tracker.output(self.linenb, False, course.get_errors(), data)
                    continue

                action = 'processing the course'
                course.proceed()
            except RowError as e:
                errors += 1
                self.log_error({e.code: e.message})
                tracker.output(self.linenb, False, {e.code: e.message}, data)
                continue
            except platform_errors as e:
                logger.error(f"Error {action} on line {self.linenb}: {type(e).__name__} {e}")
                errors += 1
                self.row_exception(e, course, data, tracker)
                continue
            except Exception as e:
                logger.exception(f"Unexpected error {action} on line {self.linenb}: {type(e).__name__} {e}")
                errors += 1
                self.row_exception(e, course, data, tracker)
                continue

            statuses = course.get_statuses()
            if 'coursecreated' in statuses:
                created += 1
            elif 'courseupdated' in statuses:
                updated += 1
            elif 'coursedeleted' in statuses:
                deleted += 1
            # the course went through but something along the way did not.
            self.log_error(course.get_errors())

            data = {**data, **course.get_data(), 'id': course.get_id()}
            self.run_log.write_course(data)
            tracker.output(self.linenb, True, statuses, data)

        try:
            self.notifier.send(self.run_log)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error mailing the run summary: {type(e).__name__} {e}")

        tracker.finish()
        logger.info(f"Total {total}, Created {created}, Updated {updated}, Deleted {deleted}, Errors {errors}")
        return tracker.results(total, created, updated, deleted, errors)

    def preview(self, rows: int = 10, tracker: Union[Tracker, None] = None) -> Dict[int, Dict]:
        """
        Prepare the first rows without changing anything.
        Rows go to their applicative category, or to config.preview_default_category if there is none yet.
        :return: the row data keyed on line number
        """
        if self.processstarted:
            raise RuntimeError('Process has already been started')
        self.processstarted = True

        if tracker is None:
            tracker = Tracker(Tracker.NO_OUTPUT)
        tracker.start()

        preview = {}
        while self.linenb < rows and (line := self.reader.next()) is not None:
            self.linenb += 1
            data = self.parse_line(line)

            action = 'finding the category'
            try:
                categories = self.courses.find_categories(str(data.get('applicative') or '').strip())
                data['category'] = categories[0]['id'] if categories else config.preview_default_category
                course = self.get_course(data)
                action = 'preparing the course'
                result = course.prepare()
            except platform_errors as e:
                logger.error(f"Error {action} on line {self.linenb}: {type(e).__name__} {e}")
                row_error = {'rowexception': message('rowexception', a=f"{type(e).__name__}: {e}")}
                tracker.output(self.linenb, False, row_error, data)
                preview[self.linenb] = data
                continue

            tracker.output(self.linenb, result, course.get_statuses() if result else course.get_errors(), data)
            preview[self.linenb] = data

        tracker.finish()
        return preview
