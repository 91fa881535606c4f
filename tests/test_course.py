# file: tests/test_course.py

import os
import zipfile

import pytest

from moodle_course_upload.config import config
from moodle_course_upload.course import CourseImport, Mode, UpdateMode
from moodle_course_upload import util


class IdnumberImport(CourseImport):
    # sites where the idnumber column is the course ID number.
    validfields = CourseImport.validfields + ['idnumber']


def make(site, mode, row, updatemode=UpdateMode.NOTHING, defaults=None, importoptions=None, content=False,
         cls=CourseImport):
    return cls(mode, updatemode, row, defaults, importoptions, courses=site.courses, enrolments=site.enrolments,
               content=site.content if content else None)


@pytest.fixture
def existing(site):
    course_id = site.courses.add_course(shortname='CURSO-EXISTENTE', fullname='Curso existente', category=1,
                                        startdate=util.to_timestamp('01/03/24'))
    site.enrolments.add_instance(course_id, 'self')
    return course_id


express_row = {
    'shortname': 'EXPRES-ACC-104', 'fullname': 'EXPRES Accesibilidad en documentos 104', 'category': '7',
    'applicative': 'Accesibilidad', 'description': 'Accesibilidad en documentos', 'role': 'Tramitación',
    'hour': '2', 'startdate': '25/03/24', 'enddate': '25/03/24', 'teachersusername': 'JPEREZ',
    'idnumber': '12345678Z', 'email': 'ana@example.es', 'featured': 'true', 'incident': 'CAU-1',
}


def test_bad_modes_and_providers(site):
    with pytest.raises(ValueError):
        make(site, 5, {'shortname': 'X'})
    with pytest.raises(ValueError):
        make(site, Mode.CREATE_NEW, {'shortname': 'X'}, updatemode=9)
    with pytest.raises(ValueError):
        CourseImport(Mode.CREATE_NEW, UpdateMode.NOTHING, {'shortname': 'X'}, courses=site.courses)


def test_create_new_course(site):
    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1'})
    assert course.prepare(), course.get_errors()
    assert course.proceed()

    statuses = course.get_statuses()
    assert 'coursecreated' in statuses
    assert 'courserestored' in statuses

    created = site.courses.get_course('CURSO-NUEVO')
    assert course.get_id() == created['id']
    assert created['fullname'] == 'Curso nuevo'
    assert created['category'] == 1
    assert created['numsections'] == 4
    assert created['enablecompletion'] == 1
    assert created['summaryformat'] == 1
    # new courses get the content of the template for their kind.
    assert site.courses.restores == [(created['id'], {'course_id': site.templates['plantillapresencialtiles'],
                                                      'shortname': 'plantillapresencialtiles'})]
    assert site.courses.dirty == [created['id']]


def test_create_new_existing_course(site, existing):
    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-EXISTENTE', 'fullname': 'x', 'category': '1'})
    assert not course.prepare()
    assert list(course.get_errors()) == ['courseexistsanduploadnotallowed']


def test_missing_mandatory_fields(site):
    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-NUEVO'})
    assert not course.prepare()
    assert course.get_errors() == {'missingmandatoryfields': 'Missing value for mandatory fields: fullname, category'}


def test_defaults_fill_mandatory_fields(site):
    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo'},
                  defaults={'category': 1, 'lang': 'es'})
    assert course.prepare(), course.get_errors()
    assert course.get_data()['category'] == 1
    assert course.get_data()['lang'] == 'es'


def test_update_only_missing_course(site):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'NO-EXISTE', 'fullname': 'x'},
                  updatemode=UpdateMode.ALL_WITH_DATA_ONLY)
    assert not course.prepare()
    assert 'coursedoesnotexistandcreatenotallowed' in course.get_errors()


def test_update_mode_nothing(site, existing):
    course = make(site, Mode.CREATE_OR_UPDATE, {'shortname': 'CURSO-EXISTENTE', 'fullname': 'x'})
    assert not course.prepare()
    assert 'updatemodedoessettonothing' in course.get_errors()


def test_update_with_data_only(site, existing):
    row = {'shortname': 'CURSO-EXISTENTE', 'fullname': 'Nuevo nombre', 'summary': '<p>hola</p>'}
    course = make(site, Mode.UPDATE_ONLY, row, updatemode=UpdateMode.ALL_WITH_DATA_ONLY, defaults={'lang': 'es'})
    assert course.prepare(), course.get_errors()
    course.proceed()

    update = site.courses.updates[-1]
    assert update['id'] == existing
    assert update['fullname'] == 'Nuevo nombre'
    assert update['summary'] == '<p>hola</p>'
    assert update['summaryformat'] == 1
    # the start date the row leaves out is kept.
    assert update['startdate'] == util.to_timestamp('01/03/24')
    assert 'lang' not in update
    assert 'courseupdated' in course.get_statuses()
    assert course.get_id() == existing


def test_update_with_data_or_defaults(site, existing):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'CURSO-EXISTENTE', 'fullname': 'Nuevo nombre'},
                  updatemode=UpdateMode.ALL_WITH_DATA_OR_DEFAULTS, defaults={'lang': 'es'})
    assert course.prepare(), course.get_errors()
    assert course.get_data()['lang'] == 'es'


def test_update_missing_only(site, existing):
    row = {'shortname': 'CURSO-EXISTENTE', 'fullname': 'Nuevo nombre', 'summary': '<p>hola</p>'}
    course = make(site, Mode.CREATE_OR_UPDATE, row, updatemode=UpdateMode.MISSING_WITH_DATA_OR_DEFAULTS,
                  defaults={'lang': 'es'})
    assert course.prepare(), course.get_errors()
    data = course.get_data()
    # the course already has a fullname, but no summary and no language.
    assert 'fullname' not in data
    assert data['summary'] == '<p>hola</p>'
    assert data['lang'] == 'es'


def test_cannot_update_front_page(site):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'aulaenlinea', 'fullname': 'x'},
                  updatemode=UpdateMode.ALL_WITH_DATA_ONLY)
    assert not course.prepare()
    assert 'cannotupdatefrontpage' in course.get_errors()


def test_delete(site, existing):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'CURSO-EXISTENTE', 'delete': '1'},
                  importoptions={'candelete': True})
    assert course.prepare(), course.get_errors()
    course.proceed()
    assert course.get_statuses() == {'coursedeleted': 'Course deleted'}
    assert course.get_id() == existing
    assert site.courses.get_course('CURSO-EXISTENTE') is None


def test_delete_not_allowed(site, existing):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'CURSO-EXISTENTE', 'delete': '1'})
    assert not course.prepare()
    assert 'coursedeletionnotallowed' in course.get_errors()

    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'NO-EXISTE', 'delete': '1'},
                  importoptions={'candelete': True})
    assert not course.prepare()
    assert 'cannotdeletecoursenotexist' in course.get_errors()


def test_rename(site, existing):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'CURSO-EXISTENTE', 'rename': 'CURSO-RENOMBRADO'},
                  updatemode=UpdateMode.ALL_WITH_DATA_ONLY, importoptions={'canrename': True})
    assert course.prepare(), course.get_errors()
    assert course.get_statuses()['courserenamed'] == 'Course renamed CURSO-EXISTENTE -> CURSO-RENOMBRADO'
    course.proceed()
    assert site.courses.get_course(existing)['shortname'] == 'CURSO-RENOMBRADO'


@pytest.mark.parametrize('mode, updatemode, importoptions, rename, error', [
    (Mode.UPDATE_ONLY, UpdateMode.ALL_WITH_DATA_ONLY, {}, 'CURSO-RENOMBRADO', 'courserenamingnotallowed'),
    (Mode.UPDATE_ONLY, UpdateMode.ALL_WITH_DATA_ONLY, {'canrename': True}, 'plantillaexpres',
     'cannotrenameshortnamealreadyinuse'),
    (Mode.UPDATE_ONLY, UpdateMode.ALL_WITH_DATA_ONLY, {'canrename': True}, '<b>X</b>', 'invalidshortname'),
    (Mode.CREATE_OR_UPDATE, UpdateMode.NOTHING, {'canrename': True}, 'CURSO-RENOMBRADO',
     'canonlyrenameinupdatemode'),
])
def test_rename_errors(site, existing, mode, updatemode, importoptions, rename, error):
    course = make(site, mode, {'shortname': 'CURSO-EXISTENTE', 'rename': rename}, updatemode=updatemode,
                  importoptions=importoptions)
    assert not course.prepare()
    assert error in course.get_errors()


def test_rename_missing_course(site):
    course = make(site, Mode.CREATE_OR_UPDATE, {'shortname': 'NO-EXISTE', 'fullname': 'x', 'category': '1',
                                                'rename': 'OTRO'},
                  updatemode=UpdateMode.ALL_WITH_DATA_ONLY, importoptions={'canrename': True})
    assert not course.prepare()
    assert 'cannotrenamecoursenotexist' in course.get_errors()


def test_shortname_template(site):
    course = make(site, Mode.CREATE_NEW, {'fullname': 'Accesibilidad', 'category': '1'},
                  importoptions={'shortnametemplate': '%+3f-BASICO'})
    assert course.prepare(), course.get_errors()
    assert course.get_data()['shortname'] == 'ACC-BASICO'
    assert course.get_statuses()['courseshortnamegenerated'] == 'Course shortname generated: ACC-BASICO'


@pytest.mark.parametrize('mode, importoptions, error', [
    (Mode.CREATE_NEW, {}, 'missingshortnamenotemplate'),
    (Mode.CREATE_NEW, {'shortnametemplate': 'plantillaexpres'}, 'generatedshortnamealreadyinuse'),
    (Mode.CREATE_NEW, {'shortnametemplate': '%i'}, 'generatedshortnameinvalid'),
    (Mode.CREATE_OR_UPDATE, {'shortnametemplate': '%f'}, 'cannotgenerateshortnameupdatemode'),
])
def test_shortname_template_errors(site, mode, importoptions, error):
    course = make(site, mode, {'fullname': 'Accesibilidad', 'category': '1'},
                  updatemode=UpdateMode.ALL_WITH_DATA_ONLY, importoptions=importoptions)
    assert not course.prepare()
    assert error in course.get_errors()


def test_create_all_increments_shortname(site):
    site.courses.add_course(shortname='EXPRES-ACC-101', fullname='EXPRES Accesibilidad 101')
    site.courses.add_course(shortname='EXPRES-ACC-104', fullname='EXPRES Accesibilidad 104')
    row = {'shortname': 'EXPRES-ACC-104', 'fullname': 'EXPRES Accesibilidad 104', 'category': '7', 'mode': 'EXPRES'}
    course = make(site, Mode.CREATE_ALL, row)
    assert course.prepare(), course.get_errors()

    data = course.get_data()
    assert data['shortname'] == 'EXPRES-ACC-105'
    assert data['fullname'] == 'EXPRES Accesibilidad 105'
    assert data['format'] == 'topics'
    assert 'courseshortnameincremented' in course.get_statuses()

    course.proceed()
    assert site.courses.restores[-1][1]['shortname'] == 'plantillaexpres'


def test_create_all_keeps_new_shortname(site):
    course = make(site, Mode.CREATE_ALL, {'shortname': 'NUEVO-CURSO-001', 'fullname': 'Nuevo', 'category': '1'})
    assert course.prepare(), course.get_errors()
    assert course.get_data()['shortname'] == 'NUEVO-CURSO-001'
    assert course.get_statuses() == {}


def test_create_all_increments_idnumber(site):
    site.courses.add_course(shortname='EXPRES-ACC-104', fullname='EXPRES Accesibilidad 104', idnumber='EXP104')
    row = {'shortname': 'EXPRES-ACC-104', 'fullname': 'EXPRES Accesibilidad 104', 'category': '7',
           'idnumber': 'EXP104'}
    course = make(site, Mode.CREATE_ALL, row, cls=IdnumberImport)
    assert course.prepare(), course.get_errors()
    assert course.get_data()['idnumber'] == 'EXP105'
    assert course.get_statuses()['courseidnumberincremented'] == 'Course ID number incremented EXP104 -> EXP105'


def test_idnumber_already_in_use(site):
    site.courses.add_course(shortname='OTRO-CURSO', idnumber='EXP104')
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'idnumber': 'EXP104'}
    course = make(site, Mode.CREATE_NEW, row, cls=IdnumberImport)
    assert not course.prepare()
    assert 'idnumberalreadyinuse' in course.get_errors()


def test_idnumber_column_is_not_a_course_field(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'idnumber': '12345678Z'}
    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare(), course.get_errors()
    assert 'idnumber' not in course.get_data()


@pytest.mark.parametrize('startdate, enddate, error', [
    ('25/03/24', '24/03/24', 'enddatebeforestartdate'),
    ('', '24/03/24', 'nostartdatenoenddate'),
])
def test_date_errors(site, startdate, enddate, error):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1',
           'startdate': startdate, 'enddate': enddate}
    course = make(site, Mode.CREATE_NEW, row)
    assert not course.prepare()
    assert error in course.get_errors()


def test_dates_become_timestamps(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1',
           'startdate': '25/03/24', 'enddate': '26/03/24'}
    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare(), course.get_errors()
    assert course.get_data()['startdate'] == util.to_timestamp('25/03/24')
    assert course.get_data()['enddate'] == util.to_timestamp('26/03/24')


def test_course_formats(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'format': 'bogus'}
    course = make(site, Mode.CREATE_NEW, row)
    assert not course.prepare()
    assert 'invalidcourseformat' in course.get_errors()

    # only express courses keep their format, everything else is tiles.
    course = make(site, Mode.CREATE_NEW, dict(row, format='weeks', hiddensections='1'))
    assert course.prepare(), course.get_errors()
    assert course.get_data()['format'] == 'tiles'
    assert course.get_data()['hiddensections'] == '1'


def test_mode_column_sets_format(site):
    row = {'shortname': 'WEBINAR-MIN-201', 'fullname': 'WEBINAR Minerva 201', 'category': '3', 'mode': 'WEBINAR'}
    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare(), course.get_errors()
    assert course.get_data()['format'] == 'tiles'
    assert course.get_data()['enablecompletion'] == 1


def test_numsections(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1'}
    course = make(site, Mode.CREATE_NEW, dict(row, numsections='7'))
    assert course.prepare()
    assert course.get_data()['numsections'] == 7

    # the template has sections 1 to 3.
    course = make(site, Mode.CREATE_NEW, row, importoptions={'templatecourse': 'plantillawebinartiles'})
    assert course.prepare()
    assert course.get_data()['numsections'] == 3


def test_invalid_visible(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'visible': 'maybe'}
    course = make(site, Mode.CREATE_NEW, row)
    assert not course.prepare()
    assert 'invalidvisibilitymode' in course.get_errors()


def test_download_content(site, monkeypatch):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'downloadcontent': '1'}
    course = make(site, Mode.CREATE_NEW, row)
    assert not course.prepare()
    assert 'downloadcontentnotallowed' in course.get_errors()

    monkeypatch.setattr(config, 'download_content_allowed', True)
    course = make(site, Mode.CREATE_NEW, dict(row, downloadcontent='7'))
    assert not course.prepare()
    assert 'invaliddownloadcontent' in course.get_errors()

    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare()
    assert course.get_data()['downloadcontent'] == '1'


def test_force_language(site, monkeypatch):
    monkeypatch.setattr(site.courses, 'can_force_language', lambda course_id=None, category_id=None: False)
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'lang': 'es'}
    course = make(site, Mode.CREATE_NEW, row)
    assert not course.prepare()
    assert 'cannotforcelang' in course.get_errors()


def test_invalid_shortnames(site):
    course = make(site, Mode.CREATE_NEW, {'shortname': '<b>X</b>', 'fullname': 'x', 'category': '1'})
    assert not course.prepare()
    assert 'invalidshortname' in course.get_errors()

    course = make(site, Mode.CREATE_NEW, {'shortname': 'x' * 256, 'fullname': 'x', 'category': '1'})
    assert not course.prepare()
    assert course.get_errors() == {'invalidshortnametoolong': 'The shortname field is limited to 255 characters'}


def test_role_names(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'role_student': 'Alumno'}
    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare()
    assert course.get_data()['role_5'] == 'Alumno'

    course = make(site, Mode.CREATE_NEW, dict(row, role_nobody='x'))
    assert not course.prepare()
    assert course.get_errors() == {'invalidroles': 'Invalid role names: nobody'}


def test_restore_source_errors(site, tmp_path):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1'}
    course = make(site, Mode.CREATE_NEW, dict(row, backupfile=str(tmp_path / 'missing.mbz')))
    assert not course.prepare()
    assert 'cannotreadbackupfile' in course.get_errors()

    course = make(site, Mode.CREATE_NEW, dict(row, templatecourse='plantillanoexiste'))
    assert not course.prepare()
    assert 'coursetorestorefromdoesnotexist' in course.get_errors()


def test_row_template_course(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1',
           'templatecourse': 'plantillawebinartiles'}
    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare()
    course.proceed()
    assert site.courses.restores[-1][1]['shortname'] == 'plantillawebinartiles'


def test_reset(site, existing):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'CURSO-EXISTENTE', 'reset': '1'},
                  updatemode=UpdateMode.ALL_WITH_DATA_ONLY, importoptions={'canreset': True})
    assert course.prepare(), course.get_errors()
    course.proceed()
    assert 'coursereset' in course.get_statuses()

    reset_data = site.courses.resets[-1]
    assert reset_data['id'] == existing
    assert reset_data['reset_start_date_old'] == util.to_timestamp('01/03/24')
    assert 5 in reset_data['unenrol_users']
    assert 0 in reset_data['unenrol_users']


def test_reset_errors(site, existing):
    course = make(site, Mode.UPDATE_ONLY, {'shortname': 'CURSO-EXISTENTE', 'reset': '1'},
                  updatemode=UpdateMode.ALL_WITH_DATA_ONLY)
    assert not course.prepare()
    assert 'courseresetnotallowed' in course.get_errors()

    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-NUEVO', 'fullname': 'x', 'category': '1'},
                  importoptions={'reset': True, 'canreset': True})
    assert not course.prepare()
    assert 'canonlyresetcourseinupdatemode' in course.get_errors()


def test_enrolment_methods_on_create(site):
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1',
           'enrolment_1': 'self', 'enrolment_1_enrolperiod': '2 weeks', 'enrolment_1_startdate': '01/04/24'}
    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare(), course.get_errors()
    course.proceed()

    instance = site.enrolments.instance(course.get_id(), 'self')
    start = util.to_timestamp('01/04/24')
    assert instance['status'] == 0
    assert instance['enrolstartdate'] == start
    assert instance['enrolperiod'] == 1209600
    assert instance['enrolenddate'] == start + 1209600


def test_enrolment_methods_checked_on_update(site, existing, monkeypatch):
    monkeypatch.setattr(site.enrolments, 'can_delete_instance', lambda instance: False)
    row = {'shortname': 'CURSO-EXISTENTE', 'enrolment_1': 'self', 'enrolment_1_delete': '1'}
    course = make(site, Mode.UPDATE_ONLY, row, updatemode=UpdateMode.ALL_WITH_DATA_ONLY)
    assert not course.prepare()
    assert course.get_errors() == {'errorcannotdeleteenrolment': "Cannot delete enrolment method 'self'"}


def test_templating_after_restore(site):
    course = make(site, Mode.CREATE_NEW, express_row, content=True)
    assert course.prepare(), course.get_errors()
    course.proceed()

    course_id = course.get_id()
    assert 'courserestored' in course.get_statuses()
    assert site.content.plugin_config['fecourse'] == course_id
    assert (course_id, 50, 3) in site.enrolments.enrolled
    assert (course_id, 61, 5) in site.enrolments.enrolled


def test_call_order(site):
    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-NUEVO', 'fullname': 'x', 'category': '1'})
    with pytest.raises(RuntimeError):
        course.proceed()
    with pytest.raises(RuntimeError):
        course.get_id()
    assert course.prepare()
    with pytest.raises(RuntimeError):
        course.prepare()
    course.proceed()
    with pytest.raises(RuntimeError):
        course.proceed()


def test_cannot_proceed_with_errors(site):
    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-NUEVO'})
    assert not course.prepare()
    with pytest.raises(RuntimeError):
        course.proceed()


def test_duplicate_codes(site):
    course = make(site, Mode.CREATE_NEW, {'shortname': 'CURSO-NUEVO'})
    course.error('invalidshortname', 'Invalid shortname')
    with pytest.raises(RuntimeError):
        course.error('invalidshortname', 'Invalid shortname')
    course.status('coursecreated', 'Course created')
    with pytest.raises(RuntimeError):
        course.status('coursecreated', 'Course created')


def test_backup_file_needs_a_site_that_restores_them(site, tmp_path):
    backup = tmp_path / 'curso.mbz'
    with zipfile.ZipFile(backup, 'w') as archive:
        archive.writestr('moodle_backup.xml', '<moodle_backup/>')
    row = {'shortname': 'CURSO-NUEVO', 'fullname': 'Curso nuevo', 'category': '1', 'backupfile': str(backup)}

    course = make(site, Mode.CREATE_NEW, row)
    assert course.prepare()
    assert course.restoredata == {'backupfile': os.path.realpath(backup)}

    site.courses.backup_restores = False
    course = make(site, Mode.CREATE_NEW, row)
    assert not course.prepare()
    assert 'cannotrestorebackupfile' in course.get_errors()
    assert site.courses.get_course('CURSO-NUEVO') is None
