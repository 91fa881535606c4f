# file: moodle_course_upload/enrolment.py
import time
from typing import List, Dict, Union

from moodle_course_upload.config import config
from moodle_course_upload.errors import message
from moodle_course_upload.logger import logger
from moodle_course_upload import util

# enrol.status values
ENROL_INSTANCE_ENABLED = 0
ENROL_INSTANCE_DISABLED = 1

TEACHER_ROLE_ID = 3   # editingteacher
STUDENT_ROLE_ID = 5


class MoodleEnrolmentProvider:
    """
    This is meant to be a base class.

    Look up and change the enrolment methods (the mdl_enrol rows, called instances here) of a course,
    find users, and enrol them.  Instances are dicts with Moodle's column names:

        {'id': 12, 'enrol': 'self', 'courseid': 345, 'status': 0, 'roleid': 5,
         'enrolstartdate': 0, 'enrolenddate': 0, 'enrolperiod': 0, 'customint3': 0, 'customtext1': ''}

    The can_* permission checks say yes by default.  Override them if your web service user is limited.
    """

    roles = [
        {   "id": 0, "name": "None", "shortname": "none", "sortorder": 0, "archetype": "",
         "description": "No Role.",
        },
        {   "id": 1, "name": "Manager", "shortname": "manager", "sortorder": 1, "archetype": "manager",
            "description": "Managers can access courses and modify them.",
        },
        {   "id": 2, "name": "Course creator", "shortname": "coursecreator",  "sortorder": 2, "archetype": "coursecreator",
            "description": "Course creators can create new courses.",
        },
        {    "id": 3, "name": "Teacher",     "shortname": "editingteacher",  "sortorder": 3, "archetype": "teacher",
            "description": "Teachers can manage and grade course activities.",
        },
        {   "id": 4, "name": "Non-editing teacher", "shortname": "teacher", "sortorder": 4, "archetype": "teacher",
            "description": "Non-editing teachers can grade in courses but not edit them.",
        },
        {   "id": 5, "name": "Student",  "shortname": "student",  "sortorder": 5,  "archetype": "student",
            "description": "Students can participate in course activities.",
        },
        {    "id": 6, "name": "Guest", "shortname": "guest", "sortorder": 6, "archetype": "guest",
            "description": "Guests can view courses but not participate.",
        },
        {   "id": 7, "name": "Authenticated user", "shortname": "user", "sortorder": 7, "archetype": "user",
            "description": "All logged-in users have this role.",
        },
        {   "id": 8, "name": "Authenticated user on the front page", "shortname": "frontpage", "sortorder": 8, "archetype": "frontpage",
            "description": "A logged-in user role for the front page only.",
        }
    ]

    # the enrolment plugins installed on the site.
    plugins = ['manual', 'self', 'guest', 'cohort', 'meta']

    def get_enrolment_plugins(self) -> List[str]:
        return self.plugins

    def get_role_ids(self) -> Dict[str, int]:
        """
        Role shortname -> role id.  The 'none' pseudo role is left out.
        """
        return {role['shortname']: role['id'] for role in self.roles if role['id']}

    def get_enrol_instances(self, course_id: int) -> List[Dict]:
        raise NotImplementedError("No enrolment instance getter provided.")

    def get_instance_name(self, instance: Union[Dict, None]) -> str:
        if not instance:
            return ''
        return instance.get('name') or instance['enrol']

    def can_add_instance(self, course_id: int, method: str) -> bool:
        return True

    def can_edit_instance(self, instance: Dict) -> bool:
        return True

    def can_hide_show_instance(self, instance: Dict) -> bool:
        return True

    def can_delete_instance(self, instance: Dict) -> bool:
        return True

    def add_default_instance(self, course_id: int, method: str) -> Dict:
        """
        Add the method with the plugin's default settings.  Returns the new instance with its default roleid.
        """
        raise NotImplementedError("No enrolment instance creator provided.")

    def update_instance(self, instance: Dict):
        """
        Save the instance.  Only the keys present in the dict (plus id) are written.
        """
        raise NotImplementedError("No enrolment instance updater provided.")

    def update_instance_status(self, instance: Dict, status: int):
        self.update_instance({'id': instance['id'], 'status': status})

    def delete_instance(self, instance: Dict):
        raise NotImplementedError("No enrolment instance remover provided.")

    def find_user(self, field: str, value: str) -> Union[Dict, None]:
        """
        A user that is not deleted.
        :param field: username (matched in upper case), idnumber, or email (matched in lower case)
        """
        raise NotImplementedError("No user finder provided.")

    def enrol_user(self, course_id: int, user_id: int, role_id: int, timestart: int = 0, timeend: int = 0):
        """
        Enrol with the manual enrolment method.
        """
        raise NotImplementedError("No enroller provided.")


def validate_enrolment_data(enrolments: MoodleEnrolmentProvider, course_id: int,
                            enrolment_data: Dict[str, Dict]) -> Dict[str, str]:
    """
    Check an existing course's instances can be changed the way the row asks.
    :return: errors keyed on error code.  Empty if fine.
    """
    if not enrolment_data:
        return {}

    errors = {}
    instances = enrolments.get_enrol_instances(course_id)
    for method, options in enrolment_data.items():
        method_instances = [i for i in instances if i['enrol'] == method]

        if util.is_set(options.get('delete')):
            for instance in method_instances:
                if not enrolments.can_delete_instance(instance):
                    errors['errorcannotdeleteenrolment'] = message(
                        'errorcannotdeleteenrolment', a=enrolments.get_instance_name(instance))
                    break
        elif util.is_set(options.get('disable')):
            for instance in method_instances:
                if not enrolments.can_hide_show_instance(instance):
                    errors['errorcannotdisableenrolment'] = message(
                        'errorcannotdisableenrolment', a=enrolments.get_instance_name(instance))
                    break
        else:
            instance = method_instances[0] if method_instances else None
            if (instance is None and not enrolments.can_add_instance(course_id, method)) or \
                    (instance is not None and not enrolments.can_edit_instance(instance)):
                errors['errorcannotcreateorupdate_self_enrolment'] = message(
                    'errorcannotcreateorupdate_self_enrolment', a=enrolments.get_instance_name(instance) or method)
                break
    return errors


def process_enrolment_data(enrolments: MoodleEnrolmentProvider, course_id: int,
                           enrolment_data: Dict[str, Dict], now: Union[int, None] = None) -> Dict[str, str]:
    """
    Add, update, disable or delete the enrolment methods of a course.

    Dates in startdate / enddate are CSV dates.  enrolperiod is seconds or something like '2 weeks'.
    When a start date and a period are both given, the end date is worked out from them.

    :return: errors keyed on error code.  Processing stops at the first create / update problem.
    """
    errors = {}
    if not enrolment_data:
        return errors
    now = int(time.time()) if now is None else now

    instances = enrolments.get_enrol_instances(course_id)
    for method_name, method in enrolment_data.items():
        method = dict(method)
        instance = next((i for i in instances if i['enrol'] == method_name), None)
        to_delete = util.is_set(method.pop('delete', None))
        to_disable = util.is_set(method.pop('disable', None))

        if to_delete:
            if instance:
                if enrolments.can_delete_instance(instance):
                    logger.info(f"Deleting enrolment method {method_name} from course {course_id}")
                    enrolments.delete_instance(instance)
                else:
                    errors['errorcannotdeleteenrolment'] = message(
                        'errorcannotdeleteenrolment', a=enrolments.get_instance_name(instance))
            continue

        status = ENROL_INSTANCE_DISABLED if to_disable else ENROL_INSTANCE_ENABLED

        # on creation the row decides the status.
        if instance is None and enrolments.can_add_instance(course_id, method_name):
            instance = enrolments.add_default_instance(course_id, method_name)
            enrolments.update_instance_status(instance, status)
            instance['status'] = status

        if instance is not None and status != int(instance.get('status', ENROL_INSTANCE_ENABLED)):
            if enrolments.can_hide_show_instance(instance):
                enrolments.update_instance_status(instance, status)
                instance['status'] = status
            else:
                errors['errorcannotdisableenrolment'] = message(
                    'errorcannotdisableenrolment', a=enrolments.get_instance_name(instance))
                break

        if instance is None or not enrolments.can_edit_instance(instance):
            errors['errorcannotcreateorupdate_self_enrolment'] = message(
                'errorcannotcreateorupdate_self_enrolment', a=enrolments.get_instance_name(instance) or method_name)
            break

        for key, value in method.items():
            if key not in ('startdate', 'enddate', 'enrolperiod', 'role'):
                instance[key] = value

        instance['enrolstartdate'] = util.to_timestamp(method['startdate']) if 'startdate' in method else 0
        instance['enrolenddate'] = util.to_timestamp(method['enddate']) if 'enddate' in method else 0

        period = util.parse_period(method.get('enrolperiod'))
        if period is not None:
            instance['enrolperiod'] = period
        if instance['enrolstartdate'] > 0 and period is not None:
            instance['enrolenddate'] = instance['enrolstartdate'] + period
        if instance['enrolenddate'] > 0:
            instance['enrolperiod'] = instance['enrolenddate'] - instance['enrolstartdate']
        if instance['enrolenddate'] < instance['enrolstartdate']:
            instance['enrolenddate'] = instance['enrolstartdate']

        # the role is not checked against the roles allowed in the course.
        if 'role' in method:
            role_ids = enrolments.get_role_ids()
            if method['role'] in role_ids:
                instance['roleid'] = role_ids[method['role']]

        instance['timemodified'] = now
        enrolments.update_instance(instance)
    return errors


def enrol_teacher(enrolments: MoodleEnrolmentProvider, course: Dict, rawdata: Dict) -> Union[int, None]:
    """
    Enrol the user named in the teachersusername column as editing teacher.
    :return: the teacher's user id, None if there is no such user.
    """
    username = str(rawdata.get('teachersusername') or '').strip().upper()
    if not username:
        return None
    teacher = enrolments.find_user('username', username)
    if not teacher:
        logger.warning(f"Teacher {username} not found for course {course.get('shortname')}")
        return None
    enrolments.enrol_user(course['id'], teacher['id'], TEACHER_ROLE_ID, timestart=int(time.time()))
    return teacher['id']


def enrol_students(enrolments: MoodleEnrolmentProvider, course: Dict, rawdata: Dict, run_log=None) -> int:
    """
    Enrol students from the comma separated idnumber and email columns.
    The two lists are read pairwise.  Each student is found by ID number first, then by email.
    Students found by neither go to the run's student log.

    :return: number of students enrolled.
    """
    idnumbers = str(rawdata.get('idnumber') or '')
    emails = str(rawdata.get('email') or '')
    if not idnumbers and not emails:
        return 0

    enrolled = 0
    for idnumber, email in zip(idnumbers.split(','), emails.split(',')):
        student = None
        if idnumber.strip():
            student = enrolments.find_user('idnumber', idnumber.strip().upper())
        if student is None and email.strip():
            student = enrolments.find_user('email', email.strip().lower())

        if student:
            enrolments.enrol_user(course['id'], student['id'], STUDENT_ROLE_ID, timestart=int(time.time()))
            enrolled += 1
        elif run_log is not None:
            run_log.write_student_error(idnumber, email, course.get('fullname', ''))
        else:
            logger.warning(f"Student {idnumber} / {email} not found for course {course.get('fullname')}")
    if config.debug:
        logger.debug(f"Enrolled {enrolled} students in course {course['id']}")
    return enrolled
