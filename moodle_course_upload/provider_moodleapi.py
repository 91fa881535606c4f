# file: moodle_course_upload/provider_moodleapi.py

import json
from typing import Union, Any, Dict, List

import requests

from moodle_course_upload.config import config
from moodle_course_upload.logger import logger
from moodle_course_upload.course import MoodleCourseProvider
from moodle_course_upload.enrolment import MoodleEnrolmentProvider, ENROL_INSTANCE_ENABLED, \
    ENROL_INSTANCE_DISABLED

"""
You can see all available API functions here:

https://YOURSITE.example.com/admin/webservice/documentation.php

The web service user needs these functions:

    core_course_get_courses_by_field, core_course_search_courses, core_course_create_courses,
    core_course_update_courses, core_course_delete_courses, core_course_import_course, core_course_get_contents,
    core_course_get_categories, core_course_create_categories,
    core_enrol_get_course_enrolment_methods, core_user_get_users_by_field, enrol_manual_enrol_users

There are no web service functions to change enrolment methods, restore a backup file or reset a course.
Use the MySQL providers for those.
"""


class MoodleAPI:
    """
    Provide a way to invoke the Moodle API and parse out the results.

    This class creates a singleton borgy thingy sort of - one instance for each moodle site -
    so that cached data can remain consistent for two different moodle sites if you ever wanted to do that.

    Note:  the first parameter is called "self_api" to facilitate some console debugging and functionality.
    This of course is weird!  Just take a moment to smile and be grateful for your next breath.

    Also important:  You can pass either requests.post or requests.get to the execute function.
    If dryrun is true in config, requests.post won't do anything and no API call will be made
    The execute function has a dryrun_result variable to use for debugging purposes in that case.
    """

    _instances = {}  # one singleton instance for each Moodle site.

    @staticmethod
    def __new__(cls, site, api_key):
        """
        Implement a singleton pattern for the MoodleAPI class.
        :param site: the host name, like moodle.example.com
        :param api_key: the web service token
        """
        if site not in cls._instances:
            cls._instances[site] = super(MoodleAPI, cls).__new__(cls)
        return cls._instances[site]

    def __init__(self, site, api_key):
        if getattr(self, '_initialized', False):
            # already initialized.  But allow updates to the api_key
            self.api_key = api_key
            return
        self._initialized = True
        self.site = site
        self.endpoint = f'https://{site}/webservice/rest/server.php'
        self.api_key = api_key

        self.user_cache = {}    # cache users by (field, value)
        self.course_cache = {}  # cache courses by shortname and id

        # useful for some debugging action
        self.last_api_details = {}

    def execute(self_api, requests_func, params, dryrun_result=None) -> Any:
        """
        Execute a requests get or post or something like that.
        Convention is that post makes changes.  If dryrun, then that will be logged but not executed.
        :param requests_func:  requests.get,  requests.post
        :param params: the parameters to post.
        :param dryrun_result:  If provided, return this instead of invoking the actual result.
        :return: data or raises an exception if an error.
        :raises requests.exceptions.HTTPError: on a bad status or a Moodle exception
        """
        params['wstoken'] = self_api.api_key
        params['moodlewsrestformat'] = 'json'

        if requests_func != requests.get and config.dryrun:
            logger.debug("DRYRUN mode: API call details: %s", params)
            return dryrun_result

        # store actual API details for debugging.
        self_api.last_api_details['params'] = params
        self_api.last_api_details['func'] = requests_func
        response = requests_func(self_api.endpoint, params=params)
        self_api.last_api_details['response'] = response

        if response.status_code != 200:
            logger.error(f"API call failed: Status code {response.status_code} Response: {response.text}")
            raise requests.exceptions.HTTPError(f"Error occurred: {response.status_code}, {response.text}")

        data = json.loads(response.text) if response.text else None
        self_api.last_api_details['data'] = data

        if type(data) is dict and 'exception' in data:
            logger.error(f"API call failed: {data['exception']} {data.get('debuginfo', '')}")
            raise requests.exceptions.HTTPError(f"Error occurred: {data['exception']} {data.get('message', '')} "
                                                f"{data.get('debuginfo', '')}")

        if config.debug:
            logger.debug(f"API call successful: {requests_func.__name__} {params.get('wsfunction')}")
        return data

    def get_user(self, field: str, value: str) -> Union[dict, None]:
        """
        Get the user for the given field and value.  Return None if not found.  Cache the result.
        :param field: id, idnumber, username or email
        """
        key = (field, value)
        if key in self.user_cache:
            return self.user_cache[key]

        params = {
            'wsfunction': 'core_user_get_users_by_field',
            'field': field,
            'values[0]': value
        }
        data = self.execute(requests.get, params)
        user = next((u for u in data or [] if not u.get('deleted')), None)
        self.user_cache[key] = user
        return user

    def get_categories(self, criteria: Dict[str, Union[str, int]]) -> List[dict]:
        """
        core_course_get_categories without the subcategories.
        :param criteria: {'name': 'FORMACIÓN EXPRÉS', 'parent': 0}.  Keys: id, name, parent, idnumber, visible.
        """
        params = {'wsfunction': 'core_course_get_categories', 'addsubcategories': 0}
        for i, (key, value) in enumerate(criteria.items()):
            params[f'criteria[{i}][key]'] = key
            params[f'criteria[{i}][value]'] = value
        return self.execute(requests.get, params=params) or []


class MoodleAPICourseProvider(MoodleCourseProvider):
    """

    SEE https://docs.moodle.org/dev/Web_service_API_functions

    For docs on specific functions search for them in this php:
    https://github.com/moodle/moodle/blob/master/course/externallib.php

    """

    # course fields core_course_create_courses and core_course_update_courses take.
    ws_fields = [
        'fullname', 'shortname', 'categoryid', 'idnumber', 'summary', 'summaryformat', 'format', 'showgrades',
        'newsitems', 'startdate', 'enddate', 'numsections', 'maxbytes', 'showreports', 'visible', 'groupmode',
        'groupmodeforce', 'defaultgroupingid', 'enablecompletion', 'completionnotify', 'lang', 'forcetheme',
        'showactivitydates', 'showcompletionconditions', 'downloadcontent',
    ]

    # these fields need to be mapped from a dict and flattened into a course when getting a course,
    # and then mapped back to a dict when updating a course.
    courseformatoptions_fields = ['hiddensections', 'coursedisplay', 'automaticenddate']

    def __init__(self, site, api_key):
        super().__init__()
        self.api = MoodleAPI(site, api_key)

    def _extract_courseformatoptions(self, course: dict) -> dict:
        """
        This function mutates the course dict.
        It returns a dict formatted for the courseformatoptions field for updating Moodle
        """
        # 'courseformatoptions': [{'name': 'hiddensections', 'value': 0}, {'name': 'coursedisplay', 'value': 0}]
        courseformatoptions, counter = {}, 0
        for field in self.courseformatoptions_fields:
            if field in course:
                courseformatoptions[f'courses[0][courseformatoptions][{counter}][name]'] = field
                courseformatoptions[f'courses[0][courseformatoptions][{counter}][value]'] = course[field]
                del course[field]
                counter += 1
        return courseformatoptions

    def _flatten_courseformatoptions(self, course: dict) -> dict:
        """
        This function mutates the course dict.
        It removes courseformatoptions from the course and flattens those values into the course dict itself
        """
        for name_value_pair in course.get('courseformatoptions', []):
            course[name_value_pair['name']] = name_value_pair['value']
        course.pop('courseformatoptions', None)
        # the web service calls the category categoryid.  Everything else here calls it category.
        if 'categoryid' in course:
            course['category'] = course['categoryid']
        return course

    def _course_params(self, course: dict) -> dict:
        """
        Flatten the course for Moodle: courses[0][field].  Custom fields and format options get their own arrays.
        """
        course = dict(course)
        if 'category' in course:
            course['categoryid'] = course.pop('category')
        if 'theme' in course:
            course['forcetheme'] = course.pop('theme')
        format_options = self._extract_courseformatoptions(course)

        params = {f'courses[0][{key}]': value for key, value in course.items()
                  if key in self.ws_fields or key == 'id'}
        params.update(format_options)

        customfields = [(key[len('customfield_'):], value) for key, value in course.items()
                        if key.startswith('customfield_')]
        for i, (shortname, value) in enumerate(customfields):
            params[f'courses[0][customfields][{i}][shortname]'] = shortname
            params[f'courses[0][customfields][{i}][value]'] = value

        skipped = [key for key in course if key not in self.ws_fields and key != 'id'
                   and not key.startswith('customfield_')]
        if skipped:
            logger.debug(f"Not sent to the web service: {', '.join(skipped)}")
        return params

    def get_course(self, shortname_or_id: Union[str, int]) -> Union[dict, None]:
        """
        Return the course for the given shortname or course id
        """
        if shortname_or_id in self.api.course_cache:
            return self.api.course_cache[shortname_or_id]
        field = 'shortname' if type(shortname_or_id) is str else 'id'
        courses_matching = self.get_courses(field=field, value=shortname_or_id)
        if not courses_matching:
            # not cached.  The course may be created later on in the run.
            return None
        course = courses_matching[0]
        self.api.course_cache[course['shortname']] = course
        self.api.course_cache[course['id']] = course
        return course

    def get_courses(self, field=None, value=None) -> List[dict]:
        params = {
            'wsfunction': 'core_course_get_courses_by_field',
        }
        if field:
            params['field'] = field
            params['value'] = value

        # data is a dict with "courses" and "warnings"
        data = self.api.execute(requests.get, params=params)
        courses = data.get('courses', []) if isinstance(data, dict) else []
        for course in courses:
            self._flatten_courseformatoptions(course)
        logger.debug(f"Retrieved {len(courses)} courses")
        return courses

    def forget_course(self, course: dict):
        # drop a changed course from the cache.
        for key in (course.get('id'), course.get('shortname')):
            self.api.course_cache.pop(key, None)

    def count_courses_with_idnumber(self, idnumber: str, exclude_shortname: Union[str, None] = None) -> int:
        courses = self.get_courses(field='idnumber', value=idnumber)
        return len([c for c in courses if c['shortname'] != exclude_shortname])

    def get_highest_shortname(self, prefix: str, length: int) -> Union[str, None]:
        params = {
            'wsfunction': 'core_course_search_courses',
            'criterianame': 'search',
            'criteriavalue': prefix,
            'perpage': 0,
        }
        data = self.api.execute(requests.get, params)
        shortnames = [c['shortname'] for c in (data or {}).get('courses', [])
                      if c['shortname'].startswith(prefix) and len(c['shortname']) == length]
        return max(shortnames) if shortnames else None

    def create_course(self, course: Dict) -> Union[int, None]:
        """
        :param course: a dict of course values
        :return: course ID
        """
        params = {
            'wsfunction': 'core_course_create_courses',
            **self._course_params(course),
        }
        data = self.api.execute(requests.post, params,
                                dryrun_result=[{'id': -999, 'shortname': course.get('shortname')}])
        new_course_id = data[0]['id'] if data else None
        if new_course_id is None:
            logger.error(f"Course not created: {course.get('shortname')}")
            raise requests.exceptions.HTTPError(f"Course not created: {course.get('shortname')}")
        logger.debug(f"Course {new_course_id} created: {course.get('shortname')}")
        return new_course_id

    def update_course(self, course: Dict):
        """
        Update the course with the dict values.
        :param course: course dict ready for Moodle, with the id.
        :return: None.  Will raise exception if fail
        """
        params = {
            'wsfunction': 'core_course_update_courses',
            **self._course_params(course),
        }
        data = self.api.execute(requests.post, params, dryrun_result={'warnings': []})
        for warning in (data or {}).get('warnings', []):
            logger.warning(f"Course {course['id']} update warning: {warning.get('message')}")
        self.forget_course(course)
        logger.debug(f"Course {course['id']} updated with: %s", params)

    def delete_course(self, course_id: int) -> bool:
        params = {
            'wsfunction': 'core_course_delete_courses',
            'courseids[0]': course_id,
        }
        data = self.api.execute(requests.post, params, dryrun_result={'warnings': []})
        warnings = (data or {}).get('warnings', [])
        for warning in warnings:
            logger.error(f"Course {course_id} not deleted: {warning.get('message')}")
        self.forget_course(self.api.course_cache.get(course_id, {'id': course_id}))
        return not warnings

    def get_category(self, category_id: int) -> Union[dict, None]:
        categories = self.api.get_categories({'id': category_id})
        return categories[0] if categories else None

    def get_category_by_idnumber(self, idnumber: str) -> Union[dict, None]:
        categories = self.api.get_categories({'idnumber': idnumber})
        return categories[0] if categories else None

    def find_categories(self, name: str, parent: Union[int, None] = None) -> List[Dict]:
        criteria = {'name': name}
        if parent is not None:
            criteria['parent'] = parent
        return self.api.get_categories(criteria)

    def create_category(self, name: str, parent: int = 0, description: str = '') -> int:
        """
        Create a category with the given name under the parent category id.
        :return: int: the category id
        """
        params = {
            'wsfunction': 'core_course_create_categories',
            'categories[0][name]': name,
            'categories[0][parent]': parent,
            'categories[0][description]': description,
            'categories[0][descriptionformat]': 1,
        }
        data = self.api.execute(requests.post, params, dryrun_result=[{'id': -99, 'name': name}])
        logger.debug(f"Category Created: {name} id {data[0]['id']}")
        return data[0]['id']

    def get_coursesection_count(self, shortname: str) -> int:
        course = self.get_course(str(shortname))
        if course is None:
            return 0
        params = {
            'wsfunction': 'core_course_get_contents',
            'courseid': course['id'],
            'options[0][name]': 'excludemodules',
            'options[0][value]': 1,
        }
        sections = self.api.execute(requests.get, params) or []
        return len([s for s in sections if s.get('section', 0) > 0])

    def restore_course(self, course_id: int, source: Dict) -> bool:
        """
        Import the content of another course.  Backup files are not restored, see can_restore_backup_files.
        """
        if 'course_id' not in source:
            raise NotImplementedError("The web service cannot restore a backup file.")
        params = {
            'wsfunction': 'core_course_import_course',
            'importfrom': source['course_id'],
            'importto': course_id,
            'deletecontent': 0,
        }
        self.api.execute(requests.post, params, dryrun_result={})
        logger.info(f"Imported {source.get('shortname', source['course_id'])} into course {course_id}")
        return True

    def mark_dirty(self, course_id: int):
        # the course web service functions rebuild the course cache themselves.
        logger.debug(f"Course cache for {course_id} left to the web service")


class MoodleAPIEnrolmentProvider(MoodleEnrolmentProvider):

    def __init__(self, site, api_key):
        super().__init__()
        self.api = MoodleAPI(site, api_key)

    def get_enrol_instances(self, course_id: int) -> List[Dict]:
        """
        The web service only returns some of the columns: id, courseid, enrol, name and status.
        """
        params = {
            'wsfunction': 'core_enrol_get_course_enrolment_methods',
            'courseid': course_id,
        }
        data = self.api.execute(requests.get, params) or []
        return [{
            'id': method['id'],
            'courseid': method['courseid'],
            'enrol': method['type'],
            'name': method.get('name', ''),
            # the web service says true for enabled.
            'status': ENROL_INSTANCE_ENABLED if str(method.get('status')).lower() in ('1', 'true')
            else ENROL_INSTANCE_DISABLED,
        } for method in data]

    def find_user(self, field: str, value: str) -> Union[Dict, None]:
        # Moodle keeps usernames in lower case.
        if field == 'username':
            value = value.lower()
        return self.api.get_user(field, value)

    def enrol_user(self, course_id: int, user_id: int, role_id: int, timestart: int = 0, timeend: int = 0):
        params = {
            'wsfunction': 'enrol_manual_enrol_users',
            'enrolments[0][roleid]': role_id,
            'enrolments[0][userid]': user_id,
            'enrolments[0][courseid]': course_id,
            'enrolments[0][timestart]': timestart,
            'enrolments[0][timeend]': timeend,
        }
        self.api.execute(requests.post, params, dryrun_result='yes!')
        logger.info(f"User {user_id} enrolled in role {role_id} in course {course_id}")
