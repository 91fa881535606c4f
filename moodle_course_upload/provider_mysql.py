# file: moodle_course_upload/provider_mysql.py

import json
import re
import time
from typing import List, Dict, Union

import cryptography  # this is a non-included dependency package of pymysql
import pymysql

from moodle_course_upload.config import config
from moodle_course_upload.content import MoodleContentProvider
from moodle_course_upload.enrolment import MoodleEnrolmentProvider, ENROL_INSTANCE_ENABLED, \
    ENROL_INSTANCE_DISABLED, STUDENT_ROLE_ID
from moodle_course_upload.logger import logger
from moodle_course_upload.provider_moodleapi import MoodleAPICourseProvider

"""
Straight to the Moodle database.  Based on the Moodle 4.1 schema.

Lookups, enrolment methods, resets and the course content changes are done in SQL.
Creating, updating and deleting courses and categories goes through the web service, because Moodle
has to build the contexts, sections and default enrolment methods for those.
"""

CONTEXT_COURSE = 50
CONTEXT_MODULE = 70

identifier_re = re.compile(r'^[a-z][a-z0-9_]*$')


def table_name(name: str) -> str:
    # module names become table names.  Only plain identifiers get near the SQL.
    if not identifier_re.match(name):
        raise ValueError(f"Not a table name: {name}")
    return f"{config.db_prefix}{name}"


class Mysql:

    _instances = {}

    r"""
    Usage

        with Mysql(host, user, password, database) as mysql:
            result = mysql.select('SELECT * FROM your_table')
            print(result)

    or to manually deal with the connection ...
        mysql = Mysql(host, user, password, database)
        mysql.connect()
        result = mysql.select('SELECT * FROM your_table')
        mysql.close()

    A with block is one transaction.  Do not nest them: the inner one closes the connection.
    """

    def __new__(cls, host: str, database: str, user: str, password: str):
        """
        Implement a singleton pattern for the Mysql class that offers a single instance for each connection.
        Allows one connection for each host / user / db combination.
        """
        instance_id = f"{host}:{user}:{database}"
        if instance_id not in cls._instances:
            cls._instances[instance_id] = super(Mysql, cls).__new__(cls)
        return cls._instances[instance_id]

    def __init__(self, host: str, database: str, user: str, password: str):
        if getattr(self, '_initialized', False):
            # already initialized.
            return
        self.connection_parameters = {'host': host, 'user': user, 'password': password, 'database': database,
                                      'charset': 'utf8mb4'}
        self._connection = None
        self.columns = None
        self._initialized = True
        self.last_query = None
        self.last_params = None

    def connect(self, **connection_parameters):
        """
        Optionally updates any of the connection parameters on a new connection.
        Connection must be closed otherwise the existing connection will be returned.
        @param connection_parameters:  {'host': host, 'user': user, 'password': password, 'database': database}
        @return: the sql connection
        """
        self.connection_parameters.update(connection_parameters)
        if self._connection:
            try:
                self._connection.ping(reconnect=False)
                return self._connection
            except pymysql.Error:
                self._connection = None
        self._connection = pymysql.connect(**self.connection_parameters)
        return self._connection

    def close(self):
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        self.connect()
        self._connection.begin()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            # If no exception occurred, commit the transaction
            self._connection.commit()
        else:
            # If an exception occurred, rollback the transaction
            self._connection.rollback()
        self.close()

    def select(self, select: str, params: Union[Dict, tuple, None] = None) -> List[dict]:
        """
        result = instance.select("SELECT * from my_table WHERE column1 LIKE %s", ('%' + my_value + '%',))

        @param select: a string for the query
        @param params: query parameters to substitute in to the query. If it is a dict, use %(key)s placeholders.
            If it is a tuple, use %s placeholders.

        @return: a list of dicts of rows (rows with row headers as keys)
        """
        self.last_query = select
        self.last_params = params
        temp_connection = self._connection is None
        if temp_connection:
            self.connect()

        try:
            with self._connection.cursor() as cursor:
                cursor.execute(select, params)
                self.columns = [d[0] for d in cursor.description]
                result = cursor.fetchall()
        finally:
            if temp_connection:
                self.close()

        return [self.row_to_dict(row) for row in result]

    def _write(self, query: str, params, dryrun_result, last_id: bool):
        self.last_query = query
        self.last_params = params
        if config.debug:
            logger.debug(f"Query {query}")
            logger.debug("Params %s", params)
        if config.dryrun:
            return dryrun_result
        temp_connection = self._connection is None
        if temp_connection:
            self.connect()

        try:
            with self._connection.cursor() as cursor:
                if isinstance(params, list) and all(isinstance(i, tuple) for i in params):
                    cursor.executemany(query, params)
                else:
                    cursor.execute(query, params)
                result = cursor.lastrowid if last_id else cursor.rowcount
            if temp_connection:
                self._connection.commit()
        except pymysql.Error:
            self._connection.rollback()
            raise
        finally:
            if temp_connection:
                self.close()
        return result

    def query(self, query: str, params: Union[Dict, tuple, List[tuple], None] = None, dryrun_result=None) -> int:
        """
        Execute a SQL query with optional parameters
        :param params: optional dict or tuple of parameters.  A list of tuples uses executemany.
        :return: int (number of rows affected).  On error, will cause an exception.
            If a temporary connection, exception will cause a rollback.
        """
        return self._write(query, params, dryrun_result, last_id=False)

    def insert(self, query: str, params: Union[Dict, tuple, None] = None, dryrun_result=-1) -> int:
        """
        Like query, but return the id of the new row.
        """
        return self._write(query, params, dryrun_result, last_id=True)

    def row_to_dict(self, row: tuple) -> dict:
        return {x[0]: x[1] for x in zip(self.columns, row)}


class MoodleMySQLCourseProvider(MoodleAPICourseProvider):
    """
    Look courses up in the database, write them through the web service.
    """

    def __init__(self, site, api_key, host, user, password, database):
        super().__init__(site, api_key)
        self.mysql = Mysql(host=host, database=database, user=user, password=password)
        self.p = config.db_prefix
        self.custom_field_cache = None

    def get_course(self, shortname_or_id: Union[str, int]) -> Union[dict, None]:
        field = 'shortname' if type(shortname_or_id) is str else 'id'
        query = f"""
        SELECT
            c.id, c.shortname, c.fullname, c.idnumber, c.category, c.summary, c.summaryformat,
            c.format, c.showgrades, c.newsitems, c.startdate, c.enddate, c.visible, c.lang,
            c.enablecompletion, c.groupmode, c.maxbytes,
            cfo_n.value as numsections,
            cfo_h.value as hiddensections,
            cfo_d.value as coursedisplay,
            cfo_a.value as automaticenddate
        FROM {self.p}course c
        LEFT JOIN {self.p}course_format_options cfo_n ON c.id = cfo_n.courseid AND cfo_n.name = 'numsections'
            AND cfo_n.format = c.format AND cfo_n.sectionid = 0
        LEFT JOIN {self.p}course_format_options cfo_h ON c.id = cfo_h.courseid AND cfo_h.name = 'hiddensections'
            AND cfo_h.format = c.format AND cfo_h.sectionid = 0
        LEFT JOIN {self.p}course_format_options cfo_d ON c.id = cfo_d.courseid AND cfo_d.name = 'coursedisplay'
            AND cfo_d.format = c.format AND cfo_d.sectionid = 0
        LEFT JOIN {self.p}course_format_options cfo_a ON c.id = cfo_a.courseid AND cfo_a.name = 'automaticenddate'
            AND cfo_a.format = c.format AND cfo_a.sectionid = 0
        WHERE c.{field} = %s
        """
        courses = self.mysql.select(query, (shortname_or_id,))
        if not courses:
            return None
        course = courses[0]
        course['startdate'] = int(course['startdate'])
        course['enddate'] = int(course['enddate'])
        return course

    def count_courses_with_idnumber(self, idnumber: str, exclude_shortname: Union[str, None] = None) -> int:
        query = f"SELECT COUNT(*) AS n FROM {self.p}course WHERE idnumber = %s"
        params = [idnumber]
        if exclude_shortname is not None:
            query += " AND shortname <> %s"
            params.append(exclude_shortname)
        return int(self.mysql.select(query, tuple(params))[0]['n'])

    def get_highest_shortname(self, prefix: str, length: int) -> Union[str, None]:
        query = f"""
        SELECT MAX(shortname) AS lastusedshortname
        FROM {self.p}course
        WHERE SUBSTR(shortname, 1, %s) = %s
        AND CHAR_LENGTH(shortname) = %s
        """
        result = self.mysql.select(query, (len(prefix), prefix, length))
        return result[0]['lastusedshortname'] if result else None

    def get_category(self, category_id: int) -> Union[dict, None]:
        result = self.mysql.select(f"SELECT * FROM {self.p}course_categories WHERE id = %s", (category_id,))
        return result[0] if result else None

    def get_category_by_idnumber(self, idnumber: str) -> Union[dict, None]:
        result = self.mysql.select(f"SELECT * FROM {self.p}course_categories WHERE idnumber = %s", (idnumber,))
        return result[0] if result else None

    def find_categories(self, name: str, parent: Union[int, None] = None) -> List[Dict]:
        query = f"SELECT * FROM {self.p}course_categories WHERE name = %s"
        params = [name]
        if parent is not None:
            query += " AND parent = %s"
            params.append(parent)
        return self.mysql.select(query + " ORDER BY sortorder", tuple(params))

    def get_custom_fields(self) -> Dict[str, Dict]:
        if self.custom_field_cache is not None:
            return self.custom_field_cache
        query = f"""
        SELECT f.shortname, f.name, f.type, f.configdata
        FROM {self.p}customfield_field f
        JOIN {self.p}customfield_category cat ON f.categoryid = cat.id
        WHERE cat.component = 'core_course' AND cat.area = 'course'
        """
        fields = {}
        for row in self.mysql.select(query):
            configdata = json.loads(row['configdata'] or '{}')
            fields[row['shortname']] = {
                'shortname': row['shortname'],
                'name': row['name'],
                'type': row['type'],
                'required': str(configdata.get('required', '0')) == '1',
                'locked': str(configdata.get('locked', '0')) == '1',
                'default': configdata.get('defaultvalue', ''),
                'options': [o for o in str(configdata.get('options', '')).splitlines() if o],
            }
        self.custom_field_cache = fields
        return fields

    def get_coursesection_count(self, shortname: str) -> int:
        query = f"""
        SELECT COUNT(*) AS n
        FROM {self.p}course_sections cs
        JOIN {self.p}course c ON c.id = cs.course
        WHERE c.shortname = %s AND cs.section > 0
        """
        return int(self.mysql.select(query, (shortname,))[0]['n'])

    def get_course_context(self, course_id: int) -> Union[dict, None]:
        query = f"SELECT id, path FROM {self.p}context WHERE contextlevel = %s AND instanceid = %s"
        result = self.mysql.select(query, (CONTEXT_COURSE, course_id))
        return result[0] if result else None

    def reset_course(self, reset_data: Dict):
        """
        Remove the user data of a course: enrolments, roles, groups, groupings, grades, completion,
        events, notes, blog links and comments.  The activities stay.
        The course start moves to reset_start_date and the end date moves with it.
        """
        course_id = reset_data['id']
        context = self.get_course_context(course_id)
        if context is None:
            raise ValueError(f"No context for course {course_id}")
        p, ctx = self.p, context['id']
        children = context['path'] + '/%'

        statements = []
        if reset_data.get('reset_events'):
            statements.append((f"DELETE FROM {p}event WHERE courseid = %s", (course_id,)))
        if reset_data.get('reset_notes'):
            statements.append((f"DELETE FROM {p}post WHERE courseid = %s AND module = 'notes'", (course_id,)))
        if reset_data.get('delete_blog_associations'):
            statements.append((f"DELETE FROM {p}blog_association WHERE contextid = %s", (ctx,)))
        if reset_data.get('reset_completion'):
            statements.append((f"DELETE FROM {p}course_completions WHERE course = %s", (course_id,)))
            statements.append((f"DELETE FROM {p}course_completion_crit_compl WHERE course = %s", (course_id,)))
            statements.append((f"""
                DELETE cmc FROM {p}course_modules_completion cmc
                JOIN {p}course_modules cm ON cm.id = cmc.coursemoduleid
                WHERE cm.course = %s""", (course_id,)))
        if reset_data.get('reset_roles_overrides'):
            statements.append((f"""
                DELETE rc FROM {p}role_capabilities rc
                JOIN {p}context x ON x.id = rc.contextid
                WHERE x.id = %s OR x.path LIKE %s""", (ctx, children)))
        if reset_data.get('reset_roles_local'):
            statements.append((f"""
                DELETE ra FROM {p}role_assignments ra
                JOIN {p}context x ON x.id = ra.contextid
                WHERE x.path LIKE %s""", (children,)))
        if reset_data.get('reset_groups_members') or reset_data.get('reset_groups_remove'):
            statements.append((f"""
                DELETE gm FROM {p}groups_members gm
                JOIN {p}groups g ON g.id = gm.groupid
                WHERE g.courseid = %s""", (course_id,)))
        if reset_data.get('reset_groupings_members') or reset_data.get('reset_groupings_remove'):
            statements.append((f"""
                DELETE gg FROM {p}groupings_groups gg
                JOIN {p}groupings gr ON gr.id = gg.groupingid
                WHERE gr.courseid = %s""", (course_id,)))
        if reset_data.get('reset_groups_remove'):
            statements.append((f"DELETE FROM {p}groups WHERE courseid = %s", (course_id,)))
        if reset_data.get('reset_groupings_remove'):
            statements.append((f"DELETE FROM {p}groupings WHERE courseid = %s", (course_id,)))
        if reset_data.get('reset_gradebook_grades') or reset_data.get('reset_gradebook_items'):
            statements.append((f"""
                DELETE gg FROM {p}grade_grades gg
                JOIN {p}grade_items gi ON gi.id = gg.itemid
                WHERE gi.courseid = %s""", (course_id,)))
        if reset_data.get('reset_gradebook_items'):
            statements.append((f"DELETE FROM {p}grade_items WHERE courseid = %s AND itemtype = 'manual'",
                               (course_id,)))
        if reset_data.get('reset_comments'):
            statements.append((f"""
                DELETE cm FROM {p}comments cm
                JOIN {p}context x ON x.id = cm.contextid
                WHERE x.id = %s OR x.path LIKE %s""", (ctx, children)))

        roles = [role for role in reset_data.get('unenrol_users', []) if role]
        if roles:
            placeholders = ', '.join(['%s'] * len(roles))
            statements.append((f"DELETE FROM {p}role_assignments WHERE contextid = %s AND roleid IN ({placeholders})",
                               (ctx, *roles)))
        if 0 in reset_data.get('unenrol_users', []) or roles:
            # users left without a role in the course go.  With role 0 in the list that is everybody unassigned.
            statements.append((f"""
                DELETE ue FROM {p}user_enrolments ue
                JOIN {p}enrol e ON e.id = ue.enrolid
                WHERE e.courseid = %s
                AND NOT EXISTS (SELECT 1 FROM {p}role_assignments ra WHERE ra.contextid = %s AND ra.userid = ue.userid)
                """, (course_id, ctx)))

        if reset_data.get('reset_start_date'):
            shift = int(reset_data['reset_start_date']) - int(reset_data.get('reset_start_date_old') or 0)
            statements.append((f"""
                UPDATE {p}course
                SET startdate = %s, enddate = IF(enddate > 0, enddate + %s, 0), timemodified = UNIX_TIMESTAMP()
                WHERE id = %s""", (reset_data['reset_start_date'], shift, course_id)))

        with self.mysql as conn:
            for query, params in statements:
                conn.query(query, params)
        logger.info(f"Course {course_id} reset: {len(statements)} statements")

    def mark_dirty(self, course_id: int):
        """
        Bump the course cache revision and flag the course context dirty, the way Moodle does.
        """
        context = self.get_course_context(course_id)
        now = int(time.time())
        with self.mysql as conn:
            conn.query(f"UPDATE {self.p}course SET cacherev = GREATEST(cacherev + 1, %s) WHERE id = %s",
                       (now, course_id))
            if context:
                changed = conn.query(f"""
                    UPDATE {self.p}cache_flags SET value = 1, expiry = %s, timemodified = %s
                    WHERE flagtype = 'accesslib/dirtycontexts' AND name = %s""",
                                     (now + 7200, now, context['path']), dryrun_result=1)
                if not changed:
                    conn.query(f"""
                        INSERT INTO {self.p}cache_flags (flagtype, name, value, expiry, timemodified)
                        VALUES ('accesslib/dirtycontexts', %s, 1, %s, %s)""", (context['path'], now + 7200, now))


class MoodleMySQLEnrolmentProvider(MoodleEnrolmentProvider):

    # mdl_enrol columns that update_instance writes.
    instance_fields = [
        'status', 'name', 'enrolperiod', 'enrolstartdate', 'enrolenddate', 'expirynotify', 'expirythreshold',
        'notifyall', 'password', 'cost', 'currency', 'roleid', 'customint1', 'customint2', 'customint3',
        'customint4', 'customint5', 'customint6', 'customint7', 'customint8', 'customchar1', 'customchar2',
        'customchar3', 'customdec1', 'customdec2', 'customtext1', 'customtext2', 'customtext3', 'customtext4',
        'timemodified',
    ]

    # what a new instance of each plugin starts with.
    instance_defaults = {
        'manual': {'status': ENROL_INSTANCE_ENABLED, 'roleid': STUDENT_ROLE_ID, 'expirythreshold': 86400},
        'self': {'status': ENROL_INSTANCE_DISABLED, 'roleid': STUDENT_ROLE_ID, 'expirythreshold': 86400,
                 'customint1': 0, 'customint2': 0, 'customint3': 0, 'customint4': 1, 'customint5': 0,
                 'customint6': 1},
        'guest': {'status': ENROL_INSTANCE_DISABLED, 'password': ''},
    }

    def __init__(self, host, user, password, database):
        super().__init__()
        self.mysql = Mysql(host=host, database=database, user=user, password=password)
        self.p = config.db_prefix
        self.role_ids = None

    def get_role_ids(self) -> Dict[str, int]:
        if self.role_ids is None:
            rows = self.mysql.select(f"SELECT id, shortname FROM {self.p}role")
            self.role_ids = {row['shortname']: row['id'] for row in rows}
        return self.role_ids

    def get_enrol_instances(self, course_id: int) -> List[Dict]:
        query = f"SELECT * FROM {self.p}enrol WHERE courseid = %s ORDER BY sortorder, id"
        return self.mysql.select(query, (course_id,))

    def _get_instance(self, instance_id: int) -> Union[Dict, None]:
        result = self.mysql.select(f"SELECT * FROM {self.p}enrol WHERE id = %s", (instance_id,))
        return result[0] if result else None

    def add_default_instance(self, course_id: int, method: str) -> Dict:
        values = dict(self.instance_defaults.get(method, {'status': ENROL_INSTANCE_ENABLED}))
        result = self.mysql.select(f"SELECT COALESCE(MAX(sortorder), -1) + 1 AS next FROM {self.p}enrol "
                                   f"WHERE courseid = %s", (course_id,))
        now = int(time.time())
        values.update({'enrol': method, 'courseid': course_id, 'sortorder': int(result[0]['next']),
                       'timecreated': now, 'timemodified': now})

        columns = ', '.join(values)
        placeholders = ', '.join(['%s'] * len(values))
        instance_id = self.mysql.insert(f"INSERT INTO {self.p}enrol ({columns}) VALUES ({placeholders})",
                                        tuple(values.values()))
        logger.info(f"Enrolment method {method} added to course {course_id}: id {instance_id}")
        return self._get_instance(instance_id) or dict(values, id=instance_id)

    def update_instance(self, instance: Dict):
        fields = [field for field in self.instance_fields if field in instance]
        if not fields:
            return
        assignments = ', '.join(f"{field} = %s" for field in fields)
        params = tuple(instance[field] for field in fields) + (instance['id'],)
        self.mysql.query(f"UPDATE {self.p}enrol SET {assignments} WHERE id = %s", params)

    def delete_instance(self, instance: Dict):
        with self.mysql as conn:
            conn.query(f"DELETE FROM {self.p}user_enrolments WHERE enrolid = %s", (instance['id'],))
            conn.query(f"DELETE FROM {self.p}role_assignments WHERE component = %s AND itemid = %s",
                       (f"enrol_{instance['enrol']}", instance['id']))
            conn.query(f"DELETE FROM {self.p}enrol WHERE id = %s", (instance['id'],))

    def find_user(self, field: str, value: str) -> Union[Dict, None]:
        comparisons = {
            'username': 'UPPER(username) = UPPER(%s)',
            'idnumber': 'UPPER(idnumber) = UPPER(%s)',
            'email': 'LOWER(email) = LOWER(%s)',
            'id': 'id = %s',
        }
        if field not in comparisons:
            raise ValueError(f"Cannot find users by {field}")
        query = f"SELECT id, username, idnumber, email, firstname, lastname FROM {self.p}user " \
                f"WHERE {comparisons[field]} AND deleted = 0 ORDER BY id LIMIT 1"
        result = self.mysql.select(query, (value,))
        return result[0] if result else None

    def enrol_user(self, course_id: int, user_id: int, role_id: int, timestart: int = 0, timeend: int = 0):
        # First, ensure the user is enrolled in the course
        enrol_query = f"""
        INSERT IGNORE INTO {self.p}user_enrolments
            (status, enrolid, userid, timestart, timeend, modifierid, timecreated, timemodified)
        SELECT 0, e.id, %s, %s, %s, 2, UNIX_TIMESTAMP(), UNIX_TIMESTAMP()
        FROM {self.p}enrol e
        WHERE e.courseid = %s AND e.enrol = 'manual'
        ORDER BY e.sortorder
        LIMIT 1
        """

        # Then, assign the role
        role_query = f"""
        INSERT IGNORE INTO {self.p}role_assignments (roleid, contextid, userid, timemodified, modifierid)
        SELECT %s, ctx.id, %s, UNIX_TIMESTAMP(), 2
        FROM {self.p}context ctx
        WHERE ctx.contextlevel = {CONTEXT_COURSE} AND ctx.instanceid = %s
        """

        with self.mysql as conn:
            enrol_cnt = conn.query(enrol_query, (user_id, timestart, timeend, course_id))
            role_cnt = conn.query(role_query, (role_id, user_id, course_id))
        if enrol_cnt == 0 and not config.dryrun:
            logger.warning(f"Course {course_id} has no manual enrolment method.  User {user_id} not enrolled.")
        logger.debug(f"User {user_id} enrolled in course {course_id} role {role_id}: {enrol_cnt} {role_cnt}")
        return {"user_id": user_id, "course_id": course_id, "role_id": role_id,
                "num_new_enrols": enrol_cnt, "num_roles_added": role_cnt}


class MoodleMySQLContentProvider(MoodleContentProvider):
    """
    Sections, course modules and activities in SQL.
    """

    # the plugin the express course id gets stored for.
    config_plugin = 'local_createcourse'

    section_fields = ['name', 'summary', 'summaryformat', 'visible', 'availability']
    course_module_fields = ['visible', 'visibleoncoursepage', 'availability', 'idnumber']

    def __init__(self, host, user, password, database):
        super().__init__()
        self.mysql = Mysql(host=host, database=database, user=user, password=password)
        self.p = config.db_prefix
        self.module_ids = {}  # module name -> id

    def get_module_id(self, module_name: str) -> Union[int, None]:
        if module_name not in self.module_ids:
            result = self.mysql.select(f"SELECT id FROM {self.p}modules WHERE name = %s", (module_name,))
            self.module_ids[module_name] = result[0]['id'] if result else None
        return self.module_ids[module_name]

    def get_section(self, course_id: int, section: Union[int, None] = None,
                    name: Union[str, None] = None) -> Union[Dict, None]:
        if section is not None:
            where, value = 'section = %s', section
        elif name is not None:
            where, value = 'name = %s', name
        else:
            raise ValueError("get_section needs a section number or a name")
        query = f"SELECT * FROM {self.p}course_sections WHERE course = %s AND {where} ORDER BY section LIMIT 1"
        result = self.mysql.select(query, (course_id, value))
        return result[0] if result else None

    def update_section(self, course_id: int, section: Dict, values: Dict):
        fields = [field for field in self.section_fields if field in values]
        if not fields:
            return
        assignments = ', '.join(f"{field} = %s" for field in fields)
        params = tuple(values[field] for field in fields) + (section['id'], course_id)
        self.mysql.query(f"UPDATE {self.p}course_sections SET {assignments}, timemodified = UNIX_TIMESTAMP() "
                         f"WHERE id = %s AND course = %s", params)

    def get_course_modules(self, course_id: int, module: Union[str, int]) -> List[Dict]:
        query = f"""
        SELECT cm.*, m.name AS modname
        FROM {self.p}course_modules cm
        JOIN {self.p}modules m ON m.id = cm.module
        WHERE cm.course = %s AND {'m.name' if isinstance(module, str) else 'm.id'} = %s
        ORDER BY cm.id
        """
        return self.mysql.select(query, (course_id, module))

    def _move_to_section(self, course_id: int, cm: Dict, section_number: int):
        target = self.get_section(course_id, section=section_number)
        if target is None or target['id'] == cm['section']:
            return
        source = self.mysql.select(f"SELECT id, sequence FROM {self.p}course_sections WHERE id = %s",
                                   (cm['section'],))
        with self.mysql as conn:
            if source:
                sequence = [s for s in str(source[0]['sequence'] or '').split(',') if s and s != str(cm['id'])]
                conn.query(f"UPDATE {self.p}course_sections SET sequence = %s WHERE id = %s",
                           (','.join(sequence), source[0]['id']))
            sequence = [s for s in str(target['sequence'] or '').split(',') if s] + [str(cm['id'])]
            conn.query(f"UPDATE {self.p}course_sections SET sequence = %s WHERE id = %s",
                       (','.join(sequence), target['id']))
            conn.query(f"UPDATE {self.p}course_modules SET section = %s WHERE id = %s", (target['id'], cm['id']))

    def update_course_module(self, course_id: int, cm: Dict, values: Dict):
        """
        values mixes course module settings (visible, availability, section number) with activity settings
        (name, intro, ...).  modulename says which activity table.
        """
        values = dict(values)
        module_name = values.pop('modulename', cm.get('modname'))
        if 'section' in values:
            self._move_to_section(course_id, cm, values.pop('section'))

        cm_fields = [field for field in self.course_module_fields if field in values]
        if cm_fields:
            assignments = ', '.join(f"{field} = %s" for field in cm_fields)
            self.mysql.query(f"UPDATE {self.p}course_modules SET {assignments} WHERE id = %s",
                             tuple(values[field] for field in cm_fields) + (cm['id'],))

        instance_values = {k: v for k, v in values.items() if k not in self.course_module_fields}
        if instance_values:
            self.update_module_instance(module_name, cm['instance'], instance_values)

    def create_module(self, course_id: int, module_name: str, values: Dict) -> int:
        """
        Add an activity: the activity row, its course module, its place in the section and its context.
        :return: the course module id
        """
        values = dict(values)
        section_number = values.pop('section', 0)
        cm_values = {
            'visible': values.pop('visible', 1),
            'visibleoncoursepage': values.pop('visibleoncoursepage', 1),
            'idnumber': values.pop('cmidnumber', ''),
        }
        section = self.get_section(course_id, section=section_number)
        if section is None:
            raise ValueError(f"Course {course_id} has no section {section_number}")
        module_id = self.get_module_id(module_name)
        if module_id is None:
            raise ValueError(f"Module {module_name} is not installed")
        course_context = self.mysql.select(
            f"SELECT id, path, depth FROM {self.p}context WHERE contextlevel = %s AND instanceid = %s",
            (CONTEXT_COURSE, course_id))

        instance = dict(values, course=course_id, timemodified=int(time.time()))
        columns = ', '.join(instance)
        placeholders = ', '.join(['%s'] * len(instance))
        with self.mysql as conn:
            instance_id = conn.insert(f"INSERT INTO {table_name(module_name)} ({columns}) VALUES ({placeholders})",
                                      tuple(instance.values()))
            cm_id = conn.insert(f"""
                INSERT INTO {self.p}course_modules
                    (course, module, instance, section, idnumber, visible, visibleoncoursepage, added)
                VALUES (%s, %s, %s, %s, %s, %s, %s, UNIX_TIMESTAMP())""",
                                (course_id, module_id, instance_id, section['id'], cm_values['idnumber'],
                                 cm_values['visible'], cm_values['visibleoncoursepage']))
            sequence = [s for s in str(section['sequence'] or '').split(',') if s] + [str(cm_id)]
            conn.query(f"UPDATE {self.p}course_sections SET sequence = %s WHERE id = %s",
                       (','.join(sequence), section['id']))
            if course_context:
                parent = course_context[0]
                context_id = conn.insert(
                    f"INSERT INTO {self.p}context (contextlevel, instanceid, depth) VALUES (%s, %s, %s)",
                    (CONTEXT_MODULE, cm_id, int(parent['depth']) + 1))
                conn.query(f"UPDATE {self.p}context SET path = %s WHERE id = %s",
                           (f"{parent['path']}/{context_id}", context_id))
        logger.info(f"Created {module_name} {instance_id} (course module {cm_id}) in course {course_id}")
        return cm_id

    def delete_course_module(self, cm_id: int):
        result = self.mysql.select(f"""
            SELECT cm.id, cm.instance, cm.section, m.name AS modname, cs.sequence
            FROM {self.p}course_modules cm
            JOIN {self.p}modules m ON m.id = cm.module
            LEFT JOIN {self.p}course_sections cs ON cs.id = cm.section
            WHERE cm.id = %s""", (cm_id,))
        if not result:
            return
        cm = result[0]
        sequence = [s for s in str(cm['sequence'] or '').split(',') if s and s != str(cm_id)]
        with self.mysql as conn:
            conn.query(f"DELETE FROM {table_name(cm['modname'])} WHERE id = %s", (cm['instance'],))
            conn.query(f"DELETE FROM {self.p}course_modules WHERE id = %s", (cm_id,))
            conn.query(f"DELETE FROM {self.p}context WHERE contextlevel = %s AND instanceid = %s",
                       (CONTEXT_MODULE, cm_id))
            conn.query(f"UPDATE {self.p}course_sections SET sequence = %s WHERE id = %s",
                       (','.join(sequence), cm['section']))
        logger.info(f"Deleted {cm['modname']} course module {cm_id}")

    def get_module_instance(self, module_name: str, course_id: int) -> Union[Dict, None]:
        result = self.mysql.select(f"SELECT * FROM {table_name(module_name)} WHERE course = %s ORDER BY id LIMIT 1",
                                   (course_id,))
        return result[0] if result else None

    def update_module_instance(self, module_name: str, instance_id: int, values: Dict):
        for field in values:
            if not identifier_re.match(field):
                raise ValueError(f"Not a column name: {field}")
        assignments = ', '.join(f"{field} = %s" for field in values)
        self.mysql.query(f"UPDATE {table_name(module_name)} SET {assignments} WHERE id = %s",
                         tuple(values.values()) + (instance_id,))

    def get_course_grade_item(self, course_id: int) -> Union[Dict, None]:
        result = self.mysql.select(f"SELECT * FROM {self.p}grade_items WHERE courseid = %s AND itemtype = 'course'",
                                   (course_id,))
        return result[0] if result else None

    def get_express_description(self, description: str) -> Union[Dict, None]:
        result = self.mysql.select(f"SELECT * FROM {self.p}fe_description WHERE description = %s", (description,))
        return result[0] if result else None

    def get_express_target(self, role: str) -> Union[Dict, None]:
        result = self.mysql.select(f"SELECT * FROM {self.p}fe_target WHERE rol = %s", (role,))
        return result[0] if result else None

    def set_plugin_config(self, name: str, value):
        self.mysql.query(f"""
            INSERT INTO {self.p}config_plugins (plugin, name, value) VALUES (%s, %s, %s)
            ON DUPLICATE KEY UPDATE value = VALUES(value)""", (self.config_plugin, name, str(value)))

    def rebuild_course_cache(self, course_id: int):
        self.mysql.query(f"UPDATE {self.p}course SET cacherev = GREATEST(cacherev + 1, UNIX_TIMESTAMP()) "
                         f"WHERE id = %s", (course_id,))
