# file: moodle_course_upload/helper.py

import os
import re
import tarfile
import zipfile
from typing import List, Dict, Callable, Union

from moodle_course_upload.errors import RowError
from moodle_course_upload.logger import logger
from moodle_course_upload import util

"""
Row helpers shared by the course import and the batch processor.

None of these talk to Moodle directly.  Anything that needs to look something up gets the provider
(or a lookup function) passed in, so they can be tested against plain dicts.
"""

shortname_template_re = re.compile(r'(?<!%)%([+~-])?(\d)?([fi])')
numeric_suffix_re = re.compile(r'(.*?)([0-9]+)$')
enrolment_column_re = re.compile(r'^enrolment_(\d+)(_(.+))?$')
role_column_re = re.compile(r'^role_(.+)?$')
customfield_column_re = re.compile(r'^customfield_(?P<name>.*)?$')


def generate_shortname(data: Dict, template: Union[str, None]) -> Union[str, None]:
    """
    Build a shortname out of a template.

        %f  the fullname        %i  the idnumber
        %+f upper case   %-f lower case   %~f title case
        %5f only the first 5 characters, one digit at most.  Flags and length combine: %+5i

    A template without any % is returned as is.  %% stays as it is.

    :param data: the course data.  Uses fullname and idnumber.
    :param template: str: the shortname template
    :return: the shortname, or None if the result is empty.
    """
    if template is None or template == '':
        return None
    if '%' not in template:
        return template

    fullname = data.get('fullname') or ''
    idnumber = data.get('idnumber') or ''

    def replace(block: re.Match) -> str:
        case_flag, length, field = block.group(1), block.group(2), block.group(3)
        value = fullname if field == 'f' else idnumber
        if case_flag == '+':
            value = value.upper()
        elif case_flag == '-':
            value = value.lower()
        elif case_flag == '~':
            value = value.title()
        if length:
            value = value[:int(length)]
        return value

    result = util.clean_text(shortname_template_re.sub(replace, template))
    return result if result != '' else None


def increment_shortname(shortname: str, exists: Callable[[str], bool]) -> str:
    """
    Bump the numeric suffix of a shortname until it is free.
    The suffix is zero padded to 3 digits.  No numeric suffix gets '_2' appended.

        'EXPRES-ACC-104' -> 'EXPRES-ACC-105'
        'EXPRES-ACC-7'   -> 'EXPRES-ACC-008'
        'EXPRES'         -> 'EXPRES_2' -> 'EXPRES_003'

    :param shortname: the last used shortname
    :param exists: function telling whether a shortname is in use
    :return: the first free increment.  Always different from the shortname passed in.
    """
    while True:
        matches = numeric_suffix_re.match(shortname)
        if not matches:
            shortname = shortname + '_2'
        else:
            shortname = matches.group(1) + str(int(matches.group(2)) + 1).zfill(3)
        if not exists(shortname):
            return shortname


def increment_idnumber(idnumber: str, in_use: Callable[[str], bool]) -> str:
    """
    Bump the numeric suffix of an ID number (no padding) until it is free.
    Returns the idnumber unchanged if it is not in use.
    """
    while in_use(idnumber):
        matches = numeric_suffix_re.match(idnumber)
        if not matches:
            idnumber = idnumber + '_2'
        else:
            idnumber = matches.group(1) + str(int(matches.group(2)) + 1)
    return idnumber


def resolve_category(data: Dict, courses) -> Union[int, None]:
    """
    Find the category id from the row.  Tries category (an id), category_idnumber, then category_path.
    :param data: the raw row
    :param courses: a MoodleCourseProvider
    :return: int category id, or None if the row names no category at all.
    :raises RowError: when a category column is given but matches nothing.
    """
    category_id, error_codes = None, []

    if not util.is_blank(data.get('category')):
        category = courses.get_category(int(data['category'])) if str(data['category']).isdigit() else None
        if category:
            category_id = category['id']
        else:
            error_codes.append('couldnotresolvecatgorybyid')

    if category_id is None and not util.is_blank(data.get('category_idnumber')):
        category_id = resolve_category_by_idnumber(data['category_idnumber'], courses)
        if category_id is None:
            error_codes.append('couldnotresolvecatgorybyidnumber')

    if category_id is None and not util.is_blank(data.get('category_path')):
        category_id = resolve_category_by_path(data['category_path'].split(' / '), courses)
        if category_id is None:
            error_codes.append('couldnotresolvecatgorybypath')

    # a bad category column fails the row even when a later column resolves.
    if error_codes:
        raise RowError(error_codes[0])
    return category_id


def resolve_category_by_idnumber(idnumber: str, courses) -> Union[int, None]:
    category = courses.get_category_by_idnumber(idnumber)
    return category['id'] if category else None


def resolve_category_by_path(path: List[str], courses) -> Union[int, None]:
    """
    Walk a category path from the top.  Two sibling categories with the same name count as not found.
    :param path: ['Top', 'Middle', 'Leaf']
    """
    parent, category_id = 0, None
    for name in path:
        if name == '':
            break
        matches = courses.find_categories(name, parent)
        if len(matches) != 1:
            if len(matches) > 1:
                logger.debug(f"Category path ambiguous at {name}: {len(matches)} matches")
            return None
        category_id = parent = matches[0]['id']
    return category_id


def get_role_names(data: Dict, role_ids: Dict[str, int]) -> Dict[str, str]:
    """
    Role renames from role_<shortname> columns, keyed the way Moodle wants them: role_<roleid>.
    :raises RowError: invalidroles, listing every unknown role shortname.
    """
    rolenames, invalid = {}, []
    for field, value in data.items():
        matches = role_column_re.match(field)
        if not matches:
            continue
        shortname = matches.group(1)
        if shortname not in role_ids:
            invalid.append(str(shortname))
            continue
        rolenames[f'role_{role_ids[shortname]}'] = value
    if invalid:
        raise RowError('invalidroles', a=', '.join(invalid))
    return rolenames


def parse_custom_field_value(field: Dict, value: str):
    """
    Turn the CSV text into what the custom field stores.
    """
    field_type = field.get('type', 'text')
    if field_type == 'checkbox':
        return 1 if str(value).strip().lower() in ('1', 'y', 'yes', 'true', 'on') else 0
    if field_type == 'date':
        try:
            return util.to_timestamp(value)
        except ValueError:
            return 0
    if field_type == 'select':
        options = field.get('options', [])
        return options.index(value) + 1 if value in options else 0
    return value


def get_custom_course_field_data(data: Dict, defaults: Dict, fields: Dict[str, Dict],
                                 can_change_locked: bool = True) -> Dict:
    """
    Custom course field values from customfield_<shortname> columns.

    :param data: the raw row
    :param defaults: default values, keyed customfield_<shortname>
    :param fields: the site's custom course fields, keyed on shortname.
        Each a dict with shortname, name, type, locked, required, default and for select fields options.
    :param can_change_locked: if False, locked fields are skipped.
    :return: dict of customfield_<shortname> -> value
    :raises RowError: customfieldinvalid
    """
    result = {}
    for name, original in data.items():
        matches = customfield_column_re.match(name)
        if not matches or matches.group('name') not in fields:
            continue
        field = fields[matches.group('name')]
        if field.get('locked') and not can_change_locked:
            continue

        default = defaults.get(f"customfield_{field['shortname']}", field.get('default'))
        value = default if util.is_blank(original) else parse_custom_field_value(field, original)
        # a value that parses to nothing falls back to the default.
        if not util.is_blank(original) and not value:
            value = default

        if field.get('required') and util.is_blank(value):
            raise RowError('customfieldinvalid', a=field.get('name', field['shortname']))
        result[f"customfield_{field['shortname']}"] = value
    return result


def get_enrolment_data(data: Dict, plugins: List[str]) -> Dict[str, Dict]:
    """
    Collect enrolment methods out of the flattened columns:

        enrolment_1 = self, enrolment_1_role = student, enrolment_1_enrolperiod = 2 weeks

    becomes {'self': {'role': 'student', 'enrolperiod': '2 weeks'}}.
    Methods that are not installed on the site are dropped.
    """
    methods, options = {}, {}
    for field, value in data.items():
        matches = enrolment_column_re.match(field)
        if not matches:
            continue
        key = matches.group(1)
        options.setdefault(key, {})
        if not matches.group(3):
            methods[key] = value
        else:
            options[key][matches.group(3)] = value

    enrolment_data = {}
    for key, method in methods.items():
        if method not in plugins:
            logger.debug(f"Ignoring enrolment method not on the site: {method}")
            continue
        enrolment_data[method] = options[key]
    return enrolment_data


def get_restore_source(courses, backupfile: Union[str, None] = None,
                       shortname: Union[str, None] = None) -> Union[Dict, None]:
    """
    Work out where course content gets restored from.

    :param courses: a MoodleCourseProvider
    :param backupfile: path to an .mbz backup file.  Wins over the shortname.
    :param shortname: shortname of an existing course to import content from.
    :return: {'backupfile': path} or {'course_id': id, 'shortname': shortname}, None when there is nothing.
    :raises RowError: cannotreadbackupfile, invalidbackupfile, coursetorestorefromdoesnotexist
    """
    if not util.is_blank(backupfile):
        path = os.path.realpath(backupfile)
        if not os.path.isfile(path) or not os.access(path, os.R_OK):
            raise RowError('cannotreadbackupfile')
        if not (zipfile.is_zipfile(path) or tarfile.is_tarfile(path)):
            raise RowError('invalidbackupfile')
        return {'backupfile': path}

    if not util.is_blank(shortname):
        course = courses.get_course(str(shortname))
        if not course:
            raise RowError('coursetorestorefromdoesnotexist')
        return {'course_id': course['id'], 'shortname': course['shortname']}

    return None
