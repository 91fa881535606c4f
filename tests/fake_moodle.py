# file: tests/fake_moodle.py

import copy
from typing import List, Dict, Union

from moodle_course_upload.content import MoodleContentProvider, certificate_section_name
from moodle_course_upload.course import MoodleCourseProvider
from moodle_course_upload.enrolment import MoodleEnrolmentProvider, ENROL_INSTANCE_ENABLED, \
    ENROL_INSTANCE_DISABLED, STUDENT_ROLE_ID

"""
An in-memory Moodle site.  Every provider call is recorded so the tests can check what was asked for.

    site = FakeMoodle()
    course = CourseImport(..., courses=site.courses, enrolments=site.enrolments, content=site.content)

The site comes with a front page (course 1), a category tree, the four template courses and a few users.
Course modules keep the section number in 'section' instead of the section id.
"""

module_ids = {'feedback': 7, 'forum': 9, 'label': 12, 'lti': 15, 'certificate': 23}


class FakeCourseProvider(MoodleCourseProvider):

    def __init__(self, site):
        self.site = site
        self.courses = {}
        self.categories = {}
        self.next_course_id = 100
        self.next_category_id = 100
        self.created = []
        self.updates = []
        self.deleted = []
        self.restores = []
        self.resets = []
        self.dirty = []
        self.created_categories = []
        self.fail_on = {}   # shortname -> exception that create_course raises
        self.backup_restores = True

    def add_category(self, category_id: int, name: str, parent: int = 0, idnumber: str = ''):
        self.categories[category_id] = {'id': category_id, 'name': name, 'parent': parent, 'idnumber': idnumber,
                                        'description': ''}

    def add_course(self, **course) -> int:
        course_id = course.pop('id', None)
        if course_id is None:
            course_id = self.next_course_id
            self.next_course_id += 1
        defaults = {'id': course_id, 'shortname': '', 'fullname': '', 'idnumber': '', 'category': 1, 'summary': '',
                    'format': 'topics', 'startdate': 0, 'enddate': 0, 'visible': 1, 'lang': '',
                    'enablecompletion': 0}
        self.courses[course_id] = dict(defaults, **course)
        return course_id

    def get_course(self, shortname_or_id: Union[str, int]) -> Union[dict, None]:
        if isinstance(shortname_or_id, int):
            course = self.courses.get(shortname_or_id)
        else:
            course = next((c for c in self.courses.values() if c['shortname'] == shortname_or_id), None)
        return copy.deepcopy(course) if course else None

    def count_courses_with_idnumber(self, idnumber: str, exclude_shortname: Union[str, None] = None) -> int:
        return len([c for c in self.courses.values()
                    if c['idnumber'] == idnumber and c['shortname'] != exclude_shortname])

    def get_highest_shortname(self, prefix: str, length: int) -> Union[str, None]:
        shortnames = [c['shortname'] for c in self.courses.values()
                      if c['shortname'].startswith(prefix) and len(c['shortname']) == length]
        return max(shortnames) if shortnames else None

    def create_course(self, course: Dict) -> int:
        if course.get('shortname') in self.fail_on:
            raise self.fail_on[course['shortname']]
        course_id = self.add_course(**{k: v for k, v in course.items() if k != 'id'})
        self.created.append(course_id)
        for number in range(int(course.get('numsections') or 0) + 1):
            self.site.content.add_section(course_id, number)
        self.site.enrolments.add_instance(course_id, 'manual', status=ENROL_INSTANCE_ENABLED)
        self.site.enrolments.add_instance(course_id, 'self', status=ENROL_INSTANCE_DISABLED)
        return course_id

    def update_course(self, course: Dict):
        self.updates.append(dict(course))
        self.courses[course['id']].update(course)

    def delete_course(self, course_id: int) -> bool:
        self.deleted.append(course_id)
        return self.courses.pop(course_id, None) is not None

    def get_category(self, category_id: int) -> Union[dict, None]:
        category = self.categories.get(category_id)
        return dict(category) if category else None

    def get_category_by_idnumber(self, idnumber: str) -> Union[dict, None]:
        return next((dict(c) for c in self.categories.values() if c['idnumber'] == idnumber), None)

    def find_categories(self, name: str, parent: Union[int, None] = None) -> List[Dict]:
        return [dict(c) for c in sorted(self.categories.values(), key=lambda c: c['id'])
                if c['name'] == name and (parent is None or c['parent'] == parent)]

    def create_category(self, name: str, parent: int = 0, description: str = '') -> int:
        category_id = self.next_category_id
        self.next_category_id += 1
        self.add_category(category_id, name, parent)
        self.categories[category_id]['description'] = description
        self.created_categories.append(dict(self.categories[category_id]))
        return category_id

    def get_coursesection_count(self, shortname: str) -> int:
        course = self.get_course(str(shortname))
        if course is None:
            return 0
        return len([s for s in self.site.content.sections if s['course'] == course['id'] and s['section'] > 0])

    def can_restore_backup_files(self) -> bool:
        return self.backup_restores

    def restore_course(self, course_id: int, source: Dict) -> bool:
        self.restores.append((course_id, dict(source)))
        if 'course_id' in source:
            self.site.content.copy_course(source['course_id'], course_id)
        return True

    def reset_course(self, reset_data: Dict):
        self.resets.append(dict(reset_data))

    def mark_dirty(self, course_id: int):
        self.dirty.append(course_id)


class FakeEnrolmentProvider(MoodleEnrolmentProvider):

    def __init__(self):
        self.instances = []
        self.next_instance_id = 1
        self.users = []
        self.enrolled = []
        self.updates = []
        self.deleted = []

    def add_instance(self, course_id: int, method: str, **values) -> Dict:
        instance = {'id': self.next_instance_id, 'enrol': method, 'courseid': course_id,
                    'status': ENROL_INSTANCE_ENABLED, 'name': '', 'roleid': STUDENT_ROLE_ID, 'enrolperiod': 0,
                    'enrolstartdate': 0, 'enrolenddate': 0, 'customint3': 0, 'customtext1': ''}
        instance.update(values)
        self.next_instance_id += 1
        self.instances.append(instance)
        return instance

    def instance(self, course_id: int, method: str) -> Union[Dict, None]:
        return next((i for i in self.instances if i['courseid'] == course_id and i['enrol'] == method), None)

    def add_user(self, user_id: int, username: str, idnumber: str = '', email: str = ''):
        self.users.append({'id': user_id, 'username': username, 'idnumber': idnumber, 'email': email})

    def get_enrol_instances(self, course_id: int) -> List[Dict]:
        return [dict(i) for i in self.instances if i['courseid'] == course_id]

    def add_default_instance(self, course_id: int, method: str) -> Dict:
        return dict(self.add_instance(course_id, method))

    def update_instance(self, instance: Dict):
        self.updates.append(dict(instance))
        stored = next(i for i in self.instances if i['id'] == instance['id'])
        stored.update(instance)

    def delete_instance(self, instance: Dict):
        self.deleted.append(instance['id'])
        self.instances = [i for i in self.instances if i['id'] != instance['id']]

    def find_user(self, field: str, value: str) -> Union[Dict, None]:
        return next((dict(u) for u in self.users if u[field] and str(u[field]).lower() == str(value).lower()), None)

    def enrol_user(self, course_id: int, user_id: int, role_id: int, timestart: int = 0, timeend: int = 0):
        self.enrolled.append((course_id, user_id, role_id))


class FakeContentProvider(MoodleContentProvider):

    def __init__(self):
        self.sections = []
        self.course_modules = []
        self.instances = {}     # module name -> activity rows
        self.grade_items = {}
        self.descriptions = {}
        self.targets = {}
        self.plugin_config = {}
        self.rebuilt = []
        self.next_id = 1000

    def _next_id(self) -> int:
        self.next_id += 1
        return self.next_id

    def add_section(self, course_id: int, number: int, name: str = '', **values) -> Dict:
        section = {'id': self._next_id(), 'course': course_id, 'section': number, 'name': name, 'summary': '',
                   'visible': 1, 'availability': None}
        section.update(values)
        self.sections.append(section)
        return section

    def add_module(self, course_id: int, module_name: str, section: int = 0, visible: int = 1, **values) -> Dict:
        instance = {'id': self._next_id(), 'course': course_id, 'name': values.pop('name', module_name), 'intro': ''}
        instance.update(values)
        self.instances.setdefault(module_name, []).append(instance)
        cm = {'id': self._next_id(), 'course': course_id, 'module': module_ids[module_name], 'modname': module_name,
              'instance': instance['id'], 'section': section, 'visible': visible, 'availability': None}
        self.course_modules.append(cm)
        return cm

    def add_grade_item(self, course_id: int):
        self.grade_items[course_id] = {'id': self._next_id(), 'courseid': course_id, 'itemtype': 'course'}

    def copy_course(self, from_id: int, to_id: int):
        for section in [s for s in self.sections if s['course'] == from_id]:
            values = {key: section[key] for key in ('name', 'summary', 'visible', 'availability')}
            existing = next((s for s in self.sections if s['course'] == to_id and s['section'] == section['section']),
                            None)
            if existing:
                existing.update(values)
            else:
                self.add_section(to_id, section['section'], **values)
        for cm in [c for c in self.course_modules if c['course'] == from_id]:
            instance = next(i for i in self.instances[cm['modname']] if i['id'] == cm['instance'])
            values = {key: value for key, value in instance.items() if key not in ('id', 'course')}
            self.add_module(to_id, cm['modname'], section=cm['section'], visible=cm['visible'], **values)
        if from_id in self.grade_items and to_id not in self.grade_items:
            self.add_grade_item(to_id)

    def modules(self, course_id: int, module_name: str) -> List[Dict]:
        return [cm for cm in self.course_modules if cm['course'] == course_id and cm['modname'] == module_name]

    def instance(self, module_name: str, instance_id: int) -> Dict:
        return next(i for i in self.instances[module_name] if i['id'] == instance_id)

    def get_section(self, course_id: int, section: Union[int, None] = None,
                    name: Union[str, None] = None) -> Union[Dict, None]:
        for row in sorted(self.sections, key=lambda s: s['section']):
            if row['course'] != course_id:
                continue
            if (section is not None and row['section'] == section) or (section is None and row['name'] == name):
                return dict(row)
        return None

    def update_section(self, course_id: int, section: Dict, values: Dict):
        stored = next(s for s in self.sections if s['id'] == section['id'])
        stored.update(values)

    def get_course_modules(self, course_id: int, module: Union[str, int]) -> List[Dict]:
        key = 'modname' if isinstance(module, str) else 'module'
        return [dict(cm) for cm in sorted(self.course_modules, key=lambda c: c['id'])
                if cm['course'] == course_id and cm[key] == module]

    def update_course_module(self, course_id: int, cm: Dict, values: Dict):
        values = dict(values)
        module_name = values.pop('modulename', cm['modname'])
        stored = next(c for c in self.course_modules if c['id'] == cm['id'])
        for key in ('visible', 'availability', 'section'):
            if key in values:
                stored[key] = values.pop(key)
        self.instance(module_name, stored['instance']).update(values)

    def create_module(self, course_id: int, module_name: str, values: Dict) -> int:
        values = dict(values)
        cm = self.add_module(course_id, module_name, section=values.pop('section', 0),
                             visible=values.pop('visible', 1), **values)
        return cm['id']

    def delete_course_module(self, cm_id: int):
        self.course_modules = [cm for cm in self.course_modules if cm['id'] != cm_id]

    def get_module_instance(self, module_name: str, course_id: int) -> Union[Dict, None]:
        return next((dict(i) for i in self.instances.get(module_name, []) if i['course'] == course_id), None)

    def update_module_instance(self, module_name: str, instance_id: int, values: Dict):
        self.instance(module_name, instance_id).update(values)

    def get_course_grade_item(self, course_id: int) -> Union[Dict, None]:
        return self.grade_items.get(course_id)

    def get_express_description(self, description: str) -> Union[Dict, None]:
        return self.descriptions.get(description)

    def get_express_target(self, role: str) -> Union[Dict, None]:
        return self.targets.get(role)

    def set_plugin_config(self, name: str, value):
        self.plugin_config[name] = value

    def rebuild_course_cache(self, course_id: int):
        self.rebuilt.append(course_id)


class FakeMoodle:

    FRONT_PAGE = 1

    def __init__(self):
        self.content = FakeContentProvider()
        self.enrolments = FakeEnrolmentProvider()
        self.courses = FakeCourseProvider(self)
        self.templates = {}

        courses = self.courses
        courses.add_category(1, 'Miscellaneous')
        courses.add_category(2, 'GESTIÓN PROCESAL', idnumber='GP')
        courses.add_category(3, 'WEBINAR', parent=2)
        courses.add_category(4, 'PRESENCIAL', parent=2)
        courses.add_category(5, 'FORMACIÓN EXPRÉS')
        courses.add_category(6, 'Plantillas')
        courses.add_category(7, 'Accesibilidad', parent=5)
        courses.add_course(id=self.FRONT_PAGE, shortname='aulaenlinea', fullname='Aula en línea', category=0)

        self.templates['plantillaexpres'] = self._express_template()
        for shortname in ('plantillawebinartiles', 'planillaonlinesinctiles', 'plantillapresencialtiles'):
            self.templates[shortname] = self._tiles_template(shortname)

        self.enrolments.add_user(50, 'jperez', email='jperez@example.es')
        self.enrolments.add_user(61, 'ana', idnumber='12345678Z', email='ana@example.es')
        self.enrolments.add_user(62, 'luis', idnumber='87654321X', email='luis@example.es')

        self.content.descriptions['Accesibilidad en documentos'] = {
            'description': 'Accesibilidad en documentos', 'summarytext': 'Crea documentos accesibles',
            'summaryhours': '2 horas', 'printhours': '2'}
        self.content.targets['Tramitación'] = {'rol': 'Tramitación', 'target_audience': 'Cuerpo de Tramitación'}

    def _express_template(self) -> int:
        course_id = self.courses.add_course(shortname='plantillaexpres', fullname='Plantilla EXPRES', category=6)
        self.content.add_section(course_id, 0)
        self.content.add_section(course_id, 1)
        for _ in range(3):
            self.content.add_module(course_id, 'label')
        self.content.add_module(course_id, 'lti', name='Sala')
        self.content.add_module(course_id, 'feedback', name='Encuesta', timeclose=0)
        self.content.add_module(course_id, 'certificate', name='Certificado', printhours='')
        self.content.add_module(course_id, 'forum', name='Avisos')
        self.content.add_grade_item(course_id)
        return course_id

    def _tiles_template(self, shortname: str) -> int:
        course_id = self.courses.add_course(shortname=shortname, fullname=f'Plantilla {shortname}', category=6,
                                            format='tiles')
        for number in range(3):
            self.content.add_section(course_id, number)
        self.content.add_section(course_id, 3, name=certificate_section_name)
        self.content.add_module(course_id, 'feedback', section=1, name='Encuesta', timeclose=0)
        self.content.add_module(course_id, 'certificate', section=3, name='Certificado', printhours='')
        self.content.add_module(course_id, 'forum', name='Avisos')
        self.content.add_grade_item(course_id)
        return course_id

    def new_course(self, shortname: str, fullname: str, template: str) -> Dict:
        """
        A course with the template's content, the way it looks right after the restore.
        """
        course_id = self.courses.create_course({'shortname': shortname, 'fullname': fullname, 'category': 1,
                                                'numsections': 0})
        self.courses.restore_course(course_id, {'course_id': self.templates[template]})
        return self.courses.get_course(course_id)
