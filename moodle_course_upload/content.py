# file: moodle_course_upload/content.py

import json
from datetime import timedelta
from typing import List, Dict, Union

from moodle_course_upload.logger import logger
from moodle_course_upload import enrolment as enrol
from moodle_course_upload import util

"""
Course content templating.

Every course is restored from a template course for its kind and then tuned from the CSV row:
summary, dates, self enrolment, sections, labels, the LTI room, the feedback survey and the certificate.

The kind comes out of the course name:

    EXPRES       express    plantillaexpres            topics format
    WEBINAR      webinar    plantillawebinartiles      tiles format
    ONLINE SINC  online     planillaonlinesinctiles    tiles format
    (otherwise)  in person  plantillapresencialtiles   tiles format
"""

EXPRESS = 'express'
WEBINAR = 'webinar'
ONLINE_SYNC = 'online'
FACE_TO_FACE = 'presencial'

kinds = {
    EXPRESS:      {'marker': 'EXPRES',      'template': 'plantillaexpres',          'format': 'topics'},
    WEBINAR:      {'marker': 'WEBINAR',     'template': 'plantillawebinartiles',    'format': 'tiles'},
    ONLINE_SYNC:  {'marker': 'ONLINE SINC', 'template': 'planillaonlinesinctiles',  'format': 'tiles'},
    FACE_TO_FACE: {'marker': None,          'template': 'plantillapresencialtiles', 'format': 'tiles'},
}

# the hour column of an express course is a slot number.
express_start_times = {
    '1': '10:00', '2': '12:00', '3': '14:00', '4': '09:00', '5': '11:00', '6': '13:00', '7': '16:00',
    '8': '17:00', '9': '10:00', '10': '12:00', '11': '14:00', '12': '09:00', '13': '11:00', '14': '13:00',
    '15': '16:00', '16': '17:00', '17': '10:00', '18': '12:00', '19': '14:00',
}

# webinars for trainers get a hidden certificate section instead of certificate hours.
teacher_training_markers = ['Formadores CCAATT', 'Formación de formadores']

certificate_section_name = 'Certificado del curso'
forum_module_id = 9

# Stored as is.  The self enrolment plugin fills in {$a->fullname} and {$a->coursename} when it sends them.
express_welcome_message = """<p>Estimado/a {$a->fullname},</p>
<p>Te damos la bienvenida al curso {$a->coursename} en el que te has matriculado a través de Cursos Exprés.</p>
<p><strong>Acceder al curso es muy sencillo</strong>, el día y hora del curso sigue los siguientes pasos:</p>
<ol>
<li>Accede a la plataforma de formación <a href="https://aulaenlinea.justicia.es">aulaenlinea.justicia.es</a> con tu usuario de dominio y contraseña o con tu certificado digital.</li>
<li>En el apartado <strong>Mis cursos</strong> pincha sobre el curso {$a->coursename}.</li>
<li>En la pantalla que aparece selecciona la opción <strong>Continuar en este explorador</strong>.</li>
<li>A continuación, introduce tu <strong>nombre y DNI</strong> y pulsa en <strong>Unirse ahora</strong>.</li>
</ol>
<p>Te recomendamos que accedas con unos minutos de antelación al inicio de la formación.</p>
<p>Para cualquier duda y/o consulta recuerda que cuentas con un formador para resolver todas tus dudas en el <strong>Servicio de Formación Exprés</strong> a través de la <strong>opción 3 del teléfono 91 385 80 00</strong>.</p>"""

webinar_welcome_message = """<p>Estimado/a {$a->fullname},</p>
<p>Te damos la bienvenida al curso {$a->coursename} en el que te has matriculado a través de Aula en línea.</p>
<p><strong>Acceder al curso es muy sencillo</strong>, el día y hora del curso sigue los siguientes pasos:</p>
<ol>
<li>Accede a la plataforma de formación <a href="https://aulaenlinea.justicia.es">aulaenlinea.justicia.es</a> con tu usuario de dominio y contraseña o con tu certificado digital.</li>
<li>En el apartado <strong>Mis cursos</strong> pincha sobre el curso {$a->coursename}.</li>
<li>En la pantalla que aparece selecciona la opción <strong>Continuar en este explorador</strong>.</li>
<li>A continuación, introduce tu <strong>nombre y DNI</strong> y pulsa en <strong>Unirse ahora</strong>.</li>
</ol>
<p>Te recomendamos que accedas con unos minutos de antelación al inicio de la formación.</p>
<p>Para cualquier duda y/o consulta recuerda que cuentas con un formador para resolver todas tus dudas.</p>"""

section_summary_style = 'font-family: Arial, sans-serif; color: #555555; font-size: 20px; text-align: center;'


def course_kind(name: Union[str, None]) -> str:
    """
    Which kind of course a shortname or fullname belongs to.
    """
    name = name or ''
    for kind in (EXPRESS, WEBINAR, ONLINE_SYNC):
        if kinds[kind]['marker'] in name:
            return kind
    return FACE_TO_FACE


def template_course(name: Union[str, None]) -> str:
    return kinds[course_kind(name)]['template']


def availability(conditions: List[Dict], showc: List[bool]) -> str:
    """
    A Moodle availability condition tree where all conditions must hold.
    """
    return json.dumps({'op': '&', 'c': conditions, 'showc': showc}, separators=(',', ':'))


def date_condition(direction: str, timestamp: int) -> Dict:
    return {'type': 'date', 'd': direction, 't': timestamp}


def window_conditions(start: int, end: int) -> List[Dict]:
    # open from start, until end when there is one.
    conditions = [date_condition('>=', start)]
    if end:
        conditions.append(date_condition('<', end))
    return conditions


def grade_condition(grade_item_id: int, minimum: int = 100) -> Dict:
    return {'type': 'grade', 'id': grade_item_id, 'min': minimum}


def completion_condition(cm_id: int) -> Dict:
    return {'type': 'completion', 'cm': cm_id, 'e': 1}


class MoodleContentProvider:
    """
    This is meant to be a base class.

    Read and change what is inside a course: sections, course modules, module instances (the
    feedback and certificate rows), and the course grade item.  Course modules are dicts with at least
    id (the cm id), module (module type id), instance and section.  They are returned in id order.
    """

    def get_section(self, course_id: int, section: Union[int, None] = None,
                    name: Union[str, None] = None) -> Union[Dict, None]:
        """
        A course section by number or by name.
        """
        raise NotImplementedError("No section getter provided.")

    def update_section(self, course_id: int, section: Dict, values: Dict):
        raise NotImplementedError("No section updater provided.")

    def get_course_modules(self, course_id: int, module: Union[str, int]) -> List[Dict]:
        """
        :param module: the module name ('label', 'feedback') or the module type id.
        """
        raise NotImplementedError("No course module getter provided.")

    def update_course_module(self, course_id: int, cm: Dict, values: Dict):
        """
        Update a module the way the module edit form does: name, intro, visibility, availability.
        """
        raise NotImplementedError("No course module updater provided.")

    def create_module(self, course_id: int, module_name: str, values: Dict) -> int:
        raise NotImplementedError("No module creator provided.")

    def delete_course_module(self, cm_id: int):
        raise NotImplementedError("No course module remover provided.")

    def get_module_instance(self, module_name: str, course_id: int) -> Union[Dict, None]:
        """
        The first activity record of a kind in a course, for instance the mdl_feedback row.
        """
        raise NotImplementedError("No module instance getter provided.")

    def update_module_instance(self, module_name: str, instance_id: int, values: Dict):
        raise NotImplementedError("No module instance updater provided.")

    def get_course_grade_item(self, course_id: int) -> Union[Dict, None]:
        raise NotImplementedError("No grade item getter provided.")

    def get_express_description(self, description: str) -> Union[Dict, None]:
        """
        The express catalogue entry for a description: summarytext, summaryhours, printhours.
        """
        raise NotImplementedError("No express description getter provided.")

    def get_express_target(self, role: str) -> Union[Dict, None]:
        """
        The target audience catalogue entry for a role: target_audience.
        """
        raise NotImplementedError("No express target audience getter provided.")

    def set_plugin_config(self, name: str, value):
        raise NotImplementedError("No plugin config setter provided.")

    def rebuild_course_cache(self, course_id: int):
        raise NotImplementedError("No course cache rebuilder provided.")


class CourseTemplater:
    """
    Apply the row to a course that was restored from its template.

        templater = CourseTemplater(courses, enrolments, content, run_log)
        templater.apply(course, rawdata)

    course needs id and fullname.  rawdata is the CSV row.
    """

    def __init__(self, courses, enrolments: enrol.MoodleEnrolmentProvider, content: MoodleContentProvider,
                 run_log=None):
        self.courses = courses
        self.enrolments = enrolments
        self.content = content
        self.run_log = run_log

    def apply(self, course: Dict, rawdata: Dict) -> str:
        """
        Run the pipeline for the course's kind.
        :return: the kind
        """
        fullname = course.get('fullname', '')
        kind = course_kind(fullname)
        logger.info(f"Templating {kind} course {course['id']} {fullname}")

        if kind == EXPRESS:
            self.update_express_course_info(course, rawdata)
            self.enrol_teacher(course, rawdata)
            self.enrol_students(course, rawdata)
            self.update_express_self_enrol(course, rawdata)
            self.update_express_section(course, rawdata)
            self.update_express_labels(course, rawdata)
            self.update_express_lti(course, rawdata)
            self.update_express_feedback(course, rawdata)
            self.delete_forums(course)
            self.rebuild_cache(course)
        elif kind == WEBINAR:
            self.update_normal_course_info(course, rawdata)
            self.enrol_teacher(course, rawdata)
            self.enrol_students(course, rawdata)
            self.update_webinar_self_enrol(course, rawdata)
            self.update_normal_feedback(course, rawdata)
            self.update_certificate_section(course)
            if any(marker in fullname for marker in teacher_training_markers):
                self.update_teacher_certificate_section(course, rawdata)
            else:
                self.update_normal_certificate(course, rawdata)
            self.create_forum(course)
        elif kind == ONLINE_SYNC:
            self.update_normal_course_info(course, rawdata)
            self.enrol_teacher(course, rawdata)
            self.enrol_students(course, rawdata)
            self.update_normal_feedback(course, rawdata)
            self.update_certificate_section(course)
            self.update_normal_certificate(course, rawdata)
            self.create_forum(course)
        else:
            self.update_normal_course_info(course, rawdata)
            self.enrol_teacher(course, rawdata)
            self.enrol_students(course, rawdata)
            self.update_normal_feedback(course, rawdata)
            self.update_certificate_section(course)
            self.update_normal_certificate(course, rawdata)
            self.rebuild_cache(course)
        return kind

    #
    #   course settings and enrolment
    #

    def _self_enrol_instance(self, course: Dict) -> Union[Dict, None]:
        instance = next((i for i in self.enrolments.get_enrol_instances(course['id']) if i['enrol'] == 'self'), None)
        if instance is None:
            logger.warning(f"Course {course['id']} has no self enrolment method")
        return instance

    def _capacity(self, rawdata: Dict, default: str) -> str:
        capacity = str(rawdata.get('enrol_id_customint3') or '').strip()
        return capacity if capacity else default

    def _dates(self, rawdata: Dict) -> Dict:
        return {
            'startdate': util.to_timestamp(rawdata.get('startdate')),
            'enddate': util.to_timestamp(rawdata.get('enddate'), '23:59:00'),
        }

    def update_express_course_info(self, course: Dict, rawdata: Dict):
        description = str(rawdata.get('description') or '').strip()
        catalogue = self.content.get_express_description(description) or {}
        audience = self.content.get_express_target(str(rawdata.get('role') or '').strip()) or {}
        featured = 'DESTACADO' if str(rawdata.get('featured') or '').lower() == 'true' else ''

        summary = '\n\n'.join([
            f"<p>{rawdata.get('description', '')}",
            f"<p>{catalogue.get('summarytext', '')}",
            f"<p> {rawdata.get('applicative', '')}",
            f"<p> {express_start_times.get(str(rawdata.get('hour', '')).strip(), '')}",
            f"<p> {catalogue.get('summaryhours', '')}",
            f"<p> {audience.get('target_audience', '')}",
            f"<p> {featured}",
        ])
        self.courses.update_course({
            'id': course['id'],
            'summary': summary,
            'summaryformat': 1,
            **self._dates(rawdata),
            'newsitems': 0,
            'customfield_nu_cau': rawdata.get('incident', ''),
        })

        instance = self._self_enrol_instance(course)
        if instance:
            self.enrolments.update_instance({'id': instance['id'], 'status': enrol.ENROL_INSTANCE_ENABLED})

    def update_normal_course_info(self, course: Dict, rawdata: Dict):
        summary = f"<p>Capacitación en {rawdata.get('applicative', '')} en formato {rawdata.get('mode', '')}"
        self.courses.update_course({
            'id': course['id'],
            'summary': summary,
            'summaryformat': 1,
            'newsitems': 0,
            'customfield_nu_cau': rawdata.get('incident', ''),
            **self._dates(rawdata),
        })

        instance = self._self_enrol_instance(course)
        if instance is None:
            return
        if course_kind(course.get('fullname')) == WEBINAR:
            self.enrolments.update_instance({
                'id': instance['id'],
                'status': enrol.ENROL_INSTANCE_ENABLED,
                'customtext1': webinar_welcome_message,
                'customint3': self._capacity(rawdata, '0'),
            })
        else:
            self.enrolments.update_instance({'id': instance['id'], 'status': enrol.ENROL_INSTANCE_DISABLED})

    def enrol_teacher(self, course: Dict, rawdata: Dict):
        enrol.enrol_teacher(self.enrolments, course, rawdata)

    def enrol_students(self, course: Dict, rawdata: Dict):
        enrol.enrol_students(self.enrolments, course, rawdata, self.run_log)

    def update_express_self_enrol(self, course: Dict, rawdata: Dict):
        """
        Self enrolment closes two hours before the session starts.  7 seats unless the row says otherwise.
        """
        instance = self._self_enrol_instance(course)
        if instance is None:
            return
        slot = express_start_times.get(str(rawdata.get('hour', '')).strip(), '00:00')
        session = util.to_timestamp(rawdata.get('enddate'), slot)
        self.enrolments.update_instance({
            'id': instance['id'],
            'enrolenddate': session - 7200 if session else 0,
            'customint3': self._capacity(rawdata, '7'),
            'customtext1': express_welcome_message,
        })

    def update_webinar_self_enrol(self, course: Dict, rawdata: Dict):
        instance = self._self_enrol_instance(course)
        if instance is None:
            return
        self.enrolments.update_instance({
            'id': instance['id'],
            'enrolenddate': util.to_timestamp(rawdata.get('startdate'), '12:00:01'),
            'customint3': self._capacity(rawdata, '0'),
        })

    #
    #   sections
    #

    def _express_section_summary(self, rawdata: Dict) -> str:
        return (f'<p style="{section_summary_style}">{rawdata.get("description", "")}</p>'
                '<p style="text-align: center;">El enlace a la sala virtual sólo estará disponible '
                'el día de realización del curso.</p>')

    def update_express_section(self, course: Dict, rawdata: Dict):
        section = self.content.get_section(course['id'], section=0)
        if section is None:
            logger.warning(f"Course {course['id']} has no section 0")
            return
        self.content.update_section(course['id'], section, {
            'name': 'Formación Exprés',
            'summary': self._express_section_summary(rawdata),
        })

    def update_certificate_section(self, course: Dict):
        """
        The certificate section opens once the feedback is done and the course grade is 100.
        Forums that came with the template are removed.
        """
        section = self.content.get_section(course['id'], name=certificate_section_name)
        feedbacks = self.content.get_course_modules(course['id'], 'feedback')
        grade_item = self.content.get_course_grade_item(course['id'])

        if section is None:
            logger.warning(f"Course {course['id']} has no section {certificate_section_name}")
        elif not feedbacks or grade_item is None:
            logger.warning(f"Course {course['id']} has no feedback or course grade item for the certificate")
        else:
            self.content.update_section(course['id'], section, {
                'availability': availability(
                    [completion_condition(feedbacks[0]['id']), grade_condition(grade_item['id'])],
                    [True, True]),
            })
        self.delete_forums(course)

    def update_teacher_certificate_section(self, course: Dict, rawdata: Dict):
        section = self.content.get_section(course['id'], name=certificate_section_name)
        if section is None:
            logger.warning(f"Course {course['id']} has no section {certificate_section_name}")
            return
        self.content.update_section(course['id'], section, {
            'name': certificate_section_name,
            'summary': self._express_section_summary(rawdata),
            'visible': 0,
        })

    #
    #   modules
    #

    def update_express_labels(self, course: Dict, rawdata: Dict):
        """
        The template has three banners.  First the virtual room, last the certificate, the survey in between.
        """
        start = util.to_timestamp(rawdata.get('startdate'))
        end = util.to_timestamp(rawdata.get('enddate'), '23:00:00')
        labels = self.content.get_course_modules(course['id'], 'label')
        for position, label in enumerate(labels):
            if position == 0:
                banner = ('banner_aula_virtual_2020.png', 'Accede al aula virtual')
                window = window_conditions(start, end)
                rules = availability(window, [False] * len(window))
            elif position == len(labels) - 1:
                banner = ('banner_certificados_2020.png', 'Descarga tu certificado')
                rules = availability([date_condition('>=', start)], [False])
            else:
                banner = ('banner_encuesta_2020.png', 'Realiza la encuesta de satisfacción')
                rules = availability([date_condition('>=', start)], [False])
            self.content.update_course_module(course['id'], label, {
                'modulename': 'label',
                'section': 0,
                'visible': 1,
                'intro': f'<img src="/banners_gifs/{banner[0]}" alt="{banner[1]}" class="img-fluid">',
                'introformat': 1,
                'availability': rules,
            })

    def update_express_lti(self, course: Dict, rawdata: Dict):
        start = util.to_timestamp(rawdata.get('startdate'))
        end = util.to_timestamp(rawdata.get('enddate'), '23:00:00')
        window = window_conditions(start, end)
        for lti in self.content.get_course_modules(course['id'], 'lti'):
            self.content.update_course_module(course['id'], lti, {
                'modulename': 'lti',
                'name': 'Aula virtual',
                'section': 0,
                'visible': 1,
                'intro': '<p>*** CLIC AQUÍ PARA CONECTAR CON LA VIDEOCONFERENCIA ***</p>',
                'introformat': 1,
                'toolurl': '',
                'typeid': 1,
                'availability': availability(window, [False] * len(window)),
            })

    def express_feedback_close(self, rawdata: Dict) -> Union[int, None]:
        # the 10th of the month after the course ends, 23:59.  None without an end date.
        end = util.parse_csv_date(rawdata.get('enddate'))
        if end is None:
            return None
        return util.to_timestamp(util.first_day_of_next_month(end) + timedelta(days=9), '23:59:00')

    def normal_feedback_close(self, rawdata: Dict) -> Union[int, None]:
        end = util.parse_csv_date(rawdata.get('enddate'))
        if end is None:
            return None
        return util.to_timestamp(end + timedelta(days=15))

    def update_express_feedback(self, course: Dict, rawdata: Dict):
        start = util.to_timestamp(rawdata.get('startdate'))
        grade_item = self.content.get_course_grade_item(course['id'])
        feedbacks = self.content.get_course_modules(course['id'], 'feedback')
        conditions = [date_condition('>=', start)]
        if grade_item:
            conditions.append(grade_condition(grade_item['id']))
        for feedback in feedbacks:
            self.content.update_course_module(course['id'], feedback, {
                'modulename': 'feedback',
                'name': 'Encuesta de satisfacción',
                'section': 0,
                'visible': 1,
                'intro': '<p>Encuesta de satisfacción</p>',
                'introformat': 1,
                'availability': availability(conditions, [False] * len(conditions)),
            })

        instance = self.content.get_module_instance('feedback', course['id'])
        timeclose = self.express_feedback_close(rawdata)
        if instance and timeclose is not None:
            self.content.update_module_instance('feedback', instance['id'], {'timeclose': timeclose})
        self.update_express_certificate(course, rawdata, feedbacks)

    def update_normal_feedback(self, course: Dict, rawdata: Dict):
        instance = self.content.get_module_instance('feedback', course['id'])
        if instance is None:
            logger.warning(f"Course {course['id']} has no feedback")
            return
        timeclose = self.normal_feedback_close(rawdata)
        if timeclose is None:
            logger.warning(f"Course {course['id']} has no end date, its feedback stays open")
            return
        self.content.update_module_instance('feedback', instance['id'], {'timeclose': timeclose})

    def update_express_certificate(self, course: Dict, rawdata: Dict, feedbacks: List[Dict]):
        start = util.to_timestamp(rawdata.get('startdate'))
        grade_item = self.content.get_course_grade_item(course['id'])
        catalogue = self.content.get_express_description(str(rawdata.get('description') or '').strip()) or {}
        certificate = self.content.get_module_instance('certificate', course['id'])

        conditions = []
        if feedbacks:
            conditions.append(completion_condition(feedbacks[0]['id']))
        conditions.append(date_condition('>=', start))
        if grade_item:
            conditions.append(grade_condition(grade_item['id']))

        for cm in self.content.get_course_modules(course['id'], 'certificate'):
            self.content.update_course_module(course['id'], cm, {
                'modulename': 'certificate',
                'name': 'Certificado de realización del curso',
                'section': 0,
                'visible': 1,
                'intro': '<p>Certificado de realización del curso</p>',
                'introformat': 1,
                'availability': availability(conditions, [False] * len(conditions)),
            })
            if certificate and 'printhours' in catalogue:
                self.content.update_module_instance('certificate', certificate['id'],
                                                    {'printhours': catalogue['printhours']})
        self.content.set_plugin_config('fecourse', course['id'])

    def update_normal_certificate(self, course: Dict, rawdata: Dict):
        certificate = self.content.get_module_instance('certificate', course['id'])
        if certificate:
            hours = str(rawdata.get('duration') or '').replace(',', '.')
            self.content.update_module_instance('certificate', certificate['id'], {'printhours': hours})
        else:
            logger.warning(f"Course {course['id']} has no certificate")
        self.content.set_plugin_config('fecourse', course['id'])

    def delete_forums(self, course: Dict):
        for forum in self.content.get_course_modules(course['id'], forum_module_id):
            self.content.delete_course_module(forum['id'])

    def create_forum(self, course: Dict):
        self.content.create_module(course['id'], 'forum', {
            'name': 'Tablón del tutor',
            'type': 'general',
            'section': 0,
            'visible': 1,
            'visibleoncoursepage': 1,
            'grade_forum': 0,
            'cmidnumber': 'IDNUM',
            'intro': f"El foro del curso {course.get('fullname', '')}",
            'introformat': 1,
        })
        self.rebuild_cache(course)

    def rebuild_cache(self, course: Dict):
        self.content.rebuild_course_cache(course['id'])
