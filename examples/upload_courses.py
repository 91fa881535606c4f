# file: examples/upload_courses.py

import argparse
import socket

import keyring

from moodle_course_upload.config import config
from moodle_course_upload.course import Mode, UpdateMode
from moodle_course_upload.processor import CourseProcessor
from moodle_course_upload.provider_csv import CSVCourseReader
from moodle_course_upload.provider_moodleapi import MoodleAPICourseProvider, MoodleAPIEnrolmentProvider
from moodle_course_upload.provider_mysql import MoodleMySQLCourseProvider, MoodleMySQLEnrolmentProvider, \
    MoodleMySQLContentProvider
from moodle_course_upload.tracker import Tracker

"""
An example CSV:

    shortname,fullname,applicative,scope,mode,description,role,hour,startdate,enddate,teachersusername,idnumber,email,featured,incident,suffix
    EXPRES-ACC-104,EXPRES Accesibilidad en documentos 104,Accesibilidad,GESTIÓN PROCESAL,EXPRES,Accesibilidad en documentos,Tramitación,2,25/03/24,25/03/24,JPEREZ,"12345678Z,87654321X","ana@example.es,luis@example.es",true,CAU-0001,104
    WEBINAR-MIN-201,WEBINAR Minerva para formadores 201,Minerva,GESTIÓN PROCESAL,WEBINAR,,,,08/04/24,09/04/24,MGARCIA,,,,CAU-0002,201
"""


def get_mysql_connection_parameters(db: str, site: str):
    mysqluser = 'mydevmachine' if socket.gethostname() == 'mymachinename' else 'servicemachine'
    mysqlhost = site
    mysqlpassword = keyring.get_password(mysqlhost, mysqluser)
    if not mysqlpassword:
        raise ValueError(f"Password not found for {mysqluser}@{mysqlhost}")
    return dict(host=mysqlhost, user=mysqluser, password=mysqlpassword, database=db)


def parse_args():
    parser = argparse.ArgumentParser(description='Create or update Moodle courses from a CSV file.')
    parser.add_argument('csvfile')
    parser.add_argument('--site', default='aulaenlinea.example.es')
    parser.add_argument('--db', default='moodle')
    parser.add_argument('--settings', help='JSON settings file, see moodle_course_upload.config')
    parser.add_argument('--mode', type=int, default=int(Mode.CREATE_ALL), choices=[int(m) for m in Mode])
    parser.add_argument('--updatemode', type=int, default=int(UpdateMode.NOTHING),
                        choices=[int(m) for m in UpdateMode])
    parser.add_argument('--delimiter', default=',')
    parser.add_argument('--templatecourse')
    parser.add_argument('--restorefile', help='backup file restored into every course, where the site can')
    parser.add_argument('--shortnametemplate')
    parser.add_argument('--allowrenames', action='store_true')
    parser.add_argument('--allowdeletes', action='store_true')
    parser.add_argument('--allowresets', action='store_true')
    parser.add_argument('--reset', action='store_true')
    parser.add_argument('--preview', type=int, metavar='ROWS', help='only check the first rows')
    parser.add_argument('--api-only', action='store_true', help='no database access.  No templating.')
    parser.add_argument('--dryrun', action='store_true')
    parser.add_argument('--debug', action='store_true')
    return parser.parse_args()


if __name__ == '__main__':  # Are you running this file directly?  (VS importing it)
    args = parse_args()
    if args.settings:
        config.load(args.settings)
    config.debug = args.debug or config.debug
    config.dryrun = args.dryrun or config.dryrun
    if not config.site_url:
        config.site_url = f'https://{args.site}'

    api_key = keyring.get_password(args.site, 'moodle_api')
    # to set api key:   keyring.set_password(site, 'moodle_api', 'your_api_key_here')
    if not api_key:
        raise SystemExit(f"No API key in the keyring for moodle_api@{args.site}")

    if args.api_only:
        courses = MoodleAPICourseProvider(args.site, api_key)
        enrolments = MoodleAPIEnrolmentProvider(args.site, api_key)
        content = None
    else:
        mysql_connection_params = get_mysql_connection_parameters(args.db, site=args.site)
        courses = MoodleMySQLCourseProvider(args.site, api_key, **mysql_connection_params)
        enrolments = MoodleMySQLEnrolmentProvider(**mysql_connection_params)
        content = MoodleMySQLContentProvider(**mysql_connection_params)

    options = {
        'mode': args.mode,
        'updatemode': args.updatemode,
        'allowrenames': args.allowrenames,
        'allowdeletes': args.allowdeletes,
        'allowresets': args.allowresets,
        'reset': args.reset,
        'restorefile': args.restorefile,
        'templatecourse': args.templatecourse,
        'shortnametemplate': args.shortnametemplate,
    }
    reader = CSVCourseReader(args.csvfile, delimiter=args.delimiter)
    processor = CourseProcessor(reader, options, courses=courses, enrolments=enrolments, content=content)

    print(f"Uploading {args.csvfile} to {args.site}")
    if args.preview:
        processor.preview(args.preview, Tracker(Tracker.OUTPUT_PLAIN))
    else:
        processor.execute(Tracker(Tracker.OUTPUT_PLAIN))
