# file: moodle_course_upload/provider_csv.py

import csv
import io
import os
from datetime import datetime
from typing import List, Dict, Union

from moodle_course_upload.config import config
from moodle_course_upload.logger import logger

"""
This provider reads course rows out of a CSV file, and writes the two run logs:

    log/courselog_<runid>_<Ymd-G>.csv     one line per processed course, semicolon separated.
    log/studentlog_<runid>_<Ymd-G>.txt    one HTML-ish line per student that could not be enrolled.

The course log is what gets attached to the summary mail.
"""


class CSVCourseReader:
    """
    Iterate over the lines of a course CSV.  The first line holds the column names.

        reader = CSVCourseReader('courses.csv', delimiter=';')
        columns = reader.get_columns()
        reader.init()
        while (line := reader.next()) is not None:
            ...
    """

    def __init__(self, path: Union[str, None] = None, text: Union[str, None] = None,
                 delimiter: str = ',', encoding: str = 'utf-8-sig'):
        if path is None and text is None:
            raise ValueError("CSVCourseReader needs a path or the CSV text.")
        if text is None:
            with open(path, encoding=encoding, newline='') as handle:
                text = handle.read()
        self.path = path
        self.delimiter = delimiter
        self.rows = [row for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
        self.columns = [c.strip() for c in self.rows[0]] if self.rows else []
        self.position = 1

    def get_columns(self) -> List[str]:
        return self.columns

    def init(self):
        # rewind to the first line after the header.
        self.position = 1

    def next(self) -> Union[List[str], None]:
        while self.position < len(self.rows):
            line = self.rows[self.position]
            self.position += 1
            if any(cell.strip() for cell in line):
                return line
        return None


class RunLog:
    """
    The per run log files.  Both file names carry the run id and the hour the run started.
    """

    course_log_header = 'URL;Full Name;Short Name;Suffix Web;Suffix Excel'

    def __init__(self, run_id: str, log_dir: Union[str, None] = None, started: Union[datetime, None] = None):
        self.run_id = run_id
        self.log_dir = log_dir if log_dir is not None else config.log_dir
        started = started or datetime.now()
        stamp = f"{started:%Y%m%d}-{started.hour}"   # same as Ymd-G, hour without a leading zero
        self.course_log_name = f'courselog_{run_id}_{stamp}.csv'
        self.course_log = os.path.join(self.log_dir, self.course_log_name)
        self.student_log = os.path.join(self.log_dir, f'studentlog_{run_id}_{stamp}.txt')

    def _append(self, path: str, text: str):
        os.makedirs(self.log_dir, exist_ok=True)
        with open(path, 'a', encoding='utf-8') as handle:
            handle.write(text)

    def course_url(self, course_id: int) -> str:
        return f"{config.site_url.rstrip('/')}/course/view.php?id={course_id}"

    def write_course(self, data: Dict):
        """
        Append one processed course to the course log.
        :param data: dict with id, fullname, shortname and optionally the suffix column from the CSV.
        """
        if not os.path.exists(self.course_log):
            self._append(self.course_log, self.course_log_header + '\n')
        shortname = str(data.get('shortname', ''))
        line = ';'.join([
            self.course_url(data['id']) + ' ',
            str(data.get('fullname', '')),
            shortname,
            shortname[-3:],
            str(data.get('suffix', '')),
        ])
        self._append(self.course_log, line + '\n')

    def write_student_error(self, idnumber: str, email: str, course_fullname: str):
        line = (f'👩‍⚖️ Usuario/a con dni 👨‍⚖️ <b>{idnumber}</b> y/o email 📧 <b>{email}</b> '
                f'no encontrado en curso <b>{course_fullname}</b> <br />')
        logger.warning(f"Student not found: idnumber {idnumber} email {email} in {course_fullname}")
        self._append(self.student_log, line + '\n')

    def has_student_errors(self) -> bool:
        return os.path.exists(self.student_log)

    def read_course_log(self) -> List[str]:
        if not os.path.exists(self.course_log):
            return []
        with open(self.course_log, encoding='utf-8') as handle:
            return handle.read().split('\n')

    def read_student_log(self) -> List[str]:
        if not self.has_student_errors():
            return []
        with open(self.student_log, encoding='utf-8') as handle:
            return handle.read().split('\n')
