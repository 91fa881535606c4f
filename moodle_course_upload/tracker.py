# file: moodle_course_upload/tracker.py

import sys
from typing import Dict, TextIO, Union


class Tracker:
    """
    Report the progress of an upload, one line per CSV row.

        tracker = Tracker(Tracker.OUTPUT_PLAIN)
        processor.execute(tracker)

    NO_OUTPUT keeps quiet, which is what the processor uses when it is not given a tracker.
    """

    NO_OUTPUT = 0
    OUTPUT_PLAIN = 1

    columns = ['line', 'result', 'id', 'shortname', 'fullname', 'status']

    def __init__(self, outputmode: int = NO_OUTPUT, stream: Union[TextIO, None] = None):
        self.outputmode = outputmode
        self.stream = stream if stream is not None else sys.stdout
        self.rows = []

    def _write(self, text: str):
        if self.outputmode == self.NO_OUTPUT:
            return
        self.stream.write(text + '\n')

    def start(self):
        self.rows = []
        self._write(' | '.join(f'{column:>5}' if column in ('line', 'id') else column for column in self.columns))

    def output(self, line: int, outcome: bool, status: Dict[str, str], data: Dict):
        """
        :param line: the CSV line number
        :param outcome: True if the row went through
        :param status: statuses when it went through, errors when it did not
        :param data: the row data
        """
        self.rows.append({'line': line, 'outcome': outcome, 'status': dict(status), 'data': data})
        cells = [
            f'{line:>5}',
            'OK' if outcome else 'NOK',
            f"{data.get('id', ''):>5}",
            str(data.get('shortname', '')),
            str(data.get('fullname', '')),
            '; '.join(status.values()),
        ]
        self._write(' | '.join(cells))

    def finish(self):
        self._write('')

    def results(self, total: int, created: int, updated: int, deleted: int, errors: int):
        summary = {
            'Courses total': total, 'Courses created': created, 'Courses updated': updated,
            'Courses deleted': deleted, 'Courses errors': errors,
        }
        for label, count in summary.items():
            self._write(f'{label}: {count}')
        return summary
