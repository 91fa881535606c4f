# file: moodle_course_upload/util.py

import re
from datetime import datetime, date, time, timezone
from typing import Union
from zoneinfo import ZoneInfo

from moodle_course_upload.config import config

# CSV dates come in day first.  Two digit years first, like the spreadsheets people send us.
csv_date_formats = ['%d/%m/%y', '%d/%m/%Y', '%Y-%m-%d']

period_units = {
    'second': 1, 'sec': 1, 'minute': 60, 'min': 60, 'hour': 3600,
    'day': 86400, 'week': 604800, 'month': 2592000, 'year': 31536000,
}

tag_re = re.compile(r'<[^>]*>')


def parse_csv_date(datestr: str) -> Union[date, None]:
    """
    Parse a date from a CSV cell.  Empty cells are None.
    :param datestr: '25/03/24', '25/03/2024' or '2024-03-25'
    :return: date or None
    :raises ValueError: if the date matches none of the csv_date_formats
    """
    if datestr is None or str(datestr).strip() == '':
        return None
    if isinstance(datestr, date):
        return datestr
    datestr = str(datestr).strip()
    for fmt in csv_date_formats:
        try:
            return datetime.strptime(datestr, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {datestr}")


def site_timezone():
    return ZoneInfo(config.timezone) if config.timezone else timezone.utc


def to_timestamp(day: Union[date, str, None], clock: Union[str, None] = None) -> int:
    """
    Local site time for a day and an optional 'HH:MM' or 'HH:MM:SS' clock time, as a Unix timestamp.
    0 when there is no day, which is what Moodle stores for "no date".
    """
    if isinstance(day, str) or day is None:
        day = parse_csv_date(day)
    if day is None:
        return 0
    at = time(0, 0)
    if clock:
        parts = [int(p) for p in clock.strip().split(':')]
        at = time(*parts)
    return int(datetime.combine(day, at, tzinfo=site_timezone()).timestamp())


def first_day_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def parse_period(period: Union[str, int, None]) -> Union[int, None]:
    """
    An enrolment period in seconds.
    Plain digits are seconds already; otherwise things like '2 weeks', '1 day 12 hours'.
    :return: int seconds, or None if empty
    :raises ValueError: when the period can't be understood
    """
    if period is None or str(period).strip() == '':
        return None
    period = str(period).strip().lower()
    if period.isdigit():
        return int(period)
    total, found = 0, False
    for amount, unit in re.findall(r'([+-]?\d+)\s*([a-z]+)', period):
        unit = unit.rstrip('s') if unit not in period_units else unit
        if unit not in period_units:
            raise ValueError(f"Unknown period unit in: {period}")
        total += int(amount) * period_units[unit]
        found = True
    if not found:
        raise ValueError(f"Unrecognised period: {period}")
    return total


def clean_text(value: str) -> str:
    """
    Strip tags the way a plain text field would.  Used to check a shortname is plain text.
    """
    return tag_re.sub('', value)


def is_blank(value) -> bool:
    # PHP empty() semantics, except numeric '0' which counts as a value.
    if value is None:
        return True
    if isinstance(value, str):
        return value == ''
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return False
    return not value


def is_set(value) -> bool:
    # flag columns like delete, disable and reset: anything but empty, 0 or false.
    return not is_blank(value) and str(value).strip().lower() not in ('0', 'false', 'no')
