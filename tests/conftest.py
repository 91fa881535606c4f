# file: tests/conftest.py

import pytest

from moodle_course_upload.config import config
from tests.fake_moodle import FakeMoodle


@pytest.fixture
def site():
    return FakeMoodle()


@pytest.fixture(autouse=True)
def site_settings(monkeypatch):
    # every test starts from the same settings, and never mails anybody.
    monkeypatch.setattr(config, 'timezone', 'Europe/Madrid')
    monkeypatch.setattr(config, 'dryrun', False)
    monkeypatch.setattr(config, 'site_url', 'https://aulaenlinea.example.es')
    monkeypatch.setattr(config, 'notify_emails', [])
    monkeypatch.setattr(config, 'download_content_allowed', False)
    monkeypatch.setattr(config, 'default_numsections', 4)
