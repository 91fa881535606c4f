"""
This is a base import that defines global configuration variables that you can then override if you wish.

    from moodle_course_upload.config import config
    config.load('upload_settings.json')
    config.dryrun = True
"""
import json

__all__ = ['config']


class Config:
    # A singleton config class
    _instance = None

    # settings that may come from a JSON settings file.
    settable = [
        'debug', 'dryrun', 'log_dir', 'timezone', 'site_url',
        'notify_emails', 'smtp_host', 'smtp_port', 'smtp_user', 'smtp_password', 'smtp_starttls', 'mail_from',
        'express_category_name', 'preview_default_category', 'download_content_allowed',
        'default_numsections', 'db_prefix',
    ]

    def __new__(cls):
        if not cls._instance:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, debug=False, dryrun=False):
        if self._initialized:
            return
        self._initialized = True
        self._debug = debug
        self.dryrun = dryrun              # log REST posts and DB writes instead of running them.

        self.log_dir = 'log'              # course log and enrolment error log land here.
        self.timezone = 'Europe/Madrid'   # CSV dates are local dates on the Moodle site.
        self.site_url = ''                # used to build course links in the course log.

        self.notify_emails = []
        self.smtp_host = 'localhost'
        self.smtp_port = 25
        self.smtp_user = None
        self.smtp_password = None
        self.smtp_starttls = False
        self.mail_from = 'noreply@localhost'

        self.express_category_name = 'FORMACIÓN EXPRÉS'
        self.preview_default_category = 65
        self.download_content_allowed = False
        self.default_numsections = 4
        self.db_prefix = 'mdl_'

    @property
    def debug(self):
        return self._debug         # are we in debuggy the mode?  If so log detailed messages.

    @debug.setter
    def debug(self, value: bool):
        # allow to set and unset logger level.
        from moodle_course_upload.logger import logger
        import logging
        logger.setLevel(logging.DEBUG if value else logging.INFO)
        self._debug = value

    def load(self, path: str) -> dict:
        """
        Read settings from a JSON file.  Unknown keys are returned but not applied.
        :param path: path to a JSON file with a dict of settings.
        :return: dict: the settings as read from the file.
        """
        with open(path, encoding='utf-8') as handle:
            settings = json.load(handle)
        for key, value in settings.items():
            if key in self.settable:
                setattr(self, key, value)
        return settings


config = Config()
