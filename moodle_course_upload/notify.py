# file: moodle_course_upload/notify.py

import os
import smtplib
from datetime import date
from email.message import EmailMessage
from typing import List, Union

from moodle_course_upload.config import config
from moodle_course_upload.logger import logger


class EmailNotifier:
    """
    Mail the run summary: the course log, plus the enrolment errors when there were any.
    Settings come from config (notify_emails, smtp_*, mail_from).  In dryrun the mail is only logged.
    """

    def __init__(self, recipients: Union[List[str], None] = None):
        self.recipients = list(recipients) if recipients is not None else list(config.notify_emails)

    def build_message(self, run_log, today: Union[date, None] = None) -> EmailMessage:
        today = today or date.today()
        body = 'Los cursos creados en esta tanda: <br />'
        body += ''.join(f'{line}<br />' for line in run_log.read_course_log())

        if run_log.has_student_errors():
            body += '<p>🙁</p>\n'
            body += '<br />Errores en matriculaciones: <br />'
            body += ''.join(f'{line}\n' for line in run_log.read_student_log())
            subject = f'🙁 Log de la creación de cursos y errores de matriculación hoy {today:%d/%m/%Y}.'
            attach = True
        else:
            body += '<p>🙂</p>\n'
            subject = f'🙂 Log de la creación de cursos hoy {today:%d/%m/%Y}.'
            attach = False

        msg = EmailMessage()
        msg['Subject'] = subject
        msg['From'] = config.mail_from
        msg['To'] = ', '.join(self.recipients)
        msg.set_content(body, subtype='html')
        if attach and os.path.exists(run_log.course_log):
            with open(run_log.course_log, 'rb') as handle:
                msg.add_attachment(handle.read(), maintype='text', subtype='csv', filename=run_log.course_log_name)
        return msg

    def send(self, run_log, today: Union[date, None] = None) -> Union[EmailMessage, None]:
        """
        :return: the message, or None if there is nobody to send it to.
        """
        if not self.recipients:
            logger.debug("No notify_emails configured.  Not sending the run summary.")
            return None
        msg = self.build_message(run_log, today)
        if config.dryrun:
            logger.info(f"DRYRUN mode: not mailing '{msg['Subject']}' to {msg['To']}")
            return msg

        with smtplib.SMTP(config.smtp_host, config.smtp_port) as smtp:
            if config.smtp_starttls:
                smtp.starttls()
            if config.smtp_user:
                smtp.login(config.smtp_user, config.smtp_password)
            smtp.send_message(msg)
        logger.info(f"Run summary mailed to {msg['To']}")
        return msg
