import logging
from typing import Any

"""
Provide a logger that protects wstoken and other passwords.

Any dict, list or tuple passed as a logging argument is scanned and values stored under
wstoken, password or api_key are replaced with ***.  Same for a dict passed as the message itself.

The module uses debug, info, warning and error.
Set the debug flag in config to see debug messages.

There is also a dryrun flag in config that you can set to True to prevent changes from being made.
"""

__all__ = ['debug', 'info', 'warning', 'error', 'logger', 'mask_for_log', 'setup_logging']

secure_dict_keys = ['wstoken', 'password', 'api_key', 'smtp_password']


def mask_for_log(obj: Any) -> Any:
    """
    Mask sensitive information in dictionaries.
    For other types, return the object as is.
    """
    if isinstance(obj, dict):
        return {k: '***' if k in secure_dict_keys else mask_for_log(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [mask_for_log(item) for item in obj]
    elif isinstance(obj, tuple):
        return tuple(mask_for_log(item) for item in obj)
    return obj


class MaskingFilter(logging.Filter):
    """
    Scrub the record before any handler formats it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, dict):
            record.msg = mask_for_log(record.msg)
        if isinstance(record.args, dict):
            record.args = mask_for_log(record.args)
        elif record.args:
            record.args = tuple(mask_for_log(arg) for arg in record.args)
        return True


def setup_logging(level=logging.INFO) -> logging.Logger:
    logger = logging.getLogger('moodle_course_upload')
    logger.setLevel(level)

    if not any(isinstance(f, MaskingFilter) for f in logger.filters):
        logger.addFilter(MaskingFilter())

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logger.addHandler(handler)

    return logger


# Create logger instance
logger = setup_logging()

# Create convenience methods
debug = logger.debug
info = logger.info
warning = logger.warning
error = logger.error


if __name__ == "__main__":
    logger.info("This is a test")
    logger.info("This is a test with a tuple %s", (1, 2, 3))
    logger.info("this is a test with a dict %s", {'wstoken': "123", 5: 18})
