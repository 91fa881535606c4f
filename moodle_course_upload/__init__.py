"""
Bulk create, update, rename, reset and delete Moodle courses from a CSV file.

    from moodle_course_upload.config import config
    from moodle_course_upload.processor import CourseProcessor
"""
