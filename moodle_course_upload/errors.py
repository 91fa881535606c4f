# file: moodle_course_upload/errors.py

"""
Row level error and status codes.

A row that fails validation raises RowError(code) and is skipped.  The batch keeps going.
Statuses use the same message table.
"""

messages = {
    # errors
    'cannotdeletecoursenotexist': 'Cannot delete a course that does not exist',
    'cannotforcelang': 'No permission to force the language for this course',
    'cannotgenerateshortnameupdatemode': 'Cannot generate a shortname when updates are allowed',
    'cannotreadbackupfile': 'Cannot read the backup file',
    'cannotrestorebackupfile': 'This site cannot restore backup files, use a template course',
    'cannotrenamecoursenotexist': 'Cannot rename a course that does not exist',
    'cannotrenameidnumberconflict': 'Cannot rename the course, the ID number conflicts with an existing course',
    'cannotrenameshortnamealreadyinuse': 'Cannot rename the course, the shortname is already used',
    'cannotupdatefrontpage': 'It is forbidden to modify the front page',
    'canonlyrenameinupdatemode': 'Can only rename a course when update is allowed',
    'canonlyresetcourseinupdatemode': 'Can only reset a course in update mode',
    'couldnotresolvecatgorybyid': 'Could not resolve category by ID',
    'couldnotresolvecatgorybyidnumber': 'Could not resolve category by ID number',
    'couldnotresolvecatgorybypath': 'Could not resolve category by path',
    'coursedeletionnotallowed': 'Course deletion is not allowed',
    'coursedoesnotexistandcreatenotallowed': 'The course does not exist and creating course is not allowed',
    'courseexistsanduploadnotallowed': 'The course exists and update is not allowed',
    'courserenamingnotallowed': 'Course renaming is not allowed',
    'courseresetnotallowed': 'Course reset not allowed',
    'coursetorestorefromdoesnotexist': 'The course to restore from does not exist',
    'customfieldinvalid': "Custom field '{a}' is empty or contains invalid data",
    'downloadcontentnotallowed': 'Configuring course content download is not allowed',
    'enddatebeforestartdate': 'The course end date must be after the start date',
    'errorcannotcreateorupdate_self_enrolment': "Cannot create or update enrolment method '{a}'",
    'errorcannotdeleteenrolment': "Cannot delete enrolment method '{a}'",
    'errorcannotdisableenrolment': "Cannot disable enrolment method '{a}'",
    'errorwhiledeletingcourse': 'Error while deleting the course',
    'errorwhilerestoringcourse': 'Error while restoring the course',
    'generatedshortnamealreadyinuse': 'The generated shortname is already in use',
    'generatedshortnameinvalid': 'The generated shortname is invalid',
    'idnumberalreadyinuse': 'ID number already used by a course',
    'invalidbackupfile': 'Invalid backup file',
    'invalidcourseformat': 'Invalid course format',
    'invaliddownloadcontent': 'Invalid course content download value',
    'invalidfullnametoolong': 'The fullname field is limited to {a} characters',
    'invalidroles': 'Invalid role names: {a}',
    'invalidshortname': 'Invalid shortname',
    'invalidshortnametoolong': 'The shortname field is limited to {a} characters',
    'invalidvisibilitymode': 'Invalid visible mode',
    'missingcategoryfield': "Category '{a}' does not exist",
    'missingmandatoryfields': 'Missing value for mandatory fields: {a}',
    'missingshortnamenotemplate': 'Missing shortname and shortname template not set',
    'nostartdatenoenddate': 'The course end date is set but there is no start date',
    'rowexception': 'Error while processing the row: {a}',
    'unknownimportmode': 'Unknown import mode',
    'updatemodedoessettonothing': 'Update mode does not allow anything to be updated',
    # file errors
    'cannotreadtmpfile': 'Cannot read the CSV file',
    'csvfewcolumns': 'The CSV file needs at least two columns',
    # statuses
    'coursecreated': 'Course created',
    'coursedeleted': 'Course deleted',
    'courseidnumberincremented': 'Course ID number incremented {from_} -> {to}',
    'courserenamed': 'Course renamed {from_} -> {to}',
    'coursereset': 'Course reset',
    'courserestored': 'Course restored',
    'courseshortnamegenerated': 'Course shortname generated: {a}',
    'courseshortnameincremented': 'Course shortname incremented',
    'courseupdated': 'Course updated',
}


def message(code: str, **kwargs) -> str:
    """
    The English text for an error or status code.  Unknown codes come back as the code itself.
    """
    text = messages.get(code, code)
    if kwargs:
        return text.format(**kwargs)
    return text


class RowError(Exception):
    """
    A validation failure for one CSV row.  Carries the code the row's error map is keyed on.
    """

    def __init__(self, code: str, text: str = None, **kwargs):
        self.code = code
        self.message = text if text is not None else message(code, **kwargs)
        super().__init__(f"{code}: {self.message}")
