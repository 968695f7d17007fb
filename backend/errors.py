"""
Org Survey Backend - API Errors
===============================

Every error raised by the service layer carries the HTTP status it maps to.
app.py registers one error handler that renders them as
{'success': False, 'message': ...}.
"""


class ApiError(Exception):
    """Base class for errors that are reported to the client"""
    status_code = 500

    def __init__(self, message, status_code=None):
        super(ApiError, self).__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'message': self.message}


class ValidationError(ApiError):
    """Missing or invalid input"""
    status_code = 400


class PermissionDeniedError(ApiError):
    """A non-manager role attempted a manager-only action"""
    status_code = 403


class NotFoundError(ApiError):
    """No active iteration, no source surveys, unit/role/person absent"""
    status_code = 404


class ConflictError(ApiError):
    """Duplicate role, duplicate name, concurrent open iteration"""
    status_code = 409


class InternalError(ApiError):
    """Store failure or unexpected exception"""
    status_code = 500
