# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user.
# Internal errors only expose their details when debug logging is enabled.
#
# The exceptions are caught in http_method_decorator and formatted in the response envelope:
# {
#      "meta": {"route": "POST /api/users"},
#      "status": {"success": false, "message": "Conflict: User with email \"a@b.c\" already exists."},
#      "errors": [{"field": "email", "message": "..."}]
# }
#
import traceback
from http import HTTPStatus
from flask import has_request_context, request
from sqlalchemy.exc import DontWrapMixin
import autocrud
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"


class ConfigurationError(Exception):
    """
    This exception is raised at startup when an entity or route declaration is invalid
    """


class CrudError(Exception, DontWrapMixin):
    """
    Base class for the errors that are returned to the client
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = ""
    errors = None

    def __str__(self):
        return self.message


class ValidationError(CrudError):
    """
    This exception is raised when invalid input has been detected (client side input)
    Always send back the message to the client in the response
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Bad Request: "

    def __init__(self, message="", errors=None, status_code=HTTPStatus.BAD_REQUEST.value):
        """
        :param message: Message to be returned in the (json) body
        :param errors: list of {"field": ..., "message": ...} items
        :param status_code: HTTP Status code
        """
        Exception.__init__(self, message)
        self.status_code = status_code
        self.errors = list(errors) if errors else None
        autocrud.log.warning("ValidationError: %s %s", message, self.errors or "")
        self.message += message


class StorageValidationError(ValidationError):
    """
    This exception is raised when a value is rejected at the storage boundary
    """

    def __init__(self, field, message):
        self.field = field
        super().__init__(message, errors=[{"field": field, "message": message}])


class ConflictError(CrudError):
    """
    This exception is raised when a unique field value is already taken
    """

    status_code = HTTPStatus.CONFLICT.value
    message = "Conflict: "

    def __init__(self, label, field, value):
        Exception.__init__(self, field, value)
        self.field = field
        self.value = value
        detail = f'{label} with {field} "{value}" already exists.'
        autocrud.log.warning("Conflict: %s", detail)
        self.errors = [{"field": field, "message": detail}]
        self.message += detail


class NotFoundError(CrudError):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    message = "Not Found: "

    def __init__(self, message="", missing=None):
        """
        :param message: Message to be returned in the (json) body
        :param missing: ids that could not be found, if any
        """
        Exception.__init__(self, message)
        self.missing = list(missing) if missing else []
        autocrud.log.warning("Not found: %s", message)
        self.message += message


class UnsupportedMediaTypeError(CrudError):
    """
    This exception is raised when the request content-type doesn't match the declared one
    """

    status_code = HTTPStatus.UNSUPPORTED_MEDIA_TYPE.value
    message = "Unsupported Media Type: "

    def __init__(self, message=""):
        Exception.__init__(self, message)
        autocrud.log.warning("UnsupportedMediaTypeError: %s", message)
        self.message += message


class InternalError(CrudError):
    """
    This exception is raised when a storage or pipeline failure has been detected
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value  # 500
    message = "Internal Error: "

    def __init__(self, message, status_code=HTTPStatus.INTERNAL_SERVER_ERROR.value):
        Exception.__init__(self, message)
        self.status_code = status_code
        autocrud.log.error("Internal Error: %s", message)
        if is_debug():
            if has_request_context():
                autocrud.log.info(f"Error in {request.url}")
            autocrud.log.debug(traceback.format_exc(120))
            self.message += str(message)
        else:
            self.message += HIDDEN_LOG


class GenerationError(InternalError):
    """
    This exception is raised when no synthetic value satisfying a field's constraints could be found
    """

    message = "Generation Error: "
