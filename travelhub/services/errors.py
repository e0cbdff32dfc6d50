"""
Domain errors raised by the request workflow services.
Routes let them propagate; the app renders them through one exception handler.
"""


class WorkflowError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(WorkflowError):
    status_code = 404


class InvalidTransition(WorkflowError):
    status_code = 409


class Unauthorized(WorkflowError):
    status_code = 403


class ValidationFailed(WorkflowError):
    status_code = 400


class StoreUnavailable(WorkflowError):
    status_code = 503


class NotificationDeliveryFailure(WorkflowError):
    """Soft failure; the dispatcher logs and swallows it."""
    status_code = 502
