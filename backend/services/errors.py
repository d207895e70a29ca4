"""
DH CRM - Error taxonomy

Business errors raised by services and routes. server.py maps every
CRMError to a JSON response {"detail": ...} with the matching status code,
the same envelope FastAPI uses for HTTPException.
"""


class CRMError(Exception):
    """Base class for expected, user-actionable errors"""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(CRMError):
    """Missing field, illegal transition, edit on a locked record"""
    status_code = 400


class NotFoundError(CRMError):
    status_code = 404


class ConflictError(CRMError):
    """Duplicate unique key or stale revision"""
    status_code = 409


class CollaboratorError(CRMError):
    """
    Persistence / auth / blob storage failure.
    The detail returned to the caller stays generic; the cause is logged.
    """
    status_code = 500

    def __init__(self, detail: str = "Internal error, please retry later", cause: Exception = None):
        super().__init__(detail)
        self.cause = cause
