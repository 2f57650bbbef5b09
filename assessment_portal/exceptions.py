"""Domain exceptions mapped to HTTP responses by the handlers in main.py."""
from typing import Any, Optional


class AppException(Exception):
    status_code = 500

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail)
        self.detail = detail


class UnauthorizedException(AppException):
    status_code = 401

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(detail)


class ForbiddenException(AppException):
    status_code = 403

    def __init__(self, detail: str = "Access denied"):
        super().__init__(detail)


class NotFoundException(AppException):
    status_code = 404

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail)


class ValidationException(AppException):
    status_code = 400

    def __init__(self, detail: str = "Invalid request"):
        super().__init__(detail)


class ConflictException(AppException):
    status_code = 409

    def __init__(self, detail: str = "Request conflicts with current state"):
        super().__init__(detail)


class AnalysisServiceException(AppException):
    """Failure talking to the external psychometric analysis service."""

    status_code = 502
    error_code = "API_ERROR"

    def __init__(self, detail: str, remote_status: Optional[int] = None, remote_body: Any = None):
        super().__init__(detail)
        self.remote_status = remote_status
        self.remote_body = remote_body


class AnalysisTimeoutException(AnalysisServiceException):
    status_code = 504
    error_code = "API_TIMEOUT"


class AnalysisRemoteException(AnalysisServiceException):
    status_code = 502
    error_code = "API_ERROR"


class AnalysisConnectionException(AnalysisServiceException):
    status_code = 503
    error_code = "API_CONNECTION_ERROR"
