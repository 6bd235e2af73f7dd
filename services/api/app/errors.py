"""
Error taxonomy for the API.

Every error is an HTTPException carrying a machine-readable `error` code;
app.main turns them into `{"detail": ..., "error": ...}` bodies.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class ApiError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "server_fault"
    default_detail = "Server error"

    def __init__(self, detail: Optional[Any] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail if detail is not None else self.default_detail,
            headers=headers,
        )


class NotFound(ApiError):
    """Entity absent"""

    status_code = status.HTTP_404_NOT_FOUND
    error = "not_found"
    default_detail = "Not found"


class ValidationFailed(ApiError):
    """Disallowed field patch, malformed credentials or duplicate unique key"""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "validation_failed"
    default_detail = "Invalid request"


class Unauthenticated(ApiError):
    """Missing or invalid session"""

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "unauthenticated"
    default_detail = "Please authenticate."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Unauthorized(ApiError):
    """Operating on another user's resource"""

    status_code = status.HTTP_403_FORBIDDEN
    error = "unauthorized"
    default_detail = "Not allowed to modify this resource"


class ServerFault(ApiError):
    """Unexpected downstream failure"""
