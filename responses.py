"""
Standard response envelope for the local API.

Every endpoint answers {"ok", "code", "message", "result"?, "meta"?}.
Positive codes mean success, negative codes mean an error.
"""

from typing import Any, Optional

# Success codes
CODE_SUCCESS = 1
CODE_DATA_RETRIEVED = 10
CODE_DATA_UPDATED = 12
CODE_DATA_DELETED = 13
CODE_CONFIG_UPDATED = 40

# Error codes
CODE_ERROR_BAD_REQUEST = -10
CODE_ERROR_UNAUTHORIZED = -11
CODE_ERROR_FORBIDDEN = -12
CODE_ERROR_NOT_FOUND = -13
CODE_ERROR_DATABASE = -20
CODE_ERROR_ENCRYPTION = -21
CODE_ERROR_CONFIG = -22
CODE_ERROR_UNAVAILABLE = -50
CODE_ERROR_INTERNAL = -99

# HTTP status -> application code, for errors raised as HTTPException
HTTP_ERROR_CODES = {
    400: CODE_ERROR_BAD_REQUEST,
    401: CODE_ERROR_UNAUTHORIZED,
    403: CODE_ERROR_FORBIDDEN,
    404: CODE_ERROR_NOT_FOUND,
    422: CODE_ERROR_BAD_REQUEST,
    503: CODE_ERROR_UNAVAILABLE,
}


def success_response(
    code: int,
    message: str,
    result: Any = None,
    meta: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build a successful API response."""
    response: dict[str, Any] = {"ok": True, "code": code, "message": message}
    if result is not None:
        response["result"] = result
    if meta is not None:
        response["meta"] = meta
    return response


def error_response(
    code: int,
    message: str,
    meta: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build an error API response."""
    response: dict[str, Any] = {"ok": False, "code": code, "message": message}
    if meta is not None:
        response["meta"] = meta
    return response
