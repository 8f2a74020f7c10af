"""Mapping of core errors onto HTTP responses for commands and routers."""

from fastapi import HTTPException

from livechat.core.errors import (
    AuthError,
    BlankMessageError,
    FetchError,
    LiveChatError,
    SendError,
    StatusError,
    StorePermissionError,
)

REAUTHENTICATE_HINT = "Permission denied. Please try logging out and back in."


def http_exception_for(error: LiveChatError) -> HTTPException:
    if isinstance(error, BlankMessageError):
        return HTTPException(status_code=422, detail=error.message)
    if isinstance(error, StorePermissionError):
        return HTTPException(status_code=403, detail=REAUTHENTICATE_HINT)
    if isinstance(error, AuthError):
        return HTTPException(status_code=401, detail=error.message)
    if isinstance(error, FetchError):
        return HTTPException(status_code=503, detail=error.message)
    if isinstance(error, (SendError, StatusError)):
        return HTTPException(status_code=502, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)
