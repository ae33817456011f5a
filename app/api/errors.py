# app/api/errors.py
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

ErrorKind = Literal[
    "malformed-input",
    "not-found",
    "unauthorized",
    "payment-required",
    "payment-rejected",
    "verification-unavailable",
    "storage-unavailable",
    "configuration",
    "internal",
]


class ErrorBody(BaseModel):
    """Body of every non-402 error response."""
    kind: ErrorKind
    message: str
    details: Optional[Dict[str, Any]] = Field(default=None, description="Extra context, e.g. usage hints")


def error_response(status_code: int, kind: ErrorKind, message: str,
                   details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = ErrorBody(kind=kind, message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))
