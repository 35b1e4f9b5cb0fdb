"""
Error envelope shared by every router, for OpenAPI docs.

Bodies are produced by the handlers in app/core/errors.py; these models only
describe them.
"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "INSUFFICIENT_FREEZES",
                "message": "Recovery needs 3 streak freezes but only 1 available.",
                "details": {"available": 1, "required": 3},
            }
        }
    )

    code: str = Field(description="Machine-readable error code, e.g. NOT_FOUND, INVALID_VALUE.")
    message: str
    details: Optional[dict[str, Any]] = None


NOT_FOUND = {404: {"model": ErrorResponse, "description": "Unknown user, habit or squad."}}
INVALID_VALUE = {422: {"model": ErrorResponse, "description": "Malformed or out-of-range value."}}
CONFLICT = {409: {"model": ErrorResponse, "description": "Streak rule rejected the request."}}
