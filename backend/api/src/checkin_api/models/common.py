"""Shared API request/response models.

Domain models live in checkin_core.models. This module holds HTTP layer
concerns only: the camelCase base model and the validation error envelope.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from checkin_core.models.errors import ErrorCode, ErrorResponse

__all__ = [
    "CamelModel",
    "ErrorCode",
    "ErrorResponse",
    "ValidationErrorDetail",
    "ValidationErrorResponse",
    "format_validation_errors",
]


class CamelModel(BaseModel):
    """Request body with camelCase JSON keys (laneId, rawScanText, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationErrorDetail(BaseModel):
    """Detail of a single validation error."""

    model_config = ConfigDict(strict=True)

    loc: list[str] = Field(
        ...,
        description="Path to the field that failed validation",
        examples=[["body", "resourceId"]],
    )
    msg: str = Field(..., description="Human-readable error message")
    type: str = Field(..., description="Error type identifier", examples=["missing"])


class ValidationErrorResponse(BaseModel):
    """Response format for request validation errors (HTTP 422)."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: str = "ERR_VALIDATION"
    message: str = "Request validation failed"
    details: list[ValidationErrorDetail] = Field(default_factory=list)


def format_validation_errors(errors: list[Any]) -> ValidationErrorResponse:
    """Convert pydantic validation errors to ValidationErrorResponse."""
    details = [
        ValidationErrorDetail(
            loc=[str(loc) for loc in error.get("loc", [])],
            msg=str(error.get("msg", "")),
            type=str(error.get("type", "")),
        )
        for error in errors
    ]
    return ValidationErrorResponse(details=details)
