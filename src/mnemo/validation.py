"""Schema-check payloads before anything goes on the wire."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import pydantic
from pydantic import BaseModel

from mnemo.errors import ApiErrorResponse, ErrorCode, create_error_response

M = TypeVar("M", bound=BaseModel)


@dataclass
class ParseResult(Generic[M]):
    """Outcome of safe_parse: a coerced model or a VALIDATION_ERROR."""

    success: bool
    data: M | None = None
    error: ApiErrorResponse | None = None

    def payload(self, *, partial: bool = False) -> dict[str, Any]:
        """JSON-ready request body.

        `partial` keeps only the fields the caller set (explicit nulls
        included), which is what update requests need.
        """
        if self.data is None:
            raise ValueError("payload() called on a failed parse")
        if partial:
            return self.data.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return self.data.model_dump(mode="json", by_alias=True, exclude_none=True)


def field_path(loc: tuple[Any, ...]) -> str:
    """Dotted field name from a pydantic error location."""
    return ".".join(str(part) for part in loc)


def error_details(exc: pydantic.ValidationError) -> list[dict[str, str]]:
    return [
        {"field": field_path(err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def safe_parse(schema: type[M], payload: Any) -> ParseResult[M]:
    """Validate `payload` against `schema` without raising."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True, exclude_unset=True)
    if payload is None:
        payload = {}
    try:
        data = schema.model_validate(payload)
    except pydantic.ValidationError as e:
        return ParseResult(
            success=False,
            error=create_error_response(
                "Validation failed", ErrorCode.VALIDATION_ERROR, 400, error_details(e)
            ),
        )
    return ParseResult(success=True, data=data)
