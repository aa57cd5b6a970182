"""
Error taxonomy and tagged result type shared by every service boundary.

Operations return ``Ok(value)`` or ``Err(EngineError)`` instead of raising,
so callers branch on the result kind. ``to_envelope`` renders either into
the ``{"success": ..., "data" | "error": ...}`` shape used by the outer
HTTP layer.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class ErrorKind(str, Enum):
    """Category of a failed operation."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    CONFLICT = "conflict"
    INTERNAL = "internal"


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.CONFLICT, ErrorKind.INTERNAL})

# pydantic built-in error types mapped onto engine codes
_PYDANTIC_CODES: dict[str, str] = {
    "missing": "REQUIRED_FIELD",
    "string_too_short": "INVALID_LENGTH",
    "string_too_long": "INVALID_LENGTH",
    "too_short": "INVALID_LENGTH",
    "too_long": "INVALID_LENGTH",
    "enum": "INVALID_ENUM_VALUE",
    "literal_error": "INVALID_ENUM_VALUE",
    "greater_than": "OUT_OF_RANGE",
    "greater_than_equal": "OUT_OF_RANGE",
    "less_than": "OUT_OF_RANGE",
    "less_than_equal": "OUT_OF_RANGE",
    "date_parsing": "INVALID_DATE",
    "date_from_datetime_parsing": "INVALID_DATE",
    "date_type": "INVALID_DATE",
    "datetime_parsing": "INVALID_DATE",
    "datetime_from_date_parsing": "INVALID_DATE",
    "datetime_type": "INVALID_DATE",
    "extra_forbidden": "UNKNOWN_FIELD",
}


@dataclass(frozen=True)
class EngineError:
    """Structured failure: machine-readable code plus human-readable message."""
    kind: ErrorKind
    code: str
    message: str
    field: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    details: dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.field is not None:
            payload["field"] = self.field
        if self.retry_after_seconds is not None:
            payload["retry_after_seconds"] = self.retry_after_seconds
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed outcome carrying an EngineError."""
    error: EngineError

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise ResultError(self.error)


Result = Union[Ok[T], Err]


class ResultError(Exception):
    """Raised when unwrapping an Err."""

    def __init__(self, error: EngineError) -> None:
        super().__init__(f"{error.code}: {error.message}")
        self.error = error


def validation_error(code: str, message: str, field: Optional[str] = None, **details: Any) -> Err:
    return Err(EngineError(ErrorKind.VALIDATION, code, message, field=field, details=details))


def business_rule(code: str, message: str, **details: Any) -> Err:
    return Err(EngineError(ErrorKind.BUSINESS_RULE, code, message, details=details))


def unauthorized(code: str, message: str) -> Err:
    return Err(EngineError(ErrorKind.AUTHORIZATION, code, message))


def not_found(code: str, message: str) -> Err:
    return Err(EngineError(ErrorKind.NOT_FOUND, code, message))


def rate_limited(message: str, retry_after_seconds: int) -> Err:
    return Err(EngineError(
        ErrorKind.RATE_LIMITED,
        "RATE_LIMIT_EXCEEDED",
        message,
        retry_after_seconds=retry_after_seconds,
    ))


def version_conflict(entity: str, entity_id: str) -> Err:
    return Err(EngineError(
        ErrorKind.CONFLICT,
        "VERSION_CONFLICT",
        f"{entity} {entity_id} was modified concurrently; reload and retry",
        details={"entity": entity, "id": entity_id},
    ))


def internal_error(message: str, code: str = "INTERNAL_ERROR") -> Err:
    return Err(EngineError(ErrorKind.INTERNAL, code, message))


def from_validation_error(exc: ValidationError) -> Err:
    """Translate the first pydantic error into a field-scoped validation Err.

    Custom validators raise ``PydanticCustomError`` whose type is the
    engine code; built-in pydantic failures are mapped via _PYDANTIC_CODES.
    All collected errors are kept under ``details["errors"]``.
    """
    errors = exc.errors(include_url=False)
    first = errors[0]
    ctx = first.get("ctx") or {}
    loc = ".".join(str(part) for part in first.get("loc", ()))
    field_name = loc or ctx.get("field")
    code = _PYDANTIC_CODES.get(first["type"], first["type"])
    if code == first["type"] and not code.isupper():
        code = "INVALID_FIELD"
    summary = [
        {"field": ".".join(str(p) for p in e.get("loc", ())) or (e.get("ctx") or {}).get("field"),
         "message": e["msg"]}
        for e in errors
    ]
    return validation_error(code, first["msg"], field=field_name, errors=summary)


def parse_command(model: type[M], payload: Any) -> Result[M]:
    """Validate a raw payload into a typed command model."""
    if isinstance(payload, model):
        return Ok(payload)
    try:
        return Ok(model.model_validate(payload))
    except ValidationError as exc:
        return from_validation_error(exc)


def to_envelope(result: "Result[Any]") -> dict[str, Any]:
    """Render a result into the structured success/error envelope."""
    if isinstance(result, Ok):
        value = result.value
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        elif isinstance(value, list):
            value = [
                v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value
            ]
        return {"success": True, "data": value}
    return {"success": False, "error": result.error.to_dict()}
