"""
Result Envelope

One generic type for every flow outcome, mapped uniformly onto the
`{success, message, data, error}` JSON envelope at the boundary.
"""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from neowealth.errors import ErrorKind, HTTP_STATUS_BY_KIND, NeoWealthError

T = TypeVar("T")


class ErrorInfo(BaseModel):
    """Serializable description of a failure."""

    kind: ErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class Result(BaseModel, Generic[T]):
    """
    Outcome of a flow.

    Exactly one of `data` (on success) or `error` (on failure) is meaningful.
    """

    success: bool
    message: Optional[str] = None
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: Optional[T] = None, message: Optional[str] = None) -> "Result[T]":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: NeoWealthError, message: Optional[str] = None) -> "Result[T]":
        return cls(
            success=False,
            message=message or error.message,
            error=ErrorInfo(
                kind=error.kind,
                message=error.message,
                details=error.details,
            ),
        )

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return HTTP_STATUS_BY_KIND[self.error.kind]

    def to_envelope(self) -> dict:
        """Convert to the JSON envelope, omitting empty keys."""
        dumped = self.model_dump(mode="json")
        envelope: dict[str, Any] = {"success": self.success}
        for key in ("message", "data", "error"):
            if dumped.get(key) is not None:
                envelope[key] = dumped[key]
        return envelope
