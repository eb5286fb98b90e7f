"""Outcome of an oracle call that may degrade to a deterministic fallback."""

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")

TIMEOUT = "timeout"
TRANSPORT = "transport"
SCHEMA = "schema"
UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, code: str = UNAVAILABLE) -> "Result[T]":
        return cls(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def map(self, func: Callable[[T], U]) -> "Result[U]":
        """Transform a successful value; failures pass through with their code."""
        if not self.ok:
            return Result.failure(self.error or "", self.error_code or UNAVAILABLE)
        return Result.success(func(self.value))
