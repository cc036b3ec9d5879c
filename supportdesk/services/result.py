from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")

VALIDATION_ERROR = "validation_error"
NOT_FOUND = "not_found"
STORAGE_ERROR = "storage_error"
MALFORMED_STATE = "malformed_state"
EXTERNAL_DELIVERY_ERROR = "external_delivery_error"


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        if not self.ok:
            return Result(ok=False, error=self.error, error_code=self.error_code)
        return Result.success(fn(self.value))

    @property
    def is_not_found(self) -> bool:
        return not self.ok and self.error_code == NOT_FOUND


class StorageError(Exception):
    """Raised inside a unit of work to abort it after a failed persistence call."""

    def __init__(self, message: str, code: str = STORAGE_ERROR):
        self.code = code
        super().__init__(message)

    @classmethod
    def from_result(cls, result: Result) -> "StorageError":
        return cls(result.error or "storage failure", result.error_code or STORAGE_ERROR)


def require(result: Result[T]) -> T:
    """Unwrap a result or abort the surrounding unit of work."""
    if not result.ok:
        raise StorageError.from_result(result)
    return result.value
