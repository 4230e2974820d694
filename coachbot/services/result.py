from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a non-critical pipeline stage (transcription, analyzer, reporter)."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    elapsed_ms: int = 0

    @staticmethod
    def success(value: T, elapsed_ms: int = 0) -> "Result[T]":
        return Result(ok=True, value=value, elapsed_ms=elapsed_ms)

    @staticmethod
    def failure(error: str, code: str = "unknown", elapsed_ms: int = 0) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code, elapsed_ms=elapsed_ms)

    @property
    def timed_out(self) -> bool:
        return not self.ok and self.error_code == "timeout"

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
