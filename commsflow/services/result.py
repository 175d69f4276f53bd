from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


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

    def as_error_dict(self) -> dict:
        """Shape used for logic-error responses: {"status": "error", "error": ...}."""
        return {"status": "error", "error": self.error, "error_code": self.error_code}


@dataclass
class ActionResult:
    """Uniform outcome of every action handler."""

    success: bool
    message: str
    details: Optional[dict] = None

    def as_dict(self) -> dict:
        data = {"success": self.success, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data
