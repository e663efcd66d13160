"""Error taxonomy and the structured result every operation returns."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class MemkeepError(Exception):
    """Base error: what failed, plus a concrete remediation step."""

    code = "error"

    def __init__(
        self,
        message: str,
        remediation: str = "",
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.details = details or {}

    def __str__(self) -> str:
        if self.remediation:
            return f"{self.message} ({self.remediation})"
        return self.message


class NotFoundError(MemkeepError):
    code = "not_found"


class ValidationError(MemkeepError, ValueError):
    """Bad type, missing required field or a disallowed scope choice."""

    code = "validation"

    def __init__(
        self,
        message: str,
        remediation: str = "",
        field: str = "unknown",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, remediation, details)
        self.field = field


class ConflictError(MemkeepError):
    code = "conflict"


class UnavailableError(MemkeepError):
    """Raised when the embedding provider is unreachable or errors."""

    code = "unavailable"


class CorruptionError(MemkeepError):
    code = "corruption"


class PermissionDeniedError(MemkeepError):
    code = "permission_denied"


@dataclass
class OperationResult:
    """Structured success/error result handed back to callers."""

    status: str = "success"
    data: Any = None
    error: str | None = None
    code: str | None = None
    remediation: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, data: Any = None, warnings: list[str] | None = None) -> OperationResult:
        return cls(status="success", data=data, warnings=list(warnings or []))

    @classmethod
    def failure(cls, exc: Exception) -> OperationResult:
        if isinstance(exc, MemkeepError):
            return cls(
                status="error",
                error=exc.message,
                code=exc.code,
                remediation=exc.remediation or None,
                data=exc.details or None,
            )
        return cls(
            status="error",
            error=str(exc),
            code="io_error",
            remediation="Check that the memory directory exists and is writable",
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"status": self.status}
        if self.data is not None:
            out["data"] = self.data
        if self.error:
            out["error"] = self.error
            out["code"] = self.code
        if self.remediation:
            out["remediation"] = self.remediation
        if self.warnings:
            out["warnings"] = self.warnings
        return out
