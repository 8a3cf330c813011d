"""Error taxonomy shared by the intake endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class IntakeError(Exception):
    """Base error rendered as ``{"ok": false, "error": {...}}`` by the HTTP layer."""

    code = "INTERNAL_ERROR"
    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message}}


class Unauthorized(IntakeError):
    code = "UNAUTHORIZED"
    status = 401

    def __init__(self, message: str = "Missing or invalid Authorization header") -> None:
        super().__init__(message)


class RateLimited(IntakeError):
    code = "RATE_LIMITED"
    status = 429

    def __init__(self, scope: str, message: str) -> None:
        super().__init__(message)
        self.scope = scope


class ValidationError(IntakeError):
    code = "VALIDATION_ERROR"
    status = 400

    def __init__(self, fields: List[str], message: Optional[str] = None) -> None:
        super().__init__(message or f"Missing or invalid fields: {', '.join(fields)}")
        self.fields = list(fields)

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["error"]["fields"] = self.fields
        return payload


class NotFound(IntakeError):
    code = "NOT_FOUND"
    status = 404


class WriteFailed(IntakeError):
    code = "WRITE_FAILED"
    status = 500

    def __init__(self, message: str = "Failed to create lead record") -> None:
        super().__init__(message)


class InternalError(IntakeError):
    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
