from __future__ import annotations

from typing import Any, Dict, Optional


class CaseRequestError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code}
        if self.message:
            payload["message"] = self.message
        return payload


class ValidationFailed(CaseRequestError):
    status_code = 400

    def __init__(self, code: str, message: str = "", errors: Optional[list[str]] = None):
        super().__init__(code, message)
        self.errors = list(errors or [])

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class AuthenticationRequired(CaseRequestError):
    status_code = 401


class PermissionDenied(CaseRequestError):
    status_code = 403


class NotFound(CaseRequestError):
    status_code = 404


class Conflict(CaseRequestError):
    status_code = 409
