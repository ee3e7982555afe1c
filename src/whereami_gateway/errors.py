"""Error taxonomy for the whereami gateway client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

HTTP_BODY_PREVIEW = 160


@dataclass
class ErrorPayload:
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error_code": self.code,
            "error": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


def error_response(code: str, message: str, *, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return ErrorPayload(code, message, details).to_dict()


class GatewayError(Exception):
    code = "GATEWAY_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return error_response(self.code, self.message, details=self.details)


class ValidationFailure(GatewayError):
    code = "VALIDATION_ERROR"


class HTTPStatusFailure(GatewayError):
    """Non-2xx answer from the backend.

    The message carries the status and at most ``HTTP_BODY_PREVIEW``
    characters of the (trimmed) body, with an ellipsis when cut.
    """

    code = "HTTP_ERROR"

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body or ""
        preview = self.body.strip()
        if len(preview) > HTTP_BODY_PREVIEW:
            preview = preview[:HTTP_BODY_PREVIEW] + "…"
        message = f"HTTP {status} {preview}".rstrip()
        super().__init__(message, details={"status": status})


class RequestTimeout(GatewayError):
    code = "REQUEST_TIMEOUT"

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"timeout ({timeout_ms} ms)", details={"timeout_ms": timeout_ms})


class SendFailure(GatewayError):
    code = "SEND_ERROR"

    def __init__(self, detail: Any):
        self.detail = str(detail)
        super().__init__(f"send error: {self.detail}")


__all__ = [
    "ErrorPayload",
    "error_response",
    "GatewayError",
    "ValidationFailure",
    "HTTPStatusFailure",
    "RequestTimeout",
    "SendFailure",
    "HTTP_BODY_PREVIEW",
]
