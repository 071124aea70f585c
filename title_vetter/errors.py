from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


class VettingError(Exception):
    error_type = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self, request_id: Optional[str] = None) -> dict:
        payload = {
            "success": False,
            "error": self.message,
            "errorType": self.error_type,
            "statusCode": self.status_code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if request_id:
            payload["requestId"] = request_id
        return payload


class ValidationError(VettingError):
    error_type = "VALIDATION_ERROR"
    status_code = 400


class WhoisLookupError(VettingError):
    error_type = "WHOIS_LOOKUP_ERROR"
    status_code = 500

    @classmethod
    def no_server(cls, tld: str) -> "WhoisLookupError":
        return cls(f"No WHOIS server available for TLD: {tld}", status_code=404)


class NetworkError(VettingError):
    error_type = "NETWORK_ERROR"
    status_code = 503


class LookupTimeoutError(VettingError):
    error_type = "TIMEOUT_ERROR"
    status_code = 504


class RateLimitError(VettingError):
    error_type = "RATE_LIMIT_ERROR"
    status_code = 429

    def __init__(self, message: str, reset_at: float) -> None:
        super().__init__(message)
        self.reset_at = reset_at

    def to_dict(self, request_id: Optional[str] = None) -> dict:
        payload = super().to_dict(request_id)
        payload["resetAt"] = self.reset_at
        return payload


class InternalError(VettingError):
    error_type = "INTERNAL_ERROR"
    status_code = 500


class ConfigurationError(InternalError):
    pass
