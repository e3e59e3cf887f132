"""Error taxonomy for the generation gateway.

Every failure the gateway reports to a caller is one of these classes. Each carries an
HTTP status, a stable machine-readable ``code``, a user-safe message and optional details
that are merged into the JSON error body.
"""
from typing import Any, Dict, Optional


class GatewayError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code:
            self.status_code = status_code

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


class AuthError(GatewayError):
    code = "unauthenticated"
    status_code = 401


class ValidationError(GatewayError, ValueError):
    code = "invalid_request"
    status_code = 400


class QuotaExceeded(GatewayError):
    code = "quota_exceeded"
    status_code = 429

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None, retry_after: Optional[int] = None):
        super().__init__(message, details=details)
        self.retry_after = retry_after


class StoreError(GatewayError):
    code = "store_unavailable"
    status_code = 500


class ConfigurationError(GatewayError):
    code = "not_configured"
    status_code = 500


class UpstreamError(GatewayError):
    """Upstream provider failed or answered with something unusable as a success."""
    code = "upstream_error"
    status_code = 502

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        # Only pass through statuses that are actually errors. Upstream 401/403 mean our own
        # provider credentials were refused, not the caller's, so they stay 502.
        passthrough = upstream_status and 400 <= upstream_status <= 599 and upstream_status not in (401, 403)
        status = upstream_status if passthrough else None
        super().__init__(message, details=details, status_code=status)
        self.upstream_status = upstream_status


class UpstreamTimeout(GatewayError, TimeoutError):
    code = "upstream_timeout"
    status_code = 504


class ResultInvalid(GatewayError):
    code = "result_not_counted"
    status_code = 502
