"""Error taxonomy for the approval and risk-assessment pipeline.

Every failure the core reports is a KyPipelineError subclass carrying a
machine-readable ``kind`` and the HTTP status the coordinator maps it to.
The HTTP layer renders ``to_payload()`` verbatim, so callers can tell the
failure kinds apart without parsing messages.

Provides:
- KyPipelineError: Base class
- ValidationError, AuthenticationError, AuthorizationError
- NotFoundError / EntryNotFound
- InvariantViolation / ApprovedEntryImmutable
- UpstreamUnavailable / AnalysisUnavailable / GatewayError
- PersistenceError, ConfigurationError
"""

from typing import Any


class KyPipelineError(Exception):
    """Base class for all pipeline failures."""

    kind = "internal_error"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        """Structured error body for API responses."""
        return {"ok": False, "error": {"kind": self.kind, "message": self.message}}


class ValidationError(KyPipelineError):
    """Malformed or missing required input. Never reaches persistence."""

    kind = "validation_error"
    status = 400


class AuthenticationError(KyPipelineError):
    """Bad or missing signature or credential."""

    kind = "authentication_error"
    status = 401


class AuthorizationError(KyPipelineError):
    """Authenticated, but not allowed to perform the operation."""

    kind = "authorization_error"
    status = 403


class NotFoundError(KyPipelineError):
    kind = "not_found"
    status = 404


class EntryNotFound(NotFoundError):
    """Referenced KY entry does not exist (or belongs to another project)."""

    def __init__(self, entry_id: str):
        super().__init__(f"KY entry not found: {entry_id}")
        self.entry_id = entry_id


class InvariantViolation(KyPipelineError):
    """Operation would break a model invariant; nothing was changed."""

    kind = "invariant_violation"
    status = 400


class ApprovedEntryImmutable(InvariantViolation):
    """An approved KY entry cannot be deleted."""

    def __init__(self, entry_id: str):
        super().__init__(f"KY entry {entry_id} is approved; unapprove it before deleting")
        self.entry_id = entry_id


class UpstreamUnavailable(KyPipelineError):
    """Analyzer or messaging gateway unreachable or erroring."""

    kind = "upstream_unavailable"
    status = 500


class AnalysisUnavailable(UpstreamUnavailable):
    """Photo analyzer failed or returned content with no recoverable JSON."""

    kind = "analysis_unavailable"


class GatewayError(UpstreamUnavailable):
    """Messaging gateway rejected the call or could not be reached.

    Attributes:
        gateway_status: HTTP status returned by the gateway (0 on transport failure)
        gateway_body: Raw response body (or transport error text)
    """

    kind = "gateway_error"

    def __init__(self, gateway_status: int, gateway_body: str):
        super().__init__(f"messaging gateway error (status {gateway_status})")
        self.gateway_status = gateway_status
        self.gateway_body = gateway_body

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["error"]["status"] = self.gateway_status
        payload["error"]["body"] = self.gateway_body
        return payload


class PersistenceError(KyPipelineError):
    """Record store write or read failed."""

    kind = "persistence_error"
    status = 500


class ConfigurationError(KyPipelineError):
    """A secret or credential required by the operation is not configured."""

    kind = "configuration_error"
    status = 500
