"""
Failure taxonomy for the moderation pipeline.

Expected failure modes are returned as values rather than raised, so that
every caller has to handle each kind. A Failure carries the kind, a
caller-safe message, and, for quota failures, the diagnostic numbers.
"""

from dataclasses import dataclass
from enum import Enum


class FailureKind(str, Enum):
    """Every way a moderation request can terminate without a decision."""

    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROVIDER_AUTH_MISCONFIGURED = "provider_auth_misconfigured"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_MALFORMED_RESPONSE = "provider_malformed_response"
    PERSISTENCE_ERROR = "persistence_error"


HTTP_STATUS_BY_KIND: dict[FailureKind, int] = {
    FailureKind.BAD_REQUEST: 400,
    FailureKind.UNAUTHORIZED: 401,
    FailureKind.QUOTA_EXCEEDED: 429,
    FailureKind.PROVIDER_AUTH_MISCONFIGURED: 500,
    FailureKind.PROVIDER_UNAVAILABLE: 500,
    FailureKind.PROVIDER_MALFORMED_RESPONSE: 500,
    FailureKind.PERSISTENCE_ERROR: 500,
}

# Messages returned to callers for server-side failures. Backend detail
# stays in the logs.
PUBLIC_MESSAGES: dict[FailureKind, str] = {
    FailureKind.PROVIDER_AUTH_MISCONFIGURED: "Moderation service is temporarily unavailable.",
    FailureKind.PROVIDER_UNAVAILABLE: "Moderation service is temporarily unavailable.",
    FailureKind.PROVIDER_MALFORMED_RESPONSE: "Moderation service returned an unusable response.",
    FailureKind.PERSISTENCE_ERROR: "Moderation could not be recorded. Please retry the request.",
}


@dataclass
class Failure:
    """
    A terminal failure of one pipeline stage.

    Attributes:
        kind: The failure classification
        message: Message safe to show to the caller
        detail: Internal detail for logs (never returned to callers)
        quota: Monthly quota, populated for QUOTA_EXCEEDED
        used: Current-month usage, populated for QUOTA_EXCEEDED
    """

    kind: FailureKind
    message: str
    detail: str | None = None
    quota: int | None = None
    used: int | None = None

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    @property
    def public_message(self) -> str:
        return PUBLIC_MESSAGES.get(self.kind, self.message)

    def to_body(self) -> dict:
        """Error body in the shape returned by the HTTP layer."""
        body: dict = {"error": self.public_message, "code": self.kind.value}
        if self.kind is FailureKind.QUOTA_EXCEEDED:
            body["quota"] = self.quota
            body["used"] = self.used
        return body
