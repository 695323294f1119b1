"""Exception hierarchy shared by the engines."""
from __future__ import annotations


class OAuthSimError(Exception):
    """Base class for simulator failures."""


class ConfigurationError(OAuthSimError):
    """Required configuration is missing or a feature is switched off."""


class UpstreamError(OAuthSimError):
    """An identity provider endpoint failed or answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None, reason: str = "", body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.body = body

    def to_dict(self) -> dict[str, object]:
        return {
            "message": str(self),
            "status_code": self.status_code,
            "reason": self.reason,
            "body": self.body,
        }


class DiscoveryError(UpstreamError):
    """The provider's well-known configuration could not be loaded."""


class TokenVerificationError(OAuthSimError):
    """A JWT failed signature or claim verification."""


class CeremonyError(OAuthSimError):
    """A WebAuthn ceremony was driven out of sequence."""
