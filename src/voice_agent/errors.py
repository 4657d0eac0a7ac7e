"""Error taxonomy for the voice agent service.

Boundary failures (authentication, validation, JSON parsing) are turned
into 4xx responses by the webhook endpoint. Integration failures are raised
by the external service clients and caught by the orchestration layer,
which logs them and continues with reduced functionality.
"""

from __future__ import annotations


class VoiceAgentError(Exception):
    """Base class for all service errors."""


class AuthenticationFailure(VoiceAgentError):
    """Webhook signature or API key missing or invalid."""


class ValidationFailure(VoiceAgentError):
    """A required identifier is absent from an event payload."""


class LookupFailure(VoiceAgentError):
    """A referenced meeting or agent does not exist."""


class IntegrationFailure(VoiceAgentError):
    """An external call failed or timed out.

    Args:
        service: Short name of the external service (e.g. "stream", "llm").
        message: Human-readable failure description.
    """

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class ParseFailure(VoiceAgentError):
    """A single transcript record could not be parsed."""
