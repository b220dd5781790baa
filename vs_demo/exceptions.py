"""Typed exceptions for the VS demo tooling."""

from typing import Optional


class VSDemoError(Exception):
    """Base exception for vs-demo."""


class ConfigurationError(VSDemoError):
    """Unknown network, missing or malformed variable."""


class DependencyUnavailableError(VSDemoError):
    """A container, tunnel or API did not become reachable."""

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.output = output


class PollTimeout(DependencyUnavailableError):
    """A bounded poll exhausted its attempts."""

    def __init__(self, what: str, attempts: int):
        super().__init__(f"{what} not ready after {attempts} attempts")
        self.what = what
        self.attempts = attempts


class SubmissionError(VSDemoError):
    """A transaction was rejected or produced no hash.

    Attributes:
        output: Raw command output
    """

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class ConfirmationLagError(VSDemoError):
    """A transaction landed but its event could not be read back."""

    def __init__(self, tx_hash: str, event_type: str, attribute_key: str):
        super().__init__(
            f"Could not extract '{attribute_key}' from event '{event_type}' (tx: {tx_hash})"
        )
        self.tx_hash = tx_hash
        self.event_type = event_type
        self.attribute_key = attribute_key


class RemoteServiceError(VSDemoError):
    """Non-success status or error-shaped body from a remote API.

    Attributes:
        status_code: HTTP status if one was received
        body: Raw response body, surfaced verbatim
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DiscoveryError(RemoteServiceError):
    """A required identifier could not be discovered."""
