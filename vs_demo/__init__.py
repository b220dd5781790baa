"""VS demo: deploy a Verifiable Service, obtain ECS credentials and create a Trust Registry on Verana."""

from .client import VSAgentClient
from .config import DemoConfig, NetworkProfile, resolve_network
from .exceptions import (
    ConfigurationError,
    ConfirmationLagError,
    DependencyUnavailableError,
    DiscoveryError,
    RemoteServiceError,
    SubmissionError,
    VSDemoError,
)

try:
    from importlib.metadata import version as _pkg_version
    __version__ = _pkg_version("verana-vs-demo")
except Exception:
    __version__ = "0.0.0"  # fallback for editable/dev installs

__all__ = [
    "VSAgentClient",
    "DemoConfig",
    "NetworkProfile",
    "resolve_network",
    "VSDemoError",
    "ConfigurationError",
    "DependencyUnavailableError",
    "SubmissionError",
    "ConfirmationLagError",
    "RemoteServiceError",
    "DiscoveryError",
]
