"""
Run configuration for the VS demo.

Two layers:

- NetworkProfile: the fixed endpoint bundle for a Verana network
  (devnet or testnet), optionally with per-endpoint overrides.
- DemoConfig: everything a run needs, built once from defaults, an optional
  key=value env file, the process environment and CLI flags, then passed
  explicitly to every component.
"""

from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

DEFAULT_NETWORK = "testnet"

NETWORKS: Dict[str, Dict[str, str]] = {
    "devnet": {
        "chain_id": "vna-devnet-1",
        "node_rpc": "https://rpc.devnet.verana.network",
        "fees": "600000uvna",
        "faucet_url": "https://faucet.devnet.verana.network",
        "resolver_url": "https://resolver.devnet.verana.network",
        "ecs_admin_url": "https://admin-ecs-trust-registry.devnet.verana.network",
        "ecs_public_url": "https://ecs-trust-registry.devnet.verana.network",
        "indexer_url": "https://idx.devnet.verana.network",
    },
    "testnet": {
        "chain_id": "vna-testnet-1",
        "node_rpc": "https://rpc.testnet.verana.network",
        "fees": "600000uvna",
        "faucet_url": "https://faucet.testnet.verana.network",
        "resolver_url": "https://resolver.testnet.verana.network",
        "ecs_admin_url": "https://admin-ecs-trust-registry.testnet.verana.network",
        "ecs_public_url": "https://ecs-trust-registry.testnet.verana.network",
        "indexer_url": "https://idx.testnet.verana.network",
    },
}

# Environment variable -> NetworkProfile field. The faucet is fixed per network.
NETWORK_OVERRIDES = {
    "CHAIN_ID": "chain_id",
    "NODE_RPC": "node_rpc",
    "FEES": "fees",
    "RESOLVER_URL": "resolver_url",
    "ECS_TR_ADMIN_API": "ecs_admin_url",
    "ECS_TR_PUBLIC_URL": "ecs_public_url",
    "INDEXER_URL": "indexer_url",
}

_URL_FIELDS = (
    "node_rpc", "faucet_url", "resolver_url",
    "ecs_admin_url", "ecs_public_url", "indexer_url",
)


class NetworkProfile(BaseModel):
    """Endpoints for one Verana network."""

    model_config = ConfigDict(frozen=True)

    name: str
    chain_id: str = Field(min_length=1)
    node_rpc: str
    fees: str
    faucet_url: str
    resolver_url: str
    ecs_admin_url: str
    ecs_public_url: str
    indexer_url: str

    @field_validator(*_URL_FIELDS)
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"not an absolute http(s) URL: {value!r}")
        return value.rstrip("/")


def resolve_network(name: str, overrides: Optional[Mapping[str, str]] = None) -> NetworkProfile:
    """
    Resolve a network name to its profile.

    Args:
        name: "devnet" or "testnet"
        overrides: Mapping keyed by env variable name (CHAIN_ID, NODE_RPC, ...);
                   empty values are ignored

    Raises:
        ConfigurationError: Unknown network or invalid override
    """
    if name not in NETWORKS:
        raise ConfigurationError(f"Unknown network: {name}. Use 'devnet' or 'testnet'.")

    values = dict(NETWORKS[name])
    for env_key, field in NETWORK_OVERRIDES.items():
        value = (overrides or {}).get(env_key)
        if value:
            values[field] = value

    try:
        return NetworkProfile(name=name, **values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid network configuration for {name}: {e}") from e


def load_env_file(path) -> Dict[str, str]:
    """Parse a sourced-shell style KEY=value file.

    Blank lines and comments are skipped, an `export ` prefix is accepted and
    matching surrounding quotes are stripped.
    """
    values: Dict[str, str] = {}
    with open(path) as f:
        for lineno, raw in enumerate(f, 1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export "):].lstrip()
            if "=" not in line:
                raise ConfigurationError(f"{path}:{lineno}: expected KEY=value, got {raw.rstrip()!r}")
            key, _, value = line.partition("=")
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            values[key.strip()] = value
    return values


class DemoConfig(BaseModel):
    """Immutable configuration for one run.

    Field names are the lower-cased environment variable names
    (``vs_agent_image`` <- ``VS_AGENT_IMAGE``).
    """

    model_config = ConfigDict(frozen=True)

    network: NetworkProfile

    # VS Agent
    vs_agent_image: str = "veranalabs/vs-agent:latest"
    vs_agent_container_name: str = "vs-demo"
    vs_agent_admin_port: int = 3000
    vs_agent_public_port: int = 3001
    vs_agent_data_dir: str = Field(default_factory=lambda: str(Path.cwd() / "vs-agent-demo-data"))

    # CLI accounts
    user_acc: str = "vs-demo-admin"
    validator_acc: Optional[str] = None

    # Organization
    org_name: str = "Verana Example Organization"
    org_country: str = "CH"
    org_logo_url: str = "https://verana.io/logo.svg"
    org_registry_id: str = "CH-CHE-123.456.789"
    org_address: str = "Bahnhofstrasse 42, 8001 Zurich, Switzerland"

    # Service
    service_name: str = "Example Verana Service"
    service_type: str = "IssuerService"
    service_description: str = "An example service using Verana, the Open Trust Layer"
    service_logo_url: str = "https://verana.io/logo.svg"
    service_min_age: int = 0
    service_terms: str = "https://verana-labs.github.io/governance-docs/EGF/example.pdf"
    service_privacy: str = "https://verana-labs.github.io/governance-docs/EGF/example.pdf"

    # Trust Registry
    custom_schema_url: str = "https://verana-labs.github.io/verifiable-trust-spec/schemas/v4/example.json"
    custom_schema_base_id: str = "example"
    tr_registry_url: str = ""
    egf_language: str = "en"
    egf_doc_url: str = ""
    egf_doc_digest: str = ""
    validation_fees: int = 0
    issuance_fees: int = 0
    verification_fees: int = 0

    # AnonCreds
    enable_anoncreds: bool = False
    anoncreds_name: Optional[str] = None
    anoncreds_version: str = "1.0"
    anoncreds_support_revocation: bool = False

    output_file: str = "vs-demo-ids.env"

    @property
    def admin_api(self) -> str:
        return f"http://localhost:{self.vs_agent_admin_port}"

    @property
    def public_api(self) -> str:
        return f"http://localhost:{self.vs_agent_public_port}"

    @property
    def validator_account(self) -> str:
        """Account that approves validation requests (the owner in the demo)."""
        return self.validator_acc or self.user_acc

    @property
    def anoncreds_definition_name(self) -> str:
        return self.anoncreds_name or self.custom_schema_base_id

    @classmethod
    def from_sources(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_files: Sequence = (),
        defaults: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "DemoConfig":
        """
        Build the run configuration.

        Precedence, lowest first: built-in defaults, `defaults` (values
        recorded by an earlier run), env files (in order), environ, overrides.
        Override keys are field names; None values are ignored.

        Raises:
            ConfigurationError: Unknown network, unreadable env file or bad value
        """
        merged: Dict[str, str] = dict(defaults or {})
        for env_file in env_files:
            try:
                merged.update(load_env_file(env_file))
            except OSError as e:
                raise ConfigurationError(f"Cannot read env file {env_file}: {e}") from e
        merged.update(environ or {})

        network_name = overrides.pop("network", None) or merged.get("NETWORK") or DEFAULT_NETWORK
        profile = resolve_network(network_name, merged)

        values = {}
        for field in cls.model_fields:
            if field == "network":
                continue
            env_value = merged.get(field.upper())
            if env_value not in (None, ""):
                values[field] = env_value
        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(network=profile, **values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
