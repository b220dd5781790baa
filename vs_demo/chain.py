"""
On-chain transaction submission through the `veranad` CLI.

Submission is at-most-once: a transaction is broadcast a single time and a
missing hash is fatal. Only the read-back of its events is retried, because
that is a pure query and the usual cause of a miss is indexing lag.
"""

import json
import logging
import subprocess
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import NetworkProfile
from .exceptions import ConfigurationError, ConfirmationLagError, SubmissionError

logger = logging.getLogger("vs_demo.chain")

KEYRING_BACKEND = "test"
DENOM = "uvna"

# issuer_mode / verifier_mode values of create-credential-schema
ISSUER_MODE_ECOSYSTEM = 3
VERIFIER_MODE_OPEN = 1

VALIDITY_PERIOD_FLAGS = (
    "--issuer-grantor-validation-validity-period",
    "--verifier-grantor-validation-validity-period",
    "--issuer-validation-validity-period",
    "--verifier-validation-validity-period",
    "--holder-validation-validity-period",
)


def future_timestamp(seconds: int = 15, now: Optional[datetime] = None) -> str:
    """UTC timestamp `seconds` in the future, e.g. 2026-01-01T00:00:15Z."""
    now = now or datetime.now(timezone.utc)
    return (now + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%SZ")


def extract_tx_json(output: str) -> Optional[Dict[str, Any]]:
    """First JSON object line of CLI output (skips the `gas estimate:` line)."""
    for line in output.splitlines():
        if line.startswith("{"):
            try:
                return json.loads(line)
            except json.JSONDecodeError:
                continue
    return None


def find_event_attribute(tx: Dict[str, Any], event_type: str, attribute_key: str) -> Optional[str]:
    """Value of `attribute_key` in the first `event_type` event that carries it."""
    for event in tx.get("events") or []:
        if event.get("type") != event_type:
            continue
        for attr in event.get("attributes") or []:
            if attr.get("key") == attribute_key and attr.get("value") not in (None, ""):
                return str(attr["value"])
    return None


# ── Transaction argument builders ───────────────────────────────────


def create_trust_registry(did: str, language: str, doc_url: str, doc_digest: str, aka: str = "") -> List[str]:
    args = ["tx", "tr", "create-trust-registry", did, language, doc_url, doc_digest]
    if aka:
        args += ["--aka", aka]
    return args


def create_credential_schema(
    trust_registry_id: str,
    schema_json: str,
    issuer_mode: int = ISSUER_MODE_ECOSYSTEM,
    verifier_mode: int = VERIFIER_MODE_OPEN,
) -> List[str]:
    args = ["tx", "cs", "create-credential-schema", trust_registry_id, schema_json]
    for flag in VALIDITY_PERIOD_FLAGS:
        args += [flag, '{"value":0}']
    return args + [str(issuer_mode), str(verifier_mode)]


def create_root_permission(
    schema_id: str,
    did: str,
    validation_fees: int = 0,
    issuance_fees: int = 0,
    verification_fees: int = 0,
    effective_from: Optional[str] = None,
) -> List[str]:
    args = [
        "tx", "perm", "create-root-perm", schema_id, did,
        str(validation_fees), str(issuance_fees), str(verification_fees),
    ]
    if effective_from:
        args += ["--effective-from", effective_from]
    return args


def create_permission(schema_id: str, kind: str, did: str, effective_from: Optional[str] = None) -> List[str]:
    args = ["tx", "perm", "create-perm", schema_id, kind.lower(), did]
    if effective_from:
        args += ["--effective-from", effective_from]
    return args


def start_permission_vp(kind: str, validator_perm_id: str, did: str) -> List[str]:
    return ["tx", "perm", "start-perm-vp", kind.lower(), validator_perm_id, "--did", did]


def set_permission_vp_validated(permission_id: str) -> List[str]:
    return ["tx", "perm", "set-perm-vp-validated", permission_id]


# ── Submitter ───────────────────────────────────────────────────────


class TransactionSubmitter:
    """Signs and broadcasts transactions from one keyring account."""

    def __init__(
        self,
        profile: NetworkProfile,
        account: str,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
        settle_seconds: float = 8,
        retry_seconds: float = 6,
        binary: str = "veranad",
        timeout: float = 120,
    ):
        self.profile = profile
        self.account = account
        self.binary = binary
        self.settle_seconds = settle_seconds
        self.retry_seconds = retry_seconds
        self.timeout = timeout
        self._run = runner
        self._sleep = sleep

    def _exec(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            return self._run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise ConfigurationError(f"'{self.binary}' not found on PATH")
        except subprocess.TimeoutExpired as e:
            raise SubmissionError(f"{self.binary} timed out after {self.timeout}s", output=str(e.output or ""))

    def _tx_flags(self) -> List[str]:
        return [
            "--from", self.account,
            "--chain-id", self.profile.chain_id,
            "--keyring-backend", KEYRING_BACKEND,
            "--fees", self.profile.fees,
            "--gas", "auto",
            "--node", self.profile.node_rpc,
            "--output", "json",
            "-y",
        ]

    def broadcast(self, args: Sequence[str]) -> str:
        """
        Sign and broadcast a transaction once.

        Returns:
            The transaction hash

        Raises:
            SubmissionError: No hash in the output (rejected, unsigned, no funds)
        """
        result = self._exec([*args, *self._tx_flags()])
        output = "\n".join(filter(None, [result.stdout, result.stderr]))
        tx = extract_tx_json(output)
        tx_hash = (tx or {}).get("txhash")
        if not tx_hash:
            raise SubmissionError(f"TX failed: {' '.join(args[:3])}", output=output)
        code = (tx or {}).get("code")
        if code not in (None, 0):
            raise SubmissionError(
                f"TX {tx_hash} rejected with code {code}: {tx.get('raw_log', '')}",
                output=output,
            )
        logger.info("TX submitted: %s", tx_hash)
        return tx_hash

    def query_tx(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Transaction result, or None while it is not queryable yet."""
        try:
            result = self._exec(["q", "tx", tx_hash, "--node", self.profile.node_rpc, "--output", "json"])
        except SubmissionError as e:
            # Only timeouts reach here; the tx itself is already broadcast.
            logger.debug("q tx %s: %s", tx_hash, e)
            return None
        if result.returncode != 0:
            logger.debug("q tx %s: %s", tx_hash, (result.stderr or "").strip())
            return None
        try:
            return json.loads(result.stdout)
        except (json.JSONDecodeError, TypeError):
            return None

    def query_event(self, tx_hash: str, event_type: str, attribute_key: str) -> Optional[str]:
        tx = self.query_tx(tx_hash)
        if tx is None:
            return None
        return find_event_attribute(tx, event_type, attribute_key)

    def wait_for_event(self, tx_hash: str, event_type: str, attribute_key: str) -> str:
        """
        Read an event attribute back, retrying the lookup once.

        Raises:
            ConfirmationLagError: Attribute absent after both lookups
        """
        self._sleep(self.settle_seconds)
        value = self.query_event(tx_hash, event_type, attribute_key)
        if value is None:
            logger.debug("'%s' not visible yet for %s, retrying", attribute_key, tx_hash)
            self._sleep(self.retry_seconds)
            value = self.query_event(tx_hash, event_type, attribute_key)
        if value is None:
            raise ConfirmationLagError(tx_hash, event_type, attribute_key)
        return value

    def submit(self, event_type: str, attribute_key: str, args: Sequence[str]) -> str:
        """Broadcast `args` and return `attribute_key` from its `event_type` event."""
        tx_hash = self.broadcast(args)
        return self.wait_for_event(tx_hash, event_type, attribute_key)

    def submit_no_event(self, args: Sequence[str], settle: bool = True) -> str:
        """Broadcast a transaction whose events carry nothing we need."""
        tx_hash = self.broadcast(args)
        if settle:
            self._sleep(self.retry_seconds)
        return tx_hash

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    def key_exists(self) -> bool:
        result = self._exec(["keys", "show", self.account, "--keyring-backend", KEYRING_BACKEND])
        return result.returncode == 0

    def add_key(self) -> str:
        result = self._exec(["keys", "add", self.account, "--keyring-backend", KEYRING_BACKEND])
        if result.returncode != 0:
            raise ConfigurationError(f"Could not create account '{self.account}': {result.stderr}")
        return "\n".join(filter(None, [result.stdout, result.stderr]))

    def address(self) -> str:
        result = self._exec(["keys", "show", self.account, "-a", "--keyring-backend", KEYRING_BACKEND])
        address = (result.stdout or "").strip()
        if result.returncode != 0 or not address:
            raise ConfigurationError(f"No address for account '{self.account}': {result.stderr}")
        return address

    def balance(self, address: str, denom: str = DENOM) -> int:
        result = self._exec(["q", "bank", "balances", address, "--node", self.profile.node_rpc, "--output", "json"])
        if result.returncode != 0:
            return 0
        try:
            balances = json.loads(result.stdout).get("balances") or []
        except (json.JSONDecodeError, AttributeError):
            return 0
        for entry in balances:
            if entry.get("denom") == denom:
                return int(entry.get("amount") or 0)
        return 0

    def ensure_account(self, faucet_url: str, prompt: Callable[[str], str] = input) -> str:
        """
        Make sure the keyring account exists and holds funds.

        Creates the key if missing. With a zero balance, shows the faucet and
        waits for the operator once.

        Returns:
            The account address

        Raises:
            ConfigurationError: Still unfunded after the operator confirmed
        """
        if self.key_exists():
            logger.info("Account '%s' already exists", self.account)
        else:
            logger.info("Creating new account '%s'...", self.account)
            logger.warning("%s", self.add_key())

        address = self.address()
        logger.info("Account address: %s", address)

        balance = self.balance(address)
        if balance == 0:
            logger.warning("Fund this account via the faucet:")
            logger.warning("  Address: %s", address)
            logger.warning("  Faucet:  %s", faucet_url)
            prompt("  Press Enter once the account is funded (or Ctrl+C to abort)... ")
            balance = self.balance(address)
            if balance == 0:
                raise ConfigurationError(
                    f"Account {address} still has no {DENOM} balance. Please fund it before continuing."
                )

        logger.info("Account balance: %d %s", balance, DENOM)
        return address
