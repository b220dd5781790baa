"""
ECS discovery - locate schema credentials and permissions.

Two sources:

- A Trust Registry's DID document: its LinkedVerifiablePresentation service
  named `<schema>-jsc-vp` points at a presentation whose first credential is
  the VTJSC for that schema. The trailing number of the VTJSC's
  `jsonSchema.$ref` is the on-chain schema id.
- The chain indexer: `/verana/perm/v1/list?schema_id=` lists permissions
  with their type and state.
"""

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError

from .client import LINKED_VP_TYPE, _create_session, fetch_json
from .exceptions import DependencyUnavailableError, DiscoveryError, RemoteServiceError
from .models import Permission, PermissionType, SchemaReference
from .polling import poll_until

logger = logging.getLogger("vs_demo.discovery")

_TRAILING_ID = re.compile(r"(\d+)$")


def _first(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, list):
        return value[0] if value else None
    if isinstance(value, dict):
        return value
    return None


class EcsDiscovery:
    """Reads Trust Registry DID documents and the permission indexer."""

    def __init__(
        self,
        indexer_url: str,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        indexer_attempts: int = 3,
        indexer_backoff: float = 5.0,
        timeout: float = 30.0,
    ):
        self.indexer_url = indexer_url.rstrip("/")
        self.indexer_attempts = indexer_attempts
        self.indexer_backoff = indexer_backoff
        self.timeout = timeout
        self._session = session or _create_session()
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Schema credentials
    # -------------------------------------------------------------------------

    def _fetch(self, url: str, what: str) -> Any:
        try:
            body = fetch_json(self._session, url, timeout=self.timeout)
        except (RemoteServiceError, DependencyUnavailableError) as e:
            raise DiscoveryError(f"Failed to fetch {what} from {url}: {e}", body=getattr(e, "body", "")) from e
        if not body:
            raise DiscoveryError(f"Empty {what} at {url}")
        return body

    def find_presentation_endpoint(self, did_document: Dict[str, Any], schema_name: str) -> Optional[str]:
        """serviceEndpoint of the first `<schema_name>-jsc-vp` LinkedVerifiablePresentation."""
        pattern = f"{schema_name}-jsc-vp"
        for service in did_document.get("service") or []:
            if service.get("type") != LINKED_VP_TYPE:
                continue
            if pattern in str(service.get("id", "")):
                return service.get("serviceEndpoint")
        return None

    def discover_schema_credential(self, registry_public_url: str, schema_name: str) -> SchemaReference:
        """
        Discover a VTJSC published by a Trust Registry.

        Args:
            registry_public_url: Public base URL of the registry agent
            schema_name: Schema base name, e.g. "organization" or "service"

        Raises:
            DiscoveryError: Document, service entry, presentation or any field missing
        """
        base = registry_public_url.rstrip("/")
        logger.info("Resolving %s DID document for '%s' VTJSC...", base, schema_name)

        did_doc = self._fetch(f"{base}/.well-known/did.json", "DID document")
        vp_url = self.find_presentation_endpoint(did_doc, schema_name)
        if not vp_url:
            raise DiscoveryError(
                f"No {LINKED_VP_TYPE} matching '{schema_name}-jsc-vp' in DID document of {base}"
            )
        logger.info("VTJSC VP endpoint: %s", vp_url)

        vp = self._fetch(vp_url, "VTJSC presentation")
        credential = _first(vp.get("verifiableCredential"))
        if not credential or not credential.get("id"):
            raise DiscoveryError("Could not extract VTJSC URL from VP", body=str(vp))

        subject = _first(credential.get("credentialSubject")) or {}
        schema_ref = (subject.get("jsonSchema") or {}).get("$ref")
        if not schema_ref:
            raise DiscoveryError("Could not extract jsonSchema.$ref from VTJSC", body=str(credential))

        match = _TRAILING_ID.search(schema_ref)
        if not match:
            raise DiscoveryError(f"Could not parse schema ID from ref: {schema_ref}")

        ref = SchemaReference(
            schema_id=match.group(1),
            credential_url=credential["id"],
            json_schema_ref=schema_ref,
        )
        logger.info("VTJSC '%s' -> URL: %s, schema ID: %s", schema_name, ref.credential_url, ref.schema_id)
        return ref

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    def list_permissions(self, schema_id: str) -> List[Permission]:
        """
        Permissions the indexer knows for a schema.

        Non-200 answers are retried `indexer_attempts` times.

        Raises:
            DependencyUnavailableError: Indexer never answered 200
        """
        url = f"{self.indexer_url}/verana/perm/v1/list"
        status, text = None, ""
        for attempt in range(1, self.indexer_attempts + 1):
            try:
                response = self._session.request(
                    "GET", url, params={"schema_id": schema_id}, timeout=self.timeout
                )
                status, text = response.status_code, response.text
            except requests.RequestException as e:
                status, text = None, str(e)

            if status == 200:
                try:
                    body = response.json()
                except ValueError as e:
                    raise RemoteServiceError(f"Indexer returned a non-JSON body at {url}", status, text) from e
                try:
                    return [Permission.model_validate(_normalize(p)) for p in body.get("permissions") or []]
                except ValidationError as e:
                    raise RemoteServiceError(f"Indexer returned a malformed permission at {url}", status, text) from e

            logger.info(
                "Indexer request attempt %d/%d returned HTTP %s",
                attempt, self.indexer_attempts, status,
            )
            if attempt < self.indexer_attempts:
                self._sleep(self.indexer_backoff)

        raise DependencyUnavailableError(
            f"Failed to query indexer (HTTP {status}) at {url}?schema_id={schema_id}", output=text
        )

    def discover_active_permission(
        self,
        schema_id: str,
        kind: str,
        subject_did: Optional[str] = None,
    ) -> Optional[str]:
        """Id of the first ACTIVE permission of `kind` (and `subject_did`, if given)."""
        kind = kind.value if isinstance(kind, PermissionType) else kind
        for perm in self.list_permissions(schema_id):
            if perm.type != kind or not perm.is_active:
                continue
            if subject_did is not None and perm.did != subject_did:
                continue
            return perm.id
        return None

    def find_active_root_permission(self, schema_id: str) -> str:
        """
        Raises:
            DiscoveryError: No active ECOSYSTEM permission for the schema
        """
        logger.info("Discovering active root permission for schema %s via indexer...", schema_id)
        perm_id = self.discover_active_permission(schema_id, PermissionType.ECOSYSTEM)
        if perm_id is None:
            raise DiscoveryError(f"No active ECOSYSTEM permission found for schema {schema_id}")
        logger.info("Active root permission: %s", perm_id)
        return perm_id

    def find_active_issuer_permission(self, schema_id: str, did: str) -> Optional[str]:
        return self.discover_active_permission(schema_id, PermissionType.ISSUER, subject_did=did)

    def permission_state(self, schema_id: str, permission_id: str) -> Optional[str]:
        for perm in self.list_permissions(schema_id):
            if perm.id == str(permission_id):
                return perm.perm_state
        return None

    def wait_until_active(
        self,
        schema_id: str,
        permission_id: str,
        interval: float = 3.0,
        max_attempts: int = 8,
    ) -> str:
        """
        Poll until a permission reports ACTIVE.

        Raises:
            PollTimeout: Still not active after `max_attempts`
        """
        return poll_until(
            lambda: permission_id if self.permission_state(schema_id, permission_id) == "ACTIVE" else None,
            interval=interval,
            max_attempts=max_attempts,
            what=f"permission {permission_id}",
            sleep=self._sleep,
        )


def _normalize(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Indexer ids and schema ids may come back as numbers."""
    data = dict(raw)
    for key in ("id", "schema_id"):
        if data.get(key) is not None:
            data[key] = str(data[key])
    return data
