"""
VS Agent client - admin API of a Verifiable Service Agent.

Usage:
    from vs_demo.client import VSAgentClient

    agent = VSAgentClient("http://localhost:3000", public_url="http://localhost:3001")
    did = agent.public_did()

    # The ECS Trust Registry exposes the same admin API shape
    ecs = VSAgentClient("https://admin-ecs-trust-registry.testnet.verana.network")
    issued = ecs.issue_credential(did, vtjsc_url, {"id": did, "name": "Acme"})
    agent.link_credential("organization", issued.credential)
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import DependencyUnavailableError, DiscoveryError, RemoteServiceError
from .models import IssuanceResponse, LinkedPresentation

logger = logging.getLogger("vs_demo.client")

LINKED_VP_TYPE = "LinkedVerifiablePresentation"

DEFAULT_TIMEOUT = 30.0


def _create_session(retries=3, backoff_factor=0.3, status_forcelist=(502, 503, 504)):
    """Create a requests session with retry/backoff on idempotent methods.

    POST is left out: issuing or linking twice is not harmless.
    """
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=["GET", "HEAD", "DELETE"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _is_error_shaped(body: Any) -> bool:
    """NestJS error envelope: {"statusCode": 4xx, "message": ...}."""
    return isinstance(body, dict) and "statusCode" in body


def send(session, method: str, url: str, timeout: float = DEFAULT_TIMEOUT, **kwargs) -> Any:
    """
    Perform one HTTP call and decode its JSON body.

    Returns:
        Decoded JSON, or None for an empty body

    Raises:
        DependencyUnavailableError: Connection failure or timeout
        RemoteServiceError: Non-2xx status, non-JSON or error-shaped body
    """
    what = f"{method} {url}"
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.ConnectionError as e:
        raise DependencyUnavailableError(f"Cannot connect: {what}: {e}")
    except requests.Timeout as e:
        raise DependencyUnavailableError(f"Request timeout: {what}: {e}")
    except requests.RequestException as e:
        raise DependencyUnavailableError(f"HTTP error: {what}: {e}")

    if not 200 <= response.status_code < 300:
        raise RemoteServiceError(
            f"{what} returned HTTP {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    if not response.text.strip():
        return None
    try:
        body = response.json()
    except ValueError:
        raise RemoteServiceError(f"{what} returned a non-JSON body", response.status_code, response.text)

    if _is_error_shaped(body):
        raise RemoteServiceError(f"{what} returned an error body", response.status_code, response.text)
    return body


def fetch_json(session, url: str, timeout: float = DEFAULT_TIMEOUT) -> Any:
    """GET a JSON document."""
    return send(session, "GET", url, timeout=timeout)


class VSAgentClient:
    """Client for a VS Agent admin API (local agent or remote Trust Registry)."""

    def __init__(
        self,
        admin_url: str,
        public_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.admin_url = admin_url.rstrip("/")
        self.public_url = public_url.rstrip("/") if public_url else None
        self.timeout = timeout
        self._session = session or _create_session()

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        return send(self._session, method, f"{self.admin_url}{path}", timeout=self.timeout, json=json)

    # -------------------------------------------------------------------------
    # Agent
    # -------------------------------------------------------------------------

    def agent_info(self) -> Dict[str, Any]:
        return self._request("GET", "/v1/agent") or {}

    def is_reachable(self) -> bool:
        """True if the admin API answers /v1/agent."""
        try:
            self.agent_info()
        except (DependencyUnavailableError, RemoteServiceError) as e:
            logger.debug("Agent not reachable yet: %s", e)
            return False
        return True

    def public_did(self) -> str:
        """
        The agent's public DID.

        Raises:
            DiscoveryError: The agent reports no DID
        """
        info = self.agent_info()
        did = info.get("publicDid")
        if not did:
            raise DiscoveryError("Could not retrieve agent DID. Is the VS Agent running?", body=str(info))
        return did

    # -------------------------------------------------------------------------
    # JSON schema credentials (VTJSCs)
    # -------------------------------------------------------------------------

    def list_json_schema_credentials(self) -> List[Dict[str, Any]]:
        body = self._request("GET", "/v1/vt/json-schema-credentials") or {}
        return body.get("data", [])

    def find_json_schema_credential(self, json_schema_ref: str) -> Optional[str]:
        """VTJSC credential id registered for a vpr: schema reference."""
        for entry in self.list_json_schema_credentials():
            if entry.get("schemaId") == json_schema_ref:
                return (entry.get("credential") or {}).get("id")
        return None

    def create_json_schema_credential(self, schema_base_id: str, json_schema_ref: str) -> Dict[str, Any]:
        body = self._request(
            "POST",
            "/v1/vt/json-schema-credentials",
            json={"schemaBaseId": schema_base_id, "jsonSchemaRef": json_schema_ref},
        )
        if not body:
            raise RemoteServiceError(f"Empty response creating VTJSC for '{schema_base_id}'")
        return body

    def delete_json_schema_credential(self, credential_id: str) -> None:
        self._request("DELETE", "/v1/vt/json-schema-credentials", json={"id": credential_id})

    # -------------------------------------------------------------------------
    # Issuance and linked presentations
    # -------------------------------------------------------------------------

    def issue_credential(
        self,
        did: str,
        json_schema_credential_id: str,
        claims: Dict[str, Any],
        format: str = "jsonld",
    ) -> IssuanceResponse:
        """
        Issue a credential for `did` against a VTJSC.

        Raises:
            RemoteServiceError: Non-2xx, empty or error-shaped response
        """
        payload = {
            "format": format,
            "did": did,
            "jsonSchemaCredentialId": json_schema_credential_id,
            "claims": claims,
        }
        logger.debug("Issue request to %s: %s", self.admin_url, payload)
        body = self._request("POST", "/v1/vt/issue-credential", json=payload)
        if not isinstance(body, dict) or not body:
            raise RemoteServiceError(
                f"{self.admin_url} failed to issue credential", body=str(body)
            )
        return IssuanceResponse.from_body(body)

    def link_credential(self, schema_base_id: str, credential: Dict[str, Any]) -> LinkedPresentation:
        self._request(
            "POST",
            "/v1/vt/linked-credentials",
            json={"schemaBaseId": schema_base_id, "credential": credential},
        )
        return LinkedPresentation(schema_base_id=schema_base_id, credential=credential)

    def delete_linked_credential(self, credential_schema_id: str) -> None:
        self._request(
            "DELETE",
            "/v1/vt/linked-credentials",
            json={"credentialSchemaId": credential_schema_id},
        )

    # -------------------------------------------------------------------------
    # AnonCreds
    # -------------------------------------------------------------------------

    def create_credential_type(
        self,
        name: str,
        version: str,
        related_json_schema_credential_id: str,
        support_revocation: bool = False,
    ) -> Dict[str, Any]:
        body = self._request(
            "POST",
            "/v1/credential-types",
            json={
                "name": name,
                "version": version,
                "relatedJsonSchemaCredentialId": related_json_schema_credential_id,
                "supportRevocation": support_revocation,
            },
        )
        if not body:
            raise RemoteServiceError("Empty response creating AnonCreds credential definition")
        return body

    # -------------------------------------------------------------------------
    # Public DID document
    # -------------------------------------------------------------------------

    def did_document(self) -> Dict[str, Any]:
        base = self.public_url or self.admin_url
        return fetch_json(self._session, f"{base}/.well-known/did.json", timeout=self.timeout) or {}

    def linked_presentation_services(self) -> List[Dict[str, Any]]:
        """LinkedVerifiablePresentation entries of the public DID document."""
        return [
            s for s in self.did_document().get("service", [])
            if s.get("type") == LINKED_VP_TYPE
        ]
