"""
Credential issuance and linking.

A credential is issued by one agent (the local agent itself, or a remote
Trust Registry such as the ECS TR) and always linked on the local agent,
where it shows up as a LinkedVerifiablePresentation in the DID document.

Linking has no key other than the schema base id, so issue_and_link never
deduplicates: callers clean up stale entries first.
"""

import logging
from typing import Any, Dict, Iterable, List

from .client import VSAgentClient
from .config import DemoConfig
from .exceptions import DiscoveryError, RemoteServiceError
from .models import VPR_REF_PREFIX, LinkedPresentation, vpr_schema_ref

logger = logging.getLogger("vs_demo.credentials")


def issue_and_link(
    issuer: VSAgentClient,
    linker: VSAgentClient,
    schema_base_id: str,
    schema_credential_url: str,
    subject_did: str,
    claims: Dict[str, Any],
) -> LinkedPresentation:
    """
    Issue a credential on `issuer` and link it on `linker`.

    Args:
        issuer: Agent holding the issuance endpoint (local or remote)
        linker: The local agent
        schema_base_id: e.g. "organization", "service"
        schema_credential_url: VTJSC URL the credential conforms to
        subject_did: DID the credential is about
        claims: credentialSubject claims

    Raises:
        RemoteServiceError: Issuance or linking failed
    """
    logger.info("Requesting '%s' credential from %s", schema_base_id, issuer.admin_url)
    issued = issuer.issue_credential(subject_did, schema_credential_url, claims)
    logger.info("Credential received (%s response)", issued.kind)

    logger.info("Linking credential on agent: %s", linker.admin_url)
    linked = linker.link_credential(schema_base_id, issued.credential)
    logger.info("Credential linked as VP (schemaBaseId: %s)", schema_base_id)
    return linked


def find_schema_credential_url(agent: VSAgentClient, chain_id: str, schema_id: str) -> str:
    """
    VTJSC URL the agent holds for an on-chain schema.

    Raises:
        DiscoveryError: The agent has no VTJSC for that schema
    """
    ref = vpr_schema_ref(chain_id, schema_id)
    jsc_url = agent.find_json_schema_credential(ref)
    if not jsc_url:
        available = [e.get("schemaId") for e in agent.list_json_schema_credentials()]
        raise DiscoveryError(f"VTJSC not found for schema {schema_id} (ref: {ref})", body=str(available))
    return jsc_url


def cleanup_self_generated(agent: VSAgentClient) -> List[str]:
    """
    Remove VTJSCs not anchored on chain, and the credentials linked to them.

    A VTJSC whose schemaId does not start with `vpr:` was generated by the
    agent at first boot. Individual delete failures are skipped.

    Returns:
        Ids of the VTJSCs removed
    """
    removed = []
    for entry in agent.list_json_schema_credentials():
        if str(entry.get("schemaId", "")).startswith(VPR_REF_PREFIX):
            continue
        jsc_id = (entry.get("credential") or {}).get("id")
        if not jsc_id:
            continue
        _delete_quietly(agent.delete_linked_credential, jsc_id, "linked credential")
        if _delete_quietly(agent.delete_json_schema_credential, jsc_id, "VTJSC"):
            removed.append(jsc_id)
    logger.info("Self-generated items removed: %d", len(removed))
    return removed


def cleanup_linked_credentials(agent: VSAgentClient, schema_credential_urls: Iterable[str]) -> List[str]:
    """Unlink previously linked credentials for the given VTJSC URLs."""
    removed = []
    for url in schema_credential_urls:
        if _delete_quietly(agent.delete_linked_credential, url, "linked credential"):
            removed.append(url)
    return removed


def _delete_quietly(delete, target: str, what: str) -> bool:
    try:
        delete(target)
    except RemoteServiceError as e:
        logger.warning("Could not delete %s %s: %s", what, target, e)
        return False
    return True


def organization_claims(config: DemoConfig, did: str, logo: str) -> Dict[str, Any]:
    return {
        "id": did,
        "name": config.org_name,
        "logo": logo,
        "registryId": config.org_registry_id,
        "address": config.org_address,
        "countryCode": config.org_country,
    }


def service_claims(config: DemoConfig, did: str, logo: str) -> Dict[str, Any]:
    return {
        "id": did,
        "name": config.service_name,
        "type": config.service_type,
        "description": config.service_description,
        "logo": logo,
        "minimumAgeRequired": config.service_min_age,
        "termsAndConditions": config.service_terms,
        "privacyPolicy": config.service_privacy,
    }
