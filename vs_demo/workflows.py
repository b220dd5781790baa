"""
Demo phases.

- deploy: run the VS Agent locally and prepare the chain account
- obtain_ecs_credentials: Organization credential from the ECS Trust
  Registry, ISSUER permission for the Service schema, self-issued Service
  credential
- bootstrap_trust_registry: own Trust Registry, custom schema, root and
  issuer permissions, VTJSC and optional AnonCreds definition

Every phase stops at the first failure. Nothing already committed on chain
or on the agent is undone; each produced id is recorded in the run state as
soon as it exists so an operator can see how far a run got.
"""

import logging
from typing import Any, Dict, Optional

import requests

from . import chain
from .agent import AgentController
from .chain import TransactionSubmitter, future_timestamp
from .client import VSAgentClient
from .config import DemoConfig
from .credentials import (
    cleanup_linked_credentials,
    cleanup_self_generated,
    find_schema_credential_url,
    issue_and_link,
    organization_claims,
    service_claims,
)
from .discovery import EcsDiscovery
from .documents import compute_sri_digest, download_logo_data_uri, download_schema
from .exceptions import ConfigurationError, DependencyUnavailableError, RemoteServiceError
from .models import AgentHandle, PermissionType, TrustRegistry, vpr_schema_ref
from .runstate import RunState

logger = logging.getLogger("vs_demo.workflows")

# Permissions are created with effective-from = now + EFFECTIVE_DELAY
EFFECTIVE_DELAY = 15
ACTIVATION_INTERVAL = 3.0
ACTIVATION_ATTEMPTS = 8

ECS_SECTION = "ECS Credentials"
TRUST_REGISTRY_SECTION = "Trust Registry"


def deploy(
    config: DemoConfig,
    controller: AgentController,
    submitter: TransactionSubmitter,
    state: RunState,
    ready_attempts: int = 30,
) -> AgentHandle:
    """
    Start a fresh VS Agent and make the CLI account ready.

    Raises:
        DependencyUnavailableError: Tunnel or agent never came up (agent logs attached)
    """
    logger.info("Step 1: Deploy VS Agent")
    controller.remove_stale()
    handle = controller.start()

    logger.info("Waiting for VS Agent to initialize...")
    if not controller.await_ready(ready_attempts):
        raise DependencyUnavailableError(
            f"VS Agent failed to start. Check: docker logs {config.vs_agent_container_name}",
            output=controller.logs(),
        )
    did = controller.get_identity()
    handle = handle.model_copy(update={"did": did})
    logger.info("VS Agent DID: %s", did)

    logger.info("Step 2: Clean up self-generated VTJSCs and linked credentials")
    cleanup_self_generated(controller.client)

    logger.info("Step 3: Set up veranad CLI")
    address = submitter.ensure_account(config.network.faucet_url)

    state.replace_section("VS Agent", {
        "AGENT_DID": did,
        "NGROK_URL": handle.tunnel_url,
        "VS_AGENT_CONTAINER_NAME": config.vs_agent_container_name,
        "VS_AGENT_ADMIN_PORT": config.vs_agent_admin_port,
        "VS_AGENT_PUBLIC_PORT": config.vs_agent_public_port,
    })
    state.replace_section("Verana account", {"USER_ACC": submitter.account, "USER_ACC_ADDR": address})
    state.replace_section("Chain", {
        "NETWORK": config.network.name,
        "CHAIN_ID": config.network.chain_id,
        "NODE_RPC": config.network.node_rpc,
    })
    return handle


def resolve_agent_did(agent: VSAgentClient, state: RunState) -> str:
    """DID recorded by deploy, else asked from the running agent."""
    return state.get("AGENT_DID") or agent.public_did()


def ensure_issuer_permission(
    submitter: TransactionSubmitter,
    discovery: EcsDiscovery,
    schema_id: str,
    did: str,
) -> str:
    """Reuse an ACTIVE ISSUER permission for (schema, did) or create one and wait for it."""
    existing = discovery.find_active_issuer_permission(schema_id, did)
    if existing:
        logger.info("Active ISSUER permission already exists: %s, skipping creation", existing)
        return existing

    logger.info("No active ISSUER permission found, creating one")
    effective_from = future_timestamp(EFFECTIVE_DELAY)
    perm_id = submitter.submit(
        "create_permission",
        "permission_id",
        chain.create_permission(schema_id, PermissionType.ISSUER.value, did, effective_from),
    )
    logger.info("ISSUER permission created: perm_id=%s (effective from %s)", perm_id, effective_from)
    discovery.wait_until_active(schema_id, perm_id, ACTIVATION_INTERVAL, ACTIVATION_ATTEMPTS)
    return perm_id


def obtain_ecs_credentials(
    config: DemoConfig,
    agent: VSAgentClient,
    ecs: VSAgentClient,
    submitter: TransactionSubmitter,
    discovery: EcsDiscovery,
    state: RunState,
    session: requests.Session,
) -> Dict[str, Any]:
    """
    Link an ECS Organization and Service credential on the local agent.

    Safe to re-run: previously linked ECS credentials are removed first and an
    existing ISSUER permission is reused.
    """
    did = resolve_agent_did(agent, state)
    logger.info("Agent DID: %s", did)

    org = discovery.discover_schema_credential(config.network.ecs_public_url, "organization")
    svc = discovery.discover_schema_credential(config.network.ecs_public_url, "service")

    logger.info("Step 1: Clean up previous ECS credentials")
    cleanup_linked_credentials(agent, [org.credential_url, svc.credential_url])
    cleanup_self_generated(agent)

    logger.info("Step 2: Obtain Organization credential from ECS Trust Registry")
    org_logo = download_logo_data_uri(session, config.org_logo_url)
    service_logo = download_logo_data_uri(session, config.service_logo_url)
    issue_and_link(ecs, agent, "organization", org.credential_url, did, organization_claims(config, did, org_logo))

    logger.info("Step 3: Ensure ISSUER permission for Service schema")
    issuer_perm = ensure_issuer_permission(submitter, discovery, svc.schema_id, did)
    state.replace_section(ECS_SECTION, {
        "CS_ORG_ID": org.schema_id,
        "CS_SERVICE_ID": svc.schema_id,
        "ISSUER_PERM_SERVICE": issuer_perm,
    })

    # The Service credential references the ECS TR's VTJSC: only the registry
    # owning a schema may publish its VTJSC.
    logger.info("Step 4: Self-issue Service credential")
    issue_and_link(agent, agent, "service", svc.credential_url, did, service_claims(config, did, service_logo))

    logger.info("Step 5: Verify")
    verification = verify_service(config, agent, did, session)
    return {
        "did": did,
        "organization_schema_id": org.schema_id,
        "service_schema_id": svc.schema_id,
        "issuer_permission": issuer_perm,
        **verification,
    }


def bootstrap_trust_registry(
    config: DemoConfig,
    requester: TransactionSubmitter,
    validator: TransactionSubmitter,
    agent: VSAgentClient,
    discovery: EcsDiscovery,
    state: RunState,
    session: requests.Session,
    compute_digest: bool = False,
) -> Dict[str, Any]:
    """
    Create a Trust Registry with one custom schema the agent may issue.

    `requester` owns the registry and asks for the ISSUER permission;
    `validator` approves it. The demo wires both to the same account.

    Not retry-idempotent: re-running creates a second registry and schema.
    """
    did = state.require("AGENT_DID")
    if not config.egf_doc_url:
        raise ConfigurationError("EGF_DOC_URL is required")
    doc_digest = config.egf_doc_digest
    if not doc_digest:
        if not compute_digest:
            raise ConfigurationError("EGF_DOC_DIGEST is required (or pass --compute-digest)")
        doc_digest = compute_sri_digest(session, config.egf_doc_url)
        logger.info("Computed EGF digest: %s", doc_digest)
    aka = config.tr_registry_url or state.get("NGROK_URL") or ""

    logger.info("Step 1: Create Trust Registry on-chain")
    tr_id = requester.submit(
        "create_trust_registry",
        "trust_registry_id",
        chain.create_trust_registry(did, config.egf_language, config.egf_doc_url, doc_digest, aka),
    )
    registry = TrustRegistry(
        id=tr_id, owner_did=did, language=config.egf_language,
        doc_url=config.egf_doc_url, doc_digest=doc_digest, aka=aka,
    )
    state.append_section(TRUST_REGISTRY_SECTION, {"TRUST_REG_ID": tr_id, "CUSTOM_SCHEMA_URL": config.custom_schema_url})
    logger.info("Trust Registry created with ID: %s", tr_id)

    logger.info("Step 2: Create credential schema (issuer_mode=ECOSYSTEM, verifier_mode=OPEN)")
    schema_json = download_schema(session, config.custom_schema_url)
    schema_id = requester.submit(
        "create_credential_schema",
        "credential_schema_id",
        chain.create_credential_schema(tr_id, schema_json),
    )
    state.append({"CUSTOM_SCHEMA_ID": schema_id})
    logger.info("Schema created with ID: %s", schema_id)

    logger.info("Step 3: Create root permission")
    effective_from = future_timestamp(EFFECTIVE_DELAY)
    root_perm = requester.submit(
        "create_root_permission",
        "root_permission_id",
        chain.create_root_permission(
            schema_id, did,
            config.validation_fees, config.issuance_fees, config.verification_fees,
            effective_from,
        ),
    )
    state.append({"ROOT_PERM_ID": root_perm})
    logger.info("Root permission created: %s (effective from %s)", root_perm, effective_from)
    discovery.wait_until_active(schema_id, root_perm, ACTIVATION_INTERVAL, ACTIVATION_ATTEMPTS)
    logger.info("Root permission is active")

    logger.info("Step 4: Obtain ISSUER permission (ECOSYSTEM validation flow)")
    issuer_perm = requester.submit(
        "start_permission_vp",
        "permission_id",
        chain.start_permission_vp(PermissionType.ISSUER.value, root_perm, did),
    )
    state.append({"ISSUER_PERM_ID": issuer_perm})
    logger.info("Validation process started: perm_id=%s", issuer_perm)

    validator.submit_no_event(chain.set_permission_vp_validated(issuer_perm))
    logger.info("ISSUER permission validated by %s: perm_id=%s", validator.account, issuer_perm)

    logger.info("Step 5: Create VTJSC for '%s'", config.custom_schema_base_id)
    agent.create_json_schema_credential(
        config.custom_schema_base_id,
        vpr_schema_ref(config.network.chain_id, schema_id),
    )

    cred_def_id: Optional[str] = None
    if config.enable_anoncreds:
        logger.info("Step 6: Configure AnonCreds credential definition")
        jsc_url = find_schema_credential_url(agent, config.network.chain_id, schema_id)
        result = agent.create_credential_type(
            config.anoncreds_definition_name,
            config.anoncreds_version,
            jsc_url,
            config.anoncreds_support_revocation,
        )
        cred_def_id = result.get("id")
        if not cred_def_id:
            raise RemoteServiceError("AnonCreds credential definition has no id", body=str(result))
        state.append({"ANONCREDS_CRED_DEF_ID": cred_def_id})
        logger.info("AnonCreds credential definition created: %s", cred_def_id)
    else:
        logger.info("Step 6: AnonCreds skipped (ENABLE_ANONCREDS=false)")

    logger.info("Step 7: Verify")
    verification = verify_service(config, agent, did, session)

    return {
        "trust_registry": registry,
        "schema_id": schema_id,
        "root_permission": root_perm,
        "issuer_permission": issuer_perm,
        "anoncreds_cred_def_id": cred_def_id,
        **verification,
    }


def verify_service(config: DemoConfig, agent: VSAgentClient, did: str, session: requests.Session) -> Dict[str, Any]:
    """Count linked presentations and ask the trust resolver about `did`."""
    linked = len(agent.linked_presentation_services())
    logger.info("DID Document has %d LinkedVerifiablePresentation entries", linked)

    url = f"{config.network.resolver_url}/v1/trust-resolve"
    try:
        status = session.get(url, params={"did": did}, timeout=30).status_code
    except requests.RequestException as e:
        logger.debug("Resolver unreachable: %s", e)
        status = None

    trusted = status == 200
    if trusted:
        logger.info("Resolver confirms the service is trusted")
    else:
        logger.warning("Resolver returned HTTP %s (may not be available yet)", status)
    return {"linked_vps": linked, "resolver_trusted": trusted}
