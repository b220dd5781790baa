#!/usr/bin/env python3
"""
vs-demo: Verifiable Service demo on the Verana network.

Commands:
  deploy           Run a VS Agent locally (Docker + ngrok) and set up the CLI account
  get-credentials  Obtain ECS Organization and Service credentials
  create-registry  Create a Trust Registry for a custom schema
  run-all          deploy, get-credentials, create-registry
  verify           Count linked VPs and ask the trust resolver
  discover         Show a VTJSC published by the ECS Trust Registry
  digest           Compute the SRI digest of a governance document
  stop             Remove the agent container and tunnel
  show             Print recorded resource IDs
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from vs_demo.agent import AgentController
from vs_demo.chain import TransactionSubmitter
from vs_demo.client import VSAgentClient, _create_session
from vs_demo.config import DEFAULT_NETWORK, NETWORK_OVERRIDES, NETWORKS, DemoConfig
from vs_demo.discovery import EcsDiscovery
from vs_demo.documents import compute_sri_digest
from vs_demo.exceptions import VSDemoError
from vs_demo.runstate import RunState
from vs_demo.workflows import (
    bootstrap_trust_registry,
    deploy,
    obtain_ecs_credentials,
    resolve_agent_did,
    verify_service,
)

DEFAULT_OUTPUT = "vs-demo-ids.env"

logger = logging.getLogger("vs_demo.cli")


# ── Helpers ──────────────────────────────────────────────────────────

def setup_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def load_config(args, include_state=True):
    """Build the run configuration.

    Values recorded in the run-state file rank below every other source.
    Network endpoints recorded there are skipped so `--network` stays in charge.
    """
    output_file = args.output_file or os.environ.get("OUTPUT_FILE") or DEFAULT_OUTPUT
    recorded = {}
    if include_state and Path(output_file).exists():
        recorded = {
            key: value for key, value in RunState(output_file).load().items()
            if key not in NETWORK_OVERRIDES
        }
    return DemoConfig.from_sources(
        os.environ,
        env_files=[args.env_file] if args.env_file else [],
        defaults=recorded,
        network=args.network,
        output_file=args.output_file,
        enable_anoncreds=True if getattr(args, "anoncreds", False) else None,
    )


def open_state(config):
    return RunState(config.output_file, network=config.network.name)


def local_agent(config, session):
    return VSAgentClient(config.admin_api, public_url=config.public_api, session=session)


def fail(step, error):
    """Report a failed step on stderr and exit 1."""
    print(f"❌ {step} failed: {error}", file=sys.stderr)
    raw = getattr(error, "body", None) or getattr(error, "output", None)
    if raw:
        print(f"   Response: {raw}", file=sys.stderr)
    sys.exit(1)


# ── Commands ─────────────────────────────────────────────────────────

def cmd_deploy(args):
    """Run the VS Agent and prepare the chain account."""
    config = load_config(args, include_state=False)
    logger.info("Network: %s (chain: %s)", config.network.name, config.network.chain_id)
    session = _create_session()
    controller = AgentController(config, session=session)
    submitter = TransactionSubmitter(config.network, config.user_acc)

    handle = deploy(config, controller, submitter, open_state(config))

    print("\n✅ VS Agent deployed!")
    print(f"   DID:          {handle.did}")
    print(f"   Public URL:   {handle.tunnel_url}")
    print(f"   DID Document: {handle.tunnel_url}/.well-known/did.json")
    print(f"   Admin API:    {handle.admin_url}")
    print(f"   IDs saved to: {config.output_file}")
    print("\n   To stop: vs-demo stop")


def cmd_get_credentials(args):
    """Obtain ECS Organization and Service credentials."""
    config = load_config(args)
    logger.info("Network: %s (chain: %s)", config.network.name, config.network.chain_id)
    session = _create_session()

    result = obtain_ecs_credentials(
        config,
        agent=local_agent(config, session),
        ecs=VSAgentClient(config.network.ecs_admin_url, session=session),
        submitter=TransactionSubmitter(config.network, config.user_acc),
        discovery=EcsDiscovery(config.network.indexer_url, session=session),
        state=open_state(config),
        session=session,
    )

    print("\n✅ ECS credentials obtained!")
    print(f"   Organization credential: linked as VP (schema {result['organization_schema_id']})")
    print(f"   Service credential:      linked as VP (schema {result['service_schema_id']})")
    print(f"   ISSUER permission:       {result['issuer_permission']}")
    print(f"   Linked VPs:              {result['linked_vps']}")


def cmd_create_registry(args):
    """Create a Trust Registry for a custom schema."""
    config = load_config(args)
    logger.info("Network: %s (chain: %s)", config.network.name, config.network.chain_id)
    state = open_state(config)
    if not state.exists():
        print(f"VS IDs file not found: {state.path}. Run: vs-demo deploy", file=sys.stderr)
        sys.exit(1)
    session = _create_session()

    result = bootstrap_trust_registry(
        config,
        requester=TransactionSubmitter(config.network, config.user_acc),
        validator=TransactionSubmitter(config.network, config.validator_account),
        agent=local_agent(config, session),
        discovery=EcsDiscovery(config.network.indexer_url, session=session),
        state=state,
        session=session,
        compute_digest=args.compute_digest,
    )

    print("\n✅ Trust Registry is live!")
    print(f"   Trust Registry ID:  {result['trust_registry'].id}")
    print(f"   Schema ID:          {result['schema_id']}")
    print(f"   Root Permission:    {result['root_permission']}")
    print(f"   Issuer Permission:  {result['issuer_permission']}")
    if result["anoncreds_cred_def_id"]:
        print(f"   AnonCreds Cred Def: {result['anoncreds_cred_def_id']}")
    print(f"   Linked VPs:         {result['linked_vps']}")


def cmd_run_all(args):
    """deploy, then get-credentials, then create-registry."""
    for step, command in (("deploy", cmd_deploy), ("get-credentials", cmd_get_credentials),
                          ("create-registry", cmd_create_registry)):
        try:
            command(args)
        except VSDemoError as e:
            fail(step, e)


def cmd_verify(args):
    """Count linked VPs and ask the trust resolver."""
    config = load_config(args)
    session = _create_session()
    agent = local_agent(config, session)
    did = resolve_agent_did(agent, open_state(config))
    result = verify_service(config, agent, did, session)
    mark = "✅" if result["resolver_trusted"] else "⚠️ "
    print(f"{mark} {did}")
    print(f"   Linked VPs: {result['linked_vps']}")
    print(f"   Resolver:   {'trusted' if result['resolver_trusted'] else 'not confirmed'}")


def cmd_discover(args):
    """Show a VTJSC published by a Trust Registry."""
    config = load_config(args)
    discovery = EcsDiscovery(config.network.indexer_url)
    ref = discovery.discover_schema_credential(args.registry or config.network.ecs_public_url, args.name)
    print(f"VTJSC URL: {ref.credential_url}")
    print(f"Schema ID: {ref.schema_id}")
    print(f"Ref:       {ref.json_schema_ref}")
    if args.root_perm:
        print(f"Root perm: {discovery.find_active_root_permission(ref.schema_id)}")


def cmd_digest(args):
    """Compute the SRI digest of a document."""
    print(compute_sri_digest(_create_session(), args.url))


def cmd_stop(args):
    """Remove the agent container and the tunnel."""
    config = load_config(args)
    AgentController(config).stop()
    print(f"✅ Stopped {config.vs_agent_container_name}")


def cmd_show(args):
    """Print recorded resource IDs."""
    config = load_config(args, include_state=False)
    state = open_state(config)
    if not state.exists():
        print(f"No run state at {state.path}")
        sys.exit(1)
    for title, values in state.sections().items():
        if not values:
            continue
        print(f"── {title or 'General'} ──")
        for key, value in values.items():
            print(f"  {key:<24} {value}")


# ── Main ─────────────────────────────────────────────────────────────

def build_parser():
    parser = argparse.ArgumentParser(
        prog="vs-demo",
        description="Deploy a Verifiable Service, obtain ECS credentials and create a Trust Registry on Verana",
    )
    parser.add_argument("--env-file", help="KEY=value file with configuration overrides")
    parser.add_argument("--network", choices=sorted(NETWORKS), default=None,
                        help=f"Verana network (default: $NETWORK or {DEFAULT_NETWORK})")
    parser.add_argument("--output-file", default=None, help=f"Run-state file (default: {DEFAULT_OUTPUT})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("deploy", help="Run a VS Agent locally and set up the CLI account")
    sub.add_parser("get-credentials", help="Obtain ECS Organization and Service credentials")

    p_reg = sub.add_parser("create-registry", help="Create a Trust Registry for a custom schema")
    p_reg.add_argument("--compute-digest", action="store_true", help="Compute EGF_DOC_DIGEST from EGF_DOC_URL")
    p_reg.add_argument("--anoncreds", action="store_true", help="Also create an AnonCreds credential definition")

    p_all = sub.add_parser("run-all", help="deploy, get-credentials and create-registry")
    p_all.add_argument("--compute-digest", action="store_true", help="Compute EGF_DOC_DIGEST from EGF_DOC_URL")
    p_all.add_argument("--anoncreds", action="store_true", help="Also create an AnonCreds credential definition")

    sub.add_parser("verify", help="Count linked VPs and ask the trust resolver")

    p_disc = sub.add_parser("discover", help="Show a VTJSC published by a Trust Registry")
    p_disc.add_argument("name", help="Schema base name (e.g. organization, service)")
    p_disc.add_argument("--registry", help="Registry public URL (default: ECS Trust Registry)")
    p_disc.add_argument("--root-perm", action="store_true", help="Also look up the active root permission")

    p_dig = sub.add_parser("digest", help="Compute the SRI digest of a document")
    p_dig.add_argument("url", help="Document URL")

    sub.add_parser("stop", help="Remove the agent container and tunnel")
    sub.add_parser("show", help="Print recorded resource IDs")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    commands = {
        "deploy": cmd_deploy,
        "get-credentials": cmd_get_credentials,
        "create-registry": cmd_create_registry,
        "run-all": cmd_run_all,
        "verify": cmd_verify,
        "discover": cmd_discover,
        "digest": cmd_digest,
        "stop": cmd_stop,
        "show": cmd_show,
    }

    if args.command not in commands:
        parser.print_help()
        return
    try:
        commands[args.command](args)
    except VSDemoError as e:
        fail(args.command, e)


if __name__ == "__main__":
    main()
