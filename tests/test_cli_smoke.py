"""Smoke tests for the vs-demo CLI.

Tests that CLI commands parse correctly (--help) and that commands
which can run without Docker, ngrok, veranad or the network produce
expected output.
"""

import os
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from vs_demo import cli
from vs_demo.exceptions import DiscoveryError
from vs_demo.models import SchemaReference
from vs_demo.runstate import RunState


def run_cli(*args, expect_rc=0, cwd=None):
    """Run `python -m vs_demo.cli` with given args."""
    result = subprocess.run(
        [sys.executable, "-m", "vs_demo.cli", *args],
        capture_output=True, text=True, timeout=15, cwd=cwd,
        env={**os.environ, "INDEXER_URL": "http://localhost:1"},  # no real network
    )
    if expect_rc is not None:
        assert result.returncode == expect_rc, (
            f"Expected rc={expect_rc}, got {result.returncode}\n"
            f"stdout: {result.stdout}\nstderr: {result.stderr}"
        )
    return result


# ── Help flags parse correctly ──

COMMANDS = [
    "deploy", "get-credentials", "create-registry", "run-all", "verify",
    "discover", "digest", "stop", "show",
]


@pytest.mark.parametrize("cmd", COMMANDS)
def test_help_flag(cmd):
    """Every subcommand should accept --help and exit 0."""
    result = run_cli(cmd, "--help")
    assert "usage:" in result.stdout.lower()


def test_main_help():
    result = run_cli("--help")
    assert "vs-demo" in result.stdout
    assert "--network" in result.stdout


def test_unknown_network_rejected():
    result = run_cli("--network", "mainnet", "show", expect_rc=2)
    assert "invalid choice" in result.stderr


# ── In-process commands ──

@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ("NETWORK", "OUTPUT_FILE", "CHAIN_ID", "NODE_RPC", "INDEXER_URL", "ECS_TR_PUBLIC_URL"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_no_command_prints_help(workdir, capsys):
    cli.main([])
    assert "usage:" in capsys.readouterr().out


def test_show(workdir, capsys):
    state = RunState(workdir / "vs-demo-ids.env", network="testnet")
    state.append_section("VS Agent", {"AGENT_DID": "did:webvh:x"})
    state.append_section("Trust Registry", {"TRUST_REG_ID": "42"})

    cli.main(["show"])

    out = capsys.readouterr().out
    assert "── VS Agent ──" in out
    assert "AGENT_DID" in out and "did:webvh:x" in out
    assert "TRUST_REG_ID" in out and "42" in out


def test_show_without_state(workdir, capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["--output-file", str(workdir / "none.env"), "show"])
    assert exc.value.code == 1
    assert "No run state" in capsys.readouterr().out


def test_create_registry_requires_deploy(workdir, capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["create-registry"])
    assert exc.value.code == 1
    assert "Run: vs-demo deploy" in capsys.readouterr().err


def test_discover(workdir, capsys):
    discovery = MagicMock()
    discovery.discover_schema_credential.return_value = SchemaReference(
        schema_id="110",
        credential_url="https://tr/service-jsc",
        json_schema_ref="vpr:verana:vna-devnet-1/cs/v1/js/110",
    )
    with patch("vs_demo.cli.EcsDiscovery", return_value=discovery) as factory:
        cli.main(["--network", "devnet", "discover", "service"])

    factory.assert_called_once_with("https://idx.devnet.verana.network")
    discovery.discover_schema_credential.assert_called_once_with(
        "https://ecs-trust-registry.devnet.verana.network", "service"
    )
    out = capsys.readouterr().out
    assert "Schema ID: 110" in out
    assert "https://tr/service-jsc" in out


def test_failure_reported_on_stderr(workdir, capsys):
    discovery = MagicMock()
    discovery.discover_schema_credential.side_effect = DiscoveryError("no organization-jsc-vp", body="{}")
    with patch("vs_demo.cli.EcsDiscovery", return_value=discovery):
        with pytest.raises(SystemExit) as exc:
            cli.main(["discover", "organization", "--registry", "https://tr"])

    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert "❌ discover failed: no organization-jsc-vp" in err
    assert "Response: {}" in err


def test_env_file_and_state_layering(workdir):
    (workdir / "vs-demo-ids.env").write_text("# VS Agent\nAGENT_DID=did:webvh:x\nORG_NAME=From State\n")
    (workdir / "demo.env").write_text("NETWORK=devnet\nORG_NAME=From File\nSERVICE_NAME=From File\n")
    args = cli.build_parser().parse_args(["--env-file", "demo.env", "create-registry", "--anoncreds"])

    config = cli.load_config(args)

    assert config.network.name == "devnet"
    assert config.org_name == "From File"
    assert config.enable_anoncreds is True
    assert config.output_file == "vs-demo-ids.env"


def test_recorded_chain_does_not_override_network_flag(workdir):
    (workdir / "vs-demo-ids.env").write_text(
        "# Chain\nCHAIN_ID=vna-testnet-1\nNODE_RPC=http://node.testnet.verana.network:26657\n"
    )
    args = cli.build_parser().parse_args(["--network", "devnet", "verify"])

    config = cli.load_config(args)

    assert config.network.name == "devnet"
    assert config.network.chain_id == "vna-devnet-1"


def test_later_phase_follows_recorded_network(workdir):
    state = RunState(workdir / "vs-demo-ids.env", network="devnet")
    state.replace_section("Chain", {
        "NETWORK": "devnet",
        "CHAIN_ID": "vna-devnet-1",
        "NODE_RPC": "https://rpc.devnet.verana.network",
    })

    config = cli.load_config(cli.build_parser().parse_args(["get-credentials"]))
    assert config.network.name == "devnet"
    assert config.network.chain_id == "vna-devnet-1"

    config = cli.load_config(cli.build_parser().parse_args(["--network", "testnet", "get-credentials"]))
    assert config.network.chain_id == "vna-testnet-1"
