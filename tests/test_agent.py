"""Tests for VS Agent container and tunnel control."""

import subprocess
from unittest.mock import MagicMock

import pytest

from vs_demo.agent import AgentController
from vs_demo.exceptions import ConfigurationError, DependencyUnavailableError

from fakes import AGENT_DID, MockResponse

NGROK_API = "http://localhost:4040/api/tunnels"


def ok(cmd, **kwargs):
    return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def runner():
    return MagicMock(side_effect=ok)


def make_controller(config, session, clock, runner, tmp_path, popen=None):
    return AgentController(config, runner=runner, popen=popen or MagicMock(), session=session, sleep=clock,
                           tunnel_log=str(tmp_path / "ngrok.log"))


def test_tunnel_url_never_appears(config, session, clock, runner, tmp_path):
    session.route("GET", NGROK_API, MockResponse({"tunnels": []}))
    (tmp_path / "ngrok.log").write_text("")
    popen = MagicMock()

    def write_log(cmd, stdout, **kwargs):
        stdout.write("ERR_NGROK_4018 authentication failed\n")
        return MagicMock()
    popen.side_effect = write_log

    with pytest.raises(DependencyUnavailableError) as exc:
        make_controller(config, session, clock, runner, tmp_path, popen).start_tunnel()

    assert "authentication failed" in exc.value.output
    assert clock.sleeps == [1.0] * 4
    assert popen.call_args[0][0] == ["ngrok", "http", "3001", "--log=stdout"]


def test_tunnel_api_unreachable_is_retried(config, session, clock, runner, tmp_path):
    session.route("GET", NGROK_API, [
        MockResponse(text="", status_code=502),
        MockResponse({"tunnels": [{"public_url": "https://x.ngrok-free.app"}]}),
    ])
    assert make_controller(config, session, clock, runner, tmp_path).start_tunnel() == "https://x.ngrok-free.app"


def test_empty_tunnel_url_is_not_accepted(config, session, clock, runner, tmp_path):
    session.route("GET", NGROK_API, MockResponse({"tunnels": [{"public_url": ""}]}))
    (tmp_path / "ngrok.log").write_text("")
    controller = make_controller(config, session, clock, runner, tmp_path)

    assert controller.tunnel_url() is None
    with pytest.raises(DependencyUnavailableError, match="Failed to get ngrok URL"):
        controller.start_tunnel()


def test_pull_timeout(config, session, clock, tmp_path):
    runner = MagicMock(side_effect=subprocess.TimeoutExpired(["docker", "pull"], 600, output="Pulling fs layer"))
    with pytest.raises(DependencyUnavailableError, match="'docker pull' timed out after 600s") as exc:
        make_controller(config, session, clock, runner, tmp_path).start()
    assert exc.value.output == "Pulling fs layer"


def test_docker_missing(config, session, clock, tmp_path):
    runner = MagicMock(side_effect=FileNotFoundError("docker"))
    with pytest.raises(ConfigurationError, match="'docker' not found"):
        make_controller(config, session, clock, runner, tmp_path).remove_stale()


def test_pull_failure(config, session, clock, tmp_path):
    runner = MagicMock(return_value=subprocess.CompletedProcess([], 1, stdout="", stderr="manifest unknown"))
    with pytest.raises(DependencyUnavailableError) as exc:
        make_controller(config, session, clock, runner, tmp_path).start()
    assert exc.value.output == "manifest unknown"


def test_identity(config, session, clock, runner, tmp_path, agent):
    controller = make_controller(config, session, clock, runner, tmp_path)
    assert controller.await_ready() is True
    assert controller.get_identity() == AGENT_DID
    assert clock.sleeps == []


def test_stop_without_tunnel_handle(config, session, clock, runner, tmp_path):
    make_controller(config, session, clock, runner, tmp_path).stop()
    commands = [c[0][0] for c in runner.call_args_list]
    assert commands == [["docker", "rm", "-f", "vs-demo"], ["pkill", "-f", "ngrok http 3001"]]


def test_stop_terminates_own_tunnel(config, session, clock, runner, tmp_path):
    session.route("GET", NGROK_API, MockResponse({"tunnels": [{"public_url": "https://x.ngrok-free.app"}]}))
    tunnel = MagicMock()
    controller = make_controller(config, session, clock, runner, tmp_path, popen=MagicMock(return_value=tunnel))
    controller.start_tunnel()

    controller.stop()

    tunnel.terminate.assert_called_once()
    assert [c[0][0] for c in runner.call_args_list] == [["docker", "rm", "-f", "vs-demo"]]
