"""
VS Agent process control: Docker container plus an ngrok tunnel.

The agent's public API must be reachable from the internet for its
did:webvh identity to resolve, so the public port is exposed through ngrok
and the tunnel domain becomes part of the agent DID.
"""

import logging
import subprocess
import time
from typing import Callable, List, Optional

import requests

from .client import VSAgentClient, _create_session, fetch_json
from .config import DemoConfig
from .exceptions import ConfigurationError, DependencyUnavailableError, PollTimeout, RemoteServiceError
from .models import AgentHandle
from .polling import poll_until, wait_ready

logger = logging.getLogger("vs_demo.agent")

NGROK_API = "http://localhost:4040/api/tunnels"
TUNNEL_ATTEMPTS = 5
TUNNEL_INTERVAL = 1.0


class AgentController:
    """Starts, probes and stops the local VS Agent."""

    def __init__(
        self,
        config: DemoConfig,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        ngrok_api: str = NGROK_API,
        tunnel_log: str = "/tmp/ngrok-vs-demo.log",
    ):
        self.config = config
        self.ngrok_api = ngrok_api
        self.tunnel_log = tunnel_log
        self._run = runner
        self._popen = popen
        self._session = session or _create_session()
        self._sleep = sleep
        self._tunnel: Optional[subprocess.Popen] = None
        self.client = VSAgentClient(config.admin_api, public_url=config.public_api, session=self._session)

    def _exec(self, cmd: List[str], timeout: float = 600) -> subprocess.CompletedProcess:
        logger.debug("Running: %s", " ".join(cmd))
        try:
            return self._run(cmd, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError:
            raise ConfigurationError(f"'{cmd[0]}' not found on PATH")
        except subprocess.TimeoutExpired as e:
            step = " ".join(cmd[:2])
            raise DependencyUnavailableError(f"'{step}' timed out after {timeout}s", output=str(e.output or ""))

    def handle(self, tunnel_url: Optional[str] = None, did: Optional[str] = None) -> AgentHandle:
        return AgentHandle(
            admin_url=self.config.admin_api,
            public_url=self.config.public_api,
            container_name=self.config.vs_agent_container_name,
            tunnel_url=tunnel_url,
            did=did,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def remove_stale(self) -> None:
        """Remove a previous container and tunnel; absence is not an error."""
        self._exec(["docker", "rm", "-f", self.config.vs_agent_container_name])
        self._exec(["pkill", "-f", f"ngrok http {self.config.vs_agent_public_port}"])

    def tunnel_url(self) -> Optional[str]:
        """Public URL of the first ngrok tunnel, or None."""
        try:
            body = fetch_json(self._session, self.ngrok_api, timeout=5) or {}
        except (DependencyUnavailableError, RemoteServiceError):
            return None
        tunnels = body.get("tunnels") or []
        url = tunnels[0].get("public_url") if tunnels else None
        return url or None

    def start_tunnel(self) -> str:
        """
        Launch ngrok for the public port and wait for its URL.

        Raises:
            DependencyUnavailableError: No URL after a few attempts
        """
        port = str(self.config.vs_agent_public_port)
        logger.info("Starting ngrok tunnel on port %s...", port)
        try:
            with open(self.tunnel_log, "w") as log:
                self._tunnel = self._popen(
                    ["ngrok", "http", port, "--log=stdout"],
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except FileNotFoundError:
            raise ConfigurationError("'ngrok' not found on PATH")

        try:
            url = poll_until(self.tunnel_url, TUNNEL_INTERVAL, TUNNEL_ATTEMPTS, "ngrok tunnel", self._sleep)
        except PollTimeout:
            raise DependencyUnavailableError(
                "Failed to get ngrok URL. Is ngrok installed and authenticated?",
                output=_read_tail(self.tunnel_log),
            )
        logger.info("ngrok tunnel: %s", url)
        return url

    def start(self) -> AgentHandle:
        """
        Pull the image, open the tunnel and run the agent container.

        The returned handle has no DID yet; call await_ready then get_identity.
        """
        cfg = self.config
        logger.info("Pulling VS Agent image %s...", cfg.vs_agent_image)
        pulled = self._exec(["docker", "pull", "--platform", "linux/amd64", cfg.vs_agent_image])
        if pulled.returncode != 0:
            raise DependencyUnavailableError(f"docker pull {cfg.vs_agent_image} failed", output=pulled.stderr)

        tunnel_url = self.start_tunnel()
        domain = tunnel_url.replace("https://", "").replace("http://", "").rstrip("/")

        logger.info("Starting VS Agent container...")
        started = self._exec([
            "docker", "run", "--platform", "linux/amd64", "-d",
            "-p", f"{cfg.vs_agent_public_port}:3001",
            "-p", f"{cfg.vs_agent_admin_port}:3000",
            "-v", f"{cfg.vs_agent_data_dir}:/root/.afj",
            "-e", f"AGENT_PUBLIC_DID=did:webvh:{domain}",
            "-e", f"AGENT_LABEL={cfg.service_name}",
            "-e", "ENABLE_PUBLIC_API_SWAGGER=true",
            "--name", cfg.vs_agent_container_name,
            cfg.vs_agent_image,
        ])
        if started.returncode != 0:
            raise DependencyUnavailableError("docker run failed", output=started.stderr)
        return self.handle(tunnel_url=tunnel_url)

    def await_ready(self, max_attempts: int = 30, interval: float = 2.0) -> bool:
        """Poll the admin API until it answers; False when attempts run out."""
        return wait_ready(self.client.is_reachable, interval, max_attempts, "VS Agent admin API", self._sleep)

    def logs(self, tail: int = 50) -> str:
        result = self._exec(["docker", "logs", "--tail", str(tail), self.config.vs_agent_container_name])
        return "\n".join(filter(None, [result.stdout, result.stderr]))

    def get_identity(self) -> str:
        """The agent's public DID (DiscoveryError if it has none)."""
        return self.client.public_did()

    def stop(self) -> None:
        """Remove the container and stop the tunnel."""
        self._exec(["docker", "rm", "-f", self.config.vs_agent_container_name])
        if self._tunnel is not None:
            self._tunnel.terminate()
            try:
                self._tunnel.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._tunnel.kill()
            self._tunnel = None
        else:
            self._exec(["pkill", "-f", f"ngrok http {self.config.vs_agent_public_port}"])


def _read_tail(path: str, lines: int = 20) -> str:
    try:
        with open(path) as f:
            return "".join(f.readlines()[-lines:])
    except OSError:
        return ""
