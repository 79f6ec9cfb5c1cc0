"""Service health checks executed on the instance over SSH.

The instance's service ports are only bound on its own localhost, so every
probe is a command run remotely (``docker ps``, ``curl localhost``). All of
these checks are degraded-only: failures become warnings, never aborts.
"""

import json
import logging
import shlex

from aiquick.errors import RemoteCommandError
from aiquick.readiness.poller import PollSpec, poll

logger = logging.getLogger(__name__)

DEFAULT_SERVICES = ("vllm", "open-webui", "caddy")

# Seconds curl may spend on one request; below the SSH command timeout
CURL_MAX_TIME = 10


def model_listed(model_id):
    """Matcher for an OpenAI-compatible ``/v1/models`` body listing *model_id*."""

    def _match(body):
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return f'"id":"{model_id}"' in body.replace(" ", "")
        models = data.get("data") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return False
        return any(isinstance(m, dict) and m.get("id") == model_id for m in models)

    return _match


class ServiceHealthChecker:
    """Health probes bound to one instance's SSH runner."""

    def __init__(self, run_cmd, clock=None, sleep=None):
        self.run_cmd = run_cmd
        self._clock = clock
        self._sleep = sleep

    async def list_processes(self):
        """Names of running containers."""
        _, stdout, _ = await self.run_cmd("docker ps --format '{{.Names}}'", timeout=30, check=True)
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def check_processes_running(self, names=DEFAULT_SERVICES):
        """One-shot check that every required service has a running container.

        Matching is by substring of the container name. Returns False (and
        logs a warning) when any are missing or the listing fails.
        """
        try:
            running = await self.list_processes()
        except RemoteCommandError as e:
            logger.warning(f"Could not list containers: {e}")
            return False

        missing = [n for n in names if not any(n in r for r in running)]
        if missing:
            logger.warning(f"Some containers may still be starting (missing: {', '.join(missing)}). Check manually with: docker ps")
            return False
        logger.info(f"All containers are running ({', '.join(names)})")
        return True

    async def http_status(self, port, path):
        """HTTP status code of ``http://localhost:{port}{path}`` as seen from the instance."""
        url = shlex.quote(f"http://localhost:{port}{path}")
        _, stdout, _ = await self.run_cmd(f"curl -s -o /dev/null -w '%{{http_code}}' --max-time {CURL_MAX_TIME} {url}", timeout=30, check=True)
        return stdout.strip()

    async def http_body(self, port, path):
        url = shlex.quote(f"http://localhost:{port}{path}")
        _, stdout, _ = await self.run_cmd(f"curl -s --max-time {CURL_MAX_TIME} {url}", timeout=30, check=True)
        return stdout

    async def poll_http_health(self, port=8080, path="/health", expected_status=200, timeout=30, interval=2):
        """Wait for the endpoint to answer *expected_status*. Timeout only warns."""

        async def _healthy():
            return await self.http_status(port, path) == str(expected_status)

        spec = PollSpec(stage="http-health", predicate=_healthy, interval=interval, timeout=timeout, fatal=False)
        return await poll(spec, clock=self._clock, sleep=self._sleep)

    async def poll_content_ready(self, port, path, matcher, timeout=600, interval=2, stage="model-ready"):
        """Wait for the endpoint body to satisfy *matcher*. Timeout only warns."""

        async def _ready():
            return bool(matcher(await self.http_body(port, path)))

        spec = PollSpec(stage=stage, predicate=_ready, interval=interval, timeout=timeout, fatal=False)
        return await poll(spec, clock=self._clock, sleep=self._sleep)
