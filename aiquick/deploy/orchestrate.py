"""Deploy orchestration: provision, wait for readiness stage by stage, report.

Stages run strictly one after another:

    provision -> wait-running -> install-first-event -> install-progress
      -> reboot-grace -> wait-reachable -> verify-services

Every stage either finishes, degrades (warning recorded, run continues) or
fails. A failure once an instance exists always goes through the
CleanupCoordinator before the outcome is returned, including operator
interrupts.
"""

import asyncio
import logging
import os
import time

import httpx

from aiquick.config import DeployParams
from aiquick.deploy.cleanup import CleanupCoordinator
from aiquick.deploy.outcome import Stage, WorkflowOutcome, WorkflowState
from aiquick.errors import QuickstartError
from aiquick.provisioning.ssh import wait_for_ssh
from aiquick.provisioning.ssh_transport import make_run_cmd, ssh_address
from aiquick.provisioning.types import InstanceSpec
from aiquick.readiness.health import ServiceHealthChecker, model_listed
from aiquick.readiness.stream import ProgressStreamMonitor

logger = logging.getLogger(__name__)

# Failures with a meaningful message of their own; anything else is logged with a traceback
_EXPECTED_ERRORS = (QuickstartError, httpx.HTTPError, OSError)


def build_instance_spec(params: DeployParams) -> InstanceSpec:
    """Assemble the creation request. Reads the SSH public key next to the private key."""
    if params.dry_run and not os.path.exists(params.public_key_path):
        public_key = "dry-run-placeholder"
    else:
        with open(params.public_key_path) as f:
            public_key = f.read().strip()
    return InstanceSpec(
        label=params.label,
        region=params.region,
        instance_type=params.instance_type,
        image=params.image,
        root_pass=params.root_pass,
        authorized_keys=[public_key],
        user_data=params.user_data,
    )


class Orchestrator:
    """Runs one deploy workflow against injected collaborators.

    Args:
        provisioner: object with async ``create(spec)``, ``delete(id)`` and
            ``wait_until_running(id, timeout, interval, clock, sleep)``.
        params: resolved DeployParams.
        cleanup: CleanupCoordinator used on every failure after creation.
        monitor_factory: ``topic -> ProgressStreamMonitor`` (async context manager).
        run_cmd_factory: ``host -> run_cmd`` SSH runner.
        clock / sleep: time source and async sleep, replaceable in tests.
    """

    def __init__(self, provisioner, params: DeployParams, cleanup=None, monitor_factory=None, run_cmd_factory=None, clock=None, sleep=None):
        self.provisioner = provisioner
        self.params = params
        self.cleanup = cleanup or CleanupCoordinator(provisioner)
        self._monitor_factory = monitor_factory or self._default_monitor
        self._run_cmd_factory = run_cmd_factory or self._default_run_cmd
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

        self.state = WorkflowState.INIT
        self.stage = None
        self.instance = None
        self.warnings = []
        self.timings = {}
        self.outcome = None

    def _default_monitor(self, topic):
        return ProgressStreamMonitor(
            topic,
            relay_url=self.params.relay_url,
            markers=self.params.terminal_markers,
            max_reconnects=self.params.max_stream_reconnects,
        )

    def _default_run_cmd(self, host):
        return make_run_cmd(ssh_address(host), self.params.ssh_key, connect_timeout=3)

    # ── Stage helpers ────────────────────────────────────────────────

    async def _timed(self, stage, fn):
        self.stage = stage
        start = self._clock()
        try:
            return await fn()
        finally:
            self.timings[stage] = self._clock() - start

    async def _provision(self):
        spec = build_instance_spec(self.params)
        self.instance = await self.provisioner.create(spec)
        self.state = WorkflowState.PROVISIONED
        logger.info("Instance created successfully, starting up...")
        logger.info(f"  Instance ID: {self.instance.id}")
        logger.info(f"  IP Address: {self.instance.address}")

    async def _wait_running(self):
        p = self.params
        logger.info("Waiting for instance to boot up... (this may take 2 - 3 minutes)")
        running = await self.provisioner.wait_until_running(
            self.instance.id, timeout=p.timeouts.running, interval=p.intervals.running, clock=self._clock, sleep=self._sleep
        )
        self.instance.address = running.address or self.instance.address
        self.instance.status = running.status
        self.state = WorkflowState.RUNNING

    async def _wait_first_event(self, monitor):
        logger.info("Waiting for cloud-init to report progress... (this may take 3 - 5 minutes)")
        await monitor.await_first_event(timeout=self.params.timeouts.first_event)

    async def _wait_install(self, monitor):
        match = await monitor.consume_until_terminal()
        logger.info(f"Installation finished its first phase ('{match.marker}')")
        self.state = WorkflowState.INSTALL_COMPLETE

    async def _wait_reachable(self, run_cmd):
        p = self.params
        logger.info("Waiting for instance to reboot... (this may take 1 - 2 minutes)")
        await wait_for_ssh(
            self.instance.address,
            p.ssh_key,
            timeout=p.timeouts.reachable,
            interval=p.intervals.reachable,
            run_cmd=run_cmd,
            clock=self._clock,
            sleep=self._sleep,
        )
        self.state = WorkflowState.REACHABLE

    async def _verify_services(self, run_cmd):
        p = self.params
        checker = ServiceHealthChecker(run_cmd, clock=self._clock, sleep=self._sleep)

        logger.info("Waiting for containers to start...")
        if not await checker.check_processes_running(p.services):
            self.warnings.append(f"Not all containers were running ({', '.join(p.services)})")

        logger.info("Waiting for the web UI to be ready...")
        result = await checker.poll_http_health(
            p.health_port, p.health_path, timeout=p.timeouts.http, interval=p.intervals.http
        )
        if not result.ready:
            self.warnings.append(f"Health check on port {p.health_port}{p.health_path} timed out; it may still be starting up")

        logger.info(f"Waiting for the model server to load {p.model_id}... (this may take 3 - 5 minutes)")
        result = await checker.poll_content_ready(
            p.model_port, p.model_path, model_listed(p.model_id), timeout=p.timeouts.model, interval=p.intervals.model
        )
        if not result.ready:
            self.warnings.append(f"Model {p.model_id} not loaded yet; it may still be downloading")
        self.state = WorkflowState.VERIFIED

    # ── Failure path ─────────────────────────────────────────────────

    async def _fail(self, reason, interrupted=False):
        stage = self.stage
        stage_name = stage.value if stage else "init"
        logger.error(f"ERROR at {stage_name}: {reason}")

        if self.instance is None:
            self.state = WorkflowState.FAILED_NO_INSTANCE
            return self._finish(reason=reason, instance_exists=False, interrupted=interrupted)

        deleted = await self.cleanup.offer(self.instance)
        self.state = WorkflowState.FAILED_WITH_INSTANCE
        if not deleted:
            logger.error(f"Instance {self.instance.id} ({self.instance.label}) is still running")
        return self._finish(reason=reason, instance_exists=not deleted, interrupted=interrupted)

    def _finish(self, reason="", instance_exists=False, interrupted=False):
        self.outcome = WorkflowOutcome(
            state=self.state,
            instance=self.instance,
            stage=None if self.state == WorkflowState.SUCCEEDED else self.stage,
            reason=reason,
            instance_exists=instance_exists,
            interrupted=interrupted,
            warnings=list(self.warnings),
            timings=dict(self.timings),
            elapsed=self._clock() - self._start,
        )
        return self.outcome

    # ── Entry point ──────────────────────────────────────────────────

    async def run(self) -> WorkflowOutcome:
        """Run the workflow once and return its outcome.

        Cancellation (operator interrupt) takes the failure path, stores the
        outcome on ``self.outcome`` and is then re-raised.
        """
        self._start = self._clock()
        try:
            await self._timed(Stage.PROVISION, self._provision)

            # Subscribe before waiting for boot so early progress is buffered
            self.stage = Stage.FIRST_EVENT
            async with self._monitor_factory(self.instance.label) as monitor:
                await self._timed(Stage.WAIT_RUNNING, self._wait_running)
                await self._timed(Stage.FIRST_EVENT, lambda: self._wait_first_event(monitor))
                await self._timed(Stage.INSTALL, lambda: self._wait_install(monitor))

            await self._timed(Stage.REBOOT_GRACE, lambda: self._sleep(self.params.reboot_grace))

            run_cmd = self._run_cmd_factory(self.instance.address)
            await self._timed(Stage.REACHABLE, lambda: self._wait_reachable(run_cmd))
            await self._timed(Stage.VERIFY, lambda: self._verify_services(run_cmd))
        except asyncio.CancelledError:
            await self._fail("interrupted by operator", interrupted=True)
            raise
        except _EXPECTED_ERRORS as e:
            return await self._fail(str(e))
        except Exception as e:
            logger.exception("Unexpected error")
            return await self._fail(f"unexpected error: {e}")

        self.state = WorkflowState.SUCCEEDED
        return self._finish()
