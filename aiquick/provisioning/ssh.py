"""SSH reachability probing."""

import logging

from aiquick.provisioning.ssh_transport import DEFAULT_USER, make_run_cmd, ssh_address
from aiquick.readiness.poller import PollSpec, poll

logger = logging.getLogger(__name__)


async def wait_for_ssh(host, ssh_key_path, username=DEFAULT_USER, ssh_port=22, timeout=120, interval=2, run_cmd=None, clock=None, sleep=None):
    """Poll SSH connectivity until a no-op command succeeds or timeout.

    Refused connections, connect timeouts and not-yet-installed keys all
    look like a failed ``exit`` and are retried; right after a reboot the
    instance is expected to be unreachable for a while.

    Args:
        run_cmd: optional SSH runner (see ssh_transport.make_run_cmd); built
            from host/key/port when omitted.

    Returns:
        PollResult of the successful wait.

    Raises:
        ReadinessTimeout: not reachable within *timeout* seconds.
    """
    address = ssh_address(host, username)
    run_cmd = run_cmd or make_run_cmd(address, ssh_key_path, ssh_port, connect_timeout=3)

    async def _reachable():
        await run_cmd("exit", timeout=15, check=True)
        return True

    logger.info(f"Waiting for SSH on {address} (timeout: {timeout}s)...")
    spec = PollSpec(stage="wait-reachable", predicate=_reachable, interval=interval, timeout=timeout, fatal=True)
    return await poll(spec, clock=clock, sleep=sleep)
