"""SSH transport: run commands on the instance over key-based SSH."""

import logging

from aiquick.errors import RemoteCommandError
from aiquick.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

DEFAULT_USER = "root"


def ssh_base_args(server, ssh_key, ssh_port=22, connect_timeout=None):
    """Build base SSH arguments (host key checks off, never prompt)."""
    args = [
        "ssh",
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "BatchMode=yes",
        "-o", "LogLevel=ERROR",
    ]
    if connect_timeout:
        args += ["-o", f"ConnectTimeout={connect_timeout}"]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(server)
    return args


def ssh_address(host, username=DEFAULT_USER):
    """SSH address string (user@host)."""
    return f"{username}@{host}" if username else host


def make_run_cmd(server, ssh_key, ssh_port=22, connect_timeout=3, dry_run=False):
    """Create a run_cmd callable for SSH execution.

    The returned coroutine function has the signature
    ``run_cmd(command, timeout=60, check=False) -> (rc, stdout, stderr)``.
    With ``check=True`` a non-zero exit raises RemoteCommandError.
    """

    async def run_cmd(command, timeout=60, check=False):
        if dry_run:
            logger.info(f"[dry-run] ssh {server}: {command}")
            return 0, "", ""

        ssh_args = ssh_base_args(server, ssh_key, ssh_port, connect_timeout=connect_timeout)
        ssh_args.append(command)
        rc, stdout, stderr = await run_shell_cmd(ssh_args, timeout=timeout)
        if check and rc != 0:
            raise RemoteCommandError(command, rc, stderr)
        return rc, stdout, stderr

    return run_cmd
