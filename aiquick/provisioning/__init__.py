"""Instance provisioning: control-plane adapter, SSH transport and reachability."""

from aiquick.provisioning.linode import (
    DEFAULT_API_URL,
    LinodeProvisioner,
    create_instance,
    delete_instance,
    get_instance,
    wait_for_status,
)
from aiquick.provisioning.shell import run_shell_cmd
from aiquick.provisioning.ssh import wait_for_ssh
from aiquick.provisioning.ssh_transport import make_run_cmd, ssh_address, ssh_base_args
from aiquick.provisioning.types import Instance, InstanceSpec, InstanceStatus, validate_label

__all__ = [
    "DEFAULT_API_URL",
    "Instance",
    "InstanceSpec",
    "InstanceStatus",
    "LinodeProvisioner",
    "create_instance",
    "delete_instance",
    "get_instance",
    "make_run_cmd",
    "run_shell_cmd",
    "ssh_address",
    "ssh_base_args",
    "validate_label",
    "wait_for_ssh",
    "wait_for_status",
]
