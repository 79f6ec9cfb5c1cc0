"""Workflow states, stage names and the terminal outcome of one deploy run."""

from dataclasses import dataclass, field
from enum import Enum

from aiquick.provisioning.types import Instance


class WorkflowState(str, Enum):
    INIT = "init"
    PROVISIONED = "provisioned"
    RUNNING = "running"
    INSTALL_COMPLETE = "install_complete"
    REACHABLE = "reachable"
    VERIFIED = "verified"
    SUCCEEDED = "succeeded"
    FAILED_WITH_INSTANCE = "failed_with_instance"
    FAILED_NO_INSTANCE = "failed_no_instance"


class Stage(str, Enum):
    PROVISION = "provision"
    WAIT_RUNNING = "wait-running"
    FIRST_EVENT = "install-first-event"
    INSTALL = "install-progress"
    REBOOT_GRACE = "reboot-grace"
    REACHABLE = "wait-reachable"
    VERIFY = "verify-services"


@dataclass
class WorkflowOutcome:
    """Result of one run. Failure outcomes name the stage that failed.

    ``instance_exists`` is True whenever a created instance was left behind,
    so the operator can always clean it up by id.
    """

    state: WorkflowState
    instance: Instance | None = None
    stage: Stage | None = None
    reason: str = ""
    instance_exists: bool = False
    interrupted: bool = False
    warnings: list[str] = field(default_factory=list)
    timings: dict[Stage, float] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state == WorkflowState.SUCCEEDED
