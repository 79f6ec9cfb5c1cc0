"""Deploy workflow: orchestration, cleanup and outcomes."""

from aiquick.deploy.cleanup import CleanupCoordinator, CleanupPolicy, ask_yes_no
from aiquick.deploy.orchestrate import Orchestrator
from aiquick.deploy.outcome import Stage, WorkflowOutcome, WorkflowState

__all__ = [
    "CleanupCoordinator",
    "CleanupPolicy",
    "Orchestrator",
    "Stage",
    "WorkflowOutcome",
    "WorkflowState",
    "ask_yes_no",
]
