"""Readiness primitives: bounded polling, progress stream monitoring, service health."""

from aiquick.readiness.health import ServiceHealthChecker, model_listed
from aiquick.readiness.poller import PollResult, PollSpec, PollStatus, format_elapsed, poll, poll_until
from aiquick.readiness.stream import (
    EventKind,
    ProgressEvent,
    ProgressStreamMonitor,
    TerminalMatch,
    match_marker,
)

__all__ = [
    "EventKind",
    "PollResult",
    "PollSpec",
    "PollStatus",
    "ProgressEvent",
    "ProgressStreamMonitor",
    "ServiceHealthChecker",
    "TerminalMatch",
    "format_elapsed",
    "match_marker",
    "model_listed",
    "poll",
    "poll_until",
]
