"""Exception taxonomy for provisioning and readiness stages.

Fatal vs. degraded is decided by the caller (see readiness.poller.PollSpec);
these types only say what went wrong:

- ControlPlaneError / ProvisionError: the provider answered with an ``errors``
  payload, or with something that is not a usable instance.
- ControlPlaneUnavailable: the API was overloaded or unreachable behind a
  gateway (5xx, 429, non-JSON body). Transient; status polling retries it.
- ReadinessTimeout: a bounded wait ran out of budget.
- StreamClosed: the progress relay ended the subscription early.
- RemoteCommandError: a command over SSH failed. Transient; pollers retry it.
"""


class QuickstartError(Exception):
    """Base exception for aiquick."""


class ControlPlaneError(QuickstartError):
    """The control-plane API reported an error in its response payload."""

    def __init__(self, reasons, message=None):
        if isinstance(reasons, str):
            reasons = [reasons]
        self.reasons = list(reasons)
        super().__init__(message or "; ".join(self.reasons) or "unknown control-plane error")


class ProvisionError(ControlPlaneError):
    """Instance creation was rejected. No instance exists."""


class ControlPlaneUnavailable(ControlPlaneError):
    """The API answered, but only with a rate limit, a server error or a non-JSON page."""

    def __init__(self, reasons, status_code=None):
        self.status_code = status_code
        super().__init__(reasons)


class ReadinessTimeout(QuickstartError):
    """A bounded wait exceeded its time budget."""

    def __init__(self, stage, timeout):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"{stage}: not ready after {timeout}s")


class StreamClosed(QuickstartError):
    """The progress stream ended before a terminal marker arrived."""

    def __init__(self, stage, detail=""):
        self.stage = stage
        msg = f"{stage}: progress stream closed"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class RemoteCommandError(QuickstartError):
    """A remote command exited non-zero or could not be run."""

    def __init__(self, command, returncode, stderr=""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"remote command failed (rc={returncode}){detail}")
