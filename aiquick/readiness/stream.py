"""Installation progress monitor: subscribe to a push relay and wait for a terminal marker.

The instance publishes progress lines to an ntfy-style relay under a topic
equal to its own label. We only listen: no request ever goes to the
instance, so this works long before it is reachable.

The subscription is one long GET whose body is newline-delimited JSON::

    {"id": "...", "event": "open", ...}
    {"id": "...", "event": "keepalive", ...}
    {"id": "...", "event": "message", "message": "Installing Docker..."}

Two timeout regimes apply. The first ``message`` must arrive within the
first-event window, otherwise the emitter never started. After that there
is no per-event timeout: installs are long and legitimately quiet.
"""

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from aiquick.errors import ReadinessTimeout, StreamClosed

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "https://ntfy.sh"
DEFAULT_TERMINAL_MARKERS = ("Rebooting", "Starting")

FIRST_EVENT_STAGE = "install-first-event"
PROGRESS_STAGE = "install-progress"


class EventKind(str, Enum):
    HEARTBEAT = "heartbeat"
    MESSAGE = "message"
    OTHER = "other"


@dataclass(frozen=True)
class ProgressEvent:
    kind: EventKind
    text: str = ""
    id: str = ""

    @classmethod
    def parse(cls, line):
        """Parse one stream line. Returns None for blank lines."""
        line = line.strip()
        if not line:
            return None
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring malformed stream line: {line[:80]}")
            return cls(EventKind.OTHER)
        if not isinstance(data, dict):
            return cls(EventKind.OTHER)

        event = data.get("event")
        event_id = str(data.get("id", "") or "")
        if event == "message":
            return cls(EventKind.MESSAGE, text=data.get("message", "") or "", id=event_id)
        if event == "keepalive":
            return cls(EventKind.HEARTBEAT, id=event_id)
        return cls(EventKind.OTHER, id=event_id)


@dataclass(frozen=True)
class TerminalMatch:
    marker: str
    event: ProgressEvent


def match_marker(text, markers):
    """Return the first marker found in *text* (case-insensitive), or None."""
    lowered = text.lower()
    for marker in markers:
        if marker.lower() in lowered:
            return marker
    return None


class ProgressStreamMonitor:
    """Passive subscriber to the relay topic of one instance.

    Use as an async context manager; the subscription opens on entry so no
    early message is missed, and closes on exit::

        async with ProgressStreamMonitor(label) as monitor:
            await monitor.await_first_event(timeout=300)
            match = await monitor.consume_until_terminal()

    A stream that closes mid-install is reopened up to *max_reconnects*
    times, asking the relay to replay from the id of the last ``message``
    event (open and keepalive ids are not replayable).
    """

    def __init__(
        self,
        topic,
        relay_url=DEFAULT_RELAY_URL,
        markers=DEFAULT_TERMINAL_MARKERS,
        max_reconnects=1,
        client=None,
        on_message=None,
    ):
        self.topic = topic
        self.relay_url = relay_url.rstrip("/")
        self.markers = tuple(markers)
        self.max_reconnects = max_reconnects
        self._client = client
        self._on_message = on_message or (lambda text: logger.info(f"  {text}"))
        self._stack = None
        self._lines = None
        self._last_id = None
        self._first = None
        self._first_error = None

    @property
    def url(self):
        return f"{self.relay_url}/{self.topic}/json"

    async def __aenter__(self):
        await self._connect(FIRST_EVENT_STAGE)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        if self._stack is not None:
            stack, self._stack = self._stack, None
            self._lines = None
            await stack.aclose()

    async def _connect(self, stage, since=None):
        params = {"since": since} if since else None
        timeout = httpx.Timeout(10.0, read=None)
        stack = contextlib.AsyncExitStack()
        try:
            client = self._client
            if client is None:
                client = await stack.enter_async_context(httpx.AsyncClient(timeout=timeout))
            response = await stack.enter_async_context(client.stream("GET", self.url, params=params, timeout=timeout))
            if response.is_error:
                raise StreamClosed(stage, f"relay answered HTTP {response.status_code}")
        except httpx.HTTPError as e:
            await stack.aclose()
            raise StreamClosed(stage, f"cannot subscribe to {self.url}: {e}") from e
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        self._lines = response.aiter_lines()
        logger.debug(f"Subscribed to {self.url}")

    async def _next_event(self, stage):
        """Block until the next non-blank event. Raises StreamClosed at end of stream."""
        if self._lines is None:
            raise StreamClosed(stage, "not subscribed")
        while True:
            try:
                line = await anext(self._lines)
            except StopAsyncIteration:
                raise StreamClosed(stage) from None
            except httpx.HTTPError as e:
                raise StreamClosed(stage, str(e)) from e
            event = ProgressEvent.parse(line)
            if event is None:
                continue
            if event.kind == EventKind.MESSAGE and event.id:
                self._last_id = event.id
            return event

    async def _first_message(self):
        while True:
            event = await self._next_event(FIRST_EVENT_STAGE)
            if event.kind == EventKind.MESSAGE:
                self._on_message(event.text)
                return event

    async def await_first_event(self, timeout=300):
        """Wait for the first progress message.

        Heartbeats and other control events do not count. Calling again after
        success returns the same event; after a timeout, raises the same error
        again without waiting.

        Raises:
            ReadinessTimeout: nothing arrived within *timeout* seconds.
            StreamClosed: the relay ended the stream before any message.
        """
        if self._first is not None:
            return self._first
        if self._first_error is not None:
            raise self._first_error
        try:
            event = await asyncio.wait_for(self._first_message(), timeout=timeout)
        except TimeoutError:
            self._first_error = ReadinessTimeout(FIRST_EVENT_STAGE, timeout)
            raise self._first_error from None
        self._first = event
        return event

    async def consume_until_terminal(self, markers=None):
        """Read messages until one contains a terminal marker. Never times out.

        Non-message events and non-matching messages are skipped; the first
        match wins.

        Raises:
            StreamClosed: the stream ended and reconnect attempts are exhausted.
        """
        markers = tuple(markers) if markers else self.markers
        if self._first is not None:
            marker = match_marker(self._first.text, markers)
            if marker:
                return TerminalMatch(marker, self._first)

        reconnects = 0
        while True:
            try:
                event = await self._next_event(PROGRESS_STAGE)
            except StreamClosed as e:
                if reconnects >= self.max_reconnects:
                    raise
                reconnects += 1
                logger.warning(f"Progress stream dropped ({e}); reconnecting ({reconnects}/{self.max_reconnects})...")
                await self.close()
                await self._connect(PROGRESS_STAGE, since=self._last_id)
                continue

            if event.kind != EventKind.MESSAGE:
                continue
            self._on_message(event.text)
            marker = match_marker(event.text, markers)
            if marker:
                return TerminalMatch(marker, event)
