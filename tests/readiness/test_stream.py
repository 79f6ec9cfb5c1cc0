"""Unit tests for readiness.stream: progress relay subscription.

The relay is faked with httpx.MockTransport serving NDJSON bodies.
"""

import asyncio
import json

import httpx
import pytest

from conftest import mock_client
from aiquick.errors import ReadinessTimeout, StreamClosed
from aiquick.readiness.stream import (
    FIRST_EVENT_STAGE,
    PROGRESS_STAGE,
    EventKind,
    ProgressEvent,
    ProgressStreamMonitor,
    match_marker,
)


def _ndjson(*events):
    return "".join(json.dumps(e) + "\n" for e in events).encode()


def _open(id="o1"):
    return {"id": id, "event": "open", "topic": "ai-quickstart-test"}


def _keepalive(id="k1"):
    return {"id": id, "event": "keepalive", "topic": "ai-quickstart-test"}


def _message(text, id):
    return {"id": id, "event": "message", "topic": "ai-quickstart-test", "message": text}


def _serve(body, status=200, requests=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, content=body)

    return mock_client(handler)


async def _run(monitor, fn):
    async with monitor:
        return await fn(monitor)


# ── ProgressEvent.parse ──────────────────────────────────────────


def test_parse_message_event():
    event = ProgressEvent.parse(json.dumps(_message("Installing Docker...", "m1")))
    assert event.kind == EventKind.MESSAGE
    assert event.text == "Installing Docker..."
    assert event.id == "m1"


def test_parse_keepalive_is_heartbeat():
    assert ProgressEvent.parse(json.dumps(_keepalive())).kind == EventKind.HEARTBEAT


def test_parse_open_is_other():
    assert ProgressEvent.parse(json.dumps(_open())).kind == EventKind.OTHER


def test_parse_blank_and_malformed_lines():
    assert ProgressEvent.parse("   ") is None
    assert ProgressEvent.parse("not json").kind == EventKind.OTHER
    assert ProgressEvent.parse("[1, 2]").kind == EventKind.OTHER


def test_match_marker_case_insensitive():
    markers = ("Rebooting", "Starting")
    assert match_marker("rebooting in 5 seconds", markers) == "Rebooting"
    assert match_marker("STARTING services", markers) == "Starting"
    assert match_marker("Installing NVIDIA drivers", markers) is None


# ── await_first_event ────────────────────────────────────────────


def test_await_first_event_skips_control_events():
    client = _serve(_ndjson(_open(), _keepalive(), _message("Cloud-init started", "m1")))
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=client)

    event = asyncio.run(_run(monitor, lambda m: m.await_first_event(timeout=5)))
    assert event.kind == EventKind.MESSAGE
    assert event.text == "Cloud-init started"


def test_await_first_event_is_idempotent():
    client = _serve(_ndjson(_message("first", "m1"), _message("second", "m2")))
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=client)

    async def _twice(m):
        first = await m.await_first_event(timeout=5)
        again = await m.await_first_event(timeout=5)
        return first, again

    first, again = asyncio.run(_run(monitor, _twice))
    assert first is again
    assert first.text == "first"


def test_await_first_event_times_out_once():
    async def _silent():
        yield _ndjson(_open())
        await asyncio.sleep(10)
        yield b""

    client = mock_client(lambda request: httpx.Response(200, content=_silent()))
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=client)

    async def _twice(m):
        errors = []
        for _ in range(2):
            try:
                await m.await_first_event(timeout=0.05)
            except ReadinessTimeout as e:
                errors.append(e)
        return errors

    first, again = asyncio.run(_run(monitor, _twice))
    assert first is again
    assert first.stage == FIRST_EVENT_STAGE
    assert first.timeout == 0.05


def test_stream_closed_with_zero_events_fails_first_event_stage():
    client = _serve(b"")
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=client)

    with pytest.raises(StreamClosed) as exc_info:
        asyncio.run(_run(monitor, lambda m: m.await_first_event(timeout=5)))
    assert exc_info.value.stage == FIRST_EVENT_STAGE


def test_subscribe_http_error_raises_stream_closed():
    client = _serve(b"", status=500)
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=client)

    with pytest.raises(StreamClosed, match="HTTP 500"):
        asyncio.run(_run(monitor, lambda m: m.await_first_event(timeout=5)))


def test_subscribe_uses_topic_url():
    requests = []
    client = _serve(_ndjson(_message("hello", "m1")), requests=requests)
    monitor = ProgressStreamMonitor("my-label", relay_url="https://relay.example/", client=client)

    asyncio.run(_run(monitor, lambda m: m.await_first_event(timeout=5)))
    assert str(requests[0].url) == "https://relay.example/my-label/json"


# ── consume_until_terminal ───────────────────────────────────────


def test_consume_until_terminal_stops_on_rebooting():
    body = _ndjson(
        _open(),
        _message("Installing Docker...", "m1"),
        _keepalive("k2"),
        _message("Pulling images...", "m2"),
        {"id": "x1", "event": "poll_request"},
        _message("Rebooting in 5 seconds", "m3"),
        _message("Starting services", "m4"),
    )
    seen = []
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=_serve(body), on_message=seen.append)

    async def _consume(m):
        await m.await_first_event(timeout=5)
        return await m.consume_until_terminal()

    match = asyncio.run(_run(monitor, _consume))
    assert match.marker == "Rebooting"
    assert match.event.text == "Rebooting in 5 seconds"
    assert seen == ["Installing Docker...", "Pulling images...", "Rebooting in 5 seconds"]


def test_consume_until_terminal_first_event_can_be_terminal():
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=_serve(_ndjson(_message("Starting services", "m1"))))

    async def _consume(m):
        await m.await_first_event(timeout=5)
        return await m.consume_until_terminal()

    match = asyncio.run(_run(monitor, _consume))
    assert match.marker == "Starting"


def test_consume_until_terminal_custom_markers():
    body = _ndjson(_message("Rebooting", "m1"), _message("all done", "m2"))
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=_serve(body))

    match = asyncio.run(_run(monitor, lambda m: m.consume_until_terminal(markers=["done"])))
    assert match.marker == "done"


def test_consume_until_terminal_reconnects_from_last_id():
    requests = []

    def handler(request):
        requests.append(request)
        if len(requests) == 1:
            return httpx.Response(200, content=_ndjson(_message("Installing Docker...", "m1")))
        return httpx.Response(200, content=_ndjson(_message("Starting services", "m2")))

    monitor = ProgressStreamMonitor("ai-quickstart-test", client=mock_client(handler), max_reconnects=1)

    async def _consume(m):
        await m.await_first_event(timeout=5)
        return await m.consume_until_terminal()

    match = asyncio.run(_run(monitor, _consume))
    assert match.marker == "Starting"
    assert len(requests) == 2
    assert "since" not in requests[0].url.params
    assert requests[1].url.params["since"] == "m1"


def test_reconnect_ignores_control_event_ids():
    requests = []

    def handler(request):
        requests.append(request)
        if len(requests) == 1:
            return httpx.Response(200, content=_ndjson(_open("o1"), _message("Installing Docker...", "m1"), _keepalive("k7")))
        return httpx.Response(200, content=_ndjson(_open("o2"), _message("Rebooting", "m2")))

    monitor = ProgressStreamMonitor("ai-quickstart-test", client=mock_client(handler), max_reconnects=1)

    async def _consume(m):
        await m.await_first_event(timeout=5)
        return await m.consume_until_terminal()

    match = asyncio.run(_run(monitor, _consume))
    assert match.marker == "Rebooting"
    assert requests[1].url.params["since"] == "m1"


def test_consume_until_terminal_closed_stream_is_fatal():
    body = _ndjson(_message("Installing Docker...", "m1"))
    monitor = ProgressStreamMonitor("ai-quickstart-test", client=_serve(body), max_reconnects=0)

    async def _consume(m):
        await m.await_first_event(timeout=5)
        return await m.consume_until_terminal()

    with pytest.raises(StreamClosed) as exc_info:
        asyncio.run(_run(monitor, _consume))
    assert exc_info.value.stage == PROGRESS_STAGE


def test_consume_until_terminal_gives_up_after_reconnect_budget():
    requests = []
    monitor = ProgressStreamMonitor(
        "ai-quickstart-test",
        client=_serve(_ndjson(_message("Installing...", "m1")), requests=requests),
        max_reconnects=1,
    )

    async def _consume(m):
        await m.await_first_event(timeout=5)
        return await m.consume_until_terminal()

    with pytest.raises(StreamClosed):
        asyncio.run(_run(monitor, _consume))
    assert len(requests) == 2
