"""
tests.test_status_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
"""
from __future__ import annotations

import json

import pytest

from app.services.connection import ConnectionHub
from app.services.session_registry import SessionRegistry
from app.services.status_broadcaster import StatusBroadcaster


@pytest.mark.asyncio
async def test_announce_started(status: StatusBroadcaster, hub: ConnectionHub, make_transport) -> None:
    viewer = make_transport()
    hub.register(viewer)

    result = await status.announce_started("alice")

    assert result.sent == 1
    payload = json.loads(viewer.sent[0])
    assert payload["type"] == "stream_status"
    assert payload["event"] == "started"
    assert payload["data"] == "alice"


@pytest.mark.asyncio
async def test_announce_ended_carries_duration(
    status: StatusBroadcaster, hub: ConnectionHub, registry: SessionRegistry, make_transport,
) -> None:
    viewer = make_transport()
    hub.register(viewer)
    registry.start("alice")
    summary = registry.stop().value

    await status.announce_ended(summary)

    payload = json.loads(viewer.sent[0])
    assert payload["event"] == "ended"
    assert payload["data"] == summary.duration


@pytest.mark.asyncio
async def test_viewer_count_and_system(status: StatusBroadcaster, hub: ConnectionHub, make_transport) -> None:
    viewers = [make_transport() for _ in range(2)]
    for viewer in viewers:
        hub.register(viewer)

    await status.announce_viewer_count(2)
    await status.announce_system("Connected")

    for viewer in viewers:
        assert json.loads(viewer.sent[0]) == {"type": "viewers", "count": 2}
        system = json.loads(viewer.sent[1])
        assert system["type"] == "system"
        assert system["data"] == "Connected"


@pytest.mark.asyncio
async def test_failed_viewer_does_not_block_status(
    status: StatusBroadcaster, hub: ConnectionHub, make_transport,
) -> None:
    healthy = make_transport()
    hub.register(healthy)
    hub.register(make_transport(fail=True))

    result = await status.announce_started("alice")

    assert (result.sent, result.failed) == (1, 1)
    assert len(healthy.sent) == 1
    assert hub.online_count == 1
