"""Tests for the Server-Sent Events status stream."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from bridge.api.status import format_event, stream_status
from bridge.services.status_service import ProcessingStatus, UploadStatus

if TYPE_CHECKING:
    from bridge.context import BridgeContext


class _FakeRequest:
    """Reports a disconnect after a fixed number of checks."""

    def __init__(self, checks_before_disconnect: int) -> None:
        self.remaining = checks_before_disconnect

    async def is_disconnected(self) -> bool:
        self.remaining -= 1
        return self.remaining < 0


def _decode(chunk: str | bytes) -> dict:
    text = chunk.decode() if isinstance(chunk, bytes) else chunk
    lines = text.strip().splitlines()
    assert lines[0] == "event: status"
    return json.loads(lines[1].removeprefix("data: "))


def test_format_event() -> None:
    text = format_event("status", {"status": "idle", "message": "", "progress": 0.0})
    assert text == 'event: status\ndata: {"status": "idle", "message": "", "progress": 0.0}\n\n'


class TestStatusStream:
    async def test_first_event_is_current_status(self, bridge_context: BridgeContext) -> None:
        bridge_context.status.publish(
            UploadStatus(ProcessingStatus.UPLOADING, "Analyzing files...", 20)
        )
        response = await stream_status(_FakeRequest(0), bridge_context)  # type: ignore[arg-type]

        chunks = [chunk async for chunk in response.body_iterator]

        assert response.media_type == "text/event-stream"
        assert len(chunks) == 1
        assert _decode(chunks[0]) == {
            "status": "uploading",
            "message": "Analyzing files...",
            "progress": 20.0,
        }
        assert bridge_context.status.subscriber_count == 0

    async def test_streams_published_changes(self, bridge_context: BridgeContext) -> None:
        response = await stream_status(_FakeRequest(1), bridge_context)  # type: ignore[arg-type]
        iterator = response.body_iterator

        first = await iterator.__anext__()
        bridge_context.status.publish(UploadStatus(ProcessingStatus.SUCCESS, "Done", 100))
        second = await iterator.__anext__()
        rest = [chunk async for chunk in iterator]

        assert _decode(first)["status"] == "idle"
        assert _decode(second) == {"status": "success", "message": "Done", "progress": 100.0}
        assert rest == []
        assert bridge_context.status.subscriber_count == 0
