"""Upload status endpoints: current value and a Server-Sent Events stream."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from bridge.api.deps import get_context, require_api_key
from bridge.context import BridgeContext
from bridge.schemas.status import UploadStatusResponse

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/status",
    tags=["status"],
    dependencies=[Depends(require_api_key)],
)

KEEPALIVE_SECONDS = 15.0


def format_event(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@router.get("", response_model=UploadStatusResponse)
async def get_status(
    context: Annotated[BridgeContext, Depends(get_context)],
) -> UploadStatusResponse:
    """Return the current upload status."""
    return UploadStatusResponse(**context.status.current.to_dict())


@router.get("/stream")
async def stream_status(
    request: Request,
    context: Annotated[BridgeContext, Depends(get_context)],
) -> StreamingResponse:
    """Stream status changes as Server-Sent Events.

    The first event carries the status at connection time. Events published
    while a client lags behind may be dropped.
    """
    broadcaster = context.status
    queue = broadcaster.subscribe()

    async def generate_events() -> AsyncGenerator[str]:
        try:
            yield format_event("status", broadcaster.current.to_dict())
            while not await request.is_disconnected():
                try:
                    status = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_event("status", status.to_dict())
        finally:
            broadcaster.unsubscribe(queue)
            logger.debug("Status stream subscriber disconnected")

    return StreamingResponse(
        generate_events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
