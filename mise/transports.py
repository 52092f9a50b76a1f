"""
Framing of chat events for Server-Sent Events and WebSocket clients.
"""
import json
from contextlib import aclosing
from typing import AsyncIterator

from fastapi import WebSocket

from mise.models import ChatEvent


def format_sse(event: ChatEvent) -> str:
    return f"data: {json.dumps(event.to_payload())}\n\n"


def format_ndjson(event: ChatEvent) -> str:
    return json.dumps(event.to_payload()) + "\n"


async def sse_stream(events: AsyncIterator[ChatEvent]) -> AsyncIterator[str]:
    async with aclosing(events):
        async for event in events:
            yield format_sse(event)


async def send_events(websocket: WebSocket, events: AsyncIterator[ChatEvent]) -> None:
    """Send each event as a JSON text frame.

    A disconnect propagates to the caller; the event iterator is closed
    either way so the backend stream is released.
    """
    async with aclosing(events):
        async for event in events:
            await websocket.send_text(format_ndjson(event))
