"""
Transport-independent relay of model output as chat events.

Every exchange goes IDLE -> STARTED -> STREAMING* -> COMPLETE | ERROR and
produces ``started``, zero or more ``chunk`` events, then exactly one of
``complete`` or ``error``. The assistant turn is recorded only after the
whole response has been received, right before ``complete``.
"""
import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator

from mise.errors import RouterError
from mise.models import ChatEvent
from mise.session_cache import SessionCache

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STATES = (RelayState.COMPLETE, RelayState.ERROR)


def _describe(error: Exception) -> str:
    if isinstance(error, RouterError):
        return str(error)
    return f"Stream processing error: {error}"


class StreamRelay:
    """Drives a generation client and emits ChatEvents for one exchange at a time."""

    def __init__(self, cache: SessionCache, client):
        self._cache = cache
        self._client = client

    async def stream(self, session_id: str, model: str, prompt: str) -> AsyncIterator[ChatEvent]:
        """Relay a streaming generation fragment by fragment.

        Closing this iterator early (client went away) also closes the
        backend stream; nothing is recorded for an abandoned exchange.
        """
        state = RelayState.IDLE
        try:
            state = RelayState.STARTED
            yield ChatEvent.started(session_id, model)

            parts = []
            try:
                async with aclosing(self._client.generate_stream(model, prompt)) as fragments:
                    async for fragment in fragments:
                        if not fragment.text:
                            continue
                        parts.append(fragment.text)
                        state = RelayState.STREAMING
                        yield ChatEvent.chunk_of(fragment, model)
                await self._cache.append_assistant_turn(session_id, "".join(parts), model)
            except Exception as e:
                if not isinstance(e, RouterError):
                    logger.exception("Stream relay failed for session %s", session_id)
                else:
                    logger.warning("Streaming generation failed for session %s: %s", session_id, e)
                state = RelayState.ERROR
                yield ChatEvent.failed(_describe(e))
                return

            state = RelayState.COMPLETE
            yield ChatEvent.completed(session_id)
        finally:
            if state not in TERMINAL_STATES:
                logger.info("Stream for session %s closed in state %s", session_id, state.value)

    async def respond(self, session_id: str, model: str, prompt: str) -> AsyncIterator[ChatEvent]:
        """Non-streaming exchange: ``started`` then one full ``complete`` or ``error``."""
        yield ChatEvent.started(session_id, model)
        try:
            response = await self._client.generate(model, prompt)
            await self._cache.append_assistant_turn(session_id, response, model)
        except Exception as e:
            if not isinstance(e, RouterError):
                logger.exception("Generation failed for session %s", session_id)
            else:
                logger.warning("Generation failed for session %s: %s", session_id, e)
            yield ChatEvent.failed(_describe(e))
            return
        yield ChatEvent.completed(session_id, response=response, model=model)
