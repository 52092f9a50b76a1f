"""
Router facade: classification, model selection, context compression and
generation composed into the public chat and session operations.
"""
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from mise.classifier import classify
from mise.compressor import compress
from mise.config import Settings, settings as default_settings
from mise.errors import NotFoundError, ValidationError
from mise.model_selector import select_model
from mise.models import ChatEvent, ChatResponse, Session, Topic, utcnow
from mise.ollama_client import OllamaClient
from mise.prompts import build_prompt
from mise.session_cache import Clock, SessionCache
from mise.session_store import SessionStore
from mise.stream_relay import StreamRelay

logger = logging.getLogger(__name__)


@dataclass
class RoutedRequest:
    session: Session
    model: str
    prompt: str
    topic: Topic


class AIRouter:
    """Owns the session cache and generation client for the process."""

    def __init__(
        self,
        store: SessionStore,
        cache: SessionCache,
        client,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.cache = cache
        self.client = client
        self.config = config or default_settings
        self.relay = StreamRelay(cache, client)

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        *,
        client=None,
        clock: Clock = utcnow,
    ) -> "AIRouter":
        store = SessionStore(config.database_path)
        cache = SessionCache(
            store,
            expiry_seconds=config.context_expiry_time,
            interval_seconds=config.context_cleanup_interval,
            clock=clock,
        )
        if client is None:
            client = OllamaClient(
                config.ollama_url,
                timeout=config.request_timeout,
                temperature=config.temperature,
                top_p=config.top_p,
            )
        return cls(store, cache, client, config)

    async def start(self) -> None:
        await self.store.init()
        self.cache.start()
        logger.info("Router started (store=%s)", self.store.path)

    async def stop(self) -> None:
        await self.cache.stop()
        await self.client.close()
        logger.info("Router stopped")

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def process_request(
        self,
        query: str,
        session_id: str,
        model: Optional[str] = None,
    ) -> RoutedRequest:
        """Classify, pick a model, build the prompt and record the user turn."""
        if not query or not query.strip():
            raise ValidationError("Query is required")
        if not session_id:
            raise ValidationError("Session ID is required")

        session = await self.cache.get_or_create(session_id)
        topic = classify(query, session.topic)
        selected = model or select_model(topic, len(query), self.config)

        history = compress(
            session.messages,
            self.config.max_tokens_per_context,
            self.config.chars_per_token,
        )
        prompt = build_prompt(query, history, topic)

        session = await self.cache.append_user_turn(session_id, query, topic)
        logger.info(
            "Routing session %s: topic=%s model=%s history=%d/%d",
            session_id, topic.value, selected, len(history), len(session.messages) - 1,
        )
        return RoutedRequest(session=session, model=selected, prompt=prompt, topic=topic)

    async def generate(self, model: str, prompt: str) -> str:
        return await self.client.generate(model, prompt)

    def generate_stream(self, model: str, prompt: str):
        return self.client.generate_stream(model, prompt)

    async def chat(self, query: str, session_id: str, model: Optional[str] = None) -> ChatResponse:
        """One-shot generation; errors propagate to the caller."""
        routed = await self.process_request(query, session_id, model)
        response = await self.generate(routed.model, routed.prompt)
        await self.cache.append_assistant_turn(session_id, response, routed.model)
        return ChatResponse(response=response, model=routed.model, session_id=session_id)

    async def open_stream(
        self,
        query: str,
        session_id: str,
        model: Optional[str] = None,
        *,
        stream: bool = True,
    ) -> AsyncIterator[ChatEvent]:
        """Route the request and return its event sequence.

        Validation and session errors are raised here, before any event.
        """
        routed = await self.process_request(query, session_id, model)
        if stream:
            return self.relay.stream(session_id, routed.model, routed.prompt)
        return self.relay.respond(session_id, routed.model, routed.prompt)

    async def list_models(self) -> List[str]:
        return await self.client.list_models()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Session:
        session = await self.cache.get(session_id)
        if session is None:
            raise NotFoundError(f"Session '{session_id}' not found")
        return session

    async def create_session(self, topic: Optional[str] = None) -> Session:
        return await self.cache.create(Topic.parse(topic))

    async def delete_session(self, session_id: str) -> None:
        await self.cache.delete(session_id)

    async def list_sessions(self) -> List[Session]:
        return await self.cache.list_sessions()
