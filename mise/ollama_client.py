"""
Ollama REST client for one-shot and streaming generation.
"""
import json
import logging
from typing import AsyncIterator, List, Optional

import httpx

from mise.errors import BackendError, StreamIntegrityError
from mise.models import Fragment

logger = logging.getLogger(__name__)


def parse_fragment(line: str) -> Fragment:
    """Decode one newline-delimited JSON line of an Ollama stream.

    Raises StreamIntegrityError for lines that are not a fragment and
    BackendError when the backend reports an error mid-stream.
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise StreamIntegrityError(f"Undecodable stream line: {e}") from e
    if not isinstance(data, dict):
        raise StreamIntegrityError("Stream line is not a JSON object")
    if data.get("error"):
        raise BackendError(f"Ollama API error: {data['error']}")
    text = data.get("response", "")
    if not isinstance(text, str):
        raise StreamIntegrityError("Stream line has a non-text response")
    return Fragment(text=text, is_final=bool(data.get("done", False)))


class OllamaClient:
    """Async wrapper around the Ollama ``/api/generate`` and ``/api/tags`` endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        temperature: float = 0.7,
        top_p: float = 0.9,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.options = {"temperature": temperature, "top_p": top_p}
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    def _payload(self, model: str, prompt: str, stream: bool) -> dict:
        return {
            "model": model,
            "prompt": prompt,
            "stream": stream,
            "options": self.options,
        }

    async def generate(self, model: str, prompt: str) -> str:
        """Return the full response text."""
        logger.info("Generating with model %s", model)
        try:
            response = await self._http.post("/api/generate", json=self._payload(model, prompt, False))
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"Ollama API error: {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(f"Ollama unreachable at {self.base_url}: {e}") from e
        except ValueError as e:
            raise BackendError(f"Malformed Ollama response: {e}") from e

        if not isinstance(data, dict):
            raise BackendError("Malformed Ollama response")
        if data.get("error"):
            raise BackendError(f"Ollama API error: {data['error']}")
        return data.get("response") or ""

    async def generate_stream(self, model: str, prompt: str) -> AsyncIterator[Fragment]:
        """Yield fragments as the model produces them.

        Malformed lines are logged and skipped; only connection failures,
        non-success statuses and backend-reported errors end the stream.
        """
        logger.info("Streaming generation with model %s", model)
        try:
            async with self._http.stream(
                "POST", "/api/generate", json=self._payload(model, prompt, True)
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise BackendError(
                        f"Ollama API error: {response.status_code} {response.reason_phrase}"
                    )
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        fragment = parse_fragment(line)
                    except StreamIntegrityError:
                        logger.debug("Dropping malformed stream line: %r", line, exc_info=True)
                        continue
                    yield fragment
        except httpx.HTTPError as e:
            raise BackendError(f"Ollama stream failed: {e}") from e

    async def list_models(self) -> List[str]:
        """Names of the locally installed models; empty when Ollama is unavailable."""
        try:
            response = await self._http.get("/api/tags")
            response.raise_for_status()
            models = response.json().get("models") or []
            return [m["name"] for m in models]
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError):
            logger.warning("Could not fetch available models from %s", self.base_url, exc_info=True)
            return []

    async def close(self) -> None:
        await self._http.aclose()
