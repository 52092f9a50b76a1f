"""Tests for the Ollama REST client, using httpx's mock transport."""
import json

import httpx
import pytest

from mise.errors import BackendError, StreamIntegrityError
from mise.ollama_client import OllamaClient, parse_fragment


def ndjson(*objects):
    return "".join(json.dumps(o) + "\n" for o in objects)


def make_client(handler):
    return OllamaClient("http://ollama.test", transport=httpx.MockTransport(handler))


async def collect(client, model="llama3.2:3b", prompt="hi"):
    return [f async for f in client.generate_stream(model, prompt)]


def test_parse_fragment():
    fragment = parse_fragment('{"model": "m", "response": "Hi", "done": false}')
    assert fragment.text == "Hi"
    assert fragment.is_final is False
    assert parse_fragment('{"response": "", "done": true}').is_final is True


@pytest.mark.parametrize("line", ["{not json", "[1, 2]", '{"response": 5}'])
def test_parse_fragment_rejects_malformed_lines(line):
    with pytest.raises(StreamIntegrityError):
        parse_fragment(line)


def test_parse_fragment_reports_backend_error():
    with pytest.raises(BackendError, match="model not found"):
        parse_fragment('{"error": "model not found"}')


@pytest.mark.asyncio
async def test_generate_sends_non_streaming_request():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"model": "m", "response": "Sure, ...", "done": True})

    client = make_client(handler)
    try:
        assert await client.generate("codellama:7b-instruct", "debug") == "Sure, ..."
    finally:
        await client.close()

    assert seen["path"] == "/api/generate"
    assert seen["body"]["stream"] is False
    assert seen["body"]["model"] == "codellama:7b-instruct"
    assert seen["body"]["options"] == {"temperature": 0.7, "top_p": 0.9}


@pytest.mark.asyncio
async def test_generate_raises_backend_error_on_failure_status():
    client = make_client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(BackendError):
        await client.generate("m", "p")
    await client.close()


@pytest.mark.asyncio
async def test_generate_raises_backend_error_when_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(BackendError, match="unreachable"):
        await client.generate("m", "p")
    await client.close()


@pytest.mark.asyncio
async def test_generate_stream_yields_fragments_and_drops_malformed_lines():
    body = (
        ndjson({"response": "Sure", "done": False})
        + "{garbage\n\n"
        + ndjson({"response": ", here", "done": False}, {"response": "", "done": True})
    )

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, text=body)

    client = make_client(handler)
    fragments = await collect(client)
    await client.close()

    assert [f.text for f in fragments] == ["Sure", ", here", ""]
    assert [f.is_final for f in fragments] == [False, False, True]


@pytest.mark.asyncio
async def test_generate_stream_raises_on_failure_status():
    client = make_client(lambda request: httpx.Response(404, text="missing"))
    with pytest.raises(BackendError, match="404"):
        await collect(client)
    await client.close()


@pytest.mark.asyncio
async def test_generate_stream_raises_on_error_line():
    body = ndjson({"response": "Su", "done": False}, {"error": "out of memory"})
    client = make_client(lambda request: httpx.Response(200, text=body))
    with pytest.raises(BackendError, match="out of memory"):
        await collect(client)
    await client.close()


@pytest.mark.asyncio
async def test_list_models():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "llama3.2:3b"}, {"name": "mistral:7b-instruct"}]})

    client = make_client(handler)
    assert await client.list_models() == ["llama3.2:3b", "mistral:7b-instruct"]
    await client.close()


@pytest.mark.asyncio
async def test_list_models_returns_empty_when_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    assert await client.list_models() == []
    await client.close()
