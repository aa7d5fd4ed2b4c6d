import asyncio
import json

import httpx
import pytest

from swadesh.gemini import GeminiClient, GenerationError, UpstreamTimeoutError


def _reply(text: str) -> dict:
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}
        ]
    }


def _client(handler, **kwargs) -> GeminiClient:
    return GeminiClient(
        api_key=kwargs.pop("api_key", "test-key"),
        model="gemini-2.5-flash",
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_generate_sends_prompt_and_system_instruction() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("x-goog-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_reply("Namaste"))

    text = asyncio.run(_client(handler).generate("Hello", system_instruction="Be kind"))

    assert text == "Namaste"
    assert seen["url"] == "https://gemini.test/v1beta/models/gemini-2.5-flash:generateContent"
    assert seen["key"] == "test-key"
    assert seen["body"] == {
        "contents": [{"role": "user", "parts": [{"text": "Hello"}]}],
        "system_instruction": {"parts": [{"text": "Be kind"}]},
    }


def test_generate_puts_inline_image_before_prompt() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_reply("A temple at dusk"))

    asyncio.run(_client(handler).generate("Describe", image_base64="aGVsbG8="))

    parts = seen["body"]["contents"][0]["parts"]
    assert parts[0] == {"inline_data": {"mime_type": "image/jpeg", "data": "aGVsbG8="}}
    assert parts[1] == {"text": "Describe"}
    assert "system_instruction" not in seen["body"]


def test_generate_joins_text_parts() -> None:
    payload = {"candidates": [{"content": {"parts": [{"text": "Part one. "}, {"text": "Part two."}]}}]}

    text = asyncio.run(
        _client(lambda request: httpx.Response(200, json=payload)).generate("x")
    )

    assert text == "Part one. Part two."


def test_null_text_parts_are_skipped() -> None:
    payload = {"candidates": [{"content": {"parts": [{"text": None}, {"text": "Answer."}]}}]}

    text = asyncio.run(
        _client(lambda request: httpx.Response(200, json=payload)).generate("x")
    )

    assert text == "Answer."


def test_blocked_response_yields_empty_text() -> None:
    payload = {"promptFeedback": {"blockReason": "SAFETY"}}

    text = asyncio.run(
        _client(lambda request: httpx.Response(200, json=payload)).generate("x")
    )

    assert text == ""


def test_error_status_raises_generation_error() -> None:
    client = _client(lambda request: httpx.Response(503, text="overloaded"))

    with pytest.raises(GenerationError) as excinfo:
        asyncio.run(client.generate("x"))
    assert not isinstance(excinfo.value, UpstreamTimeoutError)


def test_transport_timeout_raises_timeout_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(_client(handler).generate("x"))


def test_deadline_applies_to_whole_call() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json=_reply("too late"))

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(_client(handler, timeout=0.05).generate("x"))


def test_connection_error_raises_generation_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GenerationError):
        asyncio.run(_client(handler).generate("x"))


def test_missing_api_key_fails_without_calling_upstream() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_reply("unused"))

    with pytest.raises(GenerationError):
        asyncio.run(_client(handler, api_key=None).generate("x"))
    assert calls == []
