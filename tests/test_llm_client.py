from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from cocreator.errors import FatalProviderError, HttpStatusError, TransportError
from cocreator.llm_client import ChatCompletionAdapter, build_messages, status_error

REQUEST = httpx.Request("POST", "https://api.mistral.ai/v1/chat/completions")


def fake_client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = create
    return client


def completion(text: str) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
    )


def status_exc(code: int, body: dict) -> openai.APIStatusError:
    response = httpx.Response(code, json=body, request=REQUEST)
    return openai.APIStatusError("provider error", response=response, body=body)


@pytest.mark.asyncio
async def test_send_posts_model_and_messages():
    create = AsyncMock(return_value=completion("hello"))
    factory = MagicMock(return_value=fake_client(create))
    adapter = ChatCompletionAdapter(provider="mistral", headers={"X-Test": "1"}, client_factory=factory)

    text = await adapter.send(
        endpoint="https://api.mistral.ai/v1",
        api_key="k",
        model="mistral-small",
        messages=build_messages("hi", system="be brief"),
        response_schema={"type": "OBJECT"},
        tools=[{"name": "ignored"}],
        max_tokens=1,
    )

    assert text == "hello"
    factory.assert_called_once_with("https://api.mistral.ai/v1", "k", {"X-Test": "1"})
    kwargs = create.await_args.kwargs
    assert kwargs == {
        "model": "mistral-small",
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ],
        "max_tokens": 1,
    }


@pytest.mark.asyncio
async def test_empty_choices_return_empty_text():
    create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))
    adapter = ChatCompletionAdapter(client_factory=MagicMock(return_value=fake_client(create)))

    assert await adapter.send(endpoint="http://x/v1", api_key="k", model="m", messages=build_messages("hi")) == ""


@pytest.mark.asyncio
async def test_status_error_carries_code_and_provider_message():
    create = AsyncMock(side_effect=status_exc(429, {"error": {"message": "Rate limit reached"}}))
    adapter = ChatCompletionAdapter(client_factory=MagicMock(return_value=fake_client(create)))

    with pytest.raises(HttpStatusError) as exc_info:
        await adapter.send(endpoint="http://x/v1", api_key="k", model="m", messages=build_messages("hi"))

    assert exc_info.value.code == 429
    assert exc_info.value.provider_message == "Rate limit reached"


@pytest.mark.asyncio
async def test_model_not_found_is_fatal():
    create = AsyncMock(side_effect=status_exc(404, {"message": "Model not found"}))
    adapter = ChatCompletionAdapter(client_factory=MagicMock(return_value=fake_client(create)))

    with pytest.raises(FatalProviderError):
        await adapter.send(endpoint="http://x/v1", api_key="k", model="m", messages=build_messages("hi"))


@pytest.mark.asyncio
async def test_connection_error_becomes_transport_error():
    create = AsyncMock(side_effect=openai.APIConnectionError(request=REQUEST))
    adapter = ChatCompletionAdapter(client_factory=MagicMock(return_value=fake_client(create)))

    with pytest.raises(TransportError):
        await adapter.send(endpoint="http://x/v1", api_key="k", model="m", messages=build_messages("hi"))


@pytest.mark.asyncio
async def test_missing_endpoint_is_fatal():
    adapter = ChatCompletionAdapter(client_factory=MagicMock())
    with pytest.raises(FatalProviderError):
        await adapter.send(endpoint=None, api_key="k", model="m", messages=build_messages("hi"))


def test_status_error_mapping():
    assert isinstance(status_error(404, "Requested entity was not found."), FatalProviderError)
    plain_404 = status_error(404, "nothing here")
    assert isinstance(plain_404, HttpStatusError)
    assert str(plain_404) == "HTTP 404: nothing here"
