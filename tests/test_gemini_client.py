from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import errors as genai_errors

from cocreator.errors import ContentGenerationError, HttpStatusError
from cocreator.gemini_client import MAX_TOOL_ROUNDS, NativeStructuredAdapter
from cocreator.llm_client import build_messages
from cocreator.tools.creative_tools import TOOL_DECLARATIONS


def text_response(text: str) -> SimpleNamespace:
    return SimpleNamespace(function_calls=None, text=text, candidates=[], usage_metadata=None)


def tool_response(name: str, args: dict) -> SimpleNamespace:
    call = SimpleNamespace(id="call-1", name=name, args=args)
    return SimpleNamespace(
        function_calls=[call],
        text=None,
        candidates=[SimpleNamespace(content=SimpleNamespace(role="model", parts=[call]))],
        usage_metadata=None,
    )


def make_adapter(responses, **kwargs):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(side_effect=responses)
    adapter = NativeStructuredAdapter(client_factory=lambda _key: client, **kwargs)
    return adapter, client


@pytest.mark.asyncio
async def test_send_returns_stripped_text_with_json_config():
    adapter, client = make_adapter([text_response('  {"entities": []}\n')])

    text = await adapter.send(
        endpoint=None,
        api_key="k",
        model="gemini-test",
        messages=build_messages("a cat", system="be precise"),
        response_schema={"type": "OBJECT"},
    )

    assert text == '{"entities": []}'
    config = client.aio.models.generate_content.await_args.kwargs["config"]
    assert config.response_mime_type == "application/json"


@pytest.mark.asyncio
async def test_tool_loop_feeds_results_back_and_reports_progress():
    executor = MagicMock(return_value="High contrast lighting")
    adapter, client = make_adapter(
        [tool_response("search_technical_specs", {"query": "chiaroscuro"}), text_response("{}")],
        tool_executor=executor,
    )
    messages: list[str] = []

    text = await adapter.send(
        endpoint=None,
        api_key="k",
        model="gemini-test",
        messages=build_messages("a chiaroscuro portrait"),
        tools=TOOL_DECLARATIONS,
        on_progress=messages.append,
    )

    assert text == "{}"
    executor.assert_called_once_with("search_technical_specs", {"query": "chiaroscuro"})
    assert messages == ["AI using technical tools... (step 1)"]

    history = client.aio.models.generate_content.await_args_list[1].kwargs["contents"]
    assert len(history) == 3
    reply = history[-1]
    assert reply.role == "user"
    assert reply.parts[0].function_response.name == "search_technical_specs"
    assert reply.parts[0].function_response.response == {"result": "High contrast lighting"}


@pytest.mark.asyncio
async def test_tool_loop_stops_after_max_rounds():
    looping = tool_response("get_creative_context", {"mode": "image", "topic": "cats"})
    adapter, client = make_adapter([looping] * (MAX_TOOL_ROUNDS + 1))

    await adapter.send(
        endpoint=None,
        api_key="k",
        model="gemini-test",
        messages=build_messages("a cat"),
        tools=TOOL_DECLARATIONS,
    )

    assert client.aio.models.generate_content.await_count == MAX_TOOL_ROUNDS + 1


@pytest.mark.asyncio
async def test_api_error_is_translated_to_status_error():
    error = genai_errors.ServerError(
        503, {"error": {"code": 503, "message": "The model is overloaded.", "status": "UNAVAILABLE"}}
    )
    adapter, _ = make_adapter([error])

    with pytest.raises(HttpStatusError) as exc_info:
        await adapter.send(endpoint=None, api_key="k", model="m", messages=build_messages("hi"))

    assert exc_info.value.code == 503


@pytest.mark.asyncio
async def test_generate_image_returns_data_uri():
    part = SimpleNamespace(inline_data=SimpleNamespace(data=b"abc", mime_type="image/png"))
    response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
    adapter, _ = make_adapter([response])

    uri = await adapter.generate_image("a cat", model="img-model", api_key="k")

    assert uri == "data:image/png;base64,YWJj"


@pytest.mark.asyncio
async def test_generate_image_without_inline_data_returns_none():
    response = SimpleNamespace(candidates=[])
    adapter, _ = make_adapter([response])

    assert await adapter.generate_image("a cat", model="img-model", api_key="k") is None


@pytest.mark.asyncio
async def test_generate_video_polls_until_done():
    video = SimpleNamespace(video=SimpleNamespace(uri="https://video.test/1.mp4"))
    pending = SimpleNamespace(done=False, error=None, response=None)
    finished = SimpleNamespace(done=True, error=None, response=SimpleNamespace(generated_videos=[video]))
    client = MagicMock()
    client.aio.models.generate_videos = AsyncMock(return_value=pending)
    client.aio.operations.get = AsyncMock(side_effect=[pending, finished])
    adapter = NativeStructuredAdapter(client_factory=lambda _key: client)
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    uri = await adapter.generate_video("a cat", model="veo", api_key="k", poll_interval_s=10, sleep=fake_sleep)

    assert uri == "https://video.test/1.mp4"
    assert sleeps == [10, 10]


@pytest.mark.asyncio
async def test_generate_video_operation_error_raises():
    failed = SimpleNamespace(done=True, error={"message": "quota"}, response=None)
    client = MagicMock()
    client.aio.models.generate_videos = AsyncMock(return_value=failed)
    adapter = NativeStructuredAdapter(client_factory=lambda _key: client)

    with pytest.raises(ContentGenerationError, match="quota"):
        await adapter.generate_video("a cat", model="veo", api_key="k")
