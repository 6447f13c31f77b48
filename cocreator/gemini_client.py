"""Native structured transport: schema-constrained output plus a bounded tool loop."""
from __future__ import annotations

import asyncio
import base64
import time
from typing import Any, Awaitable, Callable, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from loguru import logger

from cocreator.errors import ContentGenerationError, TransportError
from cocreator.llm_client import ChatMessage, status_error
from cocreator.services import logger as log_service
from cocreator.services.retry import notify
from cocreator.tools.creative_tools import execute_tool

MAX_TOOL_ROUNDS = 5


def _default_client_factory(api_key: str) -> Any:
    return genai.Client(api_key=api_key)


def translate_error(exc: Exception) -> Exception:
    """Map SDK/network failures onto the shared error taxonomy."""
    if isinstance(exc, genai_errors.APIError):
        return status_error(int(exc.code or 0), exc.message or exc.status)
    if isinstance(exc, httpx.TransportError):
        return TransportError(f"gemini unreachable: {exc}")
    return exc


class NativeStructuredAdapter:
    """Talks to the privileged provider through ``google-genai``.

    The tool loop is a small state machine: send, and while the response asks
    for function calls, run them against the local tool table, append the
    model turn and the tool results, and resubmit. After ``max_tool_rounds``
    resubmissions the last response is returned as-is.
    """

    provider = "gemini"

    def __init__(
        self,
        *,
        client_factory: Callable[[str], Any] = _default_client_factory,
        tool_executor: Callable[[str, dict[str, Any]], Any] = execute_tool,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ):
        self._client_factory = client_factory
        self._tool_executor = tool_executor
        self.max_tool_rounds = max_tool_rounds
        self._clients: dict[str, Any] = {}

    def _client(self, api_key: Optional[str]) -> Any:
        key = api_key or ""
        if key not in self._clients:
            self._clients[key] = self._client_factory(key)
        return self._clients[key]

    @staticmethod
    def _split_messages(messages: list[ChatMessage]) -> tuple[Optional[str], list[types.Content]]:
        system = "\n\n".join(m.content for m in messages if m.role == "system") or None
        contents = [
            types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[types.Part.from_text(text=m.content)],
            )
            for m in messages
            if m.role != "system"
        ]
        return system, contents

    @staticmethod
    def _build_config(
        system: Optional[str],
        response_schema: Optional[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]],
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> types.GenerateContentConfig:
        kwargs: dict[str, Any] = {}
        if system:
            kwargs["system_instruction"] = system
        if response_schema is not None:
            kwargs["response_mime_type"] = "application/json"
            kwargs["response_schema"] = response_schema
        if tools:
            kwargs["tools"] = [
                types.Tool(
                    function_declarations=[types.FunctionDeclaration.model_validate(t) for t in tools]
                )
            ]
            kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(disable=True)
        if max_tokens is not None:
            kwargs["max_output_tokens"] = max_tokens
        if temperature is not None:
            kwargs["temperature"] = temperature
        return types.GenerateContentConfig(**kwargs)

    async def send(
        self,
        *,
        endpoint: Optional[str],
        api_key: Optional[str],
        model: str,
        messages: list[ChatMessage],
        response_schema: Optional[dict[str, Any]] = None,
        tools: Optional[list[dict[str, Any]]] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        client = self._client(api_key)
        system, contents = self._split_messages(messages)
        config = self._build_config(system, response_schema, tools, max_tokens, temperature)

        t0 = time.monotonic()
        try:
            response = await self._run_tool_loop(client, model, contents, config, on_progress)
        except Exception as exc:
            mapped = translate_error(exc)
            self._log(model, t0, error=str(mapped))
            if mapped is exc:
                raise
            raise mapped from exc

        usage = getattr(response, "usage_metadata", None)
        self._log(
            model,
            t0,
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
        )
        return (response.text or "").strip()

    async def _run_tool_loop(
        self,
        client: Any,
        model: str,
        contents: list[Any],
        config: types.GenerateContentConfig,
        on_progress: Optional[Callable[[str], None]],
    ) -> Any:
        history = list(contents)
        response = await client.aio.models.generate_content(model=model, contents=history, config=config)

        rounds = 0
        while response.function_calls and rounds < self.max_tool_rounds:
            rounds += 1
            notify(on_progress, f"AI using technical tools... (step {rounds})")
            history.append(response.candidates[0].content)

            parts = []
            for call in response.function_calls:
                result = self._tool_executor(call.name, dict(call.args or {}))
                parts.append(
                    types.Part(
                        function_response=types.FunctionResponse(
                            id=call.id,
                            name=call.name,
                            response={"result": result},
                        )
                    )
                )
            history.append(types.Content(role="user", parts=parts))
            response = await client.aio.models.generate_content(
                model=model, contents=history, config=config
            )

        if response.function_calls:
            logger.warning(f"Tool loop stopped after {rounds} rounds; returning last response")
        return response

    async def generate_image(self, prompt: str, *, model: str, api_key: Optional[str]) -> Optional[str]:
        """Return the first inline image as a data URI, or None when the model sent none."""
        client = self._client(api_key)
        t0 = time.monotonic()
        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    image_config=types.ImageConfig(aspect_ratio="1:1"),
                ),
            )
        except Exception as exc:
            mapped = translate_error(exc)
            self._log(model, t0, error=str(mapped), caller="image")
            if mapped is exc:
                raise
            raise mapped from exc
        self._log(model, t0, caller="image")

        candidates = getattr(response, "candidates", None) or []
        content = getattr(candidates[0], "content", None) if candidates else None
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                data = inline.data
                if isinstance(data, bytes):
                    data = base64.b64encode(data).decode("ascii")
                mime_type = inline.mime_type or "image/png"
                return f"data:{mime_type};base64,{data}"
        return None

    async def generate_video(
        self,
        prompt: str,
        *,
        model: str,
        api_key: Optional[str],
        poll_interval_s: float = 10.0,
        on_progress: Optional[Callable[[str], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> str:
        """Start a video job, poll it to completion and return the video URI."""
        client = self._client(api_key)
        t0 = time.monotonic()
        try:
            operation = await client.aio.models.generate_videos(
                model=model,
                prompt=prompt,
                config=types.GenerateVideosConfig(
                    number_of_videos=1,
                    resolution="720p",
                    aspect_ratio="16:9",
                ),
            )
            polls = 0
            while not operation.done:
                polls += 1
                notify(on_progress, f"Rendering video... (check {polls})")
                await sleep(poll_interval_s)
                operation = await client.aio.operations.get(operation)
        except Exception as exc:
            mapped = translate_error(exc)
            self._log(model, t0, error=str(mapped), caller="video")
            if mapped is exc:
                raise
            raise mapped from exc
        self._log(model, t0, caller="video")

        if operation.error:
            detail = operation.error.get("message") if isinstance(operation.error, dict) else operation.error
            raise ContentGenerationError(f"Video generation failed: {detail}")
        videos = getattr(operation.response, "generated_videos", None) or []
        uri = getattr(getattr(videos[0], "video", None), "uri", None) if videos else None
        if not uri:
            raise ContentGenerationError("No video URI returned")
        return uri

    def _log(
        self,
        model: str,
        started: float,
        *,
        input_tokens: int = 0,
        output_tokens: int = 0,
        error: Optional[str] = None,
        caller: str = "native_structured",
    ) -> None:
        log_service.log_llm_call(
            model=model,
            caller=caller,
            provider=self.provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
            status="error" if error else "success",
            error=error,
        )
