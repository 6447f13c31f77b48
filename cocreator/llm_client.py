"""OpenAI-compatible chat-completion transport shared by every generic provider."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import openai
from openai import AsyncOpenAI

from cocreator.config import settings
from cocreator.errors import FatalProviderError, HttpStatusError, TransportError
from cocreator.services import logger as log_service


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


class Transport(Protocol):
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
        ...


def build_messages(prompt: str, system: Optional[str] = None) -> list[ChatMessage]:
    messages = [ChatMessage(role="system", content=system)] if system else []
    messages.append(ChatMessage(role="user", content=prompt))
    return messages


def status_error(code: int, message: Optional[str]) -> Exception:
    """HttpStatusError, or FatalProviderError for not-found resource mismatches."""
    if code == 404 and message and "not found" in message.lower():
        return FatalProviderError(f"HTTP 404: {message}")
    return HttpStatusError(code, message)


def _provider_message(exc: openai.APIStatusError) -> str:
    body = exc.body
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and isinstance(inner.get("message"), str):
            return inner["message"]
        if isinstance(inner, str) and inner:
            return inner
        if isinstance(body.get("message"), str):
            return body["message"]
    return exc.response.reason_phrase or f"status {exc.status_code}"


_clients: dict[tuple[str, str, tuple[tuple[str, str], ...]], AsyncOpenAI] = {}


def get_client(
    endpoint: str,
    api_key: str,
    headers: Optional[dict[str, str]] = None,
) -> AsyncOpenAI:
    """Get or create the AsyncOpenAI client for one (endpoint, key) pair."""
    key = (endpoint.rstrip("/"), api_key, tuple(sorted((headers or {}).items())))
    client = _clients.get(key)
    if client is None:
        client = AsyncOpenAI(
            api_key=api_key,
            base_url=key[0],
            default_headers=headers or None,
            timeout=settings.request_timeout_s,
            max_retries=0,  # retries belong to the retry executor
        )
        _clients[key] = client
    return client


class ChatCompletionAdapter:
    """POSTs ``{model, messages}`` to an OpenAI-compatible endpoint and returns the text."""

    def __init__(
        self,
        *,
        provider: str = "openai-compatible",
        headers: Optional[dict[str, str]] = None,
        client_factory: Callable[..., Any] = get_client,
    ):
        self.provider = provider
        self.headers = headers or {}
        self._client_factory = client_factory

    @staticmethod
    def _to_openai_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in messages]

    @staticmethod
    def _from_openai_response(response: Any) -> tuple[str, Usage]:
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            message = getattr(choices[0], "message", None)
            text = getattr(message, "content", None) or ""
        usage = getattr(response, "usage", None)
        mapped_usage = Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        return text, mapped_usage

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
        # Generic endpoints get neither schemas nor tools; the normalizer copes.
        if not endpoint:
            raise FatalProviderError(f"No endpoint configured for {self.provider}")
        client = self._client_factory(endpoint, api_key or "", self.headers)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_openai_messages(messages),
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            kwargs["temperature"] = temperature

        t0 = time.monotonic()
        try:
            response = await client.chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            error = status_error(exc.status_code, _provider_message(exc))
            self._log(model, t0, error=str(error))
            raise error from exc
        except openai.APIConnectionError as exc:
            self._log(model, t0, error=str(exc))
            raise TransportError(f"{self.provider} unreachable at {endpoint}: {exc}") from exc

        text, usage = self._from_openai_response(response)
        self._log(model, t0, usage=usage)
        return text

    def _log(
        self,
        model: str,
        started: float,
        *,
        usage: Optional[Usage] = None,
        error: Optional[str] = None,
    ) -> None:
        usage = usage or Usage()
        log_service.log_llm_call(
            model=model,
            caller="chat_completion",
            provider=self.provider,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
            status="error" if error else "success",
            error=error,
        )
