from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from cocreator.config import settings
from cocreator.errors import (
    CoCreatorError,
    ContentGenerationError,
    FatalProviderError,
    HttpStatusError,
    ParseError,
    ValidationError,
)
from cocreator.gemini_client import NativeStructuredAdapter
from cocreator.llm_client import ChatCompletionAdapter, ChatMessage, Transport, build_messages
from cocreator.models.graph import (
    AttributeUpdate,
    BeliefState,
    Clarification,
    ClarificationAnswer,
    ConnectionCheck,
    ContentResult,
    GraphUpdate,
    Mode,
    ProviderConfig,
    ProviderId,
)
from cocreator.models.schemas import BELIEF_GRAPH_SCHEMA, CLARIFICATIONS_SCHEMA
from cocreator.services.normalizer import (
    NormalizationStrategy,
    normalize_belief_state,
    normalize_clarifications,
    parse_payload,
)
from cocreator.services.prompt_store import render_mode_prompt, render_prompt
from cocreator.services.retry import ProgressCallback, with_retry
from cocreator.tools.creative_tools import TOOL_DECLARATIONS


MAX_IMAGES_PER_ROUND = 4


class AdapterKind(str, Enum):
    NATIVE = "native"
    CHAT = "chat"


def _openrouter_headers() -> dict[str, str]:
    return {
        "HTTP-Referer": settings.openrouter_referer,
        "X-Title": settings.openrouter_app_title,
    }


@dataclass(frozen=True)
class ProviderCapability:
    """One row of the dispatch table: how to reach and read a provider."""

    provider: ProviderId
    adapter: AdapterKind
    strategy: NormalizationStrategy
    base_url_setting: Optional[str] = None
    env_keys: tuple[str, ...] = ()
    requires_key: bool = True
    local_key: Optional[str] = None
    native_prompts: bool = False
    extra_headers: Optional[Callable[[], dict[str, str]]] = None

    def base_url(self) -> Optional[str]:
        if not self.base_url_setting:
            return None
        return getattr(settings, self.base_url_setting) or None


PROVIDERS: dict[ProviderId, ProviderCapability] = {
    ProviderId.GEMINI: ProviderCapability(
        provider=ProviderId.GEMINI,
        adapter=AdapterKind.NATIVE,
        strategy=NormalizationStrategy.STRUCTURED,
        env_keys=("gemini_api_key", "api_key"),
        native_prompts=True,
    ),
    ProviderId.MISTRAL: ProviderCapability(
        provider=ProviderId.MISTRAL,
        adapter=AdapterKind.CHAT,
        strategy=NormalizationStrategy.EXTRACT,
        base_url_setting="mistral_base_url",
        env_keys=("mistral_api_key", "api_key"),
    ),
    ProviderId.OPENROUTER: ProviderCapability(
        provider=ProviderId.OPENROUTER,
        adapter=AdapterKind.CHAT,
        strategy=NormalizationStrategy.EXTRACT,
        base_url_setting="openrouter_base_url",
        env_keys=("openrouter_api_key", "api_key"),
        extra_headers=_openrouter_headers,
    ),
    ProviderId.GROK: ProviderCapability(
        provider=ProviderId.GROK,
        adapter=AdapterKind.CHAT,
        strategy=NormalizationStrategy.EXTRACT,
        base_url_setting="grok_base_url",
        env_keys=("grok_api_key", "api_key"),
    ),
    ProviderId.GROQ: ProviderCapability(
        provider=ProviderId.GROQ,
        adapter=AdapterKind.CHAT,
        strategy=NormalizationStrategy.EXTRACT,
        base_url_setting="groq_base_url",
        env_keys=("groq_api_key", "api_key"),
    ),
    ProviderId.OLLAMA: ProviderCapability(
        provider=ProviderId.OLLAMA,
        adapter=AdapterKind.CHAT,
        strategy=NormalizationStrategy.EXTRACT,
        base_url_setting="ollama_base_url",
        requires_key=False,
        local_key="ollama",
    ),
}


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    initial_delay_ms: int


def _policy(name: str) -> RetryPolicy:
    return RetryPolicy(
        attempts=getattr(settings, f"{name}_retry_attempts"),
        initial_delay_ms=getattr(settings, f"{name}_retry_delay_ms"),
    )


@dataclass
class _Call:
    messages: list[ChatMessage]
    response_schema: Optional[dict[str, Any]] = None
    tools: Optional[list[dict[str, Any]]] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class ProviderDispatcher:
    """Routes each logical operation to the configured provider's transport.

    Provider differences live in ``PROVIDERS``: which adapter speaks to it,
    where it lives, how its key is found and whether its output still has to
    be dug out of prose. Call sites never branch on the provider.
    """

    def __init__(
        self,
        *,
        capabilities: Optional[dict[ProviderId, ProviderCapability]] = None,
        adapters: Optional[dict[ProviderId, Transport]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.capabilities = capabilities or PROVIDERS
        self._adapters: dict[ProviderId, Any] = dict(adapters or {})
        self._native: Optional[NativeStructuredAdapter] = None
        self._sleep = sleep

    # --- capability lookup ---

    def capability(self, provider: ProviderId) -> ProviderCapability:
        try:
            return self.capabilities[provider]
        except KeyError:
            raise FatalProviderError(f"Unknown provider: {provider}") from None

    def adapter(self, provider: ProviderId) -> Any:
        if provider not in self._adapters:
            capability = self.capability(provider)
            if capability.adapter is AdapterKind.NATIVE:
                self._adapters[provider] = self.native_adapter()
            else:
                headers = capability.extra_headers() if capability.extra_headers else None
                self._adapters[provider] = ChatCompletionAdapter(
                    provider=provider.value, headers=headers
                )
        return self._adapters[provider]

    def native_adapter(self) -> Any:
        """The adapter of the first provider with native structured support."""
        for provider, capability in self.capabilities.items():
            if capability.adapter is AdapterKind.NATIVE and provider in self._adapters:
                return self._adapters[provider]
        if self._native is None:
            self._native = NativeStructuredAdapter()
        return self._native

    def native_provider(self) -> ProviderId:
        for provider, capability in self.capabilities.items():
            if capability.adapter is AdapterKind.NATIVE:
                return provider
        raise FatalProviderError("No provider with native structured support is configured")

    def resolve_api_key(self, config: ProviderConfig) -> Optional[str]:
        """Explicit user key, then environment, then (local providers) a placeholder."""
        explicit = config.user_key()
        if explicit:
            return explicit
        capability = self.capability(config.provider)
        for setting_name in capability.env_keys:
            value = (getattr(settings, setting_name, "") or "").strip()
            if value:
                return value
        if not capability.requires_key:
            return capability.local_key
        raise FatalProviderError(
            f"API key missing for {config.provider.value}. Please provide a valid key in settings."
        )

    def resolve_endpoint(self, config: ProviderConfig) -> Optional[str]:
        return config.base_url or self.capability(config.provider).base_url()

    async def _invoke(
        self,
        config: ProviderConfig,
        call: _Call,
        *,
        action: str,
        policy: RetryPolicy,
        on_progress: Optional[ProgressCallback],
        model: Optional[str] = None,
    ) -> str:
        adapter = self.adapter(config.provider)
        api_key = self.resolve_api_key(config)
        endpoint = self.resolve_endpoint(config)

        async def attempt() -> str:
            return await adapter.send(
                endpoint=endpoint,
                api_key=api_key,
                model=model or config.model,
                messages=call.messages,
                response_schema=call.response_schema,
                tools=call.tools,
                on_progress=on_progress,
                max_tokens=call.max_tokens,
                temperature=call.temperature,
            )

        return await with_retry(
            attempt,
            max_attempts=policy.attempts,
            initial_delay_ms=policy.initial_delay_ms,
            on_progress=on_progress,
            action_name=action,
            sleep=self._sleep,
        )

    # --- analysis ---

    async def generate_belief_graph(
        self,
        prompt: str,
        mode: Mode,
        config: ProviderConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BeliefState:
        """Extract the Belief Graph for ``prompt``.

        Unparseable or invalid output yields an empty graph; transport and
        provider failures propagate once retries are exhausted.
        """
        capability = self.capability(config.provider)
        logger.info(f"Generating belief graph via {config.provider.value}/{config.model} for {mode.value}")
        if capability.native_prompts:
            call = _Call(
                messages=build_messages(
                    render_prompt(
                        "belief_graph.native",
                        prompt=prompt,
                        mode_instructions=render_mode_prompt("belief_graph.mode_instructions", mode),
                    )
                ),
                response_schema=BELIEF_GRAPH_SCHEMA,
                tools=TOOL_DECLARATIONS,
            )
        else:
            call = _Call(
                messages=build_messages(
                    render_prompt("belief_graph.generic_user", mode=mode.value, prompt=prompt),
                    system=render_prompt("belief_graph.generic_system"),
                )
            )

        text = await self._invoke(
            config,
            call,
            action="Belief Graph Generation",
            policy=_policy("analysis"),
            on_progress=on_progress,
        )
        try:
            return normalize_belief_state(parse_payload(text, capability.strategy), prompt)
        except (ParseError, ValidationError) as exc:
            logger.error(f"Error generating belief graph: {exc}")
            return BeliefState(entities=[], relationships=[], prompt=prompt)

    async def generate_clarifications(
        self,
        prompt: str,
        asked_questions: list[str],
        mode: Mode,
        config: ProviderConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[Clarification]:
        capability = self.capability(config.provider)
        if capability.native_prompts:
            asked = "\n".join(f'- "{q}"' for q in asked_questions) or "N/A"
            call = _Call(
                messages=build_messages(
                    render_prompt(
                        "clarifications.native",
                        persona=render_mode_prompt("clarifications.persona", mode),
                        asked=asked,
                        prompt=prompt,
                    )
                ),
                response_schema=CLARIFICATIONS_SCHEMA,
            )
        else:
            call = _Call(
                messages=build_messages(
                    render_prompt(
                        "clarifications.generic_user",
                        mode=mode.value,
                        prompt=prompt,
                        asked=", ".join(asked_questions) or "none",
                    )
                )
            )

        text = await self._invoke(
            config,
            call,
            action="Clarification Generation",
            policy=_policy("analysis"),
            on_progress=on_progress,
        )
        try:
            return normalize_clarifications(parse_payload(text, capability.strategy))
        except (ParseError, ValidationError) as exc:
            logger.error(f"Error generating clarifications: {exc}")
            return []

    # --- reconciliation ---

    @staticmethod
    def _edit_line(update: GraphUpdate) -> str:
        if isinstance(update, AttributeUpdate):
            return render_prompt(
                "refine.attribute_line",
                entity=update.entity,
                attribute=update.attribute,
                value=update.value,
            )
        return render_prompt(
            "refine.relationship_line",
            source=update.source,
            target=update.target,
            old_label=update.old_label,
            new_label=update.new_label,
        )

    def _refine_call(
        self,
        capability: ProviderCapability,
        original_prompt: str,
        answers: list[ClarificationAnswer],
        edits: list[GraphUpdate],
    ) -> _Call:
        if capability.native_prompts:
            sections = ""
            if edits:
                sections += render_prompt(
                    "refine.edits_header", lines="\n".join(self._edit_line(u) for u in edits)
                )
            if answers:
                sections += render_prompt(
                    "refine.answers_header",
                    lines="\n".join(
                        render_prompt("refine.answer_line", question=a.question, answer=a.answer)
                        for a in answers
                    ),
                )
            text = render_prompt("refine.native", original=original_prompt, updates=sections)
        else:
            text = render_prompt(
                "refine.generic_user",
                original=original_prompt,
                edits=json.dumps([u.model_dump(by_alias=True) for u in edits]),
                answers=json.dumps([a.model_dump() for a in answers]),
            )
        return _Call(messages=build_messages(text))

    async def refine_prompt(
        self,
        original_prompt: str,
        answers: list[ClarificationAnswer],
        edits: list[GraphUpdate],
        config: ProviderConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Fold answers and graph edits into a rewritten prompt. Failures propagate."""
        capability = self.capability(config.provider)
        call = self._refine_call(capability, original_prompt, answers, edits)
        text = await self._invoke(
            config,
            call,
            action="Prompt Refinement",
            policy=_policy("refine"),
            on_progress=on_progress,
        )
        refined = text.strip()
        if len(refined) > 1 and refined[0] == refined[-1] == '"':
            refined = refined[1:-1].strip()
        if not refined:
            raise ValidationError("Provider returned an empty refined prompt")
        return refined

    # --- content generation ---

    def _native_config(self, config: ProviderConfig, model: str) -> ProviderConfig:
        return ProviderConfig(provider=self.native_provider(), model=model, api_keys=config.api_keys)

    async def generate_images(
        self,
        prompt: str,
        config: ProviderConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[str]:
        """Fan out image requests and backfill failures in a second round.

        Partial failures are tolerated; no image at all after every round is fatal.
        """
        native_config = self._native_config(config, settings.image_model)
        api_key = self.resolve_api_key(native_config)
        native = self.native_adapter()
        policy = _policy("image")
        target = min(max(settings.images_per_request, 1), MAX_IMAGES_PER_ROUND)

        async def generate_one() -> Optional[str]:
            return await with_retry(
                lambda: native.generate_image(prompt, model=native_config.model, api_key=api_key),
                max_attempts=policy.attempts,
                initial_delay_ms=policy.initial_delay_ms,
                on_progress=on_progress,
                action_name="Image Generation",
                sleep=self._sleep,
            )

        images: list[str] = []
        rounds = 0
        while len(images) < target and rounds < settings.image_rounds:
            rounds += 1
            needed = target - len(images)
            results = await asyncio.gather(*(generate_one() for _ in range(needed)), return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.warning(f"Image sub-request failed in round {rounds}: {result}")
                elif result:
                    images.append(result)

        if not images:
            raise ContentGenerationError("Image generation failed.")
        return images

    async def generate_story(
        self,
        prompt: str,
        config: ProviderConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        call = _Call(
            messages=build_messages(render_prompt("story.user", prompt=prompt)),
            temperature=0.8,
        )
        story = await self._invoke(
            config,
            call,
            action="Story Generation",
            policy=_policy("story"),
            on_progress=on_progress,
        )
        if not story.strip():
            raise ContentGenerationError("Story generation returned no text.")
        return story

    async def generate_video(
        self,
        prompt: str,
        config: ProviderConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        native_config = self._native_config(config, settings.video_model)
        return await self.native_adapter().generate_video(
            prompt,
            model=native_config.model,
            api_key=self.resolve_api_key(native_config),
            poll_interval_s=settings.video_poll_interval_s,
            on_progress=on_progress,
            sleep=self._sleep,
        )

    async def generate_content(
        self,
        prompt: str,
        mode: Mode,
        config: ProviderConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ContentResult:
        if mode is Mode.IMAGE:
            return ContentResult(mode=mode, images=await self.generate_images(prompt, config, on_progress))
        if mode is Mode.STORY:
            return ContentResult(mode=mode, story=await self.generate_story(prompt, config, on_progress))
        return ContentResult(mode=mode, video_uri=await self.generate_video(prompt, config, on_progress))

    # --- connectivity ---

    async def validate_provider_key(
        self,
        provider: ProviderId,
        model: str = "",
        user_key: Optional[str] = None,
    ) -> ConnectionCheck:
        """Send a one-token ping (no retries) to check key and reachability."""
        capability = self.capability(provider)
        if not model:
            model = settings.default_model if capability.adapter is AdapterKind.NATIVE else "gpt-3.5-turbo"
        config = ProviderConfig(
            provider=provider,
            model=model,
            api_keys={provider: user_key} if user_key else {},
        )
        try:
            api_key = self.resolve_api_key(config)
        except FatalProviderError:
            return ConnectionCheck(success=False, message="API key missing. Please provide a valid key in settings.")

        try:
            await self.adapter(provider).send(
                endpoint=self.resolve_endpoint(config),
                api_key=api_key,
                model=model,
                messages=build_messages(render_prompt("connectivity.ping")),
                max_tokens=1,
            )
        except HttpStatusError as exc:
            return ConnectionCheck(
                success=False,
                message=exc.provider_message or f"API returned status {exc.code}",
            )
        except CoCreatorError as exc:
            return ConnectionCheck(success=False, message=str(exc) or "Network error during validation.")
        return ConnectionCheck(success=True, message="Connection verified successfully.")


_dispatcher: ProviderDispatcher | None = None


def dispatcher() -> ProviderDispatcher:
    """Get or create the shared dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ProviderDispatcher()
    return _dispatcher


async def generate_belief_graph(
    prompt: str,
    mode: Mode,
    config: ProviderConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> BeliefState:
    return await dispatcher().generate_belief_graph(prompt, mode, config, on_progress)


async def generate_clarifications(
    prompt: str,
    asked_questions: list[str],
    mode: Mode,
    config: ProviderConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> list[Clarification]:
    return await dispatcher().generate_clarifications(prompt, asked_questions, mode, config, on_progress)


async def refine_prompt(
    original_prompt: str,
    answers: list[ClarificationAnswer],
    edits: list[GraphUpdate],
    config: ProviderConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    return await dispatcher().refine_prompt(original_prompt, answers, edits, config, on_progress)


async def generate_content(
    prompt: str,
    mode: Mode,
    config: ProviderConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> ContentResult:
    return await dispatcher().generate_content(prompt, mode, config, on_progress)


async def validate_provider_key(
    provider: ProviderId,
    model: str = "",
    user_key: Optional[str] = None,
) -> ConnectionCheck:
    return await dispatcher().validate_provider_key(provider, model, user_key)
