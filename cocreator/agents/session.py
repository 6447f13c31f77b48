"""Headless owner of the co-creation state: prompt, graph, questions and content."""
from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from cocreator.agents.dispatcher import ProviderDispatcher
from cocreator.agents.reconciler import ReconciliationEngine, RefineOutcome
from cocreator.config import settings
from cocreator.errors import CoCreatorError, ReconciliationError
from cocreator.models.events import SessionEvent
from cocreator.models.graph import (
    BeliefState,
    Clarification,
    ContentResult,
    Mode,
    ProviderConfig,
    ProviderId,
)
from cocreator.services import logger as log_service
from cocreator.services import streaming
from cocreator.services.coordinator import GenerationToken, OperationClass, RequestCoordinator

Observer = Callable[[SessionEvent], None]

REFINE_FAILED = "Failed to refine prompt."


def default_config() -> ProviderConfig:
    return ProviderConfig(provider=ProviderId(settings.default_provider), model=settings.default_model)


class CoCreatorSession:
    """Drives analysis, content generation and reconciliation for one user.

    Every async result is committed through a generation token, so switching
    mode or starting a newer request silently drops whatever the older
    request produces.
    """

    def __init__(
        self,
        *,
        prompt: str = "",
        mode: Mode = Mode.IMAGE,
        config: Optional[ProviderConfig] = None,
        dispatcher: Optional[ProviderDispatcher] = None,
    ):
        self.prompt = prompt
        self.config = config or default_config()
        self.dispatcher = dispatcher or ProviderDispatcher()
        self.coordinator = RequestCoordinator(mode)
        self.reconciler = ReconciliationEngine()

        self.graph: Optional[BeliefState] = None
        self.clarifications: list[Clarification] = []
        self.content: dict[Mode, Optional[ContentResult]] = {m: None for m in Mode}
        self.errors: dict[Mode, Optional[str]] = {m: None for m in Mode}
        self.status_message: Optional[str] = None
        self.last_analyzed: Optional[tuple[str, Mode]] = None

        self._observers: list[Observer] = []

    # --- observers ---

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as exc:
                logger.warning(f"Session observer failed on {event.event.value}: {exc}")

    def _status(self, message: str) -> None:
        self.status_message = message
        self._emit(streaming.status(message))

    def _progress(self, token: GenerationToken):
        return self.coordinator.guard(token, self._status)

    def _record_error(self, mode: Mode, message: str) -> None:
        self.errors[mode] = message
        self._emit(streaming.error(message, mode))

    # --- state ---

    @property
    def mode(self) -> Mode:
        return self.coordinator.mode

    def set_mode(self, mode: Mode) -> bool:
        old_mode = self.coordinator.mode
        if not self.coordinator.set_mode(mode):
            return False
        log_service.log_event("mode_changed", f"{old_mode.value} -> {mode.value}")
        self._emit(streaming.mode_changed(old_mode, mode))
        return True

    @property
    def outdated(self) -> bool:
        return self.reconciler.outdated

    # --- analysis ---

    async def refresh_analysis(
        self,
        prompt: str,
        answered_questions: list[str],
        mode: Mode,
    ) -> None:
        """Re-derive the graph and clarifications for ``prompt`` concurrently."""
        token = self.coordinator.issue(OperationClass.ANALYSIS)
        progress = self._progress(token)
        config = self.config
        self._emit(streaming.analysis_started(prompt, mode))
        if self.coordinator.is_current(token):
            self.last_analyzed = (prompt, mode)

        graph, clarifications = await asyncio.gather(
            self.dispatcher.generate_belief_graph(prompt, mode, config, progress),
            self.dispatcher.generate_clarifications(prompt, answered_questions, mode, config, progress),
            return_exceptions=True,
        )

        if isinstance(graph, BaseException):
            self._analysis_failed(token, "belief graph", graph)
        else:
            self.coordinator.commit(token, lambda: self._set_graph(graph))

        if isinstance(clarifications, BaseException):
            self._analysis_failed(token, "clarifications", clarifications)
        else:
            self.coordinator.commit(token, lambda: self._set_clarifications(clarifications))

        if self.coordinator.is_current(token):
            self._emit(
                streaming.analysis_completed(
                    mode,
                    entities=len(self.graph.entities) if self.graph else 0,
                    clarifications=len(self.clarifications),
                )
            )

    def _set_graph(self, graph: BeliefState) -> None:
        self.graph = graph
        self._emit(streaming.graph_updated(graph))

    def _set_clarifications(self, clarifications: list[Clarification]) -> None:
        self.clarifications = clarifications
        self._emit(streaming.clarifications_updated(clarifications))

    def _analysis_failed(self, token: GenerationToken, what: str, exc: BaseException) -> None:
        if not isinstance(exc, Exception):
            raise exc
        logger.error(f"Analysis of {what} failed: {exc}")
        if self.coordinator.is_current(token):
            self._emit(streaming.error(str(exc), token.mode))

    async def refresh_clarifications(self) -> None:
        """Skip the current questions and ask for a fresh set."""
        token = self.coordinator.issue(OperationClass.ANALYSIS)
        progress = self._progress(token)
        self.reconciler.skip([c.question for c in self.clarifications])
        try:
            clarifications = await self.dispatcher.generate_clarifications(
                self.prompt, self.reconciler.asked_questions, token.mode, self.config, progress
            )
        except CoCreatorError as exc:
            self._analysis_failed(token, "clarifications", exc)
            return
        self.coordinator.commit(token, lambda: self._set_clarifications(clarifications))

    # --- content ---

    async def _generate(self, prompt: str, token: GenerationToken) -> None:
        mode = token.mode
        self.content[mode] = None
        self._emit(streaming.content_started(mode))
        try:
            result = await self.dispatcher.generate_content(prompt, mode, self.config, self._progress(token))
        except Exception as exc:
            logger.error(f"Content generation failed for {mode.value}: {exc}")
            if self.coordinator.is_current(token):
                self._record_error(mode, str(exc))
            return
        self.coordinator.commit(token, lambda: self._set_content(result))

    def _set_content(self, result: ContentResult) -> None:
        self.content[result.mode] = result
        self._emit(streaming.content_ready(result))

    async def _process(self, prompt: str, answered: list[str], *, analyze: bool, generate: bool) -> None:
        mode = self.mode
        self.errors[mode] = None
        self.reconciler.mark_current()
        self.status_message = None

        if analyze:
            self.graph = None
            self.clarifications = []
            self.reconciler.reset()

        tasks = []
        if analyze:
            tasks.append(self.refresh_analysis(prompt, answered, mode))
        if generate:
            tasks.append(self._generate(prompt, self.coordinator.issue(OperationClass.CONTENT)))
        await asyncio.gather(*tasks)

    async def submit(self) -> None:
        """Generate content; re-analyse only when the prompt or mode changed."""
        skip_analysis = self.last_analyzed == (self.prompt, self.mode)
        await self._process(
            self.prompt,
            self.reconciler.answered_questions,
            analyze=not skip_analysis,
            generate=True,
        )

    async def analyze_only(self) -> None:
        await self._process(self.prompt, [], analyze=True, generate=False)

    # --- reconciliation ---

    async def apply_updates(self) -> Optional[RefineOutcome]:
        """Fold pending edits and answers into the prompt, then re-analyse."""
        mode = self.mode
        graph = self.graph or BeliefState(prompt=self.prompt)

        def progress(message: str) -> None:
            if self.mode == mode:
                self._status(message)

        try:
            outcome = await self.reconciler.apply(
                self.prompt,
                graph,
                self.config,
                self.dispatcher,
                progress,
                is_current=lambda: self.mode == mode,
            )
        except ReconciliationError:
            raise
        except CoCreatorError as exc:
            logger.error(f"Prompt refinement failed: {exc}")
            if self.mode == mode:
                self._record_error(mode, REFINE_FAILED)
            return None

        if outcome is None:
            return None

        self.prompt = outcome.prompt
        self._emit(streaming.prompt_refined(outcome.prompt, outcome.answered_questions))
        await self.refresh_analysis(outcome.prompt, outcome.answered_questions, mode)
        return outcome
