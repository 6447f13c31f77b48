from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from cocreator.agents.reconciler import ReconcileState
from cocreator.agents.session import REFINE_FAILED, CoCreatorSession
from cocreator.errors import ContentGenerationError, HttpStatusError, ReconciliationError
from cocreator.models.events import EventType
from cocreator.models.graph import (
    Attribute,
    BeliefState,
    Candidate,
    Clarification,
    ContentResult,
    Entity,
    Mode,
    ProviderConfig,
    ProviderId,
)

CONFIG = ProviderConfig(provider=ProviderId.GEMINI, model="gemini-test", api_keys={ProviderId.GEMINI: "k"})


def cat_graph(prompt: str = "a cat") -> BeliefState:
    return BeliefState(
        entities=[
            Entity(
                name="Cat",
                presence_in_prompt=True,
                attributes=[Attribute(name="color", value=[Candidate(name="black")])],
            )
        ],
        prompt=prompt,
    )


def make_dispatcher() -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.generate_belief_graph = AsyncMock(side_effect=lambda prompt, *a, **k: cat_graph(prompt))
    dispatcher.generate_clarifications = AsyncMock(
        return_value=[Clarification(question="Indoors?", options=["yes", "no"])]
    )
    dispatcher.generate_content = AsyncMock(return_value=ContentResult(mode=Mode.IMAGE, images=["data:x"]))
    dispatcher.refine_prompt = AsyncMock(return_value="an orange cat indoors")
    return dispatcher


def make_session(dispatcher=None, prompt="a cat") -> tuple[CoCreatorSession, list]:
    session = CoCreatorSession(prompt=prompt, config=CONFIG, dispatcher=dispatcher or make_dispatcher())
    events: list = []
    session.subscribe(events.append)
    return session, events


@pytest.mark.asyncio
async def test_submit_analyses_and_generates():
    session, events = make_session()

    await session.submit()

    assert session.graph.entities[0].name == "Cat"
    assert session.clarifications[0].question == "Indoors?"
    assert session.content[Mode.IMAGE].images == ["data:x"]
    assert session.last_analyzed == ("a cat", Mode.IMAGE)
    kinds = [e.event for e in events]
    assert EventType.GRAPH_UPDATED in kinds
    assert EventType.CONTENT_READY in kinds
    assert EventType.ANALYSIS_COMPLETED in kinds


@pytest.mark.asyncio
async def test_resubmitting_same_prompt_skips_analysis():
    dispatcher = make_dispatcher()
    session, _ = make_session(dispatcher)

    await session.submit()
    await session.submit()

    assert dispatcher.generate_belief_graph.await_count == 1
    assert dispatcher.generate_content.await_count == 2


@pytest.mark.asyncio
async def test_analyze_only_does_not_generate():
    dispatcher = make_dispatcher()
    session, _ = make_session(dispatcher)

    await session.analyze_only()

    assert session.graph is not None
    dispatcher.generate_content.assert_not_awaited()


@pytest.mark.asyncio
async def test_mode_switch_discards_in_flight_analysis():
    dispatcher = make_dispatcher()
    session, events = make_session(dispatcher)

    async def switch_mode_mid_flight(prompt, *args, **kwargs):
        session.set_mode(Mode.STORY)
        return cat_graph(prompt)

    dispatcher.generate_belief_graph = AsyncMock(side_effect=switch_mode_mid_flight)

    await session.analyze_only()

    assert session.mode is Mode.STORY
    assert session.graph is None
    assert session.clarifications == []
    assert EventType.GRAPH_UPDATED not in [e.event for e in events]
    assert EventType.MODE_CHANGED in [e.event for e in events]


@pytest.mark.asyncio
async def test_content_failure_is_stored_per_mode_and_analysis_survives():
    dispatcher = make_dispatcher()
    dispatcher.generate_content = AsyncMock(side_effect=ContentGenerationError("Image generation failed."))
    session, events = make_session(dispatcher)

    await session.submit()

    assert session.errors[Mode.IMAGE] == "Image generation failed."
    assert session.errors[Mode.STORY] is None
    assert session.graph is not None
    assert any(e.event is EventType.ERROR for e in events)


@pytest.mark.asyncio
async def test_apply_updates_refines_and_reanalyses():
    dispatcher = make_dispatcher()
    session, events = make_session(dispatcher)
    await session.analyze_only()

    session.reconciler.stage_attribute("Cat", "color", "orange")
    session.reconciler.stage_answer("Indoors?", "yes")
    outcome = await session.apply_updates()

    assert outcome.prompt == "an orange cat indoors"
    assert session.prompt == "an orange cat indoors"
    assert session.outdated is True
    assert session.graph.prompt == "an orange cat indoors"
    _, answered, mode, *_ = dispatcher.generate_clarifications.await_args.args
    assert answered == ["Indoors?"]
    assert mode is Mode.IMAGE
    assert EventType.PROMPT_REFINED in [e.event for e in events]


@pytest.mark.asyncio
async def test_apply_updates_failure_records_error_and_keeps_edits():
    dispatcher = make_dispatcher()
    dispatcher.refine_prompt = AsyncMock(side_effect=HttpStatusError(500, "boom"))
    session, _ = make_session(dispatcher)
    await session.analyze_only()

    session.reconciler.stage_attribute("Cat", "color", "orange")
    outcome = await session.apply_updates()

    assert outcome is None
    assert session.errors[Mode.IMAGE] == REFINE_FAILED
    assert session.prompt == "a cat"
    assert session.reconciler.has_pending


@pytest.mark.asyncio
async def test_apply_updates_without_edits_raises():
    session, _ = make_session()
    with pytest.raises(ReconciliationError):
        await session.apply_updates()


@pytest.mark.asyncio
async def test_refresh_clarifications_skips_current_questions():
    dispatcher = make_dispatcher()
    session, _ = make_session(dispatcher)
    await session.analyze_only()

    dispatcher.generate_clarifications = AsyncMock(return_value=[Clarification(question="Lighting?")])
    await session.refresh_clarifications()

    _, asked, *_ = dispatcher.generate_clarifications.await_args.args
    assert asked == ["Indoors?"]
    assert session.clarifications[0].question == "Lighting?"


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_session():
    session, _ = make_session()

    def broken(_event):
        raise RuntimeError("observer down")

    session.subscribe(broken)
    await session.analyze_only()

    assert session.graph is not None


@pytest.mark.asyncio
async def test_mode_switch_discards_in_flight_content():
    dispatcher = make_dispatcher()
    session, events = make_session(dispatcher)

    async def switch_mode_mid_flight(prompt, mode, *args, **kwargs):
        session.set_mode(Mode.STORY)
        return ContentResult(mode=mode, images=["data:x"])

    dispatcher.generate_content = AsyncMock(side_effect=switch_mode_mid_flight)

    await session.submit()

    assert session.content[Mode.IMAGE] is None
    assert session.errors[Mode.IMAGE] is None
    assert EventType.CONTENT_READY not in [e.event for e in events]


@pytest.mark.asyncio
async def test_newer_submit_supersedes_in_flight_content():
    dispatcher = make_dispatcher()
    session, events = make_session(dispatcher)
    await session.analyze_only()

    async def resubmit_on_first_call(prompt, mode, *args, **kwargs):
        if dispatcher.generate_content.await_count == 1:
            await session.submit()
            return ContentResult(mode=mode, images=["data:old"])
        return ContentResult(mode=mode, images=["data:new"])

    dispatcher.generate_content = AsyncMock(side_effect=resubmit_on_first_call)

    await session.submit()

    assert dispatcher.generate_content.await_count == 2
    assert session.content[Mode.IMAGE].images == ["data:new"]
    ready = [e for e in events if e.event is EventType.CONTENT_READY]
    assert len(ready) == 1


@pytest.mark.asyncio
async def test_unexpected_content_error_is_recorded():
    dispatcher = make_dispatcher()
    dispatcher.generate_content = AsyncMock(side_effect=ValueError("bad sdk payload"))
    session, events = make_session(dispatcher)

    await session.submit()

    assert session.errors[Mode.IMAGE] == "bad sdk payload"
    assert session.content[Mode.IMAGE] is None
    assert session.graph is not None
    assert any(e.event is EventType.ERROR for e in events)


@pytest.mark.asyncio
async def test_mode_switch_during_refine_keeps_edits_and_prompt():
    dispatcher = make_dispatcher()
    session, events = make_session(dispatcher)
    await session.analyze_only()

    async def switch_mode_mid_refine(*args, **kwargs):
        session.set_mode(Mode.STORY)
        return "an orange cat indoors"

    dispatcher.refine_prompt = AsyncMock(side_effect=switch_mode_mid_refine)
    session.reconciler.stage_attribute("Cat", "color", "orange")
    session.reconciler.stage_answer("Indoors?", "yes")

    outcome = await session.apply_updates()

    assert outcome is None
    assert session.prompt == "a cat"
    assert session.reconciler.has_pending
    assert session.reconciler.pending_count == 2
    assert session.reconciler.answered_questions == []
    assert session.reconciler.state is ReconcileState.EDITING
    assert session.outdated is False
    assert session.errors[Mode.IMAGE] is None
    assert EventType.PROMPT_REFINED not in [e.event for e in events]
    assert dispatcher.generate_belief_graph.await_count == 1
