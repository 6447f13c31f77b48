from __future__ import annotations

from typing import Any

from cocreator.models.events import EventType, SessionEvent
from cocreator.models.graph import BeliefState, Clarification, ContentResult, Mode


def status(message: str) -> SessionEvent:
    return SessionEvent(event=EventType.STATUS, data={"message": message})


def mode_changed(old_mode: Mode, new_mode: Mode) -> SessionEvent:
    return SessionEvent(
        event=EventType.MODE_CHANGED,
        data={"from": old_mode.value, "to": new_mode.value},
    )


def analysis_started(prompt: str, mode: Mode) -> SessionEvent:
    return SessionEvent(
        event=EventType.ANALYSIS_STARTED,
        data={"prompt": prompt, "mode": mode.value},
    )


def graph_updated(graph: BeliefState) -> SessionEvent:
    """Emit the full replacement graph (never a partial diff)."""
    return SessionEvent(event=EventType.GRAPH_UPDATED, data=graph.model_dump())


def clarifications_updated(clarifications: list[Clarification]) -> SessionEvent:
    return SessionEvent(
        event=EventType.CLARIFICATIONS_UPDATED,
        data={"clarifications": [c.model_dump() for c in clarifications]},
    )


def analysis_completed(mode: Mode, **kwargs: Any) -> SessionEvent:
    return SessionEvent(event=EventType.ANALYSIS_COMPLETED, data={"mode": mode.value, **kwargs})


def content_started(mode: Mode) -> SessionEvent:
    return SessionEvent(event=EventType.CONTENT_STARTED, data={"mode": mode.value})


def content_ready(result: ContentResult) -> SessionEvent:
    data: dict[str, Any] = {"mode": result.mode.value}
    if result.images:
        data["image_count"] = len(result.images)
    if result.story is not None:
        data["story"] = result.story
    if result.video_uri is not None:
        data["video_uri"] = result.video_uri
    return SessionEvent(event=EventType.CONTENT_READY, data=data)


def prompt_refined(prompt: str, answered_questions: list[str]) -> SessionEvent:
    return SessionEvent(
        event=EventType.PROMPT_REFINED,
        data={"prompt": prompt, "answered_questions": answered_questions},
    )


def error(message: str, mode: Mode | None = None) -> SessionEvent:
    data: dict[str, Any] = {"message": message}
    if mode is not None:
        data["mode"] = mode.value
    return SessionEvent(event=EventType.ERROR, data=data)
