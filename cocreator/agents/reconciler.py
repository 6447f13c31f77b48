"""Batches user graph edits and clarification answers into one refine call.

Lifecycle::

    IDLE --stage--> EDITING --apply--> REFINING --ok--> IDLE (outdated=True)
                                                --err-> EDITING (edits kept)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from loguru import logger

from cocreator.errors import ReconciliationError
from cocreator.models.graph import (
    AttributeUpdate,
    BeliefState,
    ClarificationAnswer,
    GraphUpdate,
    ProviderConfig,
    Relationship,
    RelationshipUpdate,
)
from cocreator.services.retry import ProgressCallback

if TYPE_CHECKING:
    from cocreator.agents.dispatcher import ProviderDispatcher

EXISTENCE = "existence"


class ReconcileState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    REFINING = "refining"


@dataclass
class RefineOutcome:
    prompt: str
    answered_questions: list[str]


@dataclass
class RefineRequest:
    updates: list[GraphUpdate] = field(default_factory=list)
    answers: list[ClarificationAnswer] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.updates and not self.answers


class ReconciliationEngine:
    def __init__(self) -> None:
        self.state = ReconcileState.IDLE
        self.outdated = False
        self._attribute_edits: dict[tuple[str, str], str] = {}
        self._relationship_edits: dict[tuple[str, str], str] = {}
        self._answers: dict[str, str] = {}
        self._answered: list[str] = []
        self._skipped: list[str] = []

    # --- staging ---

    def _touch(self) -> None:
        if self.state is ReconcileState.IDLE:
            self.state = ReconcileState.EDITING

    def stage_attribute(self, entity: str, attribute: str, value: str) -> None:
        self._attribute_edits[(entity, attribute)] = value
        self._touch()

    def stage_relationship(self, source: str, target: str, new_label: str) -> None:
        self._relationship_edits[(source, target)] = new_label
        self._touch()

    def stage_answer(self, question: str, answer: str) -> None:
        self._answers[question] = answer
        self._touch()

    def skip(self, questions: list[str]) -> None:
        """Remember questions the user passed on so they are not asked again."""
        for question in questions:
            if question not in self._skipped and question not in self._answered:
                self._skipped.append(question)

    def clear_pending(self) -> None:
        self._attribute_edits.clear()
        self._relationship_edits.clear()
        self._answers.clear()
        if self.state is ReconcileState.EDITING:
            self.state = ReconcileState.IDLE

    # --- queries ---

    @property
    def has_pending(self) -> bool:
        return bool(self._attribute_edits or self._relationship_edits or self._answers)

    @property
    def pending_count(self) -> int:
        return len(self._attribute_edits) + len(self._relationship_edits) + len(self._answers)

    @property
    def answered_questions(self) -> list[str]:
        return list(self._answered)

    @property
    def skipped_questions(self) -> list[str]:
        return list(self._skipped)

    @property
    def asked_questions(self) -> list[str]:
        return self._answered + [q for q in self._skipped if q not in self._answered]

    def _removed_entities(self) -> set[str]:
        return {
            entity
            for (entity, attribute), value in self._attribute_edits.items()
            if attribute == EXISTENCE and value.strip().lower() == "false"
        }

    def orphaned_relationships(self, graph: BeliefState) -> list[Relationship]:
        """Relationships that would dangle once pending removals are applied."""
        removed = self._removed_entities()
        return [r for r in graph.relationships if r.source in removed or r.target in removed]

    def build_request(self, graph: BeliefState) -> RefineRequest:
        updates: list[GraphUpdate] = [
            AttributeUpdate(entity=entity, attribute=attribute, value=value)
            for (entity, attribute), value in self._attribute_edits.items()
        ]

        removed = self._removed_entities()
        for (source, target), new_label in self._relationship_edits.items():
            if source in removed or target in removed:
                logger.debug(f"Skipping relationship edit {source} -> {target}: endpoint removed")
                continue
            relationship = graph.find_relationship(source, target)
            if relationship is None:
                logger.debug(f"Skipping relationship edit {source} -> {target}: not in graph")
                continue
            updates.append(
                RelationshipUpdate(
                    source=source,
                    target=target,
                    old_label=relationship.label,
                    new_label=new_label,
                )
            )

        answers = [ClarificationAnswer(question=q, answer=a) for q, a in self._answers.items()]
        return RefineRequest(updates=updates, answers=answers)

    # --- apply ---

    async def apply(
        self,
        prompt: str,
        graph: BeliefState,
        config: ProviderConfig,
        dispatcher: "ProviderDispatcher",
        on_progress: Optional[ProgressCallback] = None,
        is_current: Optional[Callable[[], bool]] = None,
    ) -> Optional[RefineOutcome]:
        """Send every pending edit and answer in a single refine request.

        On failure the pending set is kept so the user can retry. When
        ``is_current`` reports the request was superseded while in flight, the
        result is dropped, nothing is committed and None is returned.
        """
        if self.state is ReconcileState.REFINING:
            raise ReconciliationError("A refinement is already in progress")
        if not self.has_pending:
            raise ReconciliationError("Nothing to apply")

        request = self.build_request(graph)
        if request.is_empty:
            raise ReconciliationError("No pending edit refers to the current graph")

        self.state = ReconcileState.REFINING
        try:
            new_prompt = await dispatcher.refine_prompt(
                prompt, request.answers, request.updates, config, on_progress
            )
        except Exception:
            self.state = ReconcileState.EDITING
            raise

        if is_current is not None and not is_current():
            logger.debug("Dropping superseded refine result; pending edits kept")
            self.state = ReconcileState.EDITING
            return None

        for answer in request.answers:
            if answer.question not in self._answered:
                self._answered.append(answer.question)
        self._attribute_edits.clear()
        self._relationship_edits.clear()
        self._answers.clear()
        self._skipped.clear()
        self.outdated = True
        self.state = ReconcileState.IDLE
        logger.info(f"Applied {len(request.updates)} edits and {len(request.answers)} answers")
        return RefineOutcome(prompt=new_prompt, answered_questions=self.answered_questions)

    def mark_current(self) -> None:
        """The graph has been re-derived from the latest prompt."""
        self.outdated = False

    def reset(self) -> None:
        """Forget pending edits for a new prompt; answered questions are kept."""
        self.clear_pending()
        self.outdated = False
