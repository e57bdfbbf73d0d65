"""
Step 5/6 — Shortfall Filler

Fills the items a bank could not supply for one section assignment.

    GENERATE ──(accepted all)──────────────► DONE
       │  ▲
       │  └─(short, attempt < max rounds)
       ├─(rounds used / exhausted / upstream failure)──► TEMPLATE
    TEMPLATE ──(filled)──► DONE
             └─(pool exhausted)──► FAILED → ShortfallUnrecoverable

Every candidate passes structural validation (generated only), text
redundancy and fingerprint uniqueness before it counts.
"""

import asyncio
import enum
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from assembly.compatibility import get_shape_requirement
from assembly.config import AssemblyConfig
from assembly.errors import (
    AssemblyError, DuplicateRejection, ExhaustedAllocation,
    GenerationUnavailable, ShortfallUnrecoverable, StructuralRejection,
)
from assembly.fingerprints import create_fingerprint
from assembly.generation_service import GenerationService
from assembly.intent_registry import allocate_concept_and_operation, select_multiple_intents
from assembly.schemas import (
    BankItem, GeneratedCandidate, GenerationRequest, IntentPayload,
    ItemSource, QuestionIntent, Requirement,
)
from assembly.session import GenerationSession
from assembly.structure_validator import check_answer_structure
from assembly.taxonomy import ItemType, KnowledgeDimension, forbidden_patterns_for
from assembly.templates import iter_template_items

log = logging.getLogger("assembly.pipeline")

LETTERS = ["A", "B", "C", "D"]


class ShortfallPhase(str, enum.Enum):
    GENERATE = "generate"
    TEMPLATE = "template"
    DONE = "done"
    FAILED = "failed"


class ShortfallTask(BaseModel):
    """One assignment's unmet quota."""
    requirement_index: int
    requirement: Requirement
    section_id: str
    item_type: ItemType
    dimensions: List[KnowledgeDimension]       # preference order
    missing: int = Field(..., ge=0)


class ShortfallState(BaseModel):
    phase: ShortfallPhase
    attempt: int = 0
    requested: int
    accepted: List[BankItem] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def remaining(self) -> int:
        return self.requested - len(self.accepted)


class ShortfallFiller:
    def __init__(
        self,
        session: GenerationSession,
        generator: Optional[GenerationService],
        config: AssemblyConfig,
    ):
        self.session = session
        self.generator = generator
        self.config = config

    async def fill(self, task: ShortfallTask) -> ShortfallState:
        can_generate = self.generator is not None and self.config.max_generation_rounds > 0
        state = ShortfallState(
            phase=ShortfallPhase.GENERATE if can_generate else ShortfallPhase.TEMPLATE,
            requested=task.missing,
        )
        if state.remaining == 0:
            state.phase = ShortfallPhase.DONE
        tag = f"[SECTION {task.section_id}] req#{task.requirement_index}"

        while state.phase not in (ShortfallPhase.DONE, ShortfallPhase.FAILED):
            if state.phase == ShortfallPhase.GENERATE:
                state.attempt += 1
                try:
                    await self._generation_round(task, state)
                except ExhaustedAllocation as e:
                    log.info(f"{tag} {e}; switching to templates")
                    state.phase = ShortfallPhase.TEMPLATE
                    continue
                except GenerationUnavailable as e:
                    log.warning(f"{tag} Generation unavailable ({e}); switching to templates")
                    state.warnings.append(f"Section {task.section_id}: generation unavailable, used templates")
                    state.phase = ShortfallPhase.TEMPLATE
                    continue

                if state.remaining == 0:
                    state.phase = ShortfallPhase.DONE
                elif state.attempt >= self.config.max_generation_rounds:
                    log.warning(f"{tag} {len(state.accepted)}/{state.requested} accepted after "
                                f"{state.attempt} round(s); filling {state.remaining} from templates")
                    state.phase = ShortfallPhase.TEMPLATE
            else:
                self._template_fill(task, state)
                state.phase = ShortfallPhase.DONE if state.remaining == 0 else ShortfallPhase.FAILED

        if state.phase == ShortfallPhase.FAILED:
            log.error(f"{tag} Template pool exhausted, still short by {state.remaining}")
            raise ShortfallUnrecoverable(
                requirement_index=task.requirement_index,
                section_id=task.section_id,
                requested=task.requirement.count,
                missing=state.remaining,
            )
        return state

    # ── Generation ────────────────────────────────────────────────────────────

    def _allocate(self, task: ShortfallTask, want: int) -> List[QuestionIntent]:
        req = task.requirement
        for dim in task.dimensions:
            intents = select_multiple_intents(self.session.registry, req.topic, req.cognitive_level, dim, want)
            if intents:
                return intents
        raise ExhaustedAllocation(
            f"No unused intents left for {req.topic}/{req.cognitive_level.value}",
            {"topic": req.topic, "level": req.cognitive_level.value},
        )

    def _payloads(self, task: ShortfallTask, intents: List[QuestionIntent]) -> List[IntentPayload]:
        req = task.requirement
        payloads = []
        for intent in intents:
            pair = allocate_concept_and_operation(self.session.registry, req.topic, req.cognitive_level)
            payloads.append(IntentPayload(
                intent=intent,
                answer_shape=intent.answer_shape,
                answer_shape_requirement=get_shape_requirement(intent.answer_shape),
                assigned_concept=pair.concept if pair else None,
                assigned_operation=pair.operation if pair else None,
                forbidden_patterns=forbidden_patterns_for(req.cognitive_level),
            ))
        return payloads

    async def _generation_round(self, task: ShortfallTask, state: ShortfallState) -> None:
        req = task.requirement
        intents = self._allocate(task, state.remaining)
        payloads = self._payloads(task, intents)
        request = GenerationRequest(
            topic=req.topic,
            cognitive_level=req.cognitive_level,
            knowledge_dimension=intents[0].knowledge_dimension,
            difficulty=req.difficulty,
            count=len(intents),
            item_type=task.item_type,
            intents=payloads,
            registry_snapshot=self.session.registry.to_snapshot(),
        )
        log.info(f"[GENERATE] Round {state.attempt}: requesting {len(intents)} item(s) "
                 f"for {req.topic}/{req.cognitive_level.value}")

        try:
            response = await asyncio.wait_for(
                self.generator.generate(request),
                timeout=self.config.generation_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise GenerationUnavailable(
                f"timed out after {self.config.generation_timeout_seconds}s", {"round": state.attempt}
            ) from e
        except AssemblyError:
            raise
        except Exception as e:
            raise GenerationUnavailable(f"{type(e).__name__}: {e}", {"round": state.attempt}) from e

        if response.updated_registry_snapshot is not None:
            self.session.registry.merge(response.updated_registry_snapshot)

        for candidate, intent in zip(response.questions, intents):
            if state.remaining == 0:
                break
            try:
                item, fingerprint = self._screen_candidate(candidate, intent, task)
            except (StructuralRejection, DuplicateRejection) as e:
                log.info(f"[GENERATE] Rejected candidate ({type(e).__name__}): {e}")
                continue
            self.session.registry.mark_used(intent)
            self.session.accept(item, fingerprint)
            state.accepted.append(item)

    def _screen_candidate(self, candidate: GeneratedCandidate, intent: QuestionIntent, task: ShortfallTask):
        req = task.requirement
        verdict = check_answer_structure(intent.answer_shape, candidate.answer, req.cognitive_level)
        if verdict.reject:
            raise StructuralRejection(verdict.reason or "structure violation", {"text": candidate.text[:80]})

        choices, correct = _normalise_format(candidate, task.item_type)
        fingerprint = create_fingerprint(
            candidate.text, req.topic, intent.answer_shape, req.cognitive_level,
            intent.knowledge_dimension, extractor=self.session.extractor,
        )
        self.session.screen(candidate.text, fingerprint)

        item = BankItem(
            text=candidate.text,
            item_type=task.item_type,
            choices=choices,
            correct_answer=correct,
            answer=candidate.answer or "\n".join(candidate.rubric_points),
            topic=req.topic,
            cognitive_level=req.cognitive_level,
            knowledge_dimension=intent.knowledge_dimension,
            difficulty=req.difficulty,
            answer_shape=intent.answer_shape,
            source=ItemSource.AI,
        )
        return item, fingerprint

    # ── Templates ─────────────────────────────────────────────────────────────

    def _template_fill(self, task: ShortfallTask, state: ShortfallState) -> None:
        req = task.requirement
        added = 0
        for dim in task.dimensions:
            for candidate in iter_template_items(req.topic, req.cognitive_level, dim, req.difficulty, task.item_type):
                if state.remaining == 0:
                    break
                fingerprint = create_fingerprint(
                    candidate.item.text, req.topic, candidate.answer_shape,
                    req.cognitive_level, dim, concept=candidate.concept,
                )
                try:
                    self.session.screen(candidate.item.text, fingerprint)
                except DuplicateRejection:
                    continue
                self.session.accept(candidate.item, fingerprint)
                state.accepted.append(candidate.item)
                added += 1
            if state.remaining == 0:
                break
        if added:
            log.info(f"[TEMPLATE] {added} template item(s) for {req.topic}/{req.cognitive_level.value}")


def _normalise_format(candidate: GeneratedCandidate, item_type: ItemType):
    """Check the candidate fits its item type; return (choices, correct_answer)."""
    correct = candidate.correct_answer.strip()
    if item_type == ItemType.MCQ:
        if len(candidate.choices) != 4:
            raise StructuralRejection(f"MCQ needs 4 choices, got {len(candidate.choices)}")
        letter = correct.upper().rstrip(").")
        if letter in LETTERS:
            return candidate.choices, letter
        for i, choice in enumerate(candidate.choices):
            if choice.strip().lower() == correct.lower():
                return candidate.choices, LETTERS[i]
        raise StructuralRejection(f"MCQ correct answer {correct!r} matches no choice")
    if item_type == ItemType.TRUE_FALSE:
        if correct.lower() not in ("true", "false"):
            raise StructuralRejection(f"True/False answer must be True or False, got {correct!r}")
        return ["True", "False"], correct.capitalize()
    if item_type == ItemType.SHORT_ANSWER:
        if not correct:
            raise StructuralRejection("Fill-in item has no answer")
        return [], correct
    return [], correct or candidate.answer
