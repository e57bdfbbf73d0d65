"""
Step 7 — Section-Constrained Assembler

Orchestrates one assembly run:

    START → DISTRIBUTE → FETCH_BANK → FILTER → SHORTFALL → MERGE
          → VERIFY_TOTALS → PERSIST → DONE          (FAILED on any fatal error)

Bank reads for every section assignment run concurrently; filtering,
allocation and persistence then run in one sequence against the session so
dedup is global across sections. The result matches every requirement count
exactly or the run raises.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from assembly.compatibility import default_shape_for_level
from assembly.config import AssemblyConfig
from assembly.coverage_grid import CoverageGrid, allocation_priority, build_coverage_grid
from assembly.distributor import check_layout, distribute_requirements
from assembly.errors import AssemblyError, BankUnavailable, DuplicateRejection, QuotaMismatch
from assembly.fingerprints import create_fingerprint
from assembly.generation_service import GenerationService
from assembly.redundancy import RedundancyDetector
from assembly.schemas import (
    AnswerKeyEntry, AssemblyResult, AssemblyState, BankItem, ExamSection, ItemSource,
    Requirement, SectionAssignment, SectionedItem, SectionResult,
)
from assembly.session import GenerationSession
from assembly.shortfall import ShortfallFiller, ShortfallTask
from assembly.structure_validator import detect_answer_shape

log = logging.getLogger("assembly.pipeline")


class ExamAssembler:
    """
    Assemble exams from an item bank, a section layout and a requirement matrix.

    Args:
        bank:      ItemBank implementation
        generator: GenerationService for shortfalls (None → templates only)
        config:    AssemblyConfig (defaults from environment)
    """

    def __init__(self, bank, generator: Optional[GenerationService] = None, config: Optional[AssemblyConfig] = None):
        self.bank = bank
        self.generator = generator
        self.config = config or AssemblyConfig()

    def new_session(self) -> GenerationSession:
        return GenerationSession(detector=RedundancyDetector(similarity_threshold=self.config.redundancy_threshold))

    async def assemble(
        self,
        requirements: Sequence[Requirement],
        sections: Sequence[ExamSection],
        session: Optional[GenerationSession] = None,
    ) -> AssemblyResult:
        """
        Run one assembly. The state history is local to the run: it is
        returned on the result, or attached to the raised error as `history`.
        """
        history: List[AssemblyState] = [AssemblyState.START]
        session = session or self.new_session()
        try:
            return await self._run(list(requirements), list(sections), session, history)
        except AssemblyError as e:
            history.append(AssemblyState.FAILED)
            e.history = history
            log.error(f"[ASSEMBLY] Failed: {e} {e.context}")
            raise

    async def _run(
        self,
        requirements: List[Requirement],
        sections: List[ExamSection],
        session: GenerationSession,
        history: List[AssemblyState],
    ) -> AssemblyResult:
        warnings: List[str] = []

        # ── Distribute ────────────────────────────────────────────────────────
        history.append(AssemblyState.DISTRIBUTE)
        check_layout(requirements, sections)
        assignments = distribute_requirements(requirements, sections)
        for section in sections:
            parts = ", ".join(f"req#{a.requirement_index}×{a.count}" for a in assignments[section.id])
            log.info(f"[DISTRIBUTE] {section.label} ({section.item_type.value}, {section.item_count}): {parts}")

        # ── Fetch (concurrent reads) ──────────────────────────────────────────
        history.append(AssemblyState.FETCH_BANK)
        jobs: List[Tuple[ExamSection, SectionAssignment]] = [
            (section, a) for section in sections for a in assignments[section.id]
        ]
        fetched = await self._fetch_all(jobs, session)
        grid = build_coverage_grid([item for items in fetched for item in items])

        # ── Filter + shortfall, sequential ────────────────────────────────────
        filler = ShortfallFiller(session, self.generator, self.config)
        placed: Dict[str, List[Tuple[int, BankItem]]] = {s.id: [] for s in sections}
        for (section, assignment), candidates in zip(jobs, fetched):
            history.append(AssemblyState.FILTER)
            chosen = self._filter_bank_items(assignment, candidates, session)
            log.info(f"[SECTION {section.id}] req#{assignment.requirement_index}: "
                     f"{len(chosen)}/{assignment.count} from bank")

            missing = assignment.count - len(chosen)
            if missing > 0:
                history.append(AssemblyState.SHORTFALL)
                state = await filler.fill(ShortfallTask(
                    requirement_index=assignment.requirement_index,
                    requirement=assignment.requirement,
                    section_id=section.id,
                    item_type=section.item_type,
                    dimensions=self._dimensions_for(assignment.requirement, grid),
                    missing=missing,
                ))
                chosen.extend(state.accepted)
                warnings.extend(state.warnings)

            placed[section.id].extend((assignment.requirement_index, item) for item in chosen)

        # ── Merge ─────────────────────────────────────────────────────────────
        history.append(AssemblyState.MERGE)
        section_results = self._merge(sections, placed)

        # ── Verify ────────────────────────────────────────────────────────────
        history.append(AssemblyState.VERIFY_TOTALS)
        self._verify(requirements, section_results)

        # ── Persist ───────────────────────────────────────────────────────────
        history.append(AssemblyState.PERSIST)
        warnings.extend(await self._persist(section_results, session))

        ordered = [item for result in section_results for item in result.items]
        source_counts: Dict[str, int] = {s.value: 0 for s in ItemSource}
        for placed_item in ordered:
            source_counts[placed_item.item.source.value] += 1

        history.append(AssemblyState.DONE)
        result = AssemblyResult(
            sections=section_results,
            ordered_items=ordered,
            answer_key=build_answer_key(section_results),
            total_items=len(ordered),
            total_points=sum(r.total_points for r in section_results),
            registry_snapshot=session.snapshot(),
            warnings=warnings,
            source_counts=source_counts,
            history=history,
        )
        log.info(f"[ASSEMBLY] Done: {result.total_items} items, {result.total_points} pts, sources={source_counts}")
        return result

    # ── Steps ─────────────────────────────────────────────────────────────────

    async def _fetch_all(self, jobs, session: GenerationSession) -> List[List[BankItem]]:
        used_since = None
        if self.config.exclude_recent_days is not None:
            used_since = datetime.now(timezone.utc) - timedelta(days=self.config.exclude_recent_days)

        async def fetch(section: ExamSection, assignment: SectionAssignment) -> List[BankItem]:
            req = assignment.requirement
            where = {
                "section_id": section.id,
                "requirement_index": assignment.requirement_index,
                "topic": req.topic,
                "requested": assignment.count,
            }
            try:
                return await self.bank.query(
                    topic=req.topic,
                    cognitive_level=req.cognitive_level,
                    difficulty=req.difficulty,
                    item_type=section.item_type,
                    limit=assignment.count * self.config.bank_fetch_multiplier,
                    exclude_ids=sorted(session.selected_ids),
                    exclude_used_since=used_since,
                )
            except BankUnavailable as e:
                e.context = {**e.context, **where}
                raise
            except Exception as e:
                raise BankUnavailable(
                    f"Item bank read failed for section {section.id} "
                    f"req#{assignment.requirement_index}: {type(e).__name__}: {e}",
                    where,
                ) from e

        results = await asyncio.gather(*(fetch(s, a) for s, a in jobs))
        log.info(f"[FETCH] {sum(len(r) for r in results)} bank candidate(s) for {len(jobs)} assignment(s)")
        return list(results)

    def _filter_bank_items(
        self,
        assignment: SectionAssignment,
        candidates: List[BankItem],
        session: GenerationSession,
    ) -> List[BankItem]:
        req = assignment.requirement
        chosen: List[BankItem] = []
        for item in candidates:
            if len(chosen) >= assignment.count:
                break
            if item.id is not None and item.id in session.selected_ids:
                continue
            if req.knowledge_dimension is not None and item.knowledge_dimension != req.knowledge_dimension:
                continue
            shape = item.answer_shape or detect_answer_shape(item.text) or default_shape_for_level(item.cognitive_level)
            fingerprint = create_fingerprint(
                item.text, item.topic, shape, item.cognitive_level, item.knowledge_dimension,
                extractor=session.extractor,
            )
            try:
                session.screen(item.text, fingerprint)
            except DuplicateRejection as e:
                log.info(f"[FILTER] Skipping bank item {item.id}: {e}")
                continue
            session.accept(item, fingerprint)
            chosen.append(item)
        return chosen

    @staticmethod
    def _dimensions_for(requirement: Requirement, grid: CoverageGrid):
        if requirement.knowledge_dimension is not None:
            return [requirement.knowledge_dimension]
        return allocation_priority(grid, requirement.cognitive_level)

    @staticmethod
    def _merge(sections: List[ExamSection], placed) -> List[SectionResult]:
        results = []
        for section in sections:
            spans = section_spans(section)
            items = [
                SectionedItem(
                    question_number=spans[idx][0] if idx < len(spans) else section.start_number + idx,
                    section_id=section.id,
                    item=item,
                    points=section.points_per_item,
                    requirement_index=req_idx,
                )
                for idx, (req_idx, item) in enumerate(placed[section.id])
            ]
            results.append(SectionResult(section=section, items=items))
        return results

    @staticmethod
    def _verify(requirements: List[Requirement], section_results: List[SectionResult]) -> None:
        per_requirement = [0] * len(requirements)
        for result in section_results:
            if result.item_count != result.section.item_count:
                raise QuotaMismatch(
                    f"{result.section.label} has {result.item_count} items, expected {result.section.item_count}",
                    expected=result.section.item_count,
                    actual=result.item_count,
                    detail={"section_id": result.section.id},
                )
            for placed in result.items:
                per_requirement[placed.requirement_index] += 1

        for idx, (req, actual) in enumerate(zip(requirements, per_requirement)):
            if actual != req.count:
                raise QuotaMismatch(
                    f"Requirement #{idx} ({req.topic}/{req.cognitive_level.value}) "
                    f"has {actual} items, expected {req.count}",
                    expected=req.count,
                    actual=actual,
                    detail={"requirement_index": idx},
                )

        expected = sum(r.count for r in requirements)
        actual = sum(per_requirement)
        if expected != actual:
            raise QuotaMismatch(f"Assembled {actual} items, expected {expected}", expected=expected, actual=actual)
        log.info(f"[VERIFY] {actual} items match the requirement matrix")

    async def _persist(self, section_results: List[SectionResult], session: GenerationSession) -> List[str]:
        """Insert generated items, then bump usage counts. Failures are logged, not raised."""
        warnings: List[str] = []
        placed = [p for r in section_results for p in r.items]

        generated = [p for p in placed if p.item.source != ItemSource.BANK]
        if generated and self.config.persist_generated:
            try:
                stored = await self.bank.insert([p.item for p in generated])
            except Exception as e:
                log.error(f"[PERSIST] Insert of {len(generated)} generated item(s) failed: {e}")
                warnings.append(f"Generated items were not saved to the bank: {e}")
            else:
                for p, saved in zip(generated, stored):
                    p.item = p.item.model_copy(update={"id": saved.id})
                    if saved.id is not None:
                        session.selected_ids.add(saved.id)
                log.info(f"[PERSIST] Saved {len(stored)} generated item(s)")

        for p in placed:
            if p.item.id is None:
                continue
            try:
                await self.bank.mark_used(p.item.id)
            except Exception as e:
                log.error(f"[PERSIST] mark_used failed for item {p.item.id}: {e}")
                continue
            p.item.usage_count += 1
        return warnings


# ─── Answer key ───────────────────────────────────────────────────────────────

def section_spans(section: ExamSection) -> List[Tuple[int, int]]:
    """
    Number range covered by each item of a section. Grouped essays split the
    slot range evenly and the last essay absorbs the remainder.
    """
    if section.essay_group_count is None:
        return [(n, n) for n in range(section.start_number, section.end_number + 1)]
    per_essay = section.slot_count // section.essay_group_count
    spans = []
    for idx in range(section.essay_group_count):
        start = section.start_number + idx * per_essay
        end = section.end_number if idx == section.essay_group_count - 1 else start + per_essay - 1
        spans.append((start, end))
    return spans


def build_answer_key(section_results: List[SectionResult]) -> List[AnswerKeyEntry]:
    key = []
    for result in section_results:
        section = result.section
        spans = section_spans(section)
        for idx, placed in enumerate(result.items):
            start, end = spans[idx]
            key.append(AnswerKeyEntry(
                question_number=placed.question_number,
                display_number=str(start) if start == end else f"{start}-{end}",
                item_id=placed.item.id,
                correct_answer=placed.item.correct_answer,
                section_id=section.id,
                section_label=section.label,
                item_type=section.item_type,
                points=placed.points,
            ))
    return key
