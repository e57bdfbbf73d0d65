"""
End-to-end assembler tests over the in-memory bank with fake generation
services.

Run with: pytest tests/test_assembler.py -v
"""

import asyncio
from itertools import combinations

import pytest

from assembly.assembler import AssemblyState, ExamAssembler
from assembly.config import AssemblyConfig
from assembly.errors import BankUnavailable, QuotaMismatch, ShortfallUnrecoverable, StructuralRejection
from assembly.redundancy import similarity
from assembly.schemas import ExamSection, GeneratedCandidate, GenerationResponse, ItemSource, Requirement
from assembly.shortfall import _normalise_format
from assembly.taxonomy import ItemType
from bank.item_bank import InMemoryItemBank
from tests.helpers import CELL_ITEMS, ScriptedGenerator, SlowGenerator, make_item

S = AssemblyState


def mcq_section(start, end, section_id="A"):
    return ExamSection(id=section_id, label=f"Section {section_id}", item_type="mcq",
                       start_number=start, end_number=end)


def remembering(count, **kwargs):
    return Requirement(topic="Cells", cognitive_level="Remembering", difficulty="easy", count=count, **kwargs)


class FirstOnlyGenerator(ScriptedGenerator):
    """Answers only the first intent of every request."""

    async def generate(self, request):
        response = await super().generate(request)
        response.questions = response.questions[:1]
        return response


class FixedGenerator:
    """Returns the same candidate for every intent."""

    def __init__(self, candidate):
        self.candidate = candidate
        self.calls = 0
        self.requests = []

    async def generate(self, request):
        self.calls += 1
        self.requests.append(request)
        return GenerationResponse(questions=[self.candidate.model_copy() for _ in request.intents])


class CountingBank(InMemoryItemBank):
    def __init__(self, items=()):
        super().__init__(items)
        self.queries = 0

    async def query(self, *args, **kwargs):
        self.queries += 1
        return await super().query(*args, **kwargs)


class BrokenBank(InMemoryItemBank):
    async def query(self, *args, **kwargs):
        raise RuntimeError("connection refused")


class TopicOutageBank(InMemoryItemBank):
    """Fails every read for one topic."""

    def __init__(self, items=(), failing_topic="", error=None):
        super().__init__(items)
        self.failing_topic = failing_topic
        self.error = error or RuntimeError("replica down")

    async def query(self, topic, *args, **kwargs):
        if topic == self.failing_topic:
            raise self.error
        return await super().query(topic, *args, **kwargs)


class ReadOnlyBank(InMemoryItemBank):
    async def insert(self, items):
        raise RuntimeError("read-only replica")

    async def mark_used(self, item_id):
        raise RuntimeError("read-only replica")


# ============== Happy Path Tests ==============

class TestBankAndTemplates:
    """Bank first, templates when generation is offline"""

    @pytest.mark.asyncio
    async def test_bank_short_filled_from_templates(self, memory_bank, offline_generator):
        assembler = ExamAssembler(memory_bank, offline_generator)

        result = await assembler.assemble([remembering(5)], [mcq_section(1, 5)])

        assert result.total_items == 5
        assert result.total_points == 5
        assert [p.question_number for p in result.ordered_items] == [1, 2, 3, 4, 5]
        assert result.source_counts == {"bank": 3, "ai": 0, "template": 2}
        assert offline_generator.calls == 1
        assert any("generation unavailable" in w for w in result.warnings)
        assert result.history == [
            S.START, S.DISTRIBUTE, S.FETCH_BANK, S.FILTER, S.SHORTFALL,
            S.MERGE, S.VERIFY_TOTALS, S.PERSIST, S.DONE,
        ]

    @pytest.mark.asyncio
    async def test_answer_key_and_persistence(self, memory_bank, offline_generator):
        result = await ExamAssembler(memory_bank, offline_generator).assemble([remembering(5)], [mcq_section(1, 5)])

        assert [e.display_number for e in result.answer_key] == ["1", "2", "3", "4", "5"]
        assert all(e.correct_answer for e in result.answer_key)
        # generated items are saved and come back with ids
        assert len(memory_bank.items) == 5
        assert [e.item_id for e in result.answer_key[3:]] == ["mem-4", "mem-5"]
        assert all(i.usage_count == 1 for i in memory_bank.items)

    @pytest.mark.asyncio
    async def test_bank_only(self, memory_bank):
        assembler = ExamAssembler(memory_bank)
        result = await assembler.assemble([remembering(3)], [mcq_section(1, 3)])

        assert [p.item.id for p in result.ordered_items] == ["mem-1", "mem-2", "mem-3"]
        assert result.source_counts["bank"] == 3
        assert S.SHORTFALL not in result.history

    @pytest.mark.asyncio
    async def test_accepted_items_are_pairwise_distinct(self, memory_bank):
        assembler = ExamAssembler(memory_bank)
        session = assembler.new_session()

        result = await assembler.assemble([remembering(12)], [mcq_section(1, 12)], session=session)

        texts = [p.item.text for p in result.ordered_items]
        for a, b in combinations(texts, 2):
            assert similarity(a, b) < 0.85
        keys = [(fp.topic, fp.concept, fp.answer_shape) for fp in session.store.all()]
        assert len(keys) == len(set(keys)) == 12

    @pytest.mark.asyncio
    async def test_redundant_bank_texts_skipped(self):
        bank = InMemoryItemBank([make_item(CELL_ITEMS[0]), make_item(CELL_ITEMS[0]), make_item(CELL_ITEMS[1])])
        result = await ExamAssembler(bank).assemble([remembering(2)], [mcq_section(1, 2)])
        assert [p.item.id for p in result.ordered_items] == ["mem-1", "mem-3"]

    @pytest.mark.asyncio
    async def test_dimension_filter(self, cell_items):
        bank = InMemoryItemBank([make_item("Define osmosis in plant cells.", dimension="conceptual")] + cell_items)
        result = await ExamAssembler(bank).assemble(
            [remembering(1, knowledge_dimension="conceptual")], [mcq_section(1, 1)]
        )
        assert result.ordered_items[0].item.id == "mem-1"
        assert result.source_counts["bank"] == 1

    @pytest.mark.asyncio
    async def test_bank_items_of_other_dimension_ignored(self, memory_bank):
        result = await ExamAssembler(memory_bank).assemble(
            [remembering(1, knowledge_dimension="procedural")], [mcq_section(1, 1)]
        )
        item = result.ordered_items[0].item
        assert item.source == ItemSource.TEMPLATE
        assert item.knowledge_dimension.value == "procedural"


# ============== Generation Tests ==============

class TestGeneration:
    @pytest.mark.asyncio
    async def test_generated_items_accepted(self, scripted_generator):
        bank = InMemoryItemBank()
        req = Requirement(topic="Cells", cognitive_level="Understanding",
                          knowledge_dimension="conceptual", count=2)

        result = await ExamAssembler(bank, scripted_generator).assemble([req], [mcq_section(1, 2)])

        assert result.source_counts == {"bank": 0, "ai": 2, "template": 0}
        assert scripted_generator.calls == 1
        request = scripted_generator.requests[0]
        assert [p.assigned_concept for p in request.intents] == ["key factors", "trade-offs"]
        assert [p.answer_shape.value for p in request.intents] == ["explanation", "comparison"]

        snapshot = result.registry_snapshot
        assert snapshot.used_intents == [
            "cells|Understanding|conceptual|comparison",
            "cells|Understanding|conceptual|explanation",
        ]
        assert snapshot.used_concepts == {"cells": ["key factors", "trade-offs"]}
        assert all(p.item.knowledge_dimension.value == "conceptual" for p in result.ordered_items)

    @pytest.mark.asyncio
    async def test_structural_rejection_retries_then_templates(self):
        generator = ScriptedGenerator(answer="Key factors include speed, cost, and risk.")
        req = Requirement(topic="Cells", cognitive_level="Evaluating", knowledge_dimension="conceptual", count=1)

        result = await ExamAssembler(InMemoryItemBank(), generator).assemble([req], [mcq_section(1, 1)])

        assert generator.calls == 2
        assert result.source_counts["template"] == 1
        # rejected intents stay available
        assert result.registry_snapshot.used_intents == []

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_templates(self):
        config = AssemblyConfig(generation_timeout_seconds=0.05)
        assembler = ExamAssembler(InMemoryItemBank(), SlowGenerator(), config)

        result = await assembler.assemble([remembering(2)], [mcq_section(1, 2)])

        assert result.source_counts["template"] == 2
        assert any("generation unavailable" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_zero_rounds_skips_generator(self, scripted_generator):
        config = AssemblyConfig(max_generation_rounds=0)
        await ExamAssembler(InMemoryItemBank(), scripted_generator, config).assemble(
            [remembering(1)], [mcq_section(1, 1)]
        )
        assert scripted_generator.calls == 0

    @pytest.mark.asyncio
    async def test_second_round_requests_only_missing(self):
        generator = FirstOnlyGenerator()
        req = Requirement(topic="Cells", cognitive_level="Understanding",
                          knowledge_dimension="conceptual", count=2)

        result = await ExamAssembler(InMemoryItemBank(), generator).assemble([req], [mcq_section(1, 2)])

        assert [r.count for r in generator.requests] == [2, 1]
        assert [len(r.intents) for r in generator.requests] == [2, 1]
        assert result.source_counts == {"bank": 0, "ai": 2, "template": 0}
        # the intent whose candidate never came back is offered again
        assert generator.requests[1].intents[0].answer_shape.value == "comparison"

    @pytest.mark.asyncio
    async def test_duplicates_within_one_batch(self):
        generator = FixedGenerator(GeneratedCandidate(
            text="Explain how the cell membrane controls what enters the cell.",
            correct_answer="A",
            choices=["first", "second", "third", "fourth"],
        ))
        req = Requirement(topic="Cells", cognitive_level="Understanding",
                          knowledge_dimension="conceptual", count=2)

        result = await ExamAssembler(InMemoryItemBank(), generator).assemble([req], [mcq_section(1, 2)])

        assert [r.count for r in generator.requests] == [2, 1]
        assert result.source_counts == {"bank": 0, "ai": 1, "template": 1}
        texts = [p.item.text for p in result.ordered_items]
        assert similarity(texts[0], texts[1]) < 0.85

    @pytest.mark.asyncio
    async def test_choice_text_answer_becomes_letter(self):
        generator = FixedGenerator(GeneratedCandidate(
            text="Which organelle carries out photosynthesis in plant cells?",
            correct_answer="Chloroplast",
            choices=["Mitochondrion", "Chloroplast", "Ribosome", "Vacuole"],
        ))
        req = Requirement(topic="Cells", cognitive_level="Understanding",
                          knowledge_dimension="conceptual", count=1)

        result = await ExamAssembler(InMemoryItemBank(), generator).assemble([req], [mcq_section(1, 1)])

        item = result.ordered_items[0].item
        assert item.source == ItemSource.AI
        assert item.correct_answer == "B"

    @pytest.mark.asyncio
    async def test_malformed_mcq_falls_back_to_templates(self):
        generator = FixedGenerator(GeneratedCandidate(
            text="Which organelle carries out photosynthesis in plant cells?",
            correct_answer="A",
            choices=["Mitochondrion", "Chloroplast", "Ribosome"],
        ))
        req = Requirement(topic="Cells", cognitive_level="Understanding",
                          knowledge_dimension="conceptual", count=1)

        result = await ExamAssembler(InMemoryItemBank(), generator).assemble([req], [mcq_section(1, 1)])

        assert generator.calls == 2
        assert result.source_counts["template"] == 1
        assert result.registry_snapshot.used_intents == []


# ============== Candidate Format Tests ==============

class TestCandidateFormat:
    """Generated candidates must fit the section's item type"""

    CHOICES = ["Mitochondrion", "Chloroplast", "Ribosome", "Vacuole"]

    def candidate(self, correct, choices=(), answer=""):
        return GeneratedCandidate(text="Q?", correct_answer=correct, choices=list(choices), answer=answer)

    @pytest.mark.parametrize("correct,letter", [("A", "A"), ("c)", "C"), ("d.", "D"), ("ribosome", "C")])
    def test_mcq_answers(self, correct, letter):
        choices, answer = _normalise_format(self.candidate(correct, self.CHOICES), ItemType.MCQ)
        assert choices == self.CHOICES
        assert answer == letter

    def test_mcq_needs_four_choices(self):
        with pytest.raises(StructuralRejection, match="4 choices"):
            _normalise_format(self.candidate("A", self.CHOICES[:3]), ItemType.MCQ)

    def test_mcq_answer_must_match_a_choice(self):
        with pytest.raises(StructuralRejection, match="matches no choice"):
            _normalise_format(self.candidate("Nucleus", self.CHOICES), ItemType.MCQ)

    def test_true_false(self):
        assert _normalise_format(self.candidate("false"), ItemType.TRUE_FALSE) == (["True", "False"], "False")
        with pytest.raises(StructuralRejection, match="True or False"):
            _normalise_format(self.candidate("Maybe"), ItemType.TRUE_FALSE)

    def test_fill_in(self):
        assert _normalise_format(self.candidate(" osmosis "), ItemType.SHORT_ANSWER) == ([], "osmosis")
        with pytest.raises(StructuralRejection, match="no answer"):
            _normalise_format(self.candidate("  "), ItemType.SHORT_ANSWER)

    def test_essay_uses_model_answer(self):
        result = _normalise_format(self.candidate("", answer="A structured argument."), ItemType.ESSAY)
        assert result == ([], "A structured argument.")


# ============== Layout Tests ==============

class TestSections:
    @pytest.mark.asyncio
    async def test_grouped_essays_numbered_by_span(self, memory_bank):
        sections = [
            mcq_section(1, 3),
            ExamSection(id="B", label="Section B", item_type="essay", start_number=4, end_number=13,
                        points_per_item=5, essay_group_count=2),
        ]
        reqs = [
            remembering(3),
            Requirement(topic="Cells", cognitive_level="Evaluating", difficulty="easy", count=2),
        ]

        result = await ExamAssembler(memory_bank).assemble(reqs, sections)

        assert [e.display_number for e in result.answer_key] == ["1", "2", "3", "4-8", "9-13"]
        assert [p.question_number for p in result.ordered_items] == [1, 2, 3, 4, 9]
        assert result.total_points == 13
        essays = result.sections[1]
        assert essays.item_count == 2
        assert all(p.requirement_index == 1 for p in essays.items)
        assert all(p.item.item_type.value == "essay" for p in essays.items)

    @pytest.mark.asyncio
    async def test_session_shared_across_runs(self, memory_bank):
        assembler = ExamAssembler(memory_bank)
        session = assembler.new_session()

        first = await assembler.assemble([remembering(2)], [mcq_section(1, 2)], session=session)
        second = await assembler.assemble([remembering(2)], [mcq_section(1, 2)], session=session)

        first_ids = {p.item.id for p in first.ordered_items}
        second_ids = {p.item.id for p in second.ordered_items}
        assert first_ids == {"mem-1", "mem-2"}
        assert not first_ids & second_ids
        first_texts = {p.item.text for p in first.ordered_items}
        assert not first_texts & {p.item.text for p in second.ordered_items}

    @pytest.mark.asyncio
    async def test_concurrent_runs_keep_their_own_history(self, memory_bank):
        assembler = ExamAssembler(memory_bank)

        ok, failed = await asyncio.gather(
            assembler.assemble([remembering(2)], [mcq_section(1, 2)]),
            assembler.assemble([remembering(1)], [mcq_section(1, 2)]),
            return_exceptions=True,
        )

        assert ok.history[-1] == S.DONE
        assert S.FAILED not in ok.history
        assert isinstance(failed, QuotaMismatch)
        assert failed.history == [S.START, S.DISTRIBUTE, S.FAILED]

    @pytest.mark.asyncio
    async def test_section_totals_serialised(self, memory_bank):
        result = await ExamAssembler(memory_bank).assemble([remembering(3)], [mcq_section(1, 3)])

        dumped = result.model_dump()
        assert dumped["sections"][0]["item_count"] == 3
        assert dumped["sections"][0]["total_points"] == 3
        assert dumped["history"][-1] == S.DONE

    @pytest.mark.asyncio
    async def test_recently_used_bank_items_skipped(self, memory_bank):
        await memory_bank.mark_used("mem-1")
        config = AssemblyConfig(exclude_recent_days=30)

        result = await ExamAssembler(memory_bank, config=config).assemble([remembering(2)], [mcq_section(1, 2)])

        assert [p.item.id for p in result.ordered_items] == ["mem-2", "mem-3"]


# ============== Failure Tests ==============

class TestFailures:
    """Fatal errors abort the run in FAILED"""

    @pytest.mark.asyncio
    async def test_layout_mismatch_fails_before_fetch(self):
        bank = CountingBank()
        assembler = ExamAssembler(bank)

        with pytest.raises(QuotaMismatch) as exc_info:
            await assembler.assemble([remembering(4)], [mcq_section(1, 5)])

        assert bank.queries == 0
        assert exc_info.value.history == [S.START, S.DISTRIBUTE, S.FAILED]

    @pytest.mark.asyncio
    async def test_bank_failure(self):
        assembler = ExamAssembler(BrokenBank())
        with pytest.raises(BankUnavailable) as exc_info:
            await assembler.assemble([remembering(1)], [mcq_section(1, 1)])
        assert "connection refused" in str(exc_info.value)
        assert exc_info.value.history[-1] == S.FAILED

    @pytest.mark.asyncio
    async def test_bank_failure_names_the_assignment(self, cell_items):
        bank = TopicOutageBank(cell_items, failing_topic="Genetics")
        reqs = [
            remembering(2),
            Requirement(topic="Genetics", cognitive_level="Remembering", difficulty="easy", count=1),
        ]

        with pytest.raises(BankUnavailable) as exc_info:
            await ExamAssembler(bank).assemble(reqs, [mcq_section(1, 2), mcq_section(3, 3, "B")])

        assert exc_info.value.context == {
            "section_id": "B",
            "requirement_index": 1,
            "topic": "Genetics",
            "requested": 1,
        }
        assert "section B" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_bank_error_context_is_extended(self):
        bank = TopicOutageBank(failing_topic="Cells", error=BankUnavailable("pool exhausted", {"pool": "primary"}))

        with pytest.raises(BankUnavailable) as exc_info:
            await ExamAssembler(bank).assemble([remembering(1)], [mcq_section(1, 1)])

        context = exc_info.value.context
        assert context["pool"] == "primary"
        assert context["section_id"] == "A"
        assert context["requirement_index"] == 0

    @pytest.mark.asyncio
    async def test_template_pool_exhausted(self):
        assembler = ExamAssembler(InMemoryItemBank())
        with pytest.raises(ShortfallUnrecoverable) as exc_info:
            await assembler.assemble([remembering(25, knowledge_dimension="factual")], [mcq_section(1, 25)])

        err = exc_info.value
        assert err.section_id == "A"
        assert err.requirement_index == 0
        assert err.requested == 25
        assert err.missing >= 5
        assert exc_info.value.history[-1] == S.FAILED

    @pytest.mark.asyncio
    async def test_persist_failures_are_warnings(self, cell_items):
        assembler = ExamAssembler(ReadOnlyBank(cell_items))

        result = await assembler.assemble([remembering(4)], [mcq_section(1, 4)])

        assert result.total_items == 4
        assert any("not saved" in w for w in result.warnings)
        assert result.ordered_items[3].item.id is None
        assert result.history[-1] == S.DONE
