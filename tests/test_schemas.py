"""
Schema validation tests: strict requirement labels, lenient bank metadata,
section layout rules.

Run with: pytest tests/test_schemas.py -v
"""

import pytest
from pydantic import ValidationError

from assembly.schemas import BankItem, ExamSection, QuestionIntent, Requirement
from assembly.taxonomy import AnswerShape, CognitiveLevel, ItemType, KnowledgeDimension


# ============== Requirement Tests ==============

class TestRequirement:
    """Specification matrix rows reject unknown labels"""

    def test_alias_is_normalised(self):
        req = Requirement(topic="Cells", cognitive_level="Analyse", count=2)
        assert req.cognitive_level == CognitiveLevel.ANALYZING
        assert req.knowledge_dimension is None

    def test_unknown_level_rejected(self):
        with pytest.raises(ValidationError):
            Requirement(topic="Cells", cognitive_level="Pondering", count=1)

    def test_unknown_dimension_rejected(self):
        with pytest.raises(ValidationError):
            Requirement(topic="Cells", cognitive_level="Applying", knowledge_dimension="spiritual", count=1)

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            Requirement(topic="Cells", cognitive_level="Applying", count=-1)

    def test_zero_count_allowed(self):
        assert Requirement(topic="Cells", cognitive_level="Applying", count=0).count == 0

    def test_difficulty_lowercased(self):
        req = Requirement(topic="Cells", cognitive_level="Applying", difficulty=" Hard ", count=1)
        assert req.difficulty == "hard"


# ============== BankItem Tests ==============

class TestBankItem:
    """Bank metadata is coerced, not rejected"""

    def test_unknown_level_defaults_to_understanding(self, caplog):
        item = BankItem(text="Q", item_type="mcq", topic="Cells", cognitive_level="Pondering")
        assert item.cognitive_level == CognitiveLevel.UNDERSTANDING
        assert "defaulting to Understanding" in caplog.text

    def test_unknown_dimension_defaults_to_conceptual(self):
        item = BankItem(text="Q", item_type="mcq", topic="Cells", cognitive_level="Applying",
                        knowledge_dimension="vibes")
        assert item.knowledge_dimension == KnowledgeDimension.CONCEPTUAL

    def test_invalid_answer_shape_dropped(self):
        item = BankItem(text="Q", item_type="essay", topic="Cells", cognitive_level="Creating",
                        answer_shape="haiku")
        assert item.answer_shape is None

    def test_answer_shape_normalised(self):
        item = BankItem(text="Q", item_type="essay", topic="Cells", cognitive_level="Creating",
                        answer_shape=" Design ")
        assert item.answer_shape == AnswerShape.DESIGN

    def test_numeric_id_becomes_string(self):
        item = BankItem(id=42, text="Q", item_type="tf", topic="Cells", cognitive_level="Remembering")
        assert item.id == "42"
        assert item.item_type == ItemType.TRUE_FALSE

    def test_unknown_item_type_rejected(self):
        with pytest.raises(ValidationError):
            BankItem(text="Q", item_type="crossword", topic="Cells", cognitive_level="Remembering")


# ============== ExamSection Tests ==============

class TestExamSection:
    def test_counts_and_points(self):
        section = ExamSection(id="A", label="Test I", item_type="mcq",
                              start_number=1, end_number=10, points_per_item=2)
        assert section.slot_count == 10
        assert section.item_count == 10
        assert section.total_points == 20

    def test_fill_blank_alias(self):
        section = ExamSection(id="B", label="Test II", item_type="fill_blank", start_number=1, end_number=5)
        assert section.item_type == ItemType.SHORT_ANSWER

    def test_essay_grouping(self):
        section = ExamSection(id="C", label="Test III", item_type="essay",
                              start_number=31, end_number=40, points_per_item=5, essay_group_count=2)
        assert section.slot_count == 10
        assert section.item_count == 2
        assert section.total_points == 10

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            ExamSection(id="A", label="Test I", item_type="mcq", start_number=10, end_number=9)

    def test_grouping_on_non_essay_rejected(self):
        with pytest.raises(ValidationError):
            ExamSection(id="A", label="Test I", item_type="mcq",
                        start_number=1, end_number=10, essay_group_count=2)

    def test_grouping_larger_than_range_rejected(self):
        with pytest.raises(ValidationError):
            ExamSection(id="C", label="Test III", item_type="essay",
                        start_number=1, end_number=3, essay_group_count=4)


class TestQuestionIntent:
    def test_key_is_case_insensitive_on_topic(self):
        a = QuestionIntent(topic="Cells", cognitive_level="Analyzing",
                           knowledge_dimension="conceptual", answer_shape="comparison")
        b = QuestionIntent(topic=" cells ", cognitive_level="Analyzing",
                           knowledge_dimension="conceptual", answer_shape="comparison")
        assert a.key() == b.key() == "cells|Analyzing|conceptual|comparison"
