"""
Pydantic schemas for the exam assembly pipeline.

Inputs:        Requirement (specification matrix row), ExamSection (layout)
Allocation:    QuestionIntent, ConceptOperation, IntentPayload, QuestionFingerprint
Persistence:   BankItem, RegistrySnapshot
Generation:    GenerationRequest → GenerationResponse[GeneratedCandidate]
Output:        SectionedItem, AnswerKeyEntry, SectionResult, AssemblyResult (+ AssemblyState)
"""

import enum
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from assembly.taxonomy import (
    AnswerShape, CognitiveLevel, ItemType, KnowledgeDimension,
    coerce_dimension, coerce_level, parse_dimension, parse_item_type, parse_level,
)


class ItemSource(str, enum.Enum):
    BANK = "bank"
    AI = "ai"
    TEMPLATE = "template"


# ─── Inputs ───────────────────────────────────────────────────────────────────

class Requirement(BaseModel):
    """One row of the specification matrix. Taxonomy labels are validated strictly."""
    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., min_length=1)
    cognitive_level: CognitiveLevel
    knowledge_dimension: Optional[KnowledgeDimension] = None
    difficulty: str = "medium"
    count: int = Field(..., ge=0)

    @field_validator("cognitive_level", mode="before")
    @classmethod
    def _level(cls, v):
        return parse_level(v)

    @field_validator("knowledge_dimension", mode="before")
    @classmethod
    def _dimension(cls, v):
        return None if v is None else parse_dimension(v)

    @field_validator("difficulty")
    @classmethod
    def _difficulty(cls, v: str) -> str:
        return v.strip().lower()


class ExamSection(BaseModel):
    """
    A contiguous numbered block of one item type.

    Essay sections may group their slot range into fewer essays
    (essay_group_count); each essay then spans several numbers.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    title: str = ""
    item_type: ItemType
    start_number: int = Field(..., ge=1)
    end_number: int
    points_per_item: float = Field(1, ge=0)
    essay_group_count: Optional[int] = None
    instruction: str = ""

    @field_validator("item_type", mode="before")
    @classmethod
    def _item_type(cls, v):
        return parse_item_type(v)

    @model_validator(mode="after")
    def _check_range(self):
        if self.end_number < self.start_number:
            raise ValueError(f"Section {self.id}: end_number {self.end_number} < start_number {self.start_number}")
        if self.essay_group_count is not None:
            if self.item_type != ItemType.ESSAY:
                raise ValueError(f"Section {self.id}: essay_group_count only applies to essay sections")
            if not 1 <= self.essay_group_count <= self.slot_count:
                raise ValueError(f"Section {self.id}: essay_group_count must be within 1..{self.slot_count}")
        return self

    @property
    def slot_count(self) -> int:
        return self.end_number - self.start_number + 1

    @property
    def item_count(self) -> int:
        if self.essay_group_count is not None:
            return self.essay_group_count
        return self.slot_count

    @property
    def total_points(self) -> float:
        return self.item_count * self.points_per_item


class SectionAssignment(BaseModel):
    """Share of one requirement placed into one section."""
    requirement_index: int
    requirement: Requirement
    count: int


# ─── Allocation ───────────────────────────────────────────────────────────────

class QuestionIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: str
    cognitive_level: CognitiveLevel
    knowledge_dimension: KnowledgeDimension
    answer_shape: AnswerShape

    def key(self) -> str:
        return "|".join([
            self.topic.strip().lower(),
            self.cognitive_level.value,
            self.knowledge_dimension.value,
            self.answer_shape.value,
        ])


class ConceptOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    concept: str
    operation: str


class IntentPayload(BaseModel):
    """Per-question constraints attached to a generation request."""
    intent: QuestionIntent
    answer_shape: AnswerShape
    answer_shape_requirement: str
    assigned_concept: Optional[str] = None
    assigned_operation: Optional[str] = None
    forbidden_patterns: List[str] = Field(default_factory=list)


class QuestionFingerprint(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: str
    concept: str
    answer_shape: AnswerShape
    cognitive_level: CognitiveLevel
    knowledge_dimension: KnowledgeDimension


class RegistrySnapshot(BaseModel):
    """Serialisable intent-registry state. Lists are kept sorted."""
    used_intents: List[str] = Field(default_factory=list)
    used_concepts: Dict[str, List[str]] = Field(default_factory=dict)
    used_operations: Dict[str, List[str]] = Field(default_factory=dict)
    used_concept_operation_pairs: List[str] = Field(default_factory=list)


# ─── Bank items ───────────────────────────────────────────────────────────────

class BankItem(BaseModel):
    """
    A classified assessment item. Metadata from banks and generators is
    untrusted, so level/dimension are coerced leniently (with a warning).
    """
    id: Optional[str] = None
    text: str
    item_type: ItemType
    choices: List[str] = Field(default_factory=list)
    correct_answer: str = ""
    answer: str = ""
    topic: str
    cognitive_level: CognitiveLevel
    difficulty: str = "medium"
    knowledge_dimension: KnowledgeDimension = KnowledgeDimension.CONCEPTUAL
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    approved: bool = True
    answer_shape: Optional[AnswerShape] = None
    classification_confidence: Optional[float] = None
    quality_score: Optional[float] = None
    source: ItemSource = ItemSource.BANK
    semantic_vector: Optional[List[float]] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return None if v is None else str(v)

    @field_validator("item_type", mode="before")
    @classmethod
    def _item_type(cls, v):
        return parse_item_type(v)

    @field_validator("cognitive_level", mode="before")
    @classmethod
    def _level(cls, v):
        return coerce_level(v)

    @field_validator("knowledge_dimension", mode="before")
    @classmethod
    def _dimension(cls, v):
        return coerce_dimension(v)

    @field_validator("answer_shape", mode="before")
    @classmethod
    def _shape(cls, v):
        if v is None or isinstance(v, AnswerShape):
            return v
        try:
            return AnswerShape(str(v).strip().lower())
        except ValueError:
            return None


# ─── Generation service contract ──────────────────────────────────────────────

class GeneratedCandidate(BaseModel):
    """Raw item as returned by the generation service (untrusted)."""
    text: str
    answer: str = ""
    correct_answer: str = ""
    choices: List[str] = Field(default_factory=list)
    answer_shape: Optional[str] = None
    targeted_concept: Optional[str] = None
    cognitive_operation: Optional[str] = None
    rubric_points: List[str] = Field(default_factory=list)


class GenerationRequest(BaseModel):
    topic: str
    cognitive_level: CognitiveLevel
    knowledge_dimension: KnowledgeDimension
    difficulty: str
    count: int = Field(..., ge=1)
    item_type: ItemType
    intents: List[IntentPayload] = Field(default_factory=list)
    registry_snapshot: Optional[RegistrySnapshot] = None


class GenerationResponse(BaseModel):
    questions: List[GeneratedCandidate] = Field(default_factory=list)
    updated_registry_snapshot: Optional[RegistrySnapshot] = None


# ─── Output ───────────────────────────────────────────────────────────────────

class SectionedItem(BaseModel):
    question_number: int
    section_id: str
    item: BankItem
    points: float
    requirement_index: int


class AnswerKeyEntry(BaseModel):
    question_number: int
    display_number: str                  # "7" or "31-35" for grouped essays
    item_id: Optional[str] = None
    correct_answer: str
    section_id: str
    section_label: str
    item_type: ItemType
    points: float


class SectionResult(BaseModel):
    section: ExamSection
    items: List[SectionedItem] = Field(default_factory=list)

    @computed_field
    @property
    def item_count(self) -> int:
        return len(self.items)

    @computed_field
    @property
    def total_points(self) -> float:
        return sum(i.points for i in self.items)


class AssemblyState(str, enum.Enum):
    START = "start"
    DISTRIBUTE = "distribute"
    FETCH_BANK = "fetch_bank"
    FILTER = "filter"
    SHORTFALL = "shortfall"
    MERGE = "merge"
    VERIFY_TOTALS = "verify_totals"
    PERSIST = "persist"
    DONE = "done"
    FAILED = "failed"


class AssemblyResult(BaseModel):
    sections: List[SectionResult]
    ordered_items: List[SectionedItem]
    answer_key: List[AnswerKeyEntry]
    total_items: int
    total_points: float
    registry_snapshot: RegistrySnapshot
    warnings: List[str] = Field(default_factory=list)
    source_counts: Dict[str, int] = Field(default_factory=dict)
    history: List[AssemblyState] = Field(default_factory=list)
