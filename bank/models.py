"""
SQLAlchemy model for the item bank.

One row per authored, imported or generated assessment item. Rows are
soft-deleted (deleted flag) and never removed by the assembler.
"""

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.sql import func

from assembly.schemas import BankItem
from bank.database import Base


class BankItemRecord(Base):
    """
    Classified item. cognitive_level / knowledge_dimension hold the canonical
    labels ("Analyzing", "conceptual"); usage_count drives least-used-first
    selection and last_used_at the optional recency exclusion.
    """
    __tablename__ = "question_bank_items"

    id = Column(Integer, primary_key=True, index=True)
    text = Column(Text, nullable=False)
    item_type = Column(String(32), nullable=False, index=True)
    choices = Column(JSON, nullable=True)
    correct_answer = Column(Text, nullable=False, default="")
    answer = Column(Text, nullable=False, default="")
    topic = Column(String(255), nullable=False, index=True)
    cognitive_level = Column(String(32), nullable=False, index=True)
    knowledge_dimension = Column(String(32), nullable=False, default="conceptual")
    difficulty = Column(String(16), nullable=False, default="medium")
    answer_shape = Column(String(32), nullable=True)
    source = Column(String(16), nullable=False, default="bank")
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    approved = Column(Boolean, nullable=False, default=True)
    deleted = Column(Boolean, nullable=False, default=False)
    classification_confidence = Column(Float, nullable=True)
    quality_score = Column(Float, nullable=True)
    semantic_vector = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<BankItemRecord(id={self.id}, topic='{self.topic}', level='{self.cognitive_level}')>"

    def to_bank_item(self) -> BankItem:
        return BankItem(
            id=self.id,
            text=self.text,
            item_type=self.item_type,
            choices=self.choices or [],
            correct_answer=self.correct_answer or "",
            answer=self.answer or "",
            topic=self.topic,
            cognitive_level=self.cognitive_level,
            knowledge_dimension=self.knowledge_dimension,
            difficulty=self.difficulty,
            answer_shape=self.answer_shape,
            source=self.source,
            usage_count=self.usage_count or 0,
            last_used_at=self.last_used_at,
            approved=self.approved,
            classification_confidence=self.classification_confidence,
            quality_score=self.quality_score,
            semantic_vector=self.semantic_vector,
        )

    @classmethod
    def from_bank_item(cls, item: BankItem) -> "BankItemRecord":
        return cls(
            text=item.text,
            item_type=item.item_type.value,
            choices=list(item.choices),
            correct_answer=item.correct_answer,
            answer=item.answer,
            topic=item.topic,
            cognitive_level=item.cognitive_level.value,
            knowledge_dimension=item.knowledge_dimension.value,
            difficulty=item.difficulty,
            answer_shape=item.answer_shape.value if item.answer_shape else None,
            source=item.source.value,
            usage_count=item.usage_count,
            last_used_at=item.last_used_at,
            approved=item.approved,
            classification_confidence=item.classification_confidence,
            quality_score=item.quality_score,
            semantic_vector=item.semantic_vector,
        )
