"""
Step 4b — Intent Registry

Session-scoped allocator of non-repeating question intents:
- intents:    topic | level | dimension | answer shape
- concepts:   per topic
- operations: per topic + level (curated Bloom verbs)
- pairs:      concept :: operation

Serialisable to a RegistrySnapshot; snapshots merge by set union so that
state returned by a remote generator can be folded back in.
"""

import logging
from typing import Dict, List, Optional, Set, Union

from assembly.compatibility import get_allowed_answer_shapes
from assembly.schemas import ConceptOperation, QuestionIntent, RegistrySnapshot
from assembly.taxonomy import (
    COGNITIVE_OPERATIONS, AnswerShape, CognitiveLevel, KnowledgeDimension,
    coerce_level, get_concept_pool,
)

log = logging.getLogger("assembly.intent_registry")


def _topic_key(topic: str) -> str:
    return topic.strip().lower()


def _operation_key(topic: str, level) -> str:
    return f"{_topic_key(topic)}_{coerce_level(level).value.lower()}"


def _pair_key(concept: str, operation: str) -> str:
    return f"{concept.strip().lower()}::{operation.strip().lower()}"


class IntentRegistry:
    """Tracks everything already allocated in one generation session."""

    def __init__(self):
        self._used_intents: Set[str] = set()
        self._used_concepts: Dict[str, Set[str]] = {}
        self._used_operations: Dict[str, Set[str]] = {}
        self._used_pairs: Set[str] = set()

    # ── Intents ───────────────────────────────────────────────────────────────

    def is_used(self, intent: QuestionIntent) -> bool:
        return intent.key() in self._used_intents

    def mark_used(self, intent: QuestionIntent) -> None:
        self._used_intents.add(intent.key())

    def get_available_answer_shapes(self, topic: str, level, dimension) -> List[AnswerShape]:
        """Compatible shapes for the cell minus those already used for this topic."""
        level = coerce_level(level)
        available = []
        for shape in get_allowed_answer_shapes(level, dimension):
            intent = QuestionIntent(
                topic=topic,
                cognitive_level=level,
                knowledge_dimension=dimension,
                answer_shape=shape,
            )
            if not self.is_used(intent):
                available.append(shape)
        return available

    # ── Concepts / operations / pairs ─────────────────────────────────────────

    def is_concept_used(self, topic: str, concept: str) -> bool:
        return concept.strip().lower() in self._used_concepts.get(_topic_key(topic), set())

    def mark_concept_used(self, topic: str, concept: str) -> None:
        self._used_concepts.setdefault(_topic_key(topic), set()).add(concept.strip().lower())

    def get_used_concepts(self, topic: str) -> List[str]:
        return sorted(self._used_concepts.get(_topic_key(topic), set()))

    def is_operation_used(self, topic: str, level, operation: str) -> bool:
        return operation.strip().lower() in self._used_operations.get(_operation_key(topic, level), set())

    def mark_operation_used(self, topic: str, level, operation: str) -> None:
        self._used_operations.setdefault(_operation_key(topic, level), set()).add(operation.strip().lower())

    def get_used_operations(self, topic: str, level) -> List[str]:
        return sorted(self._used_operations.get(_operation_key(topic, level), set()))

    def is_pair_used(self, concept: str, operation: str) -> bool:
        return _pair_key(concept, operation) in self._used_pairs

    def mark_pair_used(self, concept: str, operation: str) -> None:
        self._used_pairs.add(_pair_key(concept, operation))

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def copy(self) -> "IntentRegistry":
        return IntentRegistry.from_snapshot(self.to_snapshot())

    def clear(self) -> None:
        self._used_intents.clear()
        self._used_concepts.clear()
        self._used_operations.clear()
        self._used_pairs.clear()

    def summary(self) -> Dict[str, int]:
        return {
            "intents": len(self._used_intents),
            "concepts": sum(len(v) for v in self._used_concepts.values()),
            "operations": sum(len(v) for v in self._used_operations.values()),
            "pairs": len(self._used_pairs),
        }

    def to_snapshot(self) -> RegistrySnapshot:
        return RegistrySnapshot(
            used_intents=sorted(self._used_intents),
            used_concepts={k: sorted(v) for k, v in sorted(self._used_concepts.items()) if v},
            used_operations={k: sorted(v) for k, v in sorted(self._used_operations.items()) if v},
            used_concept_operation_pairs=sorted(self._used_pairs),
        )

    @classmethod
    def from_snapshot(cls, snapshot: Optional[RegistrySnapshot]) -> "IntentRegistry":
        registry = cls()
        if snapshot is not None:
            registry.merge(snapshot)
        return registry

    def merge(self, other: Union["IntentRegistry", RegistrySnapshot]) -> "IntentRegistry":
        """Fold another registry or snapshot into this one (set union)."""
        snapshot = other.to_snapshot() if isinstance(other, IntentRegistry) else other
        self._used_intents.update(snapshot.used_intents)
        for topic, concepts in snapshot.used_concepts.items():
            self._used_concepts.setdefault(topic, set()).update(concepts)
        for key, operations in snapshot.used_operations.items():
            self._used_operations.setdefault(key, set()).update(operations)
        self._used_pairs.update(snapshot.used_concept_operation_pairs)
        return self


def merge_snapshots(a: RegistrySnapshot, b: RegistrySnapshot) -> RegistrySnapshot:
    """Pure union of two snapshots. Commutative, associative, idempotent."""
    return IntentRegistry.from_snapshot(a).merge(b).to_snapshot()


# ─── Selection ────────────────────────────────────────────────────────────────

def select_next_intent(
    registry: IntentRegistry,
    topic: str,
    level: CognitiveLevel,
    dimension: KnowledgeDimension,
) -> Optional[QuestionIntent]:
    """First unused compatible intent, or None when the cell is exhausted."""
    available = registry.get_available_answer_shapes(topic, level, dimension)
    if not available:
        log.warning(
            f"[INTENT] No available answer shapes for {topic}/{getattr(level, 'value', level)}/"
            f"{getattr(dimension, 'value', dimension)}; all valid shapes have been used"
        )
        return None
    return QuestionIntent(
        topic=topic,
        cognitive_level=level,
        knowledge_dimension=dimension,
        answer_shape=available[0],
    )


def select_multiple_intents(
    registry: IntentRegistry,
    topic: str,
    level: CognitiveLevel,
    dimension: KnowledgeDimension,
    count: int,
) -> List[QuestionIntent]:
    """
    Up to `count` distinct intents, chosen against a copy of the registry.
    The real registry is untouched until the caller marks intents used.
    """
    temp = registry.copy()
    intents: List[QuestionIntent] = []
    for _ in range(count):
        intent = select_next_intent(temp, topic, level, dimension)
        if intent is None:
            log.warning(f"[INTENT] Only {len(intents)} intents available out of {count} requested for {topic}")
            break
        intents.append(intent)
        temp.mark_used(intent)
    return intents


def select_next_concept_and_operation(
    registry: IntentRegistry,
    topic: str,
    level: CognitiveLevel,
) -> Optional[ConceptOperation]:
    """First concept × operation where the concept, the operation and the pair are all unused."""
    level = coerce_level(level)
    for concept in get_concept_pool(topic):
        if registry.is_concept_used(topic, concept):
            continue
        for operation in COGNITIVE_OPERATIONS[level]:
            if registry.is_operation_used(topic, level, operation):
                continue
            if registry.is_pair_used(concept, operation):
                continue
            return ConceptOperation(concept=concept, operation=operation)
    return None


def allocate_concept_and_operation(
    registry: IntentRegistry,
    topic: str,
    level: CognitiveLevel,
) -> Optional[ConceptOperation]:
    """Select and immediately mark a concept/operation pair."""
    chosen = select_next_concept_and_operation(registry, topic, level)
    if chosen is None:
        return None
    registry.mark_concept_used(topic, chosen.concept)
    registry.mark_operation_used(topic, level, chosen.operation)
    registry.mark_pair_used(chosen.concept, chosen.operation)
    return chosen
