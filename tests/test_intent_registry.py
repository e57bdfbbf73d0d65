"""
Intent registry tests: intent exhaustion, concept/operation allocation,
snapshot merge laws.

Run with: pytest tests/test_intent_registry.py -v
"""

from assembly.intent_registry import (
    IntentRegistry,
    allocate_concept_and_operation,
    merge_snapshots,
    select_multiple_intents,
    select_next_concept_and_operation,
    select_next_intent,
)
from assembly.schemas import QuestionIntent, RegistrySnapshot
from assembly.taxonomy import AnswerShape, CognitiveLevel, KnowledgeDimension

L = CognitiveLevel
D = KnowledgeDimension


# ============== Intent Tests ==============

class TestIntentSelection:
    """Intents never repeat within a session"""

    def test_cell_exhausts_in_preference_order(self):
        registry = IntentRegistry()
        first = select_next_intent(registry, "Cells", L.ANALYZING, D.CONCEPTUAL)
        assert first.answer_shape == AnswerShape.COMPARISON
        registry.mark_used(first)

        second = select_next_intent(registry, "Cells", L.ANALYZING, D.CONCEPTUAL)
        assert second.answer_shape == AnswerShape.ANALYSIS
        registry.mark_used(second)

        assert select_next_intent(registry, "Cells", L.ANALYZING, D.CONCEPTUAL) is None

    def test_topics_are_independent(self):
        registry = IntentRegistry()
        registry.mark_used(select_next_intent(registry, "Cells", L.REMEMBERING, D.FACTUAL))
        assert select_next_intent(registry, "Cells", L.REMEMBERING, D.FACTUAL) is None
        assert select_next_intent(registry, "Genetics", L.REMEMBERING, D.FACTUAL) is not None

    def test_topic_case_is_ignored(self):
        registry = IntentRegistry()
        registry.mark_used(select_next_intent(registry, "Cells", L.REMEMBERING, D.FACTUAL))
        assert select_next_intent(registry, "CELLS", L.REMEMBERING, D.FACTUAL) is None

    def test_select_multiple_leaves_registry_untouched(self):
        registry = IntentRegistry()
        intents = select_multiple_intents(registry, "Cells", L.ANALYZING, D.CONCEPTUAL, 5)
        assert [i.answer_shape for i in intents] == [AnswerShape.COMPARISON, AnswerShape.ANALYSIS]
        assert registry.summary()["intents"] == 0
        assert not any(registry.is_used(i) for i in intents)

    def test_available_shapes_shrink(self):
        registry = IntentRegistry()
        registry.mark_used(QuestionIntent(
            topic="Cells", cognitive_level=L.UNDERSTANDING,
            knowledge_dimension=D.CONCEPTUAL, answer_shape=AnswerShape.EXPLANATION,
        ))
        assert registry.get_available_answer_shapes("Cells", L.UNDERSTANDING, D.CONCEPTUAL) == [AnswerShape.COMPARISON]


# ============== Concept / Operation Tests ==============

class TestConceptOperation:
    def test_allocation_walks_pool_and_operations(self):
        registry = IntentRegistry()
        first = allocate_concept_and_operation(registry, "Cells", L.ANALYZING)
        assert (first.concept, first.operation) == ("key factors", "differentiate")
        second = allocate_concept_and_operation(registry, "Cells", L.ANALYZING)
        assert (second.concept, second.operation) == ("trade-offs", "organize")

        assert registry.is_concept_used("cells", "Key Factors")
        assert registry.is_operation_used("Cells", "analyse", "differentiate")
        assert registry.is_pair_used("key factors", "differentiate")

    def test_select_does_not_mark(self):
        registry = IntentRegistry()
        select_next_concept_and_operation(registry, "Cells", L.APPLYING)
        assert registry.get_used_concepts("Cells") == []

    def test_operations_are_scoped_per_level(self):
        registry = IntentRegistry()
        allocate_concept_and_operation(registry, "Cells", L.APPLYING)
        chosen = select_next_concept_and_operation(registry, "Cells", L.UNDERSTANDING)
        assert chosen.operation == "explain"
        assert chosen.concept == "trade-offs"

    def test_operations_exhaust(self):
        registry = IntentRegistry()
        picks = [allocate_concept_and_operation(registry, "Cells", L.REMEMBERING) for _ in range(6)]
        assert all(p is not None for p in picks[:5])
        assert picks[5] is None
        assert registry.get_used_operations("Cells", L.REMEMBERING) == ["identify", "list", "name", "recall", "recognize"]


# ============== Snapshot Tests ==============

def _registry_with(topic, level, dimension):
    registry = IntentRegistry()
    registry.mark_used(select_next_intent(registry, topic, level, dimension))
    allocate_concept_and_operation(registry, topic, level)
    return registry


class TestSnapshots:
    """Snapshots round-trip and merge as sets"""

    def test_round_trip(self):
        registry = _registry_with("Cells", L.EVALUATING, D.PROCEDURAL)
        snapshot = registry.to_snapshot()
        restored = IntentRegistry.from_snapshot(snapshot)
        assert restored.to_snapshot() == snapshot
        assert restored.summary() == {"intents": 1, "concepts": 1, "operations": 1, "pairs": 1}

    def test_snapshot_survives_json(self):
        snapshot = _registry_with("Cells", L.CREATING, D.CONCEPTUAL).to_snapshot()
        assert RegistrySnapshot.model_validate_json(snapshot.model_dump_json()) == snapshot

    def test_merge_laws(self):
        a = _registry_with("Cells", L.ANALYZING, D.CONCEPTUAL).to_snapshot()
        b = _registry_with("Genetics", L.APPLYING, D.FACTUAL).to_snapshot()
        c = _registry_with("Cells", L.CREATING, D.METACOGNITIVE).to_snapshot()

        assert merge_snapshots(a, b) == merge_snapshots(b, a)
        assert merge_snapshots(merge_snapshots(a, b), c) == merge_snapshots(a, merge_snapshots(b, c))
        assert merge_snapshots(a, a) == a

    def test_merge_into_registry(self):
        registry = _registry_with("Cells", L.ANALYZING, D.CONCEPTUAL)
        other = _registry_with("Cells", L.ANALYZING, D.CONCEPTUAL)
        registry.merge(other)
        assert registry.summary()["intents"] == 1

        registry.merge(RegistrySnapshot(used_intents=["x|Applying|factual|application"]))
        assert registry.summary()["intents"] == 2

    def test_copy_is_independent(self):
        registry = IntentRegistry()
        clone = registry.copy()
        clone.mark_concept_used("Cells", "limitations")
        assert registry.get_used_concepts("Cells") == []

    def test_clear(self):
        registry = _registry_with("Cells", L.ANALYZING, D.CONCEPTUAL)
        registry.clear()
        assert registry.to_snapshot() == RegistrySnapshot()
