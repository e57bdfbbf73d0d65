"""
Step 3b — Uniqueness Fingerprint Store

A fingerprint is (topic, concept, answer shape, level, dimension). Two items
collide when the whole tuple matches, or when topic + concept + shape match
regardless of level and dimension.

The concept is pulled from item text by a pluggable ConceptExtractor; the
default one is pattern based.
"""

import re
from typing import Dict, List, Optional, Protocol, Set, Tuple

from pydantic import BaseModel

from assembly.schemas import QuestionFingerprint
from assembly.taxonomy import AnswerShape, coerce_dimension, coerce_level

CONCEPT_MAX_CHARS = 50


class ConceptExtractor(Protocol):
    def extract(self, text: str) -> str:
        ...


class PatternConceptExtractor:
    """Finds the subject a question asks about from its instruction phrasing."""

    PATTERNS = [
        # "key factors of X"
        re.compile(r"(?:key|main|primary|important)\s+(?:factors?|elements?|components?|aspects?)\s+(?:of|in|for)\s+([^?.,]+)", re.I),
        # "what are the X of Y"
        re.compile(r"what\s+(?:are|is)\s+(?:the\s+)?([^?.,]+)", re.I),
        # "how does X affect Y"
        re.compile(r"how\s+(?:does|do|can|should)\s+([^?.,]+)\s+(?:affect|influence|impact)", re.I),
        re.compile(r"compare\s+([^?.,]+)\s+(?:and|with|to)", re.I),
        re.compile(r"differentiate\s+(?:between\s+)?([^?.,]+)", re.I),
        re.compile(r"evaluate\s+(?:the\s+)?([^?.,]+)", re.I),
        re.compile(r"design\s+(?:a\s+)?([^?.,]+)", re.I),
        re.compile(r"(?:explain|describe|analyze|assess|discuss|examine)\s+(?:the\s+)?([^?.,]+)", re.I),
    ]

    STOPWORDS = {"what", "which", "when", "where", "how", "does", "the", "are", "can", "should", "would", "could"}

    def extract(self, text: str) -> str:
        lowered = (text or "").lower()
        for pattern in self.PATTERNS:
            match = pattern.search(lowered)
            if match and match.group(1).strip():
                return match.group(1).strip()[:CONCEPT_MAX_CHARS]

        words = [
            w for w in re.sub(r"[?.,!]", "", lowered).split()
            if len(w) > 3 and w not in self.STOPWORDS
        ]
        return " ".join(words[:3]) or "general"


_default_extractor = PatternConceptExtractor()


def extract_concept(text: str) -> str:
    return _default_extractor.extract(text)


def create_fingerprint(
    text: str,
    topic: str,
    answer_shape,
    cognitive_level,
    knowledge_dimension,
    extractor: Optional[ConceptExtractor] = None,
    concept: Optional[str] = None,
) -> QuestionFingerprint:
    """
    Build a fingerprint for an item. An explicit `concept` (e.g. the concept a
    template was built around) skips extraction.
    """
    if concept is None:
        concept = (extractor or _default_extractor).extract(text)
    return QuestionFingerprint(
        topic=topic.strip().lower(),
        concept=concept.strip().lower(),
        answer_shape=AnswerShape(answer_shape),
        cognitive_level=coerce_level(cognitive_level),
        knowledge_dimension=coerce_dimension(knowledge_dimension),
    )


class UniquenessCheck(BaseModel):
    unique: bool
    reason: Optional[str] = None
    suggestions: Optional[List[AnswerShape]] = None


def _full_key(fp: QuestionFingerprint) -> Tuple[str, str, str, str, str]:
    return (fp.topic, fp.concept, fp.answer_shape.value, fp.cognitive_level.value, fp.knowledge_dimension.value)


class UniquenessStore:
    """Session-scoped set of accepted fingerprints."""

    def __init__(self):
        self._fingerprints: Dict[Tuple[str, ...], QuestionFingerprint] = {}
        # (topic, concept) -> shapes already used
        self._shapes_by_concept: Dict[Tuple[str, str], Set[AnswerShape]] = {}

    def __len__(self) -> int:
        return len(self._fingerprints)

    def is_unique(self, fp: QuestionFingerprint) -> UniquenessCheck:
        if _full_key(fp) in self._fingerprints:
            return UniquenessCheck(
                unique=False,
                reason="Duplicate intent: same topic, concept, answer shape, cognitive level, and knowledge dimension",
            )
        if fp.answer_shape in self._shapes_by_concept.get((fp.topic, fp.concept), set()):
            return UniquenessCheck(
                unique=False,
                reason=f'Redundant question: same topic "{fp.topic}", concept "{fp.concept}", '
                       f'and answer shape "{fp.answer_shape.value}"',
            )
        return UniquenessCheck(unique=True)

    def register(self, fp: QuestionFingerprint) -> None:
        self._fingerprints[_full_key(fp)] = fp
        self._shapes_by_concept.setdefault((fp.topic, fp.concept), set()).add(fp.answer_shape)

    def suggest_alternatives(self, fp: QuestionFingerprint) -> List[AnswerShape]:
        used = self._shapes_by_concept.get((fp.topic, fp.concept), set())
        return [shape for shape in AnswerShape if shape not in used]

    def check_with_suggestions(self, fp: QuestionFingerprint) -> UniquenessCheck:
        result = self.is_unique(fp)
        if not result.unique:
            result.suggestions = self.suggest_alternatives(fp)
        return result

    def all(self) -> List[QuestionFingerprint]:
        return list(self._fingerprints.values())

    def count_for_topic(self, topic: str) -> int:
        key = topic.strip().lower()
        return sum(1 for fp in self._fingerprints.values() if fp.topic == key)

    def concepts_for_topic(self, topic: str) -> List[str]:
        key = topic.strip().lower()
        return sorted({fp.concept for fp in self._fingerprints.values() if fp.topic == key})

    def stats(self) -> Dict[str, object]:
        by_topic: Dict[str, int] = {}
        by_shape: Dict[str, int] = {}
        for fp in self._fingerprints.values():
            by_topic[fp.topic] = by_topic.get(fp.topic, 0) + 1
            by_shape[fp.answer_shape.value] = by_shape.get(fp.answer_shape.value, 0) + 1
        return {"total": len(self._fingerprints), "by_topic": by_topic, "by_answer_shape": by_shape}

    def clear(self) -> None:
        self._fingerprints.clear()
        self._shapes_by_concept.clear()
