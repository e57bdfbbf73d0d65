"""
Classification vocabulary shared by every assembly step.

- Bloom cognitive levels (ordered), knowledge dimensions, answer shapes, item types
- Alias normalisation for free-text labels coming from banks and LLM output
- Curated cognitive operations per level and the concept pool used by the allocator
"""

import enum
import logging
from typing import Dict, List, Optional, Union

log = logging.getLogger("assembly.taxonomy")


class CognitiveLevel(str, enum.Enum):
    """Bloom's revised taxonomy, lowest to highest."""
    REMEMBERING = "Remembering"
    UNDERSTANDING = "Understanding"
    APPLYING = "Applying"
    ANALYZING = "Analyzing"
    EVALUATING = "Evaluating"
    CREATING = "Creating"

    @property
    def rank(self) -> int:
        return list(CognitiveLevel).index(self) + 1


class KnowledgeDimension(str, enum.Enum):
    FACTUAL = "factual"
    CONCEPTUAL = "conceptual"
    PROCEDURAL = "procedural"
    METACOGNITIVE = "metacognitive"


class AnswerShape(str, enum.Enum):
    """Structural form an answer must take."""
    DEFINITION = "definition"
    EXPLANATION = "explanation"
    COMPARISON = "comparison"
    PROCEDURE = "procedure"
    APPLICATION = "application"
    EVALUATION = "evaluation"
    JUSTIFICATION = "justification"
    ANALYSIS = "analysis"
    DESIGN = "design"
    CONSTRUCTION = "construction"


class ItemType(str, enum.Enum):
    MCQ = "mcq"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"


HIGHER_ORDER_LEVELS = frozenset({
    CognitiveLevel.ANALYZING,
    CognitiveLevel.EVALUATING,
    CognitiveLevel.CREATING,
})


# ─── Aliases ──────────────────────────────────────────────────────────────────

LEVEL_ALIASES: Dict[str, CognitiveLevel] = {
    "remembering":   CognitiveLevel.REMEMBERING,
    "remember":      CognitiveLevel.REMEMBERING,
    "recall":        CognitiveLevel.REMEMBERING,
    "knowledge":     CognitiveLevel.REMEMBERING,
    "understanding": CognitiveLevel.UNDERSTANDING,
    "understand":    CognitiveLevel.UNDERSTANDING,
    "comprehend":    CognitiveLevel.UNDERSTANDING,
    "comprehension": CognitiveLevel.UNDERSTANDING,
    "applying":      CognitiveLevel.APPLYING,
    "apply":         CognitiveLevel.APPLYING,
    "application":   CognitiveLevel.APPLYING,
    "analyzing":     CognitiveLevel.ANALYZING,
    "analysing":     CognitiveLevel.ANALYZING,
    "analyze":       CognitiveLevel.ANALYZING,
    "analyse":       CognitiveLevel.ANALYZING,
    "analysis":      CognitiveLevel.ANALYZING,
    "evaluating":    CognitiveLevel.EVALUATING,
    "evaluate":      CognitiveLevel.EVALUATING,
    "evaluation":    CognitiveLevel.EVALUATING,
    "creating":      CognitiveLevel.CREATING,
    "create":        CognitiveLevel.CREATING,
    "synthesis":     CognitiveLevel.CREATING,
}

DIMENSION_ALIASES: Dict[str, KnowledgeDimension] = {
    "factual":       KnowledgeDimension.FACTUAL,
    "fact":          KnowledgeDimension.FACTUAL,
    "conceptual":    KnowledgeDimension.CONCEPTUAL,
    "concept":       KnowledgeDimension.CONCEPTUAL,
    "procedural":    KnowledgeDimension.PROCEDURAL,
    "procedure":     KnowledgeDimension.PROCEDURAL,
    "metacognitive": KnowledgeDimension.METACOGNITIVE,
    "meta":          KnowledgeDimension.METACOGNITIVE,
}

ITEM_TYPE_ALIASES: Dict[str, ItemType] = {
    "mcq":             ItemType.MCQ,
    "multiple_choice": ItemType.MCQ,
    "true_false":      ItemType.TRUE_FALSE,
    "truefalse":       ItemType.TRUE_FALSE,
    "tf":              ItemType.TRUE_FALSE,
    "short_answer":    ItemType.SHORT_ANSWER,
    "fill_blank":      ItemType.SHORT_ANSWER,
    "fill_in":         ItemType.SHORT_ANSWER,
    "identification":  ItemType.SHORT_ANSWER,
    "essay":           ItemType.ESSAY,
}


def _key(raw: str) -> str:
    return raw.strip().lower().replace("-", "_").replace(" ", "_")


def lookup_level(raw) -> Optional[CognitiveLevel]:
    if isinstance(raw, CognitiveLevel):
        return raw
    if not isinstance(raw, str):
        return None
    return LEVEL_ALIASES.get(_key(raw))


def lookup_dimension(raw) -> Optional[KnowledgeDimension]:
    if isinstance(raw, KnowledgeDimension):
        return raw
    if not isinstance(raw, str):
        return None
    return DIMENSION_ALIASES.get(_key(raw))


def parse_level(raw: Union[str, CognitiveLevel]) -> CognitiveLevel:
    """Strict: unknown labels raise ValueError."""
    level = lookup_level(raw)
    if level is None:
        raise ValueError(f"Unknown cognitive level: {raw!r}")
    return level


def parse_dimension(raw: Union[str, KnowledgeDimension]) -> KnowledgeDimension:
    """Strict: unknown labels raise ValueError."""
    dimension = lookup_dimension(raw)
    if dimension is None:
        raise ValueError(f"Unknown knowledge dimension: {raw!r}")
    return dimension


def parse_item_type(raw: Union[str, ItemType]) -> ItemType:
    if isinstance(raw, ItemType):
        return raw
    item_type = ITEM_TYPE_ALIASES.get(_key(raw)) if isinstance(raw, str) else None
    if item_type is None:
        raise ValueError(f"Unknown item type: {raw!r}")
    return item_type


def coerce_level(raw) -> CognitiveLevel:
    """Lenient: unknown labels fall back to Understanding with a warning."""
    level = lookup_level(raw)
    if level is None:
        log.warning(f"[TAXONOMY] Unknown cognitive level {raw!r}, defaulting to Understanding")
        return CognitiveLevel.UNDERSTANDING
    return level


def coerce_dimension(raw) -> KnowledgeDimension:
    """Lenient: unknown labels fall back to conceptual with a warning."""
    dimension = lookup_dimension(raw)
    if dimension is None:
        log.warning(f"[TAXONOMY] Unknown knowledge dimension {raw!r}, defaulting to conceptual")
        return KnowledgeDimension.CONCEPTUAL
    return dimension


# ─── Cognitive operations ─────────────────────────────────────────────────────

COGNITIVE_OPERATIONS: Dict[CognitiveLevel, List[str]] = {
    CognitiveLevel.REMEMBERING:   ["recall", "recognize", "identify", "list", "name"],
    CognitiveLevel.UNDERSTANDING: ["explain", "summarize", "interpret", "classify", "infer"],
    CognitiveLevel.APPLYING:      ["execute", "implement", "solve", "use", "demonstrate"],
    CognitiveLevel.ANALYZING:     ["differentiate", "organize", "attribute", "deconstruct", "compare"],
    CognitiveLevel.EVALUATING:    ["check", "critique", "judge", "prioritize", "justify", "defend"],
    CognitiveLevel.CREATING:      ["generate", "plan", "produce", "design", "construct", "formulate"],
}

# Phrases the generator must avoid at higher-order levels.
FORBIDDEN_PROMPT_PATTERNS: List[str] = ["include", "includes", "such as", "key factors include"]


def forbidden_patterns_for(level: CognitiveLevel) -> List[str]:
    return list(FORBIDDEN_PROMPT_PATTERNS) if level in HIGHER_ORDER_LEVELS else []


# ─── Concept pool ─────────────────────────────────────────────────────────────

CONCEPT_POOLS: Dict[str, List[str]] = {
    "_default": [
        "key factors",
        "trade-offs",
        "limitations",
        "decision criteria",
        "real-world constraints",
        "failure scenarios",
        "optimization priorities",
        "dependencies",
        "relationships",
        "components",
        "processes",
        "outcomes",
        "preconditions",
        "best practices",
        "anti-patterns",
        "edge cases",
        "performance considerations",
        "security implications",
        "scalability aspects",
        "maintenance concerns",
    ],
}


def get_concept_pool(topic: str) -> List[str]:
    """Topic-specific pool when one is registered, else the default pool."""
    return CONCEPT_POOLS.get(topic.strip().lower(), CONCEPT_POOLS["_default"])
