"""
Step 4a — Compatibility Resolver

Pure lookups over the Bloom level × knowledge dimension grid:
- which answer shapes are pedagogically valid for a cell
- the structural contract each answer shape carries
- the default shape for a level when an item declares none
"""

import logging
from typing import Dict, List, NamedTuple

from assembly.taxonomy import (
    AnswerShape, CognitiveLevel, KnowledgeDimension,
    lookup_dimension, lookup_level,
)

log = logging.getLogger("assembly.compatibility")

L = CognitiveLevel
D = KnowledgeDimension
S = AnswerShape

# Every cell is non-empty; order is preference order.
COMPATIBILITY_MAP: Dict[CognitiveLevel, Dict[KnowledgeDimension, List[AnswerShape]]] = {
    L.REMEMBERING: {
        D.FACTUAL:       [S.DEFINITION],
        D.CONCEPTUAL:    [S.DEFINITION, S.EXPLANATION],
        D.PROCEDURAL:    [S.DEFINITION, S.PROCEDURE],
        D.METACOGNITIVE: [S.DEFINITION],
    },
    L.UNDERSTANDING: {
        D.FACTUAL:       [S.EXPLANATION],
        D.CONCEPTUAL:    [S.EXPLANATION, S.COMPARISON],
        D.PROCEDURAL:    [S.EXPLANATION, S.PROCEDURE],
        D.METACOGNITIVE: [S.EXPLANATION, S.JUSTIFICATION],
    },
    L.APPLYING: {
        D.FACTUAL:       [S.APPLICATION],
        D.CONCEPTUAL:    [S.APPLICATION, S.COMPARISON],
        D.PROCEDURAL:    [S.PROCEDURE, S.APPLICATION],
        D.METACOGNITIVE: [S.APPLICATION, S.JUSTIFICATION],
    },
    L.ANALYZING: {
        D.FACTUAL:       [S.ANALYSIS],
        D.CONCEPTUAL:    [S.COMPARISON, S.ANALYSIS],
        D.PROCEDURAL:    [S.ANALYSIS, S.PROCEDURE],
        D.METACOGNITIVE: [S.ANALYSIS, S.EVALUATION],
    },
    L.EVALUATING: {
        D.FACTUAL:       [S.EVALUATION],
        D.CONCEPTUAL:    [S.EVALUATION, S.JUSTIFICATION],
        D.PROCEDURAL:    [S.EVALUATION, S.JUSTIFICATION],
        D.METACOGNITIVE: [S.EVALUATION, S.JUSTIFICATION],
    },
    L.CREATING: {
        D.FACTUAL:       [S.CONSTRUCTION],
        D.CONCEPTUAL:    [S.DESIGN, S.CONSTRUCTION],
        D.PROCEDURAL:    [S.DESIGN, S.CONSTRUCTION],
        D.METACOGNITIVE: [S.DESIGN, S.JUSTIFICATION],
    },
}


class ShapeContract(NamedTuple):
    requirement: str
    structural_rule: str
    required_elements: List[str]
    forbidden_phrases: List[str]


SHAPE_CONTRACTS: Dict[AnswerShape, ShapeContract] = {
    S.DEFINITION: ShapeContract(
        "State what something IS: terminology, facts, specific details.",
        "Direct statement of meaning or identification. May use listing.",
        ["clear statement of what something is"],
        [],
    ),
    S.EXPLANATION: ShapeContract(
        "Describe HOW or WHY something works, occurs, or is connected.",
        "Must show cause-effect or mechanism. Cannot merely enumerate.",
        ["cause-effect relationship", "mechanism description"],
        ["include", "such as"],
    ),
    S.COMPARISON: ShapeContract(
        "Explicitly compare at least TWO elements. State BOTH similarities AND differences.",
        "Must mention Element A vs Element B. Cannot list features of only one.",
        ["at least two elements", "similarities", "differences"],
        ["include", "such as", "factors"],
    ),
    S.PROCEDURE: ShapeContract(
        "Outline ordered STEPS or PROCESSES to accomplish something.",
        "Must be sequential (Step 1, Step 2...). Cannot be an unordered list.",
        ["numbered/ordered steps", "sequence indicators"],
        ["include", "such as"],
    ),
    S.APPLICATION: ShapeContract(
        "USE knowledge to solve a new problem or address a specific scenario.",
        "Must reference the specific scenario. Cannot be abstract.",
        ["scenario reference", "applied solution"],
        ["include", "such as", "factors are"],
    ),
    S.EVALUATION: ShapeContract(
        "Make a JUDGMENT based on criteria. State whether something is effective, valid, or optimal.",
        "Must contain a verdict (better/worse, effective/ineffective). Cannot merely describe.",
        ["verdict/judgment", "criteria used", "ranking or rating"],
        ["include", "such as", "factors"],
    ),
    S.JUSTIFICATION: ShapeContract(
        "Provide REASONS and EVIDENCE for a position, decision, or approach.",
        'Must contain "because", "therefore", "this works because". Cannot merely list points.',
        ["position statement", "supporting reasons", "evidence"],
        ["include", "such as"],
    ),
    S.ANALYSIS: ShapeContract(
        "BREAK DOWN information into components and explain their RELATIONSHIPS.",
        "Must identify parts AND how they interact. Cannot list parts without relationships.",
        ["component identification", "relationship explanation"],
        ["include", "such as", "key factors"],
    ),
    S.DESIGN: ShapeContract(
        "CREATE a plan, blueprint, or specification for something new.",
        "Must have structure (sections, components) and purpose. Cannot be abstract description.",
        ["structured plan", "purpose statement", "component specifications"],
        ["include", "such as"],
    ),
    S.CONSTRUCTION: ShapeContract(
        "BUILD or PRODUCE something original and concrete.",
        "Must be a tangible output (example, prototype, solution). Cannot be theoretical.",
        ["concrete output", "original creation"],
        ["include"],
    ),
}

DEFAULT_SHAPE_FOR_LEVEL: Dict[CognitiveLevel, AnswerShape] = {
    L.REMEMBERING:   S.DEFINITION,
    L.UNDERSTANDING: S.EXPLANATION,
    L.APPLYING:      S.APPLICATION,
    L.ANALYZING:     S.ANALYSIS,
    L.EVALUATING:    S.EVALUATION,
    L.CREATING:      S.DESIGN,
}


def get_allowed_answer_shapes(level, dimension) -> List[AnswerShape]:
    """
    Answer shapes valid for a level × dimension cell, in preference order.

    Total: an unknown level resolves to the Understanding row and an unknown
    dimension to the conceptual column (both logged). Never returns empty.
    """
    resolved_level = lookup_level(level)
    if resolved_level is None:
        log.warning(f"[COMPAT] Unknown cognitive level {level!r}, using Understanding row")
        resolved_level = L.UNDERSTANDING
    resolved_dim = lookup_dimension(dimension)
    if resolved_dim is None:
        log.warning(f"[COMPAT] Unknown knowledge dimension {dimension!r}, using conceptual column")
        resolved_dim = D.CONCEPTUAL

    shapes = COMPATIBILITY_MAP.get(resolved_level, {}).get(resolved_dim)
    return list(shapes) if shapes else [S.EXPLANATION]


def is_valid_answer_shape(level, dimension, shape) -> bool:
    try:
        shape = AnswerShape(shape)
    except ValueError:
        return False
    return shape in get_allowed_answer_shapes(level, dimension)


def get_shape_requirement(shape: AnswerShape) -> str:
    contract = SHAPE_CONTRACTS.get(AnswerShape(shape))
    return contract.requirement if contract else ""


def default_shape_for_level(level) -> AnswerShape:
    resolved = lookup_level(level)
    return DEFAULT_SHAPE_FOR_LEVEL.get(resolved, S.EXPLANATION)
