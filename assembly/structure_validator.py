"""
Step 5a — Structural Validator

Advisory check on generated answer text against its declared answer shape:
- higher-order levels (Analyzing/Evaluating/Creating) ban generic listing connectives
- each shape bans its own phrases ("include", "such as", ...)
- extended answers must carry the markers their shape implies
  (a verdict for evaluation, two contrasted elements for comparison, ...)

definition answers are exempt. The caller decides to retry or accept.
"""

import re
from typing import Dict, List, Optional, Pattern

from pydantic import BaseModel

from assembly.compatibility import SHAPE_CONTRACTS, is_valid_answer_shape
from assembly.taxonomy import HIGHER_ORDER_LEVELS, AnswerShape, lookup_level

S = AnswerShape


class StructuralVerdict(BaseModel):
    reject: bool
    reason: Optional[str] = None


class ShapeAssignmentCheck(BaseModel):
    valid: bool
    suggestion: Optional[AnswerShape] = None
    reason: Optional[str] = None


# ─── Patterns ─────────────────────────────────────────────────────────────────

FORBIDDEN_LISTING_PATTERNS: List[Pattern] = [
    re.compile(r"\b(include|includes)\b", re.I),
    re.compile(r"\bsuch as\b", re.I),
    re.compile(r"\bfactors\s+(are|include)\b", re.I),
    re.compile(r"\bkey\s+(factors|elements|components)\s+(are|include)\b", re.I),
    re.compile(r"\bthe\s+(main|key|primary)\s+\w+\s+(are|include)\b", re.I),
    re.compile(r"\bthese\s+(are|include)\b", re.I),
    re.compile(r"\bthe following\b", re.I),
    re.compile(r"\bfirst,?\s+second,?\s+third\b", re.I),
]

# Answers shorter than this are keyed responses (a letter, True/False, a term)
# and are only screened for banned phrases.
EXTENDED_ANSWER_MIN_WORDS = 12

REQUIRED_MARKERS: Dict[AnswerShape, Pattern] = {
    S.EVALUATION: re.compile(
        r"\b(better|worse|more|less|effective|ineffective|optimal|suboptimal|preferable|"
        r"superior|inferior|outweighs?|stronger|weaker|valid|invalid|recommend\w*|"
        r"best|worst|appropriate|inappropriate|justified|unjustified)\b",
        re.I,
    ),
    S.COMPARISON: re.compile(
        r"\b(whereas|while|unlike|than|both|versus|vs\.?|compared|contrast|"
        r"differs?|different|similar\w*|however|likewise)\b",
        re.I,
    ),
    S.JUSTIFICATION: re.compile(
        r"\b(because|therefore|since|thus|hence|consequently|as a result|so that|which means)\b",
        re.I,
    ),
    S.PROCEDURE: re.compile(
        r"(\bstep\b|\bfirst(ly)?\b|\bthen\b|\bnext\b|\bfinally\b|\bafter\b|\bbefore\b|"
        r"\bfollowed by\b|(^|\s)\d+[.)]\s)",
        re.I,
    ),
}

VERB_TO_SHAPE: Dict[str, AnswerShape] = {
    # Remembering
    "define": S.DEFINITION, "list": S.DEFINITION, "identify": S.DEFINITION,
    "name": S.DEFINITION, "state": S.DEFINITION, "recall": S.DEFINITION,
    # Understanding
    "explain": S.EXPLANATION, "describe": S.EXPLANATION, "summarize": S.EXPLANATION,
    "interpret": S.EXPLANATION, "paraphrase": S.EXPLANATION,
    # Applying
    "apply": S.APPLICATION, "use": S.APPLICATION, "implement": S.PROCEDURE,
    "solve": S.APPLICATION, "demonstrate": S.PROCEDURE, "execute": S.PROCEDURE,
    # Analyzing
    "compare": S.COMPARISON, "contrast": S.COMPARISON, "differentiate": S.ANALYSIS,
    "distinguish": S.ANALYSIS, "analyze": S.ANALYSIS, "examine": S.ANALYSIS,
    "categorize": S.ANALYSIS, "deconstruct": S.ANALYSIS,
    # Evaluating
    "evaluate": S.EVALUATION, "assess": S.EVALUATION, "justify": S.JUSTIFICATION,
    "critique": S.EVALUATION, "defend": S.JUSTIFICATION, "argue": S.JUSTIFICATION,
    "judge": S.EVALUATION, "prioritize": S.EVALUATION,
    # Creating
    "design": S.DESIGN, "create": S.CONSTRUCTION, "construct": S.CONSTRUCTION,
    "compose": S.CONSTRUCTION, "formulate": S.DESIGN, "generate": S.CONSTRUCTION,
    "develop": S.DESIGN, "plan": S.DESIGN,
}

_VERB_PATTERNS = [(re.compile(rf"\b{verb}\b", re.I), shape) for verb, shape in VERB_TO_SHAPE.items()]


def _is_higher_order(level) -> bool:
    return lookup_level(level) in HIGHER_ORDER_LEVELS


# ─── Validation ───────────────────────────────────────────────────────────────

def check_answer_structure(answer_shape, answer_text: str, cognitive_level) -> StructuralVerdict:
    """
    Flag answer text that violates the contract of its answer shape.

    Order: definition exemption, higher-order listing ban, shape-specific
    banned phrases, then required markers for extended answers.
    """
    shape = AnswerShape(answer_shape)
    if shape == S.DEFINITION:
        return StructuralVerdict(reject=False)

    text = answer_text or ""
    level_label = getattr(cognitive_level, "value", cognitive_level)

    if _is_higher_order(cognitive_level):
        for pattern in FORBIDDEN_LISTING_PATTERNS:
            if pattern.search(text):
                return StructuralVerdict(
                    reject=True,
                    reason=f'Answer uses forbidden listing pattern for {level_label} level: "{pattern.pattern}"',
                )

    lowered = text.lower()
    for phrase in SHAPE_CONTRACTS[shape].forbidden_phrases:
        if re.search(rf"\b{re.escape(phrase)}", lowered):
            return StructuralVerdict(
                reject=True,
                reason=f'Answer uses pattern "{phrase}" which is forbidden for {shape.value} type',
            )

    marker = REQUIRED_MARKERS.get(shape)
    if marker is not None and len(text.split()) >= EXTENDED_ANSWER_MIN_WORDS and not marker.search(text):
        return StructuralVerdict(
            reject=True,
            reason=f"Answer lacks the structure required for {shape.value}: "
                   f"{SHAPE_CONTRACTS[shape].structural_rule}",
        )

    return StructuralVerdict(reject=False)


def detect_answer_shape(question_text: str) -> Optional[AnswerShape]:
    """Shape implied by the first recognised instruction verb, if any."""
    for pattern, shape in _VERB_PATTERNS:
        if pattern.search(question_text or ""):
            return shape
    return None


def validate_shape_assignment(question_text: str, answer_shape, cognitive_level, knowledge_dimension) -> ShapeAssignmentCheck:
    shape = AnswerShape(answer_shape)
    detected = detect_answer_shape(question_text)
    if detected is not None and detected != shape:
        return ShapeAssignmentCheck(
            valid=False,
            suggestion=detected,
            reason=f'Question verb suggests "{detected.value}" but assigned "{shape.value}"',
        )
    if not is_valid_answer_shape(cognitive_level, knowledge_dimension, shape):
        return ShapeAssignmentCheck(
            valid=False,
            reason=f'Answer shape "{shape.value}" is not appropriate for this level and dimension',
        )
    return ShapeAssignmentCheck(valid=True)


# ─── Prompt block ─────────────────────────────────────────────────────────────

def build_answer_constraint(answer_shape, cognitive_level) -> str:
    """Prompt block telling the generator how the answer must be structured."""
    shape = AnswerShape(answer_shape)
    contract = SHAPE_CONTRACTS[shape]
    higher_order = _is_higher_order(cognitive_level)

    lines = [
        f"=== ANSWER STRUCTURE CONSTRAINT: {shape.value.upper()} ===",
        "",
        f"REQUIREMENT: {contract.requirement}",
        f"STRUCTURAL RULE: {contract.structural_rule}",
        "",
        "REQUIRED ELEMENTS:",
    ]
    lines += [f"- {e}" for e in contract.required_elements]

    if contract.forbidden_phrases or higher_order:
        lines += ["", "FORBIDDEN (will cause rejection):"]
        if higher_order:
            lines += [
                '- "include" / "includes"',
                '- "such as"',
                '- "Key factors include..."',
                '- "The following..."',
                "- Generic enumeration of any kind",
            ]
        lines += [f'- Do NOT use "{p}"' for p in contract.forbidden_phrases]

    lines += ["", "If you violate these rules, the answer WILL BE REJECTED and regenerated."]
    return "\n".join(lines)
