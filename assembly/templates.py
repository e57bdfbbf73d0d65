"""
Step 6 — Template Fallback

Deterministic items for when generation is short or offline. Each candidate
is built around one concept from the topic's concept pool and one compatible
answer shape, so consecutive candidates differ in both wording and
fingerprint. The starting point rotates with a stable hash of topic + level.
"""

import zlib
from typing import Iterator, List, NamedTuple, Tuple

from assembly.compatibility import get_allowed_answer_shapes
from assembly.schemas import BankItem, ItemSource
from assembly.taxonomy import AnswerShape, CognitiveLevel, ItemType, KnowledgeDimension, get_concept_pool

LETTERS = ["A", "B", "C", "D"]


class TemplateCandidate(NamedTuple):
    item: BankItem
    concept: str
    answer_shape: AnswerShape


# ─── Stems ────────────────────────────────────────────────────────────────────

MCQ_STEMS: List[Tuple[str, str, List[str]]] = [
    (
        "What is the primary purpose of examining the {concept} of {topic}?",
        "To relate the {concept} to the underlying principles of {topic}",
        ["To replace every existing method outright", "To serve only as a historical record", "To avoid any form of review"],
    ),
    (
        "Which statement best characterizes the {concept} of {topic}?",
        "They follow from how the parts of {topic} interact",
        ["They are unrelated to {topic}", "They never change across contexts", "They matter only in documentation"],
    ),
    (
        "When studying {topic}, why do the {concept} matter?",
        "They determine how well {topic} works in practice",
        ["They are purely decorative", "They apply to no real situation", "They remove the need for judgement"],
    ),
    (
        "Which approach to the {concept} of {topic} is most effective?",
        "Applying principles systematically while adapting to context",
        ["Following rigid steps regardless of circumstance", "Ignoring established guidance", "Delegating every decision elsewhere"],
    ),
    (
        "What distinguishes a sound treatment of the {concept} of {topic}?",
        "Alignment between stated goals and actual practice",
        ["Speed over accuracy", "Minimal documentation", "Complete automation of every step"],
    ),
]

TRUE_FALSE_STEMS: List[Tuple[str, bool]] = [
    ("The {concept} of {topic} must be understood before they can be applied well.", True),
    ("The {concept} of {topic} can be ignored without affecting results.", False),
    ("Examining the {concept} of {topic} helps explain observed outcomes.", True),
    ("The {concept} of {topic} are identical in every context.", False),
    ("Sound practice in {topic} depends on attention to its {concept}.", True),
    ("The {concept} of {topic} matter only in theoretical discussions.", False),
]

FILL_BLANK_STEMS: List[Tuple[str, str]] = [
    ("The study of {concept} in {topic} relies on a __________ approach.", "systematic"),
    ("In {topic}, the {concept} are assessed against clearly defined __________.", "criteria"),
    ("Attention to {concept} in {topic} begins by establishing clear __________.", "objectives"),
    ("The {concept} of {topic} are best examined through __________ observation.", "careful"),
    ("Reviewing the {concept} of {topic} calls for __________ feedback.", "regular"),
]

ESSAY_STEMS: List[Tuple[str, str]] = [
    (
        "Analyze the {concept} of {topic} and show how they relate to one another.",
        "Identifies the relevant parts, explains how they interact, and supports each link with an example.",
    ),
    (
        "Evaluate the {concept} of {topic}, defending your verdict with evidence.",
        "States a clear verdict, names the criteria used, and justifies the judgement with evidence.",
    ),
    (
        "Design a plan that addresses the {concept} of {topic} in a real setting.",
        "Presents a structured plan with a stated purpose, concrete components, and measurable success criteria.",
    ),
]


def _offset(topic: str, level: CognitiveLevel) -> int:
    return zlib.crc32(f"{topic.strip().lower()}|{level.value}".encode("utf-8"))


def _build(item_type: ItemType, k: int, concept: str, topic: str) -> dict:
    fmt = {"concept": concept, "topic": topic}
    if item_type == ItemType.MCQ:
        question, correct, distractors = MCQ_STEMS[k % len(MCQ_STEMS)]
        options = [d.format(**fmt) for d in distractors]
        answer_pos = k % len(LETTERS)
        options.insert(answer_pos, correct.format(**fmt))
        return {"text": question.format(**fmt), "choices": options, "correct_answer": LETTERS[answer_pos]}
    if item_type == ItemType.TRUE_FALSE:
        statement, is_true = TRUE_FALSE_STEMS[k % len(TRUE_FALSE_STEMS)]
        return {"text": statement.format(**fmt), "choices": ["True", "False"],
                "correct_answer": "True" if is_true else "False"}
    if item_type == ItemType.SHORT_ANSWER:
        question, answer = FILL_BLANK_STEMS[k % len(FILL_BLANK_STEMS)]
        return {"text": question.format(**fmt), "correct_answer": answer}
    prompt, rubric = ESSAY_STEMS[k % len(ESSAY_STEMS)]
    return {"text": prompt.format(**fmt), "correct_answer": rubric, "answer": rubric}


def iter_template_items(
    topic: str,
    cognitive_level: CognitiveLevel,
    knowledge_dimension: KnowledgeDimension,
    difficulty: str,
    item_type: ItemType,
) -> Iterator[TemplateCandidate]:
    """
    Yield every template candidate for the cell, in a stable order.
    The iterator ends when the concept × shape pool is used up.
    """
    concepts = get_concept_pool(topic)
    shapes = get_allowed_answer_shapes(cognitive_level, knowledge_dimension)
    start = _offset(topic, cognitive_level)

    for k in range(len(concepts) * len(shapes)):
        concept = concepts[(start + k) % len(concepts)]
        shape = shapes[(k // len(concepts)) % len(shapes)]
        # Shift the stem on each pass so a repeated concept gets new wording.
        fields = _build(item_type, k + k // len(concepts), concept, topic)
        item = BankItem(
            item_type=item_type,
            topic=topic,
            cognitive_level=cognitive_level,
            knowledge_dimension=knowledge_dimension,
            difficulty=difficulty,
            answer_shape=shape,
            source=ItemSource.TEMPLATE,
            **fields,
        )
        yield TemplateCandidate(item=item, concept=concept, answer_shape=shape)
