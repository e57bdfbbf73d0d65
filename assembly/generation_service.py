"""
Step 5 — Generation Service

Contract for the remote text generator plus the OpenAI-backed implementation.

The service receives per-question intents (assigned concept, operation and
answer shape) and the registry snapshot, and returns raw candidates and an
updated snapshot. Its output is untrusted: the shortfall loop screens every
candidate before use.
"""

import json
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

import json_repair

from assembly.gpt_client import call_gpt
from assembly.intent_registry import IntentRegistry
from assembly.schemas import GeneratedCandidate, GenerationRequest, GenerationResponse, RegistrySnapshot
from assembly.structure_validator import build_answer_constraint
from assembly.taxonomy import HIGHER_ORDER_LEVELS, CognitiveLevel, ItemType

log = logging.getLogger("assembly.pipeline")


class GenerationService(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        ...


# ─── Prompt building ──────────────────────────────────────────────────────────

LEVEL_INSTRUCTIONS: Dict[CognitiveLevel, str] = {
    CognitiveLevel.REMEMBERING: "Focus on recall and recognition. Use verbs: define, list, identify, name, state, recall, recognize.",
    CognitiveLevel.UNDERSTANDING: "Focus on comprehension and explanation. Use verbs: explain, summarize, describe, interpret, classify.",
    CognitiveLevel.APPLYING: "Focus on using knowledge in new situations. Use verbs: apply, solve, implement, demonstrate, use, execute.",
    CognitiveLevel.ANALYZING: "Focus on breaking down information and relationships. Use verbs: analyze, compare, differentiate, examine, deconstruct. NEVER use generic listing.",
    CognitiveLevel.EVALUATING: "Focus on making judgments with justification. Use verbs: evaluate, justify, critique, assess, defend. MUST state a verdict.",
    CognitiveLevel.CREATING: "Focus on producing new or original work. Use verbs: design, create, compose, formulate, construct. MUST produce tangible output.",
}

DIMENSION_INSTRUCTIONS: Dict[str, str] = {
    "factual": "Target FACTUAL knowledge: terminology, specific details, basic elements.",
    "conceptual": "Target CONCEPTUAL knowledge: theories, principles, models, classifications.",
    "procedural": "Target PROCEDURAL knowledge: methods, techniques, algorithms, processes.",
    "metacognitive": "Target METACOGNITIVE knowledge: self-awareness, strategic thinking, reflection.",
}

DIFFICULTY_INSTRUCTIONS: Dict[str, str] = {
    "easy": "Simple, straightforward questions with clear answers.",
    "medium": "Moderate complexity requiring thought and understanding.",
    "average": "Moderate complexity requiring thought and understanding.",
    "hard": "Complex questions requiring deep analysis or synthesis.",
    "difficult": "Complex questions requiring deep analysis or synthesis.",
}

ITEM_FORMATS: Dict[ItemType, str] = {
    ItemType.MCQ: (
        "=== MCQ FORMAT ===\n"
        "- Exactly 4 choices, in order A, B, C, D\n"
        "- One correct answer; plausible distractors about the ASSIGNED CONCEPT\n"
        '- "choices": ["...", "...", "...", "..."], "correct_answer": "A"'
    ),
    ItemType.TRUE_FALSE: (
        "=== TRUE/FALSE FORMAT ===\n"
        "- A single declarative statement about the ASSIGNED CONCEPT\n"
        '- "choices": ["True", "False"], "correct_answer": "True" or "False"'
    ),
    ItemType.SHORT_ANSWER: (
        "=== FILL-IN FORMAT ===\n"
        "- A sentence with one blank written as __________\n"
        '- "correct_answer": the word or short phrase that fills the blank'
    ),
    ItemType.ESSAY: (
        "=== ESSAY FORMAT ===\n"
        "- Open-ended prompt requiring an extended response about the ASSIGNED CONCEPT\n"
        '- "answer": a model answer demonstrating the answer shape using the REQUIRED OPERATION\n'
        '- "rubric_points": ["Point 1", "Point 2", ...]'
    ),
}

SYSTEM_PROMPT = (
    "You are an expert assessment item writer. Every question you write targets exactly "
    "the concept, cognitive operation and answer shape assigned to it. Output only valid JSON."
)


def _hard_constraints(request: GenerationRequest) -> str:
    snapshot = request.registry_snapshot or RegistrySnapshot()
    topic_key = request.topic.strip().lower()
    op_key = f"{topic_key}_{request.cognitive_level.value.lower()}"
    used_concepts = snapshot.used_concepts.get(topic_key, [])
    used_operations = snapshot.used_operations.get(op_key, [])

    lines = ["HARD CONSTRAINTS - VIOLATION = IMMEDIATE REJECTION", ""]
    if used_concepts:
        lines.append(f"ALREADY-TESTED CONCEPTS (do not target again): {', '.join(used_concepts)}")
    if used_operations:
        lines.append(f"ALREADY-USED OPERATIONS at this level: {', '.join(used_operations)}")
    if snapshot.used_concept_operation_pairs:
        lines.append(f"ALREADY-USED CONCEPT::OPERATION PAIRS: {', '.join(snapshot.used_concept_operation_pairs)}")
    if request.cognitive_level in HIGHER_ORDER_LEVELS:
        lines.append('NEVER answer with generic listing ("include", "such as", "Key factors include...").')
    lines.append("Each question must differ from every other in concept AND operation.")
    return "\n".join(lines)


def build_generation_prompt(request: GenerationRequest) -> str:
    specs = []
    for idx, payload in enumerate(request.intents, 1):
        specs.append("\n".join([
            f"--- Question {idx} Specification ---",
            f'ASSIGNED CONCEPT: "{payload.assigned_concept or "any untested concept"}"',
            f'REQUIRED COGNITIVE OPERATION: "{payload.assigned_operation or "any level-appropriate operation"}"',
            f'ANSWER SHAPE: "{payload.answer_shape.value}"',
            build_answer_constraint(payload.answer_shape, request.cognitive_level),
        ]))
    count = len(request.intents) or request.count

    return "\n\n".join([
        f"Generate {count} DISTINCT exam question(s).",
        _hard_constraints(request),
        f"=== TOPIC ===\n{request.topic}",
        f"=== BLOOM'S LEVEL: {request.cognitive_level.value} ===\n{LEVEL_INSTRUCTIONS[request.cognitive_level]}",
        f"=== KNOWLEDGE DIMENSION: {request.knowledge_dimension.value.upper()} ===\n"
        f"{DIMENSION_INSTRUCTIONS[request.knowledge_dimension.value]}",
        f"=== DIFFICULTY: {request.difficulty} ===\n"
        f"{DIFFICULTY_INSTRUCTIONS.get(request.difficulty, DIFFICULTY_INSTRUCTIONS['medium'])}",
        "=== QUESTION SPECIFICATIONS ===\n" + "\n\n".join(specs),
        ITEM_FORMATS[request.item_type],
        "Return JSON:\n" + json.dumps({
            "questions": [{
                "text": "...",
                "choices": [],
                "correct_answer": "...",
                "answer": "...",
                "answer_shape": "...",
                "targeted_concept": "...",
                "cognitive_operation_used": "...",
                "rubric_points": [],
            }]
        }, indent=2),
    ])


def _coerce_choices(raw) -> List[str]:
    if isinstance(raw, dict):
        return [str(raw[k]) for k in sorted(raw)]
    if isinstance(raw, list):
        return [str(c) for c in raw]
    return []


def parse_generation_output(raw: str) -> List[GeneratedCandidate]:
    """Lenient parse of model output into candidates; malformed entries are dropped."""
    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start == -1 or end == 0:
        log.warning("[GENERATE] No JSON object in model output")
        return []
    data = json_repair.loads(raw[start:end])
    questions = data.get("questions", []) if isinstance(data, dict) else []

    candidates = []
    for q in questions:
        if not isinstance(q, dict):
            continue
        text = str(q.get("text") or q.get("question_text") or "").strip()
        if len(text) <= 10:
            continue
        candidates.append(GeneratedCandidate(
            text=text,
            answer=str(q.get("answer") or ""),
            correct_answer=str(q.get("correct_answer") or ""),
            choices=_coerce_choices(q.get("choices")),
            answer_shape=q.get("answer_shape") or q.get("answer_type"),
            targeted_concept=q.get("targeted_concept"),
            cognitive_operation=q.get("cognitive_operation_used") or q.get("cognitive_operation"),
            rubric_points=[str(p) for p in q.get("rubric_points") or []],
        ))
    return candidates


class OpenAIGenerationService:
    """GenerationService backed by the Chat Completions API."""

    def __init__(self, llm: Optional[Callable[..., Awaitable[str]]] = None, temperature: float = 0.6):
        self._llm = llm or call_gpt
        self._temperature = temperature

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        prompt = build_generation_prompt(request)
        log.info(f"[GENERATE] Requesting {request.count} {request.item_type.value} item(s) for "
                 f"{request.topic}/{request.cognitive_level.value}/{request.knowledge_dimension.value}")
        raw = await self._llm(prompt, system=SYSTEM_PROMPT, temperature=self._temperature)
        log.info(f"[GENERATE] Raw output: {raw[:300]}")

        candidates = parse_generation_output(raw)

        # Echo the registry back with the assigned concepts/operations folded in.
        registry = IntentRegistry.from_snapshot(request.registry_snapshot)
        for payload in request.intents[:len(candidates)]:
            if payload.assigned_concept and payload.assigned_operation:
                registry.mark_concept_used(request.topic, payload.assigned_concept)
                registry.mark_operation_used(request.topic, request.cognitive_level, payload.assigned_operation)
                registry.mark_pair_used(payload.assigned_concept, payload.assigned_operation)

        return GenerationResponse(questions=candidates, updated_registry_snapshot=registry.to_snapshot())
