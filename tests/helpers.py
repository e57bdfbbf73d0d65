"""Builders and fake collaborators shared by the test modules."""

import asyncio
import json

from assembly.schemas import BankItem, GeneratedCandidate, GenerationRequest, GenerationResponse


def make_item(text, topic="Cells", level="Remembering", dimension="factual",
              difficulty="easy", item_type="mcq", **kwargs) -> BankItem:
    defaults = {"choices": ["one", "two", "three", "four"], "correct_answer": "A"} if item_type == "mcq" else {}
    defaults.update(kwargs)
    return BankItem(
        text=text,
        topic=topic,
        cognitive_level=level,
        knowledge_dimension=dimension,
        difficulty=difficulty,
        item_type=item_type,
        **defaults,
    )


CELL_ITEMS = [
    "What is the function of the cell membrane?",
    "Which organelle produces most of a cell's ATP?",
    "Name the structure that contains a cell's genetic material.",
]


class OfflineGenerator:
    """Every call fails as if the remote service were unreachable."""

    def __init__(self):
        self.calls = 0

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.calls += 1
        raise ConnectionError("generation service unreachable")


class SlowGenerator:
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        await asyncio.sleep(5)
        return GenerationResponse()


class ScriptedGenerator:
    """
    Returns one well-formed candidate per intent, built around the assigned
    concept. `answer` is used as the model answer for every candidate.
    """

    def __init__(self, answer: str = ""):
        self.answer = answer
        self.calls = 0
        self.requests = []

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.calls += 1
        self.requests.append(request)
        is_mcq = request.item_type.value == "mcq"
        questions = []
        for idx, payload in enumerate(request.intents, 1):
            concept = payload.assigned_concept or f"aspect {idx}"
            questions.append(GeneratedCandidate(
                text=f"Explain the {concept} of {request.topic}.",
                answer=self.answer,
                correct_answer="A" if is_mcq else "Model answer",
                choices=["first", "second", "third", "fourth"] if is_mcq else [],
                answer_shape=payload.answer_shape.value,
                targeted_concept=payload.assigned_concept,
                cognitive_operation=payload.assigned_operation,
            ))
        return GenerationResponse(questions=questions, updated_registry_snapshot=request.registry_snapshot)


def fake_llm_returning(payload: dict):
    async def fake_llm(prompt, system=None, temperature=None, **kwargs):
        fake_llm.prompts.append(prompt)
        return json.dumps(payload)
    fake_llm.prompts = []
    return fake_llm
