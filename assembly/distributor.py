"""
Step 1 — Distributor

Splits requirement quotas across exam sections in two passes:
1. each section takes from requirements whose Bloom level suits its item type
2. any space left is back-filled from whatever remains

Pure: no I/O, no mutation of inputs.
"""

from typing import Dict, List, Sequence

from assembly.errors import QuotaMismatch
from assembly.schemas import ExamSection, Requirement, SectionAssignment
from assembly.taxonomy import CognitiveLevel, ItemType

L = CognitiveLevel

PREFERRED_LEVELS: Dict[ItemType, List[CognitiveLevel]] = {
    ItemType.MCQ:          [L.REMEMBERING, L.UNDERSTANDING, L.APPLYING, L.ANALYZING, L.EVALUATING, L.CREATING],
    ItemType.TRUE_FALSE:   [L.REMEMBERING, L.UNDERSTANDING],
    ItemType.SHORT_ANSWER: [L.REMEMBERING, L.UNDERSTANDING, L.APPLYING],
    ItemType.ESSAY:        [L.EVALUATING, L.CREATING, L.ANALYZING, L.APPLYING],
}


def check_layout(requirements: Sequence[Requirement], sections: Sequence[ExamSection]) -> None:
    """Raise QuotaMismatch when the layout cannot hold the requirements exactly."""
    expected = sum(r.count for r in requirements)
    capacity = sum(s.item_count for s in sections)
    if expected != capacity:
        raise QuotaMismatch(
            f"Sections hold {capacity} items but requirements ask for {expected}",
            expected=expected,
            actual=capacity,
        )
    ids = [s.id for s in sections]
    if len(set(ids)) != len(ids):
        raise QuotaMismatch("Duplicate section ids in layout", expected=len(ids), actual=len(set(ids)))


def distribute_requirements(
    requirements: Sequence[Requirement],
    sections: Sequence[ExamSection],
) -> Dict[str, List[SectionAssignment]]:
    """
    Map section id → assignments. Every section is present (possibly empty)
    and, when the layout matches the requirements, filled exactly.
    """
    remaining = [r.count for r in requirements]
    assignments: Dict[str, List[SectionAssignment]] = {s.id: [] for s in sections}

    def take(section: ExamSection, idx: int, space: int) -> int:
        n = min(remaining[idx], space)
        if n <= 0:
            return 0
        assignments[section.id].append(
            SectionAssignment(requirement_index=idx, requirement=requirements[idx], count=n)
        )
        remaining[idx] -= n
        return n

    for section in sections:
        capacity = section.item_count
        assigned = 0

        # Pass 1: preferred levels, in preference order
        for level in PREFERRED_LEVELS[section.item_type]:
            for idx, req in enumerate(requirements):
                if assigned >= capacity:
                    break
                if req.cognitive_level == level:
                    assigned += take(section, idx, capacity - assigned)

        # Pass 2: back-fill from anything left
        for idx in range(len(requirements)):
            if assigned >= capacity:
                break
            assigned += take(section, idx, capacity - assigned)

    return assignments
