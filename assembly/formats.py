"""
Predefined multi-section exam layouts.

Sections are numbered slot ranges. Essay sections may group their slots into
fewer essays (essay_group_count), so an exam's item count can be smaller
than its slot count.
"""

from typing import List, Optional

from pydantic import BaseModel

from assembly.schemas import ExamSection

MCQ_INSTRUCTION = "Choose the letter of the best answer."
TF_INSTRUCTION = "Write TRUE if the statement is correct, FALSE if incorrect."
FILL_INSTRUCTION = "Write the correct answer on the blank provided."


class ExamFormat(BaseModel):
    id: str
    name: str
    description: str
    sections: List[ExamSection]

    @property
    def total_slots(self) -> int:
        return sum(s.slot_count for s in self.sections)

    @property
    def total_items(self) -> int:
        return sum(s.item_count for s in self.sections)

    @property
    def total_points(self) -> float:
        return sum(s.total_points for s in self.sections)


FORMAT_1 = ExamFormat(
    id="format_1",
    name="Format 1: All Multiple Choice",
    description="Section A – Multiple Choice (Questions 1–50)",
    sections=[
        ExamSection(id="A", label="Section A", title="Multiple Choice", item_type="mcq",
                    start_number=1, end_number=50, points_per_item=1, instruction=MCQ_INSTRUCTION),
    ],
)

FORMAT_2 = ExamFormat(
    id="format_2",
    name="Format 2: MCQ + T/F + Essay",
    description="Section A – MCQ (1–35), Section B – T/F (36–45), Section C – Essay (46–50; 1 essay, 5 pts)",
    sections=[
        ExamSection(id="A", label="Section A", title="Multiple Choice", item_type="mcq",
                    start_number=1, end_number=35, points_per_item=1, instruction=MCQ_INSTRUCTION),
        ExamSection(id="B", label="Section B", title="True or False", item_type="true_false",
                    start_number=36, end_number=45, points_per_item=1, instruction=TF_INSTRUCTION),
        ExamSection(id="C", label="Section C", title="Essay", item_type="essay",
                    start_number=46, end_number=50, points_per_item=5, essay_group_count=1,
                    instruction="Answer the following question in complete sentences. (5 points)"),
    ],
)

FORMAT_3 = ExamFormat(
    id="format_3",
    name="Format 3: MCQ + Fill-in + T/F",
    description="Section A – MCQ (1–30), Section B – Fill-in (31–40), Section C – T/F (41–50)",
    sections=[
        ExamSection(id="A", label="Section A", title="Multiple Choice", item_type="mcq",
                    start_number=1, end_number=30, points_per_item=1, instruction=MCQ_INSTRUCTION),
        ExamSection(id="B", label="Section B", title="Fill in the Blank", item_type="short_answer",
                    start_number=31, end_number=40, points_per_item=1, instruction=FILL_INSTRUCTION),
        ExamSection(id="C", label="Section C", title="True or False", item_type="true_false",
                    start_number=41, end_number=50, points_per_item=1, instruction=TF_INSTRUCTION),
    ],
)

FORMAT_4 = ExamFormat(
    id="format_4",
    name="Format 4: MCQ + Essay",
    description="Section A – MCQ (1–40), Section B – Essay (41–50; 2 essays @ 5 pts each)",
    sections=[
        ExamSection(id="A", label="Section A", title="Multiple Choice", item_type="mcq",
                    start_number=1, end_number=40, points_per_item=1, instruction=MCQ_INSTRUCTION),
        ExamSection(id="B", label="Section B", title="Essay", item_type="essay",
                    start_number=41, end_number=50, points_per_item=5, essay_group_count=2,
                    instruction="Answer the following questions in complete sentences. (5 points each)"),
    ],
)

EXAM_FORMATS: List[ExamFormat] = [FORMAT_1, FORMAT_2, FORMAT_3, FORMAT_4]


def get_exam_format(format_id: str) -> Optional[ExamFormat]:
    return next((f for f in EXAM_FORMATS if f.id == format_id), None)


def default_format() -> ExamFormat:
    return FORMAT_1


def scale_format_sections(exam_format: ExamFormat, total_slots: int) -> List[ExamSection]:
    """
    Rescale a format's slot ranges to `total_slots`, renumbering contiguously.

    Each section keeps at least one slot; the last section takes the
    remainder. Essay grouping is kept, capped at the new slot count.
    """
    n = len(exam_format.sections)
    if total_slots < n:
        raise ValueError(f"{exam_format.id} needs at least {n} slots, got {total_slots}")

    ratio = total_slots / exam_format.total_slots
    used = 0
    scaled: List[ExamSection] = []
    for idx, section in enumerate(exam_format.sections):
        sections_left = n - idx - 1
        if sections_left == 0:
            count = total_slots - used
        else:
            count = max(1, round(section.slot_count * ratio))
            count = min(count, total_slots - used - sections_left)
        update = {"start_number": used + 1, "end_number": used + count}
        if section.essay_group_count is not None:
            update["essay_group_count"] = min(section.essay_group_count, count)
        scaled.append(section.model_copy(update=update))
        used += count
    return scaled
