"""
Step 1b — Taxonomy Coverage Grid

Aggregates items into the 6 × 4 Bloom level × knowledge dimension matrix.
Read-only; the assembler consults allocation_priority() to pick a knowledge
dimension for requirements that leave it open.
"""

from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from assembly.schemas import BankItem
from assembly.taxonomy import CognitiveLevel, KnowledgeDimension, lookup_dimension, lookup_level

TARGET_PER_CELL = 5
DEFAULT_QUALITY = 0.7


class CoverageCell(BaseModel):
    cognitive_level: CognitiveLevel
    knowledge_dimension: KnowledgeDimension
    count: int = 0
    item_ids: List[str] = Field(default_factory=list)
    average_confidence: float = 0.0
    average_quality: float = 0.0
    coverage: float = 0.0


class CoverageGap(BaseModel):
    cognitive_level: CognitiveLevel
    knowledge_dimension: KnowledgeDimension
    severity: str                         # "high" | "medium" | "low"


class CoverageGrid(BaseModel):
    cells: List[List[CoverageCell]]       # rows: levels, cols: dimensions
    total_items: int
    overall_coverage: float
    gaps: List[CoverageGap] = Field(default_factory=list)


class Imbalance(BaseModel):
    type: str
    description: str
    severity: str


class BalanceReport(BaseModel):
    is_balanced: bool
    imbalances: List[Imbalance] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


LEVELS = list(CognitiveLevel)
DIMENSIONS = list(KnowledgeDimension)


def _gap_severity(count: int, target: int) -> Optional[str]:
    if count == 0:
        return "high"
    if count < 3:
        return "medium"
    if count < target:
        return "low"
    return None


def build_coverage_grid(items: Sequence[BankItem], target_per_cell: int = TARGET_PER_CELL) -> CoverageGrid:
    buckets: Dict[tuple, List[BankItem]] = {}
    for item in items:
        buckets.setdefault((item.cognitive_level, item.knowledge_dimension), []).append(item)

    cells: List[List[CoverageCell]] = []
    gaps: List[CoverageGap] = []
    for level in LEVELS:
        row = []
        for dim in DIMENSIONS:
            members = buckets.get((level, dim), [])
            n = len(members)
            row.append(CoverageCell(
                cognitive_level=level,
                knowledge_dimension=dim,
                count=n,
                item_ids=[m.id for m in members if m.id is not None],
                average_confidence=sum(m.classification_confidence or 0.0 for m in members) / n if n else 0.0,
                average_quality=sum(
                    DEFAULT_QUALITY if m.quality_score is None else m.quality_score for m in members
                ) / n if n else 0.0,
                coverage=min(1.0, n / target_per_cell),
            ))
            severity = _gap_severity(n, target_per_cell)
            if severity:
                gaps.append(CoverageGap(cognitive_level=level, knowledge_dimension=dim, severity=severity))
        cells.append(row)

    filled = sum(1 for row in cells for cell in row if cell.count > 0)
    return CoverageGrid(
        cells=cells,
        total_items=len(items),
        overall_coverage=filled / (len(LEVELS) * len(DIMENSIONS)),
        gaps=gaps,
    )


def get_cell(grid: CoverageGrid, level, dimension) -> Optional[CoverageCell]:
    resolved_level = lookup_level(level)
    resolved_dim = lookup_dimension(dimension)
    if resolved_level is None or resolved_dim is None:
        return None
    return grid.cells[LEVELS.index(resolved_level)][DIMENSIONS.index(resolved_dim)]


def analyze_balance(grid: CoverageGrid) -> BalanceReport:
    imbalances: List[Imbalance] = []
    recommendations: List[str] = []

    level_counts = [(level, sum(c.count for c in grid.cells[i])) for i, level in enumerate(LEVELS)]
    avg_level = sum(c for _, c in level_counts) / len(level_counts)
    if avg_level > 0:
        for level, count in level_counts:
            deviation = abs(count - avg_level) / avg_level
            if deviation > 0.5:
                direction = "over" if count > avg_level else "under"
                imbalances.append(Imbalance(
                    type="level_distribution",
                    description=f"{level.value} level has {count} items ({direction}represented)",
                    severity="high" if deviation > 0.8 else "medium",
                ))
                if count < avg_level * 0.5:
                    recommendations.append(f"Add more {level.value} level items")

    dim_counts = [(dim, sum(row[j].count for row in grid.cells)) for j, dim in enumerate(DIMENSIONS)]
    avg_dim = sum(c for _, c in dim_counts) / len(dim_counts)
    if avg_dim > 0:
        for dim, count in dim_counts:
            deviation = abs(count - avg_dim) / avg_dim
            if deviation > 0.5:
                imbalances.append(Imbalance(
                    type="dimension_distribution",
                    description=f"{dim.value} dimension has {count} items",
                    severity="high" if deviation > 0.8 else "medium",
                ))

    empty = sum(1 for gap in grid.gaps if gap.severity == "high")
    if empty:
        imbalances.append(Imbalance(
            type="coverage_gaps",
            description=f"{empty} taxonomy cells have no items",
            severity="high",
        ))
        recommendations.append("Focus on creating items for empty taxonomy cells")

    return BalanceReport(
        is_balanced=not any(i.severity == "high" for i in imbalances),
        imbalances=imbalances,
        recommendations=recommendations,
    )


def generate_recommendations(grid: CoverageGrid) -> List[str]:
    recommendations = list(analyze_balance(grid).recommendations)
    filled = [cell for row in grid.cells for cell in row if cell.count > 0]
    if any(cell.average_quality < 0.6 for cell in filled):
        recommendations.append("Review and improve items in cells with low quality scores")
    if any(cell.average_confidence < 0.7 for cell in filled):
        recommendations.append("Validate classifications for items with low confidence scores")
    return recommendations


def allocation_priority(grid: CoverageGrid, level) -> List[KnowledgeDimension]:
    """Dimensions of a level ordered from least to best covered (ties keep taxonomy order)."""
    row = grid.cells[LEVELS.index(lookup_level(level) or CognitiveLevel.UNDERSTANDING)]
    return [cell.knowledge_dimension for cell in sorted(row, key=lambda c: c.coverage)]
