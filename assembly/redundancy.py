"""
Step 3a — Text-Similarity Redundancy Detector

Pairwise lexical similarity over raw item text:
    0.3 · normalised Levenshtein + 0.4 · token Jaccard + 0.3 · char-trigram Jaccard

- check_redundancy:            one candidate against existing texts
- detect_redundancy_in_bank:   O(n²) sweep with duplicate pairs and clusters
- analyze_question_diversity:  entropy of topic / Bloom distributions
"""

import math
import re
from typing import Dict, List, Optional, Sequence, Set, Union

from pydantic import BaseModel, Field

from assembly.schemas import BankItem

SIMILARITY_THRESHOLD = 0.85
DUPLICATE_THRESHOLD = 0.95
CLUSTER_THRESHOLD = 0.75

LEVENSHTEIN_WEIGHT = 0.3
TOKEN_WEIGHT = 0.4
NGRAM_WEIGHT = 0.3


class SimilarQuestion(BaseModel):
    id: Optional[str] = None
    text: str
    similarity: float
    topic: Optional[str] = None


class RedundancyCheck(BaseModel):
    is_duplicate: bool
    similar_questions: List[SimilarQuestion] = Field(default_factory=list)
    recommendation: str
    confidence: float


class RedundancyCluster(BaseModel):
    question_ids: List[str]
    avg_similarity: float
    topic: str


class RedundancyReport(BaseModel):
    total_questions: int
    duplicate_pairs: int
    clusters: List[RedundancyCluster] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class DiversityReport(BaseModel):
    diversity_score: float
    topic_entropy: float
    level_entropy: float
    topic_distribution: Dict[str, int]
    level_distribution: Dict[str, int]
    recommendations: List[str] = Field(default_factory=list)


# ─── Text primitives ──────────────────────────────────────────────────────────

def _normalize(text: str) -> str:
    text = re.sub(r"[^\w\s]", " ", (text or "").lower())
    return re.sub(r"\s+", " ", text).strip()


def _tokens(text: str) -> Set[str]:
    return {t for t in _normalize(text).split(" ") if len(t) > 2}


def _ngrams(text: str, n: int = 3) -> Set[str]:
    return {text[i:i + n] for i in range(len(text) - n + 1)}


def _jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def _levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def _levenshtein_similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - _levenshtein(a, b) / longest


def similarity(text_a: str, text_b: str) -> float:
    """Weighted lexical similarity in [0, 1]."""
    na, nb = _normalize(text_a), _normalize(text_b)
    return (
        LEVENSHTEIN_WEIGHT * _levenshtein_similarity(na, nb)
        + TOKEN_WEIGHT * _jaccard(_tokens(text_a), _tokens(text_b))
        + NGRAM_WEIGHT * _jaccard(_ngrams(na), _ngrams(nb))
    )


def _entropy(counts: Sequence[int]) -> float:
    """Shannon entropy normalised by log2(min(categories, 10))."""
    total = sum(counts)
    if total == 0:
        return 0.0
    entropy = 0.0
    for count in counts:
        if count > 0:
            p = count / total
            entropy -= p * math.log2(p)
    max_entropy = math.log2(min(len(counts), 10)) if counts else 0.0
    return entropy / max_entropy if max_entropy > 0 else 0.0


# ─── Detector ─────────────────────────────────────────────────────────────────

ExistingText = Union[str, BankItem]


class RedundancyDetector:
    def __init__(
        self,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        duplicate_threshold: float = DUPLICATE_THRESHOLD,
        cluster_threshold: float = CLUSTER_THRESHOLD,
    ):
        self.similarity_threshold = similarity_threshold
        self.duplicate_threshold = duplicate_threshold
        self.cluster_threshold = cluster_threshold

    def similarity(self, text_a: str, text_b: str) -> float:
        return similarity(text_a, text_b)

    def check_redundancy(
        self,
        text: str,
        existing: Sequence[ExistingText],
        threshold: Optional[float] = None,
    ) -> RedundancyCheck:
        """
        Compare one text with existing ones. Matches at or above `threshold`
        are flagged; `is_duplicate` is set only at the duplicate threshold.
        """
        cutoff = threshold if threshold is not None else self.similarity_threshold
        similar: List[SimilarQuestion] = []
        for ref in existing:
            ref_text = ref if isinstance(ref, str) else ref.text
            score = similarity(text, ref_text)
            if score >= cutoff:
                similar.append(SimilarQuestion(
                    id=None if isinstance(ref, str) else ref.id,
                    text=ref_text,
                    similarity=score,
                    topic=None if isinstance(ref, str) else ref.topic,
                ))
        similar.sort(key=lambda s: s.similarity, reverse=True)

        best = similar[0].similarity if similar else 0.0
        is_duplicate = bool(similar) and best >= self.duplicate_threshold
        return RedundancyCheck(
            is_duplicate=is_duplicate,
            similar_questions=similar,
            recommendation=self._recommendation(best, is_duplicate, bool(similar)),
            confidence=best,
        )

    def is_flagged(self, text: str, existing: Sequence[ExistingText]) -> bool:
        return bool(self.check_redundancy(text, existing).similar_questions)

    def detect_redundancy_in_bank(self, items: Sequence[BankItem]) -> RedundancyReport:
        ids = [item.id or f"#{i}" for i, item in enumerate(items)]
        parent = list(range(len(items)))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        duplicate_pairs = 0
        for i in range(len(items)):
            for j in range(i + 1, len(items)):
                score = similarity(items[i].text, items[j].text)
                if score >= self.similarity_threshold:
                    duplicate_pairs += 1
                if score >= self.cluster_threshold:
                    parent[find(j)] = find(i)

        groups: Dict[int, List[int]] = {}
        for i in range(len(items)):
            groups.setdefault(find(i), []).append(i)

        clusters = []
        for members in groups.values():
            if len(members) < 2:
                continue
            scores = [
                similarity(items[a].text, items[b].text)
                for k, a in enumerate(members) for b in members[k + 1:]
            ]
            clusters.append(RedundancyCluster(
                question_ids=[ids[m] for m in members],
                avg_similarity=sum(scores) / len(scores),
                topic=items[members[0]].topic or "Unknown",
            ))

        return RedundancyReport(
            total_questions=len(items),
            duplicate_pairs=duplicate_pairs,
            clusters=clusters,
            recommendations=self._bank_recommendations(duplicate_pairs, len(clusters), len(items)),
        )

    def analyze_question_diversity(self, items: Sequence[BankItem]) -> DiversityReport:
        topics: Dict[str, int] = {}
        levels: Dict[str, int] = {}
        for item in items:
            topics[item.topic] = topics.get(item.topic, 0) + 1
            levels[item.cognitive_level.value] = levels.get(item.cognitive_level.value, 0) + 1

        topic_entropy = _entropy(list(topics.values()))
        level_entropy = _entropy(list(levels.values()))

        recommendations = []
        if topic_entropy < 0.5:
            recommendations.append("Low topic diversity. Add questions from underrepresented topics.")
        if level_entropy < 0.5:
            recommendations.append("Low cognitive level diversity. Balance Bloom's taxonomy representation.")

        return DiversityReport(
            diversity_score=(topic_entropy + level_entropy) / 2,
            topic_entropy=topic_entropy,
            level_entropy=level_entropy,
            topic_distribution=topics,
            level_distribution=levels,
            recommendations=recommendations,
        )

    # ── Recommendations ───────────────────────────────────────────────────────

    @staticmethod
    def _recommendation(best: float, is_duplicate: bool, any_similar: bool) -> str:
        if is_duplicate:
            return "Exact or near-exact duplicate detected. Consider reviewing before adding."
        if not any_similar:
            return "No significant redundancy detected. Question appears unique."
        if best >= 0.9:
            return "Very high similarity with existing question. Recommend significant modification."
        if best >= 0.8:
            return "High similarity detected. Consider rephrasing or adding to existing question."
        return "Moderate similarity found. Review for potential overlap."

    @staticmethod
    def _bank_recommendations(duplicates: int, clusters: int, total: int) -> List[str]:
        if total == 0:
            return ["Question bank is empty."]
        recommendations = []
        if duplicates > 0:
            rate = duplicates / total * 100
            recommendations.append(
                f"Found {duplicates} duplicate pairs ({rate:.1f}% of questions). Review and consolidate."
            )
        if clusters > 0:
            recommendations.append(
                f"Identified {clusters} clusters of similar questions. Consider diversifying question types."
            )
        redundancy_rate = (duplicates + clusters) / total * 100
        if redundancy_rate > 20:
            recommendations.append("High redundancy rate detected. Implement stricter similarity checks on new questions.")
        elif redundancy_rate > 10:
            recommendations.append("Moderate redundancy. Regular review recommended to maintain question quality.")
        else:
            recommendations.append("Low redundancy rate. Question bank shows good diversity.")
        return recommendations
