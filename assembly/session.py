"""
Generation session: the mutable dedup state shared by every section of a run.

Holds the intent registry, the fingerprint store, accepted texts and selected
item ids. Created per run by default; a caller may pass one session to
several runs to keep them mutually non-redundant.
"""

import logging
from typing import List, Optional, Set

from assembly.config import REDUNDANCY_THRESHOLD
from assembly.errors import DuplicateRejection
from assembly.fingerprints import ConceptExtractor, PatternConceptExtractor, UniquenessStore
from assembly.intent_registry import IntentRegistry
from assembly.redundancy import RedundancyDetector
from assembly.schemas import BankItem, QuestionFingerprint, RegistrySnapshot

log = logging.getLogger("assembly.session")


class GenerationSession:
    def __init__(
        self,
        registry: Optional[IntentRegistry] = None,
        store: Optional[UniquenessStore] = None,
        detector: Optional[RedundancyDetector] = None,
        extractor: Optional[ConceptExtractor] = None,
    ):
        self.registry = registry or IntentRegistry()
        self.store = store or UniquenessStore()
        self.detector = detector or RedundancyDetector(similarity_threshold=REDUNDANCY_THRESHOLD)
        self.extractor = extractor or PatternConceptExtractor()
        self.accepted_texts: List[str] = []
        self.selected_ids: Set[str] = set()

    @classmethod
    def from_snapshot(cls, snapshot: RegistrySnapshot, **kwargs) -> "GenerationSession":
        return cls(registry=IntentRegistry.from_snapshot(snapshot), **kwargs)

    def screen(self, text: str, fingerprint: QuestionFingerprint) -> None:
        """Raise DuplicateRejection if the text or fingerprint repeats accepted work."""
        check = self.detector.check_redundancy(text, self.accepted_texts)
        if check.similar_questions:
            best = check.similar_questions[0]
            raise DuplicateRejection(
                f"Text similarity {best.similarity:.2f} with an accepted item",
                {"similar_to": best.text[:80], "similarity": best.similarity},
            )
        uniqueness = self.store.is_unique(fingerprint)
        if not uniqueness.unique:
            raise DuplicateRejection(uniqueness.reason or "Fingerprint collision", {"concept": fingerprint.concept})

    def accept(self, item: BankItem, fingerprint: QuestionFingerprint) -> None:
        self.store.register(fingerprint)
        self.accepted_texts.append(item.text)
        if item.id is not None:
            self.selected_ids.add(item.id)

    def snapshot(self) -> RegistrySnapshot:
        return self.registry.to_snapshot()
