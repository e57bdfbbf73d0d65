"""
Error taxonomy for exam assembly.

Recoverable errors (ExhaustedAllocation, StructuralRejection,
DuplicateRejection, GenerationUnavailable) are caught inside the shortfall
loop. The rest abort the run.
"""

from typing import Any, Dict, List, Optional


class AssemblyError(Exception):
    """
    Base class. `context` carries structured detail for logs and callers;
    `history` is filled with the run's states when an assembly aborts.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context: Dict[str, Any] = context or {}
        self.history: List[Any] = []


class ExhaustedAllocation(AssemblyError):
    """No unused intent or concept/operation pair left for a topic/level."""


class StructuralRejection(AssemblyError):
    """A generated answer violates the contract of its answer shape."""


class DuplicateRejection(AssemblyError):
    """A candidate collides with an accepted item (text or fingerprint)."""


class ShortfallUnrecoverable(AssemblyError):
    """Generation and template fallback could not fill a requirement."""

    def __init__(self, requirement_index: int, section_id: str, requested: int, missing: int):
        super().__init__(
            f"Requirement #{requirement_index} in section {section_id}: "
            f"short by {missing} of {requested} items after all fallbacks",
            {
                "requirement_index": requirement_index,
                "section_id": section_id,
                "requested": requested,
                "missing": missing,
            },
        )
        self.requirement_index = requirement_index
        self.section_id = section_id
        self.requested = requested
        self.missing = missing


class QuotaMismatch(AssemblyError):
    """Final counts disagree with the requirement matrix or section layout."""

    def __init__(self, message: str, expected: int, actual: int, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"expected": expected, "actual": actual, **(detail or {})})
        self.expected = expected
        self.actual = actual


class UpstreamUnavailable(AssemblyError):
    """An external collaborator failed."""


class BankUnavailable(UpstreamUnavailable):
    """The item bank could not be read. Fatal for the run."""


class GenerationUnavailable(UpstreamUnavailable):
    """The generation service timed out or errored. Degrades to templates."""
