"""Failure taxonomy shared by the reconciliation stages."""
from __future__ import annotations

from typing import Sequence


class ReconError(RuntimeError):
    """Base class for every failure surfaced by the reconciliation engine."""


class ExtractionFailure(ReconError):
    """One supplier document could not be turned into records."""

    def __init__(self, document: str, message: str, *, raw_response: str | None = None) -> None:
        super().__init__(f'Document "{document}": {message}')
        self.document = document
        self.reason = message
        self.raw_response = raw_response


class LedgerFetchFailure(ReconError):
    """Ledger data for the supplier/period could not be retrieved."""


class ClassificationFailure(ReconError):
    """The AI classification stage did not produce a usable result."""

    def __init__(self, message: str, *, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class MalformedClassifierResponse(ClassificationFailure):
    """Raised when the classifier text cannot be repaired into valid JSON."""

    def __init__(self, message: str, *, raw_response: str | None, repaired_attempt: str = "") -> None:
        super().__init__(message, raw_response=raw_response)
        self.repaired_attempt = repaired_attempt


class ValidationFailure(MalformedClassifierResponse):
    """Decoded classifier payload is missing required fields."""


class MappingStoreError(ReconError):
    """A single query or create against the mapping store failed."""


class MappingSaveFailure(ReconError):
    """One or more mapping proposals failed to persist."""

    def __init__(self, succeeded: int, failed_count: int, failed_reasons: Sequence[str]) -> None:
        total = succeeded + failed_count
        super().__init__(
            f"Failed to save {failed_count}/{total} mappings: " + ", ".join(failed_reasons)
        )
        self.succeeded = succeeded
        self.failed_count = failed_count
        self.failed_reasons = tuple(failed_reasons)
