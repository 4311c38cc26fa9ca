"""Turn supplier documents into records, isolating per-document failures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import List, Protocol, Sequence

from .errors import ExtractionFailure, MalformedClassifierResponse
from .models import DocumentRecord
from .normalization import NormalizationError, record_from_dict
from .repair import parse_json_response

LOGGER = logging.getLogger(__name__)


class Extractor(Protocol):
    def extract(self, path: Path) -> List[DocumentRecord]:
        ...


class JsonDocumentExtractor:
    """Read extractor output (JSON, possibly fenced or wrapped in prose)."""

    def extract(self, path: Path) -> List[DocumentRecord]:
        try:
            raw = path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            raise ExtractionFailure(path.name, f"Could not read file: {exc}") from exc

        try:
            payload = parse_json_response(raw, context="extraction output")
        except MalformedClassifierResponse as exc:
            raise ExtractionFailure(path.name, str(exc), raw_response=raw) from exc

        entries = payload if isinstance(payload, list) else [payload]
        try:
            return [record_from_dict(entry) for entry in entries]
        except NormalizationError as exc:
            raise ExtractionFailure(path.name, str(exc), raw_response=raw) from exc


@dataclass(slots=True)
class ExtractionBatch:
    records: List[DocumentRecord] = field(default_factory=list)
    failures: List[ExtractionFailure] = field(default_factory=list)

    @property
    def first_raw_response(self) -> str | None:
        for failure in self.failures:
            if failure.raw_response:
                return failure.raw_response
        return None


async def extract_documents_async(paths: Sequence[Path], extractor: Extractor) -> ExtractionBatch:
    outcomes = await asyncio.gather(
        *(asyncio.to_thread(extractor.extract, path) for path in paths),
        return_exceptions=True,
    )

    batch = ExtractionBatch()
    for path, outcome in zip(paths, outcomes):
        if isinstance(outcome, ExtractionFailure):
            batch.failures.append(outcome)
        elif isinstance(outcome, Exception):
            batch.failures.append(ExtractionFailure(path.name, str(outcome) or type(outcome).__name__))
        else:
            batch.records.extend(outcome)

    for failure in batch.failures:
        LOGGER.warning("%s", failure)
    return batch


def extract_documents(paths: Sequence[Path], extractor: Extractor) -> ExtractionBatch:
    return asyncio.run(extract_documents_async(paths, extractor))
