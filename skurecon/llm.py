"""LLM-backed classification of line items the saved mappings could not resolve."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import json
import logging
import os
from functools import lru_cache
from typing import Any, Dict, Mapping, Protocol, Sequence

from .errors import ClassificationFailure, ValidationFailure
from .models import ComparedItem, ComparisonStatus, LineItem, ReconciliationResult
from .normalization import NormalizationError, item_from_dict, parse_amount
from .repair import parse_json_response

LOGGER = logging.getLogger(__name__)

CLASSIFICATION_INSTRUCTIONS = """\
You reconcile a supplier's purchase lines against the buyer's ledger lines.
Product names differ between the two sides (abbreviations, spacing, SKU
suffixes, translated words), so match on meaning, quantity and unit price.

Rules:
1. Every supplier line must appear in exactly one comparedItems entry.
2. status is one of "Matched", "Discrepancy", "SupplierOnly", "SystemOnly".
3. Use "Matched" only when quantity and unit price agree; otherwise
   "Discrepancy". Unpaired supplier lines are "SupplierOnly", unpaired
   ledger lines are "SystemOnly".
4. details must be empty for "Matched" rows and explain the problem otherwise.
5. Copy supplierItem / systemItem objects exactly as given (null when absent).
6. Return a single JSON object with the keys summary, totalSupplierAmount,
   totalSystemAmount, difference and comparedItems. No other text.
"""

FALLBACK_SUMMARY = "AI classification unavailable; unmapped lines are listed without matching."

_ACCEPTED_STATUSES = (
    ComparisonStatus.MATCHED,
    ComparisonStatus.DISCREPANCY,
    ComparisonStatus.SUPPLIER_ONLY,
    ComparisonStatus.SYSTEM_ONLY,
)

_STATUS_LOOKUP: Dict[str, ComparisonStatus] = {}
for _status in _ACCEPTED_STATUSES:
    _STATUS_LOOKUP[_status.value.lower()] = _status
    _STATUS_LOOKUP[_status.name.lower()] = _status


class Classifier(Protocol):
    def classify(self, supplier_items: Sequence[LineItem], system_items: Sequence[LineItem]) -> str:
        ...


@dataclass(frozen=True)
class LLMConfig:
    """Runtime configuration for the LLM integration."""

    model: str
    temperature: float
    api_key: str | None

    @classmethod
    def from_env(cls) -> "LLMConfig":
        model = os.getenv("SKURECON_OPENAI_MODEL", "gpt-4o-mini")
        temperature = float(os.getenv("SKURECON_OPENAI_TEMPERATURE", "0.1"))
        api_key = os.getenv("SKURECON_OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY")
        return cls(model=model, temperature=temperature, api_key=api_key)


_CLIENT_OVERRIDE: Any | None = None


def _load_openai_client(api_key: str | None):
    if not api_key:
        return None

    try:  # Import lazily so tests work without the dependency installed.
        from openai import OpenAI  # type: ignore import-not-found
    except ModuleNotFoundError:  # pragma: no cover - optional dependency
        LOGGER.warning("OpenAI Python client not installed; falling back to rule-based classification.")
        return None

    return OpenAI(api_key=api_key)


def _compose_user_payload(
    supplier_items: Sequence[LineItem], system_items: Sequence[LineItem]
) -> dict[str, Any]:
    return {
        "supplierItems": [item.as_json() for item in supplier_items],
        "systemItems": [item.as_json() for item in system_items],
    }


def _fallback_payload(
    supplier_items: Sequence[LineItem], system_items: Sequence[LineItem]
) -> dict[str, Any]:
    rows = [
        {
            "status": ComparisonStatus.SUPPLIER_ONLY.value,
            "supplierItem": item.as_json(),
            "systemItem": None,
            "details": "No saved mapping and no AI classification available.",
        }
        for item in supplier_items
    ]
    rows.extend(
        {
            "status": ComparisonStatus.SYSTEM_ONLY.value,
            "supplierItem": None,
            "systemItem": item.as_json(),
            "details": "Ledger line was not paired with a supplier line.",
        }
        for item in system_items
    )
    supplier_total = sum((item.total_price for item in supplier_items), Decimal(0))
    system_total = sum((item.total_price for item in system_items), Decimal(0))
    return {
        "summary": FALLBACK_SUMMARY,
        "totalSupplierAmount": float(supplier_total),
        "totalSystemAmount": float(system_total),
        "difference": float(supplier_total - system_total),
        "comparedItems": rows,
    }


class ClassificationService:
    """LLM agent that classifies residual supplier and ledger lines."""

    def __init__(self, config: LLMConfig, client: Any | None) -> None:
        self._config = config
        self._client = client

    @classmethod
    def from_env(cls) -> "ClassificationService":
        config = LLMConfig.from_env()
        client = _CLIENT_OVERRIDE if _CLIENT_OVERRIDE is not None else _load_openai_client(config.api_key)
        return cls(config=config, client=client)

    def classify(self, supplier_items: Sequence[LineItem], system_items: Sequence[LineItem]) -> str:
        """Return the model's raw text; decoding is the caller's job."""

        if self._client is None:
            LOGGER.warning("No LLM client configured; using rule-based classification.")
            return json.dumps(_fallback_payload(supplier_items, system_items))

        payload = _compose_user_payload(supplier_items, system_items)
        messages = [
            {
                "role": "system",
                "content": "You are a meticulous accounts-payable clerk reconciling supplier statements.",
            },
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": CLASSIFICATION_INSTRUCTIONS},
                    {"type": "input_text", "text": json.dumps(payload, indent=2, ensure_ascii=False)},
                ],
            },
        ]

        try:
            response = self._client.responses.create(
                model=self._config.model,
                temperature=self._config.temperature,
                input=messages,
            )
        except Exception as exc:  # SDK raises transport, auth and rate-limit errors
            LOGGER.warning("LLM classification request failed: %s", exc)
            raise ClassificationFailure(f"Could not reach the AI classification service: {exc}") from exc

        text = _extract_response_text(response)
        if not text:
            raise ClassificationFailure("The AI classification service returned an empty response.", raw_response="")
        return text


def _text_of(part: Any) -> str | None:
    if isinstance(part, Mapping):
        text = part.get("text")
    else:
        text = getattr(part, "text", None)
    return text if isinstance(text, str) else None


def _extract_response_text(response: Any) -> str | None:
    """Pull the text out of the various OpenAI SDK response shapes."""

    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text:
        return text

    outputs = getattr(response, "output", None) or getattr(response, "outputs", None)
    if not outputs:
        # Chat Completions shape.
        outputs = getattr(response, "choices", None)
    if not outputs:
        return None

    chunks: list[str] = []
    for block in outputs:
        content = getattr(block, "content", None)
        if content is None and hasattr(block, "message"):
            content = getattr(block.message, "content", None)
        if isinstance(content, str):
            chunks.append(content)
            continue
        for part in content or ():
            part_text = _text_of(part)
            if part_text:
                chunks.append(part_text)
    return "".join(chunks) or None


def _parse_side(row: Mapping[str, Any], key: str, raw_response: str) -> LineItem | None:
    value = row.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValidationFailure(f"{key} must be an object or null", raw_response=raw_response)
    try:
        return item_from_dict(value)
    except NormalizationError as exc:
        raise ValidationFailure(f"Invalid {key}: {exc}", raw_response=raw_response) from exc


def _parse_row(row: Any, raw_response: str) -> ComparedItem:
    if not isinstance(row, Mapping):
        raise ValidationFailure("comparedItems entries must be objects", raw_response=raw_response)
    status = _STATUS_LOOKUP.get(str(row.get("status", "")).strip().lower())
    if status is None:
        raise ValidationFailure(f"Unknown comparison status {row.get('status')!r}", raw_response=raw_response)
    supplier_item = _parse_side(row, "supplierItem", raw_response)
    system_item = _parse_side(row, "systemItem", raw_response)
    if supplier_item is None and system_item is None:
        raise ValidationFailure("A compared item has neither a supplier nor a system line", raw_response=raw_response)
    details = "" if status is ComparisonStatus.MATCHED else str(row.get("details") or "")
    return ComparedItem(status=status, supplier_item=supplier_item, system_item=system_item, details=details)


def _optional_amount(payload: Mapping[str, Any], key: str, fallback: Decimal, raw_response: str) -> Decimal:
    if payload.get(key) is None:
        return fallback
    try:
        return parse_amount(payload[key])
    except NormalizationError as exc:
        raise ValidationFailure(f"Invalid {key}: {exc}", raw_response=raw_response) from exc


def result_from_payload(payload: Any, *, raw_response: str = "") -> ReconciliationResult:
    """Validate a decoded classifier payload and convert it to model objects."""

    if not isinstance(payload, Mapping):
        raise ValidationFailure("Classifier payload must be a JSON object", raw_response=raw_response)
    missing = [key for key in ("summary", "comparedItems") if key not in payload]
    if missing:
        raise ValidationFailure(
            "Classifier payload is missing required fields: " + ", ".join(missing),
            raw_response=raw_response,
        )
    rows = payload["comparedItems"]
    if not isinstance(rows, list):
        raise ValidationFailure("comparedItems must be a list", raw_response=raw_response)

    compared = [_parse_row(row, raw_response) for row in rows]
    supplier_total = _optional_amount(
        payload,
        "totalSupplierAmount",
        sum((row.supplier_item.total_price for row in compared if row.supplier_item), Decimal(0)),
        raw_response,
    )
    system_total = _optional_amount(
        payload,
        "totalSystemAmount",
        sum((row.system_item.total_price for row in compared if row.system_item), Decimal(0)),
        raw_response,
    )
    return ReconciliationResult(
        summary=str(payload["summary"] or ""),
        total_supplier_amount=supplier_total,
        total_system_amount=system_total,
        difference=supplier_total - system_total,
        compared_items=compared,
    )


def decode_classification(raw: str) -> ReconciliationResult:
    payload = parse_json_response(raw, context="AI classification response")
    return result_from_payload(payload, raw_response=raw)


@lru_cache(maxsize=1)
def _service() -> ClassificationService:
    return ClassificationService.from_env()


def default_classifier() -> ClassificationService:
    return _service()


def set_client_for_testing(client: Any | None) -> None:
    """Swap the LLM client used by :func:`default_classifier`."""

    global _CLIENT_OVERRIDE
    _CLIENT_OVERRIDE = client
    _service.cache_clear()
