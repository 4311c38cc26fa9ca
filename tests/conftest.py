import json
import sys
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from skurecon import llm


class StubResponsesAPI:
    """Answers like a model would: prose around a fenced JSON block."""

    def __init__(self):
        self.calls = []

    def create(self, *, model, temperature, input):
        self.calls.append(input)
        payload = self._extract_payload(input)
        body = json.dumps(self._classify(payload), indent=2)
        return SimpleNamespace(output_text=f"Here is the reconciliation:\n```json\n{body}\n```\nDone.")

    def _extract_payload(self, messages):
        for block in reversed(messages):
            content = block.get("content")
            if not isinstance(content, list):
                continue
            for item in reversed(content):
                try:
                    return json.loads(item.get("text", ""))
                except json.JSONDecodeError:
                    continue
        return {}

    def _classify(self, payload):
        pool = list(payload.get("systemItems", []))
        rows = []
        for supplier in payload.get("supplierItems", []):
            match = next((s for s in pool if s["name"].lower() == supplier["name"].lower()), None)
            if match is None:
                rows.append({
                    "status": "SupplierOnly",
                    "supplierItem": supplier,
                    "systemItem": None,
                    "details": "No ledger line found.",
                })
                continue
            pool.remove(match)
            same = (supplier["quantity"], supplier["unitPrice"]) == (match["quantity"], match["unitPrice"])
            rows.append({
                "status": "Matched" if same else "Discrepancy",
                "supplierItem": supplier,
                "systemItem": match,
                "details": "" if same else "Quantity or price differs.",
            })
        rows.extend(
            {"status": "SystemOnly", "supplierItem": None, "systemItem": item, "details": "Only in ledger."}
            for item in pool
        )
        return {
            "summary": f"AI classified {len(rows)} lines.",
            "totalSupplierAmount": 0,
            "totalSystemAmount": 0,
            "difference": 0,
            "comparedItems": rows,
        }


class StubOpenAIClient:
    def __init__(self):
        self.responses = StubResponsesAPI()


@pytest.fixture(autouse=True)
def stubbed_llm_client():
    """Provide deterministic LLM outputs for tests without network access."""

    stub = StubOpenAIClient()
    llm.set_client_for_testing(stub)
    yield stub
    llm.set_client_for_testing(None)
