from __future__ import annotations

"""
Provider abstraction for turning a transcription into expense candidates.

Extractors return an ordered list of RawExpense (possibly empty). Whatever the
backend, its raw output goes through `parse_expense_payload`, which accepts only
a JSON array of objects with exactly the keys unit_price, quantity, unit and
description. Any deviation fails the whole reply instead of keeping the parts
that happened to parse.
"""

import json
import logging
import math
import os
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, List, Optional, Protocol, runtime_checkable

from expense_model import RawExpense

logger = logging.getLogger(__name__)

EXPENSE_FIELDS = frozenset({"unit_price", "quantity", "unit", "description"})

_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*(?P<body>.*?)\s*```$", re.DOTALL)


class ExtractionResponseError(ValueError):
    """Raised when an extractor reply is not the expected JSON array of expenses."""


@runtime_checkable
class Extractor(Protocol):
    """
    Interface for swappable expense extractors.

    `extract` is blocking and returns records in the order the items were
    mentioned. Provider faults and malformed replies are raised, never retried.
    """

    name: str

    def extract(self, text: str) -> List[RawExpense]:
        """Return every expense mentioned in `text`, in mention order."""
        ...


def parse_expense_json(content: str | None) -> List[RawExpense]:
    """Decode a model reply (optionally wrapped in a Markdown code fence) strictly."""

    if content is None or not content.strip():
        raise ExtractionResponseError("Extractor returned an empty reply")

    body = content.strip()
    fenced = _CODE_FENCE_RE.match(body)
    if fenced:
        body = fenced.group("body")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ExtractionResponseError(f"Extractor reply is not valid JSON: {exc.msg}") from exc
    return parse_expense_payload(payload)


def parse_expense_payload(payload: Any) -> List[RawExpense]:
    if not isinstance(payload, list):
        raise ExtractionResponseError(f"Expected a JSON array of expenses, got {type(payload).__name__}")

    return [_parse_item(index, item) for index, item in enumerate(payload)]


def _parse_item(index: int, item: Any) -> RawExpense:
    if not isinstance(item, dict):
        raise ExtractionResponseError(f"Expense #{index} is not a JSON object")

    keys = set(item.keys())
    missing = EXPENSE_FIELDS - keys
    unexpected = keys - EXPENSE_FIELDS
    if missing:
        raise ExtractionResponseError(f"Expense #{index} is missing fields: {sorted(missing)}")
    if unexpected:
        raise ExtractionResponseError(f"Expense #{index} has unexpected fields: {sorted(unexpected)}")

    for text_field in ("unit", "description"):
        if not isinstance(item[text_field], str):
            raise ExtractionResponseError(f"Expense #{index} field '{text_field}' must be a string")

    return RawExpense(
        unit_price=_parse_decimal(index, "unit_price", item["unit_price"]),
        quantity=_parse_decimal(index, "quantity", item["quantity"]),
        unit=item["unit"],
        description=item["description"],
    )


def _parse_decimal(index: int, field_name: str, value: Any) -> Decimal:
    # bool is an int subclass; JSON true/false is never a price.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ExtractionResponseError(f"Expense #{index} field '{field_name}' must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ExtractionResponseError(f"Expense #{index} field '{field_name}' must be finite")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ExtractionResponseError(f"Expense #{index} field '{field_name}' is not a decimal") from exc


# "3 kg papas 2.5" / "1 pan 10" / "2 litro leche 1,20"
_LINE_RE = re.compile(
    r"^(?P<quantity>\d+(?:[.,]\d+)?)\s+"
    r"(?:(?P<unit>kg|g|l|lt|litros?|u|unidad(?:es)?|pasajes?|docenas?)\s+)?"
    r"(?P<description>.+?)\s+"
    r"(?P<unit_price>\d+(?:[.,]\d+)?)$",
    re.IGNORECASE,
)
_SEGMENT_SPLIT_RE = re.compile(r"[\n;]+")


class DeterministicExtractor:
    """
    Rule-based extractor for offline runs.

    Reads one purchase per line (or `;`-separated segment) shaped like
    `<quantity> [unit] <description> <unit_price>`. Segments that do not match
    are skipped; an unknown unit word stays in the description and the unit is
    left blank for the pipeline to default.
    """

    name = "deterministic"

    def extract(self, text: str) -> List[RawExpense]:
        expenses: List[RawExpense] = []
        skipped = 0
        for segment in _SEGMENT_SPLIT_RE.split(text or ""):
            candidate = segment.strip().rstrip(".")
            if not candidate:
                continue
            match = _LINE_RE.match(candidate)
            if not match:
                skipped += 1
                continue
            expenses.append(
                RawExpense(
                    unit_price=_decimal_from_text(match.group("unit_price")),
                    quantity=_decimal_from_text(match.group("quantity")),
                    unit=(match.group("unit") or "").lower(),
                    description=match.group("description").strip(),
                )
            )

        logger.info(
            {
                "event": "deterministic_extraction",
                "provider": self.name,
                "expense_count": len(expenses),
                "skipped_segments": skipped,
            }
        )
        return expenses


def _decimal_from_text(raw: str) -> Decimal:
    return Decimal(raw.replace(",", "."))


class MockExtractor:
    """
    Fixture-driven extractor suitable for tests or offline demos.

    The fixture is `{"expenses": [...]}` and goes through the same strict
    parsing as a live model reply.
    """

    name = "mock"

    def __init__(self, fixture_path: str | Path | None = None):
        env_override = os.getenv("EXTRACTION_PROVIDER_FIXTURE")
        candidate = fixture_path or env_override
        if candidate is None:
            candidate = _default_fixture_path()

        self._fixture_path = Path(candidate)
        if not self._fixture_path.exists():
            raise FileNotFoundError(f"Mock extraction fixture not found at {self._fixture_path}")

    def extract(self, text: str) -> List[RawExpense]:
        try:
            payload = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Mock extraction fixture is not valid JSON: {self._fixture_path}") from exc
        return parse_expense_payload(payload.get("expenses"))


def _default_fixture_path() -> Path:
    service_root = Path(__file__).resolve().parents[1]
    return service_root / "tests" / "fixtures" / "mock_extraction_provider.json"


def build_extractor(name: str | None, *, settings: Optional[Any] = None) -> Extractor:
    """Factory that instantiates the requested extractor implementation."""

    normalized = (name or "").strip().lower()
    if normalized in ("", "deterministic"):
        return DeterministicExtractor()
    if normalized == "mock":
        return MockExtractor()
    if normalized == "openai":
        from providers.openai_extraction import OpenAIExtractionProvider

        return OpenAIExtractionProvider(settings=settings)

    raise ValueError(f"Unsupported extraction provider '{name}'")
