"""End-to-end deterministic run: voice note -> transcript -> expenses -> SQLite -> listing."""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from errors import NoExpensesFound
from extraction_provider import DeterministicExtractor
from listing import list_expenses
from persistence.database import build_engine, build_session_factory, init_db
from persistence.repository import ExpenseRepository
from pipeline import ExpensePipeline
from transcription_provider import DeterministicTranscriber

TRANSCRIPT = "3 kg papas 2,50\n1 pan 10\n2 litros leche 1.20\n"


@pytest.fixture
def repository(tmp_path: Path):
    engine = build_engine(f"sqlite:///{tmp_path / 'voice-notes.db'}")
    init_db(engine)
    yield ExpenseRepository(build_session_factory(engine))
    engine.dispose()


def _voice_note(directory: Path, transcript: str) -> Path:
    audio = directory / "note.m4a"
    audio.write_bytes(b"\x00\x00\x00\x18ftypM4A fake")
    Path(f"{audio}.txt").write_text(transcript, encoding="utf-8")
    return audio


@pytest.mark.integration
def test_voice_note_is_stored_and_listed(tmp_path: Path, repository: ExpenseRepository) -> None:
    audio = _voice_note(tmp_path, TRANSCRIPT)
    ticks = itertools.count()
    clock = lambda: datetime(2026, 2, 22, 12, 0, tzinfo=timezone.utc) + timedelta(milliseconds=next(ticks))  # noqa: E731
    pipeline = ExpensePipeline(DeterministicTranscriber(), DeterministicExtractor(), repository, clock=clock)
    purchased_at = datetime(2026, 2, 22, 10, 30, tzinfo=timezone.utc)

    created = asyncio.run(pipeline.process_audio(str(audio), purchased_at))

    assert [(e.description, e.unit, e.quantity, e.unit_price) for e in created] == [
        ("papas", "kg", Decimal("3"), Decimal("2.50")),
        ("pan", "u", Decimal("1"), Decimal("10")),
        ("leche", "litros", Decimal("2"), Decimal("1.20")),
    ]
    assert {expense.purchased_at for expense in created} == {purchased_at}

    page = list_expenses(repository, page="1", per_page="2", order_by="created_at", order_dir="asc")
    assert page.total == 3
    assert page.total_pages == 2
    assert [expense.description for expense in page.data] == ["papas", "pan"]

    last_page = list_expenses(repository, page="2", per_page="2", order_by="created_at", order_dir="asc")
    assert [expense.description for expense in last_page.data] == ["leche"]

    stored = repository.get(created[1].id)
    assert stored is not None
    assert stored.unit == "u"
    assert stored.purchased_at == purchased_at


@pytest.mark.integration
def test_silent_voice_note_stores_nothing(tmp_path: Path, repository: ExpenseRepository) -> None:
    audio = _voice_note(tmp_path, "hola, hoy no compré nada")
    pipeline = ExpensePipeline(DeterministicTranscriber(), DeterministicExtractor(), repository)

    with pytest.raises(NoExpensesFound):
        asyncio.run(pipeline.process_audio(str(audio)))

    assert repository.count() == 0
