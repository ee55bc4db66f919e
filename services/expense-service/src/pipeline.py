"""
Voice note -> persisted expenses.

One call to `ExpensePipeline.process_audio` runs strictly in sequence:
transcribe, extract, normalize, then write each record in extraction order.
Provider calls are blocking and run on a worker thread so the event loop stays
free; an optional timeout bounds the transcription and extraction calls together.

Writes are best-effort and fail fast: if record k cannot be stored the loop stops,
records 0..k-1 stay in the store and the caller gets PersistenceFailed(index=k)
rather than a partial list.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Type

from errors import (
    ExpenseServiceError,
    ExtractionFailed,
    NoExpensesFound,
    PersistenceFailed,
    TranscriptionFailed,
)
from expense_model import Clock, Expense, IdFactory, RawExpense, new_expense_id, normalize_unit, utc_now
from expense_store import ExpenseStore
from extraction_provider import Extractor
from transcription_provider import Transcriber

from shared.observability.privacy import text_fingerprint
from shared.observability.telemetry import pipeline_stage

logger = logging.getLogger(__name__)


def normalize_raw_expense(raw: RawExpense) -> RawExpense:
    """Apply per-record defaults. Only a blank unit changes (to "u")."""
    return dataclasses.replace(raw, unit=normalize_unit(raw.unit))


class ExpensePipeline:
    """Orchestrates Transcriber -> Extractor -> ExpenseStore for one upload at a time."""

    def __init__(
        self,
        transcriber: Transcriber,
        extractor: Extractor,
        store: ExpenseStore,
        *,
        clock: Clock = utc_now,
        id_factory: IdFactory = new_expense_id,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._transcriber = transcriber
        self._extractor = extractor
        self._store = store
        self._clock = clock
        self._id_factory = id_factory
        self._timeout_seconds = timeout_seconds

    async def process_audio(self, audio_path: str, purchased_at: Optional[datetime] = None) -> List[Expense]:
        """
        Turn one audio file into persisted expenses, returned in mention order.

        Args:
            audio_path: Readable audio file handed to the transcriber as-is.
            purchased_at: Purchase time shared by every record. Defaults to the
                time this call started. Naive values are taken as UTC (the HTTP
                surface only ever passes offset-aware values).

        Raises:
            TranscriptionFailed, ExtractionFailed, NoExpensesFound, PersistenceFailed.
        """
        started_at = self._clock()
        shared_purchased_at = _as_utc(purchased_at) if purchased_at is not None else started_at

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout_seconds if self._timeout_seconds else None

        logger.info({"event": "transcription_started", "provider": self._transcriber.name})
        transcription = await self._call_provider(
            "transcription", self._transcriber, self._transcriber.transcribe, audio_path, deadline, TranscriptionFailed
        )
        logger.info(
            {
                "event": "transcription_completed",
                "provider": self._transcriber.name,
                "transcript": text_fingerprint(transcription),
            }
        )

        raw_expenses = await self._call_provider(
            "extraction", self._extractor, self._extractor.extract, transcription, deadline, ExtractionFailed
        )
        logger.info(
            {"event": "extraction_completed", "provider": self._extractor.name, "expense_count": len(raw_expenses)}
        )
        if not raw_expenses:
            raise NoExpensesFound("No expenses were found in the transcription")

        normalized = [normalize_raw_expense(raw) for raw in raw_expenses]
        expenses = await self._persist_in_order(normalized, shared_purchased_at)

        logger.info({"event": "expenses_created", "expense_count": len(expenses)})
        return expenses

    async def _call_provider(
        self,
        stage: str,
        provider: Any,
        func: Callable[[Any], Any],
        argument: Any,
        deadline: Optional[float],
        error_cls: Type[ExpenseServiceError],
    ) -> Any:
        remaining: Optional[float] = None
        if deadline is not None:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise error_cls(f"{stage} did not start before the request timeout")

        with pipeline_stage(stage, provider=provider.name, timeout_seconds=remaining):
            try:
                return await asyncio.wait_for(asyncio.to_thread(func, argument), timeout=remaining)
            except asyncio.TimeoutError as exc:
                logger.error({"event": f"{stage}_timeout", "timeout_seconds": self._timeout_seconds})
                raise error_cls(f"{stage} timed out") from exc
            except Exception as exc:
                logger.error({"event": f"{stage}_failed", "error_type": type(exc).__name__, "error_message": str(exc)})
                raise error_cls(f"{stage} failed: {exc}") from exc

    async def _persist_in_order(self, records: List[RawExpense], purchased_at: datetime) -> List[Expense]:
        with pipeline_stage("persistence", record_count=len(records)):
            return await self._persist_records(records, purchased_at)

    async def _persist_records(self, records: List[RawExpense], purchased_at: datetime) -> List[Expense]:
        persisted: List[Expense] = []
        total = len(records)

        for index, raw in enumerate(records):
            expense = Expense(
                id=self._id_factory(),
                unit_price=raw.unit_price,
                quantity=raw.quantity,
                unit=raw.unit,
                description=raw.description,
                purchased_at=purchased_at,
                created_at=self._clock(),
            )
            logger.info({"event": "expense_persisting", "index": index, "total": total, "expense_id": expense.id})

            write = asyncio.ensure_future(asyncio.to_thread(self._store.create, expense))
            try:
                await asyncio.shield(write)
            except asyncio.CancelledError:
                # A write that already started is allowed to finish; nothing after it starts.
                await self._settle_cancelled_write(write, index, expense.id)
                raise
            except Exception as exc:
                logger.error(
                    {
                        "event": "expense_persist_failed",
                        "index": index,
                        "total": total,
                        "expense_id": expense.id,
                        "persisted_before_failure": len(persisted),
                        "error_type": type(exc).__name__,
                    }
                )
                raise PersistenceFailed(index) from exc

            persisted.append(expense)

        return persisted

    @staticmethod
    async def _settle_cancelled_write(write: "asyncio.Future[None]", index: int, expense_id: str) -> None:
        try:
            await write
        except Exception as exc:
            logger.error(
                {
                    "event": "expense_persist_failed_after_cancel",
                    "index": index,
                    "expense_id": expense_id,
                    "error_type": type(exc).__name__,
                }
            )
            return
        logger.warning({"event": "expense_persisted_after_cancel", "index": index, "expense_id": expense_id})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
