"""Recognition records: storage, per-caller history and statistics."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from vegrecog.core.categories import Category
    from vegrecog.core.types import RecognitionResult


@dataclass(frozen=True)
class RecognitionRecord:
    """A finished recognition, as persisted."""

    result: RecognitionResult
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def caller_id(self) -> str:
        return self.result.caller_id

    @property
    def primary_category(self) -> Category | None:
        return self.result.objects[0].category if self.result.objects else None


@dataclass(frozen=True)
class CategoryStats:
    category: Category
    count: int
    average_confidence: float
    last_recognition: datetime


@dataclass(frozen=True)
class RecognitionStats:
    total_recognitions: int
    average_processing_ms: float
    categories: list[CategoryStats]


@dataclass(frozen=True)
class HistoryPage:
    records: list[RecognitionRecord]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


class RecognitionRepository(Protocol):
    """Protocol for durable recognition storage."""

    def save(self, result: RecognitionResult) -> RecognitionRecord:
        """Persist a finished recognition and return its record."""
        ...

    def history(self, caller_id: str, page: int = 1, limit: int = 20) -> HistoryPage:
        """Return a caller's records, newest first."""
        ...

    def stats(self) -> RecognitionStats:
        """Return per-category counts and averages over all records."""
        ...


class InMemoryRecognitionRepository:
    """Process-local repository. Records do not survive a restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[RecognitionRecord] = []

    def save(self, result: RecognitionResult) -> RecognitionRecord:
        record = RecognitionRecord(result=result)
        with self._lock:
            self._records.append(record)
        return record

    def history(self, caller_id: str, page: int = 1, limit: int = 20) -> HistoryPage:
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be >= 1")
        with self._lock:
            matching = [r for r in reversed(self._records) if r.caller_id == caller_id]
        start = (page - 1) * limit
        return HistoryPage(records=matching[start : start + limit], total=len(matching), page=page, limit=limit)

    def stats(self) -> RecognitionStats:
        with self._lock:
            records = list(self._records)

        grouped: dict[Category, list[RecognitionRecord]] = {}
        for record in records:
            category = record.primary_category
            if category is not None:
                grouped.setdefault(category, []).append(record)

        categories = [
            CategoryStats(
                category=category,
                count=len(items),
                average_confidence=sum(r.result.objects[0].confidence for r in items) / len(items),
                last_recognition=max(r.created_at for r in items),
            )
            for category, items in grouped.items()
        ]
        categories.sort(key=lambda s: s.count, reverse=True)

        average_ms = sum(r.result.processing_ms for r in records) / len(records) if records else 0.0
        return RecognitionStats(
            total_recognitions=len(records),
            average_processing_ms=average_ms,
            categories=categories,
        )
