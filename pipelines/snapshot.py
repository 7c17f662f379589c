"""Immutable in-memory snapshot of canonical records and its refresh handle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Awaitable, Callable

from pipelines.model import PropertyRecord
from pipelines.sources.itbi import FetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordSnapshot:
    """A complete, normalized load of the ITBI dataset."""

    records: tuple[PropertyRecord, ...]
    fetched_count: int
    skipped_count: int = 0
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))


SnapshotLoader = Callable[[], Awaitable[RecordSnapshot]]


class SnapshotStore:
    """Holds the current snapshot; a refresh replaces it in a single assignment.

    Readers grab ``store.snapshot`` once per query and work on that value, so a
    concurrent refresh never exposes a half-built record set.
    """

    def __init__(self, snapshot: RecordSnapshot | None = None) -> None:
        self._snapshot = snapshot
        self._last_error: str | None = None

    @property
    def snapshot(self) -> RecordSnapshot | None:
        return self._snapshot

    @property
    def last_error(self) -> str | None:
        return self._last_error

    async def refresh(self, loader: SnapshotLoader) -> RecordSnapshot:
        """Run ``loader`` and publish its snapshot; on ``FetchError`` keep the old one."""

        try:
            snapshot = await loader()
        except FetchError as exc:
            self._last_error = str(exc)
            logger.error("ITBI snapshot refresh failed: %s", exc)
            raise
        self._snapshot = snapshot
        self._last_error = None
        logger.info(
            "Published ITBI snapshot with %s records (%s fetched, %s skipped).",
            len(snapshot.records),
            snapshot.fetched_count,
            snapshot.skipped_count,
        )
        return snapshot


__all__ = ["RecordSnapshot", "SnapshotLoader", "SnapshotStore"]
