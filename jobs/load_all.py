"""End-to-end job that fetches the ITBI dataset and builds a record snapshot."""

from __future__ import annotations

import logging

import httpx

from jobs.config import Settings, load_settings
from pipelines.normalize import normalize_with_stats
from pipelines.snapshot import RecordSnapshot, SnapshotLoader
from pipelines.sources.itbi import fetch_itbi_features

logger = logging.getLogger(__name__)


async def load_snapshot(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RecordSnapshot:
    """Fetch every raw feature, normalize it and freeze the result.

    ``FetchError`` propagates untouched so no partial snapshot is ever built.
    """

    settings = settings or load_settings()
    logger.info(
        "Fetching ITBI features from %s (page size=%s).",
        settings.source.base_url,
        settings.source.page_size,
    )
    features = await fetch_itbi_features(settings.source, transport=transport)
    result = normalize_with_stats(features)
    return RecordSnapshot(
        records=tuple(result.records),
        fetched_count=len(features),
        skipped_count=result.skipped,
    )


def snapshot_loader(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SnapshotLoader:
    """Bind ``load_snapshot`` arguments for ``SnapshotStore.refresh``."""

    async def _load() -> RecordSnapshot:
        return await load_snapshot(settings, transport=transport)

    return _load


__all__ = ["load_snapshot", "snapshot_loader"]
