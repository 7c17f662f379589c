"""Monthly aggregation of matched records over a trailing calendar window."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from typing import Iterable

from pipelines.model import MonthlySeries, MonthPoint, PropertyRecord

DEFAULT_WINDOW_MONTHS = 24

MonthlyBucket = dict[str, list[PropertyRecord]]


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def trailing_month_keys(
    now: date | datetime | None = None, window: int = DEFAULT_WINDOW_MONTHS
) -> list[str]:
    """Return ``window`` month keys ending at the month of ``now``, oldest first."""

    anchor = now or datetime.now()
    keys = []
    for back in range(window - 1, -1, -1):
        year, month = _shift_month(anchor.year, anchor.month, -back)
        keys.append(f"{year:04d}-{month:02d}")
    return keys


def group_by_month(records: Iterable[PropertyRecord]) -> MonthlyBucket:
    buckets: defaultdict[str, list[PropertyRecord]] = defaultdict(list)
    for record in records:
        buckets[record.month_key].append(record)
    return dict(buckets)


def weighted_price(records: Iterable[PropertyRecord]) -> float | None:
    """``sum(total_value) / sum(total_area)``, or ``None`` when there is no area.

    Rows are pooled before dividing so that high-volume rows weigh more than
    low-volume ones; this is not the mean of per-row prices.
    """

    total_value = 0.0
    total_area = 0.0
    for record in records:
        total_value += record.total_value
        total_area += record.total_area
    if total_area <= 0:
        return None
    return total_value / total_area


def aggregate_monthly(
    records: Iterable[PropertyRecord],
    *,
    now: date | datetime | None = None,
    window: int = DEFAULT_WINDOW_MONTHS,
) -> MonthlySeries:
    """Build the trailing monthly series for an already matched set of records."""

    keys = trailing_month_keys(now, window)
    buckets = group_by_month(records)

    points = []
    for key in keys:
        items = buckets.get(key, [])
        points.append(
            MonthPoint(
                month=key,
                weighted_price=weighted_price(items),
                transaction_total=sum(item.transaction_count for item in items),
            )
        )
    return MonthlySeries(points=tuple(points))


__all__ = [
    "DEFAULT_WINDOW_MONTHS",
    "MonthlyBucket",
    "aggregate_monthly",
    "group_by_month",
    "trailing_month_keys",
    "weighted_price",
]
