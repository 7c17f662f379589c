"""Derived market signals over a street's monthly series."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Sequence

from pipelines.aggregate import DEFAULT_WINDOW_MONTHS, aggregate_monthly
from pipelines.matching import match_street
from pipelines.model import (
    MonthlySeries,
    PropertyRecord,
    StreetInsights,
    TrendDirection,
    TrendSignal,
)


@dataclass(frozen=True)
class SignalThresholds:
    """Tunable cut-offs for trend classification and launch detection."""

    trend_pct: float = 3.0
    launch_z: float = 2.0
    launch_min_transactions: int = 5
    window_months: int = DEFAULT_WINDOW_MONTHS


DEFAULT_THRESHOLDS = SignalThresholds()


def _dense_prices(series: MonthlySeries) -> list[float]:
    return [price for price in series.prices if price is not None]


def compute_trend(
    series: MonthlySeries, thresholds: SignalThresholds = DEFAULT_THRESHOLDS
) -> TrendSignal:
    """Compare the first and last months that have a price; gaps are skipped."""

    prices = _dense_prices(series)
    if len(prices) < 2:
        return TrendSignal()

    first, last = prices[0], prices[-1]
    percent = (last - first) / first * 100 if first > 0 else 0.0
    if percent > thresholds.trend_pct:
        direction = TrendDirection.UP
    elif percent < -thresholds.trend_pct:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.FLAT
    return TrendSignal(direction=direction, percent=percent)


def latest_price(series: MonthlySeries) -> float:
    prices = _dense_prices(series)
    return prices[-1] if prices else 0.0


def _population_stats(values: Sequence[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    mean = sum(values) / len(values)
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    return mean, math.sqrt(variance)


def detect_launches(
    series: MonthlySeries, thresholds: SignalThresholds = DEFAULT_THRESHOLDS
) -> list[str]:
    """Months whose volume exceeds ``mean + z * std`` and the absolute floor.

    Uses the population standard deviation. Results are chronological.
    """

    counts = series.counts
    mean, std = _population_stats(counts)
    cutoff = mean + thresholds.launch_z * std
    return [
        point.month
        for point in series.points
        if point.transaction_total > cutoff
        and point.transaction_total > thresholds.launch_min_transactions
    ]


def total_transactions(records: Iterable[PropertyRecord]) -> int:
    return sum(record.transaction_count for record in records)


def build_street_insights(
    records: Iterable[PropertyRecord],
    query: str,
    *,
    now: date | datetime | None = None,
    thresholds: SignalThresholds = DEFAULT_THRESHOLDS,
) -> StreetInsights:
    """Match ``query`` and derive the series plus every signal for it."""

    matched = match_street(records, query)
    series = aggregate_monthly(matched, now=now, window=thresholds.window_months)
    return StreetInsights(
        query=query.strip(),
        matched_records=len(matched),
        neighborhood=matched[0].neighborhood if matched else "",
        series=series,
        trend=compute_trend(series, thresholds),
        latest_price=latest_price(series),
        launches=tuple(detect_launches(series, thresholds)),
        total_transactions=total_transactions(matched),
    )


__all__ = [
    "DEFAULT_THRESHOLDS",
    "SignalThresholds",
    "build_street_insights",
    "compute_trend",
    "detect_launches",
    "latest_price",
    "total_transactions",
]
