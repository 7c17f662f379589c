"""Canonical data model for ITBI transaction records and derived street signals."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class UseClass(str, Enum):
    """Property use classification derived from the source construction type."""

    RESIDENCIAL = "RESIDENCIAL"
    NAO_RESIDENCIAL = "NAO_RESIDENCIAL"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class PropertyRecord(BaseModel):
    """Normalized representation of one ITBI row (usually a monthly street aggregate)."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    address: str = Field(..., min_length=1, description="Street or address text as published.")
    date: dt.date = Field(..., description="First day of the reporting month.")
    total_value: float = Field(
        0.0, ge=0, description="Summed transaction value for the period this row covers."
    )
    total_area: float = Field(
        0.0, ge=0, description="Summed built area (m2) for the period this row covers."
    )
    transaction_count: int = Field(
        1, ge=1, description="Number of transactions aggregated into this row."
    )
    avg_area: float = Field(0.0, ge=0, description="Average built area reported by the source.")
    neighborhood: str = Field("", description="Neighborhood (bairro) name, may be empty.")
    use_class: UseClass = Field(
        UseClass.RESIDENCIAL, description="Residential vs non-residential classification."
    )
    raw_tag: str = Field("", description="Original construction type text.")
    property_use: str = Field("", description="Original property use text.")
    typology: str = Field("", description="Principal typology text (e.g. parking spaces).")

    @field_validator("date")
    @classmethod
    def _first_of_month(cls, value: dt.date) -> dt.date:
        return value.replace(day=1)

    @property
    def year(self) -> int:
        return self.date.year

    @property
    def month(self) -> int:
        return self.date.month

    @computed_field
    @property
    def month_key(self) -> str:
        return f"{self.date.year:04d}-{self.date.month:02d}"

    @computed_field
    @property
    def avg_value(self) -> float:
        return self.total_value / self.transaction_count

    @computed_field
    @property
    def per_area_price(self) -> Optional[float]:
        if self.total_value > 0 and self.total_area > 0:
            return self.total_value / self.total_area
        return None


class MonthPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: str = Field(..., description="Calendar month key in YYYY-MM form.")
    weighted_price: Optional[float] = Field(
        None, description="sum(total_value) / sum(total_area); None when the month has no area."
    )
    transaction_total: int = Field(0, ge=0, description="Summed transaction count.")


class MonthlySeries(BaseModel):
    """Trailing window of monthly points ordered oldest to newest."""

    model_config = ConfigDict(frozen=True)

    points: tuple[MonthPoint, ...] = ()

    @property
    def months(self) -> list[str]:
        return [point.month for point in self.points]

    @property
    def prices(self) -> list[Optional[float]]:
        return [point.weighted_price for point in self.points]

    @property
    def counts(self) -> list[int]:
        return [point.transaction_total for point in self.points]


class TrendSignal(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: TrendDirection = TrendDirection.FLAT
    percent: float = 0.0


class StreetSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    neighborhood: str = ""


class StreetInsights(BaseModel):
    """Everything the presentation layer needs to render one street query."""

    model_config = ConfigDict(frozen=True)

    query: str
    matched_records: int = Field(..., ge=0)
    neighborhood: str = ""
    series: MonthlySeries
    trend: TrendSignal
    latest_price: float = 0.0
    launches: tuple[str, ...] = ()
    total_transactions: int = Field(0, ge=0)

    @computed_field
    @property
    def featured_launches(self) -> tuple[str, ...]:
        return self.launches[:3]


__all__ = [
    "MonthPoint",
    "MonthlySeries",
    "PropertyRecord",
    "StreetInsights",
    "StreetSuggestion",
    "TrendDirection",
    "TrendSignal",
    "UseClass",
]
