"""Normalization of raw ITBI features into canonical ``PropertyRecord`` rows.

Field names differ between the aggregate endpoint and the raw municipal
exports, so every canonical field is resolved through an ordered alias list.
Rows that cannot be placed on a street and a calendar month are skipped.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError

from pipelines.model import PropertyRecord, UseClass

# Canonical field -> source keys, in lookup order.
ADDRESS_FIELDS: Sequence[str] = ("street", "address", "logradouro", "nome_do_logradouro")
PERIOD_FIELDS: Sequence[str] = ("year_month", "period", "ano_mes", "data_de_transacao")
YEAR_FIELDS: Sequence[str] = ("year", "ano")
MONTH_FIELDS: Sequence[str] = ("month", "mes")
TOTAL_VALUE_FIELDS: Sequence[str] = (
    "total_transaction_value",
    "total_value",
    "valor_total",
    "valor_de_transacao",
)
TOTAL_AREA_FIELDS: Sequence[str] = (
    "total_built_area_m2",
    "total_area",
    "area_construida_total",
    "area_construida",
)
COUNT_FIELDS: Sequence[str] = ("total_transactions", "transaction_count", "total_transacoes")
AVG_AREA_FIELDS: Sequence[str] = ("avg_built_area_m2", "media_area_construida")
NEIGHBORHOOD_FIELDS: Sequence[str] = ("neighborhood", "bairro")
TAG_FIELDS: Sequence[str] = ("construction_type", "padrao_construtivo", "tipo_construcao")
PROPERTY_USE_FIELDS: Sequence[str] = ("property_use", "uso")
TYPOLOGY_FIELDS: Sequence[str] = ("principais_tipologias", "typology")

COMMERCIAL_TOKEN = "COMERCIAL"

_PERIOD_PATTERN = re.compile(r"^\s*(\d{4})[-/](\d{1,2})(?![0-9A-Za-z])")
_SENTINEL_STRINGS = {"", "NA", "N/A", "NaN", "nan", "null", "None", "-"}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizationResult:
    records: list[PropertyRecord]
    skipped: int


def _first_present(feature: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = feature.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _text(feature: Mapping[str, Any], keys: Iterable[str]) -> str:
    value = _first_present(feature, keys)
    return str(value).strip() if value is not None else ""


def _coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if stripped in _SENTINEL_STRINGS:
            return None
        try:
            numeric = float(stripped)
        except ValueError:
            return None
    else:
        return None

    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def _coerce_int(value: Any) -> int | None:
    numeric = _coerce_float(value)
    if numeric is None or not numeric.is_integer():
        return None
    return int(numeric)


def _resolve_period(feature: Mapping[str, Any]) -> tuple[int, int] | None:
    token = _first_present(feature, PERIOD_FIELDS)
    if isinstance(token, str):
        match = _PERIOD_PATTERN.match(token)
        if match:
            year, month = int(match.group(1)), int(match.group(2))
        else:
            return None
    else:
        year = _coerce_int(_first_present(feature, YEAR_FIELDS))
        month = _coerce_int(_first_present(feature, MONTH_FIELDS))
        if year is None or month is None:
            return None

    if year < 1 or not 1 <= month <= 12:
        return None
    return year, month


def classify_use(tag: str) -> UseClass:
    """Return ``NAO_RESIDENCIAL`` when the construction type mentions commerce."""

    if COMMERCIAL_TOKEN in tag.upper():
        return UseClass.NAO_RESIDENCIAL
    return UseClass.RESIDENCIAL


def _non_negative(value: float | None) -> float:
    if value is None or value < 0:
        return 0.0
    return value


def normalize_feature(feature: Mapping[str, Any]) -> PropertyRecord | None:
    """Map one raw feature to a ``PropertyRecord`` or ``None`` if it is unusable."""

    if not isinstance(feature, Mapping):
        return None

    address = _text(feature, ADDRESS_FIELDS)
    if not address:
        return None

    period = _resolve_period(feature)
    if period is None:
        return None
    year, month = period

    count = _coerce_int(_first_present(feature, COUNT_FIELDS))
    raw_tag = _text(feature, TAG_FIELDS)

    try:
        return PropertyRecord(
            address=address,
            date=date(year, month, 1),
            total_value=_non_negative(_coerce_float(_first_present(feature, TOTAL_VALUE_FIELDS))),
            total_area=_non_negative(_coerce_float(_first_present(feature, TOTAL_AREA_FIELDS))),
            transaction_count=count if count and count >= 1 else 1,
            avg_area=_non_negative(_coerce_float(_first_present(feature, AVG_AREA_FIELDS))),
            neighborhood=_text(feature, NEIGHBORHOOD_FIELDS),
            use_class=classify_use(raw_tag),
            raw_tag=raw_tag,
            property_use=_text(feature, PROPERTY_USE_FIELDS),
            typology=_text(feature, TYPOLOGY_FIELDS),
        )
    except (ValidationError, ValueError):
        return None


def normalize_with_stats(features: Iterable[Mapping[str, Any]]) -> NormalizationResult:
    records: list[PropertyRecord] = []
    skipped = 0
    for feature in features:
        record = normalize_feature(feature)
        if record is None:
            skipped += 1
            continue
        records.append(record)

    if skipped:
        logger.info(
            "Normalized %s ITBI records; skipped %s rows without address or period.",
            len(records),
            skipped,
        )
    else:
        logger.info("Normalized %s ITBI records.", len(records))
    return NormalizationResult(records=records, skipped=skipped)


def normalize_features(features: Iterable[Mapping[str, Any]]) -> list[PropertyRecord]:
    """Normalize raw features, dropping invalid rows and preserving input order."""

    return normalize_with_stats(features).records


__all__ = [
    "COMMERCIAL_TOKEN",
    "NormalizationResult",
    "classify_use",
    "normalize_feature",
    "normalize_features",
    "normalize_with_stats",
]
