"""Street lookup over canonical records: substring matching and suggestions."""

from __future__ import annotations

import unicodedata
from typing import Iterable, Sequence

from pipelines.model import PropertyRecord, StreetSuggestion, UseClass

SUGGESTION_LIMIT = 12
SUGGESTION_MIN_LENGTH = 2
EXCLUDED_TYPOLOGIES: Sequence[str] = ("VAGA DE GARAGEM",)


def fold_text(text: str) -> str:
    """Lower-case ``text`` and strip diacritics (``"São João"`` -> ``"sao joao"``)."""

    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def match_street(records: Iterable[PropertyRecord], query: str) -> list[PropertyRecord]:
    """Return records whose address contains ``query``, ignoring case and accents.

    A blank query matches nothing.
    """

    needle = fold_text(query.strip())
    if not needle:
        return []
    return [record for record in records if needle in fold_text(record.address)]


def suggest_streets(
    records: Iterable[PropertyRecord],
    query: str,
    *,
    limit: int = SUGGESTION_LIMIT,
    min_length: int = SUGGESTION_MIN_LENGTH,
) -> list[StreetSuggestion]:
    """Collect up to ``limit`` distinct addresses containing ``query``.

    Addresses keep first-seen order and carry the neighborhood of the first
    record that produced them. Scanning stops as soon as the cap is reached.
    """

    needle = fold_text(query.strip())
    if len(needle) < min_length or limit < 1:
        return []

    seen: dict[str, StreetSuggestion] = {}
    for record in records:
        if record.address in seen or needle not in fold_text(record.address):
            continue
        seen[record.address] = StreetSuggestion(
            address=record.address, neighborhood=record.neighborhood
        )
        if len(seen) >= limit:
            break
    return list(seen.values())


def filter_by_use(
    records: Iterable[PropertyRecord],
    use_class: UseClass,
    *,
    excluded_typologies: Sequence[str] = EXCLUDED_TYPOLOGIES,
) -> list[PropertyRecord]:
    """Keep one use class and drop non-dwelling line items such as parking spaces."""

    excluded = {typology.strip().upper() for typology in excluded_typologies}
    return [
        record
        for record in records
        if record.use_class == use_class and record.typology.upper() not in excluded
    ]


__all__ = [
    "EXCLUDED_TYPOLOGIES",
    "SUGGESTION_LIMIT",
    "SUGGESTION_MIN_LENGTH",
    "filter_by_use",
    "fold_text",
    "match_street",
    "suggest_streets",
]
