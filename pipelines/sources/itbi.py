"""São Paulo ITBI ingestor.

Pages through the ITBI aggregate endpoint and merges every page into a single
list of raw feature mappings. The endpoint is not guaranteed to emit strict
JSON, so bodies are sanitized before they are decoded.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from pipelines.common import DEFAULT_ATTEMPTS, DEFAULT_TIMEOUT_SECONDS, fetch_text

ITBI_BASE_URL = "https://7qrc3rfl2f226uqohfpkus4hzu0faves.lambda-url.us-west-2.on.aws"
DEFAULT_PAGE_SIZE = 5000
DEFAULT_MAX_RECORDS = 200_000

# Quoted strings are matched whole so that only bare non-finite literals in
# value position (``"total": NaN``, ``[1, -Infinity]``) are rewritten.
_STRING_OR_NON_FINITE = re.compile(
    r'"(?:[^"\\]|\\.)*"|(?P<lead>[:\[,]\s*)-?(?:NaN|Infinity)(?=\s*[,}\]])'
)

logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Raised when the ITBI dataset cannot be retrieved as a whole."""


@dataclass(frozen=True)
class ItbiSourceConfig:
    """Connection and pagination settings for the ITBI endpoint."""

    base_url: str = ITBI_BASE_URL
    page_size: int = DEFAULT_PAGE_SIZE
    max_records: int = DEFAULT_MAX_RECORDS
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    attempts: int = DEFAULT_ATTEMPTS


@dataclass(frozen=True)
class ItbiPage:
    records: list[Mapping[str, Any]]
    total_records: int | None


def sanitize_json_text(text: str) -> str:
    """Replace non-standard numeric literals (``NaN``, ``Infinity``) with ``null``."""

    def _replace(match: re.Match[str]) -> str:
        lead = match.group("lead")
        return match.group(0) if lead is None else f"{lead}null"

    return _STRING_OR_NON_FINITE.sub(_replace, text)


def _coerce_total(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return int(value)
    return None


def parse_page(payload: str | Mapping[str, Any]) -> ItbiPage:
    """Decode one response envelope ``{"data": [...], "total_records": n}``.

    Accepts the raw body text or an already decoded mapping. Bodies that decode
    to a JSON string (double encoded) are decoded a second time.
    """

    decoded: Any = payload
    for _ in range(2):
        if not isinstance(decoded, str):
            break
        try:
            decoded = json.loads(sanitize_json_text(decoded), parse_constant=lambda _: None)
        except ValueError as exc:
            raise FetchError(f"ITBI response is not valid JSON: {exc}") from exc

    if not isinstance(decoded, Mapping):
        raise FetchError(
            f"Unexpected ITBI envelope type {type(decoded).__name__}; expected an object."
        )

    data = decoded.get("data")
    if data is None:
        records: list[Mapping[str, Any]] = []
    elif isinstance(data, list):
        records = [rec for rec in data if isinstance(rec, Mapping)]
        if len(records) != len(data):
            logger.debug("Dropped %s non-object entries from ITBI page.", len(data) - len(records))
    else:
        raise FetchError(
            f"Unexpected ITBI 'data' type {type(data).__name__}; expected a list."
        )

    return ItbiPage(records=records, total_records=_coerce_total(decoded.get("total_records")))


async def fetch_itbi_features(
    config: ItbiSourceConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[Mapping[str, Any]]:
    """Fetch every ITBI feature, page by page, preserving request order.

    Stops at the first empty or short page, once ``total_records`` has been
    collected, or when ``max_records`` is reached. Any failed page aborts the
    whole fetch with ``FetchError``.
    """

    config = config or ItbiSourceConfig()
    if config.page_size < 1:
        raise ValueError("page_size must be a positive integer.")

    collected: list[Mapping[str, Any]] = []
    offset = 0

    while True:
        params = {"limit": config.page_size, "offset": offset}
        logger.debug("Requesting ITBI page offset=%s limit=%s", offset, config.page_size)
        try:
            body = await fetch_text(
                config.base_url,
                headers={"Accept": "application/json"},
                params=params,
                timeout=config.timeout,
                attempts=config.attempts,
                transport=transport,
            )
        except httpx.TimeoutException as exc:
            raise FetchError(
                f"ITBI request timed out after {config.timeout}s (offset={offset})."
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"ITBI request failed with status {exc.response.status_code} (offset={offset})."
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"ITBI request failed (offset={offset}): {exc}") from exc

        page = parse_page(body)
        if not page.records:
            logger.debug("ITBI page at offset=%s is empty; pagination complete.", offset)
            break

        collected.extend(page.records)
        logger.debug(
            "Fetched %s ITBI records. Total so far: %s/%s",
            len(page.records),
            len(collected),
            page.total_records if page.total_records is not None else "?",
        )

        if len(collected) >= config.max_records:
            logger.warning(
                "ITBI fetch reached the safety cap of %s records; truncating.",
                config.max_records,
            )
            del collected[config.max_records :]
            break
        if len(page.records) < config.page_size:
            break
        if page.total_records is not None and len(collected) >= page.total_records:
            break
        offset += config.page_size

    logger.info("ITBI fetch finished with %s records.", len(collected))
    return collected


__all__ = [
    "DEFAULT_MAX_RECORDS",
    "DEFAULT_PAGE_SIZE",
    "FetchError",
    "ITBI_BASE_URL",
    "ItbiPage",
    "ItbiSourceConfig",
    "fetch_itbi_features",
    "parse_page",
    "sanitize_json_text",
]
