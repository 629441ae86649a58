from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, Sequence

import structlog

from usagetop.errors import ParseError
from usagetop.models import DailyCostRecord, DailyUsageRecord, FetchWindow, Provider

logger = structlog.get_logger()

# upper bound on pages followed per endpoint
MAX_PAGES = 30


class UsageProvider(Protocol):
    """
    UsageProvider stands as a common protocol that all
    billing providers must satisfy.

    Providers fetch cost and usage data for the fetch window and
    return provider-agnostic daily records.
    """

    @property
    def name(self) -> "Provider": ...

    async def fetch_costs(self, window: "FetchWindow") -> "Sequence[DailyCostRecord]": ...

    async def fetch_usage(
        self, window: "FetchWindow"
    ) -> "Sequence[DailyUsageRecord]": ...

    async def fetch_key_names(self, api_key_ids: "Iterable[str]") -> "dict[str, str]": ...

    async def close(self) -> "None": ...


def parse_decimal(value: "Any", field: "str") -> "Decimal":
    """
    parses a JSON number or numeric string. Missing values are zero,
    anything else that is not a finite number raises ParseError.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ParseError(field, value)
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ParseError(field, value) from None
    if not number.is_finite():
        raise ParseError(field, value)
    return number


def parse_int(value: "Any", field: "str") -> "int":
    number = parse_decimal(value, field)
    if number < 0:
        raise ParseError(field, value)
    return int(number)


def int_field(result: "dict[str, Any]", name: "str", provider: "Provider") -> "int":
    """
    reads an integer field, logging and defaulting to zero when it is
    malformed so a single bad field never drops the whole row.
    """
    try:
        return parse_int(result.get(name), name)
    except ParseError as err:
        logger.warning("malformed_field", provider=provider.value, error=str(err))
        return 0


def decimal_field(value: "Any", name: "str", provider: "Provider") -> "Decimal":
    try:
        return parse_decimal(value, name)
    except ParseError as err:
        logger.warning("malformed_field", provider=provider.value, error=str(err))
        return Decimal("0")


def bucket_results(
    bucket: "dict[str, Any]", provider: "Provider"
) -> "list[dict[str, Any]] | None":
    """
    returns the result rows of a bucket, or None when `results` is
    not a list. Rows that are not objects are dropped.
    """
    results = bucket.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        logger.warning(
            "bucket_skipped",
            provider=provider.value,
            error=str(ParseError("results", results)),
        )
        return None
    return [r for r in results if isinstance(r, dict)]


def clean_label(value: "Any") -> "str | None":
    """
    normalizes an optional identifier: blank or non-string
    values become None.
    """
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def date_from_unix(value: "Any") -> "date":
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError("start_time", value)
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        raise ParseError("start_time", value) from None


def date_from_iso(value: "Any") -> "date":
    if not isinstance(value, str):
        raise ParseError("starting_at", value)
    try:
        # fromisoformat only accepts a trailing "Z" from 3.11 on
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ParseError("starting_at", value) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date()


def merge_usage(records: "Iterable[DailyUsageRecord]") -> "list[DailyUsageRecord]":
    """
    sums records sharing a (date, provider, model, api key) key so
    each key appears once, sorted by date.
    """
    merged: "dict[tuple, DailyUsageRecord]" = {}
    for record in records:
        previous = merged.get(record.key)
        if previous is None:
            merged[record.key] = record
            continue
        merged[record.key] = DailyUsageRecord(
            date=record.date,
            provider=record.provider,
            model=record.model,
            api_key_id=record.api_key_id,
            request_count=previous.request_count + record.request_count,
            input_tokens=previous.input_tokens + record.input_tokens,
            output_tokens=previous.output_tokens + record.output_tokens,
            cached_tokens=previous.cached_tokens + record.cached_tokens,
        )
    return sorted(merged.values(), key=_sort_key)


def merge_costs(records: "Iterable[DailyCostRecord]") -> "list[DailyCostRecord]":
    merged: "dict[tuple, DailyCostRecord]" = {}
    for record in records:
        previous = merged.get(record.key)
        if previous is None:
            merged[record.key] = record
            continue
        merged[record.key] = DailyCostRecord(
            date=record.date,
            provider=record.provider,
            model=record.model,
            api_key_id=record.api_key_id,
            amount=previous.amount + record.amount,
        )
    return sorted(merged.values(), key=_sort_key)


def _sort_key(record: "DailyUsageRecord | DailyCostRecord") -> "tuple":
    return (record.date, record.model or "", record.api_key_id or "")
