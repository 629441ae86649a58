import asyncio
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

import httpx
import structlog

from usagetop.errors import FetchError, ParseError
from usagetop.models import (
    DailyCostRecord,
    DailyUsageRecord,
    FetchWindow,
    Metric,
    Provider,
)
from usagetop.provider.base import (
    MAX_PAGES,
    bucket_results,
    clean_label,
    date_from_iso,
    decimal_field,
    int_field,
    merge_costs,
    merge_usage,
)

logger = structlog.get_logger()

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1/organizations"
ANTHROPIC_VERSION = "2023-06-01"

# each tuple is (parent object, field) summed into input tokens
INPUT_TOKEN_FIELDS: "tuple[tuple[str | None, str], ...]" = (
    (None, "uncached_input_tokens"),
    ("cache_creation", "ephemeral_1h_input_tokens"),
    ("cache_creation", "ephemeral_5m_input_tokens"),
    (None, "cache_read_input_tokens"),
)


def normalize_costs(buckets: "list[dict[str, Any]]") -> "list[DailyCostRecord]":
    """
    converts Anthropic cost report buckets into daily cost records.
    Amounts are reported as decimal strings in cents.
    """
    records: "list[DailyCostRecord]" = []
    for bucket in buckets:
        try:
            day = date_from_iso(bucket.get("starting_at"))
        except ParseError as err:
            logger.warning("bucket_skipped", provider="anthropic", error=str(err))
            continue

        results = bucket_results(bucket, Provider.ANTHROPIC)
        if results is None:
            continue

        for result in results:
            cents = decimal_field(result.get("amount"), "amount", Provider.ANTHROPIC)
            amount = cents / Decimal(100)
            if amount <= 0:
                continue

            records.append(
                DailyCostRecord(
                    date=day,
                    provider=Provider.ANTHROPIC,
                    model=clean_label(result.get("model"))
                    or clean_label(result.get("description")),
                    amount=amount,
                )
            )

    return merge_costs(records)


def normalize_usage(buckets: "list[dict[str, Any]]") -> "list[DailyUsageRecord]":
    """
    converts Anthropic message usage buckets into daily usage records.
    Input tokens are the sum of uncached, cache-creation and
    cache-read tokens; cache reads count as cached.
    """
    records: "list[DailyUsageRecord]" = []
    for bucket in buckets:
        try:
            day = date_from_iso(bucket.get("starting_at"))
        except ParseError as err:
            logger.warning("bucket_skipped", provider="anthropic", error=str(err))
            continue

        results = bucket_results(bucket, Provider.ANTHROPIC)
        if results is None:
            continue

        for result in results:
            input_tokens = sum(
                _token_field(result, parent, name) for parent, name in INPUT_TOKEN_FIELDS
            )
            output_tokens = int_field(result, "output_tokens", Provider.ANTHROPIC)
            if input_tokens == 0 and output_tokens == 0:
                continue

            records.append(
                DailyUsageRecord(
                    date=day,
                    provider=Provider.ANTHROPIC,
                    model=clean_label(result.get("model")),
                    api_key_id=clean_label(result.get("api_key_id")),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    cached_tokens=_token_field(result, None, "cache_read_input_tokens"),
                )
            )

    return merge_usage(records)


def _token_field(result: "dict[str, Any]", parent: "str | None", name: "str") -> "int":
    if parent is None:
        return int_field(result, name, Provider.ANTHROPIC)
    nested = result.get(parent)
    if not isinstance(nested, dict):
        return 0
    return int_field(nested, name, Provider.ANTHROPIC)


class AnthropicProvider:
    """
    AnthropicProvider implements the UsageProvider protocol for the
    Anthropic Admin API cost and usage reports.
    """

    def __init__(
        self,
        api_key: "str",
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            timeout=30.0,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )

    @property
    def name(self) -> "Provider":
        return Provider.ANTHROPIC

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch_costs(self, window: "FetchWindow") -> "list[DailyCostRecord]":
        params: "list[tuple[str, str | int]]" = [
            ("starting_at", _format_start(window)),
            ("group_by[]", "description"),
            ("limit", 31),
        ]
        buckets = await self._fetch_buckets(
            f"{ANTHROPIC_BASE_URL}/cost_report", params, Metric.COST
        )
        records = normalize_costs(buckets)
        logger.debug("anthropic_costs_done", record_count=len(records))
        return records

    async def fetch_usage(self, window: "FetchWindow") -> "list[DailyUsageRecord]":
        params: "list[tuple[str, str | int]]" = [
            ("starting_at", _format_start(window)),
            ("bucket_width", "1d"),
            ("group_by[]", "model"),
            ("group_by[]", "api_key_id"),
            ("limit", 31),
        ]
        buckets = await self._fetch_buckets(
            f"{ANTHROPIC_BASE_URL}/usage_report/messages", params, Metric.USAGE
        )
        records = normalize_usage(buckets)
        logger.debug("anthropic_usage_done", record_count=len(records))
        return records

    async def fetch_key_names(self, api_key_ids: "Iterable[str]") -> "dict[str, str]":
        """
        looks up each key's name concurrently. Keys that cannot be
        resolved are left out and fall back to their id.
        """
        key_ids = sorted({key_id for key_id in api_key_ids if key_id})
        results = await asyncio.gather(
            *(self._fetch_key_name(key_id) for key_id in key_ids),
            return_exceptions=True,
        )

        names: "dict[str, str]" = {}
        for key_id, result in zip(key_ids, results):
            if isinstance(result, FetchError):
                logger.warning("anthropic_key_name_failed", api_key_id=key_id)
                continue
            if isinstance(result, BaseException):
                raise result
            if result:
                names[key_id] = result
        return names

    async def _fetch_key_name(self, api_key_id: "str") -> "str | None":
        data = await self._get_json(
            f"{ANTHROPIC_BASE_URL}/api_keys/{api_key_id}", [], Metric.USAGE
        )
        return clean_label(data.get("name"))

    async def _fetch_buckets(
        self,
        url: "str",
        params: "list[tuple[str, str | int]]",
        metric: "Metric",
    ) -> "list[dict[str, Any]]":
        buckets: "list[dict[str, Any]]" = []
        next_page = ""

        for _ in range(MAX_PAGES):
            page_params = list(params)
            if next_page:
                page_params.append(("page", next_page))

            data = await self._get_json(url, page_params, metric)
            buckets.extend(b for b in data.get("data") or [] if isinstance(b, dict))

            if not data.get("has_more") or not data.get("next_page"):
                break
            next_page = str(data["next_page"])

        return buckets

    async def _get_json(
        self,
        url: "str",
        params: "list[tuple[str, str | int]]",
        metric: "Metric",
    ) -> "dict[str, Any]":
        logger.debug("anthropic_request", url=url)
        try:
            resp = await self._client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as err:
            raise FetchError(
                "anthropic",
                metric.value,
                f"HTTP {err.response.status_code} from {err.request.url.path}",
            ) from err
        except httpx.HTTPError as err:
            raise FetchError(
                "anthropic", metric.value, str(err) or type(err).__name__
            ) from err
        except ValueError as err:
            raise FetchError("anthropic", metric.value, "invalid JSON response") from err

        if not isinstance(data, dict):
            raise FetchError("anthropic", metric.value, "unexpected response shape")
        return data


def _format_start(window: "FetchWindow") -> "str":
    return window.start_datetime.strftime("%Y-%m-%dT%H:%M:%SZ")
