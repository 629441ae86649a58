import asyncio
from collections.abc import Iterable
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
    date_from_unix,
    decimal_field,
    int_field,
    merge_costs,
    merge_usage,
)

logger = structlog.get_logger()

OPENAI_BASE_URL = "https://api.openai.com/v1/organization"

USAGE_ENDPOINTS: "tuple[str, ...]" = ("completions", "embeddings", "images")


def normalize_costs(buckets: "list[dict[str, Any]]") -> "list[DailyCostRecord]":
    """
    converts OpenAI cost buckets into daily cost records keyed by
    line item.
    """
    records: "list[DailyCostRecord]" = []
    for bucket in buckets:
        try:
            day = date_from_unix(bucket.get("start_time"))
        except ParseError as err:
            logger.warning("bucket_skipped", provider="openai", error=str(err))
            continue

        results = bucket_results(bucket, Provider.OPENAI)
        if results is None:
            continue

        for result in results:
            amount = result.get("amount")
            value = amount.get("value") if isinstance(amount, dict) else amount
            records.append(
                DailyCostRecord(
                    date=day,
                    provider=Provider.OPENAI,
                    model=clean_label(result.get("line_item")),
                    amount=decimal_field(value, "amount.value", Provider.OPENAI),
                )
            )

    return merge_costs(records)


def normalize_usage(buckets: "list[dict[str, Any]]") -> "list[DailyUsageRecord]":
    """
    converts OpenAI usage buckets (any of the usage endpoints) into
    daily usage records keyed by model and api key.
    """
    records: "list[DailyUsageRecord]" = []
    for bucket in buckets:
        try:
            day = date_from_unix(bucket.get("start_time"))
        except ParseError as err:
            logger.warning("bucket_skipped", provider="openai", error=str(err))
            continue

        results = bucket_results(bucket, Provider.OPENAI)
        if results is None:
            continue

        for result in results:
            input_tokens = int_field(result, "input_tokens", Provider.OPENAI)
            output_tokens = int_field(result, "output_tokens", Provider.OPENAI)
            # rows without tokens carry nothing to chart
            if input_tokens == 0 and output_tokens == 0:
                continue

            records.append(
                DailyUsageRecord(
                    date=day,
                    provider=Provider.OPENAI,
                    model=clean_label(result.get("model")),
                    api_key_id=clean_label(result.get("api_key_id")),
                    request_count=int_field(
                        result, "num_model_requests", Provider.OPENAI
                    ),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    cached_tokens=int_field(
                        result, "input_cached_tokens", Provider.OPENAI
                    ),
                )
            )

    return merge_usage(records)


class OpenAIProvider:
    """
    OpenAIProvider implements the UsageProvider protocol for OpenAI's
    organization API. It fetches daily costs and usage for the fetch
    window, following pagination, and resolves API key names through
    the project listing.
    """

    def __init__(
        self,
        api_key: "str",
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            timeout=30.0,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    @property
    def name(self) -> "Provider":
        return Provider.OPENAI

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch_costs(self, window: "FetchWindow") -> "list[DailyCostRecord]":
        params: "list[tuple[str, str | int]]" = [
            ("start_time", int(window.start_datetime.timestamp())),
            ("bucket_width", "1d"),
            ("group_by", "line_item"),
            ("limit", 30),
        ]
        buckets = await self._fetch_buckets(
            f"{OPENAI_BASE_URL}/costs", params, Metric.COST
        )
        records = normalize_costs(buckets)
        logger.debug("openai_costs_done", record_count=len(records))
        return records

    async def fetch_usage(self, window: "FetchWindow") -> "list[DailyUsageRecord]":
        """
        fetches usage from all usage endpoints concurrently. A failing
        endpoint is logged and skipped; the fetch only fails when every
        endpoint failed.
        """
        params: "list[tuple[str, str | int]]" = [
            ("start_time", int(window.start_datetime.timestamp())),
            ("bucket_width", "1d"),
            ("group_by", "model"),
            ("group_by", "api_key_id"),
            ("limit", 31),
        ]
        tasks = [
            self._fetch_buckets(
                f"{OPENAI_BASE_URL}/usage/{endpoint}", params, Metric.USAGE
            )
            for endpoint in USAGE_ENDPOINTS
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        buckets: "list[dict[str, Any]]" = []
        failures: "list[str]" = []
        for endpoint, result in zip(USAGE_ENDPOINTS, results):
            if isinstance(result, FetchError):
                logger.warning(
                    "openai_usage_endpoint_error", endpoint=endpoint, error=str(result)
                )
                failures.append(f"{endpoint}: {result.message}")
                continue
            if isinstance(result, BaseException):
                raise result
            buckets.extend(result)

        if failures and len(failures) == len(USAGE_ENDPOINTS):
            raise FetchError("openai", "usage", "; ".join(failures))

        records = normalize_usage(buckets)
        logger.debug("openai_usage_done", record_count=len(records))
        return records

    async def fetch_key_names(self, api_key_ids: "Iterable[str]") -> "dict[str, str]":
        """
        resolves API key ids to their names by listing every project's
        keys concurrently. Projects whose keys cannot be listed are
        skipped.
        """
        wanted = {key_id for key_id in api_key_ids if key_id}
        if not wanted:
            return {}

        projects = await self._list_objects(f"{OPENAI_BASE_URL}/projects")
        project_ids = [p["id"] for p in projects if isinstance(p.get("id"), str)]
        results = await asyncio.gather(
            *(
                self._list_objects(f"{OPENAI_BASE_URL}/projects/{pid}/api_keys")
                for pid in project_ids
            ),
            return_exceptions=True,
        )

        names: "dict[str, str]" = {}
        for project_id, result in zip(project_ids, results):
            if isinstance(result, FetchError):
                logger.warning(
                    "openai_project_keys_failed", project_id=project_id, error=str(result)
                )
                continue
            if isinstance(result, BaseException):
                raise result
            for api_key in result:
                key_id = api_key.get("id")
                if key_id in wanted and api_key.get("name"):
                    names[key_id] = str(api_key["name"])

        return names

    async def _fetch_buckets(
        self,
        url: "str",
        params: "list[tuple[str, str | int]]",
        metric: "Metric",
    ) -> "list[dict[str, Any]]":
        """
        follows next_page cursors and returns every bucket.
        """
        buckets: "list[dict[str, Any]]" = []
        next_page = ""

        for _ in range(MAX_PAGES):
            page_params = list(params)
            if next_page:
                page_params.append(("page", next_page))

            data = await self._get_json(url, page_params, metric)
            buckets.extend(b for b in data.get("data") or [] if isinstance(b, dict))

            # break if there are no more pages to fetch
            if not data.get("has_more") or not data.get("next_page"):
                break
            next_page = str(data["next_page"])

        return buckets

    async def _list_objects(self, url: "str") -> "list[dict[str, Any]]":
        """
        lists a cursor-paginated collection (projects, api keys).
        """
        objects: "list[dict[str, Any]]" = []
        after = ""

        for _ in range(MAX_PAGES):
            params: "list[tuple[str, str | int]]" = [("limit", 100)]
            if after:
                params.append(("after", after))

            data = await self._get_json(url, params, Metric.USAGE)
            objects.extend(o for o in data.get("data") or [] if isinstance(o, dict))

            if not data.get("has_more") or not data.get("last_id"):
                break
            after = str(data["last_id"])

        return objects

    async def _get_json(
        self,
        url: "str",
        params: "list[tuple[str, str | int]]",
        metric: "Metric",
    ) -> "dict[str, Any]":
        logger.debug("openai_request", url=url)
        try:
            resp = await self._client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as err:
            raise FetchError(
                "openai",
                metric.value,
                f"HTTP {err.response.status_code} from {err.request.url.path}",
            ) from err
        except httpx.HTTPError as err:
            raise FetchError("openai", metric.value, str(err) or type(err).__name__) from err
        except ValueError as err:
            raise FetchError("openai", metric.value, "invalid JSON response") from err

        if not isinstance(data, dict):
            raise FetchError("openai", metric.value, "unexpected response shape")
        return data
