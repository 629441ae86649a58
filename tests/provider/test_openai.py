from datetime import date
from decimal import Decimal

import httpx
import pytest
import respx

from usagetop.errors import FetchError
from usagetop.models import FetchWindow, Provider
from usagetop.provider.openai import (
    OPENAI_BASE_URL,
    USAGE_ENDPOINTS,
    OpenAIProvider,
    normalize_costs,
    normalize_usage,
)

# 2024-06-30T00:00:00Z
LAST_DAY_TS = 1719705600


def _empty_page() -> "httpx.Response":
    return httpx.Response(200, json={"data": [], "has_more": False})


class TestNormalizeCosts:
    def test_sums_line_items_per_day(self) -> "None":
        buckets = [
            {
                "start_time": LAST_DAY_TS,
                "results": [
                    {"line_item": "gpt-4o", "amount": {"value": 1.25, "currency": "usd"}},
                    # the same line item reported for a second project
                    {"line_item": "gpt-4o", "amount": {"value": "0.75"}},
                    {"line_item": "o1", "amount": {"value": 2}},
                ],
            }
        ]

        records = normalize_costs(buckets)

        assert [(r.model, r.amount) for r in records] == [
            ("gpt-4o", Decimal("2.00")),
            ("o1", Decimal("2")),
        ]
        assert all(r.date == date(2024, 6, 30) for r in records)
        assert all(r.provider is Provider.OPENAI for r in records)

    def test_malformed_amount_defaults_to_zero(self) -> "None":
        buckets = [
            {
                "start_time": LAST_DAY_TS,
                "results": [{"line_item": "gpt-4o", "amount": {"value": "n/a"}}],
            }
        ]

        records = normalize_costs(buckets)

        assert len(records) == 1
        assert records[0].amount == Decimal("0")

    def test_skips_bucket_without_valid_start(self) -> "None":
        buckets = [
            {"start_time": "yesterday", "results": [{"line_item": "x", "amount": {"value": 1}}]}
        ]

        assert normalize_costs(buckets) == []

    def test_non_list_results_skip_only_that_bucket(self) -> "None":
        buckets = [
            {"start_time": LAST_DAY_TS - 86400, "results": 5},
            {
                "start_time": LAST_DAY_TS,
                "results": [{"line_item": "gpt-4o", "amount": {"value": 1}}],
            },
        ]

        records = normalize_costs(buckets)

        assert [(r.date, r.amount) for r in records] == [(date(2024, 6, 30), Decimal("1"))]


class TestNormalizeUsage:
    def test_maps_fields(self) -> "None":
        buckets = [
            {
                "start_time": LAST_DAY_TS,
                "results": [
                    {
                        "model": "gpt-4o",
                        "api_key_id": "key_abc",
                        "input_tokens": 1000,
                        "output_tokens": 200,
                        "input_cached_tokens": 300,
                        "num_model_requests": 4,
                    }
                ],
            }
        ]

        records = normalize_usage(buckets)

        assert len(records) == 1
        record = records[0]
        assert record.date == date(2024, 6, 30)
        assert record.model == "gpt-4o"
        assert record.api_key_id == "key_abc"
        assert record.input_tokens == 1000
        assert record.output_tokens == 200
        assert record.cached_tokens == 300
        assert record.request_count == 4

    def test_drops_rows_without_tokens(self) -> "None":
        buckets = [
            {
                "start_time": LAST_DAY_TS,
                "results": [{"model": "gpt-4o", "input_tokens": 0, "output_tokens": 0}],
            }
        ]

        assert normalize_usage(buckets) == []

    def test_malformed_field_keeps_row(self) -> "None":
        buckets = [
            {
                "start_time": LAST_DAY_TS,
                "results": [
                    {"model": "gpt-4o", "input_tokens": "lots", "output_tokens": 5}
                ],
            }
        ]

        records = normalize_usage(buckets)

        assert len(records) == 1
        assert records[0].input_tokens == 0
        assert records[0].output_tokens == 5

    def test_missing_model_and_key_are_none(self) -> "None":
        buckets = [
            {
                "start_time": LAST_DAY_TS,
                "results": [
                    {"model": "  ", "api_key_id": None, "input_tokens": 1, "output_tokens": 1}
                ],
            }
        ]

        records = normalize_usage(buckets)

        assert records[0].model is None
        assert records[0].api_key_id is None

    def test_non_list_results_skip_only_that_bucket(self) -> "None":
        buckets = [
            {"start_time": LAST_DAY_TS - 86400, "results": {"model": "gpt-4o"}},
            {
                "start_time": LAST_DAY_TS,
                "results": [{"model": "gpt-4o", "input_tokens": 10}, "junk"],
            },
        ]

        records = normalize_usage(buckets)

        assert len(records) == 1
        assert records[0].date == date(2024, 6, 30)
        assert records[0].input_tokens == 10


class TestOpenAIProviderFetchCosts:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetches_and_parses_costs(self, window: "FetchWindow") -> "None":
        route = respx.get(f"{OPENAI_BASE_URL}/costs").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "start_time": LAST_DAY_TS,
                            "results": [
                                {"line_item": "gpt-4o", "amount": {"value": 3.5}}
                            ],
                        }
                    ],
                    "has_more": False,
                },
            )
        )

        provider = OpenAIProvider(api_key="sk-admin-test")
        records = await provider.fetch_costs(window)
        await provider.close()

        assert len(records) == 1
        assert records[0].amount == Decimal("3.5")
        request = route.calls.last.request
        assert request.url.params["group_by"] == "line_item"
        assert request.url.params["bucket_width"] == "1d"
        # 2024-06-01T00:00:00Z, 30 days before the window end inclusive
        assert request.url.params["start_time"] == "1717200000"
        assert request.headers["Authorization"] == "Bearer sk-admin-test"

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_raises_fetch_error(self, window: "FetchWindow") -> "None":
        respx.get(f"{OPENAI_BASE_URL}/costs").mock(
            return_value=httpx.Response(401, json={"error": "unauthorized"})
        )

        provider = OpenAIProvider(api_key="sk-bad")
        with pytest.raises(FetchError) as exc_info:
            await provider.fetch_costs(window)
        await provider.close()

        assert exc_info.value.provider == "openai"
        assert exc_info.value.metric == "cost"
        assert "401" in exc_info.value.message

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json_raises_fetch_error(self, window: "FetchWindow") -> "None":
        respx.get(f"{OPENAI_BASE_URL}/costs").mock(
            return_value=httpx.Response(200, content=b"<html>oops</html>")
        )

        provider = OpenAIProvider(api_key="sk-test")
        with pytest.raises(FetchError, match="invalid JSON"):
            await provider.fetch_costs(window)
        await provider.close()


class TestOpenAIProviderFetchUsage:
    @pytest.mark.asyncio
    @respx.mock
    async def test_merges_all_endpoints(self, window: "FetchWindow") -> "None":
        respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "start_time": LAST_DAY_TS,
                            "results": [
                                {
                                    "model": "gpt-4o",
                                    "api_key_id": "key_1",
                                    "input_tokens": 100,
                                    "output_tokens": 50,
                                }
                            ],
                        }
                    ],
                    "has_more": False,
                },
            )
        )
        respx.get(f"{OPENAI_BASE_URL}/usage/embeddings").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "start_time": LAST_DAY_TS,
                            "results": [
                                {
                                    "model": "text-embedding-3-small",
                                    "api_key_id": "key_1",
                                    "input_tokens": 40,
                                }
                            ],
                        }
                    ],
                    "has_more": False,
                },
            )
        )
        respx.get(f"{OPENAI_BASE_URL}/usage/images").mock(return_value=_empty_page())

        provider = OpenAIProvider(api_key="sk-test")
        records = await provider.fetch_usage(window)
        await provider.close()

        assert {r.model for r in records} == {"gpt-4o", "text-embedding-3-small"}
        assert sum(r.total_tokens for r in records) == 190

    @pytest.mark.asyncio
    @respx.mock
    async def test_handles_pagination(self, window: "FetchWindow") -> "None":
        route = respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={
                        "data": [
                            {
                                "start_time": LAST_DAY_TS - 86400,
                                "results": [{"model": "gpt-4o", "input_tokens": 10}],
                            }
                        ],
                        "has_more": True,
                        "next_page": "page_2",
                    },
                ),
                httpx.Response(
                    200,
                    json={
                        "data": [
                            {
                                "start_time": LAST_DAY_TS,
                                "results": [{"model": "gpt-4o", "input_tokens": 20}],
                            }
                        ],
                        "has_more": False,
                    },
                ),
            ]
        )
        respx.get(f"{OPENAI_BASE_URL}/usage/embeddings").mock(return_value=_empty_page())
        respx.get(f"{OPENAI_BASE_URL}/usage/images").mock(return_value=_empty_page())

        provider = OpenAIProvider(api_key="sk-test")
        records = await provider.fetch_usage(window)
        await provider.close()

        assert route.call_count == 2
        assert route.calls.last.request.url.params["page"] == "page_2"
        assert [r.date for r in records] == [date(2024, 6, 29), date(2024, 6, 30)]

    @pytest.mark.asyncio
    @respx.mock
    async def test_one_failing_endpoint_is_skipped(self, window: "FetchWindow") -> "None":
        respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "start_time": LAST_DAY_TS,
                            "results": [{"model": "gpt-4o", "output_tokens": 7}],
                        }
                    ],
                    "has_more": False,
                },
            )
        )
        respx.get(f"{OPENAI_BASE_URL}/usage/embeddings").mock(
            return_value=httpx.Response(500)
        )
        respx.get(f"{OPENAI_BASE_URL}/usage/images").mock(return_value=_empty_page())

        provider = OpenAIProvider(api_key="sk-test")
        records = await provider.fetch_usage(window)
        await provider.close()

        assert len(records) == 1
        assert records[0].output_tokens == 7

    @pytest.mark.asyncio
    @respx.mock
    async def test_all_endpoints_failing_raises(self, window: "FetchWindow") -> "None":
        for endpoint in USAGE_ENDPOINTS:
            respx.get(f"{OPENAI_BASE_URL}/usage/{endpoint}").mock(
                return_value=httpx.Response(503)
            )

        provider = OpenAIProvider(api_key="sk-test")
        with pytest.raises(FetchError) as exc_info:
            await provider.fetch_usage(window)
        await provider.close()

        assert exc_info.value.metric == "usage"
        for endpoint in USAGE_ENDPOINTS:
            assert endpoint in exc_info.value.message


class TestOpenAIProviderFetchKeyNames:
    @pytest.mark.asyncio
    @respx.mock
    async def test_resolves_names_through_projects(self) -> "None":
        respx.get(f"{OPENAI_BASE_URL}/projects").mock(
            return_value=httpx.Response(
                200,
                json={"data": [{"id": "proj_1"}, {"id": "proj_2"}], "has_more": False},
            )
        )
        respx.get(f"{OPENAI_BASE_URL}/projects/proj_1/api_keys").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "key_a", "name": "CI key"},
                        {"id": "key_unused", "name": "Unused"},
                    ],
                    "has_more": False,
                },
            )
        )
        # keys of the second project cannot be listed
        respx.get(f"{OPENAI_BASE_URL}/projects/proj_2/api_keys").mock(
            return_value=httpx.Response(403)
        )

        provider = OpenAIProvider(api_key="sk-test")
        names = await provider.fetch_key_names(["key_a", "key_b"])
        await provider.close()

        assert names == {"key_a": "CI key"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_ids_makes_no_request(self) -> "None":
        route = respx.get(f"{OPENAI_BASE_URL}/projects")

        provider = OpenAIProvider(api_key="sk-test")
        names = await provider.fetch_key_names([])
        await provider.close()

        assert names == {}
        assert not route.called
