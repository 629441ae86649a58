from datetime import date, timedelta
from decimal import Decimal

import pytest
from prometheus_client import CollectorRegistry

from usagetop.models import (
    DailyCostRecord,
    DailyUsageRecord,
    FetchWindow,
    Provider,
)
from usagetop.store import AggregationStore

WINDOW_END = date(2024, 6, 30)


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def window() -> "FetchWindow":
    return FetchWindow(end=WINDOW_END)


@pytest.fixture()
def store(window: "FetchWindow") -> "AggregationStore":
    return AggregationStore(window=window)


@pytest.fixture()
def day():
    """
    returns the date `n` days before the end of the test window.
    """

    def _day(n: "int" = 0) -> "date":
        return WINDOW_END - timedelta(days=n)

    return _day


@pytest.fixture()
def usage_record():
    def _usage_record(
        on: "date",
        provider: "Provider" = Provider.OPENAI,
        model: "str | None" = "gpt-4o",
        api_key_id: "str | None" = None,
        input_tokens: "int" = 0,
        output_tokens: "int" = 0,
        cached_tokens: "int" = 0,
        request_count: "int" = 0,
    ) -> "DailyUsageRecord":
        return DailyUsageRecord(
            date=on,
            provider=provider,
            model=model,
            api_key_id=api_key_id,
            request_count=request_count,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_tokens=cached_tokens,
        )

    return _usage_record


@pytest.fixture()
def cost_record():
    def _cost_record(
        on: "date",
        amount: "str | int | float",
        provider: "Provider" = Provider.OPENAI,
        model: "str | None" = "gpt-4o",
    ) -> "DailyCostRecord":
        return DailyCostRecord(
            date=on,
            provider=provider,
            model=model,
            amount=Decimal(str(amount)),
        )

    return _cost_record
