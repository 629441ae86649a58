import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType

import structlog

from usagetop.models import (
    DatasetStatus,
    DateRange,
    FetchWindow,
    Metric,
    Provider,
    Record,
)

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class _Dataset:
    records: "tuple[Record, ...]"
    status: "DatasetStatus"
    generation: "int"


class AggregationStore:
    """
    AggregationStore: Is the single owner of the normalized records
    of the fetch window, one dataset per (provider, metric).

    Records are keyed by (date, provider, model, api key) so ingesting
    the same fetch twice never double-counts. Every ingest swaps the
    whole dataset under a lock; readers always see either the old or
    the new dataset. Ingests tagged with an older generation than the
    last accepted one are discarded, so the newest refresh wins.
    """

    def __init__(self, window: "FetchWindow | None" = None) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._datasets: "dict[tuple[Provider, Metric], _Dataset]" = {}
        self._key_names: "dict[Provider, Mapping[str, str]]" = {}
        self._window: "FetchWindow" = window or FetchWindow.ending_today()

    @property
    def window(self) -> "FetchWindow":
        return self._window

    def ingest(
        self,
        provider: "Provider",
        metric: "Metric",
        records: "Iterable[Record]",
        *,
        key_names: "Mapping[str, str] | None" = None,
        window: "FetchWindow | None" = None,
        generation: "int" = 0,
        now: "datetime | None" = None,
    ) -> "bool":
        """
        replaces the (provider, metric) dataset. Returns False when the
        ingest belongs to an older refresh and was discarded.
        """
        keyed: "dict[tuple, Record]" = {}
        for record in records:
            if record.provider is not provider:
                logger.warning(
                    "foreign_record_skipped",
                    provider=provider.value,
                    record_provider=record.provider.value,
                )
                continue
            keyed[record.key] = record

        ordered = tuple(
            sorted(
                keyed.values(),
                key=lambda r: (r.date, r.model or "", r.api_key_id or ""),
            )
        )
        dataset = _Dataset(
            records=ordered,
            status=DatasetStatus(
                fetched=True,
                record_count=len(ordered),
                fetched_at=now or datetime.now(timezone.utc),
            ),
            generation=generation,
        )

        with self._lock:
            current = self._datasets.get((provider, metric))
            if current is not None and generation < current.generation:
                logger.info(
                    "stale_ingest_discarded",
                    provider=provider.value,
                    metric=metric.value,
                    generation=generation,
                    current_generation=current.generation,
                )
                return False

            self._datasets[(provider, metric)] = dataset
            if key_names is not None:
                self._key_names[provider] = MappingProxyType(dict(key_names))
            if window is not None:
                self._window = window

        logger.debug(
            "dataset_ingested",
            provider=provider.value,
            metric=metric.value,
            record_count=len(ordered),
        )
        return True

    def mark_stale(
        self,
        provider: "Provider",
        metric: "Metric",
        error: "str",
        *,
        generation: "int" = 0,
    ) -> "bool":
        """
        keeps the previous records of the dataset and flags them as
        stale after a failed fetch.
        """
        with self._lock:
            current = self._datasets.get((provider, metric))
            if current is not None and generation < current.generation:
                return False

            records = current.records if current is not None else ()
            previous = current.status if current is not None else DatasetStatus()
            self._datasets[(provider, metric)] = _Dataset(
                records=records,
                status=DatasetStatus(
                    fetched=previous.fetched,
                    stale=True,
                    error=error,
                    record_count=len(records),
                    fetched_at=previous.fetched_at,
                ),
                generation=generation,
            )
            return True

    def query(
        self,
        date_range: "DateRange",
        provider: "Provider",
        metric: "Metric",
    ) -> "list[Record]":
        """
        returns the records of the dataset that fall inside the
        trailing `date_range` days of the window.
        """
        with self._lock:
            dataset = self._datasets.get((provider, metric))
            window = self._window

        if dataset is None:
            return []

        days = window.days(date_range.days)
        first, last = days[0], days[-1]
        return [r for r in dataset.records if first <= r.date <= last]

    def status(self, provider: "Provider", metric: "Metric") -> "DatasetStatus":
        with self._lock:
            dataset = self._datasets.get((provider, metric))
        return dataset.status if dataset is not None else DatasetStatus()

    def key_names(self, provider: "Provider") -> "Mapping[str, str]":
        with self._lock:
            return self._key_names.get(provider, MappingProxyType({}))

    def has_data(self, provider: "Provider") -> "bool":
        """
        checks whether any dataset of the provider was fetched at least
        once, even if it later went stale.
        """
        return any(self.status(provider, metric).fetched for metric in Metric)

    def fetched_providers(self) -> "frozenset[Provider]":
        with self._lock:
            return frozenset(
                provider
                for (provider, _), dataset in self._datasets.items()
                if dataset.status.fetched or dataset.status.stale
            )
