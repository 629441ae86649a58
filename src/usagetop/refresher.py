import asyncio
import time
from collections.abc import Iterable, Sequence

import structlog

from usagetop.errors import FetchError
from usagetop.metrics import RefreshMetrics
from usagetop.models import FetchWindow, Metric, Provider, Record
from usagetop.provider.base import UsageProvider
from usagetop.store import AggregationStore

logger = structlog.get_logger()


class Refresher:
    """
    Refresher is responsible for refetching the whole fetch window of
    every configured provider. Providers, and the cost and usage
    datasets of each provider, are fetched concurrently; each dataset
    is then ingested into the store on its own, so a failure only
    marks that dataset stale. Every refresh takes a new generation and
    the store drops results that arrive after a newer refresh landed.
    """

    def __init__(
        self,
        providers: "Iterable[UsageProvider]",
        store: "AggregationStore",
        metrics: "RefreshMetrics",
    ) -> "None":
        self._providers: "dict[Provider, UsageProvider]" = {p.name: p for p in providers}
        self._store = store
        self._metrics = metrics
        self._generation: "int" = 0

    @property
    def providers(self) -> "tuple[Provider, ...]":
        return tuple(self._providers)

    async def close(self) -> "None":
        """
        closes all provider sessions.
        """
        for p in self._providers.values():
            await p.close()

    async def refresh(
        self,
        only: "Provider | None" = None,
        window: "FetchWindow | None" = None,
    ) -> "None":
        """
        refetches the providers (or only one of them) for the window
        ending today.
        """
        self._generation += 1
        generation = self._generation
        window = window or FetchWindow.ending_today()
        targets = [
            p for name, p in self._providers.items() if only is None or name is only
        ]

        logger.info(
            "refresh_start",
            generation=generation,
            providers=[p.name.value for p in targets],
            start=window.start.isoformat(),
            end=window.end.isoformat(),
        )
        await asyncio.gather(
            *(self._refresh_provider(p, window, generation) for p in targets)
        )
        logger.info("refresh_end", generation=generation)

    async def _refresh_provider(
        self,
        provider: "UsageProvider",
        window: "FetchWindow",
        generation: "int",
    ) -> "None":
        cycle_start = time.monotonic()
        costs, usage = await asyncio.gather(
            provider.fetch_costs(window),
            provider.fetch_usage(window),
            return_exceptions=True,
        )

        had_error = False
        if self._record_failure(provider.name, Metric.COST, costs, generation):
            had_error = True
        else:
            self._ingest(provider.name, Metric.COST, costs, window, generation)

        if self._record_failure(provider.name, Metric.USAGE, usage, generation):
            had_error = True
        else:
            key_ids = {r.api_key_id for r in usage if r.api_key_id}
            key_names = await self._resolve_key_names(provider, key_ids)
            self._ingest(
                provider.name, Metric.USAGE, usage, window, generation, key_names
            )

        duration = time.monotonic() - cycle_start
        self._metrics.observe_refresh_duration(provider.name, duration)

        if not had_error:
            self._metrics.set_last_refresh_success(provider.name, time.time())

    def _record_failure(
        self,
        provider: "Provider",
        metric: "Metric",
        result: "object",
        generation: "int",
    ) -> "bool":
        """
        flags the dataset stale when its fetch raised. Returns True
        when `result` is a failure.
        """
        if not isinstance(result, BaseException):
            return False
        if not isinstance(result, Exception):
            raise result

        if isinstance(result, FetchError):
            logger.warning(
                "fetch_failed",
                provider=provider.value,
                metric=metric.value,
                error=result.message,
            )
        else:
            logger.error(
                "fetch_crashed",
                provider=provider.value,
                metric=metric.value,
                exc_info=result,
            )

        self._store.mark_stale(provider, metric, str(result), generation=generation)
        self._metrics.inc_fetch_error(provider, metric)
        return True

    def _ingest(
        self,
        provider: "Provider",
        metric: "Metric",
        records: "Sequence[Record]",
        window: "FetchWindow",
        generation: "int",
        key_names: "dict[str, str] | None" = None,
    ) -> "None":
        accepted = self._store.ingest(
            provider,
            metric,
            records,
            key_names=key_names,
            window=window,
            generation=generation,
        )
        if accepted:
            self._metrics.set_record_count(
                provider, metric, self._store.status(provider, metric).record_count
            )

    async def _resolve_key_names(
        self,
        provider: "UsageProvider",
        key_ids: "set[str]",
    ) -> "dict[str, str]":
        """
        resolves key names for readable labels. On failure the raw
        ids are used instead.
        """
        if not key_ids:
            return {}
        try:
            return await provider.fetch_key_names(key_ids)
        except FetchError as err:
            logger.warning(
                "key_names_unavailable",
                provider=provider.name.value,
                error=err.message,
            )
            return {}
