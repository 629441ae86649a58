from collections.abc import Mapping
from dataclasses import replace

from usagetop.errors import RenderPreconditionError
from usagetop.models import (
    AggregatedSeries,
    DailyCostRecord,
    GroupBy,
    Metric,
    Provider,
    Record,
    Segment,
    Selection,
    UsageTotals,
)
from usagetop.store import AggregationStore

# minimum share of the total a segment needs to keep its own bucket
MATERIALITY_THRESHOLD = 0.10

OTHER_SEGMENT = "Other"
UNKNOWN_SEGMENT = "unknown"

# providers whose usage reports attribute tokens to API keys
KEY_ATTRIBUTION_PROVIDERS: "frozenset[Provider]" = frozenset(
    {Provider.OPENAI, Provider.ANTHROPIC}
)


def allowed_group_bys(provider: "Provider", metric: "Metric") -> "tuple[GroupBy, ...]":
    """
    returns the group-by options selectable for a provider and metric.
    Cost reports carry no key attribution, so grouping by key is only
    offered for usage.
    """
    if metric is Metric.USAGE and provider in KEY_ATTRIBUTION_PROVIDERS:
        return (GroupBy.NONE, GroupBy.MODEL, GroupBy.API_KEY)
    return (GroupBy.NONE, GroupBy.MODEL)


def abbreviate_api_key(key_id: "str") -> "str":
    if len(key_id) <= 16:
        return key_id
    return f"{key_id[:8]}...{key_id[-4:]}"


def segment_label(
    key: "str", group_by: "GroupBy", key_names: "Mapping[str, str]"
) -> "str":
    if group_by is GroupBy.API_KEY and key not in (OTHER_SEGMENT, UNKNOWN_SEGMENT):
        return key_names.get(key) or abbreviate_api_key(key)
    return key


def group_key(record: "Record", group_by: "GroupBy") -> "str":
    if group_by is GroupBy.API_KEY:
        return record.api_key_id or UNKNOWN_SEGMENT
    return record.model or UNKNOWN_SEGMENT


def record_value(record: "Record") -> "float":
    if isinstance(record, DailyCostRecord):
        return float(record.amount)
    return float(record.total_tokens)


def aggregate(
    store: "AggregationStore",
    selection: "Selection",
    threshold: "float" = MATERIALITY_THRESHOLD,
) -> "AggregatedSeries":
    """
    builds the per-day series for the selection from the store.

    The series always covers every day of the selected range; days
    without records are zero. With a grouping, segments below
    `threshold` of the total are folded into an "Other" segment, and
    a drill-down target restricts the series to a single segment.
    """
    provider, metric, group_by = selection.provider, selection.metric, selection.group_by
    if group_by not in allowed_group_bys(provider, metric):
        raise RenderPreconditionError(
            f"{group_by.label} grouping is not available for "
            f"{provider.label} {metric.label.lower()}"
        )

    days = store.window.days(selection.date_range.days)
    index = {day: i for i, day in enumerate(days)}
    records = store.query(selection.date_range, provider, metric)

    drill_down = selection.drill_down if group_by is not GroupBy.NONE else None
    if drill_down is not None:
        records = [r for r in records if group_key(r, group_by) == drill_down]

    totals = [0.0] * len(days)
    buckets: "dict[str, list[float]]" = {}
    for record in records:
        i = index.get(record.date)
        if i is None:
            continue
        value = record_value(record)
        totals[i] += value
        if group_by is not GroupBy.NONE:
            bucket = buckets.setdefault(group_key(record, group_by), [0.0] * len(days))
            bucket[i] += value

    key_names = store.key_names(provider)
    segments = _build_segments(
        buckets,
        group_by,
        key_names,
        # a drilled-down series is a single segment, never folded
        threshold if drill_down is None else 0.0,
    )

    usage = None
    if metric is Metric.USAGE:
        usage = UsageTotals(
            input_tokens=sum(r.input_tokens for r in records),
            output_tokens=sum(r.output_tokens for r in records),
            cached_tokens=sum(r.cached_tokens for r in records),
            request_count=sum(r.request_count for r in records),
        )

    return AggregatedSeries(
        provider=provider,
        metric=metric,
        date_range=selection.date_range,
        group_by=group_by,
        dates=days,
        totals=tuple(totals),
        segments=segments,
        usage=usage,
        drill_down=drill_down,
    )


def _build_segments(
    buckets: "dict[str, list[float]]",
    group_by: "GroupBy",
    key_names: "Mapping[str, str]",
    threshold: "float",
) -> "tuple[Segment, ...]":
    if not buckets:
        return ()

    grand_total = sum(sum(values) for values in buckets.values())
    # largest first, ties broken alphabetically for a stable legend
    ordered = sorted(buckets.items(), key=lambda item: (-sum(item[1]), item[0]))

    segments: "list[Segment]" = []
    other: "list[float] | None" = None
    for key, values in ordered:
        if grand_total > 0 and sum(values) / grand_total < threshold:
            if other is None:
                other = [0.0] * len(values)
            other = [a + b for a, b in zip(other, values)]
            continue
        segments.append(
            Segment(
                key=key,
                label=segment_label(key, group_by, key_names),
                values=tuple(values),
            )
        )

    if other is not None:
        segments.append(
            Segment(key=OTHER_SEGMENT, label=OTHER_SEGMENT, values=tuple(other))
        )
    return tuple(segments)


def drill_down_candidates(
    store: "AggregationStore", selection: "Selection"
) -> "tuple[Segment, ...]":
    """
    lists the segments a user can drill into: the ones that pass the
    materiality threshold for the current grouping.
    """
    if selection.group_by is GroupBy.NONE:
        return ()
    if selection.group_by not in allowed_group_bys(selection.provider, selection.metric):
        return ()

    series = aggregate(store, _without_drill_down(selection))
    return tuple(s for s in series.segments if s.key != OTHER_SEGMENT)


def _without_drill_down(selection: "Selection") -> "Selection":
    if selection.drill_down is None:
        return selection
    return replace(selection, drill_down=None)
