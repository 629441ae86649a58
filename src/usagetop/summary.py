from collections.abc import Sequence

from usagetop.models import (
    AggregatedSeries,
    Metric,
    ScaledBar,
    ScaledSeries,
    Summary,
)

# cost days below this amount (USD) never define the chart axis
COST_NOISE_FLOOR = 1.0
# percentile of the non-zero days taken as the typical magnitude
SCALE_PERCENTILE = 90.0
# days larger than this multiple of the typical magnitude are outliers
OUTLIER_FACTOR = 3.0


def percentile(values: "Sequence[float]", pct: "float") -> "float":
    """
    linear-interpolation percentile, 0.0 for an empty sequence.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = (len(ordered) - 1) * min(max(pct, 0.0), 100.0) / 100.0
    lower = int(rank)
    upper = min(lower + 1, len(ordered) - 1)
    fraction = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * fraction


def axis_maximum(
    values: "Sequence[float]",
    noise_floor: "float" = 0.0,
    pct: "float" = SCALE_PERCENTILE,
    outlier_factor: "float" = OUTLIER_FACTOR,
) -> "float":
    """
    picks the chart axis from the typical magnitude of the series
    instead of its raw maximum, so that a single extreme day does
    not flatten every other bar. The axis never goes below the noise
    floor.
    """
    floor = max(noise_floor, 0.0)
    positive = [v for v in values if v > 0]
    if not positive:
        return floor or 1.0

    typical = max(percentile(positive, pct), floor)
    ceiling = typical * outlier_factor
    regular = [v for v in positive if v <= ceiling]
    return max(max(regular, default=typical), floor)


def trend(totals: "Sequence[float]") -> "float | None":
    """
    percentage change between the mean of the first and the second
    half of the series. The middle day of an odd-length series
    belongs to neither half. None when the series has a single day.
    """
    if len(totals) < 2:
        return None
    half = len(totals) // 2
    first = sum(totals[:half]) / half
    second = sum(totals[-half:]) / half
    if first == 0:
        return 0.0
    return (second - first) / first * 100.0


def summarize(
    series: "AggregatedSeries",
    noise_floor: "float | None" = None,
    pct: "float" = SCALE_PERCENTILE,
) -> "tuple[ScaledSeries, Summary]":
    """
    derives the chart-ready bars and the summary figures of a series.
    """
    if noise_floor is None:
        noise_floor = COST_NOISE_FLOOR if series.metric is Metric.COST else 0.0

    axis = axis_maximum(series.totals, noise_floor, pct)
    bars = tuple(
        ScaledBar(
            date=day,
            value=value,
            height=max(0.0, min(value / axis, 1.0)),
            clipped=value > axis,
            insignificant=0 < value < noise_floor,
            segments=tuple(
                (segment.label, segment.values[i])
                for segment in series.segments
                if segment.values[i] > 0
            ),
        )
        for i, (day, value) in enumerate(zip(series.dates, series.totals))
    )

    total = sum(series.totals)
    cache_rate = None
    if series.metric is Metric.USAGE and series.usage is not None:
        usage = series.usage
        cache_rate = (
            min(usage.cached_tokens / usage.input_tokens, 1.0)
            if usage.input_tokens
            else 0.0
        )

    summary = Summary(
        metric=series.metric,
        total=total,
        average_per_day=total / len(series.totals) if series.totals else 0.0,
        trend=trend(series.totals),
        cache_rate=cache_rate,
        segment_totals=tuple((s.label, s.total) for s in series.segments),
        usage=series.usage,
        first_day=series.dates[0] if series.dates else None,
        last_day=series.dates[-1] if series.dates else None,
    )
    return ScaledSeries(bars=bars, axis_max=axis), summary
