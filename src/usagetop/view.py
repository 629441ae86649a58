from dataclasses import dataclass, replace

from usagetop.aggregate import aggregate, allowed_group_bys, drill_down_candidates
from usagetop.models import (
    AggregatedSeries,
    DatasetStatus,
    GroupBy,
    Metric,
    ScaledSeries,
    Segment,
    Selection,
    Summary,
)
from usagetop.store import AggregationStore
from usagetop.summary import summarize


@dataclass(frozen=True, slots=True)
class DashboardView:
    """
    DashboardView is everything the renderer needs for one frame.
    """

    selection: "Selection"
    series: "AggregatedSeries"
    scaled: "ScaledSeries"
    # summary of the charted metric, honoring grouping and drill-down
    summary: "Summary"
    # summaries per metric, None until that dataset has been fetched
    cost_summary: "Summary | None"
    usage_summary: "Summary | None"
    status: "DatasetStatus"
    candidates: "tuple[Segment, ...]"
    group_options: "tuple[GroupBy, ...]"


def build_view(store: "AggregationStore", selection: "Selection") -> "DashboardView":
    series = aggregate(store, selection)
    scaled, summary = summarize(series)

    summaries: "dict[Metric, Summary | None]" = {}
    for metric in Metric:
        if not store.status(selection.provider, metric).fetched:
            summaries[metric] = None
        elif metric is selection.metric:
            summaries[metric] = summary
        else:
            other = replace(
                selection, metric=metric, group_by=GroupBy.NONE, drill_down=None
            )
            summaries[metric] = summarize(aggregate(store, other))[1]

    return DashboardView(
        selection=selection,
        series=series,
        scaled=scaled,
        summary=summary,
        cost_summary=summaries[Metric.COST],
        usage_summary=summaries[Metric.USAGE],
        status=store.status(selection.provider, selection.metric),
        candidates=drill_down_candidates(store, selection),
        group_options=allowed_group_bys(selection.provider, selection.metric),
    )
