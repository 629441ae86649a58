from collections.abc import Iterable, Sequence
from dataclasses import replace

from usagetop.aggregate import allowed_group_bys
from usagetop.errors import RenderPreconditionError
from usagetop.models import Column, DateRange, GroupBy, Metric, Provider, Selection

COLUMNS: "tuple[Column, ...]" = (
    Column.PROVIDER,
    Column.METRIC,
    Column.DATE_RANGE,
    Column.GROUP_BY,
)
PROVIDERS: "tuple[Provider, ...]" = (Provider.OPENAI, Provider.ANTHROPIC)
METRICS: "tuple[Metric, ...]" = (Metric.USAGE, Metric.COST)
DATE_RANGES: "tuple[DateRange, ...]" = (DateRange.SEVEN_DAYS, DateRange.THIRTY_DAYS)


def _clamp(value: "int", low: "int", high: "int") -> "int":
    return max(low, min(value, high))


def initial_selection(configured: "Iterable[Provider]" = ()) -> "Selection":
    """
    provider column focused, first configured provider selected,
    no grouping and no drill-down.
    """
    configured = set(configured)
    provider = next((p for p in PROVIDERS if p in configured), PROVIDERS[0])
    return Selection(provider=provider)


def column_options(selection: "Selection", column: "Column") -> "tuple":
    if column is Column.PROVIDER:
        return PROVIDERS
    if column is Column.METRIC:
        return METRICS
    if column is Column.DATE_RANGE:
        return DATE_RANGES
    return allowed_group_bys(selection.provider, selection.metric)


def column_value(selection: "Selection", column: "Column") -> "object":
    return {
        Column.PROVIDER: selection.provider,
        Column.METRIC: selection.metric,
        Column.DATE_RANGE: selection.date_range,
        Column.GROUP_BY: selection.group_by,
    }[column]


def selected_index(selection: "Selection", column: "Column | None" = None) -> "int":
    column = column or selection.focused_column
    options = column_options(selection, column)
    value = column_value(selection, column)
    return options.index(value) if value in options else 0


def move_column(selection: "Selection", delta: "int") -> "Selection":
    """
    moves the focus left (negative) or right (positive). The focus
    stops at the first and last column.
    """
    current = COLUMNS.index(selection.focused_column)
    target = COLUMNS[_clamp(current + delta, 0, len(COLUMNS) - 1)]
    if target is selection.focused_column and not selection.expanded:
        return selection
    return replace(selection, focused_column=target, expanded=False)


def move_cursor(
    selection: "Selection",
    delta: "int",
    candidates: "Sequence[str]" = (),
) -> "Selection":
    """
    moves the selected option of the focused column up (negative) or
    down (positive), clamped to the available options. While the
    group-by column is expanded, the cursor walks "All" followed by
    the drill-down candidates.
    """
    column = selection.focused_column

    if column is Column.GROUP_BY and selection.expanded:
        targets: "tuple[str | None, ...]" = (None, *candidates)
        current = (
            targets.index(selection.drill_down)
            if selection.drill_down in targets
            else 0
        )
        target = targets[_clamp(current + delta, 0, len(targets) - 1)]
        return replace(selection, drill_down=target)

    options = column_options(selection, column)
    current = selected_index(selection, column)
    value = options[_clamp(current + delta, 0, len(options) - 1)]

    if column is Column.PROVIDER:
        return select_provider(selection, value)
    if column is Column.METRIC:
        return select_metric(selection, value)
    if column is Column.DATE_RANGE:
        return select_date_range(selection, value)
    return select_group_by(selection, value)


def select_provider(selection: "Selection", provider: "Provider") -> "Selection":
    """
    switching provider resets the grouping and the drill-down, since
    group-by options and segment names differ per provider.
    """
    if provider is selection.provider:
        return selection
    return replace(
        selection,
        provider=provider,
        group_by=GroupBy.NONE,
        drill_down=None,
        expanded=False,
        scroll=0,
    )


def select_metric(selection: "Selection", metric: "Metric") -> "Selection":
    if metric is selection.metric:
        return selection
    group_by = selection.group_by
    if group_by not in allowed_group_bys(selection.provider, metric):
        group_by = GroupBy.NONE
    return replace(
        selection,
        metric=metric,
        group_by=group_by,
        drill_down=None,
        expanded=False,
        scroll=0,
    )


def select_date_range(selection: "Selection", date_range: "DateRange") -> "Selection":
    if date_range is selection.date_range:
        return selection
    return replace(
        selection,
        date_range=date_range,
        scroll=_clamp(selection.scroll, 0, date_range.days - 1),
    )


def select_group_by(selection: "Selection", group_by: "GroupBy") -> "Selection":
    if group_by not in allowed_group_bys(selection.provider, selection.metric):
        raise RenderPreconditionError(
            f"{group_by.label} grouping is not available for "
            f"{selection.provider.label} {selection.metric.label.lower()}"
        )
    if group_by is selection.group_by:
        return selection
    return replace(selection, group_by=group_by, drill_down=None, expanded=False)


def toggle_expanded(selection: "Selection") -> "Selection":
    """
    opens or closes the drill-down list. Only meaningful on the
    group-by column with a grouping active.
    """
    if selection.focused_column is not Column.GROUP_BY:
        return selection
    if selection.group_by is GroupBy.NONE:
        return selection
    return replace(selection, expanded=not selection.expanded)


def toggle_values(selection: "Selection") -> "Selection":
    return replace(selection, show_values=not selection.show_values)


def scroll_chart(selection: "Selection", delta: "int") -> "Selection":
    last = selection.date_range.days - 1
    return replace(selection, scroll=_clamp(selection.scroll + delta, 0, last))
