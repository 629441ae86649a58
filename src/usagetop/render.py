from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from usagetop.models import Column, Metric, ScaledBar, Summary
from usagetop.navigation import COLUMNS, column_options, column_value
from usagetop.view import DashboardView

console = Console()

BAR_WIDTH = 40

_COLUMN_TITLES = {
    Column.PROVIDER: "Providers",
    Column.METRIC: "Metrics",
    Column.DATE_RANGE: "Range",
    Column.GROUP_BY: "Group By",
}


def format_tokens(tokens: "float") -> "str":
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1_000:
        return f"{int(tokens) // 1000}k"
    return str(int(tokens))


def format_cost(amount: "float") -> "str":
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_value(metric: "Metric", value: "float") -> "str":
    return format_cost(value) if metric is Metric.COST else format_tokens(value)


def format_trend(trend: "float | None") -> "str":
    if trend is None:
        return "n/a"
    arrow = "↑" if trend >= 0 else "↓"
    return f"{arrow} {abs(trend):.1f}%"


def format_rate(rate: "float | None") -> "str":
    return "n/a" if rate is None else f"{rate * 100:.1f}%"


def render_dashboard(view: "DashboardView", out: "Console | None" = None) -> "None":
    """
    prints the options, chart, legend and summary of one view to
    `out`, or to the module console.
    """
    out = out or console
    out.print(_options_table(view))
    out.print()
    _render_chart(view, out)
    if view.series.segments:
        out.print()
        out.print(_legend_table(view))
    out.print()
    out.print(_summary_panel(view))


def _option_label(option: "object") -> "str":
    label = getattr(option, "label", None)
    return label if isinstance(label, str) else str(getattr(option, "value", option))


def _options_table(view: "DashboardView") -> "Table":
    selection = view.selection
    table = Table(title="Options", expand=True, show_lines=False)
    columns = []
    for column in COLUMNS:
        focused = column is selection.focused_column
        table.add_column(
            _COLUMN_TITLES[column], style="bold cyan" if focused else "grey50"
        )

        lines = []
        current = column_value(selection, column)
        for option in column_options(selection, column):
            marker = "> " if option == current else "  "
            lines.append(f"{marker}{_option_label(option)}")

        if column is Column.GROUP_BY and selection.expanded:
            all_marker = "  > " if selection.drill_down is None else "    "
            lines.append(f"{all_marker}All")
            for segment in view.candidates:
                marker = "  > " if segment.key == selection.drill_down else "    "
                lines.append(f"{marker}{escape(segment.label)}")
            if not view.candidates:
                lines.append("    (no data)")

        columns.append("\n".join(lines))

    table.add_row(*columns)
    return table


def _chart_title(view: "DashboardView") -> "str":
    selection = view.selection
    what = "Daily Cost" if selection.metric is Metric.COST else "Daily Token Usage"
    title = f"{selection.provider.label} - {what}"
    if view.series.segments:
        title += f" by {selection.group_by.label}"
    if view.series.drill_down:
        label = next(
            (s.label for s in view.series.segments if s.key == view.series.drill_down),
            view.series.drill_down,
        )
        title += f" - {escape(label)}"
    return title


def _render_chart(view: "DashboardView", out: "Console") -> "None":
    status = view.status
    title = _chart_title(view)
    metric = view.selection.metric

    if status.error and not status.fetched:
        out.print(
            Panel(
                f"[red]Error loading {view.selection.provider.label} "
                f"{metric.label} data: {escape(status.error)}[/red]",
                title=title,
                border_style="red",
            )
        )
        return

    if not status.fetched:
        out.print(Panel(f"No {metric.label} data fetched yet.", title=title))
        return

    table = Table(title=title, show_lines=False)
    table.add_column("Date", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column(
        f"Scale: {format_value(metric, view.scaled.axis_max)}", min_width=BAR_WIDTH
    )
    if view.selection.show_values and view.series.segments:
        table.add_column("Segments")

    for bar in view.scaled.bars[view.selection.scroll:]:
        row = [
            bar.date.strftime("%m/%d"),
            format_value(metric, bar.value),
            _bar(bar),
        ]
        if view.selection.show_values and view.series.segments:
            row.append(
                ", ".join(
                    f"{escape(label)}: {format_value(metric, value)}"
                    for label, value in bar.segments
                )
            )
        table.add_row(*row)

    out.print(table)
    if status.stale:
        out.print(
            "[yellow]Showing previous data, refresh failed: "
            f"{escape(status.error or '')}[/yellow]"
        )


def _bar(bar: "ScaledBar") -> "str":
    filled = min(max(round(bar.height * BAR_WIDTH), 0), BAR_WIDTH)
    if bar.value > 0 and filled == 0:
        filled = 1
    color = "grey50" if bar.insignificant else "green"
    text = f"[{color}]{'█' * filled}{'░' * (BAR_WIDTH - filled)}[/{color}]"
    if bar.clipped:
        text += " [bold red]▲[/bold red]"
    return text


def _legend_table(view: "DashboardView") -> "Table":
    metric = view.selection.metric
    table = Table(title=view.selection.group_by.label, show_lines=False)
    table.add_column("Segment", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("% of Total", justify="right")

    grand_total = view.summary.total or 1
    for label, total in view.summary.segment_totals:
        table.add_row(
            escape(label),
            format_value(metric, total),
            f"{total / grand_total * 100:.1f}%",
        )
    return table


def _summary_panel(view: "DashboardView") -> "Panel":
    selection = view.selection
    grid = Table.grid(expand=True, padding=(0, 4))
    grid.add_column()
    grid.add_column()
    grid.add_row(
        _cost_lines(view.cost_summary, selection.date_range.value),
        _usage_lines(view.usage_summary, selection.date_range.value),
    )

    first, last = view.summary.first_day, view.summary.last_day
    if first and last:
        grid.add_row("", "")
        grid.add_row(f"[bold]Date Range:[/bold] {first:%m/%d} - {last:%m/%d}", "")

    return Panel(
        grid,
        title="[bold cyan]Summary[/bold cyan]",
        border_style="cyan",
    )


def _cost_lines(summary: "Summary | None", range_label: "str") -> "str":
    if summary is None:
        return "[bold]Cost[/bold]\n\nn/a"
    lines = [
        "[bold]Cost[/bold]",
        "",
        f"Total ({range_label}): [bold]{format_cost(summary.total)}[/bold]",
        f"Average per day: [bold]{format_cost(summary.average_per_day)}[/bold]",
        f"Trend: [bold]{format_trend(summary.trend)}[/bold]",
    ]
    return "\n".join(lines)


def _usage_lines(summary: "Summary | None", range_label: "str") -> "str":
    if summary is None or summary.usage is None:
        return "[bold]Usage[/bold]\n\nn/a\nCache hit rate: n/a"
    usage = summary.usage
    lines = [
        "[bold]Usage[/bold]",
        "",
        f"Total Tokens ({range_label}): [bold]{format_tokens(summary.total)}[/bold]",
        f"Average per day: [bold]{format_tokens(summary.average_per_day)}[/bold]",
        f"Input: {format_tokens(usage.input_tokens)} | "
        f"Output: {format_tokens(usage.output_tokens)}",
        f"Trend: [bold]{format_trend(summary.trend)}[/bold]",
        f"Cache hit rate: [bold]{format_rate(summary.cache_rate)}[/bold]",
    ]
    if usage.request_count:
        lines.append(f"Requests ({range_label}): [bold]{usage.request_count}[/bold]")
    return "\n".join(lines)
