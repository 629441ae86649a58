import enum
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

FETCH_WINDOW_DAYS = 30


class Provider(enum.Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"

    @property
    def label(self) -> "str":
        return {"openai": "OpenAI", "anthropic": "Anthropic"}[self.value]


class Metric(enum.Enum):
    COST = "cost"
    USAGE = "usage"

    @property
    def label(self) -> "str":
        return self.value.capitalize()


class DateRange(enum.Enum):
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"

    @property
    def days(self) -> "int":
        return 7 if self is DateRange.SEVEN_DAYS else 30


class GroupBy(enum.Enum):
    NONE = "none"
    MODEL = "model"
    API_KEY = "api_key"

    @property
    def label(self) -> "str":
        return {"none": "None", "model": "Model", "api_key": "API Keys"}[self.value]


class Column(enum.Enum):
    PROVIDER = "provider"
    METRIC = "metric"
    DATE_RANGE = "date_range"
    GROUP_BY = "group_by"


@dataclass(frozen=True, slots=True)
class DailyUsageRecord:
    """
    DailyUsageRecord represents the token usage of one
    (model, api key) pair on one UTC day.
    """

    date: "date"
    provider: "Provider"
    model: "str | None" = None
    # API key identifier, not the secret itself
    api_key_id: "str | None" = None
    request_count: "int" = 0
    # input_tokens includes cached_tokens
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    cached_tokens: "int" = 0

    @property
    def key(self) -> "tuple[date, Provider, str | None, str | None]":
        return (self.date, self.provider, self.model, self.api_key_id)

    @property
    def total_tokens(self) -> "int":
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class DailyCostRecord:
    """
    DailyCostRecord represents the cost of one line item
    on one UTC day, in USD.
    """

    date: "date"
    provider: "Provider"
    model: "str | None" = None
    api_key_id: "str | None" = None
    amount: "Decimal" = Decimal("0")

    @property
    def key(self) -> "tuple[date, Provider, str | None, str | None]":
        return (self.date, self.provider, self.model, self.api_key_id)


Record = DailyUsageRecord | DailyCostRecord


@dataclass(frozen=True, slots=True)
class FetchWindow:
    """
    FetchWindow is the fixed 30-day span that is always fetched,
    ending (inclusive) on `end`. Display ranges are trailing
    slices of it.
    """

    end: "date"

    @classmethod
    def ending_today(cls, now: "datetime | None" = None) -> "FetchWindow":
        now = now or datetime.now(timezone.utc)
        return cls(end=now.astimezone(timezone.utc).date())

    @property
    def start(self) -> "date":
        return self.end - timedelta(days=FETCH_WINDOW_DAYS - 1)

    @property
    def start_datetime(self) -> "datetime":
        return datetime(
            self.start.year, self.start.month, self.start.day, tzinfo=timezone.utc
        )

    def days(self, count: "int" = FETCH_WINDOW_DAYS) -> "tuple[date, ...]":
        """
        returns the trailing `count` days of the window, oldest first.
        """
        count = max(1, min(count, FETCH_WINDOW_DAYS))
        return tuple(self.end - timedelta(days=i) for i in range(count - 1, -1, -1))


@dataclass(frozen=True, slots=True)
class Selection:
    """
    Selection is the full set of options the user picked. It is
    never mutated: navigation builds a new one per key event.
    """

    provider: "Provider" = Provider.OPENAI
    metric: "Metric" = Metric.USAGE
    date_range: "DateRange" = DateRange.SEVEN_DAYS
    group_by: "GroupBy" = GroupBy.NONE
    focused_column: "Column" = Column.PROVIDER
    # segment key (model name or raw api key id)
    drill_down: "str | None" = None
    # whether the group-by column lists drill-down targets
    expanded: "bool" = False
    # whether per-segment values are shown on the bars
    show_values: "bool" = False
    # index of the first visible day in the chart
    scroll: "int" = 0


@dataclass(frozen=True, slots=True)
class UsageTotals:
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    cached_tokens: "int" = 0
    request_count: "int" = 0

    @property
    def total_tokens(self) -> "int":
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class Segment:
    key: "str"
    label: "str"
    values: "tuple[float, ...]"

    @property
    def total(self) -> "float":
        return sum(self.values)


@dataclass(frozen=True, slots=True)
class AggregatedSeries:
    """
    AggregatedSeries holds per-day totals for exactly the days
    of the selected range. Days without data are zero.
    """

    provider: "Provider"
    metric: "Metric"
    date_range: "DateRange"
    group_by: "GroupBy"
    dates: "tuple[date, ...]"
    totals: "tuple[float, ...]"
    segments: "tuple[Segment, ...]" = ()
    # only set for the usage metric
    usage: "UsageTotals | None" = None
    drill_down: "str | None" = None


@dataclass(frozen=True, slots=True)
class ScaledBar:
    date: "date"
    value: "float"
    # bar height as a fraction of the axis, within [0, 1]. Days
    # with a net credit (negative cost) have height 0
    height: "float"
    # true when the value exceeds the axis (outlier)
    clipped: "bool" = False
    # true when the value is below the noise floor
    insignificant: "bool" = False
    segments: "tuple[tuple[str, float], ...]" = ()


@dataclass(frozen=True, slots=True)
class ScaledSeries:
    bars: "tuple[ScaledBar, ...]"
    axis_max: "float"


@dataclass(frozen=True, slots=True)
class Summary:
    metric: "Metric"
    total: "float"
    average_per_day: "float"
    # percent change, None when not computable ("n/a")
    trend: "float | None"
    # fraction in [0, 1], None for cost
    cache_rate: "float | None"
    segment_totals: "tuple[tuple[str, float], ...]" = ()
    usage: "UsageTotals | None" = None
    first_day: "date | None" = None
    last_day: "date | None" = None


@dataclass(frozen=True, slots=True)
class DatasetStatus:
    fetched: "bool" = False
    stale: "bool" = False
    error: "str | None" = None
    record_count: "int" = 0
    fetched_at: "datetime | None" = None

