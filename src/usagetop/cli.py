import argparse

from usagetop.config import Config
from usagetop.models import DateRange, GroupBy, Metric, Provider


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="usagetop",
        description="Terminal dashboard for OpenAI and Anthropic cost and usage",
    )
    parser.add_argument(
        "-e",
        "--env-file",
        dest="env_file",
        default=None,
        help="Env file to load OPENAI_ADMIN_KEY / ANTHROPIC_ADMIN_KEY from",
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        default=None,
        help="Provider to show (default: first configured)",
    )
    parser.add_argument(
        "--metric",
        choices=[m.value for m in Metric],
        default=Metric.USAGE.value,
        help="Metric to chart (default: usage)",
    )
    parser.add_argument(
        "--range",
        dest="date_range",
        choices=[r.value for r in DateRange],
        default=DateRange.SEVEN_DAYS.value,
        help="Days to display (default: 7d)",
    )
    parser.add_argument(
        "--group-by",
        dest="group_by",
        choices=[g.value for g in GroupBy],
        default=GroupBy.NONE.value,
        help="Split bars by model or API key (default: none)",
    )
    parser.add_argument(
        "--drill-down",
        dest="drill_down",
        default=None,
        help="Only show this model or API key id (requires --group-by)",
    )
    parser.add_argument(
        "--metrics.listen-address",
        dest="metrics_listen_address",
        default="",
        help="Serve refresh metrics for Prometheus on this address, e.g. :9186",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning)",
    )

    args = parser.parse_args(argv)
    if args.drill_down and args.group_by == GroupBy.NONE.value:
        parser.error("--drill-down requires --group-by model or api_key")

    config = Config.from_env(args.env_file)
    config.provider = Provider(args.provider) if args.provider else None
    config.metric = Metric(args.metric)
    config.date_range = DateRange(args.date_range)
    config.group_by = GroupBy(args.group_by)
    config.drill_down = args.drill_down
    config.metrics_listen_address = args.metrics_listen_address
    config.log_level = args.log_level
    return config
