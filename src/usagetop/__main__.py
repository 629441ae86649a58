import asyncio
import sys
from dataclasses import replace

import structlog
from prometheus_client import start_http_server
from rich.prompt import Prompt

from usagetop import navigation
from usagetop.cli import parse_args
from usagetop.config import ENV_KEYS, Config
from usagetop.errors import ConfigError, RenderPreconditionError
from usagetop.logging import setup_logging
from usagetop.metrics import RefreshMetrics
from usagetop.models import Provider, Selection
from usagetop.provider.anthropic import AnthropicProvider
from usagetop.provider.base import UsageProvider
from usagetop.provider.openai import OpenAIProvider
from usagetop.refresher import Refresher
from usagetop.render import console, render_dashboard
from usagetop.store import AggregationStore
from usagetop.view import build_view

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '127.0.0.1:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _prompt_for_keys(config: "Config") -> "None":
    """
    asks for the admin keys on the terminal. Empty answers leave a
    provider disabled.
    """
    console.print("[yellow]No admin key found in the environment.[/yellow]")
    for provider, env_key in ENV_KEYS.items():
        key = Prompt.ask(
            f"{provider.label} admin key ({env_key}, empty to skip)",
            password=True,
            default="",
            show_default=False,
            console=console,
        )
        config.set_admin_key(provider, key)


def _build_providers(config: "Config") -> "list[UsageProvider]":
    providers: "list[UsageProvider]" = []
    if config.openai_enabled:
        providers.append(OpenAIProvider(api_key=config.openai_admin_key))
        logger.info("provider_enabled", provider=Provider.OPENAI.value)
    if config.anthropic_enabled:
        providers.append(AnthropicProvider(api_key=config.anthropic_admin_key))
        logger.info("provider_enabled", provider=Provider.ANTHROPIC.value)
    return providers


def initial_selection_from_config(config: "Config") -> "Selection":
    """
    applies the command line choices on top of the default selection,
    through the same transitions the keys use.
    """
    selection = navigation.initial_selection(config.configured_providers)
    if config.provider is not None:
        selection = navigation.select_provider(selection, config.provider)
    selection = navigation.select_metric(selection, config.metric)
    selection = navigation.select_date_range(selection, config.date_range)
    selection = navigation.select_group_by(selection, config.group_by)
    if config.drill_down:
        selection = replace(selection, drill_down=config.drill_down)
    return selection


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level)

    try:
        config.require_any()
    except ConfigError:
        if not sys.stdin.isatty():
            raise SystemExit(
                "No providers configured. Set "
                + " or ".join(ENV_KEYS.values())
                + "."
            )
        _prompt_for_keys(config)

    try:
        config.require_any()
    except ConfigError as e:
        raise SystemExit(str(e))

    try:
        selection = initial_selection_from_config(config)
    except RenderPreconditionError as e:
        raise SystemExit(str(e))
    if selection.provider not in config.configured_providers:
        raise SystemExit(
            f"{selection.provider.label} is not configured. "
            f"Set {ENV_KEYS[selection.provider]}."
        )

    if config.metrics_listen_address:
        host, port = _parse_listen_address(config.metrics_listen_address)
        start_http_server(port, addr=host)
        logger.info("metrics_server_started", host=host, port=port)

    store = AggregationStore()
    refresher = Refresher(_build_providers(config), store, RefreshMetrics())

    async def _run() -> "None":
        try:
            await refresher.refresh()
        finally:
            await refresher.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())
    render_dashboard(build_view(store, selection))


if __name__ == "__main__":
    main()
