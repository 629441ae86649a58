import os
from dataclasses import dataclass

from dotenv import load_dotenv

from usagetop.errors import ConfigError
from usagetop.models import DateRange, GroupBy, Metric, Provider

ENV_KEYS: "dict[Provider, str]" = {
    Provider.OPENAI: "OPENAI_ADMIN_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_ADMIN_KEY",
}


@dataclass
class Config:
    openai_admin_key: "str" = ""
    anthropic_admin_key: "str" = ""
    log_level: "str" = "warning"
    # listen_address: format ":9186" or
    # "127.0.0.1:9186", empty to disable
    metrics_listen_address: "str" = ""

    # initial selection
    provider: "Provider | None" = None
    metric: "Metric" = Metric.USAGE
    date_range: "DateRange" = DateRange.SEVEN_DAYS
    group_by: "GroupBy" = GroupBy.NONE
    drill_down: "str | None" = None

    @classmethod
    def from_env(cls, env_file: "str | None" = None) -> "Config":
        """
        reads admin keys from the environment, after loading
        `env_file` when one is given. Variables already set in the
        environment win over the file.
        """
        if env_file:
            load_dotenv(env_file, override=False)
        return cls(
            openai_admin_key=os.environ.get(ENV_KEYS[Provider.OPENAI], "").strip(),
            anthropic_admin_key=os.environ.get(
                ENV_KEYS[Provider.ANTHROPIC], ""
            ).strip(),
        )

    @property
    def openai_enabled(self) -> "bool":
        return bool(self.openai_admin_key)

    @property
    def anthropic_enabled(self) -> "bool":
        return bool(self.anthropic_admin_key)

    @property
    def configured_providers(self) -> "tuple[Provider, ...]":
        providers: "list[Provider]" = []
        if self.openai_enabled:
            providers.append(Provider.OPENAI)
        if self.anthropic_enabled:
            providers.append(Provider.ANTHROPIC)
        return tuple(providers)

    def admin_key(self, provider: "Provider") -> "str":
        if provider is Provider.OPENAI:
            return self.openai_admin_key
        return self.anthropic_admin_key

    def set_admin_key(self, provider: "Provider", key: "str") -> "None":
        if provider is Provider.OPENAI:
            self.openai_admin_key = key.strip()
        else:
            self.anthropic_admin_key = key.strip()

    def require_any(self) -> "None":
        if not self.configured_providers:
            raise ConfigError(
                "No admin key configured. Set "
                + " or ".join(ENV_KEYS.values())
                + " or pass --env-file."
            )
