import pytest

from usagetop.config import ENV_KEYS, Config
from usagetop.errors import ConfigError
from usagetop.models import Provider


@pytest.fixture()
def clean_env(monkeypatch: "pytest.MonkeyPatch") -> "pytest.MonkeyPatch":
    """
    removes the admin keys from the environment and makes sure
    anything an env file loads is undone after the test.
    """
    for name in ENV_KEYS.values():
        # setenv first so the teardown also drops values set by dotenv
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestConfigFromEnv:
    def test_defaults(self, clean_env: "pytest.MonkeyPatch") -> "None":
        config = Config.from_env()

        assert config.openai_admin_key == ""
        assert config.anthropic_admin_key == ""
        assert config.configured_providers == ()

    def test_reads_env_vars(self, clean_env: "pytest.MonkeyPatch") -> "None":
        clean_env.setenv("OPENAI_ADMIN_KEY", " sk-admin-123 ")
        clean_env.setenv("ANTHROPIC_ADMIN_KEY", "sk-ant-admin-456")

        config = Config.from_env()

        assert config.openai_admin_key == "sk-admin-123"
        assert config.anthropic_admin_key == "sk-ant-admin-456"
        assert config.configured_providers == (Provider.OPENAI, Provider.ANTHROPIC)

    def test_loads_env_file(
        self, clean_env: "pytest.MonkeyPatch", tmp_path: "object"
    ) -> "None":
        env_file = tmp_path / ".env"
        env_file.write_text("ANTHROPIC_ADMIN_KEY=sk-ant-from-file\n")

        config = Config.from_env(str(env_file))

        assert config.anthropic_admin_key == "sk-ant-from-file"
        assert config.configured_providers == (Provider.ANTHROPIC,)

    def test_environment_wins_over_env_file(
        self, clean_env: "pytest.MonkeyPatch", tmp_path: "object"
    ) -> "None":
        clean_env.setenv("OPENAI_ADMIN_KEY", "sk-from-env")
        env_file = tmp_path / ".env"
        env_file.write_text("OPENAI_ADMIN_KEY=sk-from-file\n")

        config = Config.from_env(str(env_file))

        assert config.openai_admin_key == "sk-from-env"


class TestConfigProviders:
    def test_enabled_when_key_set(self) -> "None":
        config = Config(openai_admin_key="sk-test")

        assert config.openai_enabled is True
        assert config.anthropic_enabled is False

    def test_set_admin_key(self) -> "None":
        config = Config()

        config.set_admin_key(Provider.ANTHROPIC, "  sk-ant  ")

        assert config.admin_key(Provider.ANTHROPIC) == "sk-ant"
        assert config.admin_key(Provider.OPENAI) == ""

    def test_require_any_raises_without_keys(self) -> "None":
        with pytest.raises(ConfigError, match="OPENAI_ADMIN_KEY"):
            Config().require_any()

    def test_require_any_passes_with_one_key(self) -> "None":
        Config(anthropic_admin_key="sk-ant").require_any()
