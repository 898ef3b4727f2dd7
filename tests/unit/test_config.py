# =============================================================================
# tests/unit/test_config.py
# Unit Tests for settings loading
# =============================================================================

import pytest
from pathlib import Path

from muhasel_core.config import ENV_MAPPING, Settings, load_settings
from muhasel_core.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and any .env file"""
    for name in ENV_MAPPING:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("muhasel_core.config.load_dotenv", lambda *args, **kwargs: False)
    monkeypatch.chdir(tmp_path)


class TestDefaults:

    def test_defaults(self):
        settings = load_settings()

        assert settings.backend == "http"
        assert settings.api_url == "http://localhost:5000/api"
        assert settings.sync_interval == 300
        assert isinstance(settings.database_path, Path)

    def test_memory_database_passthrough(self):
        assert Settings(db_path=":memory:").database_path == ":memory:"


class TestSources:

    def test_toml_file(self, tmp_path):
        config = tmp_path / "muhasel.toml"
        config.write_text(
            '[muhasel]\napi_url = "https://school.test/api/"\nsync_interval = 60\nunknown = 1\n'
        )

        settings = load_settings(config)

        assert settings.api_url == "https://school.test/api"
        assert settings.sync_interval == 60

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        config = tmp_path / "muhasel.toml"
        config.write_text('[muhasel]\nsync_interval = 60\n')
        monkeypatch.setenv("MUHASEL_SYNC_INTERVAL", "15")
        monkeypatch.setenv("MUHASEL_DB_PATH", ":memory:")

        settings = load_settings(config)

        assert settings.sync_interval == 15
        assert settings.database_path == ":memory:"


class TestValidation:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Config file not found"):
            load_settings(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path):
        config = tmp_path / "broken.toml"
        config.write_text("[muhasel\n")

        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            load_settings(config)

    def test_non_integer_interval(self, monkeypatch):
        monkeypatch.setenv("MUHASEL_SYNC_INTERVAL", "soon")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()

        assert exc_info.value.details["config_key"] == "sync_interval"
        assert not exc_info.value.recoverable

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("MUHASEL_BACKEND", "firebase")

        with pytest.raises(ConfigurationError, match="Unknown backend"):
            load_settings()

    def test_supabase_needs_credentials(self, monkeypatch):
        monkeypatch.setenv("MUHASEL_BACKEND", "supabase")

        with pytest.raises(ConfigurationError, match="SUPABASE_URL"):
            load_settings()

    def test_bcrypt_rounds_range(self):
        with pytest.raises(ConfigurationError):
            Settings(bcrypt_rounds=2).validate()
