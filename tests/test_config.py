import pytest

from callscript import config


class TestValidateConfig:
    def test_missing_required_exits(self, monkeypatch):
        monkeypatch.setattr(config, "REQUIRED_VARS", ["CALLSCRIPT_TEST_REQUIRED"])
        monkeypatch.delenv("CALLSCRIPT_TEST_REQUIRED", raising=False)
        with pytest.raises(SystemExit):
            config.validate_config()

    def test_missing_optional_warns(self, monkeypatch, caplog):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config.validate_config()
        assert "OPENAI_API_KEY" in caplog.text


class TestAccessors:
    def test_defaults(self, monkeypatch):
        for var in ("CALLSCRIPT_DATABASE_URL", "CALLSCRIPT_CLASSIFIER_DEBOUNCE_MS", "CALLSCRIPT_STALE_SESSION_MINUTES",
                    "LOG_LEVEL", "PORT"):
            monkeypatch.delenv(var, raising=False)
        assert config.database_url() == config.DEFAULT_DATABASE_URL
        assert config.classifier_debounce_ms() == 500
        assert config.stale_session_minutes() == 30
        assert config.log_level() == "INFO"
        assert config.port() == 8765

    def test_bad_integer_falls_back(self, monkeypatch):
        monkeypatch.setenv("CALLSCRIPT_TIER1_MIN_CONFIDENCE", "high")
        assert config.tier1_min_confidence() == 70

    def test_tier2_follows_key(self, monkeypatch):
        monkeypatch.delenv("CALLSCRIPT_USE_TIER2", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert not config.use_tier2()
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert config.use_tier2()
        monkeypatch.setenv("CALLSCRIPT_USE_TIER2", "false")
        assert not config.use_tier2()
