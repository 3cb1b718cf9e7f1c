"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from aidetect_bot.config import load_config

from .conftest import make_config

CONFIG_YAML = """
twitter:
  bot_username: "@DetectBot"
  api_key: "${TEST_TWITTER_KEY}"
  api_key_secret: "secret"
  access_token: "token"
  access_token_secret: "token-secret"
  bearer_token: "bearer"
detection:
  api_key: "${TEST_DETECT_KEY}"
llm:
  api_key: "llm"
bot:
  default_hashtags: ["#AIDetection", "AIorNot"]
  polls_per_tick: 2
"""


class TestLoadConfig:
    """Test YAML loading with environment expansion."""

    def test_env_expansion_and_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_TWITTER_KEY", "from-env")
        monkeypatch.setenv("TEST_DETECT_KEY", "detect-env")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config = load_config(path)

        assert config.twitter.api_key.get_secret_value() == "from-env"
        assert config.detection.api_key.get_secret_value() == "detect-env"
        assert config.twitter.bot_username == "DetectBot"
        assert config.bot.default_hashtags == ["AIDetection", "AIorNot"]
        assert config.bot.polls_per_tick == 2
        assert config.bot.poll_spacing_seconds == 15
        assert config.detection.max_poll_attempts == 12
        assert config.detection.poll_interval_seconds == 5
        assert config.server.port == 8080

    def test_missing_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_TWITTER_KEY", raising=False)
        monkeypatch.setenv("TEST_DETECT_KEY", "detect-env")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        with pytest.raises(ValueError, match="TEST_TWITTER_KEY"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_exactly_two_default_hashtags(self):
        with pytest.raises(ValidationError):
            make_config(bot={"default_hashtags": ["OnlyOne"]})

    def test_secrets_hidden_in_repr(self):
        config = make_config()
        assert "consumer-secret" not in repr(config)
