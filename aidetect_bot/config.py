"""Configuration management for the AI detection bot."""

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator


class TwitterConfig(BaseModel):
    """Twitter/X API credentials and bot identity."""

    bot_username: str = Field(..., description="Bot's handle without the leading @")
    api_key: SecretStr = Field(..., description="OAuth 1.0a consumer key")
    api_key_secret: SecretStr = Field(..., description="OAuth 1.0a consumer secret")
    access_token: SecretStr = Field(..., description="OAuth 1.0a access token")
    access_token_secret: SecretStr = Field(..., description="OAuth 1.0a access token secret")
    bearer_token: SecretStr = Field(..., description="App-only bearer token for search")
    api_base_url: str = "https://api.twitter.com"

    @field_validator("bot_username")
    @classmethod
    def strip_at(cls, value: str) -> str:
        return value.lstrip("@")


class DetectionConfig(BaseModel):
    """AI image detection provider settings."""

    api_key: SecretStr = Field(..., description="API key for the detection provider")
    base_url: str = "https://ai-image-detect.undetectable.ai"
    storage_base_url: str = "https://ai-image-detector-prod.nyc3.digitaloceanspaces.com"
    provider_name: str = "undetectable.ai"
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    max_poll_attempts: int = Field(default=12, ge=1)
    download_timeout_seconds: float = Field(default=15.0, gt=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)


class LLMConfig(BaseModel):
    """Enrichment (image description) model settings."""

    provider: Literal["openai", "anthropic"] = "openai"
    api_key: SecretStr = Field(..., description="API key for LLM provider")
    model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    # OpenAI-compatible endpoint; ignored for anthropic
    base_url: Optional[str] = "https://api.groq.com/openai/v1"
    max_tokens: int = Field(default=500, ge=1, le=4096)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=60.0, gt=0)


class BotConfig(BaseModel):
    """Bot behavior settings."""

    share_base_url: str = Field(
        default="https://aidetect.example.com/d", description="Prefix for shareable result links"
    )
    default_hashtags: list[str] = Field(default_factory=lambda: ["AIDetection", "AIorNot"])

    # Pull-path scheduling
    polls_per_tick: int = Field(default=4, ge=1)
    poll_spacing_seconds: float = Field(default=15.0, ge=0)
    tick_interval_seconds: float = Field(default=60.0, ge=1)

    # Outbound request budget
    rate_limit_max_requests: int = Field(default=60, ge=1)
    rate_limit_window_seconds: float = Field(default=15 * 60, gt=0)

    link_preview_timeout_seconds: float = Field(default=15.0, gt=0)

    # Database settings
    database_path: str = Field(
        default="~/.aidetect-bot/bot.db", description="Path to SQLite database file"
    )

    @field_validator("default_hashtags")
    @classmethod
    def two_defaults(cls, value: list[str]) -> list[str]:
        if len(value) != 2:
            raise ValueError("default_hashtags must contain exactly two tags")
        return [tag.lstrip("#") for tag in value]


class ServerConfig(BaseModel):
    """Webhook/API server settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    basic_auth_username: Optional[str] = None
    basic_auth_password: Optional[SecretStr] = None


class Config(BaseModel):
    """Root configuration model."""

    twitter: TwitterConfig
    detection: DetectionConfig
    llm: LLMConfig
    bot: BotConfig = BotConfig()
    server: ServerConfig = ServerConfig()


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load and validate configuration from YAML file.

    Supports ${VAR_NAME} syntax for environment variable expansion.

    Args:
        config_path: Path to the configuration file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If config is invalid.
        ValueError: If referenced environment variable is not set.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Copy config.example.yaml to config.yaml and fill in your values."
        )

    with path.open() as f:
        raw_config = yaml.safe_load(f)

    # Expand environment variables in the format ${VAR_NAME}
    def expand_env_vars(obj):
        if isinstance(obj, dict):
            return {k: expand_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [expand_env_vars(item) for item in obj]
        elif isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
            env_var = obj[2:-1]
            value = os.getenv(env_var)
            if value is None:
                raise ValueError(f"Environment variable '{env_var}' is not set")
            return value
        return obj

    raw_config = expand_env_vars(raw_config)

    return Config(**raw_config)
