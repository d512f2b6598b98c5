from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

LETTA_CLOUD_URL = "https://api.letta.com"


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    telegram_bot_token: str = ""
    telegram_api_base_url: str | None = None
    telegram_webhook_path: str = "/telegram/webhook"
    telegram_webhook_secret: str | None = None
    telegram_webhook_url: str | None = None

    letta_api_key: str = ""
    letta_base_url: str | None = None
    letta_project: str | None = None
    letta_template_version: str = ""
    letta_template_memory_json: str | None = None
    letta_request_timeout_seconds: float = 300.0

    redis_url: str | None = None
    session_key_prefix: str = "chat:"

    turn_timeout_seconds: float = 900.0
    flush_interval_seconds: float = 1.0
    typing_interval_seconds: float = 4.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="allow",
    )

    @property
    def letta_api_root(self) -> str:
        """Base URL of the Letta API without a trailing slash."""
        if self.letta_base_url and self.letta_base_url.strip():
            return self.letta_base_url.strip().rstrip("/")
        if self.letta_project:
            return LETTA_CLOUD_URL
        raise ConfigurationError("Either LETTA_BASE_URL or LETTA_PROJECT must be set")

    def missing_required(self) -> List[str]:
        """Return the environment names of required values that are unset."""
        missing = [
            env_name
            for env_name, value in (
                ("TELEGRAM_BOT_TOKEN", self.telegram_bot_token),
                ("TELEGRAM_WEBHOOK_PATH", self.telegram_webhook_path),
                ("LETTA_API_KEY", self.letta_api_key),
                ("LETTA_TEMPLATE_VERSION", self.letta_template_version),
            )
            if not value
        ]
        if not self.letta_base_url and not self.letta_project:
            missing.append("LETTA_BASE_URL or LETTA_PROJECT")
        return missing

    def assert_configured(self) -> None:
        """Raise ConfigurationError when a required value is missing."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required environment values: {', '.join(missing)}"
            )


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
