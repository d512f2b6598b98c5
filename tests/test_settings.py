import pytest

from chatbridge.errors import ConfigurationError
from chatbridge.settings import LETTA_CLOUD_URL, Settings


def _settings(**overrides) -> Settings:
    values = dict(
        telegram_bot_token="t",
        telegram_webhook_path="/webhook",
        letta_api_key="k",
        letta_template_version="proj/tpl:1",
        letta_base_url="https://letta.example/",
        letta_project=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_complete_settings_pass() -> None:
    settings = _settings()
    assert settings.missing_required() == []
    settings.assert_configured()


def test_missing_values_are_named() -> None:
    settings = _settings(telegram_bot_token="", letta_api_key="")
    with pytest.raises(ConfigurationError, match="TELEGRAM_BOT_TOKEN, LETTA_API_KEY"):
        settings.assert_configured()


def test_requires_base_url_or_project() -> None:
    settings = _settings(letta_base_url=None)
    assert settings.missing_required() == ["LETTA_BASE_URL or LETTA_PROJECT"]


def test_api_root() -> None:
    assert _settings().letta_api_root == "https://letta.example"
    assert _settings(letta_base_url=None, letta_project="p").letta_api_root == LETTA_CLOUD_URL
