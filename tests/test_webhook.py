from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from chatbridge import main
from chatbridge.bridge import ChatBridge
from chatbridge.models import IncomingMessage

WEBHOOK_PATH = main.settings.telegram_webhook_path


def _update(text="Hello", thread_id=None, is_topic=False):
    message = {
        "message_id": 1,
        "date": 1700000000,
        "chat": {"id": 123, "type": "supergroup"},
        "from": {"id": 456, "is_bot": False, "first_name": "Test", "username": "testuser"},
        "text": text,
    }
    if thread_id is not None:
        message["message_thread_id"] = thread_id
        message["is_topic_message"] = is_topic
    return {"update_id": 10, "message": message}


@pytest.fixture
def bridge() -> MagicMock:
    m = MagicMock(spec=ChatBridge)
    m.handle_message = AsyncMock(return_value=None)
    return m


@pytest.fixture
def client(bridge, monkeypatch) -> TestClient:
    monkeypatch.setattr(main.settings, "telegram_webhook_secret", None)
    main.app.state.bridge = bridge
    main.app.state.bot = None
    return TestClient(main.app)


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_text_message_is_forwarded(client, bridge) -> None:
    response = client.post(WEBHOOK_PATH, json=_update("  Hello, how are you?  "))

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    bridge.handle_message.assert_awaited_once_with(
        IncomingMessage(chat_id="123", thread_id=None, text="Hello, how are you?", user_id="456", username="testuser")
    )


def test_topic_message_carries_thread(client, bridge) -> None:
    client.post(WEBHOOK_PATH, json=_update("hi", thread_id=42, is_topic=True))
    assert bridge.handle_message.await_args.args[0].thread_id == "42"


def test_reply_thread_outside_forum_is_ignored(client, bridge) -> None:
    client.post(WEBHOOK_PATH, json=_update("hi", thread_id=42, is_topic=False))
    assert bridge.handle_message.await_args.args[0].thread_id is None


def test_update_without_text_is_acknowledged(client, bridge) -> None:
    payload = _update()
    del payload["message"]["text"]
    response = client.post(WEBHOOK_PATH, json=payload)
    assert response.status_code == 200
    bridge.handle_message.assert_not_called()


def test_invalid_json_rejected(client, bridge) -> None:
    response = client.post(WEBHOOK_PATH, content=b"{nope", headers={"content-type": "application/json"})
    assert response.status_code == 400
    bridge.handle_message.assert_not_called()


def test_secret_token_checked(client, bridge, monkeypatch) -> None:
    monkeypatch.setattr(main.settings, "telegram_webhook_secret", "s3cret")

    denied = client.post(WEBHOOK_PATH, json=_update())
    assert denied.status_code == 401

    allowed = client.post(WEBHOOK_PATH, json=_update(), headers={main.SECRET_HEADER: "s3cret"})
    assert allowed.status_code == 200
    bridge.handle_message.assert_awaited_once()


def test_misconfigured_bridge_returns_500(client) -> None:
    main.app.state.bridge = None
    response = client.post(WEBHOOK_PATH, json=_update())
    assert response.status_code == 500
    assert response.text == "Bridge misconfigured."


def test_other_paths_not_found(client) -> None:
    assert client.post("/somewhere-else", json=_update()).status_code == 404


def test_startup_without_required_config_leaves_bridge_unwired(monkeypatch) -> None:
    monkeypatch.setattr(main.settings, "telegram_bot_token", "")
    with TestClient(main.app) as client:
        assert main.app.state.bridge is None
        assert client.post(WEBHOOK_PATH, json=_update()).status_code == 500


def test_startup_with_bad_memory_json_leaves_bridge_unwired(monkeypatch) -> None:
    monkeypatch.setattr(main.settings, "telegram_bot_token", "t")
    monkeypatch.setattr(main.settings, "letta_api_key", "k")
    monkeypatch.setattr(main.settings, "letta_template_version", "proj/tpl:1")
    monkeypatch.setattr(main.settings, "letta_base_url", "https://letta.example")
    monkeypatch.setattr(main.settings, "letta_template_memory_json", "{nope")
    with TestClient(main.app):
        assert main.app.state.bridge is None
