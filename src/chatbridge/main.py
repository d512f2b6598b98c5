import json
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from telegram import Update

from .agent.exchange import ExchangeEngine
from .agent.transport import LettaMessageTransport
from .bridge import ChatBridge
from .chat.client import TelegramChatClient, build_bot
from .errors import ConfigurationError
from .models import IncomingMessage
from .services.kv import get_key_value_store
from .services.provisioning import (
    AgentProvisioningClient,
    build_letta_http_client,
    parse_memory_variables,
)
from .services.session_store import SessionStore
from .settings import get_settings

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def setup_server_logging(level: str = "INFO") -> logging.Logger:
    """Configure and return the package logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("chatbridge")
    if logger.handlers:
        return logger

    logger.setLevel(level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    return logger


settings = get_settings()
LOGGER = setup_server_logging(settings.log_level)


def incoming_from_update(update: Update) -> IncomingMessage | None:
    """Extract the text message from a Telegram update, or None if there is none."""
    message = update.message
    if message is None or not message.text:
        return None
    text = message.text.strip()
    if not text:
        return None

    thread_id = None
    if message.is_topic_message and message.message_thread_id:
        thread_id = str(message.message_thread_id)

    sender = message.from_user
    return IncomingMessage(
        chat_id=str(message.chat_id),
        thread_id=thread_id,
        text=text,
        user_id=str(sender.id) if sender else None,
        username=sender.username if sender else None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the bridge at startup; close network clients on shutdown."""
    app.state.bridge = None
    app.state.bot = None
    try:
        settings.assert_configured()
        memory_variables = parse_memory_variables(settings.letta_template_memory_json)
    except ConfigurationError as e:
        LOGGER.error("Configuration error: %s", e)
        yield
        return

    kv = get_key_value_store()
    await kv.connect()
    letta_http = build_letta_http_client(settings)
    bot = build_bot(settings)
    await bot.initialize()

    chat = TelegramChatClient(bot)
    sessions = SessionStore(
        kv=kv,
        provisioning=AgentProvisioningClient(letta_http),
        template_version=settings.letta_template_version,
        memory_variables=memory_variables,
        key_prefix=settings.session_key_prefix,
    )
    app.state.bot = bot
    app.state.bridge = ChatBridge(
        sessions=sessions,
        engine=ExchangeEngine(LettaMessageTransport(letta_http)),
        chat=chat,
        turn_timeout=settings.turn_timeout_seconds,
        flush_interval=settings.flush_interval_seconds,
        typing_interval=settings.typing_interval_seconds,
    )
    LOGGER.info("Bridge ready on webhook path %s", settings.telegram_webhook_path)

    yield

    LOGGER.info("Shutting down...")
    await bot.shutdown()
    await letta_http.aclose()
    await kv.close()


app = FastAPI(
    title="Telegram Letta Bridge",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring.

    Returns:
        dict[str, Any]: JSON response with status field.
    """
    return {"status": "ok"}


@app.post(settings.telegram_webhook_path)
async def telegram_webhook(request: Request, background_tasks: BackgroundTasks):
    """Receive a Telegram update and hand its text message to the bridge.

    The agent turn runs as a background task so Telegram gets its 200 right
    away and does not redeliver the update.
    """
    bridge: ChatBridge | None = request.app.state.bridge
    if bridge is None:
        return PlainTextResponse("Bridge misconfigured.", status_code=500)

    secret = settings.telegram_webhook_secret
    if secret and request.headers.get(SECRET_HEADER) != secret:
        LOGGER.warning("Rejected webhook call with bad secret token")
        return PlainTextResponse("Unauthorized.", status_code=401)

    try:
        payload = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        LOGGER.error("Invalid webhook payload (not JSON): %s", e)
        return PlainTextResponse("Bad request.", status_code=400)

    if not isinstance(payload, dict):
        return PlainTextResponse("Bad request.", status_code=400)
    try:
        update = Update.de_json(payload, request.app.state.bot)
    except (KeyError, TypeError, ValueError) as e:
        LOGGER.error("Webhook payload is not a Telegram update: %s", e)
        return PlainTextResponse("Bad request.", status_code=400)

    incoming = incoming_from_update(update) if update is not None else None
    if incoming is not None:
        LOGGER.info("Update %s for chat_id=%s", update.update_id, incoming.chat_id)
        background_tasks.add_task(bridge.handle_message, incoming)

    return JSONResponse({"ok": True})


def run() -> None:
    """Serve the webhook with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
