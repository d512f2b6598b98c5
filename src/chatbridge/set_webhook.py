"""Register the bridge's webhook URL with Telegram.

Reads TELEGRAM_BOT_TOKEN, TELEGRAM_WEBHOOK_URL and the optional
TELEGRAM_WEBHOOK_SECRET from the environment / .env.
"""

import asyncio
import logging
import sys

from telegram.error import TelegramError

from .chat.client import build_bot
from .settings import Settings, get_settings

logger = logging.getLogger("chatbridge.set_webhook")


async def register_webhook(settings: Settings) -> bool:
    """Call setWebhook. Returns True if Telegram accepted it."""
    if not settings.telegram_bot_token:
        logger.error("Missing TELEGRAM_BOT_TOKEN")
        return False
    if not settings.telegram_webhook_url:
        logger.error("Missing TELEGRAM_WEBHOOK_URL")
        return False

    bot = build_bot(settings)
    try:
        async with bot:
            ok = await bot.set_webhook(
                url=settings.telegram_webhook_url,
                secret_token=settings.telegram_webhook_secret or None,
            )
    except TelegramError as e:
        logger.error("Failed to set webhook: %s", e)
        return False

    if ok:
        logger.info("Webhook set to %s", settings.telegram_webhook_url)
    return bool(ok)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    if not asyncio.run(register_webhook(get_settings())):
        sys.exit(1)


if __name__ == "__main__":
    main()
