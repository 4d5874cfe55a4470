"""
ErgoPulse Notifiers
Delivery backends for engine notification effects. The engine decides; these
only deliver. A delivery failure is reported as ``False``, never retried.
"""

import logging
import time
from typing import Optional
import httpx

from app.core.config import settings

logger = logging.getLogger("ergo.notifier")

_KIND_EMOJI = {
    "posture": "🪑",
    "eye_strain": "👀",
    "blink_rate": "😌",
    "break_reminder": "☕",
}


class Notifier:
    """Notifier collaborator: show(kind, title, body)"""

    async def show(self, kind: str, title: str, body: str, silent: bool = True) -> bool:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes notifications to the log (default when Telegram is off)"""

    async def show(self, kind: str, title: str, body: str, silent: bool = True) -> bool:
        logger.info(f"[{kind}] {title}: {body}")
        return True


class TelegramNotifier(Notifier):
    """Sends notifications to Telegram via Bot API"""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout
        self.base_url = f"https://api.telegram.org/bot{self.bot_token}"

    async def _send_message(self, text: str, silent: bool, parse_mode: str = "HTML") -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.base_url}/sendMessage",
                    json={
                        "chat_id": self.chat_id,
                        "text": text,
                        "parse_mode": parse_mode,
                        "disable_notification": silent,
                    },
                )
                if resp.status_code == 200:
                    return True
                logger.warning(f"Telegram API error {resp.status_code}: {resp.text}")
                return False
        except httpx.HTTPError as e:
            logger.error(f"Telegram send failed: {e}")
            return False

    async def show(self, kind: str, title: str, body: str, silent: bool = True) -> bool:
        emoji = _KIND_EMOJI.get(kind, "🔔")
        text = (
            f"{emoji} <b>{title}</b>\n\n"
            f"{body}\n\n"
            f"🕐 {time.strftime('%Y-%m-%d %H:%M:%S')}"
        )
        return await self._send_message(text, silent)


_notifier: Optional[Notifier] = None


def build_notifier() -> Notifier:
    if settings.TELEGRAM_ENABLED and settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_CHAT_ID:
        logger.info("✅ Telegram notifications enabled")
        return TelegramNotifier(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_ID)
    logger.info("ℹ️  Telegram notifications disabled, logging notifications instead")
    return LogNotifier()


# Singleton accessor
def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier
