"""
Notification service: Telegram alerts with throttle.

Env:
  TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID

Throttle: the same (level, title) is sent at most once per 15 minutes.
Alerts never raise: an unreachable Telegram must not fail a publish batch.
"""
from __future__ import annotations

import html
import logging
import time
from typing import Any

import httpx

from viralflow.settings import get_settings

logger = logging.getLogger(__name__)

THROTTLE_SEC = 15 * 60
TELEGRAM_MAX_TEXT = 4000
PAYLOAD_PREVIEW_CHARS = 500

_LEVEL_MARKS = {"error": "🔴", "warn": "🟡", "info": "🟢"}
_throttle: dict[str, float] = {}
# Swapped in tests for an httpx.MockTransport
_transport: httpx.AsyncBaseTransport | None = None


def set_transport(transport: httpx.AsyncBaseTransport | None) -> None:
    global _transport
    _transport = transport


def reset_throttle() -> None:
    _throttle.clear()


def _should_send(key: str) -> bool:
    now = time.monotonic()
    last = _throttle.get(key)
    if last is not None and now - last < THROTTLE_SEC:
        return False
    _throttle[key] = now
    return True


def format_alert(level: str, title: str, payload: Any = None) -> str:
    body = f"{_LEVEL_MARKS.get(level, '⚪')} <b>{html.escape(title)}</b>"
    if payload:
        body += f"\n<pre>{html.escape(str(payload)[:PAYLOAD_PREVIEW_CHARS])}</pre>"
    return body


async def _send_telegram(text: str) -> bool:
    settings = get_settings()
    token, chat_id = settings.telegram_bot_token, settings.telegram_chat_id
    if not token or not chat_id:
        logger.debug("[notify] Telegram not configured, skipping")
        return False
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    try:
        async with httpx.AsyncClient(timeout=10, transport=_transport) as client:
            r = await client.post(url, json={
                "chat_id": chat_id,
                "text": text[:TELEGRAM_MAX_TEXT],
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            })
    except httpx.HTTPError as e:
        logger.warning(f"[notify] Telegram send failed: {type(e).__name__}")
        return False
    if r.status_code == 200:
        return True
    logger.warning(f"[notify] Telegram API {r.status_code}: {r.text[:200]}")
    return False


async def _notify(level: str, title: str, payload: Any = None) -> bool:
    if not _should_send(f"{level}:{title}"):
        logger.debug(f"[notify] throttled {level}: {title}")
        return False
    return await _send_telegram(format_alert(level, title, payload))


async def notify_error(title: str, payload: Any = None) -> bool:
    """Send error-level alert (throttled by title)."""
    return await _notify("error", title, payload)


async def notify_warn(title: str, payload: Any = None) -> bool:
    """Send warning-level alert (throttled by title)."""
    return await _notify("warn", title, payload)


async def notify_info(title: str, payload: Any = None) -> bool:
    return await _notify("info", title, payload)
