"""Telegram posting helpers built on the Bot API over plain HTTPS."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from core.config import Config
from core.logger import get_logger
from core.stage_config import TelegramTargetConfig

log = get_logger("Telegram")

# Failure categories, prefixed onto every reason so log readers can tell
# a revoked token from a bad message at a glance.
INVALID_CREDENTIALS = "invalid_credentials"
INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
MALFORMED_CONTENT = "malformed_content"
CHAT_NOT_FOUND = "chat_not_found"
RATE_LIMITED = "rate_limited"
NETWORK = "network"
API_ERROR = "api_error"


class TelegramAPIError(RuntimeError):
    """Raised when the Bot API responds with ``ok: false``."""

    def __init__(self, message: str, category: str = API_ERROR):
        super().__init__(message)
        self.category = category


@dataclass(frozen=True)
class DeliveryOptions:
    parse_mode: str = "HTML"
    disable_web_page_preview: bool = False
    message_thread_id: Optional[str] = None

    @classmethod
    def from_target(cls, target: TelegramTargetConfig) -> "DeliveryOptions":
        return cls(target.parse_mode, target.disable_web_page_preview, target.message_thread_id)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    reason: Optional[str] = None
    message_id: Optional[int] = None


def _api_base(bot_token: str) -> str:
    return f"{Config.TELEGRAM_API_BASE}/bot{quote(bot_token, safe=':')}"


def classify_error(status_code: int, description: str) -> str:
    text = (description or "").lower()
    if status_code == 401 or "unauthorized" in text:
        return INVALID_CREDENTIALS
    if status_code == 404 and "chat" not in text:
        # The Bot API answers 404 for an unknown token.
        return INVALID_CREDENTIALS
    if status_code == 429 or "too many requests" in text:
        return RATE_LIMITED
    if status_code == 403 or "not enough rights" in text or "have no rights" in text:
        return INSUFFICIENT_PERMISSIONS
    if "chat not found" in text:
        return CHAT_NOT_FOUND
    if status_code == 400 and any(
        hint in text for hint in ("can't parse entities", "message is too long", "message text is empty", "unsupported")
    ):
        return MALFORMED_CONTENT
    return API_ERROR


def _call(bot_token: str, method: str, *, payload: Dict[str, Any] | None = None, params: Dict[str, Any] | None = None):
    url = f"{_api_base(bot_token)}/{method}"
    if payload is not None:
        resp = requests.post(url, json=payload, timeout=Config.HTTP_TIMEOUT_SECONDS)
    else:
        resp = requests.get(url, params=params, timeout=Config.HTTP_TIMEOUT_SECONDS)

    try:
        data = resp.json()
    except ValueError:
        data = {"ok": False, "description": resp.text or f"HTTP {resp.status_code}"}

    if resp.status_code >= 400 or not data.get("ok"):
        description = data.get("description") or f"HTTP {resp.status_code}"
        category = classify_error(resp.status_code, description)
        raise TelegramAPIError(f"{method}: {description}", category)
    return data.get("result")


def build_payload(
    chat_id: str,
    text: str,
    *,
    parse_mode: str = "HTML",
    disable_web_page_preview: bool = False,
    message_thread_id: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": bool(disable_web_page_preview),
    }
    if parse_mode and parse_mode != "None":
        payload["parse_mode"] = parse_mode
    if message_thread_id:
        payload["message_thread_id"] = int(message_thread_id) if str(message_thread_id).isdigit() else message_thread_id
    return payload


def send_message(
    bot_token: str,
    chat_id: str,
    text: str,
    *,
    parse_mode: str = "HTML",
    disable_web_page_preview: bool = False,
    message_thread_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Send one text message. Never raises; failures come back as ``status: error``."""

    payload = build_payload(
        chat_id,
        text,
        parse_mode=parse_mode,
        disable_web_page_preview=disable_web_page_preview,
        message_thread_id=message_thread_id,
    )
    try:
        result = _call(bot_token, "sendMessage", payload=payload)
    except TelegramAPIError as exc:
        log.error(f"❌ Telegram rejected message for {chat_id}: {exc}")
        return {"status": "error", "category": exc.category, "error": str(exc)}
    except requests.RequestException as exc:
        log.error(f"Network error talking to Telegram Bot API: {exc}")
        return {"status": "error", "category": NETWORK, "error": f"Network error communicating with Telegram: {exc}"}

    message_id = (result or {}).get("message_id")
    log.info(f"📨 Message {message_id} sent to {chat_id}")
    return {"status": "success", "message_id": message_id}


def check_connection(bot_token: str, chat_id: str) -> str:
    """Verify the bot token, the chat, and the bot's right to post there.

    Returns the bot's username; raises ``TelegramAPIError`` on the first
    failed check.
    """

    me = _call(bot_token, "getMe", params={})
    _call(bot_token, "getChat", params={"chat_id": chat_id})
    member = _call(bot_token, "getChatMember", params={"chat_id": chat_id, "user_id": me["id"]})

    status = (member or {}).get("status")
    can_post = status in {"administrator", "creator"} or (member or {}).get("can_post_messages") is True
    if not can_post:
        raise TelegramAPIError("Bot lacks permission to post to this chat", INSUFFICIENT_PERMISSIONS)

    # Harmless probe that fails the same way a real post would.
    _call(bot_token, "sendChatAction", payload={"chat_id": chat_id, "action": "typing"})
    return me.get("username", "")


class TelegramDelivery:
    """Delivery adapter used by the campaign runner."""

    def send(self, target: TelegramTargetConfig, text: str, options: DeliveryOptions | None = None) -> DeliveryResult:
        options = options or DeliveryOptions.from_target(target)
        resp = send_message(
            target.bot_token,
            target.chat_id,
            text,
            parse_mode=options.parse_mode,
            disable_web_page_preview=options.disable_web_page_preview,
            message_thread_id=options.message_thread_id,
        )
        if resp.get("status") == "success":
            return DeliveryResult(ok=True, message_id=resp.get("message_id"))
        return DeliveryResult(ok=False, reason=f"{resp.get('category', API_ERROR)}: {resp.get('error', 'Unknown error')}")


if __name__ == "__main__":
    print("Telegram poster ready; use cli.py --test-telegram <campaign id> to verify a target.")
