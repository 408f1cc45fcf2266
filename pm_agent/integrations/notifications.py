"""Human notification channel: plain messages and approval requests."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

import requests

from pm_agent.models.task_contracts import PendingAction

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class Notifier(Protocol):
    def send_message(self, text: str) -> None: ...

    def request_approval(self, action: PendingAction) -> int | None:
        """Deliver an approve/reject prompt; return the channel message id if any."""
        ...


def format_approval_request(action: PendingAction) -> str:
    expires = datetime.fromtimestamp(action.expires_at / 1000, tz=timezone.utc)
    return (
        "*New Action Pending*\n\n"
        f"Type: {action.action.type}\n"
        f"Description: {action.action.description}\n\n"
        f"Expires: {expires.strftime('%Y-%m-%d %H:%M UTC')}"
    )


class LogNotifier:
    """Writes notifications to the log; used when no transport is configured."""

    def __init__(self) -> None:
        self.messages: list[str] = []
        self.approval_requests: list[str] = []

    def send_message(self, text: str) -> None:
        self.messages.append(text)
        logger.info("Notification: %s", text)

    def request_approval(self, action: PendingAction) -> int | None:
        self.approval_requests.append(action.id)
        logger.info("Approval requested for %s (%s)", action.id, action.action.description)
        return None


class TelegramNotifier:
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        session: requests.Session | None = None,
        base_url: str = TELEGRAM_API_BASE,
        timeout_s: float = 10.0,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def _send(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        url = f"{self.base_url}/bot{self.bot_token}/sendMessage"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout_s)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Failed to send Telegram notification: %s", exc)
            return None
        result = body.get("result") if isinstance(body, dict) else None
        return result if isinstance(result, dict) else None

    def send_message(self, text: str) -> None:
        self._send({"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"})

    def request_approval(self, action: PendingAction) -> int | None:
        result = self._send(
            {
                "chat_id": self.chat_id,
                "text": format_approval_request(action),
                "parse_mode": "Markdown",
                "reply_markup": {
                    "inline_keyboard": [
                        [
                            {"text": "Approve", "callback_data": f"approve:{action.id}"},
                            {"text": "Reject", "callback_data": f"reject:{action.id}"},
                        ],
                        [{"text": "Details", "callback_data": f"details:{action.id}"}],
                    ]
                },
            }
        )
        if result is None:
            return None
        message_id = result.get("message_id")
        return int(message_id) if isinstance(message_id, int) else None


def build_notifier(bot_token: str = "", chat_id: str = "") -> Notifier:
    if bot_token and chat_id:
        return TelegramNotifier(bot_token=bot_token, chat_id=chat_id)
    return LogNotifier()
