from __future__ import annotations

from typing import Any

import requests

from pm_agent.events import EventBus
from pm_agent.integrations.notifications import (
    LogNotifier,
    TelegramNotifier,
    build_notifier,
    format_approval_request,
)
from pm_agent.models.task_contracts import PendingAction, SuggestedAction


class FakeResponse:
    def __init__(self, body: Any, status_code: int = 200) -> None:
        self.body = body
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def json(self) -> Any:
        return self.body


class FakeSession:
    def __init__(self, response: FakeResponse | Exception) -> None:
        self.response = response
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, json: dict[str, Any], timeout: float) -> FakeResponse:
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _action() -> PendingAction:
    return PendingAction(
        id="action-1",
        action=SuggestedAction(type="create_issue", description="Open CI issue"),
        created_at=0,
        expires_at=3_600_000,
    )


def test_approval_request_carries_inline_keyboard() -> None:
    session = FakeSession(FakeResponse({"ok": True, "result": {"message_id": 42}}))
    notifier = TelegramNotifier("token", "chat-1", session=session)

    message_id = notifier.request_approval(_action())

    assert message_id == 42
    post = session.posts[0]
    assert post["url"] == "https://api.telegram.org/bottoken/sendMessage"
    keyboard = post["json"]["reply_markup"]["inline_keyboard"]
    assert [button["callback_data"] for button in keyboard[0]] == [
        "approve:action-1",
        "reject:action-1",
    ]
    assert keyboard[1][0]["callback_data"] == "details:action-1"
    assert "Description: Open CI issue" in post["json"]["text"]


def test_transport_errors_are_logged_not_raised() -> None:
    failing = TelegramNotifier(
        "token", "chat-1", session=FakeSession(requests.ConnectionError("offline"))
    )
    assert failing.request_approval(_action()) is None
    failing.send_message("hello")

    rejected = TelegramNotifier("token", "chat-1", session=FakeSession(FakeResponse({}, 403)))
    assert rejected.request_approval(_action()) is None


def test_send_message_uses_markdown() -> None:
    session = FakeSession(FakeResponse({"ok": True, "result": {"message_id": 1}}))
    TelegramNotifier("token", "chat-1", session=session).send_message("*Alert*")
    assert session.posts[0]["json"] == {
        "chat_id": "chat-1",
        "text": "*Alert*",
        "parse_mode": "Markdown",
    }


def test_format_approval_request_shows_expiry_in_utc() -> None:
    text = format_approval_request(_action())
    assert text.startswith("*New Action Pending*")
    assert "Expires: 1970-01-01 01:00 UTC" in text


def test_build_notifier_requires_token_and_chat() -> None:
    assert isinstance(build_notifier("token", "chat"), TelegramNotifier)
    assert isinstance(build_notifier("token", ""), LogNotifier)
    assert isinstance(build_notifier(), LogNotifier)


def test_log_notifier_records_messages() -> None:
    notifier = LogNotifier()
    notifier.send_message("hi")
    assert notifier.request_approval(_action()) is None
    assert notifier.messages == ["hi"]
    assert notifier.approval_requests == ["action-1"]


def test_event_bus_history_and_failing_observer() -> None:
    bus = EventBus(history_size=2)
    seen: list[str] = []

    def broken(event: Any) -> None:
        raise RuntimeError("observer crashed")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(lambda event: seen.append(event.type))

    bus.broadcast("analysis_started", {"reportId": "r1"})
    bus.broadcast("agent_log", {"text": "hi"})
    unsubscribe()
    bus.broadcast("analysis_completed")

    assert seen == ["analysis_started", "agent_log"]
    assert [event.type for event in bus.history] == ["agent_log", "analysis_completed"]
    assert bus.events_of("agent_log")[0].data == {"text": "hi"}
