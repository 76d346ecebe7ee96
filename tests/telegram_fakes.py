from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from topic_relay.models import SavedMessage, SenderIdentity, Settings, Thread
from topic_relay.store import MemoryStore
from topic_relay.telegram import TelegramAPIError

BOT = SenderIdentity(user_id="999", username="relay_bot", is_bot=True)
ADMIN_GROUP_ID = -100555


class RecordingAPI:
    """Telegram API double that records calls in order.

    ``failures`` maps a method name to a list of exceptions raised by the next
    calls of that method, one per call.
    """

    def __init__(self, events: list[tuple[str, dict[str, Any]]] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = events if events is not None else []
        self.failures: dict[str, list[BaseException]] = {}
        self.member_status = "administrator"
        self.next_topic_id = 700
        self.next_message_id = 5000
        self.get_me_calls = 0

    def fail(self, method: str, *errors: BaseException) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def methods(self) -> list[str]:
        return [name for name, _ in self.calls if not name.startswith("store.")]

    def calls_of(self, method: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.calls if name == method]

    def _record(self, method: str, **payload: Any) -> None:
        self.calls.append((method, payload))
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def _sent(self, chat_id: int | str) -> dict[str, Any]:
        self.next_message_id += 1
        return {"message_id": self.next_message_id, "chat": {"id": chat_id}}

    async def get_me(self) -> dict[str, Any]:
        self.get_me_calls += 1
        return {"id": int(BOT.user_id), "is_bot": True, "username": BOT.username}

    async def get_chat_member(self, chat_id: int | str, user_id: int | str) -> dict[str, Any]:
        self._record("getChatMember", chat_id=chat_id, user_id=user_id)
        return {"status": self.member_status, "user": {"id": user_id}}

    async def create_forum_topic(self, chat_id: int | str, name: str) -> dict[str, Any]:
        self._record("createForumTopic", chat_id=chat_id, name=name)
        self.next_topic_id += 1
        return {"message_thread_id": self.next_topic_id, "name": name}

    async def delete_forum_topic(self, chat_id: int | str, message_thread_id: int) -> bool:
        self._record("deleteForumTopic", chat_id=chat_id, message_thread_id=message_thread_id)
        return True

    async def forward_message(
        self,
        chat_id: int | str,
        from_chat_id: int | str,
        message_id: int,
        *,
        message_thread_id: int | None = None,
    ) -> dict[str, Any]:
        self._record(
            "forwardMessage",
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            message_thread_id=message_thread_id,
        )
        return self._sent(chat_id)

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        message_thread_id: int | None = None,
        protect_content: bool = False,
        parse_mode: str | None = None,
    ) -> dict[str, Any]:
        self._record(
            "sendMessage",
            chat_id=chat_id,
            text=text,
            message_thread_id=message_thread_id,
            protect_content=protect_content,
        )
        return self._sent(chat_id)

    async def _send_media(self, method: str, field: str, chat_id: int | str, file_id: str, **extra: Any) -> dict[str, Any]:
        self._record(method, chat_id=chat_id, **{field: file_id}, **extra)
        return self._sent(chat_id)

    async def send_photo(self, chat_id: int | str, photo: str, **kwargs: Any) -> dict[str, Any]:
        return await self._send_media("sendPhoto", "photo", chat_id, photo, **kwargs)

    async def send_document(self, chat_id: int | str, document: str, **kwargs: Any) -> dict[str, Any]:
        return await self._send_media("sendDocument", "document", chat_id, document, **kwargs)

    async def send_voice(self, chat_id: int | str, voice: str, **kwargs: Any) -> dict[str, Any]:
        return await self._send_media("sendVoice", "voice", chat_id, voice, **kwargs)

    async def send_video(self, chat_id: int | str, video: str, **kwargs: Any) -> dict[str, Any]:
        return await self._send_media("sendVideo", "video", chat_id, video, **kwargs)

    async def leave_chat(self, chat_id: int | str) -> bool:
        self._record("leaveChat", chat_id=chat_id)
        return True


class RecordingStore(MemoryStore):
    """Memory store that appends its write calls to a shared event log."""

    def __init__(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        super().__init__()
        self.events = events
        self.failures: dict[str, list[BaseException]] = {}

    def _record(self, method: str, **payload: Any) -> None:
        self.events.append((f"store.{method}", payload))
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def save_settings(self, settings: Settings) -> Settings:
        self._record("save_settings", settings=settings)
        return super().save_settings(settings)

    def save_thread(self, thread: Thread) -> Thread:
        self._record("save_thread", thread=thread)
        return super().save_thread(thread)

    def clear_threads(self) -> int:
        self._record("clear_threads")
        return super().clear_threads()

    def save_message(self, message: SavedMessage) -> SavedMessage:
        self._record("save_message", message=message)
        return super().save_message(message)


def thread_not_found() -> TelegramAPIError:
    return TelegramAPIError("forwardMessage", "Bad Request: message thread not found", 400)


def configured_settings(group_id: int = ADMIN_GROUP_ID, **overrides: Any) -> Settings:
    return Settings(
        admin_group_id=str(group_id),
        setup_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        setup_by=SenderIdentity(user_id="1", first_name="Owner"),
        **overrides,
    )


def user_payload(user_id: int = 123456, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": user_id, "is_bot": False, "first_name": "Ada"}
    payload.update(extra)
    return payload


def make_message(
    *,
    message_id: int = 10,
    chat_id: int = 123456,
    chat_type: str = "private",
    sender: dict[str, Any] | None = None,
    text: str | None = "hello",
    **extra: Any,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "message_id": message_id,
        "date": 1_700_000_000,
        "chat": {"id": chat_id, "type": chat_type},
        "from": sender if sender is not None else user_payload(chat_id),
    }
    if text is not None:
        message["text"] = text
    message.update(extra)
    return message


def make_update(
    update_id: int = 1,
    *,
    kind: str = "message",
    **message_kwargs: Any,
) -> dict[str, Any]:
    return {"update_id": update_id, kind: make_message(**message_kwargs)}
