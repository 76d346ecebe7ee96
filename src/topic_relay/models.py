"""Data models used across the relay."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Mapping

MessageKind = Literal["user", "admin"]


@dataclass(frozen=True, slots=True)
class SenderIdentity:
    """Normalized Telegram user as seen by the relay."""

    user_id: str
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    is_bot: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "SenderIdentity":
        payload = payload or {}
        raw_id = payload.get("id")
        return cls(
            user_id=str(raw_id) if raw_id is not None else "",
            first_name=payload.get("first_name") or None,
            last_name=payload.get("last_name") or None,
            username=payload.get("username") or None,
            is_bot=bool(payload.get("is_bot", False)),
        )

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"user_id": self.user_id}
        if self.first_name:
            data["first_name"] = self.first_name
        if self.last_name:
            data["last_name"] = self.last_name
        if self.username:
            data["username"] = self.username
        return data


@dataclass(slots=True)
class Settings:
    """Singleton configuration written by the setup flow."""

    admin_group_id: str
    setup_at: datetime
    setup_by: SenderIdentity
    ack: str | None = None
    greeting: str | None = None
    failure: str | None = None

    def with_updates(self, **changes: Any) -> "Settings":
        return Settings(
            admin_group_id=changes.get("admin_group_id", self.admin_group_id),
            setup_at=changes.get("setup_at", self.setup_at),
            setup_by=changes.get("setup_by", self.setup_by),
            ack=changes.get("ack", self.ack),
            greeting=changes.get("greeting", self.greeting),
            failure=changes.get("failure", self.failure),
        )


@dataclass(slots=True)
class Thread:
    """Mapping between one end user and one forum topic of the admin group."""

    user_id: str
    thread_id: int
    chat_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    last_message_id: str

    def with_updates(
        self,
        *,
        thread_id: int | None = None,
        name: str | None = None,
        updated_at: datetime | None = None,
        last_message_id: str | None = None,
    ) -> "Thread":
        return Thread(
            user_id=self.user_id,
            thread_id=thread_id if thread_id is not None else self.thread_id,
            chat_id=self.chat_id,
            name=name if name is not None else self.name,
            created_at=self.created_at,
            updated_at=updated_at if updated_at is not None else self.updated_at,
            last_message_id=(
                last_message_id if last_message_id is not None else self.last_message_id
            ),
        )


@dataclass(slots=True)
class SavedMessage:
    """Append-only record of a relayed message."""

    id: str
    chat_id: str
    sender: SenderIdentity
    type: MessageKind
    text: str
    timestamp: datetime
    media_id: str | None = None
    media_type: str | None = None
    caption: str | None = None
    quote: str | None = None
    reply_to_message_id: str | None = None
    forward_origin: Mapping[str, Any] | None = None
    original_message_id: str | None = None
