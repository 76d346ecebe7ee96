"""Telegram Bot API client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Protocol

import aiohttp

_API_BASE = "https://api.telegram.org"
_DEFAULT_TIMEOUT = 15.0

logger = logging.getLogger(__name__)


class TelegramAPIError(RuntimeError):
    """Raised when the Bot API rejects a call or cannot be reached."""

    def __init__(self, method: str, description: str, status: int | None = None):
        self.method = method
        self.description = description
        self.status = status
        code = f" ({status})" if status is not None else ""
        super().__init__(f"Telegram API error in {method}{code}: {description}")


class TelegramAPIProtocol(Protocol):
    async def get_me(self) -> dict[str, Any]: ...

    async def get_chat_member(self, chat_id: int | str, user_id: int | str) -> dict[str, Any]: ...

    async def create_forum_topic(self, chat_id: int | str, name: str) -> dict[str, Any]: ...

    async def delete_forum_topic(self, chat_id: int | str, message_thread_id: int) -> bool: ...

    async def forward_message(
        self,
        chat_id: int | str,
        from_chat_id: int | str,
        message_id: int,
        *,
        message_thread_id: int | None = None,
    ) -> dict[str, Any]: ...

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        message_thread_id: int | None = None,
        protect_content: bool = False,
        parse_mode: str | None = None,
    ) -> dict[str, Any]: ...

    async def send_photo(
        self,
        chat_id: int | str,
        photo: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]: ...

    async def send_document(
        self,
        chat_id: int | str,
        document: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]: ...

    async def send_voice(
        self,
        chat_id: int | str,
        voice: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]: ...

    async def send_video(
        self,
        chat_id: int | str,
        video: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]: ...

    async def leave_chat(self, chat_id: int | str) -> bool: ...


class TelegramAPI:
    """Lightweight Telegram Bot API wrapper.

    Every call is a JSON ``POST`` to ``/bot<token>/<method>``. A non-2xx
    status or a body with ``ok: false`` raises :class:`TelegramAPIError`.
    """

    def __init__(
        self,
        token: str,
        session: aiohttp.ClientSession,
        *,
        base_url: str = _API_BASE,
    ):
        self._token = token
        self._session = session
        self._base_url = base_url.rstrip("/")

    async def call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> Any:
        url = f"{self._base_url}/bot{self._token}/{method}"
        data = {key: value for key, value in (payload or {}).items() if value is not None}
        logger.debug("Calling Telegram API method %s", method)
        try:
            timeout_cfg = aiohttp.ClientTimeout(total=timeout)
            async with self._session.post(url, json=data, timeout=timeout_cfg) as resp:
                status = resp.status
                try:
                    body = await resp.json(content_type=None)
                except ValueError as exc:
                    raise TelegramAPIError(
                        method, f"HTTP {status}: invalid JSON body", status
                    ) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TelegramAPIError(method, str(exc) or exc.__class__.__name__) from exc

        if not isinstance(body, dict):
            raise TelegramAPIError(method, "Unexpected response payload", status)
        if status >= 400 or not body.get("ok"):
            description = str(body.get("description") or "Unknown error")
            raise TelegramAPIError(method, description, body.get("error_code") or status)
        return body.get("result")

    async def get_me(self) -> dict[str, Any]:
        return await self.call("getMe")

    async def get_updates(
        self,
        offset: int | None = None,
        timeout: int = 30,
        allowed_updates: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {"timeout": timeout, "offset": offset}
        if allowed_updates is not None:
            payload["allowed_updates"] = list(allowed_updates)
        result = await self.call("getUpdates", payload, timeout=timeout + 5)
        return list(result or [])

    async def get_chat_member(self, chat_id: int | str, user_id: int | str) -> dict[str, Any]:
        return await self.call("getChatMember", {"chat_id": chat_id, "user_id": user_id})

    async def create_forum_topic(self, chat_id: int | str, name: str) -> dict[str, Any]:
        # Topic names are limited to 128 characters.
        return await self.call("createForumTopic", {"chat_id": chat_id, "name": name[:128]})

    async def delete_forum_topic(self, chat_id: int | str, message_thread_id: int) -> bool:
        result = await self.call(
            "deleteForumTopic",
            {"chat_id": chat_id, "message_thread_id": message_thread_id},
        )
        return bool(result)

    async def forward_message(
        self,
        chat_id: int | str,
        from_chat_id: int | str,
        message_id: int,
        *,
        message_thread_id: int | None = None,
    ) -> dict[str, Any]:
        return await self.call(
            "forwardMessage",
            {
                "chat_id": chat_id,
                "from_chat_id": from_chat_id,
                "message_id": message_id,
                "message_thread_id": message_thread_id,
            },
        )

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        message_thread_id: int | None = None,
        protect_content: bool = False,
        parse_mode: str | None = None,
    ) -> dict[str, Any]:
        return await self.call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "message_thread_id": message_thread_id,
                "protect_content": protect_content or None,
                "parse_mode": parse_mode,
            },
        )

    async def send_photo(
        self,
        chat_id: int | str,
        photo: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]:
        return await self._send_media(
            "sendPhoto", "photo", chat_id, photo, caption, message_thread_id, protect_content
        )

    async def send_document(
        self,
        chat_id: int | str,
        document: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]:
        return await self._send_media(
            "sendDocument",
            "document",
            chat_id,
            document,
            caption,
            message_thread_id,
            protect_content,
        )

    async def send_voice(
        self,
        chat_id: int | str,
        voice: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]:
        return await self._send_media(
            "sendVoice", "voice", chat_id, voice, caption, message_thread_id, protect_content
        )

    async def send_video(
        self,
        chat_id: int | str,
        video: str,
        *,
        caption: str | None = None,
        message_thread_id: int | None = None,
        protect_content: bool = False,
    ) -> dict[str, Any]:
        return await self._send_media(
            "sendVideo", "video", chat_id, video, caption, message_thread_id, protect_content
        )

    async def leave_chat(self, chat_id: int | str) -> bool:
        return bool(await self.call("leaveChat", {"chat_id": chat_id}))

    async def set_webhook(
        self,
        url: str,
        *,
        secret_token: str | None = None,
        drop_pending_updates: bool = True,
    ) -> bool:
        result = await self.call(
            "setWebhook",
            {
                "url": url,
                "secret_token": secret_token,
                "drop_pending_updates": drop_pending_updates,
            },
        )
        return bool(result)

    async def delete_webhook(self, *, drop_pending_updates: bool = True) -> bool:
        result = await self.call(
            "deleteWebhook", {"drop_pending_updates": drop_pending_updates}
        )
        return bool(result)

    async def _send_media(
        self,
        method: str,
        field_name: str,
        chat_id: int | str,
        file_id: str,
        caption: str | None,
        message_thread_id: int | None,
        protect_content: bool,
    ) -> dict[str, Any]:
        return await self.call(
            method,
            {
                "chat_id": chat_id,
                field_name: file_id,
                "caption": caption,
                "message_thread_id": message_thread_id,
                "protect_content": protect_content or None,
            },
        )


def is_thread_not_found(error: BaseException) -> bool:
    """Return ``True`` when ``error`` reports a deleted forum topic.

    The Bot API exposes no dedicated error code for this case, only the
    description text, so the check is a substring match.
    """

    description = getattr(error, "description", None) or str(error)
    return "message thread not found" in description.lower()
