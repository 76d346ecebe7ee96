"""Relay of messages between end users and the admin group topics."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping

from .dispatcher import UpdateContext
from .models import MessageKind, SavedMessage, SenderIdentity, Settings, Thread
from .store import DataStore
from .telegram import TelegramAPIError, TelegramAPIProtocol, is_thread_not_found
from .utils import (
    epoch_millis,
    from_unix,
    reply_with_error,
    reply_with_success,
    thread_display_name,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_ACK = "Message delivered, our team will get back to you soon."
DEFAULT_FAILURE = "Could not send message, please try again later."
EDIT_NOTICE = "✏️ Message Edit Notification"

_MEDIA_TYPES: tuple[str, ...] = ("photo", "document", "video", "voice", "audio", "sticker")


# ----------------------------------------------------------------------
# Message mapping
# ----------------------------------------------------------------------
def largest_photo(photos: Any) -> Mapping[str, Any] | None:
    if not photos:
        return None
    candidates = [photo for photo in photos if isinstance(photo, Mapping)]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda photo: (
            int(photo.get("width") or 0) * int(photo.get("height") or 0),
            int(photo.get("file_size") or 0),
        ),
    )


def media_type_of(message: Mapping[str, Any]) -> str | None:
    for key in _MEDIA_TYPES:
        if message.get(key):
            return key
    return None


def media_id_of(message: Mapping[str, Any]) -> str | None:
    photo = largest_photo(message.get("photo"))
    if photo is not None:
        return photo.get("file_id")
    for key in _MEDIA_TYPES[1:]:
        media = message.get(key)
        if isinstance(media, Mapping) and media.get("file_id"):
            return str(media["file_id"])
    return None


def to_saved_message(message: Mapping[str, Any], kind: MessageKind) -> SavedMessage:
    """Map a raw Telegram message onto the stored representation."""

    reply_to = message.get("reply_to_message") or {}
    quote = message.get("quote") or {}
    return SavedMessage(
        id=str(message.get("message_id")),
        chat_id=str((message.get("chat") or {}).get("id")),
        sender=SenderIdentity.from_payload(message.get("from")),
        type=kind,
        text=str(message.get("text") or ""),
        timestamp=from_unix(message.get("date")),
        media_id=media_id_of(message),
        media_type=media_type_of(message),
        caption=message.get("caption") or None,
        quote=quote.get("text") or None,
        reply_to_message_id=(
            str(reply_to["message_id"]) if reply_to.get("message_id") is not None else None
        ),
        forward_origin=message.get("forward_origin") or None,
    )


# ----------------------------------------------------------------------
# Thread reconciliation
# ----------------------------------------------------------------------
def _store(ctx: UpdateContext) -> DataStore:
    if ctx.store is None:
        raise RuntimeError("Data store is not attached to the update context")
    return ctx.store


def _settings(ctx: UpdateContext) -> Settings:
    if ctx.settings is None:
        raise RuntimeError("Relay is not configured")
    return ctx.settings


async def create_thread(ctx: UpdateContext, admin_group_id: str) -> Thread | None:
    """Open a new forum topic for the sender and persist it.

    Returns ``None`` when the topic cannot be created.
    """

    name = thread_display_name(ctx.sender)
    logger.info("Creating topic in %s named %r", admin_group_id, name)
    try:
        topic = await ctx.api.create_forum_topic(admin_group_id, name)
    except TelegramAPIError:
        logger.exception("Failed to create topic for user %s", ctx.sender.user_id)
        return None

    now = utcnow()
    thread = Thread(
        user_id=ctx.sender.user_id,
        thread_id=int(topic["message_thread_id"]),
        chat_id=str(ctx.chat.id),
        name=str(topic.get("name") or name),
        created_at=from_unix(ctx.message.get("date")),
        updated_at=now,
        last_message_id=str(ctx.message_id),
    )
    return _store(ctx).save_thread(thread)


async def resolve_or_create_thread(ctx: UpdateContext, admin_group_id: str) -> Thread | None:
    """Return the sender's thread, refreshed with the current message."""

    store = _store(ctx)
    existing = store.get_thread_by_user_id(ctx.sender.user_id)
    if existing is None:
        logger.info("No thread for user %s yet", ctx.sender.user_id)
        return await create_thread(ctx, admin_group_id)

    updated = existing.with_updates(
        name=thread_display_name(ctx.sender),
        updated_at=utcnow(),
        last_message_id=str(ctx.message_id),
    )
    return store.save_thread(updated)


# ----------------------------------------------------------------------
# Admin replies
# ----------------------------------------------------------------------
async def send_to_user(
    api: TelegramAPIProtocol,
    chat_id: str,
    message: Mapping[str, Any],
) -> dict[str, Any] | None:
    """Copy an admin message into the user's chat.

    Text wins over photo, document, voice and video, in that order. Returns
    ``None`` for unsupported content.
    """

    caption = message.get("caption") or None
    if message.get("text"):
        logger.info("Sending text reply to chat %s", chat_id)
        return await api.send_message(chat_id, str(message["text"]), protect_content=True)

    photo = largest_photo(message.get("photo"))
    if photo is not None:
        logger.info("Sending photo reply to chat %s", chat_id)
        return await api.send_photo(
            chat_id, str(photo["file_id"]), caption=caption, protect_content=True
        )

    for kind, sender in (
        ("document", api.send_document),
        ("voice", api.send_voice),
        ("video", api.send_video),
    ):
        media = message.get(kind)
        if isinstance(media, Mapping) and media.get("file_id"):
            logger.info("Sending %s reply to chat %s", kind, chat_id)
            return await sender(
                chat_id, str(media["file_id"]), caption=caption, protect_content=True
            )
    return None


async def on_admin_reply(ctx: UpdateContext) -> None:
    thread = ctx.thread
    if thread is None:
        await reply_with_error(ctx, "Could not find the thread data for this user.")
        return

    try:
        sent = await send_to_user(ctx.api, thread.chat_id, ctx.message)
    except TelegramAPIError:
        logger.exception("Failed to deliver admin reply to user %s", thread.user_id)
        await reply_with_error(ctx, "Unable to send message, please try again.")
        return

    if sent is None:
        logger.warning("Unsupported admin reply in thread %s", thread.thread_id)
        await reply_with_error(
            ctx, "Unsupported message type. Please send text, photo, document, voice or video."
        )
        return

    sent_id = str(sent.get("message_id", ctx.message_id))
    store = _store(ctx)
    try:
        saved = replace(
            to_saved_message(ctx.message, "admin"),
            id=sent_id,
            chat_id=thread.chat_id,
        )
        store.save_message(saved)
        store.save_thread(thread.with_updates(last_message_id=sent_id, updated_at=utcnow()))
    except Exception:
        logger.exception("Reply to user %s delivered but not recorded", thread.user_id)
        await reply_with_error(ctx, "Reply sent, but it could not be recorded.")
        return

    await reply_with_success(ctx, "Reply sent to user")


# ----------------------------------------------------------------------
# Direct messages
# ----------------------------------------------------------------------
async def _forward_to_topic(ctx: UpdateContext, admin_group_id: str, thread_id: int) -> None:
    await ctx.api.forward_message(
        admin_group_id,
        ctx.chat.id,
        ctx.message_id,
        message_thread_id=thread_id,
    )


async def _deliver_direct_message(ctx: UpdateContext, settings: Settings) -> bool:
    admin_group_id = settings.admin_group_id
    store = _store(ctx)

    store.save_message(to_saved_message(ctx.message, "user"))

    thread = await resolve_or_create_thread(ctx, admin_group_id)
    if thread is None:
        return False

    try:
        await _forward_to_topic(ctx, admin_group_id, thread.thread_id)
        return True
    except TelegramAPIError as exc:
        if not is_thread_not_found(exc):
            logger.error("Failed to forward message from user %s: %s", ctx.sender.user_id, exc)
            return False
        logger.warning(
            "Topic %s of user %s is gone, recreating it", thread.thread_id, ctx.sender.user_id
        )

    recreated = await create_thread(ctx, admin_group_id)
    if recreated is None:
        return False
    try:
        await _forward_to_topic(ctx, admin_group_id, recreated.thread_id)
    except TelegramAPIError:
        logger.exception("Failed to forward message from user %s after retry", ctx.sender.user_id)
        return False
    return True


async def on_direct_message(ctx: UpdateContext) -> None:
    settings = _settings(ctx)
    try:
        delivered = await _deliver_direct_message(ctx, settings)
    except Exception:
        logger.exception("Unexpected error relaying message from user %s", ctx.sender.user_id)
        delivered = False

    if delivered:
        await reply_with_success(ctx, settings.ack or DEFAULT_ACK)
    else:
        await reply_with_error(ctx, settings.failure or DEFAULT_FAILURE)


# ----------------------------------------------------------------------
# Edited messages
# ----------------------------------------------------------------------
async def on_edited_message(ctx: UpdateContext) -> None:
    """Notify the topic about an edit. Failures are logged only."""

    try:
        store = _store(ctx)
        admin_group_id = _settings(ctx).admin_group_id
        thread = store.get_thread_by_user_id(ctx.sender.user_id)
        if thread is None:
            logger.warning("Edited message from user %s without a thread", ctx.sender.user_id)
            return

        await ctx.api.send_message(
            admin_group_id, EDIT_NOTICE, message_thread_id=thread.thread_id
        )
        original_id = ctx.message_id
        await ctx.api.forward_message(
            admin_group_id,
            ctx.chat.id,
            original_id,
            message_thread_id=thread.thread_id,
        )
        saved = replace(
            to_saved_message(ctx.message, "user"),
            id=f"{original_id}_edited_{epoch_millis()}",
            original_message_id=str(original_id),
        )
        store.save_message(saved)
        logger.info("Saved edited message %s", saved.id)
    except Exception:
        logger.exception("Error handling edited message from user %s", ctx.sender.user_id)
