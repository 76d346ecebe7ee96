"""Reusable middleware for the relay dispatcher."""

from __future__ import annotations

import logging

from .dispatcher import Middleware, Next, UpdateContext
from .store import DataStore
from .telegram import TelegramAPIError
from .utils import reply_with_error, reply_with_warning, token_matches

logger = logging.getLogger(__name__)

_ADMIN_STATUSES = frozenset({"administrator", "creator"})
_PROBE_TOPIC_NAME = "Test Topic Permissions"


def inject_dependencies(store: DataStore) -> Middleware:
    """Attach ``store`` and the current settings to the context."""

    async def middleware(ctx: UpdateContext, call_next: Next) -> None:
        try:
            settings = store.get_settings()
        except Exception:
            logger.exception("Failed to load settings")
            return
        await call_next(ctx.with_updates(store=store, settings=settings))

    return middleware


async def require_setup(ctx: UpdateContext, call_next: Next) -> None:
    if ctx.settings is not None:
        await call_next(ctx)
        return
    logger.warning("Relay not configured, ignoring update from chat %s", ctx.chat.id)


async def require_private_chat(ctx: UpdateContext, call_next: Next) -> None:
    if ctx.chat.type == "private":
        await call_next(ctx)
        return
    logger.debug("Skipping %s update from %s chat", ctx.update_type.value, ctx.chat.type)


async def require_admin_group(ctx: UpdateContext, call_next: Next) -> None:
    settings = ctx.settings
    if settings is not None and str(ctx.chat.id) == settings.admin_group_id:
        await call_next(ctx)
        return
    logger.warning("Command /%s used outside the admin group", ctx.command)
    await reply_with_warning(ctx, "This command can only be used in the admin group")


async def require_admin_reply(ctx: UpdateContext, call_next: Next) -> None:
    settings = ctx.settings
    if (
        settings is not None
        and str(ctx.chat.id) == settings.admin_group_id
        and ctx.chat.type == "supergroup"
        and ctx.message.get("reply_to_message")
        and ctx.message_thread_id is not None
    ):
        await call_next(ctx)


async def require_referenced_thread(ctx: UpdateContext, call_next: Next) -> None:
    """Resolve the thread of the forum topic the admin wrote in."""

    thread_id = ctx.message_thread_id
    store = ctx.store
    if thread_id is None or store is None:
        return
    try:
        thread = store.get_thread_by_id(thread_id)
    except Exception:
        logger.exception("Error looking up thread %s", thread_id)
        await reply_with_error(ctx, "Error looking up message thread.")
        return
    if thread is None:
        logger.error("Thread data not found for topic %s", thread_id)
        await reply_with_error(ctx, "Could not find the thread data for this user.")
        return
    await call_next(ctx.with_updates(thread=thread))


def require_token(expected_hash: str) -> Middleware:
    """Only continue when the command argument equals ``expected_hash``.

    Nothing is sent back on mismatch so the command stays undiscoverable.
    """

    async def middleware(ctx: UpdateContext, call_next: Next) -> None:
        if token_matches(ctx.args, expected_hash):
            await call_next(ctx)
            return
        if ctx.args:
            logger.warning("Invalid setup token provided by user %s", ctx.sender.user_id)
        else:
            logger.warning("No setup token provided by user %s", ctx.sender.user_id)

    return middleware


async def require_group_admin(ctx: UpdateContext, call_next: Next) -> None:
    if ctx.chat.type != "supergroup":
        logger.warning("Command /%s attempted in %s chat", ctx.command, ctx.chat.type)
        await reply_with_warning(ctx, "This command must be used in a group with topics enabled")
        return

    try:
        member = await ctx.api.get_chat_member(ctx.chat.id, ctx.sender.user_id)
    except TelegramAPIError:
        logger.exception("Could not fetch membership of user %s", ctx.sender.user_id)
        await reply_with_warning(ctx, "Could not verify your group permissions")
        return

    if member.get("status") not in _ADMIN_STATUSES:
        logger.warning("Unauthorized /%s attempt by user %s", ctx.command, ctx.sender.user_id)
        await reply_with_warning(ctx, "Only group administrators can run this command")
        return

    await call_next(ctx)


async def require_new_setup(ctx: UpdateContext, call_next: Next) -> None:
    settings = ctx.settings
    if settings is None or settings.admin_group_id != str(ctx.chat.id):
        await call_next(ctx)
        return
    logger.info("Already set up with chat %s", ctx.chat.id)
    await reply_with_warning(ctx, "Setup was already completed for this group.")


async def require_manage_topics_permission(ctx: UpdateContext, call_next: Next) -> None:
    """Probe topic management by creating and deleting a throwaway topic."""

    try:
        topic = await ctx.api.create_forum_topic(ctx.chat.id, _PROBE_TOPIC_NAME)
        await ctx.api.delete_forum_topic(ctx.chat.id, int(topic["message_thread_id"]))
    except Exception:
        logger.exception("Topic management check failed in chat %s", ctx.chat.id)
        await reply_with_error(
            ctx,
            "Setup failed. Please ensure topics are enabled and the bot has "
            "privileges to Manage Topics.",
        )
        return

    logger.info("Topic management checks passed in chat %s", ctx.chat.id)
    await call_next(ctx)
