"""Bot command handlers."""

from __future__ import annotations

import logging

from .dispatcher import UpdateContext
from .models import Settings
from .utils import WARNING_ICON, reply_with_error, reply_with_success, utcnow

logger = logging.getLogger(__name__)

DEFAULT_GREETING = (
    "👋 You can use this bot to communicate with our team. Simply send a message "
    "and it will be forwarded to us.\n\nWe'll reply to you through this same chat."
)

# Command name -> Settings attribute holding the override.
CUSTOMIZE_COMMANDS: tuple[str, ...] = ("ack", "failure", "greeting")


async def on_start(ctx: UpdateContext) -> None:
    greeting = ctx.settings.greeting if ctx.settings is not None else None
    await ctx.reply(greeting or DEFAULT_GREETING)


async def _leave_previous_group(ctx: UpdateContext, previous: Settings) -> None:
    """Best effort: warn the old admin group and leave it."""

    old_group = previous.admin_group_id
    try:
        logger.info("Notifying previous admin group %s of reconfiguration", old_group)
        await ctx.api.send_message(
            old_group,
            f"{WARNING_ICON} Bot is being reconfigured, deactivating forwards to this group.",
        )
    except Exception:
        logger.exception("Failed to notify previous group %s of reconfiguration", old_group)

    try:
        logger.info("Leaving chat %s", old_group)
        await ctx.api.leave_chat(old_group)
    except Exception:
        logger.exception("Failed to leave previous group %s", old_group)


async def on_setup(ctx: UpdateContext) -> None:
    """Bind the current supergroup as the admin inbox."""

    store = ctx.store
    if store is None:
        logger.error("Setup requested without a data store")
        return

    previous = ctx.settings
    group_changed = previous is not None and previous.admin_group_id != str(ctx.chat.id)
    if previous is not None and group_changed:
        await _leave_previous_group(ctx, previous)

    settings = Settings(
        admin_group_id=str(ctx.chat.id),
        setup_at=utcnow(),
        setup_by=ctx.sender,
        ack=previous.ack if previous else None,
        greeting=previous.greeting if previous else None,
        failure=previous.failure if previous else None,
    )
    try:
        store.save_settings(settings)
    except Exception:
        logger.exception("Setup failed in chat %s", ctx.chat.id)
        await reply_with_error(ctx, "Setup failed. Please try again.")
        return

    if group_changed:
        # Topic ids belong to the previous group.
        try:
            removed = store.clear_threads()
            logger.info("Dropped %d threads of the previous admin group", removed)
        except Exception:
            logger.exception("Failed to drop threads of the previous admin group")

    logger.info("Chat %s configured as admin group by user %s", ctx.chat.id, ctx.sender.user_id)
    await reply_with_success(
        ctx,
        f"Setup complete! Group {ctx.chat.id} is now set as the contact inbox.\n\n"
        f"{WARNING_ICON} It is recommended that you delete the setup message for "
        "security purposes.",
    )


async def on_customize(ctx: UpdateContext) -> None:
    """Store an ``/ack``, ``/failure`` or ``/greeting`` override.

    An empty argument restores the built-in text.
    """

    command = ctx.command or ""
    if command not in CUSTOMIZE_COMMANDS:
        logger.warning("Invalid customize command received: %s", command)
        await reply_with_error(ctx, f"Command {command} not found.")
        return
    if ctx.store is None or ctx.settings is None:
        logger.warning("Customization /%s requested before setup", command)
        return

    value = ctx.args or None
    try:
        saved = ctx.store.save_settings(ctx.settings.with_updates(**{command: value}))
    except Exception:
        logger.exception("Error saving customization %s", command)
        await reply_with_error(ctx, "Error saving customization, please try again.")
        return

    if value is None:
        await reply_with_success(ctx, f"Reset {command} to the default text")
    else:
        await reply_with_success(ctx, f"Saved {command}={getattr(saved, command)}")
