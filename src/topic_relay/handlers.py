"""Wiring of commands and update types to their middleware chains."""

from __future__ import annotations

import logging

from .commands import CUSTOMIZE_COMMANDS, on_customize, on_setup, on_start
from .dispatcher import Dispatcher, UpdateType
from .forwarding import on_admin_reply, on_direct_message, on_edited_message
from .middlewares import (
    inject_dependencies,
    require_admin_group,
    require_admin_reply,
    require_group_admin,
    require_manage_topics_permission,
    require_new_setup,
    require_private_chat,
    require_referenced_thread,
    require_setup,
    require_token,
)
from .store import DataStore
from .utils import hash_token

logger = logging.getLogger(__name__)


def register_handlers(dispatcher: Dispatcher, store: DataStore, bot_token: str) -> Dispatcher:
    logger.debug("Registering handlers")

    dispatcher.use(inject_dependencies(store))

    dispatcher.command(
        "setup",
        require_token(hash_token(bot_token)),
        require_group_admin,
        require_new_setup,
        require_manage_topics_permission,
        on_setup,
    )
    dispatcher.command("start", require_setup, on_start)
    for command in CUSTOMIZE_COMMANDS:
        dispatcher.command(
            command,
            require_setup,
            require_group_admin,
            require_admin_group,
            on_customize,
        )

    dispatcher.on(
        UpdateType.MESSAGE,
        require_setup,
        require_admin_reply,
        require_referenced_thread,
        on_admin_reply,
    )
    dispatcher.on(
        UpdateType.MESSAGE,
        require_setup,
        require_private_chat,
        on_direct_message,
    )
    dispatcher.on(
        UpdateType.EDITED_MESSAGE,
        require_private_chat,
        require_setup,
        on_edited_message,
    )
    return dispatcher
