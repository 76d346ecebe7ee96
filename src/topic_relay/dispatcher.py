"""Update dispatcher with global and per-handler middleware chains."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Mapping, Sequence

from .models import SenderIdentity, Settings, Thread
from .store import DataStore
from .telegram import TelegramAPIProtocol

logger = logging.getLogger(__name__)


class UpdateType(str, Enum):
    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"


# ``message`` is checked before ``edited_message``.
_CLASSIFICATION_ORDER: tuple[UpdateType, ...] = (UpdateType.MESSAGE, UpdateType.EDITED_MESSAGE)


@dataclass(frozen=True, slots=True)
class ChatInfo:
    id: int
    type: str


@dataclass(frozen=True, slots=True)
class UpdateContext:
    """Per-update state handed through middleware and handlers.

    Middleware never mutates a context; it passes an extended copy built with
    :meth:`with_updates` to its continuation.
    """

    api: TelegramAPIProtocol
    me: SenderIdentity
    update_type: UpdateType
    chat: ChatInfo
    sender: SenderIdentity
    message: Mapping[str, Any]
    update: Mapping[str, Any]
    command: str | None = None
    args: str | None = None
    store: DataStore | None = None
    settings: Settings | None = None
    thread: Thread | None = None

    @property
    def message_id(self) -> int:
        return int(self.message["message_id"])

    @property
    def message_thread_id(self) -> int | None:
        value = self.message.get("message_thread_id")
        return int(value) if value is not None else None

    @property
    def text(self) -> str | None:
        return self.message.get("text")

    def with_updates(self, **changes: Any) -> "UpdateContext":
        return replace(self, **changes)

    async def reply(self, text: str) -> dict[str, Any]:
        """Send ``text`` to the chat (and forum topic) of the current message."""

        return await self.api.send_message(
            self.chat.id,
            text,
            message_thread_id=self.message_thread_id,
        )


Next = Callable[[UpdateContext], Awaitable[None]]
Middleware = Callable[[UpdateContext, Next], Awaitable[None]]
Handler = Callable[[UpdateContext], Awaitable[None]]


async def run_chain(
    middlewares: Sequence[Middleware],
    final: Handler,
    ctx: UpdateContext,
) -> None:
    """Run ``middlewares`` in order, then ``final``.

    The cursor lives in the call stack of this invocation only, so concurrent
    updates never share chain state.
    """

    async def step(index: int, current: UpdateContext) -> None:
        if index < len(middlewares):
            await middlewares[index](current, partial(step, index + 1))
        else:
            await final(current)

    await step(0, ctx)


def parse_command(text: str | None, bot_username: str | None = None) -> tuple[str | None, str | None]:
    """Split ``/cmd rest of text`` into ``("cmd", "rest of text")``.

    Whitespace between argument tokens collapses to single spaces; a bare
    command yields ``None`` arguments.
    """

    if not text or not text.startswith("/") or text[1:2].isspace():
        return None, None
    tokens = text[1:].split()
    if not tokens:
        return None, None
    command = tokens[0]
    name, sep, target = command.partition("@")
    if sep and bot_username and target.lower() == bot_username.lower():
        command = name
    args = " ".join(tokens[1:]) if len(tokens) > 1 else None
    return command or None, args


class Dispatcher:
    """Route Telegram updates through middleware to registered handlers."""

    def __init__(self, api: TelegramAPIProtocol, *, me: SenderIdentity | None = None):
        self._api = api
        self._me = me
        self._me_lock = asyncio.Lock()
        self._middlewares: list[Middleware] = []
        self._command_handlers: dict[str, list[Handler]] = {}
        self._update_handlers: dict[UpdateType, list[Handler]] = {}

    @property
    def api(self) -> TelegramAPIProtocol:
        return self._api

    @property
    def me(self) -> SenderIdentity | None:
        return self._me

    async def start(self) -> SenderIdentity:
        """Resolve the bot identity once; concurrent callers share the result."""

        if self._me is not None:
            return self._me
        async with self._me_lock:
            if self._me is None:
                payload = await self._api.get_me()
                self._me = SenderIdentity.from_payload(payload)
                logger.info("Bot initialised: @%s", self._me.username)
        return self._me

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def use(self, middleware: Middleware) -> "Dispatcher":
        self._middlewares.append(middleware)
        return self

    def command(self, name: str, *handlers: Middleware | Handler) -> "Dispatcher":
        """Register a command handler; all but the last callable are middleware."""

        self._command_handlers.setdefault(name, []).append(_bind_chain(handlers))
        return self

    def on(self, update_type: UpdateType | str, *handlers: Middleware | Handler) -> "Dispatcher":
        """Register an update handler; all but the last callable are middleware."""

        key = UpdateType(update_type)
        self._update_handlers.setdefault(key, []).append(_bind_chain(handlers))
        return self

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------
    async def handle_update(self, update: Mapping[str, Any]) -> None:
        """Process one update. Errors are logged, never raised."""

        logger.debug("Processing update %s", update.get("update_id"))
        try:
            classified = _classify(update)
            if classified is None:
                logger.warning("Unsupported update type: %s", sorted(update.keys()))
                return
            update_type, message = classified

            sender = SenderIdentity.from_payload(message.get("from"))
            me = await self.start()
            if sender.is_bot or (sender.user_id and sender.user_id == me.user_id):
                logger.debug("Ignoring update %s sent by a bot", update.get("update_id"))
                return

            command, args = parse_command(message.get("text"), me.username)
            chat = message.get("chat") or {}
            ctx = UpdateContext(
                api=self._api,
                me=me,
                update_type=update_type,
                chat=ChatInfo(id=int(chat.get("id", 0)), type=str(chat.get("type", ""))),
                sender=sender,
                message=message,
                update=update,
                command=command,
                args=args,
            )
            await run_chain(self._middlewares, self._dispatch, ctx)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error handling update %s", update.get("update_id"))

    async def _dispatch(self, ctx: UpdateContext) -> None:
        handlers: list[Handler] = []
        if ctx.command is not None:
            handlers = self._command_handlers.get(ctx.command, [])
        if not handlers:
            handlers = self._update_handlers.get(ctx.update_type, [])
        for handler in list(handlers):
            await handler(ctx)


def _classify(update: Mapping[str, Any]) -> tuple[UpdateType, Mapping[str, Any]] | None:
    for update_type in _CLASSIFICATION_ORDER:
        message = update.get(update_type.value)
        if isinstance(message, Mapping) and message:
            return update_type, message
    return None


def _bind_chain(handlers: Sequence[Middleware | Handler]) -> Handler:
    if not handlers:
        raise ValueError("At least one handler is required")
    *middlewares, final = handlers

    async def run(ctx: UpdateContext) -> None:
        await run_chain(middlewares, final, ctx)  # type: ignore[arg-type]

    return run
