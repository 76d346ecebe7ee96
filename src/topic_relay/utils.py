"""Miscellaneous helpers."""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Awaitable, Protocol

from .models import SenderIdentity

ERROR_ICON = "❌"
WARNING_ICON = "⚠️"
SUCCESS_ICON = "✅"


class _Replyable(Protocol):
    def reply(self, text: str) -> Awaitable[dict[str, Any]]: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_unix(value: object) -> datetime:
    """Convert a Telegram ``date`` field to an aware datetime.

    Missing or malformed values fall back to the current time.
    """

    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError, OSError):
        return utcnow()


def epoch_millis(moment: datetime | None = None) -> int:
    moment = moment or utcnow()
    return int(moment.timestamp() * 1000)


def hash_token(token: str) -> str:
    """Return the hex SHA-256 digest used as the setup token."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(provided: str | None, expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def thread_display_name(sender: SenderIdentity) -> str:
    """Return ``"<id>: First Last (username)"`` with absent parts omitted."""

    username = f"({sender.username})" if sender.username else None
    label = " ".join(part for part in (sender.first_name, sender.last_name, username) if part)
    return ": ".join(part for part in (sender.user_id, label) if part)


async def reply_with_error(ctx: _Replyable, message: str) -> dict[str, Any]:
    return await ctx.reply(f"{ERROR_ICON} {message}")


async def reply_with_warning(ctx: _Replyable, message: str) -> dict[str, Any]:
    return await ctx.reply(f"{WARNING_ICON} {message}")


async def reply_with_success(ctx: _Replyable, message: str) -> dict[str, Any]:
    return await ctx.reply(f"{SUCCESS_ICON} {message}")
