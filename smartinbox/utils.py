"""Utility helpers for the SmartInbox service."""

from __future__ import annotations

import asyncio
import re
import unicodedata
from contextlib import suppress
from datetime import datetime, timezone
from typing import Awaitable, Iterable, Mapping, TypeVar

from .errors import RunCancelledError


PROVIDER_KEY_SEPARATOR = "|"
GENRE_COLUMN_PREFIX = "Is"

_GENRE_SPLIT_RE = re.compile(r"[\s\-]+")
_IDENTIFIER_STRIP_RE = re.compile(r"[^A-Za-z0-9_]+")
GENRE_COLUMN_RE = re.compile(r"^Is[A-Za-z0-9_]+$")

T = TypeVar("T")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def provider_key(provider_ids: Mapping[str, str] | None) -> str | None:
    """Return the canonical identity key for a set of provider identifiers.

    Pairs are ordered by provider name so the key does not depend on the
    order the library reported them in. ``None`` is returned when the item
    carries no provider identifiers at all.
    """

    if not provider_ids:
        return None
    key = ""
    for name, value in sorted(provider_ids.items(), key=lambda pair: pair[0]):
        key += f"{name}={value}{PROVIDER_KEY_SEPARATOR}"
    key = key.rstrip(PROVIDER_KEY_SEPARATOR)
    if not key.strip():
        return None
    return key


def normalize_genre(label: str) -> str:
    """Return the membership key for a raw genre label."""

    return label.strip().casefold()


def normalize_genres(labels: Iterable[str] | None) -> set[str]:
    """Return the set of non-empty membership keys for ``labels``."""

    keys: set[str] = set()
    for label in labels or ():
        if not isinstance(label, str):
            continue
        key = normalize_genre(label)
        if key:
            keys.add(key)
    return keys


def sanitize_identifier(value: str) -> str:
    """Restrict ``value`` to ASCII letters, digits and underscores."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    return _IDENTIFIER_STRIP_RE.sub("", value)


def genre_column_name(label: str) -> str | None:
    """Return the ``Is<PascalCaseGenre>`` column name for a genre label.

    Whitespace and hyphens separate words and are dropped. ``None`` is
    returned when nothing usable survives sanitization.
    """

    parts = [part for part in _GENRE_SPLIT_RE.split(label.strip()) if part]
    pascal = "".join(part[:1].upper() + part[1:] for part in parts)
    sanitized = sanitize_identifier(pascal)
    if not sanitized:
        return None
    return f"{GENRE_COLUMN_PREFIX}{sanitized}"


def is_genre_column(name: str) -> bool:
    """Return whether ``name`` is a well-formed generated genre column."""

    return bool(GENRE_COLUMN_RE.match(name))


async def unless_cancelled(
    awaitable: Awaitable[T], cancel_event: asyncio.Event | None
) -> T:
    """Await ``awaitable`` unless ``cancel_event`` is set before it finishes.

    When the signal wins the pending operation is cancelled and
    :class:`RunCancelledError` is raised.
    """

    task = asyncio.ensure_future(awaitable)
    if cancel_event is None:
        return await task

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise
    waiter.cancel()
    if task in done:
        return task.result()

    task.cancel()
    with suppress(asyncio.CancelledError):
        await task
    raise RunCancelledError("Operation cancelled before it completed")
