"""Ambient tag for the current thread of control.

Backed by a ContextVar, so each thread (and each asyncio task) sees its
own value. Used as the tag for any log call that has neither a sink
one-shot tag nor a per-call tag.

Usage:
    with scope("Checkout"):
        canopy.i("cart loaded")        # tagged "Checkout"

    result = with_scope("Sync", run_sync, account)
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

T = TypeVar("T")

_current: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "canopy_context", default=None
)


def get_current() -> str | None:
    return _current.get()


def set_current(value: str | None) -> contextvars.Token[str | None]:
    """Set the ambient tag. Keep the token to restore the previous value."""
    return _current.set(value or None)


def reset_current(token: contextvars.Token[str | None]) -> None:
    _current.reset(token)


@contextmanager
def scope(tag: str | None) -> Iterator[str | None]:
    """Set the ambient tag for the duration of the block.

    The previous value is restored on every exit path, including
    exceptions. Nested scopes restore in LIFO order.
    """
    token = _current.set(tag or None)
    try:
        yield tag or None
    finally:
        _current.reset(token)


def with_scope(tag: str | None, block: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run *block* with the ambient tag set to *tag* and return its result."""
    with scope(tag):
        return block(*args, **kwargs)
