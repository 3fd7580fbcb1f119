"""printf-style message formatting that never raises.

Templates use the usual conversion specifiers (``%s``, ``%d``, ``%.2f``).
Templates written for C-family loggers also work: ``%@`` renders like
``%s`` and length modifiers (``%lld``, ``%zu``) are dropped.

The arity check is strict: if the number of specifiers differs from the
number of arguments, the template comes back untouched. Nothing is
partially substituted.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

# %% | %[flags][width][.precision][length]conversion
_SPECIFIER = re.compile(
    r"%%"
    r"|%(?P<flags>[-+ #0]*)(?P<width>\*|\d+)?(?:\.(?P<precision>\*|\d+))?"
    r"(?P<length>hh|h|ll|l|q|L|z|j|t)?(?P<conversion>[diouxXeEfFgGcrsa@])"
)


def count_specifiers(template: str) -> int:
    """Number of positional conversion specifiers in *template*."""
    return sum(1 for m in _SPECIFIER.finditer(template) if m.group(0) != "%%")


def _to_python(match: re.Match[str]) -> str:
    if match.group(0) == "%%":
        return "%%"
    conversion = match.group("conversion")
    if conversion == "@":
        conversion = "s"
    width = match.group("width") or ""
    precision = match.group("precision")
    precision = f".{precision}" if precision is not None else ""
    return f"%{match.group('flags')}{width}{precision}{conversion}"


def format_message(template: str, args: Sequence[Any] = ()) -> str:
    """Substitute *args* into *template*, or return *template* unchanged.

    >>> format_message("User %s has %d items", ["Alice", 5])
    'User Alice has 5 items'
    >>> format_message("User %s logged in", ["Alice", "Extra"])
    'User %s logged in'
    """
    if not template or not args:
        return template
    if count_specifiers(template) != len(args):
        return template
    # A '*' width consumes an extra argument, so % rejects it here.
    try:
        return _SPECIFIER.sub(_to_python, template) % tuple(args)
    except (TypeError, ValueError, OverflowError):
        return template
