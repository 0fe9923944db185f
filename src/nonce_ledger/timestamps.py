"""Timestamp validation for signed launch requests.

OAuth 1.0a carries ``oauth_timestamp`` as a decimal string, but callers also
hand over ints parsed from other layers, so every function here accepts
either form.
"""

from __future__ import annotations

import math
import re
import time
from collections.abc import Callable
from typing import Any

from .exceptions import InvalidArgumentError

# Recommended replay window for LTI 1.x launches (90 minutes)
DEFAULT_FRESHNESS_WINDOW = 5400

Clock = Callable[[], float]

# Plain ASCII decimal or exponent notation; int() and float() also take "1_000" and non-ASCII digits
_NUMERIC_TEXT = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)


def current_timestamp(clock: Clock = time.time) -> int:
    """Return the current UNIX time rounded to the nearest second."""
    return int(round(clock()))


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not _NUMERIC_TEXT.fullmatch(text):
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return None


def is_timestamp(value: Any) -> bool:
    """Check whether ``value`` is a UNIX timestamp.

    A timestamp is anything that converts to a number which is a whole,
    strictly positive integer. Booleans are rejected even though they would
    otherwise coerce to 0/1.

    Returns:
        True if it's a timestamp, False otherwise. Never raises.
    """
    number = _as_number(value)
    if number is None:
        return False
    if isinstance(number, float):
        if not math.isfinite(number) or not number.is_integer():
            return False
    return number > 0


def to_timestamp(value: Any) -> int:
    """Convert a value accepted by is_timestamp() to an int.

    Raises:
        InvalidArgumentError: If ``value`` is not a timestamp.
    """
    if not is_timestamp(value):
        raise InvalidArgumentError(
            f"The timestamp argument must be a valid timestamp ; {value!r} ({type(value).__name__}) given.",
            field="timestamp",
            value=value,
        )
    return int(_as_number(value))  # type: ignore[arg-type]


def _check_window(freshness_window: Any) -> int:
    if freshness_window is None:
        return DEFAULT_FRESHNESS_WINDOW
    if isinstance(freshness_window, bool) or not isinstance(freshness_window, int) or freshness_window <= 0:
        raise InvalidArgumentError(
            f"The freshness window must be a positive integer ; {freshness_window!r} "
            f"({type(freshness_window).__name__}) given.",
            field="freshness_window",
            value=freshness_window,
        )
    return freshness_window


def is_fresh(
    timestamp: Any,
    freshness_window: int | None = DEFAULT_FRESHNESS_WINDOW,
    *,
    clock: Clock = time.time,
) -> bool:
    """Check that ``timestamp`` is no older than ``freshness_window`` seconds.

    Timestamps from the future have a negative age and count as fresh;
    clock skew between consumer and provider is tolerated in that direction.

    Args:
        timestamp: A UNIX timestamp, as str or number.
        freshness_window: Maximum age in seconds. None selects the default.
        clock: Source of the current time, injectable for tests.

    Raises:
        InvalidArgumentError: If the timestamp is not valid, or the window is
            not a positive integer.
    """
    value = to_timestamp(timestamp)
    window = _check_window(freshness_window)
    return current_timestamp(clock) - value <= window
