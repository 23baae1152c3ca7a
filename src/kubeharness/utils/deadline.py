"""Operation deadlines and duration parsing."""

from __future__ import annotations

import re
import time

from kubeharness.core.exceptions import ConfigurationError

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration string such as ``30m``, ``1h30m`` or ``100ms``.

    Args:
        value: Duration made of decimal numbers each followed by a unit
            (ns, us, ms, s, m, h). A bare ``0`` is accepted.

    Returns:
        Duration in seconds

    Raises:
        ConfigurationError: If the string is not a valid duration
    """
    text = value.strip()
    if text in ("0", "+0", "-0"):
        return 0.0

    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if not text:
        raise ConfigurationError(f"invalid duration: {value!r}")

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ConfigurationError(f"invalid duration: {value!r}")

    return sign * total


class Deadline:
    """Absolute point in time shared by every command of one operation.

    A deadline is passed explicitly to each command the operation runs; the
    runner turns the time left into a subprocess timeout.
    """

    def __init__(self, timeout: float):
        """Start a deadline that elapses ``timeout`` seconds from now.

        Args:
            timeout: Seconds until the deadline
        """
        self.timeout = timeout
        self._expires_at = time.monotonic() + timeout

    @classmethod
    def from_duration(cls, value: str) -> Deadline:
        """Create a deadline from a duration string like ``30m``."""
        return cls(parse_duration(value))

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._expires_at

    def __repr__(self) -> str:
        return f"Deadline(timeout={self.timeout}, remaining={self.remaining():.3f})"
