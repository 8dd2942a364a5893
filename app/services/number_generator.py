"""
Tracking Number Generation

Customer-facing tracking numbers look like ``NSLM5X2K1QZ8F``: the ``NSL``
prefix, the current time in epoch milliseconds encoded in base 36, and four
random base-36 characters, all upper-case.
"""

import re
import secrets
import time
from typing import Awaitable, Callable, Optional, Set

BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
TRACKING_PREFIX = "NSL"
RANDOM_SUFFIX_LENGTH = 4

TRACKING_NUMBER_PATTERN = re.compile(rf"^{TRACKING_PREFIX}[0-9A-Z]+[0-9A-Z]{{{RANDOM_SUFFIX_LENGTH}}}$")


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


class TrackingNumberGenerator:
    """Generates tracking numbers that are unique within one generator's lifetime.

    A sync run uses one generator so two loads inserted in the same
    millisecond still get distinct numbers.
    """

    MAX_ATTEMPTS = 20

    def __init__(self, clock_ms: Optional[Callable[[], int]] = None):
        self._clock_ms = clock_ms or (lambda: time.time_ns() // 1_000_000)
        self._issued: Set[str] = set()

    @staticmethod
    def generate(timestamp_ms: int, suffix: Optional[str] = None) -> str:
        """
        Build a tracking number.

        Args:
            timestamp_ms: Epoch milliseconds encoded in the middle segment
            suffix: Random segment; four random base-36 characters when omitted

        Returns:
            Upper-case tracking number, e.g. ``NSLM5X2K1QZ8F``
        """
        if suffix is None:
            suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH))
        return f"{TRACKING_PREFIX}{to_base36(timestamp_ms)}{suffix}".upper()

    def next(self) -> str:
        for _ in range(self.MAX_ATTEMPTS):
            candidate = self.generate(self._clock_ms())
            if candidate not in self._issued:
                self._issued.add(candidate)
                return candidate
        raise RuntimeError("Could not generate a unique tracking number")

    async def next_unused(self, exists: Callable[[str], Awaitable[bool]]) -> str:
        """Next number that ``exists`` does not find among stored loads."""
        for _ in range(self.MAX_ATTEMPTS):
            candidate = self.next()
            if not await exists(candidate):
                return candidate
        raise RuntimeError("Could not generate a unique tracking number")

    @property
    def issued(self) -> Set[str]:
        return set(self._issued)


def is_tracking_number(value: str) -> bool:
    return bool(TRACKING_NUMBER_PATTERN.match(value or ""))
