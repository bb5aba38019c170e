"""Time-ordered report identifiers.

Ids are 20 characters: 8 characters of millisecond timestamp followed by 12
random characters, both drawn from an alphabet whose ASCII order matches its
digit order. Ids therefore sort by creation time. Two ids minted in the same
millisecond reuse the random tail incremented by one, so they still sort in
mint order.
"""

from __future__ import annotations

from collections.abc import Callable
import secrets
import threading
import time


PUSH_ID_ALPHABET = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
PUSH_ID_LENGTH = 20
_TIME_CHARS = 8
_RANDOM_CHARS = PUSH_ID_LENGTH - _TIME_CHARS


class PushIdGenerator:
    def __init__(self, *, clock_ms: Callable[[], int] | None = None) -> None:
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random: list[int] = [0] * _RANDOM_CHARS

    def __call__(self) -> str:
        with self._lock:
            now_ms = int(self._clock_ms())
            if now_ms < 0:
                raise ValueError("clock must not be negative")
            duplicate = now_ms == self._last_ms
            self._last_ms = now_ms

            time_chars: list[str] = []
            remaining = now_ms
            for _ in range(_TIME_CHARS):
                time_chars.append(PUSH_ID_ALPHABET[remaining % 64])
                remaining //= 64
            if remaining:
                raise ValueError("timestamp does not fit in a push id")
            time_chars.reverse()

            if not duplicate:
                self._last_random = [secrets.randbelow(64) for _ in range(_RANDOM_CHARS)]
            else:
                # Carry the increment; the tail wraps only after 64**12 ids in one ms.
                index = _RANDOM_CHARS - 1
                while index >= 0 and self._last_random[index] == 63:
                    self._last_random[index] = 0
                    index -= 1
                if index >= 0:
                    self._last_random[index] += 1

            return "".join(time_chars) + "".join(PUSH_ID_ALPHABET[i] for i in self._last_random)


_default_generator = PushIdGenerator()


def new_report_id() -> str:
    return _default_generator()


def push_id_timestamp_ms(push_id: str) -> int:
    """Recover the millisecond timestamp encoded in a push id."""
    token = str(push_id)
    if len(token) != PUSH_ID_LENGTH:
        raise ValueError(f"push id must be {PUSH_ID_LENGTH} characters: {push_id!r}")
    value = 0
    for char in token[:_TIME_CHARS]:
        index = PUSH_ID_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"invalid push id character {char!r}")
        value = value * 64 + index
    return value
