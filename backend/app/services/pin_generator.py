from __future__ import annotations

import secrets
from typing import Callable

PIN_MIN = 100000
PIN_MAX = 999999


class PinGenerator:
    """Draws keypad codes uniformly from [100000, 999999]."""

    def __init__(self, randbelow: Callable[[int], int] = secrets.randbelow) -> None:
        self._randbelow = randbelow

    def generate(self) -> str:
        return str(PIN_MIN + self._randbelow(PIN_MAX - PIN_MIN + 1))
