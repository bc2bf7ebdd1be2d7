"""Random alphanumeric strings."""

from __future__ import annotations

import random

LETTERS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ1234567890"

RAND_SOURCE = random.Random()


def rand_str(n: int) -> str:
    """Return a random string of n letters and digits."""
    if n < 0:
        raise ValueError("length must not be negative")
    return "".join(RAND_SOURCE.choices(LETTERS, k=n))