"""In-place sorting of 64-bit integer lists."""

from __future__ import annotations

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT64_MAX = (1 << 64) - 1


def _check_range(values: list[int], low: int, high: int, kind: str) -> None:
    for v in values:
        if not low <= v <= high:
            raise ValueError(f"{v} does not fit in {kind}")


def sort_int64(values: list[int]) -> list[int]:
    """Sort a list of signed 64-bit integers in place in increasing order."""
    _check_range(values, _INT64_MIN, _INT64_MAX, "int64")
    values.sort()
    return values


def sort_uint64(values: list[int]) -> list[int]:
    """Sort a list of unsigned 64-bit integers in place in increasing order."""
    _check_range(values, 0, _UINT64_MAX, "uint64")
    values.sort()
    return values