"""Checked integer arithmetic over the ledger's widened integer bounds.

Python integers never overflow, so the bounds a fixed-width ledger would
enforce (u64 amounts, u128 index, i64 timestamps) are checked explicitly and
reported as MATH_OVERFLOW.
"""

from __future__ import annotations

from subly.constants import I64_MAX, U64_MAX, U128_MAX
from subly.errors import ErrorCode, IntegrityError


def _bounded(value: int, upper: int) -> int:
    if value < 0 or value > upper:
        raise IntegrityError(ErrorCode.MATH_OVERFLOW, f"{value} outside [0, {upper}]")
    return value


def add_u64(a: int, b: int) -> int:
    return _bounded(a + b, U64_MAX)


def sub_u64(a: int, b: int) -> int:
    return _bounded(a - b, U64_MAX)


def add_u128(a: int, b: int) -> int:
    return _bounded(a + b, U128_MAX)


def to_u64(value: int) -> int:
    return _bounded(value, U64_MAX)


def to_u128(value: int) -> int:
    return _bounded(value, U128_MAX)


def add_ts(ts: int, seconds: int) -> int:
    """Timestamp addition bounded to i64."""
    result = ts + seconds
    if result > I64_MAX:
        raise IntegrityError(ErrorCode.MATH_OVERFLOW, "timestamp overflow")
    return result
