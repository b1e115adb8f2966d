"""
Voucher serial numbers.

Format: ``YYMMDD`` issue date + 5-digit random component + 1 check digit,
12 digits total (e.g. ``250301048213``).  The check digit is the weighted
digit sum of the first 11 digits, weights 3, 7, 1 repeating, modulo 10.
It catches single-digit typos on manual entry; it is NOT a security
feature -- authenticity comes from the signed payload (see codec.py).

Collision probability within one day is 1 in 10^5 per pair; global
uniqueness is enforced by the store (DuplicateSerialError), and the
lifecycle service retries generation on collision.
"""

from __future__ import annotations

import random
import secrets
from dataclasses import dataclass
from datetime import date, datetime

from voucher_kernel.exceptions import MalformedPayloadError

SERIAL_LENGTH = 12
_DATE_DIGITS = 6
_RANDOM_DIGITS = 5
_CHECK_WEIGHTS = (3, 7, 1)

_system_random = secrets.SystemRandom()


@dataclass(frozen=True)
class SerialParts:
    """Decomposed serial number."""

    issue_date: date
    random_part: str
    check_digit: int


def compute_check_digit(base: str) -> int:
    """Weighted check digit over an all-digit string."""
    total = sum(
        int(ch) * _CHECK_WEIGHTS[i % len(_CHECK_WEIGHTS)]
        for i, ch in enumerate(base)
    )
    return total % 10


def generate_serial(issue_date: date | datetime, rng: random.Random | None = None) -> str:
    """Generate a serial for ``issue_date``.

    Args:
        issue_date: Date component of the serial (datetimes are truncated).
        rng: Random source; defaults to ``secrets.SystemRandom``.  Tests
            inject a seeded ``random.Random`` for reproducibility.
    """
    if isinstance(issue_date, datetime):
        issue_date = issue_date.date()
    source = rng or _system_random
    date_part = issue_date.strftime("%y%m%d")
    random_part = f"{source.randrange(10 ** _RANDOM_DIGITS):0{_RANDOM_DIGITS}d}"
    base = date_part + random_part
    return f"{base}{compute_check_digit(base)}"


def parse_serial(serial_no: str) -> SerialParts:
    """Split a serial into its parts.

    Raises:
        MalformedPayloadError: wrong length, non-digits, impossible date,
            or check digit mismatch.
    """
    if len(serial_no) != SERIAL_LENGTH or not serial_no.isascii() or not serial_no.isdigit():
        raise MalformedPayloadError(f"serial must be {SERIAL_LENGTH} digits")

    date_part = serial_no[:_DATE_DIGITS]
    try:
        issue_date = datetime.strptime(date_part, "%y%m%d").date()
    except ValueError:
        raise MalformedPayloadError(f"serial date component {date_part} is not a date") from None

    base = serial_no[:-1]
    check_digit = int(serial_no[-1])
    if compute_check_digit(base) != check_digit:
        raise MalformedPayloadError("serial check digit mismatch")

    return SerialParts(
        issue_date=issue_date,
        random_part=serial_no[_DATE_DIGITS:_DATE_DIGITS + _RANDOM_DIGITS],
        check_digit=check_digit,
    )


def validate_serial(serial_no: str) -> bool:
    try:
        parse_serial(serial_no)
    except MalformedPayloadError:
        return False
    return True


def format_serial(serial_no: str) -> str:
    """Display form ``YYMMDD-NNNNN-C``; invalid serials are returned as-is."""
    if not validate_serial(serial_no):
        return serial_no
    return f"{serial_no[:6]}-{serial_no[6:11]}-{serial_no[11]}"
