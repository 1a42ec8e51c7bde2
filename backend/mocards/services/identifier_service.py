# Overview: Service-layer operations for card identifiers and passcodes.

"""
Identifier Service - control numbers, batch numbers and two-part passcodes

CONTROL NUMBER: PREFIX-<batch stamp>-<sequence>, e.g. MOC-1760000000000-007.
The stamp is shared by every card of a batch and the sequence is unique
within it, so one process can never produce the same number twice. Two
processes can; the repository's unique constraint catches that and the
batch service retries with a new stamp.

PASSCODE: built in two phases.
- incomplete passcode: 4 digits, uniform over 0000-9999, set at generation
- location code: 3 uppercase letters, set by the clinic
- passcode = location code + incomplete passcode (7 chars), only once both exist
"""

from __future__ import annotations

import re
import secrets
import time
from typing import Callable, Optional

from .errors import InvalidLocationCodeError, ValidationError


DEFAULT_CONTROL_PREFIX = "MOC"
DEFAULT_BATCH_PREFIX = "MOB"

STAMP_DIGITS = 13
MIN_SEQUENCE_WIDTH = 3

LOCATION_CODE_RE = re.compile(r"^[A-Z]{3}$")
INCOMPLETE_PASSCODE_RE = re.compile(r"^\d{4}$")
PASSCODE_RE = re.compile(r"^[A-Z]{3}\d{4}$")
PREFIX_RE = re.compile(r"^[A-Z]{2,8}$")
CONTROL_NUMBER_RE = re.compile(r"^[A-Z]{2,8}-\d+-\d+$")


def new_batch_stamp(*, after: Optional[str] = None, clock: Callable[[], float] = time.time) -> str:
    """
    Return the current epoch milliseconds as a 13-digit stamp.

    The full value is kept, so a stamp never repeats within one process
    unless the clock stands still. `after` forces a stamp strictly greater
    than a previous one (used when a stamp collided).
    """
    value = int(clock() * 1000)
    if after is not None:
        value = max(value, int(after) + 1)
    return f"{value:0{STAMP_DIGITS}d}"


def normalize_prefix(prefix: str) -> str:
    normalized = (prefix or "").strip().upper()
    if not PREFIX_RE.match(normalized):
        raise ValidationError(
            f"Invalid identifier prefix '{prefix}': expected 2-8 letters",
            details={"prefix": prefix},
        )
    return normalized


def new_batch_number(batch_stamp: str, *, prefix: str = DEFAULT_BATCH_PREFIX) -> str:
    return f"{normalize_prefix(prefix)}-{batch_stamp}"


def new_control_number(
    batch_stamp: str,
    sequence_in_batch: int,
    *,
    prefix: str = DEFAULT_CONTROL_PREFIX,
    width: int = MIN_SEQUENCE_WIDTH,
) -> str:
    """Build PREFIX-<stamp>-<zero-padded sequence>. Sequence starts at 1."""
    if sequence_in_batch < 1:
        raise ValidationError("sequence_in_batch must be >= 1")
    width = max(width, MIN_SEQUENCE_WIDTH)
    return f"{normalize_prefix(prefix)}-{batch_stamp}-{sequence_in_batch:0{width}d}"


def sequence_width(total_cards: int) -> int:
    """Padding width that keeps every sequence in a batch the same length."""
    return max(MIN_SEQUENCE_WIDTH, len(str(total_cards)))


def new_incomplete_passcode(randbelow: Callable[[int], int] = secrets.randbelow) -> str:
    """4-digit zero-padded string, uniform over 0000-9999."""
    return f"{randbelow(10000):04d}"


def normalize_control_number(value: Optional[str]) -> str:
    """Uppercase, no surrounding whitespace. Raises ValidationError when empty."""
    normalized = (value or "").strip().upper()
    if not normalized:
        raise ValidationError("control_number required")
    return normalized


def normalize_location_code(value: Optional[str]) -> str:
    """
    Uppercase and validate a clinic location code.

    Raises InvalidLocationCodeError unless the result is exactly 3 letters A-Z.
    """
    normalized = (value or "").strip().upper()
    if not LOCATION_CODE_RE.match(normalized):
        raise InvalidLocationCodeError(
            f"Invalid location code '{value}': expected exactly 3 letters",
            details={"location_code": value},
        )
    return normalized


def normalize_passcode(value: Optional[str]) -> str:
    """Uppercase, spaces removed. Raises ValidationError when empty."""
    normalized = (value or "").upper().replace(" ", "").strip()
    if not normalized:
        raise ValidationError("passcode required")
    return normalized


def compose_passcode(location_code: Optional[str], incomplete_passcode: Optional[str]) -> Optional[str]:
    """Complete passcode, or None while either part is missing."""
    if not location_code or not incomplete_passcode:
        return None
    return f"{location_code}{incomplete_passcode}"


def is_complete_passcode(value: Optional[str]) -> bool:
    return bool(value) and PASSCODE_RE.match(value) is not None


def split_passcode(passcode: str) -> tuple[str, str]:
    """Split a complete passcode into (location_code, incomplete_passcode)."""
    if not is_complete_passcode(passcode):
        raise ValidationError(
            "Passcode must be 3 letters followed by 4 digits",
            details={"passcode_length": len(passcode or "")},
        )
    return passcode[:3], passcode[3:]
