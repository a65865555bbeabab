# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.21
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/sizes.py

"""
Size and duration parsing for size tags, transcripts and lvcreate arguments.

The size tag written at backup time is the only record of the original
volume size, so formatting and parsing are exact: the tag carries the size in
GiB with as many decimals as needed and parsing multiplies in Decimal.
"""

import re
from decimal import Decimal, localcontext
from typing import Iterable, Optional

import humanfriendly

from lvmrestic.system.exceptions import SizeParseError

GIB = 1024 ** 3
SIZE_TAG_SUFFIX = "_size"

# number + optional unit (b, k, kb, kib, m, ... e), binary multipliers
_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmgtpe](?:i?b)?|b)?\s*$", re.IGNORECASE)
_SIZE_TAG_RE = re.compile(r"^(\d+(?:\.\d+)?[kmgtpe]?)" + SIZE_TAG_SUFFIX + r"$", re.IGNORECASE)
_DURATION_RE = re.compile(r"^\d+(?:\.\d+)?(?::\d+(?:\.\d+)?){0,2}$")


def parse_size(text: str) -> int:
    """Parse a human readable size ("12.5g", "5.00 GiB", "1024") into bytes.

    Raises:
        SizeParseError: If text does not match number + optional unit
    """
    if text is None:
        raise SizeParseError("Missing size value")
    match = _SIZE_RE.match(str(text))
    if not match:
        raise SizeParseError(f"Invalid size: {text!r}")
    number, unit = match.groups()

    multiplier = 1
    if unit and unit.lower() != "b":
        try:
            multiplier = humanfriendly.parse_size(f"1 {unit}", binary=True)
        except humanfriendly.InvalidSize as e:
            raise SizeParseError(f"Invalid size unit in {text!r}") from e

    with localcontext() as ctx:
        ctx.prec = 60
        return int(Decimal(number) * multiplier)


def parse_buffer_size(text: str) -> int:
    """Validate an lvcreate -L style size ("10G") and return it in bytes."""
    size = parse_size(text)
    if size <= 0:
        raise SizeParseError(f"Snapshot buffer must be positive: {text!r}")
    return size


def format_gib(size_bytes: int) -> str:
    """Render bytes as GiB with at least two decimals and no rounding ("5.00g")."""
    if size_bytes < 0:
        raise SizeParseError(f"Negative size: {size_bytes}")
    with localcontext() as ctx:
        ctx.prec = 60
        gib = Decimal(size_bytes) / Decimal(GIB)
        text = f"{gib:.30f}".rstrip("0")
    whole, _, fraction = text.partition(".")
    return f"{whole}.{fraction.ljust(2, '0')}g"


def format_size_tag(size_bytes: int) -> str:
    """Build the size tag recorded with every backup ("5.00g_size")."""
    return format_gib(size_bytes) + SIZE_TAG_SUFFIX


def find_size_tag(tags: Iterable[str]) -> Optional[str]:
    """Return the size part of the first size tag ("5.00g"), if any."""
    for tag in tags:
        match = _SIZE_TAG_RE.match(tag)
        if match:
            return match.group(1)
    return None


def size_from_tags(tags: Iterable[str]) -> tuple[str, int]:
    """Return the recorded size as (text, bytes).

    Raises:
        SizeParseError: If no tag follows the size tag grammar
    """
    tags = list(tags)
    size_text = find_size_tag(tags)
    if size_text is None:
        raise SizeParseError(f"No size tag found in {tags}")
    return size_text, parse_size(size_text)


def parse_duration(text: str) -> float:
    """Convert "H:M:S", "M:S" or "S" into seconds."""
    text = text.strip()
    if not _DURATION_RE.match(text):
        raise SizeParseError(f"Invalid duration: {text!r}")
    seconds = 0.0
    for part in text.split(":"):
        seconds = seconds * 60 + float(part)
    return seconds
