"""Barcode normalization: canonical UPC/EAN lookup variants."""

from __future__ import annotations

import re

EAN13_LENGTH = 13

_NON_DIGIT_RE = re.compile(r"\D")


def clean(raw: str) -> str:
    """Strip everything that is not an ASCII digit."""
    return _NON_DIGIT_RE.sub("", raw or "")


def variants(raw: str) -> tuple[str, ...]:
    """Return the ordered lookup variants for a scanned code.

    Order is raw digits, EAN-13 (zero-padded), then UPC-12 (EAN-13 minus its
    leading padding zero). Lookups stop at the first hit, so order matters.
    An empty tuple means the input cannot be a UPC/EAN at all.
    """
    digits = clean(raw)
    if not digits or len(digits) > EAN13_LENGTH:
        return ()

    ean13 = digits.zfill(EAN13_LENGTH)
    candidates = [digits, ean13]
    if ean13.startswith("0"):
        candidates.append(ean13[1:])

    return tuple(dict.fromkeys(candidates))


def canonical(raw: str) -> str | None:
    """EAN-13 form used as the storage key, or None for an unusable code."""
    found = variants(raw)
    if not found:
        return None
    return clean(raw).zfill(EAN13_LENGTH)
