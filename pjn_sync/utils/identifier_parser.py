"""
Argentine identifier parsing (DNI / CUIT / CUIL / passport).

The portal lists participants with a free-text details column such as
``"Tomo 12 Folio 34 | CUIT 20-12345678-6"``; this module pulls the document
number out of that text, classifies it and validates CUIT/CUIL check digits.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from rapidfuzz.distance import JaroWinkler

DNI = "DNI"
CUIT = "CUIT"
CUIL = "CUIL"
PASSPORT = "PASSPORT"
OTHER = "OTHER"
UNKNOWN = "UNKNOWN"

_CUIL_PREFIXES = ("20", "23", "24", "27")
_CUIT_PREFIXES = ("30", "33", "34")
_CHECK_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)

_SEPARATORS = re.compile(r"[-.\s]")
_DOCUMENT_PREFIX = re.compile(r"^(DNI|LE|LC|CUIT|CUIL)(?:\s*:\s*|\s+)(.*)$", re.IGNORECASE)
_PASSPORT_PREFIX = re.compile(r"^(PASAPORTE|PAS)\s*:\s*(.*)$", re.IGNORECASE)
_NAME_PREFIXES = re.compile(
    r"^(DR\.?|DRA\.?|SR\.?|SRA\.?|LIC\.?|ING\.?|ABG\.?|ESTUDIO)\s+", re.IGNORECASE
)
_PUNCTUATION = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class ParsedIdentifier:
    type: str
    number: str
    formatted: str
    raw: str
    valid: bool


def _unknown(raw: str) -> ParsedIdentifier:
    return ParsedIdentifier(type=UNKNOWN, number="", formatted="", raw=raw, valid=False)


def cuit_check_digit(digits: str) -> int:
    """Modulo-11 check digit for the first ten digits of a CUIT/CUIL.

    A remainder of 1 has no valid digit in the scheme; the number's own last
    digit is echoed back so such inputs validate against themselves.
    """
    total = sum(int(d) * w for d, w in zip(digits[:10], _CHECK_WEIGHTS))
    remainder = total % 11
    if remainder == 0:
        return 0
    if remainder == 1:
        return int(digits[10]) if len(digits) > 10 else 9
    return 11 - remainder


def is_valid_cuit(digits: str) -> bool:
    if len(digits) != 11 or not digits.isdigit():
        return False
    return cuit_check_digit(digits) == int(digits[10])


def format_cuit_cuil(digits: str) -> str:
    if len(digits) != 11:
        return digits
    return f"{digits[:2]}-{digits[2:10]}-{digits[10]}"


def format_dni(digits: str) -> str:
    stripped = digits.lstrip("0") or "0"
    return f"{int(stripped):,}".replace(",", ".")


def _classify_eleven(digits: str) -> str:
    prefix = digits[:2]
    if prefix in _CUIL_PREFIXES:
        return CUIL
    if prefix in _CUIT_PREFIXES:
        return CUIT
    return CUIT


def parse_identifier(value: Optional[str]) -> ParsedIdentifier:
    """Classify and normalize an identifier such as ``"20-12345678-6"``,
    ``"DNI: 12.345.678"`` or ``"S/D"``.

    11 digits are CUIT/CUIL (prefix decides which, checksum decides
    validity), 7-8 digits are a DNI padded to 8, explicit ``PAS:`` values
    are passports. Anything else is OTHER, or UNKNOWN when no digits remain.
    """
    raw = (value or "").strip()
    if not raw or raw.upper() == "S/D" or raw == "-":
        return _unknown(raw)

    forced: Optional[str] = None
    working = raw
    match = _DOCUMENT_PREFIX.match(raw)
    passport = _PASSPORT_PREFIX.match(raw) if match is None else None
    if match:
        label = match.group(1).upper()
        working = match.group(2).strip()
        forced = label if label in (CUIT, CUIL) else DNI
    elif passport:
        working = passport.group(2).strip()
        forced = PASSPORT

    digits = _SEPARATORS.sub("", working)
    if not digits or not digits.isdigit():
        return ParsedIdentifier(type=forced or UNKNOWN, number="", formatted=raw, raw=raw, valid=False)

    if len(digits) == 11:
        return ParsedIdentifier(
            type=forced or _classify_eleven(digits),
            number=digits,
            formatted=format_cuit_cuil(digits),
            raw=raw,
            valid=is_valid_cuit(digits),
        )

    if 7 <= len(digits) <= 8:
        padded = digits.zfill(8)
        return ParsedIdentifier(
            type=forced or DNI, number=padded, formatted=format_dni(padded), raw=raw, valid=True
        )

    if forced == PASSPORT:
        return ParsedIdentifier(type=PASSPORT, number=digits, formatted=working, raw=raw, valid=True)

    return ParsedIdentifier(type=forced or OTHER, number=digits, formatted=raw, raw=raw, valid=False)


def format_identifier(kind: str, number: str) -> str:
    if kind in (CUIT, CUIL):
        return format_cuit_cuil(number)
    if kind == DNI:
        return format_dni(number)
    return number


def _has_digit(value: str) -> bool:
    return any(ch.isdigit() for ch in value)


def extract_identifier_value(details: Optional[str]) -> Optional[str]:
    """Raw identifier text from a participant's details column.

    The identifier is usually the last ``|``-separated segment; when no
    segment qualifies the whole string is used if it carries digits.
    """
    if not details:
        return None
    parts = [p.strip() for p in details.split("|")]
    if len(parts) >= 2:
        for part in reversed(parts):
            if part and part != "-" and part.upper() != "S/D" and _has_digit(part):
                return part
    if _has_digit(details):
        return details
    return None


def extract_identifier_from_details(details: Optional[str]) -> Optional[ParsedIdentifier]:
    raw = extract_identifier_value(details)
    if raw is None:
        return None
    return parse_identifier(raw)


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_name(name: Optional[str]) -> str:
    if not name:
        return ""
    value = name.strip()
    value = _NAME_PREFIXES.sub("", value)
    value = strip_accents(value)
    value = _PUNCTUATION.sub(" ", value)
    value = re.sub(r"\s+", " ", value).strip()
    return value.upper()


def jaro_winkler_similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return float(JaroWinkler.similarity(a, b, prefix_weight=0.1))
