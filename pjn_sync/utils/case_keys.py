"""
PJN case keys ("FRE").

Portal format is space separated (``FRE 3852/2020/TO2``), storage format is
hyphen separated (``FRE-3852/2020/TO2``). Leading zeros in the numeric
segment are noise the portal adds on some listings.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

# (code, name); list position is the value of the portal's "camara" dropdown.
PJN_JURISDICTIONS: List[Tuple[str, str]] = [
    ("CSJ", "Corte Suprema de Justicia de la Nación"),
    ("CIV", "Cámara Nacional de Apelaciones en lo Civil"),
    ("CAF", "Cámara Nacional de Apelaciones en lo Contencioso Administrativo Federal"),
    ("CCF", "Cámara Nacional de Apelaciones en lo Civil y Comercial Federal"),
    ("CNE", "Cámara Nacional Electoral"),
    ("CSS", "Cámara Federal de la Seguridad Social"),
    ("CPE", "Cámara Nacional de Apelaciones en lo Penal Económico"),
    ("CNT", "Cámara Nacional de Apelaciones del Trabajo"),
    ("CFP", "Cámara Criminal y Correccional Federal"),
    ("CCC", "Cámara Nacional de Apelaciones en lo Criminal y Correccional"),
    ("COM", "Cámara Nacional de Apelaciones en lo Comercial"),
    ("CPF", "Cámara Federal de Casación Penal"),
    ("CPN", "Cámara Nacional de Casación Penal"),
    ("FBB", "Justicia Federal de Bahía Blanca"),
    ("FCR", "Justicia Federal de Comodoro Rivadavia"),
    ("FCB", "Justicia Federal de Córdoba"),
    ("FCT", "Justicia Federal de Corrientes"),
    ("FGR", "Justicia Federal de General Roca"),
    ("FLP", "Justicia Federal de La Plata"),
    ("FMP", "Justicia Federal de Mar del Plata"),
    ("FMZ", "Justicia Federal de Mendoza"),
    ("FPO", "Justicia Federal de Posadas"),
    ("FPA", "Justicia Federal de Paraná"),
    ("FRE", "Justicia Federal de Resistencia"),
    ("FSA", "Justicia Federal de Salta"),
    ("FRO", "Justicia Federal de Rosario"),
    ("FSM", "Justicia Federal de San Martín"),
    ("FTU", "Justicia Federal de Tucumán"),
]

JURISDICTION_CODES: List[str] = [code for code, _ in PJN_JURISDICTIONS]
JURISDICTION_VALUE_MAP: Dict[str, str] = {code: str(i) for i, (code, _) in enumerate(PJN_JURISDICTIONS)}

_KEY_RE = re.compile(r"^([A-Z]{2,4})[\s-]*(\d+)/(\d{2,4})((?:/[A-Z0-9]+)*)$")
_FRE_IN_TEXT = re.compile(r"\b([A-Z]{3})[\s-]+(\d+/\d{4}(?:/[A-Z0-9]+)*)", re.IGNORECASE)


@dataclass(frozen=True)
class CaseKey:
    jurisdiction: str
    number: str
    year: str
    suffix: str = ""

    @property
    def base(self) -> Tuple[str, str, str]:
        return (self.jurisdiction, self.number, self.year)

    def __str__(self) -> str:
        return f"{self.jurisdiction}-{self.number}/{self.year}{self.suffix}"


def _clean(value: str) -> str:
    text = re.sub(r"\s+", " ", (value or "").strip().upper())
    return re.sub(r"\s*/\s*", "/", text)


def parse_case_key(value: Optional[str]) -> Optional[CaseKey]:
    if not value:
        return None
    match = _KEY_RE.match(_clean(value))
    if not match:
        return None
    jurisdiction, number, year, suffix = match.groups()
    return CaseKey(jurisdiction, number.lstrip("0") or "0", year, suffix or "")


def normalize_case_key(value: Optional[str]) -> str:
    """``"fre 007767 / 2025"`` -> ``"FRE-7767/2025"``. Idempotent; values that
    don't look like a case key come back uppercased and whitespace-collapsed."""
    parsed = parse_case_key(value)
    if parsed is None:
        return _clean(value or "")
    return str(parsed)


def build_case_key(jurisdiction: str, case_number: str, year: Optional[int | str] = None) -> Optional[str]:
    if not jurisdiction or not case_number:
        return None
    code = jurisdiction.strip().upper()
    if code not in JURISDICTION_CODES:
        return None
    tail = case_number.strip()
    if year is not None and "/" not in tail:
        tail = f"{tail}/{year}"
    return normalize_case_key(f"{code}-{tail}")


def to_portal_format(value: str) -> str:
    """``FRE-1/2020`` -> ``FRE 1/2020``"""
    return re.sub(r"^([A-Z]{2,4})-", r"\1 ", normalize_case_key(value))


def safe_key(value: str) -> str:
    """Case key usable as a storage path segment."""
    return re.sub(r"[/\\:\s]", "_", normalize_case_key(value))


def extract_case_key(text: Optional[str]) -> Optional[str]:
    """First case key mentioned in free text (event descriptions)."""
    if not text:
        return None
    for match in _FRE_IN_TEXT.finditer(text):
        code = match.group(1).upper()
        if code in JURISDICTION_CODES:
            return normalize_case_key(f"{code}-{match.group(2)}")
    return None


def jurisdiction_name(code: str) -> Optional[str]:
    return dict(PJN_JURISDICTIONS).get((code or "").upper())
