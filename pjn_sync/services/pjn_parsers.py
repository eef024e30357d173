"""
BeautifulSoup normalizers for the SCW portal pages.

Each ``parse_*`` function takes the page markup (plus the case key when the
section needs it for stable ids) and returns ``Parsed`` with the normalized
records and the probe that located the table, or ``NotFound`` when no probe
matched. Missing optional structure never raises; rows without the minimum
fields are skipped.

Tables are located by id fragments first (JSF ids are stable-ish), then by
header keywords, so minor markup changes on the portal degrade to the
header probe instead of returning nothing.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bs4 import BeautifulSoup
from bs4.element import Tag

from pjn_sync.db.schemas import (
    NormalizedAppeal,
    NormalizedCaseCandidate,
    NormalizedDigitalDocument,
    NormalizedMovement,
    NormalizedParticipant,
    NormalizedRelatedCase,
)
from pjn_sync.utils.case_keys import normalize_case_key, parse_case_key
from pjn_sync.utils.identifier_parser import strip_accents

_CASE_KEY_IN_CELL = re.compile(r"\b([A-Z]{2,4})[\s-]+0*(\d+)\s*/\s*(\d{2,4})((?:/[A-Z0-9]+)*)", re.IGNORECASE)
_ROW_INDEX_IN_ONCLICK = re.compile(r"dataTable:(\d+):")
_EMPTY_MARKERS = ("no se encontraron", "no hay registros", "sin resultados", "no existen")


# ── Result types ─────────────────────────────────────────────────────────────


@dataclass
class Parsed:
    section: str
    records: List[Any]
    probe: str


@dataclass
class NotFound:
    section: str
    reason: str
    records: List[Any] = field(default_factory=list)


ParseResult = Union[Parsed, NotFound]


# ── Helpers ──────────────────────────────────────────────────────────────────


def stable_id(*parts: Optional[str]) -> str:
    """Deterministic id for rows the portal doesn't give an id to."""
    joined = "|".join((p or "").strip() for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:24]


def _text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    return re.sub(r"\s+", " ", node.get_text(separator=" ", strip=True)).strip()


def _norm_header(value: str) -> str:
    return strip_accents(value or "").lower().strip()


def _header_cells(table: Tag) -> List[str]:
    thead = table.find("thead")
    row = None
    if thead is not None:
        row = thead.find("tr")
    if row is None:
        for tr in table.find_all("tr"):
            if tr.find("th") is not None:
                row = tr
                break
    if row is None:
        return []
    return [_norm_header(_text(c)) for c in row.find_all(["th", "td"])]


def _data_rows(table: Tag) -> List[Tag]:
    tbody = table.find("tbody")
    rows = tbody.find_all("tr", recursive=False) if tbody is not None else []
    if not rows:
        rows = [tr for tr in table.find_all("tr") if tr.find("td") is not None and tr.find("th") is None]
    return [tr for tr in rows if not _is_empty_row(tr)]


def _is_empty_row(tr: Tag) -> bool:
    cells = tr.find_all("td")
    if not cells:
        return True
    text = _norm_header(_text(tr))
    if not text:
        return True
    return len(cells) == 1 and any(marker in text for marker in _EMPTY_MARKERS)


def _find_table(
    soup: BeautifulSoup,
    id_fragments: Sequence[str],
    header_groups: Sequence[Sequence[str]],
) -> Tuple[Optional[Tag], str]:
    """
    First table whose id contains one of ``id_fragments``; otherwise the
    first table whose header row has a keyword from every group in
    ``header_groups``.
    """
    for fragment in id_fragments:
        for table in soup.find_all("table"):
            table_id = (table.get("id") or "").lower()
            if fragment.lower() in table_id:
                return table, f"id:{fragment}"

    for table in soup.find_all("table"):
        headers = " ".join(_header_cells(table))
        if headers and all(any(k in headers for k in group) for group in header_groups):
            return table, "headers:" + "+".join(group[0] for group in header_groups)

    return None, ""


def _column_index(headers: List[str], *keywords: str) -> Optional[int]:
    for i, header in enumerate(headers):
        if any(k in header for k in keywords):
            return i
    return None


def _cell(cells: List[Tag], index: Optional[int]) -> str:
    if index is None or index >= len(cells):
        return ""
    return _text(cells[index])


def _doc_ref(row: Tag) -> Optional[str]:
    """Download reference for a row: a PDF href, or the script that opens it."""
    for a in row.find_all("a"):
        href = (a.get("href") or "").strip()
        onclick = (a.get("onclick") or "").strip()
        lowered = href.lower()
        if href and href != "#" and (".pdf" in lowered or "descarga" in lowered or "viewer" in lowered):
            return href
        if ".pdf" in onclick.lower():
            return onclick
        if href.lower().startswith("javascript:") and ".pdf" in href.lower():
            return href
        icon = a.find(["i", "span", "img"], class_=re.compile(r"pdf|download|file", re.IGNORECASE))
        if icon is not None:
            if href and href != "#" and not href.lower().startswith("javascript:void"):
                return href
            if onclick:
                return onclick
    return None


def _portal_row_id(row: Tag) -> Optional[str]:
    for attr in ("data-rk", "data-id", "data-row-key"):
        value = (row.get(attr) or "").strip()
        if value:
            return value
    return None


def _split_case_key(text: str) -> Optional[Tuple[str, str, str, str, str]]:
    """(normalized key, raw as displayed, jurisdiction, number, year)"""
    match = _CASE_KEY_IN_CELL.search(text or "")
    if match is None:
        return None
    raw = match.group(0).strip()
    parsed = parse_case_key(raw)
    if parsed is None:
        return None
    return str(parsed), raw, parsed.jurisdiction, parsed.number, parsed.year


def _raw(row: Tag) -> str:
    return str(row)


# ── Search results ───────────────────────────────────────────────────────────


def parse_search_results(markup: str, page: int = 1) -> ParseResult:
    soup = BeautifulSoup(markup or "", "html.parser")
    table, probe = _find_table(soup, ["dataTable"], [["expediente"], ["caratula", "dependencia"]])
    if table is None:
        return NotFound("search_results", "results table not found")

    headers = _header_cells(table)
    key_col = _column_index(headers, "expediente")
    dep_col = _column_index(headers, "dependencia", "juzgado", "tribunal")
    car_col = _column_index(headers, "caratula")
    sit_col = _column_index(headers, "situacion", "estado")
    act_col = _column_index(headers, "ult", "actuacion", "fecha")
    if key_col is None:
        key_col, dep_col, car_col, sit_col, act_col = 0, 1, 2, 3, 4

    candidates: List[NormalizedCaseCandidate] = []
    for position, row in enumerate(_data_rows(table)):
        cells = row.find_all("td", recursive=False) or row.find_all("td")
        key = _split_case_key(_cell(cells, key_col)) or _split_case_key(_text(row))
        if key is None:
            continue
        fre, raw_fre, jurisdiction, number, year = key

        row_index = position
        for a in row.find_all("a", onclick=True):
            match = _ROW_INDEX_IN_ONCLICK.search(a["onclick"])
            if match:
                row_index = int(match.group(1))
                break

        candidates.append(
            NormalizedCaseCandidate(
                fre=fre,
                raw_fre=raw_fre,
                jurisdiction=jurisdiction,
                case_number=number,
                year=year,
                caratula=_cell(cells, car_col) or None,
                dependencia=_cell(cells, dep_col) or None,
                situacion=_cell(cells, sit_col) or None,
                last_action_date=_cell(cells, act_col) or None,
                row_index=row_index,
                page=page,
            )
        )
    return Parsed("search_results", candidates, probe)


# ── Actuaciones ──────────────────────────────────────────────────────────────


def parse_movements(markup: str, case_key: Optional[str] = None) -> ParseResult:
    soup = BeautifulSoup(markup or "", "html.parser")
    table, probe = _find_table(
        soup,
        ["actuaciones", "movimientos"],
        [["fecha"], ["detalle", "descripcion"], ["oficina", "tipo", "fs"]],
    )
    if table is None:
        return NotFound("movements", "actuaciones table not found")

    fre = normalize_case_key(case_key) if case_key else None
    headers = _header_cells(table)
    date_col = _column_index(headers, "fecha")
    type_col = _column_index(headers, "tipo")
    desc_col = _column_index(headers, "detalle", "descripcion")

    movements: List[NormalizedMovement] = []
    seen = set()
    for row in _data_rows(table):
        cells = row.find_all("td", recursive=False) or row.find_all("td")
        date = _cell(cells, date_col)
        kind = _cell(cells, type_col)
        detail = _cell(cells, desc_col)
        if kind and detail and kind.lower() not in detail.lower():
            description = f"{kind} - {detail}"
        else:
            description = detail or kind
        if not date or not description:
            continue

        movement_id = _portal_row_id(row) or stable_id(fre, date, description)
        if movement_id in seen:
            continue
        seen.add(movement_id)

        doc_ref = _doc_ref(row)
        movements.append(
            NormalizedMovement(
                movement_id=movement_id,
                fre=fre,
                date=date,
                description=description,
                has_document=doc_ref is not None,
                document_source="actuaciones",
                doc_ref=doc_ref,
                raw_html=_raw(row),
            )
        )
    return Parsed("movements", movements, probe)


# ── Doc. digitales ───────────────────────────────────────────────────────────


def parse_digital_documents(markup: str, case_key: Optional[str] = None) -> ParseResult:
    soup = BeautifulSoup(markup or "", "html.parser")
    table, probe = _find_table(
        soup,
        ["docDigital", "documentosDigitales", "digitales"],
        [["fecha"], ["documento", "descripcion", "titulo"]],
    )
    if table is None:
        return NotFound("digital_documents", "doc. digitales table not found")

    fre = normalize_case_key(case_key) if case_key else None
    headers = _header_cells(table)
    date_col = _column_index(headers, "fecha")
    desc_col = _column_index(headers, "descripcion", "documento", "titulo", "tipo")

    documents: List[NormalizedDigitalDocument] = []
    seen = set()
    for row in _data_rows(table):
        cells = row.find_all("td", recursive=False) or row.find_all("td")
        date = _cell(cells, date_col)
        description = _cell(cells, desc_col)
        if not date or not description:
            continue
        doc_id = _portal_row_id(row) or stable_id(fre, date, description)
        if doc_id in seen:
            continue
        seen.add(doc_id)
        documents.append(
            NormalizedDigitalDocument(
                doc_id=doc_id,
                fre=fre,
                date=date,
                description=description,
                doc_ref=_doc_ref(row),
                raw_html=_raw(row),
            )
        )
    return Parsed("digital_documents", documents, probe)


# ── Intervinientes ───────────────────────────────────────────────────────────


def parse_participants(markup: str, case_key: Optional[str] = None) -> ParseResult:
    soup = BeautifulSoup(markup or "", "html.parser")
    table, probe = _find_table(
        soup,
        ["intervinientes", "participantes"],
        [["nombre"], ["tipo", "rol", "parte"]],
    )
    if table is None:
        return NotFound("participants", "intervinientes table not found")

    fre = normalize_case_key(case_key) if case_key else ""
    headers = _header_cells(table)
    role_col = _column_index(headers, "tipo", "rol", "parte")
    name_col = _column_index(headers, "nombre")

    participants: List[NormalizedParticipant] = []
    seen = set()
    for row in _data_rows(table):
        cells = row.find_all("td", recursive=False) or row.find_all("td")
        role = _cell(cells, role_col)
        name = _cell(cells, name_col)
        if not name:
            continue
        rest = [
            _text(c) for i, c in enumerate(cells)
            if i not in (role_col, name_col) and _text(c)
        ]
        details = " | ".join(rest) or None
        participant_id = _portal_row_id(row) or stable_id(fre, role.upper(), name.upper())
        if participant_id in seen:
            continue
        seen.add(participant_id)
        participants.append(
            NormalizedParticipant(
                participant_id=participant_id,
                role=role,
                name=name,
                details=details,
                raw_html=_raw(row),
            )
        )
    return Parsed("participants", participants, probe)


# ── Recursos ─────────────────────────────────────────────────────────────────


def parse_appeals(markup: str, case_key: Optional[str] = None) -> ParseResult:
    soup = BeautifulSoup(markup or "", "html.parser")
    table, probe = _find_table(soup, ["recursos"], [["recurso", "tipo"], ["fecha", "estado"]])
    if table is None:
        return NotFound("appeals", "recursos table not found")

    fre = normalize_case_key(case_key) if case_key else ""
    headers = _header_cells(table)
    type_col = _column_index(headers, "recurso", "tipo")
    date_col = _column_index(headers, "fecha")
    status_col = _column_index(headers, "estado", "situacion")
    court_col = _column_index(headers, "tribunal", "oficina", "dependencia", "camara")
    desc_col = _column_index(headers, "descripcion", "detalle", "observ")

    appeals: List[NormalizedAppeal] = []
    seen = set()
    for row in _data_rows(table):
        cells = row.find_all("td", recursive=False) or row.find_all("td")
        appeal_type = _cell(cells, type_col)
        if not appeal_type:
            continue
        filed_date = _cell(cells, date_col) or None
        court = _cell(cells, court_col) or None
        appeal_id = _portal_row_id(row) or stable_id(fre, appeal_type, filed_date, court)
        if appeal_id in seen:
            continue
        seen.add(appeal_id)
        appeals.append(
            NormalizedAppeal(
                appeal_id=appeal_id,
                appeal_type=appeal_type,
                filed_date=filed_date,
                status=_cell(cells, status_col) or None,
                court=court,
                description=_cell(cells, desc_col) or None,
                raw_html=_raw(row),
            )
        )
    return Parsed("appeals", appeals, probe)


# ── Vinculados ───────────────────────────────────────────────────────────────


def parse_related_cases(markup: str, case_key: Optional[str] = None) -> ParseResult:
    soup = BeautifulSoup(markup or "", "html.parser")
    table, probe = _find_table(
        soup,
        ["vinculados", "conexos"],
        [["expediente"], ["relacion", "vinculo", "tipo"]],
    )
    if table is None:
        return NotFound("related_cases", "vinculados table not found")

    fre = normalize_case_key(case_key) if case_key else ""
    headers = _header_cells(table)
    key_col = _column_index(headers, "expediente")
    rel_col = _column_index(headers, "relacion", "vinculo", "tipo")
    car_col = _column_index(headers, "caratula")
    court_col = _column_index(headers, "dependencia", "tribunal", "juzgado", "oficina")

    related: List[NormalizedRelatedCase] = []
    seen = set()
    for row in _data_rows(table):
        cells = row.find_all("td", recursive=False) or row.find_all("td")
        key = _split_case_key(_cell(cells, key_col)) or _split_case_key(_text(row))
        if key is None:
            continue
        related_fre, raw_expediente, jurisdiction, number, year = key
        relationship_type = _cell(cells, rel_col)
        relation_id = _portal_row_id(row) or stable_id(fre, related_fre, relationship_type)
        if relation_id in seen:
            continue
        seen.add(relation_id)
        related.append(
            NormalizedRelatedCase(
                relation_id=relation_id,
                related_fre=related_fre,
                raw_expediente=raw_expediente,
                jurisdiction=jurisdiction,
                case_number=number,
                year=year,
                relationship_type=relationship_type,
                caratula=_cell(cells, car_col) or None,
                court=_cell(cells, court_col) or None,
                raw_html=_raw(row),
            )
        )
    return Parsed("related_cases", related, probe)


# ── Pagination ───────────────────────────────────────────────────────────────


def extract_page_numbers(markup: str) -> List[int]:
    """Numeric labels of the first ``ul.pagination`` on the page, in order."""
    soup = BeautifulSoup(markup or "", "html.parser")
    paginator = soup.select_one("ul.pagination")
    if paginator is None:
        return []
    numbers: List[int] = []
    for li in paginator.find_all("li"):
        text = _text(li)
        if text.isdigit():
            numbers.append(int(text))
    return numbers


def active_page_number(markup: str) -> Optional[int]:
    soup = BeautifulSoup(markup or "", "html.parser")
    active = soup.select_one("ul.pagination li.active")
    text = _text(active)
    return int(text) if text.isdigit() else None


def section_summary(results: Dict[str, ParseResult]) -> Dict[str, Any]:
    """Probe used (or reason missing) per section; logged with each scrape."""
    summary: Dict[str, Any] = {}
    for name, result in results.items():
        if isinstance(result, Parsed):
            summary[name] = {"probe": result.probe, "count": len(result.records)}
        else:
            summary[name] = {"not_found": result.reason}
    return summary
