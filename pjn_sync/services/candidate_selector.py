"""
Pick one expediente out of the portal's search results.

Exact key matches win; when there are none, fall back to comparing
(jurisdiction, number, year) and ignoring instance suffixes like ``/TO2``.
Ambiguity on either path selects nothing and lets the caller show the list.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pjn_sync.db.schemas import NormalizedCaseCandidate
from pjn_sync.utils.case_keys import build_case_key, normalize_case_key, parse_case_key

EXACT = "exact"
LOOSE = "loose"
NONE = "none"


@dataclass(frozen=True)
class CandidateSelection:
    selected: Optional[NormalizedCaseCandidate]
    exact_matches_count: int
    loose_matches_count: int
    strategy: str


def _base(value: Optional[str]) -> Optional[Tuple[str, str, str]]:
    parsed = parse_case_key(value)
    return parsed.base if parsed else None


def _candidate_base(candidate: NormalizedCaseCandidate) -> Optional[Tuple[str, str, str]]:
    base = _base(candidate.fre) or _base(candidate.raw_fre)
    if base:
        return base
    if candidate.jurisdiction and candidate.case_number and candidate.year:
        return _base(build_case_key(candidate.jurisdiction, candidate.case_number, candidate.year))
    return None


def select_candidate(
    target_key: Optional[str],
    candidates: List[NormalizedCaseCandidate],
    jurisdiction: Optional[str] = None,
    case_number: Optional[str] = None,
    year: Optional[int | str] = None,
) -> CandidateSelection:
    if not target_key and jurisdiction and case_number:
        target_key = build_case_key(jurisdiction, case_number, year)

    target = normalize_case_key(target_key) if target_key else ""
    exact = [c for c in candidates if target and normalize_case_key(c.fre) == target]
    if len(exact) == 1:
        return CandidateSelection(exact[0], 1, 0, EXACT)
    if len(exact) > 1:
        return CandidateSelection(None, len(exact), 0, NONE)

    target_base = _base(target)
    if target_base is None:
        return CandidateSelection(None, 0, 0, NONE)

    loose = [c for c in candidates if _candidate_base(c) == target_base]
    if len(loose) == 1:
        return CandidateSelection(loose[0], 0, 1, LOOSE)
    return CandidateSelection(None, 0, len(loose), NONE)


def to_search_response(
    fre: str,
    candidates: List[NormalizedCaseCandidate],
    selection: CandidateSelection,
) -> Dict[str, Any]:
    """NOT_FOUND for an empty list; OK otherwise, with case metadata only when one was picked."""
    if not candidates:
        return {"status": "NOT_FOUND", "fre": fre, "candidates": []}

    body: Dict[str, Any] = {
        "status": "OK",
        "fre": fre,
        "cid": None,
        "candidates": [c.model_dump() for c in candidates],
        "selection": {
            "strategy": selection.strategy,
            "exact_matches_count": selection.exact_matches_count,
            "loose_matches_count": selection.loose_matches_count,
        },
    }
    chosen = selection.selected
    if chosen is not None:
        body["fre"] = chosen.fre
        body["case_metadata"] = {
            "row_index": chosen.row_index,
            "page": chosen.page,
            "jurisdiction": chosen.jurisdiction,
            "case_number": chosen.case_number,
            "caratula": chosen.caratula,
        }
    return body
