"""
Selecting one expediente among the search results.
"""

from __future__ import annotations

from pjn_sync.db.schemas import NormalizedCaseCandidate
from pjn_sync.services.candidate_selector import (
    EXACT,
    LOOSE,
    NONE,
    select_candidate,
    to_search_response,
)


def candidate(fre: str, row_index: int = 0, page: int = 1, caratula: str = "GOMEZ c/ ESTADO") -> NormalizedCaseCandidate:
    jurisdiction, _, rest = fre.partition("-")
    number, _, tail = rest.partition("/")
    return NormalizedCaseCandidate(
        fre=fre,
        raw_fre=fre.replace("-", " "),
        jurisdiction=jurisdiction,
        case_number=number,
        year=tail.split("/")[0],
        caratula=caratula,
        row_index=row_index,
        page=page,
    )


class TestSelectCandidate:
    def test_single_exact_match_is_selected(self) -> None:
        rows = [candidate("FRE-3852/2020/TO1", 0), candidate("FRE-3852/2020", 1)]

        selection = select_candidate("FRE-3852/2020", rows)

        assert selection.strategy == EXACT
        assert selection.selected.row_index == 1
        assert selection.exact_matches_count == 1

    def test_target_is_normalized_before_comparing(self) -> None:
        selection = select_candidate("fre 03852 / 2020", [candidate("FRE-3852/2020")])
        assert selection.strategy == EXACT

    def test_duplicate_exact_matches_select_nothing(self) -> None:
        rows = [candidate("FRE-3852/2020", 0), candidate("FRE-3852/2020", 1)]

        selection = select_candidate("FRE-3852/2020", rows)

        assert selection.selected is None
        assert selection.strategy == NONE
        assert selection.exact_matches_count == 2

    def test_single_loose_match_ignores_suffix(self) -> None:
        rows = [candidate("FRE-3852/2020/TO2", 3), candidate("FRE-999/2020", 4)]

        selection = select_candidate("FRE-3852/2020", rows)

        assert selection.strategy == LOOSE
        assert selection.selected.row_index == 3
        assert selection.loose_matches_count == 1

    def test_ambiguous_loose_matches_select_nothing(self) -> None:
        rows = [candidate("FRE-3852/2020/TO1"), candidate("FRE-3852/2020/CA1")]

        selection = select_candidate("FRE-3852/2020", rows)

        assert selection.selected is None
        assert selection.loose_matches_count == 2

    def test_target_built_from_parts(self) -> None:
        selection = select_candidate(None, [candidate("FRE-3852/2020")], "FRE", "3852", 2020)
        assert selection.strategy == EXACT

    def test_no_candidates(self) -> None:
        selection = select_candidate("FRE-3852/2020", [])
        assert selection.selected is None
        assert selection.strategy == NONE


class TestSearchResponse:
    def test_empty_list_is_not_found(self) -> None:
        body = to_search_response("FRE-1/2020", [], select_candidate("FRE-1/2020", []))
        assert body == {"status": "NOT_FOUND", "fre": "FRE-1/2020", "candidates": []}

    def test_selected_candidate_adds_metadata(self) -> None:
        rows = [candidate("FRE-3852/2020/TO1", row_index=7, page=2)]

        body = to_search_response("FRE-3852/2020", rows, select_candidate("FRE-3852/2020", rows))

        assert body["status"] == "OK"
        assert body["fre"] == "FRE-3852/2020/TO1"
        assert body["case_metadata"]["row_index"] == 7
        assert body["case_metadata"]["page"] == 2
        assert body["selection"]["strategy"] == LOOSE

    def test_ambiguous_list_is_ok_without_metadata(self) -> None:
        rows = [candidate("FRE-3852/2020/TO1"), candidate("FRE-3852/2020/CA1")]

        body = to_search_response("FRE-3852/2020", rows, select_candidate("FRE-3852/2020", rows))

        assert body["status"] == "OK"
        assert "case_metadata" not in body
        assert len(body["candidates"]) == 2
