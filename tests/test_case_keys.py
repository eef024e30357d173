"""
Case key normalization and PJN role mapping.
"""

from __future__ import annotations

import pytest

from pjn_sync.utils.case_keys import (
    JURISDICTION_VALUE_MAP,
    build_case_key,
    extract_case_key,
    normalize_case_key,
    parse_case_key,
    safe_key,
    to_portal_format,
)
from pjn_sync.utils.role_mapping import (
    ACTOR_SIDE,
    JUDICIAL,
    NEUTRAL,
    get_roles_by_side,
    is_attorney_role,
    is_judicial_role,
    is_party_role,
    map_pjn_role,
)


class TestCaseKeys:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("fre 007767 / 2025", "FRE-7767/2025"),
            ("FRE-3852/2020", "FRE-3852/2020"),
            ("FRE 3852/2020/TO2", "FRE-3852/2020/TO2"),
            ("  civ  123/2019 ", "CIV-123/2019"),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize_case_key(raw) == expected

    def test_normalize_is_idempotent(self) -> None:
        once = normalize_case_key("fre 0001/2020/ca1")
        assert normalize_case_key(once) == once

    def test_non_keys_are_only_cleaned(self) -> None:
        assert normalize_case_key("  sin   numero ") == "SIN NUMERO"

    def test_base_ignores_instance_suffix(self) -> None:
        assert parse_case_key("FRE 3852/2020/TO2").base == parse_case_key("FRE-3852/2020").base

    def test_build_rejects_unknown_jurisdiction(self) -> None:
        assert build_case_key("XXX", "1", 2020) is None
        assert build_case_key("fre", "0042", 2021) == "FRE-42/2021"

    def test_portal_and_storage_formats(self) -> None:
        assert to_portal_format("FRE-1/2020") == "FRE 1/2020"
        assert safe_key("FRE 3852/2020/TO2") == "FRE-3852_2020_TO2"

    def test_extract_from_event_text(self) -> None:
        text = "Notificación electrónica en FRE 3852/2020/CA1 - cédula"
        assert extract_case_key(text) == "FRE-3852/2020/CA1"
        assert extract_case_key("sin expediente") is None

    def test_camara_values_follow_dropdown_order(self) -> None:
        assert JURISDICTION_VALUE_MAP["CSJ"] == "0"
        assert JURISDICTION_VALUE_MAP["CIV"] == "1"


class TestRoleMapping:
    def test_case_and_whitespace_insensitive(self) -> None:
        mapping = map_pjn_role("  parte actora ")
        assert mapping.local_role == "ACTOR"
        assert mapping.side == ACTOR_SIDE
        assert mapping.raw_role == "  parte actora "

    def test_unknown_label_falls_back_to_other(self) -> None:
        mapping = map_pjn_role("MEDIADOR")
        assert mapping.local_role == "OTRO"
        assert mapping.side == NEUTRAL

    def test_role_families(self) -> None:
        assert is_party_role(map_pjn_role("DEMANDADA").local_role)
        assert is_attorney_role(map_pjn_role("LETRADO ACTOR").local_role)
        assert is_judicial_role(map_pjn_role("MINISTERIO PUBLICO FISCAL").local_role)
        assert not is_party_role(map_pjn_role("PERITO").local_role)

    def test_roles_by_side(self) -> None:
        judicial = get_roles_by_side(JUDICIAL)
        assert "JUEZ" in judicial
        assert "ACTOR" not in judicial
