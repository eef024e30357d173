"""
Identifier parsing, CUIT/CUIL check digits and name normalization.
"""

from __future__ import annotations

import pytest

from pjn_sync.utils.identifier_parser import (
    CUIL,
    CUIT,
    DNI,
    OTHER,
    PASSPORT,
    UNKNOWN,
    cuit_check_digit,
    extract_identifier_from_details,
    extract_identifier_value,
    format_dni,
    is_valid_cuit,
    jaro_winkler_similarity,
    normalize_name,
    parse_identifier,
)


class TestCheckDigit:
    def test_known_valid_cuil(self) -> None:
        assert cuit_check_digit("2012345678") == 6
        assert is_valid_cuit("20123456786")

    def test_known_valid_cuit(self) -> None:
        assert is_valid_cuit("30712345671")

    def test_wrong_check_digit_is_invalid(self) -> None:
        assert not is_valid_cuit("20123456785")

    def test_remainder_one_echoes_the_input_digit(self) -> None:
        # 2*5 + 1*2 = 12, 12 % 11 == 1
        assert is_valid_cuit("20000000017")
        assert is_valid_cuit("20000000013")

    @pytest.mark.parametrize("value", ["", "2012345678", "201234567866", "20-12345678-6"])
    def test_requires_eleven_plain_digits(self, value: str) -> None:
        assert not is_valid_cuit(value)


class TestParseIdentifier:
    def test_formatted_cuil_round_trips_through_its_digits(self) -> None:
        parsed = parse_identifier("20-12345678-6")

        assert parsed.type == CUIL
        assert parsed.number == "20123456786"
        assert parsed.formatted == "20-12345678-6"
        assert parsed.valid is True
        assert parse_identifier(parsed.formatted).number == parsed.number

    def test_company_prefix_is_cuit(self) -> None:
        parsed = parse_identifier("30-71234567-1")
        assert parsed.type == CUIT
        assert parsed.valid is True

    def test_eleven_digits_with_bad_checksum_keep_the_number(self) -> None:
        parsed = parse_identifier("20123456785")
        assert parsed.type == CUIL
        assert parsed.number == "20123456785"
        assert parsed.valid is False

    def test_dotted_dni_is_padded_to_eight_digits(self) -> None:
        parsed = parse_identifier("DNI: 1.234.567")

        assert parsed.type == DNI
        assert parsed.number == "01234567"
        assert parsed.formatted == "1.234.567"
        assert parsed.valid is True

    def test_plain_eight_digit_number_is_dni(self) -> None:
        parsed = parse_identifier("12345678")
        assert parsed.type == DNI
        assert parsed.formatted == "12.345.678"

    def test_explicit_cuit_label_wins_over_prefix(self) -> None:
        assert parse_identifier("CUIT 20-12345678-6").type == CUIT

    def test_passport(self) -> None:
        parsed = parse_identifier("PAS: 123456789")
        assert parsed.type == PASSPORT
        assert parsed.valid is True

    @pytest.mark.parametrize("value", ["LE 1234567", "lc: 1.234.567", "DNI:12345678"])
    def test_libreta_labels_are_dni(self, value) -> None:
        parsed = parse_identifier(value)
        assert parsed.type == DNI
        assert parsed.number.endswith("1234567")

    @pytest.mark.parametrize("value", ["LEGAJO 1234567", "LCD 123", "DNIX 12345678", "PAS 123", "PASAPORTE 123456789"])
    def test_words_that_only_start_like_a_label_are_not_labels(self, value) -> None:
        parsed = parse_identifier(value)
        assert parsed.type == UNKNOWN
        assert parsed.valid is False

    @pytest.mark.parametrize("value", [None, "", "S/D", "s/d", "-"])
    def test_missing_values_are_unknown(self, value) -> None:
        parsed = parse_identifier(value)
        assert parsed.type == UNKNOWN
        assert parsed.valid is False

    def test_short_number_is_other(self) -> None:
        parsed = parse_identifier("12345")
        assert parsed.type == OTHER
        assert parsed.valid is False


class TestDetailsExtraction:
    def test_last_segment_with_digits_wins(self) -> None:
        assert extract_identifier_value("Tomo 12 Folio 34 | CUIT 20-12345678-6") == "CUIT 20-12345678-6"

    def test_placeholder_segments_are_skipped(self) -> None:
        assert extract_identifier_value("DNI 12.345.678 | S/D") == "DNI 12.345.678"

    def test_whole_string_used_without_separators(self) -> None:
        assert extract_identifier_value("DNI 12345678") == "DNI 12345678"

    def test_no_digits_no_identifier(self) -> None:
        assert extract_identifier_value("SIN DATOS") is None
        assert extract_identifier_from_details(None) is None

    def test_parsed_from_details(self) -> None:
        parsed = extract_identifier_from_details("Domicilio constituido | 20-12345678-6")
        assert parsed is not None
        assert parsed.number == "20123456786"


class TestNames:
    def test_prefix_accents_and_punctuation_are_removed(self) -> None:
        assert normalize_name("Dra. María José Pérez-Gómez") == "MARIA JOSE PEREZ GOMEZ"

    def test_empty(self) -> None:
        assert normalize_name(None) == ""

    def test_similarity_bounds(self) -> None:
        assert jaro_winkler_similarity("PEREZ JUAN", "PEREZ JUAN") == 1.0
        assert jaro_winkler_similarity("", "PEREZ") == 0.0
        close = jaro_winkler_similarity("PEREZ JUAN CARLOS", "PEREZ JUAN CARLO")
        assert 0.9 < close < 1.0

    def test_format_dni_strips_leading_zeros(self) -> None:
        assert format_dni("01234567") == "1.234.567"
