"""Unit tests for scan normalization, AAMVA parsing and name matching."""

import datetime as dt

import pytest

from checkin_core.utils.names import (
    jaro_winkler,
    names_equal,
    normalize_name,
    score_names,
    split_name,
)
from checkin_core.utils.scan import (
    compute_scan_hash,
    is_state_id_scan,
    normalize_scan_text,
    parse_aamva,
    parse_aamva_date,
    parse_membership_number,
)


class TestNormalizeScanText:
    def test_crlf_and_cr_become_lf(self) -> None:
        assert normalize_scan_text("a\r\nb\rc") == "a\nb\nc"

    def test_collapses_spaces_and_tabs_per_line(self) -> None:
        assert normalize_scan_text("  DCS  DOE \t\nDAC\tJOHN  ") == "DCS DOE\nDAC JOHN"

    def test_hash_is_stable_for_equivalent_input(self) -> None:
        first = compute_scan_hash(normalize_scan_text("DCSDOE\r\nDACJOHN  "))
        second = compute_scan_hash(normalize_scan_text("DCSDOE\nDACJOHN"))
        assert first == second
        assert len(first) == 64


class TestStateIdDetection:
    @pytest.mark.parametrize(
        "text",
        ["@\nANSI 636014", "header AAMVA", "xx\nDCSDOE", "ANSI 6360\nDAQ123"],
    )
    def test_detects_state_ids(self, text: str) -> None:
        assert is_state_id_scan(text)

    def test_membership_barcode_is_not_state_id(self) -> None:
        assert not is_state_id_scan("MEMBER 700123")


class TestParseAamva:
    def test_parses_newline_separated_payload(self, aamva_scan: str) -> None:
        extracted = parse_aamva(normalize_scan_text(aamva_scan))

        assert extracted.first_name == "John"
        assert extracted.last_name == "Doe"
        assert extracted.dob == dt.date(1980, 1, 15)
        assert extracted.expiration_date == dt.date(2030, 1, 15)
        assert extracted.id_number == "D1234567"
        assert extracted.jurisdiction == "CA"
        assert extracted.display_name == "John Doe"

    def test_parses_single_line_payload(self) -> None:
        extracted = parse_aamva("@ANSI 636014DLDCSSMITHDACJANEDBB01021990DAQS7654321")

        assert extracted.last_name == "Smith"
        assert extracted.first_name == "Jane"
        assert extracted.dob == dt.date(1990, 1, 2)
        assert extracted.id_number == "S7654321"

    def test_falls_back_to_daa_last_first(self) -> None:
        extracted = parse_aamva("@\nDAAROE,RICHARD,Q\nDBB19751231")

        assert extracted.last_name == "Roe"
        assert extracted.first_name == "Richard"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("19800115", dt.date(1980, 1, 15)),
            ("01151980", dt.date(1980, 1, 15)),
            ("1980", None),
            ("20241340", None),
            (None, None),
        ],
    )
    def test_parse_dates(self, value: str | None, expected: dt.date | None) -> None:
        assert parse_aamva_date(value) == expected


class TestMembershipNumber:
    def test_first_digit_run(self) -> None:
        assert parse_membership_number("MEMBER 700123 X9") == "700123"

    def test_no_match(self) -> None:
        assert parse_membership_number("NO DIGITS") is None

    def test_custom_pattern(self) -> None:
        assert parse_membership_number("ID:M-42", pattern=r"M-\d+") == "M-42"


class TestNames:
    def test_normalize_drops_suffix_and_punctuation(self) -> None:
        assert normalize_name("O'Brien, Jr.") == "o brien"

    def test_split_name(self) -> None:
        assert split_name("Mary Ann Smith") == ("mary", "smith")
        assert split_name("Cher") == ("cher", "")
        assert split_name(None) == ("", "")

    def test_jaro_winkler_reference_value(self) -> None:
        assert jaro_winkler("martha", "marhta") == pytest.approx(0.9611, abs=1e-4)
        assert jaro_winkler("same", "same") == 1.0
        assert jaro_winkler("", "abc") == 0.0

    def test_close_spelling_passes(self) -> None:
        assert score_names("Jon", "Doe", "John", "Doe").passes

    def test_swapped_order_passes(self) -> None:
        score = score_names("John", "Doe", "Doe", "John")
        assert score.first == 1.0
        assert score.last == 1.0

    def test_different_person_fails(self) -> None:
        assert not score_names("John", "Doe", "Maria", "Garcia").passes

    def test_names_equal_is_case_insensitive(self) -> None:
        assert names_equal("JOHN", "DOE", "john", "doe")
        assert not names_equal("John", "", "John", "")
