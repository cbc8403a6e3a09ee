from __future__ import annotations

import pytest

from immo_harvester.scraper.normalize import (
    build_hash,
    clean_text,
    extract_number,
    format_eur,
    is_one_of,
    null_or_empty,
    parse_float,
    parse_int,
    price_per_sqm,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("225.000 € 3.629 €/m²", 225000.0),
        ("2,5 Zimmer", 2.5),
        ("1.234,56 €", 1234.56),
        ("62 m²", 62.0),
        ("Wohnfläche 1.050 m²", 1050.0),
        (350000, 350000.0),
        (73.5, 73.5),
    ],
)
def test_extract_number_handles_german_formatting(raw, expected) -> None:
    assert extract_number(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "Preis auf Anfrage", True])
def test_extract_number_degrades_to_none(raw) -> None:
    assert extract_number(raw) is None


def test_extract_number_is_idempotent() -> None:
    first = extract_number("225.000 €")
    assert extract_number(first) == first


def test_parse_float_and_int() -> None:
    assert parse_float("3,5") == 3.5
    assert parse_float("4") == 4.0
    assert parse_float("n/a") is None
    assert parse_int("1998") == 1998
    assert parse_int("1998.0") == 1998
    assert parse_int("1.990") == 1990
    assert parse_int(" 2.015 ") == 2015
    assert parse_int(1975.0) == 1975
    assert parse_int("Baujahr 1972") == 1972
    assert parse_int("0") is None
    assert parse_int(None) is None


def test_price_per_sqm_only_for_positive_values() -> None:
    assert price_per_sqm(225000, 62) == round(225000 / 62, 2)
    assert price_per_sqm(279000, 73) == 3821.92
    assert price_per_sqm(None, 62) is None
    assert price_per_sqm(225000, None) is None
    assert price_per_sqm(225000, 0) is None
    assert price_per_sqm(-5, 10) is None


def test_is_one_of_matches_substrings() -> None:
    assert is_one_of("Schöne WG-Zimmer in Mitte", ["wg"])
    assert not is_one_of("Schöne WG-Zimmer in Mitte", ["wg"], case_sensitive=True)
    assert is_one_of("Tausch gesucht (a+b)", ["(a+b)"])
    assert not is_one_of(None, ["tausch"])
    assert not is_one_of("Wohnung", ["", "haus"])


def test_build_hash_is_stable_and_skips_empty_parts() -> None:
    assert build_hash("123", "350.000 €") == build_hash("123", "350.000 €")
    assert build_hash("123", None) == build_hash("123")
    assert build_hash("123", "350.000 €") != build_hash("123", "360.000 €")
    assert build_hash(None, "") is None


def test_formatting_helpers() -> None:
    assert format_eur(350000) == "350.000,00 €"
    assert format_eur(None) is None
    assert null_or_empty("") and null_or_empty(None) and not null_or_empty(0)
    assert clean_text("  Berlin,\n  Mitte ") == "Berlin, Mitte"
    assert clean_text("   ") is None
