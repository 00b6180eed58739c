from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from attachment_archiver.naming import (
    canonical_filename,
    ledger_key,
    parse_email_date,
    parse_sender,
    sanitize_filename,
    split_extension,
    truncate,
)

NOW = datetime(2025, 6, 1, tzinfo=UTC)


@pytest.mark.parametrize(
    "header, expected",
    [
        ('"John Smith" <john.smith@example.com>', "Smith"),
        ("John Smith <john@example.com>", "Smith"),
        ('"Doe, John" <jdoe@example.com>', "Doe"),
        ("Doe, John <jdoe@example.com>", "Doe"),
        ("Mary Ann van Dyke <m@example.com>", "Dyke"),
        ("john.doe@example.com", "doe"),
        ("<first_last@example.com>", "last"),
        ("claims-dept-west@example.com", "west"),
        ("=?utf-8?q?Ren=C3=A9_M=C3=BCller?= <rene@example.com>", "Müller"),
    ],
)
def test_parse_sender_last_name(header, expected):
    assert parse_sender(header).last_name == expected


def test_parse_sender_extracts_lowercased_address():
    info = parse_sender('"Jane Roe" <Jane.Roe@Example.COM>')
    assert info.email == "jane.roe@example.com"
    assert info.name == "Jane Roe"


def test_parse_sender_strips_unsafe_characters():
    assert parse_sender('"A/B Co" <x@example.com>').last_name == "Co"
    assert parse_sender('"Smith?" <x@example.com>').last_name == "Smith"


def test_parse_sender_empty_header():
    info = parse_sender("")
    assert info.last_name is None
    assert info.email is None


def test_canonical_filename_basic():
    assert canonical_filename("03", "Smith", "invoice.pdf") == "03_Smith_invoice.pdf"


def test_canonical_filename_sanitizes_base_and_sender():
    name = canonical_filename("3", "van Dyke", "My Claim: form v2.final.PDF")
    assert name == "03_van_Dyke_My_Claim_form_v2_final.PDF"


def test_canonical_filename_is_ascii():
    name = canonical_filename("07", "Müller", "Überweisung Ärztin.pdf")
    assert name == "07_Muller_Uberweisung_Arztin.pdf"
    assert name.isascii()


def test_canonical_filename_falls_back_for_empty_parts():
    assert canonical_filename("01", None, ".pdf") == "01_Unknown_pdf"
    assert canonical_filename("01", "", "???.pdf") == "01_Unknown_unnamed.pdf"


def test_canonical_filename_truncates_components():
    name = canonical_filename("12", "S" * 40, "b" * 80 + ".xlsx")
    assert name == "12_" + "S" * 17 + "..._" + "b" * 47 + "....xlsx"


def test_canonical_filename_marks_cut_base_name():
    assert canonical_filename("03", "Smith", "a" * 60 + ".pdf") == "03_Smith_" + "a" * 47 + "....pdf"
    assert canonical_filename("03", "Smith", "a" * 50 + ".pdf") == "03_Smith_" + "a" * 50 + ".pdf"


def test_canonical_filename_total_bound_limits_base():
    name = canonical_filename("01", "Smith", "x" * 60 + ".pdf", max_total_length=30)
    assert name == "01_Smith_" + "x" * 14 + "....pdf"
    assert len(name) == 30


@pytest.mark.parametrize(
    "value, max_length, expected",
    [
        ("abcdef", 10, "abcdef"),
        ("abcdef", 6, "abcdef"),
        ("abcdefgh", 6, "abc..."),
        ("abcdef", 3, "abc"),
        ("abcdef", 0, ""),
        ("", 5, ""),
    ],
)
def test_truncate(value, max_length, expected):
    assert truncate(value, max_length) == expected


@pytest.mark.parametrize(
    "sender, original",
    [
        ("Smith", "a" * 500 + ".pdf"),
        ("x" * 300, "report.tar.gz"),
        ("Smith", "no_extension_" + "z" * 200),
        ("Ng", "weird." + "e" * 40),
        ("Li", "scan." + "jpeg"),
        ("", "日本語のファイル名.docx"),
    ],
)
def test_canonical_filename_bound_and_extension(sender, original):
    name = canonical_filename("05", sender, original)
    _, extension = split_extension(original)
    assert len(name) <= 100
    assert name.endswith(extension)


def test_long_non_alphanumeric_suffix_is_not_an_extension():
    assert split_extension("archive." + "e" * 40) == ("archive." + "e" * 40, "")
    assert split_extension(".hidden") == (".hidden", "")
    assert split_extension("photo.jpeg") == ("photo", ".jpeg")


def test_sanitize_filename_collapses_separators():
    assert sanitize_filename("  a..b  c__d ") == "a_b_c_d"


@pytest.mark.parametrize(
    "header, year, month",
    [
        ("Fri, 15 Mar 2024 10:00:00 +0000", "2024", "03"),
        ("Tue, 1 Oct 2024 23:30:00 -0700 (PDT)", "2024", "10"),
        ("2023-07-04T08:00:00Z", "2023", "07"),
        ("2022-11-30", "2022", "11"),
        ("received on 2021-2-3 somewhere", "2021", "02"),
    ],
)
def test_parse_email_date(header, year, month):
    parsed = parse_email_date(header, now=NOW)
    assert parsed is not None
    assert (parsed.year, parsed.month) == (year, month)


def test_date_range_lower_boundary():
    assert parse_email_date("1989-12-31", now=NOW) is None
    parsed = parse_email_date("1990-01-01", now=NOW)
    assert parsed is not None
    assert parsed.year == "1990"


def test_date_more_than_ten_years_ahead_is_rejected():
    far_future = (NOW + timedelta(days=11 * 365)).strftime("%Y-%m-%d")
    near_future = (NOW + timedelta(days=9 * 365)).strftime("%Y-%m-%d")
    assert parse_email_date(far_future, now=NOW) is None
    assert parse_email_date(near_future, now=NOW) is not None


@pytest.mark.parametrize("header", ["", "   ", "not a date", "2024-13-45", None])
def test_unparseable_dates(header):
    assert parse_email_date(header, now=NOW) is None


def test_ledger_key():
    assert ledger_key("2024", "03_Smith_invoice.pdf") == "2024/03_Smith_invoice.pdf"
