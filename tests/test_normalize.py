"""Tests for filename and tag normalization."""

import pytest

from docshelf.normalize import (
    collapse_whitespace,
    display_name_from_path,
    normalize_filename,
    parse_tags,
    storage_path_for,
)


class TestNormalizeFilename:
    def test_spaces_become_underscores_and_pdf_is_appended(self):
        assert normalize_filename("My File") == "My_File.pdf"

    def test_idempotent(self):
        once = normalize_filename("My File")
        assert normalize_filename(once) == once

    @pytest.mark.parametrize("name", [
        "report.pdf",
        "Ünïcode name (final).pdf",
        "../../etc/passwd",
        "weird:name?*",
        "archive.PDF",
        "",
    ])
    def test_idempotent_over_awkward_names(self, name):
        once = normalize_filename(name)
        assert normalize_filename(once) == once

    def test_existing_extension_kept_case_insensitively(self):
        assert normalize_filename("report.pdf") == "report.pdf"
        assert normalize_filename("SCAN.PDF") == "SCAN.PDF"

    def test_other_extension_gets_pdf_suffix(self):
        assert normalize_filename("notes.txt") == "notes.txt.pdf"

    def test_path_separators_cannot_escape_prefix(self):
        assert "/" not in normalize_filename("../../etc/passwd")

    def test_empty_name_has_default(self):
        assert normalize_filename("") == "document.pdf"
        assert normalize_filename("   ") == "document.pdf"


def test_storage_path_for():
    assert storage_path_for("My File") == "uploads/My_File.pdf"
    assert storage_path_for("a.pdf", "inbox") == "inbox/a.pdf"


def test_display_name_from_path():
    assert display_name_from_path("uploads/report.pdf") == "report.pdf"


def test_collapse_whitespace():
    assert collapse_whitespace("  a\n\n b\t c  ") == "a b c"
    assert collapse_whitespace("\n \t") == ""


class TestParseTags:
    def test_comma_separated(self):
        assert parse_tags("x, y") == ("x", "y")

    def test_json_array_string(self):
        assert parse_tags('["x","y"]') == ("x", "y")

    def test_list(self):
        assert parse_tags(["x", "y"]) == ("x", "y")

    def test_all_encodings_agree(self):
        assert set(parse_tags("x, y")) == set(parse_tags('["x","y"]')) == set(parse_tags(["x", "y"])) == {"x", "y"}

    def test_deduplicates_and_trims(self):
        assert parse_tags("a, a, b") == ("a", "b")
        assert parse_tags([" a ", "a", "", "b "]) == ("a", "b")

    def test_keeps_first_seen_order(self):
        assert parse_tags("finance,q3") == ("finance", "q3")

    def test_unparseable_json_is_empty(self):
        assert parse_tags('["x", ') == ()

    def test_json_non_array_is_empty(self):
        assert parse_tags('[{"a": 1}]') == ()
        assert parse_tags(123) == ()

    def test_non_string_list_items_dropped(self):
        assert parse_tags(["x", 3, None, "y"]) == ("x", "y")

    def test_none_and_blank(self):
        assert parse_tags(None) == ()
        assert parse_tags("  ") == ()
        assert parse_tags(" , ,") == ()
