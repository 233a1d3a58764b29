"""Tests for ingestly.services.sanitizer."""

import re

import pytest

from ingestly.services.sanitizer import (
    MAX_FILENAME_LENGTH,
    MAX_TAGS,
    clean_tags,
    replace_extension,
    sanitize_filename,
    sanitize_text_input,
)

_SAFE_NAME = re.compile(r"^[a-z0-9._-]+$")

_HOSTILE_NAMES = [
    "../../etc/passwd",
    "..\\..\\windows\\system32\\cmd.exe",
    "photo\x00.php.jpg",
    "My Holiday Photo (1).JPG",
    "résumé 📷.png",
    "   ",
    "...",
    "",
    "a" * 300 + ".jpeg",
    "b" * 300,
    "-_-.-_-",
    "<script>alert(1)</script>.png",
]


class TestSanitizeFilename:
    def test_lowercases_and_replaces_spaces(self):
        assert sanitize_filename("My Photo.JPG") == "my_photo.jpg"

    def test_strips_path_separators(self):
        assert sanitize_filename("../../etc/passwd") == "etcpasswd"
        assert sanitize_filename("..\\..\\windows\\cmd.exe") == "windowscmd.exe"

    def test_removes_null_bytes(self):
        assert "\x00" not in sanitize_filename("photo\x00.php.jpg")

    def test_collapses_underscore_runs(self):
        assert sanitize_filename("a   b!!!c.png") == "a_b_c.png"

    def test_trims_edge_characters(self):
        assert sanitize_filename("__.hidden-.png-") == "hidden-.png"

    def test_truncation_keeps_extension(self):
        result = sanitize_filename("a" * 300 + ".jpeg")
        assert len(result) == MAX_FILENAME_LENGTH
        assert result.endswith(".jpeg")

    def test_truncates_names_without_extension(self):
        assert len(sanitize_filename("b" * 300)) == MAX_FILENAME_LENGTH

    def test_empty_result_gets_random_name(self):
        result = sanitize_filename("...")
        assert re.fullmatch(r"upload_[0-9a-f]{16}\.jpg", result)

    def test_random_names_differ(self):
        assert sanitize_filename("") != sanitize_filename("")

    @pytest.mark.parametrize("name", _HOSTILE_NAMES)
    def test_output_is_always_safe(self, name):
        result = sanitize_filename(name)
        assert _SAFE_NAME.match(result)
        assert len(result) <= MAX_FILENAME_LENGTH

    @pytest.mark.parametrize("name", [n for n in _HOSTILE_NAMES if n.strip(" .")])
    def test_is_idempotent(self, name):
        once = sanitize_filename(name)
        assert sanitize_filename(once) == once


class TestReplaceExtension:
    def test_swaps_extension(self):
        assert replace_extension("anim.gif", "png") == "anim.png"

    def test_adds_extension_when_missing(self):
        assert replace_extension("anim", "png") == "anim.png"


class TestSanitizeTextInput:
    @pytest.mark.parametrize(
        "text",
        [
            "<script>alert(1)</script>",
            "< SCRIPT src=x>",
            "javascript:alert(1)",
            "VBScript: msgbox",
            '<img src=x onerror="alert(1)">',
            "onclick = steal()",
            "data:text/html;base64,PHNjcmlwdD4=",
            "../../secret",
            "..\\windows",
            "%2e%2e%2fetc",
            "nul\x00byte",
            "encoded%00null",
        ],
    )
    def test_rejects_dangerous_content(self, text):
        check = sanitize_text_input(text, 1000)
        assert not check.valid
        assert check.error == "Input contains potentially malicious content"

    def test_rejects_overlong_text(self):
        check = sanitize_text_input("x" * 501, 500)
        assert not check.valid
        assert check.error == "Input exceeds maximum length of 500 characters"

    def test_accepts_plain_text(self):
        assert sanitize_text_input("A red bicycle leaning on a wall.", 500).valid

    def test_accepts_empty(self):
        assert sanitize_text_input(None).valid
        assert sanitize_text_input("").valid

    def test_ordinary_words_starting_with_on_are_fine(self):
        assert sanitize_text_input("online store, one-off deals", 500).valid


class TestCleanTags:
    def test_normalises_and_dedupes(self):
        assert clean_tags(["Logo", " logo ", "Hero  Image"]) == ["logo", "hero image"]

    def test_drops_dangerous_and_overlong_tags(self):
        assert clean_tags(["ok", "<script>", "x" * 51, ""]) == ["ok"]

    def test_drops_non_strings(self):
        assert clean_tags(["ok", None, 3]) == ["ok"]

    def test_caps_tag_count(self):
        assert len(clean_tags([f"tag{i}" for i in range(50)])) == MAX_TAGS
