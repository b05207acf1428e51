"""
Tests for name folding, hashing and extension helpers.
"""
import hashlib
import random

from utils.helpers import (
    format_bytes, hash_content, is_likely_url, resolve_extension,
    sanitize_key_segment, shuffled, to_friendly_segment
)


class TestIsLikelyUrl:
    def test_http_and_https(self):
        assert is_likely_url("http://h/a.png")
        assert is_likely_url("HTTPS://h/a.png")

    def test_rejects_other_values(self):
        assert not is_likely_url("ftp://h/a.png")
        assert not is_likely_url("/relative/a.png")
        assert not is_likely_url("")
        assert not is_likely_url(None)
        assert not is_likely_url(42)


class TestFriendlySegment:
    def test_folds_spaces_and_punctuation(self):
        assert to_friendly_segment("Trouble Brewing!", "x") == "Trouble_Brewing"

    def test_strips_accents(self):
        assert to_friendly_segment("Élodie's Café", "x") == "Elodie_s_Cafe"

    def test_collapses_and_trims_underscores(self):
        assert to_friendly_segment("  --a   b--  ", "x") == "a_b"

    def test_fallback(self):
        assert to_friendly_segment("!!!", "Custom_Script") == "Custom_Script"
        assert to_friendly_segment("", "fallback") == "fallback"
        assert to_friendly_segment(None, "fallback") == "fallback"


def test_sanitize_key_segment_keeps_word_dot_dash():
    assert sanitize_key_segment("Imp_Evil-1.v2") == "Imp_Evil-1.v2"
    assert sanitize_key_segment("a b/c") == "a_b_c"


def test_hash_content_is_sha256_prefix():
    expected = hashlib.sha256(b"payload").hexdigest()[:16]
    assert hash_content(b"payload") == expected
    assert hash_content("payload") == expected
    assert len(expected) == 16


class TestResolveExtension:
    def test_url_extension_wins(self):
        assert resolve_extension("https://h/a/imp.webp?x=1", "image/png") == "webp"

    def test_content_type_fallback(self):
        assert resolve_extension("https://h/a/imp", "image/png; charset=binary") == "png"

    def test_bin_when_unknown(self):
        assert resolve_extension("https://h/a/imp", None) == "bin"
        assert resolve_extension("https://h/a/imp", "application/x-unknown-thing") == "bin"


def test_shuffled_leaves_input_untouched():
    items = [1, 2, 3, 4, 5]
    result = shuffled(items, random.Random(3))
    assert items == [1, 2, 3, 4, 5]
    assert sorted(result) == items


def test_format_bytes():
    assert format_bytes(512) == "512.0 B"
    assert format_bytes(2048) == "2.0 KB"
