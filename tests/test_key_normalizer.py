"""
Tests for email and phone key normalization.
"""
import doctest

import pytest

from api.services import key_normalizer
from api.services.key_normalizer import dedup_key, normalize_email, normalize_phone
from api.services.merge_models import DedupKey

pytestmark = pytest.mark.unit


class TestNormalizeEmail:
    """Tests for normalize_email."""

    def test_trims_and_lowercases(self):
        assert normalize_email("  A@X.com ") == "a@x.com"
        assert normalize_email("Jane.Doe@Example.COM") == "jane.doe@example.com"

    def test_blank_is_none(self):
        assert normalize_email("") is None
        assert normalize_email("   ") is None
        assert normalize_email(None) is None

    def test_does_not_rewrite_local_part(self):
        """Plus tags and dots are kept: matching is exact after trim/lowercase."""
        assert normalize_email("jane+shop@x.com") == "jane+shop@x.com"
        assert normalize_email("j.ane@x.com") != normalize_email("jane@x.com")


class TestNormalizePhone:
    """Tests for normalize_phone."""

    def test_national_number_gets_country_code(self):
        """A single leading 0 is replaced with the configured code."""
        assert normalize_phone("0664 123 4567", "43") == "436641234567"

    def test_strips_formatting(self):
        assert normalize_phone("(0664) 123-45.67", "43") == "436641234567"

    def test_plus_prefix_with_code_is_kept(self):
        assert normalize_phone("+43 664 1234567", "43") == "436641234567"

    def test_double_zero_prefix_is_dropped(self):
        assert normalize_phone("0043 664 1234567", "43") == "436641234567"
        assert normalize_phone("0049 30 123456") == "4930123456"
        assert normalize_phone("0049 30 123456", "43") == "4930123456"

    def test_all_formats_agree(self):
        raws = ["0664 123 4567", "+43 664 123 4567", "0043664 1234567", "436641234567"]
        assert len({normalize_phone(r, "43") for r in raws}) == 1

    def test_without_country_code_digits_are_kept(self):
        assert normalize_phone("0664 123 4567") == "06641234567"
        assert normalize_phone("664-123-4567") == "6641234567"

    def test_with_code_but_no_leading_zero_digits_are_kept(self):
        assert normalize_phone("664 1234567", "43") == "6641234567"

    def test_no_digits_is_none(self):
        assert normalize_phone("") is None
        assert normalize_phone(None) is None
        assert normalize_phone("n/a") is None
        assert normalize_phone("+ ( ) -") is None

    def test_bare_international_prefix_is_none(self):
        assert normalize_phone("00") is None

    def test_is_deterministic(self):
        assert normalize_phone("0664 123 4567", "43") == normalize_phone("0664 123 4567", "43")


class TestDedupKey:
    """Tests for dedup_key."""

    def test_email_key(self):
        assert dedup_key("email", " A@X.com") == DedupKey(kind="email", value="a@x.com")

    def test_phone_key(self):
        assert dedup_key("phone", "0664 123 4567", "43") == DedupKey(kind="phone", value="436641234567")

    def test_blank_values_have_no_key(self):
        assert dedup_key("email", "  ") is None
        assert dedup_key("phone", "--") is None

    def test_same_value_different_kind_differs(self):
        assert dedup_key("email", "123") != dedup_key("phone", "123")

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            dedup_key("name", "Jane")


def test_docstring_examples():
    """The examples in the module's docstrings are accurate."""
    results = doctest.testmod(key_normalizer)
    assert results.attempted > 0
    assert results.failed == 0
