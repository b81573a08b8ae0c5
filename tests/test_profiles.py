"""Unit tests for printer model profiles"""
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from peripage_profiles import A6, A6P, A40, A40P, PrinterProfile, get_profile


class TestProfiles:
    """Tests for derived widths"""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "profile, row_width, row_bytes, row_characters",
        [(A6, 384, 48, 32), (A6P, 576, 72, 48), (A40, 1728, 216, 144), (A40P, 1848, 231, 154)],
    )
    def test_known_models(self, profile, row_width, row_bytes, row_characters):
        assert profile.row_width == row_width
        assert profile.row_bytes == row_bytes
        assert profile.row_characters == row_characters

    @pytest.mark.unit
    def test_partial_byte_is_truncated(self):
        assert PrinterProfile("odd", 390).row_bytes == 48


class TestGetProfile:
    """Tests for get_profile function"""

    @pytest.mark.unit
    @pytest.mark.parametrize("name", ["A6p", "a6p", "A6+", " a6+ "])
    def test_lookup_variants(self, name):
        assert get_profile(name) is A6P

    @pytest.mark.unit
    def test_unknown_model(self):
        with pytest.raises(ValueError, match="A40p"):
            get_profile("A7")
