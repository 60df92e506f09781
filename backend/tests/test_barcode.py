"""Tests for barcode normalization."""

import pytest

from shelfscore.pipeline.barcode import canonical, clean, variants


class TestClean:
    def test_strips_non_digits(self):
        assert clean(" 0123-4567 8905 ") == "012345678905"

    def test_none_safe(self):
        assert clean("") == ""


class TestVariants:
    """Lookup variants come back in raw → EAN-13 → UPC-12 order."""

    def test_upc12_input(self):
        assert variants("012345678905") == ("012345678905", "0012345678905")

    def test_short_code_padded(self):
        assert variants("123") == ("123", "0000000000123", "000000000123")

    def test_ean13_with_leading_zero_yields_upc12(self):
        assert variants("0012345678905") == ("0012345678905", "012345678905")

    def test_full_ean13_has_no_upc12(self):
        """No padding zero means there is no UPC-12 form."""
        assert variants("5012345678900") == ("5012345678900",)

    def test_no_duplicates(self):
        result = variants("0012345678905")
        assert len(result) == len(set(result))

    @pytest.mark.parametrize("raw", ["", "abc", "   ", "12345678901234"])
    def test_unusable_input(self, raw):
        assert variants(raw) == ()


class TestCanonical:
    def test_pads_to_ean13(self):
        assert canonical("012345678905") == "0012345678905"

    def test_dashes_ignored(self):
        assert canonical("0-12345-67890-5") == "0012345678905"

    def test_invalid_returns_none(self):
        assert canonical("not a code") is None


class TestVariantsByLength:
    """Every digit string of length 1-13, with and without a leading zero."""

    @pytest.mark.parametrize("length", range(1, 14))
    @pytest.mark.parametrize("lead", ["0", "7"])
    def test_shape(self, length, lead):
        raw = (lead + "123456789012")[:length]
        result = variants(raw)

        assert 1 <= len(result) <= 3
        assert len(set(result)) == len(result)
        assert all(code.isdigit() for code in result)
        assert result[0] == raw

        ean13 = raw.zfill(13)
        assert len(ean13) == 13
        expected = [raw, ean13] + ([ean13[1:]] if ean13.startswith("0") else [])
        assert result == tuple(dict.fromkeys(expected))
