"""
Tests for the BDI markup calculator.

Covers:
- Applying and removing markup with money rounding
- BDI validation
- Price authority resolution
- Typed price edits
"""

from decimal import Decimal

import pytest

from tests.builders import priced
from wbs_engines.markup import (
    apply_markup,
    apply_price_edit,
    coerce_bdi,
    markup_factor,
    remove_markup,
    resolve_unit_prices,
)
from wbs_kernel.domain.diagnostics import DiagnosticCode, codes_of
from wbs_kernel.domain.line_item import EditedExMarkup, EditedWithMarkup, PriceAuthority
from wbs_kernel.exceptions import InvalidMarkupError


class TestMarkupArithmetic:

    def test_apply_markup(self):
        assert apply_markup(Decimal("100"), Decimal("20")) == Decimal("120.00")

    def test_remove_markup(self):
        assert remove_markup(Decimal("120"), Decimal("20")) == Decimal("100.00")

    def test_rounds_half_away_from_zero(self):
        # 10.05 * 1.25 = 12.5625
        assert apply_markup(Decimal("10.05"), Decimal("25")) == Decimal("12.56")
        # 0.05 * 1.1 = 0.055
        assert apply_markup(Decimal("0.05"), Decimal("10")) == Decimal("0.06")

    def test_zero_bdi_is_identity(self):
        assert apply_markup(Decimal("7.77"), 0) == Decimal("7.77")
        assert remove_markup(Decimal("7.77"), "0") == Decimal("7.77")

    def test_markup_factor(self):
        assert markup_factor("25.5") == Decimal("1.255")

    def test_negative_bdi_above_minus_hundred_allowed(self):
        assert apply_markup(Decimal("100"), Decimal("-10")) == Decimal("90.00")


class TestBdiValidation:

    @pytest.mark.parametrize("bad", [Decimal("-100"), Decimal("-150"), 20.0, True, None, "abc", "NaN"])
    def test_rejected(self, bad):
        with pytest.raises(InvalidMarkupError) as exc_info:
            coerce_bdi(bad)
        assert exc_info.value.code == "INVALID_MARKUP"

    def test_accepts_int_and_str(self):
        assert coerce_bdi(25) == Decimal("25")
        assert coerce_bdi("27.35") == Decimal("27.35")


class TestResolveUnitPrices:

    def test_ex_markup_authority(self):
        item = priced("1", price="100", unit_price_with_markup="999")
        assert resolve_unit_prices(item, Decimal("20")) == (Decimal("100.00"), Decimal("120.00"))

    def test_with_markup_authority(self):
        item = priced(
            "1",
            price="1",
            unit_price_with_markup="120",
            price_authority=PriceAuthority.WITH_MARKUP,
        )
        assert resolve_unit_prices(item, Decimal("20")) == (Decimal("100.00"), Decimal("120.00"))


class TestApplyPriceEdit:

    def test_edit_ex_markup_derives_with_markup(self):
        item = priced("1", price="0")
        result = apply_price_edit(item, EditedExMarkup("100"), Decimal("20"))
        assert result.item.unit_price_ex_markup == Decimal("100.00")
        assert result.item.unit_price_with_markup == Decimal("120.00")
        assert result.item.price_authority is PriceAuthority.EX_MARKUP
        assert not result.was_clamped

    def test_edit_with_markup_derives_ex_markup(self):
        item = priced("1", price="0")
        result = apply_price_edit(item, EditedWithMarkup("120"), Decimal("20"))
        assert result.item.unit_price_ex_markup == Decimal("100.00")
        assert result.item.unit_price_with_markup == Decimal("120.00")
        assert result.item.price_authority is PriceAuthority.WITH_MARKUP

    def test_negative_price_clamped(self):
        item = priced("1", price="5")
        result = apply_price_edit(item, EditedExMarkup("-3"), Decimal("20"))
        assert result.item.unit_price_ex_markup == Decimal("0.00")
        assert codes_of(result.diagnostics) == {DiagnosticCode.NEGATIVE_VALUE_CLAMPED}

    def test_original_untouched_and_patch_reported(self):
        item = priced("1", price="0")
        result = apply_price_edit(item, EditedWithMarkup("60"), Decimal("20"))
        assert item.unit_price_with_markup == Decimal("0")
        assert set(result.patch.changes) == {
            "unit_price_ex_markup",
            "unit_price_with_markup",
            "price_authority",
        }

    def test_unknown_edit_type_rejected(self):
        with pytest.raises(TypeError):
            apply_price_edit(priced("1"), object(), Decimal("20"))
