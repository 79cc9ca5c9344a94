"""
Tests for the recursive aggregator.

Covers:
- Item-level derivation (prices, totals, accumulated, balance, percentages)
- Category rollups and mixed units
- Clamping of stored measurements
- Over-execution balance policy
- Grand totals
"""

from decimal import Decimal

import pytest

from tests.builders import category, priced
from wbs_config.schema import EngineSettings
from wbs_engines.aggregator import (
    FINANCIAL_FIELDS,
    aggregate,
    apply_balance_policy,
    overrun_is_clamped,
)
from wbs_engines.tree_builder import build_tree
from wbs_kernel.domain.diagnostics import DiagnosticCode, codes_of
from wbs_kernel.domain.line_item import PriceAuthority
from wbs_kernel.exceptions import InvalidMarkupError, LineItemNotFoundError


def _forest(items, bdi=Decimal("20"), settings=None):
    return aggregate(build_tree(items), bdi, settings)


class TestSingleCategory:
    """BDI 20, one category with one item of 10 units at 100.00."""

    def setup_method(self):
        self.forest = _forest([category("c"), priced("i", "c", quantity="10", price="100")])

    def test_item_prices_and_total(self):
        item = self.forest.get("i")
        assert item.unit_price_ex_markup == Decimal("100.00")
        assert item.unit_price_with_markup == Decimal("120.00")
        assert item.contract_total == Decimal("1200.00")

    def test_category_total(self):
        assert self.forest.get("c").contract_total == Decimal("1200.00")

    def test_codes(self):
        assert self.forest.get("c").wbs_code == "1"
        assert self.forest.get("i").wbs_code == "1.1"


class TestReferenceProject:

    @pytest.fixture(autouse=True)
    def _build(self, project_items, bdi):
        self.forest = _forest(project_items, bdi)

    def test_item_derivation(self):
        exc = self.forest.get("exc")
        assert exc.unit_price_with_markup == Decimal("12.00")
        assert exc.contract_total == Decimal("1200.00")
        assert exc.previous_total == Decimal("480.00")
        assert exc.current_total == Decimal("240.00")
        assert exc.accumulated_quantity == Decimal("60.00")
        assert exc.accumulated_total == Decimal("720.00")
        assert exc.balance_quantity == Decimal("40.00")
        assert exc.balance_total == Decimal("480.00")
        assert exc.current_percentage == Decimal("20.00")
        assert exc.accumulated_percentage == Decimal("60.00")

    def test_single_unit_category_rolls_up_quantities(self):
        site = self.forest.get("site")
        assert site.unit == "m3"
        assert not site.mixed_units
        assert site.contract_quantity == Decimal("150.00")
        assert site.accumulated_quantity == Decimal("60.00")
        assert site.balance_quantity == Decimal("90.00")
        assert site.unit_price_ex_markup is None

    def test_category_financials(self):
        site = self.forest.get("site")
        assert site.contract_total == Decimal("1680.00")
        assert site.previous_total == Decimal("480.00")
        assert site.current_total == Decimal("240.00")
        assert site.accumulated_total == Decimal("720.00")
        assert site.balance_total == Decimal("960.00")

    def test_category_percentages_are_financial(self):
        site = self.forest.get("site")
        assert site.current_percentage == Decimal("14.29")
        assert site.accumulated_percentage == Decimal("42.86")

    def test_mixed_units_have_no_quantity_rollup(self):
        for category_id in ("found", "struct"):
            node = self.forest.get(category_id)
            assert node.mixed_units
            assert node.unit is None
            assert node.contract_quantity is None
            assert node.balance_quantity is None
            assert not node.has_quantity_rollup

    def test_nested_category_totals(self):
        assert self.forest.get("found").contract_total == Decimal("13680.00")
        struct = self.forest.get("struct")
        assert struct.contract_total == Decimal("26280.00")
        assert struct.accumulated_total == Decimal("5040.00")
        assert struct.balance_total == Decimal("21240.00")

    def test_every_category_equals_sum_of_children(self):
        for node in self.forest:
            if not node.is_category:
                continue
            children = self.forest.children(node.id)
            for name in FINANCIAL_FIELDS:
                assert getattr(node, name) == sum(
                    (getattr(child, name) for child in children), Decimal("0")
                ), (node.id, name)

    def test_descendant_item_counts(self):
        assert self.forest.get("site").descendant_item_count == 2
        assert self.forest.get("struct").descendant_item_count == 3
        assert self.forest.get("conc").descendant_item_count == 0

    def test_grand_totals(self):
        totals = self.forest.totals()
        assert totals == {
            "contract_total": Decimal("27960.00"),
            "previous_total": Decimal("2280.00"),
            "current_total": Decimal("3480.00"),
            "accumulated_total": Decimal("5760.00"),
            "balance_total": Decimal("22200.00"),
        }

    def test_structure_preserved(self):
        assert self.forest.root_ids == ("site", "struct")
        assert [n.id for n in self.forest.children("found")] == ["conc", "rebar"]
        assert self.forest.ancestors("rebar") == ("found", "struct")
        assert len(self.forest) == 8
        assert len(self.forest.priced_items()) == 5

    def test_unknown_id(self):
        with pytest.raises(LineItemNotFoundError):
            self.forest.get("ghost")


class TestItemEdgeCases:

    def test_stored_previous_total_wins(self):
        forest = _forest([priced("i", quantity="10", price="100",
                                 previous_quantity="2", previous_total="100")])
        assert forest.get("i").previous_total == Decimal("100.00")
        assert forest.get("i").accumulated_total == Decimal("100.00")

    def test_zero_contract_percentages_are_zero(self):
        forest = _forest([priced("i", quantity="0", price="100")])
        node = forest.get("i")
        assert node.current_percentage == Decimal("0.00")
        assert node.accumulated_percentage == Decimal("0.00")

    def test_empty_category(self):
        forest = _forest([category("c")])
        node = forest.get("c")
        assert node.contract_total == Decimal("0.00")
        assert node.contract_quantity == Decimal("0.00")
        assert node.accumulated_percentage == Decimal("0.00")
        assert not node.mixed_units

    def test_current_quantity_clamped_to_remaining(self):
        forest = _forest([priced("i", quantity="10", price="1",
                                 previous_quantity="8", current_quantity="5")])
        node = forest.get("i")
        assert node.current_quantity == Decimal("2.00")
        assert node.balance_quantity == Decimal("0.00")
        [diagnostic] = forest.diagnostics
        assert diagnostic.code is DiagnosticCode.QUANTITY_CLAMPED

    def test_negative_current_quantity_clamped(self):
        forest = _forest([priced("i", current_quantity="-3")])
        assert forest.get("i").current_quantity == Decimal("0.00")
        assert codes_of(forest.diagnostics) == {DiagnosticCode.QUANTITY_CLAMPED}

    def test_negative_contract_quantity_clamped(self):
        forest = _forest([priced("i", quantity="-5")])
        assert forest.get("i").contract_quantity == Decimal("0.00")
        assert DiagnosticCode.NEGATIVE_VALUE_CLAMPED in codes_of(forest.diagnostics)

    def test_with_markup_authority(self):
        forest = _forest([priced("i", quantity="3", price="0",
                                 unit_price_with_markup="60",
                                 price_authority=PriceAuthority.WITH_MARKUP)])
        node = forest.get("i")
        assert node.unit_price_ex_markup == Decimal("50.00")
        assert node.unit_price_with_markup == Decimal("60.00")
        assert node.contract_total == Decimal("180.00")

    def test_builder_diagnostics_carried(self):
        forest = _forest([priced("i", "missing")])
        assert codes_of(forest.diagnostics) == {DiagnosticCode.ORPHANED_PARENT}

    def test_invalid_bdi(self):
        with pytest.raises(InvalidMarkupError):
            _forest([priced("i")], bdi=Decimal("-100"))


class TestOverrunPolicy:
    """A stored previous measurement above the contract is over-execution."""

    ITEMS = [priced("i", quantity="10", price="10", previous_quantity="12")]

    def test_default_clamps_balance(self):
        forest = _forest(self.ITEMS, bdi=0)
        node = forest.get("i")
        assert node.accumulated_quantity == Decimal("12.00")
        assert node.balance_quantity == Decimal("0")
        assert node.balance_total == Decimal("0")

    def test_negative_balance_when_policy_off(self):
        settings = EngineSettings(clamp_overrun_balance=False)
        forest = _forest(self.ITEMS, bdi=0, settings=settings)
        node = forest.get("i")
        assert node.balance_quantity == Decimal("-2.00")
        assert node.balance_total == Decimal("-20.00")

    def test_predicate(self):
        assert overrun_is_clamped(EngineSettings())
        assert not overrun_is_clamped(EngineSettings(clamp_overrun_balance=False))
        assert apply_balance_policy(Decimal("-1"), EngineSettings()) == Decimal("0")
        assert apply_balance_policy(Decimal("3"), EngineSettings()) == Decimal("3")


class TestConfigurablePrecision:

    def test_money_places(self):
        settings = EngineSettings(money_places=3)
        forest = _forest([priced("i", quantity="1", price="1.0005")], bdi=0, settings=settings)
        assert forest.get("i").contract_total == Decimal("1.001")

    def test_sums_carry_money_scale(self):
        settings = EngineSettings(money_places=3)
        forest = _forest([category("empty")], bdi=0, settings=settings)
        assert str(forest.get("empty").contract_total) == "0.000"
        assert str(forest.totals()["balance_total"]) == "0.000"
