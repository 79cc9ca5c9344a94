"""
Property-based tests for the WBS engines.

Properties checked:
- Round-trip markup stays within one cent
- Every category equals the sum of its direct children, at every depth
- Move-after then move-before puts an item right in front of its reference
- No item is lost to dangling parents or cycles
- Current quantity never exceeds what remains of the contract
- Reparenting under an own descendant is rejected and changes nothing
"""

from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from wbs_engines.aggregator import FINANCIAL_FIELDS, aggregate
from wbs_engines.markup import apply_markup, remove_markup
from wbs_engines.measurement import set_current_quantity
from wbs_engines.reorder import MovePosition, move_item, move_to_parent
from wbs_engines.tree_builder import build_tree
from wbs_kernel.domain.diagnostics import DiagnosticCode
from wbs_kernel.domain.line_item import LineItem, LineItemKind

ENGINE_SETTINGS = settings(
    max_examples=80,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

money = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("100000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
quantities = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("5000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
bdi_percentages = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("100"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


@st.composite
def line_item_lists(draw, max_size=25):
    """Flat lists with arbitrary parent links: dangling, item-kind and cyclic included."""
    size = draw(st.integers(min_value=0, max_value=max_size))
    parent_choices = st.one_of(
        st.none(),
        st.just("ghost"),
        st.integers(min_value=0, max_value=max(size - 1, 0)).map(lambda i: f"n{i}"),
    )
    items = []
    for index in range(size):
        kind = draw(st.sampled_from([LineItemKind.CATEGORY, LineItemKind.ITEM]))
        items.append(LineItem(
            id=f"n{index}",
            parent_id=draw(parent_choices),
            kind=kind,
            order=draw(st.integers(min_value=0, max_value=5)),
            unit=draw(st.sampled_from(["m2", "m3", "kg"])),
            contract_quantity=draw(quantities),
            unit_price_ex_markup=draw(money),
            previous_quantity=draw(quantities),
            current_quantity=draw(quantities),
        ))
    return items


class TestMarkupProperties:

    @ENGINE_SETTINGS
    @given(price=money, bdi=bdi_percentages)
    def test_round_trip_within_one_cent(self, price, bdi):
        restored = remove_markup(apply_markup(price, bdi), bdi)
        assert abs(restored - price) <= Decimal("0.01")


class TestAggregationProperties:

    @ENGINE_SETTINGS
    @given(items=line_item_lists(), bdi=bdi_percentages)
    def test_categories_equal_sum_of_children(self, items, bdi):
        forest = aggregate(build_tree(items), bdi)
        for node in forest:
            if not node.is_category:
                continue
            children = forest.children(node.id)
            for name in FINANCIAL_FIELDS:
                expected = sum((getattr(child, name) for child in children), Decimal("0"))
                assert getattr(node, name) == expected

    @ENGINE_SETTINGS
    @given(items=line_item_lists(), bdi=bdi_percentages)
    def test_processed_current_quantity_bounded(self, items, bdi):
        forest = aggregate(build_tree(items), bdi)
        for node in forest.priced_items():
            remaining = max(Decimal("0"), node.contract_quantity - node.previous_quantity)
            assert Decimal("0") <= node.current_quantity <= remaining

    @ENGINE_SETTINGS
    @given(items=line_item_lists(), bdi=bdi_percentages)
    def test_balance_never_negative_by_default(self, items, bdi):
        forest = aggregate(build_tree(items), bdi)
        for node in forest:
            assert node.balance_total >= 0


class TestTreeProperties:

    @ENGINE_SETTINGS
    @given(items=line_item_lists())
    def test_no_item_lost(self, items):
        tree = build_tree(items)
        assert len(tree) == len(items)
        assert {node.id for node in tree} == {item.id for item in items}

    @ENGINE_SETTINGS
    @given(items=line_item_lists())
    def test_codes_unique_and_consistent_with_depth(self, items):
        tree = build_tree(items)
        codes = [node.wbs_code for node in tree]
        assert len(set(codes)) == len(codes)
        for node in tree:
            assert node.wbs_code.count(".") == node.depth
            if node.parent_id is not None:
                assert tree.get(node.parent_id).item.is_category

    @ENGINE_SETTINGS
    @given(items=line_item_lists())
    def test_acyclic(self, items):
        tree = build_tree(items)
        for node in tree:
            assert node.id not in tree.ancestors(node.id)


class TestReorderProperties:

    @ENGINE_SETTINGS
    @given(data=st.data(), size=st.integers(min_value=2, max_value=8))
    def test_after_then_before_places_item_in_front(self, data, size):
        items = [
            LineItem(id=f"s{i}", order=data.draw(st.integers(0, 3)))
            for i in range(size)
        ]
        ids = [item.id for item in items]
        moved = data.draw(st.sampled_from(ids))
        reference = data.draw(st.sampled_from([i for i in ids if i != moved]))

        after = move_item(items, moved, reference, MovePosition.AFTER).items
        before = move_item(after, moved, reference, MovePosition.BEFORE).items

        roots = list(build_tree(before).root_ids)
        assert roots.index(moved) == roots.index(reference) - 1
        assert sorted(roots) == sorted(ids)

    @ENGINE_SETTINGS
    @given(data=st.data(), depth=st.integers(min_value=2, max_value=6))
    def test_reparent_under_descendant_rejected(self, data, depth):
        items = [
            LineItem(
                id=f"c{i}",
                parent_id=f"c{i - 1}" if i else None,
                kind=LineItemKind.CATEGORY,
            )
            for i in range(depth)
        ]
        ancestor = data.draw(st.integers(min_value=0, max_value=depth - 2))
        descendant = data.draw(st.integers(min_value=ancestor + 1, max_value=depth - 1))

        result = move_to_parent(items, f"c{ancestor}", f"c{descendant}")

        assert result.rejected
        assert result.items == tuple(items)
        assert result.patches == ()
        assert result.diagnostics[0].code is DiagnosticCode.MOVE_REJECTED


class TestMeasurementProperties:

    @ENGINE_SETTINGS
    @given(contract=quantities, previous=quantities, excess=quantities)
    def test_overshoot_clamps_to_remaining(self, contract, previous, excess):
        item = LineItem(id="i", contract_quantity=contract, previous_quantity=previous)
        remaining = max(Decimal("0"), contract - previous)
        requested = remaining + excess + Decimal("0.01")

        result = set_current_quantity(item, requested)

        assert result.item.current_quantity == remaining
        assert result.diagnostics[0].code is DiagnosticCode.QUANTITY_CLAMPED
