"""
Tests for the code-keyed importer.
"""

from decimal import Decimal
from itertools import count

import pytest

from wbs_engines.code_import import (
    DEFAULT_ITEM_UNIT,
    ImportedRow,
    order_parents_first,
    resolve_imported_rows,
)
from wbs_engines.pipeline import compute_wbs
from wbs_kernel.domain.diagnostics import DiagnosticCode, codes_of
from wbs_kernel.domain.line_item import LineItemKind
from wbs_kernel.exceptions import InvalidLineItemError


def _sequential_ids():
    counter = count(1)
    return lambda: f"r{next(counter)}"


@pytest.fixture
def rows():
    return [
        ImportedRow(code="1", kind="Category", name="Earthworks"),
        ImportedRow(code="1.1", name="Excavation", unit="m3",
                    contract_quantity="100", unit_price_ex_markup="10", external_code="SINAPI-1",
                    price_source=" SINAPI 03/2025 "),
        ImportedRow(code="1.2", name="Backfill", unit="m3", contract_quantity="50"),
        ImportedRow(code="2", kind="category", name="Structure"),
        ImportedRow(code="2.1", kind="category", name="Foundations"),
        ImportedRow(code="2.1.1", name="Concrete", unit="m3", contract_quantity="12",
                    unit_price_ex_markup="450"),
    ]


class TestResolveImportedRows:

    def test_parents_resolved_by_code_prefix(self, rows):
        result = resolve_imported_rows(rows, id_factory=_sequential_ids())
        parents = {item.wbs: item.parent_id for item in result.items}
        assert parents == {
            "1": None, "1.1": "r1", "1.2": "r1", "2": None, "2.1": "r4", "2.1.1": "r5",
        }
        assert result.diagnostics == ()

    def test_order_is_row_index(self, rows):
        result = resolve_imported_rows(rows, id_factory=_sequential_ids())
        assert [item.order for item in result.items] == [0, 1, 2, 3, 4, 5]

    def test_counts_and_kinds(self, rows):
        result = resolve_imported_rows(rows)
        assert result.category_count == 3
        assert result.item_count == 3
        assert result.items[0].kind is LineItemKind.CATEGORY

    def test_fields_carried(self, rows):
        item = resolve_imported_rows(rows).items[1]
        assert item.name == "Excavation"
        assert item.code == "SINAPI-1"
        assert item.source == "SINAPI 03/2025"
        assert resolve_imported_rows(rows).items[2].source == ""
        assert item.contract_quantity == Decimal("100")
        assert item.unit_price_ex_markup == Decimal("10")

    def test_default_ids_unique(self, rows):
        ids = [item.id for item in resolve_imported_rows(rows).items]
        assert len(set(ids)) == len(ids)

    def test_imported_tree_renders_same_codes(self, rows):
        result = resolve_imported_rows(rows)
        forest = compute_wbs(result.items, 0)
        assert [node.wbs_code for node in forest] == [row.code for row in rows]

    def test_missing_parent_becomes_root(self):
        result = resolve_imported_rows(
            [ImportedRow(code="1", kind="category"), ImportedRow(code="3.4", name="Lost")],
            id_factory=_sequential_ids(),
        )
        lost = result.items[1]
        assert lost.parent_id is None
        [diagnostic] = result.diagnostics
        assert diagnostic.code is DiagnosticCode.ORPHANED_PARENT
        assert diagnostic.item_id == "r2"

    def test_duplicate_code_first_wins(self):
        result = resolve_imported_rows(
            [
                ImportedRow(code="1", kind="category", name="First"),
                ImportedRow(code="1", kind="category", name="Second"),
                ImportedRow(code="1.1", name="Child"),
            ],
            id_factory=_sequential_ids(),
        )
        assert result.items[2].parent_id == "r1"
        assert len(result.items) == 3
        assert codes_of(result.diagnostics) == {DiagnosticCode.DUPLICATE_CODE}

    def test_defaults_for_blank_cells(self):
        result = resolve_imported_rows([ImportedRow(code="1"), ImportedRow(code="2", kind="category")])
        item, cat = result.items
        assert item.unit == DEFAULT_ITEM_UNIT
        assert item.name == "New item"
        assert cat.unit == ""

    def test_rows_without_code_skipped(self):
        result = resolve_imported_rows([ImportedRow(code="  "), ImportedRow(code="1")])
        assert len(result.items) == 1
        assert result.items[0].order == 0

    def test_codes_normalized(self):
        row = ImportedRow(code=" 1.2. ")
        assert row.code == "1.2"

    def test_float_quantity_rejected(self):
        with pytest.raises(InvalidLineItemError):
            ImportedRow(code="1", contract_quantity=1.5)


class TestOrderParentsFirst:

    def test_parents_precede_children(self, rows):
        items = list(resolve_imported_rows(rows, id_factory=_sequential_ids()).items)
        ordered = order_parents_first(list(reversed(items)))
        position = {item.id: index for index, item in enumerate(ordered)}
        for item in ordered:
            if item.parent_id is not None:
                assert position[item.parent_id] < position[item.id]
