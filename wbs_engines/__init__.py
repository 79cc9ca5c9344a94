"""
Module: wbs_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the WBS
    calculation engines. This is the import surface for callers (UI
    adapters, persistence collaborators, importers).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import wbs_kernel and wbs_config (settings only).

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic; floats are rejected at the boundary.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from wbs_engines import build_tree, aggregate, flatten_visible
    from wbs_engines import move_item, MovePosition
"""

from wbs_kernel.logging_config import get_logger

logger = get_logger("engines")

from wbs_engines._edit_types import EditResult
from wbs_engines.aggregator import (
    ProcessedForest,
    ProcessedNode,
    aggregate,
    apply_balance_policy,
    overrun_is_clamped,
)
from wbs_engines.code_import import (
    ImportedRow,
    ImportResult,
    order_parents_first,
    resolve_imported_rows,
)
from wbs_engines.flattener import FlatRow, filter_forest, flatten_all, flatten_visible
from wbs_engines.markup import (
    apply_markup,
    apply_price_edit,
    markup_factor,
    remove_markup,
    resolve_unit_prices,
)
from wbs_engines.measurement import (
    MeasurementSnapshot,
    PeriodCloseResult,
    RecalculationResult,
    close_measurement_period,
    recalculate_all,
    set_contract_quantity,
    set_contract_total,
    set_current_percentage,
    set_current_quantity,
    set_current_total,
    set_previous_measurement,
)
from wbs_engines.pipeline import compute_wbs, render_rows
from wbs_engines.reorder import (
    DeleteResult,
    MovePosition,
    ReorderResult,
    delete_item,
    indent_item,
    insert_item,
    move_item,
    move_to_parent,
    outdent_item,
)
from wbs_engines.summary import ProjectOverrides, ProjectSummary, summarize
from wbs_engines.tracer import traced_engine
from wbs_engines.tree_builder import (
    TreeNode,
    WbsTree,
    build_tree,
    find_cycle,
    parent_code,
    resolve_parents_by_code,
    would_create_cycle,
)

__all__ = [
    # Tree
    "TreeNode",
    "WbsTree",
    "build_tree",
    "find_cycle",
    "parent_code",
    "resolve_parents_by_code",
    "would_create_cycle",
    # Aggregation
    "ProcessedForest",
    "ProcessedNode",
    "aggregate",
    "apply_balance_policy",
    "overrun_is_clamped",
    # Markup
    "apply_markup",
    "apply_price_edit",
    "markup_factor",
    "remove_markup",
    "resolve_unit_prices",
    # Measurement
    "EditResult",
    "MeasurementSnapshot",
    "PeriodCloseResult",
    "RecalculationResult",
    "close_measurement_period",
    "recalculate_all",
    "set_contract_quantity",
    "set_contract_total",
    "set_current_percentage",
    "set_current_quantity",
    "set_current_total",
    "set_previous_measurement",
    # Reorder
    "DeleteResult",
    "MovePosition",
    "ReorderResult",
    "delete_item",
    "indent_item",
    "insert_item",
    "move_item",
    "move_to_parent",
    "outdent_item",
    # Flattening
    "FlatRow",
    "filter_forest",
    "flatten_all",
    "flatten_visible",
    # Import
    "ImportResult",
    "ImportedRow",
    "order_parents_first",
    "resolve_imported_rows",
    # Summary
    "ProjectOverrides",
    "ProjectSummary",
    "summarize",
    # Pipeline
    "compute_wbs",
    "render_rows",
    # Tracing
    "traced_engine",
]
