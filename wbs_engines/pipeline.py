"""
Module: wbs_engines.pipeline
Responsibility:
    The read path in one call: flat items -> tree -> aggregated forest ->
    rows for a linear renderer.

Architecture position:
    Engines -- composes the pure engines; still zero I/O.

Usage:
    from wbs_engines.pipeline import compute_wbs, render_rows

    forest = compute_wbs(items, Decimal("25"))
    rows = render_rows(items, Decimal("25"), expanded_ids={"1"})
    forest = compute_wbs(items, settings=get_active_settings())  # default BDI
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from typing import Any

from wbs_config.schema import EngineSettings
from wbs_engines.aggregator import ProcessedForest, aggregate
from wbs_engines.flattener import FlatRow, filter_forest, flatten_all, flatten_visible
from wbs_engines.tree_builder import build_tree
from wbs_kernel.domain.line_item import LineItem


def compute_wbs(
    items: Sequence[LineItem],
    bdi: Any = None,
    settings: EngineSettings | None = None,
) -> ProcessedForest:
    """
    Build and aggregate; the forest carries the diagnostics of both steps.

    A ``bdi`` of None uses ``settings.default_bdi``.
    """
    return aggregate(build_tree(items), bdi, settings)


def render_rows(
    items: Sequence[LineItem],
    bdi: Any = None,
    expanded_ids: Collection[str] | None = None,
    query: str | None = None,
    full: bool = False,
    settings: EngineSettings | None = None,
) -> tuple[FlatRow, ...]:
    """
    Rows for display.

    A non-empty ``query`` takes precedence and yields filtered rows;
    otherwise ``full`` selects the export listing and the default is the
    collapsible view driven by ``expanded_ids``.
    """
    forest = compute_wbs(items, bdi, settings)
    if query and query.strip():
        return filter_forest(forest, query)
    if full:
        return flatten_all(forest)
    return flatten_visible(forest, expanded_ids or ())
