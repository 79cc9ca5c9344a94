"""
Module: wbs_engines.flattener
Responsibility:
    Turn an aggregated forest into the ordered row list consumed by linear
    renderers: the collapsible table, exports and print reports.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumes a ``ProcessedForest`` from ``wbs_engines.aggregator``.

Invariants enforced:
    - Rows are always in pre-order (parent immediately before its subtree,
      siblings in sibling order).
    - Visible mode never descends into a collapsed category.
    - Filter mode keeps every match together with its ancestor chain and
      nothing else.

Usage:
    from wbs_engines.flattener import flatten_visible

    rows = flatten_visible(forest, expanded_ids={"1"})
"""

from __future__ import annotations

from collections.abc import Collection, Iterator
from dataclasses import dataclass

from wbs_engines.aggregator import ProcessedForest, ProcessedNode
from wbs_engines.tracer import traced_engine
from wbs_kernel.logging_config import get_logger

logger = get_logger("engines.flattener")


@dataclass(frozen=True)
class FlatRow:
    """One rendered row: a processed node plus its display state."""

    node: ProcessedNode
    depth: int
    has_children: bool
    is_expanded: bool

    @property
    def id(self) -> str:
        return self.node.id

    @property
    def wbs_code(self) -> str:
        return self.node.wbs_code


def _walk(
    forest: ProcessedForest,
    descend: Collection[str] | None,
) -> Iterator[FlatRow]:
    # descend=None means every node is open.
    stack = list(reversed(forest.root_ids))
    while stack:
        node = forest.nodes[stack.pop()]
        is_open = node.has_children and (descend is None or node.id in descend)
        yield FlatRow(
            node=node,
            depth=node.depth,
            has_children=node.has_children,
            is_expanded=is_open,
        )
        if is_open:
            stack.extend(reversed(node.child_ids))


@traced_engine("flattener", "1.0", fingerprint_fields=("expanded_ids",))
def flatten_visible(
    forest: ProcessedForest,
    expanded_ids: Collection[str],
) -> tuple[FlatRow, ...]:
    """Rows a user sees: descend only into expanded categories."""
    expanded = frozenset(expanded_ids)
    rows = tuple(_walk(forest, expanded))
    logger.debug("forest_flattened", extra={
        "mode": "visible",
        "row_count": len(rows),
        "expanded_count": len(expanded),
    })
    return rows


@traced_engine("flattener", "1.0")
def flatten_all(forest: ProcessedForest) -> tuple[FlatRow, ...]:
    """Every node in pre-order, as used by export and print."""
    rows = tuple(_walk(forest, None))
    logger.debug("forest_flattened", extra={"mode": "full", "row_count": len(rows)})
    return rows


def node_matches(node: ProcessedNode, query: str, case_sensitive: bool = False) -> bool:
    """Substring match against the node's name or position code."""
    haystacks = (node.name, node.wbs_code)
    if case_sensitive:
        return any(query in text for text in haystacks)
    folded = query.casefold()
    return any(folded in text.casefold() for text in haystacks)


@traced_engine("flattener", "1.0", fingerprint_fields=("query",))
def filter_forest(
    forest: ProcessedForest,
    query: str,
    case_sensitive: bool | None = None,
) -> tuple[FlatRow, ...]:
    """
    Matching rows plus their ancestors, in pre-order.

    Siblings of a match that do not match themselves are omitted. An empty
    (or whitespace) query returns the full listing.

    Args:
        forest: Aggregated WBS.
        query: Text searched in names and position codes.
        case_sensitive: Overrides ``settings.filter_case_sensitive``.
    """
    needle = (query or "").strip()
    if not needle:
        return flatten_all(forest)
    if case_sensitive is None:
        case_sensitive = forest.settings.filter_case_sensitive

    matched = [node.id for node in forest if node_matches(node, needle, case_sensitive)]
    keep: set[str] = set(matched)
    for item_id in matched:
        keep.update(forest.ancestors(item_id))

    rows: list[FlatRow] = []
    for node in forest:
        if node.id not in keep:
            continue
        kept_children = any(child_id in keep for child_id in node.child_ids)
        rows.append(FlatRow(
            node=node,
            depth=node.depth,
            has_children=node.has_children,
            is_expanded=kept_children,
        ))

    logger.debug("forest_filtered", extra={
        "match_count": len(matched),
        "row_count": len(rows),
        "case_sensitive": case_sensitive,
    })
    return tuple(rows)
