"""
Module: wbs_engines.tree_builder
Responsibility:
    Rebuild the work breakdown structure from a flat, parent-referenced
    list of line items and assign dotted position codes (``1``, ``1.1``,
    ``1.1.2``) in sibling order.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

    The tree is an arena: every node lives in one mapping keyed by id and
    parent/child links are id references resolved once per invocation.
    Nodes never hold references to other node objects.

Invariants enforced:
    - NO_CYCLES: a parent chain that returns to its start is broken by
      demoting the first member of the cycle (in input order) to a root.
    - PARENT_IS_CATEGORY: dangling parents and item-kind parents are
      demoted to roots. Nothing is dropped; every uniquely identified
      input item is present in the output.
    - SIBLING_ORDER: siblings sort by ``order`` ascending, ties broken by
      input sequence.

Failure modes:
    - None raised for data problems; each repair is returned as a
      ``Diagnostic`` and logged at WARNING.
    - LineItemNotFoundError from ``WbsTree`` lookups with unknown ids.

Usage:
    from wbs_engines.tree_builder import build_tree

    tree = build_tree(items)
    tree.get("2").wbs_code   # "1.1"
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from wbs_engines.tracer import traced_engine
from wbs_kernel.domain.diagnostics import Diagnostic, DiagnosticCode
from wbs_kernel.domain.line_item import LineItem
from wbs_kernel.exceptions import LineItemNotFoundError
from wbs_kernel.invariants import WbsInvariant
from wbs_kernel.logging_config import get_logger, log_diagnostics

logger = get_logger("engines.tree_builder")

CODE_SEPARATOR = "."


@dataclass(frozen=True)
class TreeNode:
    """
    A line item placed in the hierarchy.

    Contract:
        ``parent_id`` is the *effective* parent after repairs, which may
        differ from ``item.parent_id`` when the builder demoted the node.
    """

    item: LineItem
    parent_id: str | None
    depth: int
    wbs_code: str
    position: int
    child_ids: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def was_demoted(self) -> bool:
        """True when the stored parent reference was not honoured."""
        return self.parent_id != self.item.parent_id


@dataclass(frozen=True)
class WbsTree:
    """
    Arena of placed line items.

    Contract:
        ``nodes`` iterates in pre-order (roots by order, each followed by
        its subtree). ``root_ids`` lists roots in sibling order.
    Guarantees:
        - Acyclic; every non-root parent is a category present in ``nodes``.
    Non-goals:
        - Carries no monetary values; see ``wbs_engines.aggregator``.
    """

    nodes: Mapping[str, TreeNode]
    root_ids: tuple[str, ...]
    diagnostics: tuple[Diagnostic, ...] = ()
    _by_code: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.nodes

    def __iter__(self) -> Iterator[TreeNode]:
        return iter(self.nodes.values())

    def get(self, item_id: str) -> TreeNode:
        try:
            return self.nodes[item_id]
        except KeyError:
            raise LineItemNotFoundError(item_id) from None

    def children(self, parent_id: str | None) -> tuple[TreeNode, ...]:
        """Children in sibling order; ``None`` returns the roots."""
        ids = self.root_ids if parent_id is None else self.get(parent_id).child_ids
        return tuple(self.nodes[i] for i in ids)

    def sibling_ids(self, parent_id: str | None) -> tuple[str, ...]:
        return self.root_ids if parent_id is None else self.get(parent_id).child_ids

    def parent_of(self, item_id: str) -> str | None:
        return self.get(item_id).parent_id

    def ancestors(self, item_id: str) -> tuple[str, ...]:
        """Ancestor ids from the direct parent up to the root."""
        chain: list[str] = []
        current = self.get(item_id).parent_id
        while current is not None:
            chain.append(current)
            current = self.nodes[current].parent_id
        return tuple(chain)

    def descendants(self, item_id: str) -> tuple[str, ...]:
        """Descendant ids in pre-order, excluding ``item_id``."""
        result: list[str] = []
        stack = list(reversed(self.get(item_id).child_ids))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.nodes[current].child_ids))
        return tuple(result)

    def subtree_ids(self, item_id: str) -> tuple[str, ...]:
        return (item_id, *self.descendants(item_id))

    def is_ancestor(self, ancestor_id: str, item_id: str) -> bool:
        return ancestor_id in self.ancestors(item_id)

    def by_code(self, wbs_code: str) -> TreeNode | None:
        item_id = self._by_code.get(normalize_code(wbs_code))
        return self.nodes[item_id] if item_id is not None else None

    def effective_parents(self) -> dict[str, str | None]:
        return {item_id: node.parent_id for item_id, node in self.nodes.items()}

    def preorder(self) -> tuple[str, ...]:
        return tuple(self.nodes)

    def items(self) -> tuple[LineItem, ...]:
        """Source items in pre-order."""
        return tuple(node.item for node in self.nodes.values())


# ---------------------------------------------------------------------------
# Position codes
# ---------------------------------------------------------------------------


def child_code(prefix: str | None, position: int) -> str:
    """Position code of the ``position``-th (zero-based) child under ``prefix``."""
    segment = str(position + 1)
    return segment if not prefix else f"{prefix}{CODE_SEPARATOR}{segment}"


def normalize_code(code: str) -> str:
    """Strip whitespace and stray separators: ``" 1.2. "`` -> ``"1.2"``."""
    parts = [part.strip() for part in str(code).strip().split(CODE_SEPARATOR)]
    return CODE_SEPARATOR.join(part for part in parts if part)


def parent_code(code: str) -> str | None:
    """Code of the parent: ``"1.2.3"`` -> ``"1.2"``; roots have none."""
    normalized = normalize_code(code)
    if CODE_SEPARATOR not in normalized:
        return None
    return normalized.rsplit(CODE_SEPARATOR, 1)[0]


def resolve_parents_by_code(codes: Sequence[str]) -> dict[int, int | None]:
    """
    Map each row index to the index of the row holding its parent code.

    The first row carrying a code owns it. Rows whose parent code is
    absent map to ``None`` (roots).
    """
    owner: dict[str, int] = {}
    for index, code in enumerate(codes):
        normalized = normalize_code(code)
        if normalized and normalized not in owner:
            owner[normalized] = index
    result: dict[int, int | None] = {}
    for index, code in enumerate(codes):
        parent = parent_code(code) if code else None
        result[index] = owner.get(parent) if parent is not None else None
    return result


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------


def find_cycle(
    item_id: str,
    parent_of: Mapping[str, str | None],
) -> list[str] | None:
    """
    Follow ``parent_of`` from ``item_id``; return the path if it comes back.

    Returns None when the chain ends at a root, or loops without passing
    through ``item_id`` (that loop belongs to another node).
    """
    path = [item_id]
    seen = {item_id}
    current = parent_of.get(item_id)
    while current is not None:
        path.append(current)
        if current == item_id:
            return path
        if current in seen:
            return None
        seen.add(current)
        current = parent_of.get(current)
    return None


def would_create_cycle(
    parent_of: Mapping[str, str | None],
    node_id: str,
    new_parent_id: str | None,
) -> bool:
    """
    True when attaching ``node_id`` under ``new_parent_id`` closes a loop.

    That is the case when the new parent is the node itself or one of its
    descendants. Pass ``WbsTree.effective_parents()`` to check against the
    repaired hierarchy rather than the stored references.
    """
    if new_parent_id is None:
        return False
    seen: set[str] = set()
    current: str | None = new_parent_id
    while current is not None and current not in seen:
        if current == node_id:
            return True
        seen.add(current)
        current = parent_of.get(current)
    return False


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def _resolve_effective_parents(
    index: Mapping[str, LineItem],
    diagnostics: list[Diagnostic],
) -> dict[str, str | None]:
    effective: dict[str, str | None] = {}
    for item_id, item in index.items():
        parent_id = item.parent_id
        if parent_id is None:
            effective[item_id] = None
        elif parent_id not in index:
            effective[item_id] = None
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.ORPHANED_PARENT,
                item_id=item_id,
                message=f"Parent {parent_id} does not exist; placed at root",
                invariant=WbsInvariant.PARENT_IS_CATEGORY,
            ))
        elif parent_id != item_id and not index[parent_id].is_category:
            effective[item_id] = None
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.PARENT_NOT_CATEGORY,
                item_id=item_id,
                message=f"Parent {parent_id} is a priced item; placed at root",
                invariant=WbsInvariant.PARENT_IS_CATEGORY,
            ))
        else:
            effective[item_id] = parent_id

    # Break cycles; index preserves input order so the first member found wins.
    for item_id in index:
        path = find_cycle(item_id, effective)
        if path is not None:
            effective[item_id] = None
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.CYCLE_BROKEN,
                item_id=item_id,
                message=f"Cycle {' -> '.join(path)} broken; placed at root",
                invariant=WbsInvariant.NO_CYCLES,
            ))
    return effective


@traced_engine("tree_builder", "1.0", fingerprint_fields=("items",))
def build_tree(items: Sequence[LineItem]) -> WbsTree:
    """
    Build the WBS arena from a flat list of line items.

    Pure function - the input sequence and its items are not modified.

    Args:
        items: Line items in any order.

    Returns:
        WbsTree with depth and position code on every node, plus the
        diagnostics for every repair performed.
    """
    t0 = time.monotonic()
    diagnostics: list[Diagnostic] = []

    index: dict[str, LineItem] = {}
    sequence: dict[str, int] = {}
    for position, item in enumerate(items):
        if item.id in index:
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.DUPLICATE_ID,
                item_id=item.id,
                message=f"Duplicate id {item.id} at input position {position} ignored",
            ))
            continue
        index[item.id] = item
        sequence[item.id] = position

    effective = _resolve_effective_parents(index, diagnostics)

    groups: dict[str | None, list[str]] = defaultdict(list)
    for item_id in index:
        groups[effective[item_id]].append(item_id)
    for siblings in groups.values():
        siblings.sort(key=lambda i: (index[i].order, sequence[i]))

    nodes: dict[str, TreeNode] = {}
    by_code: dict[str, str] = {}
    root_ids = tuple(groups.get(None, ()))

    # Iterative pre-order walk: (item_id, parent_code, depth, position)
    stack: list[tuple[str, str | None, int, int]] = [
        (root_id, None, 0, pos) for pos, root_id in reversed(list(enumerate(root_ids)))
    ]
    while stack:
        item_id, code_prefix, depth, position = stack.pop()
        code = child_code(code_prefix, position)
        child_ids = tuple(groups.get(item_id, ()))
        nodes[item_id] = TreeNode(
            item=index[item_id],
            parent_id=effective[item_id],
            depth=depth,
            wbs_code=code,
            position=position,
            child_ids=child_ids,
        )
        by_code[code] = item_id
        for pos in range(len(child_ids) - 1, -1, -1):
            stack.append((child_ids[pos], code, depth + 1, pos))

    log_diagnostics(logger, "tree_structure_repaired", diagnostics)

    logger.debug("tree_built", extra={
        "input_count": len(items),
        "node_count": len(nodes),
        "root_count": len(root_ids),
        "diagnostic_count": len(diagnostics),
        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
    })

    return WbsTree(
        nodes=nodes,
        root_ids=root_ids,
        diagnostics=tuple(diagnostics),
        _by_code=by_code,
    )
