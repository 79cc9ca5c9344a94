"""
Module: wbs_engines.reorder
Responsibility:
    Structural edits of the WBS: drag-and-drop moves, reparenting,
    indent/outdent, insertion and cascading deletion. Each edit returns the
    new flat list together with patches for the items whose ``order`` or
    ``parent_id`` changed.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Sibling groups are those of the *effective* hierarchy produced by
    ``wbs_engines.tree_builder.build_tree``, so demoted orphans are treated
    as the roots they are rendered as.

Invariants enforced:
    - NO_CYCLES: moving an item under itself or one of its descendants is
      rejected before any change is made.
    - PARENT_IS_CATEGORY: an item can only be placed inside a category.
    - SIBLING_ORDER: the destination sibling group is renumbered
      ``0..n-1``. Other groups are left alone (gaps are harmless since only
      relative order matters).
    - Selective persistence: patches list changed fields only.

Failure modes:
    - LineItemNotFoundError for unknown moved, reference or parent ids.
    - InvalidLineItemError when inserting an id that already exists.
    - Rejected moves are returned (``rejected=True``, ``MOVE_REJECTED``
      diagnostic, items unchanged); ``raise_if_rejected`` turns them into
      ReparentCycleError / InvalidMoveTargetError.

Usage:
    from wbs_engines.reorder import MovePosition, move_item

    result = move_item(items, "7", "3", MovePosition.BEFORE)
    for patch in result.patches:
        store.update(patch.item_id, patch.changes)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from wbs_engines.tracer import traced_engine
from wbs_engines.tree_builder import WbsTree, build_tree, would_create_cycle
from wbs_kernel.domain.diagnostics import Diagnostic, DiagnosticCode
from wbs_kernel.domain.line_item import ItemPatch, LineItem, patch_between
from wbs_kernel.exceptions import (
    InvalidLineItemError,
    InvalidMoveTargetError,
    ReparentCycleError,
    StructureError,
)
from wbs_kernel.invariants import WbsInvariant
from wbs_kernel.logging_config import get_logger

logger = get_logger("engines.reorder")


class MovePosition(str, Enum):
    """Where a dragged item lands relative to the drop target."""

    BEFORE = "before"
    AFTER = "after"
    INSIDE = "inside"


@dataclass(frozen=True)
class ReorderResult:
    """
    Outcome of a structural edit.

    Contract:
        ``items`` is the complete new flat list (input order preserved).
        When ``rejected`` is True it is the unchanged input and
        ``patches`` is empty.
    """

    items: tuple[LineItem, ...]
    patches: tuple[ItemPatch, ...] = ()
    rejected: bool = False
    diagnostics: tuple[Diagnostic, ...] = ()
    error: StructureError | None = None

    @property
    def changed_ids(self) -> tuple[str, ...]:
        return tuple(p.item_id for p in self.patches)

    def raise_if_rejected(self) -> ReorderResult:
        if self.error is not None:
            raise self.error
        return self


@dataclass(frozen=True)
class DeleteResult:
    """Remaining items after a cascading delete."""

    items: tuple[LineItem, ...]
    removed_ids: tuple[str, ...]
    patches: tuple[ItemPatch, ...] = ()


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _rejected(
    items: Sequence[LineItem],
    item_id: str,
    error: StructureError,
    invariant: WbsInvariant,
) -> ReorderResult:
    diagnostic = Diagnostic(
        code=DiagnosticCode.MOVE_REJECTED,
        item_id=item_id,
        message=str(error),
        invariant=invariant,
    )
    logger.warning("move_rejected", extra={
        **diagnostic.as_log_extra(),
        "error_code": error.code,
        "detail": str(error),
    })
    return ReorderResult(
        items=tuple(items),
        rejected=True,
        diagnostics=(diagnostic,),
        error=error,
    )


def _cycle_path(tree: WbsTree, moved_id: str, new_parent_id: str) -> list[str]:
    chain = [new_parent_id]
    if new_parent_id != moved_id:
        for ancestor in tree.ancestors(new_parent_id):
            chain.append(ancestor)
            if ancestor == moved_id:
                break
    return [moved_id, *chain]


def _check_target(
    tree: WbsTree,
    items: Sequence[LineItem],
    moved_id: str,
    new_parent_id: str | None,
) -> ReorderResult | None:
    """Return a rejection when ``moved_id`` may not live under ``new_parent_id``."""
    if new_parent_id is None:
        return None
    target = tree.get(new_parent_id)
    if would_create_cycle(tree.effective_parents(), moved_id, new_parent_id):
        error = ReparentCycleError(moved_id, new_parent_id, _cycle_path(tree, moved_id, new_parent_id))
        return _rejected(items, moved_id, error, WbsInvariant.NO_CYCLES)
    if not target.item.is_category:
        error = InvalidMoveTargetError(moved_id, new_parent_id, "target is a priced item")
        return _rejected(items, moved_id, error, WbsInvariant.PARENT_IS_CATEGORY)
    return None


def _apply_changes(
    items: Sequence[LineItem],
    tree: WbsTree,
    updated: dict[str, LineItem],
) -> tuple[tuple[LineItem, ...], tuple[ItemPatch, ...]]:
    """Swap in ``updated`` records, keeping input order and duplicate rows."""
    result: list[LineItem] = []
    patches: list[ItemPatch] = []
    for item in items:
        node = tree.nodes.get(item.id)
        replacement = updated.get(item.id)
        if replacement is None or node is None or node.item is not item:
            result.append(item)
            continue
        result.append(replacement)
        patch = patch_between(item, replacement)
        if patch is not None:
            patches.append(patch)
    return tuple(result), tuple(patches)


def _renumber(
    tree: WbsTree,
    group: list[str],
    parent_id: str | None,
    moved_id: str | None,
) -> dict[str, LineItem]:
    updated: dict[str, LineItem] = {}
    for position, item_id in enumerate(group):
        item = tree.get(item_id).item
        changes: dict[str, object] = {}
        if item.order != position:
            changes["order"] = position
        if item_id == moved_id and item.parent_id != parent_id:
            changes["parent_id"] = parent_id
        if changes:
            updated[item_id] = item.with_changes(**changes)
    return updated


def _relocate(
    items: Sequence[LineItem],
    tree: WbsTree,
    moved_id: str,
    new_parent_id: str | None,
    index: int | None,
) -> ReorderResult:
    tree.get(moved_id)
    rejection = _check_target(tree, items, moved_id, new_parent_id)
    if rejection is not None:
        return rejection

    group = [i for i in tree.sibling_ids(new_parent_id) if i != moved_id]
    position = len(group) if index is None else max(0, min(index, len(group)))
    group.insert(position, moved_id)

    new_items, patches = _apply_changes(
        items, tree, _renumber(tree, group, new_parent_id, moved_id)
    )
    logger.info("item_moved", extra={
        "item_id": moved_id,
        "new_parent_id": new_parent_id,
        "position": position,
        "patch_count": len(patches),
    })
    return ReorderResult(items=new_items, patches=patches)


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


@traced_engine("reorder.move_item", "1.0",
               fingerprint_fields=("items", "moved_id", "reference_id", "position"))
def move_item(
    items: Sequence[LineItem],
    moved_id: str,
    reference_id: str,
    position: MovePosition,
) -> ReorderResult:
    """
    Drop ``moved_id`` before, after or inside ``reference_id``.

    INSIDE appends the moved item as the last child of the reference,
    which must be a category.
    """
    position = MovePosition(position)
    tree = build_tree(items)
    tree.get(moved_id)
    reference = tree.get(reference_id)

    if position is MovePosition.INSIDE:
        return _relocate(items, tree, moved_id, reference_id, None)
    if moved_id == reference_id:
        return ReorderResult(items=tuple(items))

    new_parent_id = reference.parent_id
    siblings = [i for i in tree.sibling_ids(new_parent_id) if i != moved_id]
    index = siblings.index(reference_id)
    if position is MovePosition.AFTER:
        index += 1
    return _relocate(items, tree, moved_id, new_parent_id, index)


@traced_engine("reorder.move_to_parent", "1.0",
               fingerprint_fields=("items", "moved_id", "new_parent_id", "index"))
def move_to_parent(
    items: Sequence[LineItem],
    moved_id: str,
    new_parent_id: str | None,
    index: int | None = None,
) -> ReorderResult:
    """Reparent ``moved_id`` at ``index`` among the new siblings (end when None)."""
    return _relocate(items, build_tree(items), moved_id, new_parent_id, index)


@traced_engine("reorder.indent", "1.0", fingerprint_fields=("items", "item_id"))
def indent_item(items: Sequence[LineItem], item_id: str) -> ReorderResult:
    """Make the item the last child of its preceding sibling."""
    tree = build_tree(items)
    siblings = tree.sibling_ids(tree.parent_of(item_id))
    position = siblings.index(item_id)
    if position == 0:
        error = InvalidMoveTargetError(item_id, item_id, "no preceding sibling to indent under")
        return _rejected(items, item_id, error, WbsInvariant.PARENT_IS_CATEGORY)
    return _relocate(items, tree, item_id, siblings[position - 1], None)


@traced_engine("reorder.outdent", "1.0", fingerprint_fields=("items", "item_id"))
def outdent_item(items: Sequence[LineItem], item_id: str) -> ReorderResult:
    """Move the item out of its parent, right after that parent."""
    tree = build_tree(items)
    parent_id = tree.parent_of(item_id)
    if parent_id is None:
        error = InvalidMoveTargetError(item_id, item_id, "already at the top level")
        return _rejected(items, item_id, error, WbsInvariant.PARENT_IS_CATEGORY)
    grandparent_id = tree.parent_of(parent_id)
    index = tree.sibling_ids(grandparent_id).index(parent_id) + 1
    return _relocate(items, tree, item_id, grandparent_id, index)


@traced_engine("reorder.insert", "1.0", fingerprint_fields=("items", "parent_id", "index"))
def insert_item(
    items: Sequence[LineItem],
    new_item: LineItem,
    parent_id: str | None,
    index: int | None = None,
) -> ReorderResult:
    """
    Place a newly created item and renumber its sibling group.

    The new item is appended to the flat list; it never appears in
    ``patches`` (it is a creation, not an update).
    """
    tree = build_tree(items)
    if new_item.id in tree:
        raise InvalidLineItemError("id", new_item.id, "an item with this id already exists")
    if parent_id is not None:
        target = tree.get(parent_id)
        if not target.item.is_category:
            error = InvalidMoveTargetError(new_item.id, parent_id, "target is a priced item")
            return _rejected(items, new_item.id, error, WbsInvariant.PARENT_IS_CATEGORY)

    group = list(tree.sibling_ids(parent_id))
    position = len(group) if index is None else max(0, min(index, len(group)))
    group.insert(position, new_item.id)

    placed = new_item.with_changes(parent_id=parent_id, order=position)
    updated: dict[str, LineItem] = {}
    for pos, item_id in enumerate(group):
        if item_id == new_item.id:
            continue
        existing = tree.get(item_id).item
        if existing.order != pos:
            updated[item_id] = existing.with_changes(order=pos)

    new_items, patches = _apply_changes(items, tree, updated)
    logger.info("item_inserted", extra={
        "item_id": new_item.id,
        "parent_id": parent_id,
        "position": position,
        "patch_count": len(patches),
    })
    return ReorderResult(items=(*new_items, placed), patches=patches)


@traced_engine("reorder.delete", "1.0", fingerprint_fields=("items", "item_id"))
def delete_item(items: Sequence[LineItem], item_id: str) -> DeleteResult:
    """
    Remove an item and its whole subtree, then close the gap it left.

    Returns the removed ids in pre-order and patches for the remaining
    siblings whose order shifted.
    """
    tree = build_tree(items)
    parent_id = tree.parent_of(item_id)
    removed = tree.subtree_ids(item_id)
    removed_set = set(removed)

    group = [i for i in tree.sibling_ids(parent_id) if i != item_id]
    updated = _renumber(tree, group, parent_id, None)
    survivors = [item for item in items if item.id not in removed_set]
    new_items, patches = _apply_changes(survivors, tree, updated)

    logger.info("item_deleted", extra={
        "item_id": item_id,
        "removed_count": len(removed),
        "patch_count": len(patches),
    })
    return DeleteResult(items=new_items, removed_ids=removed, patches=patches)
