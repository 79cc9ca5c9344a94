"""
Typed exception hierarchy for the WBS kernel.

Every error carries a machine-readable ``code`` class attribute and
structured attributes, so callers catch by type and log by field rather
than parsing messages.

Only caller mistakes raise. Malformed *data* inside a line-item list
(dangling parents, cycles, out-of-range quantities) is corrected in place
and reported as a ``Diagnostic`` instead; a single bad row must never abort
a read of the whole tree.

    WbsKernelError (base)
    |
    +-- LineItemError
    |   +-- LineItemNotFoundError
    |   +-- InvalidLineItemError
    |
    +-- MarkupError
    |   +-- InvalidMarkupError
    |
    +-- StructureError
    |   +-- ReparentCycleError
    |   +-- InvalidMoveTargetError
    |
    +-- ConfigurationError
        +-- InvalidSettingsError

Category   | Code                  | When Raised
-----------|-----------------------|------------------------------------------
LineItem   | LINE_ITEM_NOT_FOUND   | Operation names an id absent from the list
           | INVALID_LINE_ITEM     | Field value cannot be coerced / is illegal
Markup     | INVALID_MARKUP        | BDI percentage not finite or <= -100
Structure  | REPARENT_CYCLE        | Proposed edge would make a node its own
           |                       | ancestor (raise_if_rejected only)
           | INVALID_MOVE_TARGET   | Proposed parent is a priced item
Config     | INVALID_SETTINGS      | Engine settings failed validation
"""

from typing import Any


class WbsKernelError(Exception):
    """
    Base exception for all WBS kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "WBS_KERNEL_ERROR"


# Line item exceptions


class LineItemError(WbsKernelError):
    """Base exception for line-item related errors."""

    code: str = "LINE_ITEM_ERROR"


class LineItemNotFoundError(LineItemError):
    """A line item referenced by an operation does not exist."""

    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Line item not found: {item_id}")


class InvalidLineItemError(LineItemError):
    """A line item field holds a value that cannot be accepted."""

    code: str = "INVALID_LINE_ITEM"

    def __init__(self, field_name: str, value: Any, reason: str):
        self.field_name = field_name
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Invalid value for {field_name}: {value!r} ({reason})")


# Markup exceptions


class MarkupError(WbsKernelError):
    """Base exception for BDI markup errors."""

    code: str = "MARKUP_ERROR"


class InvalidMarkupError(MarkupError):
    """BDI percentage cannot produce a positive markup factor."""

    code: str = "INVALID_MARKUP"

    def __init__(self, bdi_percent: Any):
        self.bdi_percent = str(bdi_percent)
        super().__init__(
            f"Invalid BDI percentage: {bdi_percent} (must be finite and > -100)"
        )


# Structure exceptions


class StructureError(WbsKernelError):
    """Base exception for structural (hierarchy) errors."""

    code: str = "STRUCTURE_ERROR"


class ReparentCycleError(StructureError):
    """
    Reparenting would place a node under itself or its own descendant.

    The reorder engine reports this as a rejected ``ReorderResult``; the
    exception is raised only when the caller asks for it.
    """

    code: str = "REPARENT_CYCLE"

    def __init__(self, item_id: str, new_parent_id: str, path: list[str]):
        self.item_id = item_id
        self.new_parent_id = new_parent_id
        self.path = path
        super().__init__(
            f"Cannot move {item_id} under {new_parent_id}: "
            f"cycle {' -> '.join(path)}"
        )


class InvalidMoveTargetError(StructureError):
    """Proposed parent cannot hold children."""

    code: str = "INVALID_MOVE_TARGET"

    def __init__(self, item_id: str, target_id: str, reason: str):
        self.item_id = item_id
        self.target_id = target_id
        self.reason = reason
        super().__init__(f"Cannot move {item_id} into {target_id}: {reason}")


# Configuration exceptions


class ConfigurationError(WbsKernelError):
    """Base exception for engine configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidSettingsError(ConfigurationError):
    """Engine settings failed validation."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, setting: str, value: Any, reason: str):
        self.setting = setting
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Invalid setting {setting}={value!r}: {reason}")
