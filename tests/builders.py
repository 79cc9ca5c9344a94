"""Line item builders shared by the test modules."""

from wbs_kernel.domain.line_item import LineItem


def category(item_id, name=None, parent_id=None, order=0):
    return LineItem.category(
        item_id, name or f"Category {item_id}", parent_id=parent_id, order=order
    )


def priced(
    item_id,
    parent_id=None,
    order=0,
    quantity="10",
    price="100",
    unit="m2",
    name=None,
    **extra,
):
    return LineItem.priced(
        item_id,
        name or f"Item {item_id}",
        unit,
        quantity,
        price,
        parent_id=parent_id,
        order=order,
        **extra,
    )
