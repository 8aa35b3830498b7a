from __future__ import annotations

from typing import Iterable, Optional

from orderdesk.calc_utils import clamp, round2, round_int, to_number
from orderdesk.models import Document, EntityId, Item, OrderProduct, PackingListStats, ProductProgress
from orderdesk.quantities import CONFIRMED


def product_progress(order_product: OrderProduct) -> ProductProgress:
    items = order_product.items
    requested = to_number(order_product.requested_quantity)
    confirmed = to_number(order_product.confirmed_quantity)

    percent = round2(confirmed / requested * 100) if requested else 0.0

    return ProductProgress(
        total_quantity=round2(sum(item.amount for item in items)),
        items_count=len(items),
        items_with_quantity=sum(1 for item in items if item.amount > 0),
        requested_quantity=requested,
        confirmed_quantity=confirmed,
        percent=percent,
        is_completed=confirmed >= requested,
    )


def packing_list_stats(order_products: Iterable[OrderProduct]) -> PackingListStats:
    products = [op for op in order_products if op.product]

    total_items = 0
    items_with_quantity = 0
    total_quantity = 0.0
    for op in products:
        if op.items:
            total_items += len(op.items)
            items_with_quantity += sum(1 for item in op.items if item.amount > 0)
            total_quantity += sum(item.amount for item in op.items)
        else:
            # Lines without a packing list count as a single unit.
            quantity = to_number(op.quantity)
            items_with_quantity += 1 if quantity > 0 else 0
            total_quantity += quantity

    total_requested = sum(to_number(op.requested_quantity) for op in products)
    percent_complete = round_int(total_quantity / total_requested * 100) if total_requested > 0 else 0

    return PackingListStats(
        products_count=len(products),
        total_items=total_items,
        items_with_quantity=items_with_quantity,
        total_quantity=round2(total_quantity),
        total_requested=round2(total_requested),
        percent_complete=percent_complete,
        display_percent=int(clamp(percent_complete, 0, 100)),
    )


def apply_scanned_item(
    document: Document,
    order_product_id: EntityId,
    item: Item,
) -> Optional[Document]:
    """Attach a freshly scanned item to a line and move the document to confirmed.

    Returns None when the line is not part of the document.
    """
    if item.quantity and not item.current_quantity:
        item = item.model_copy(update={"current_quantity": item.quantity})

    order_products = list(document.order_products)
    for index, op in enumerate(order_products):
        if op.id != order_product_id:
            continue
        items = [*op.items, item]
        order_products[index] = op.model_copy(
            update={
                "items": items,
                "confirmed_quantity": round2(sum(i.amount for i in items)),
            }
        )
        return document.model_copy(update={"state": CONFIRMED, "order_products": order_products})
    return None
