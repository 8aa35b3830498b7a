"""Item selection for sale returns.

A return is built from the items of an earlier sale. Each selected item
carries the quantity it was sold with (the upper bound of what can come back)
and the quantity being returned, which defaults to everything.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from orderdesk.calc_utils import clamp, round2, round_int, to_number
from orderdesk.models import (
    Document,
    EntityId,
    Item,
    OrderProduct,
    ReturnProgress,
    ReturnStats,
    SelectedReturnItem,
)


def original_quantity(item: Item) -> float:
    if item.parent_item is not None:
        parent = item.parent_item
        return to_number(parent.quantity or parent.current_quantity)
    return to_number(item.quantity or item.current_quantity or item.original_quantity)


def clamp_return_quantity(value: Any, original: float) -> float:
    return clamp(to_number(value), 0, original)


class ReturnSelection:
    def __init__(
        self,
        order_products: Iterable[OrderProduct] = (),
        selected_items: Iterable[SelectedReturnItem] = (),
    ) -> None:
        self.order_products = list(order_products)
        self.selected_items: list[SelectedReturnItem] = list(selected_items)

    def _find(self, item_id: EntityId) -> Optional[SelectedReturnItem]:
        for selected in self.selected_items:
            if selected.item_id == item_id:
                return selected
        return None

    def _product_for(self, item: Item) -> Optional[OrderProduct]:
        for op in self.order_products:
            if any(candidate.id == item.id for candidate in op.items):
                return op
        return None

    def is_selected(self, item_id: EntityId) -> bool:
        return self._find(item_id) is not None

    def return_quantity(self, item_id: EntityId) -> float:
        selected = self._find(item_id)
        return selected.return_quantity if selected else 0

    def on_item_toggle(self, item: Item, checked: bool) -> None:
        exists = self.is_selected(item.id)
        if not checked:
            if exists:
                self.selected_items = [s for s in self.selected_items if s.item_id != item.id]
            return
        if exists:
            return

        quantity = original_quantity(item)
        op = self._product_for(item)
        product = op.product if op else None
        if product is None and isinstance(item.product, dict):
            product_id, product_name = item.product.get("id"), item.product.get("name")
        else:
            product_id = product.id if product else item.product
            product_name = product.name if product else None

        self.selected_items.append(
            SelectedReturnItem(
                item_id=item.id,
                product_id=product_id,
                product_name=product_name,
                original_quantity=quantity,
                return_quantity=quantity,
                lot_number=item.lot_number,
                item_number=item.item_number or item.barcode,
                warehouse=item.warehouse,
            )
        )

    def on_quantity_change(self, item_id: EntityId, value: Any) -> Optional[float]:
        selected = self._find(item_id)
        if selected is None:
            return None
        selected.return_quantity = clamp_return_quantity(value, selected.original_quantity)
        return selected.return_quantity

    def is_fully_selected(self, order_product: OrderProduct) -> bool:
        if not order_product.items:
            return False
        return all(self.is_selected(item.id) for item in order_product.items)

    def is_partially_selected(self, order_product: OrderProduct) -> bool:
        if not order_product.items:
            return False
        some = any(self.is_selected(item.id) for item in order_product.items)
        return some and not self.is_fully_selected(order_product)

    def toggle_product(self, order_product: OrderProduct) -> None:
        checked = not self.is_fully_selected(order_product)
        for item in order_product.items:
            self.on_item_toggle(item, checked)

    def product_totals(self, order_product: OrderProduct) -> tuple[float, float]:
        total_original = sum(original_quantity(item) for item in order_product.items)
        total_return = sum(self.return_quantity(item.id) for item in order_product.items)
        return total_original, total_return

    @property
    def stats(self) -> ReturnStats:
        return ReturnStats(
            count=len(self.selected_items),
            total_units=round2(sum(s.return_quantity for s in self.selected_items)),
        )

    def is_valid(self, order: Any, warehouse: Any) -> bool:
        if not order or not warehouse or not self.selected_items:
            return False
        return all(s.return_quantity > 0 for s in self.selected_items)

    def to_payload(self, order_id: EntityId, warehouse_id: EntityId, **extra: Any) -> Dict[str, Any]:
        """Body for creating the return order, items grouped by product."""
        products: Dict[str, Dict[str, Any]] = {}
        for selected in self.selected_items:
            key = str(selected.product_id)
            entry = products.setdefault(
                key,
                {"product": selected.product_id, "requestedQuantity": 0, "items": []},
            )
            entry["requestedQuantity"] = round2(entry["requestedQuantity"] + selected.return_quantity)
            entry["items"].append(
                {
                    "parentItem": selected.item_id,
                    "quantity": selected.return_quantity,
                    "lot": selected.lot_number,
                    "itemNumber": selected.item_number,
                    "warehouse": warehouse_id,
                }
            )
        return {
            "type": "return",
            "parentOrder": order_id,
            "destinationWarehouse": warehouse_id,
            "products": list(products.values()),
            **extra,
        }


def merge_return_with_parent(return_order: Document, parent_order: Document) -> Document:
    """Show a stored return through its original sale, matching items by barcode."""
    returned: Dict[str, Dict[str, Any]] = {}
    for op in return_order.order_products:
        for item in op.items:
            if item.barcode:
                returned[item.barcode] = {
                    "return_quantity": to_number(item.current_quantity or item.quantity),
                    "return_item_id": item.id,
                }

    merged = []
    for parent_op in parent_order.order_products:
        items = []
        for parent_item in parent_op.items:
            match = returned.get(parent_item.barcode or "")
            update: Dict[str, Any] = {
                "current_quantity": to_number(parent_item.quantity or parent_item.current_quantity),
                "selected": match is not None,
                "return_quantity": match["return_quantity"] if match else 0,
            }
            if match:
                update["return_item_id"] = match["return_item_id"]
            items.append(parent_item.model_copy(update=update))
        merged.append(parent_op.model_copy(update={"items": items}))

    return return_order.model_copy(update={"parent_order": parent_order, "order_products": merged})


def selection_from_merged(document: Document) -> ReturnSelection:
    """Rebuild the selection state of a merged return document."""
    selection = ReturnSelection(document.order_products)
    for op in document.order_products:
        for item in op.items:
            extra = item.model_extra or {}
            if extra.get("selected"):
                selection.on_item_toggle(item, True)
                selection.on_quantity_change(item.id, extra.get("return_quantity"))
    return selection


def return_progress(order_product: OrderProduct) -> ReturnProgress:
    original = sum(original_quantity(item) for item in order_product.items if item.parent_item)
    returned = sum(to_number(item.quantity) for item in order_product.items)
    percent = round_int(returned / original * 100) if original > 0 else 0
    return ReturnProgress(
        original=round2(original),
        returned=round2(returned),
        percent=percent,
        items_with_quantity=sum(1 for item in order_product.items if to_number(item.quantity) > 0),
    )
