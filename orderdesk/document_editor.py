"""Editable state of a document detail screen.

Rows mirror the document's order products plus one trailing empty row where a
new product can be picked. Calls that reach the backend go through a map of
callables so the same editor drives sales, purchases, returns and transfers.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from pydantic.alias_generators import to_camel

from orderdesk import strapi_client
from orderdesk.bulk_items import empty_item, empty_product_row
from orderdesk.calc_utils import parse_item_data, to_number
from orderdesk.invoice import invoice_resume
from orderdesk.models import (
    ActionResult,
    Document,
    EntityId,
    InvoiceResume,
    Item,
    OrderProduct,
    PackingListStats,
    Product,
)
from orderdesk.packing_list import packing_list_stats
from orderdesk.quantities import can_delete, is_read_only

logger = logging.getLogger(__name__)

READ_ONLY_MESSAGE = "The document can no longer be edited"

ADD_ITEM_FAILED = "Could not add the item, it does not exist or was already sold"


def default_actions(token: Optional[str] = None) -> Dict[str, Callable[..., Dict[str, Any]]]:
    return {
        "update_document": lambda doc_id, data: strapi_client.update_order(doc_id, data, token=token),
        "delete_document": lambda doc_id: strapi_client.delete_order(doc_id, token=token),
        "add_item": lambda doc_id, payload: strapi_client.add_order_item(doc_id, payload, token=token),
        "remove_item": lambda doc_id, item_id: strapi_client.remove_order_item(doc_id, item_id, token=token),
    }


def _with_field(model: Any, field: str, value: Any) -> Any:
    """Copy of a row with one field replaced; accepts snake_case or camelCase names."""
    data = model.model_dump(by_alias=True)
    data[to_camel(field) if "_" in field else field] = value
    return type(model).model_validate(data)


def _row_from_order_product(order_product: OrderProduct) -> OrderProduct:
    if order_product.items:
        items = [item.model_copy(update={"quantity": item.current_quantity}) for item in order_product.items]
    else:
        items = [empty_item()]
    return order_product.model_copy(update={"items": items})


class DocumentEditor:
    def __init__(
        self,
        document: Document,
        actions: Optional[Dict[str, Callable[..., Dict[str, Any]]]] = None,
        available_products: Iterable[Product] = (),
        prepare_update_data: Optional[Callable[[Document, list[OrderProduct]], Dict[str, Any]]] = None,
        taxes: Iterable[Any] = (),
        is_admin: bool = False,
    ) -> None:
        self.document = document
        self.actions = {**default_actions(), **(actions or {})}
        self.available_products = list(available_products)
        self.prepare_update_data = prepare_update_data
        self.taxes = list(taxes)
        self.is_admin = is_admin
        self.expanded_rows: set[EntityId] = set()
        self.notes = document.notes or ""
        self.products: list[OrderProduct] = [
            *(_row_from_order_product(op) for op in document.order_products),
            empty_product_row(),
        ]

    @property
    def read_only(self) -> bool:
        return is_read_only(self.document, self.is_admin)

    def _index(self, row_id: EntityId) -> Optional[int]:
        for index, row in enumerate(self.products):
            if row.id == row_id:
                return index
        return None

    # -- row editing -------------------------------------------------------

    def update_product_field(self, row_id: EntityId, field: str, value: Any) -> ActionResult:
        if self.read_only:
            return ActionResult(success=False, message=READ_ONLY_MESSAGE)
        index = self._index(row_id)
        if index is None:
            return ActionResult(success=False, message="Row not found")
        self.products[index] = _with_field(self.products[index], field, value)
        return ActionResult(success=True, data=self.products[index])

    def update_item_field(self, row_id: EntityId, item_id: EntityId, field: str, value: Any) -> ActionResult:
        if self.read_only:
            return ActionResult(success=False, message=READ_ONLY_MESSAGE)
        index = self._index(row_id)
        if index is None:
            return ActionResult(success=False, message="Row not found")

        row = self.products[index]
        items = []
        for item in row.items:
            items.append(_with_field(item, field, value) if item.id == item_id else item)
        if items and items[-1].quantity not in (None, 0):
            items.append(empty_item())

        self.products[index] = row.model_copy(update={"items": items})
        return ActionResult(success=True, data=self.products[index])

    def select_product(self, product: Product, index: int) -> ActionResult:
        if self.read_only:
            return ActionResult(success=False, message=READ_ONLY_MESSAGE)
        if not 0 <= index < len(self.products):
            return ActionResult(success=False, message="Row not found")
        self.products[index] = self.products[index].model_copy(
            update={"product": product, "items": [empty_item()]}
        )
        if self.products[-1].product:
            self.products.append(empty_product_row())
        return ActionResult(success=True, data=self.products[index])

    def delete_product_row(self, index: int) -> ActionResult:
        if self.read_only:
            return ActionResult(success=False, message=READ_ONLY_MESSAGE)
        self.products = [row for i, row in enumerate(self.products) if i != index]
        if not self.products or self.products[-1].product is not None:
            self.products.append(empty_product_row())
        return ActionResult(success=True)

    def toggle_expanded(self, row_id: EntityId) -> bool:
        if row_id in self.expanded_rows:
            self.expanded_rows.discard(row_id)
            return False
        self.expanded_rows.add(row_id)
        return True

    def available_products_for_row(self, current_index: int) -> list[Product]:
        taken = {
            row.product.id
            for index, row in enumerate(self.products)
            if index != current_index and row.product
        }
        return [product for product in self.available_products if product.id not in taken]

    # -- backend calls -----------------------------------------------------

    def add_item(self, product_id: EntityId, data: Any = "") -> ActionResult:
        """Register a scanned barcode (or a typed quantity) against a product."""
        if self.read_only:
            return ActionResult(success=False, message=READ_ONLY_MESSAGE)

        parsed = parse_item_data(data)
        source = self.document.source_warehouse
        payload = {
            "product": product_id,
            "item": {
                "barcode": parsed["barcode"],
                "quantity": parsed["quantity"],
                "product": product_id,
                "warehouse": source.get("id") if isinstance(source, dict) else source,
            },
        }
        response = self.actions["add_item"](self.document.id, payload)
        if not response.get("success"):
            logger.info("Add item to %s failed: %s", self.document.id, response.get("error"))
            return ActionResult(success=False, message=ADD_ITEM_FAILED)

        raw = dict(response.get("data") or {})
        current_quantity = raw.pop("currentQuantity", None)
        item = Item.model_validate({**raw, "quantity": current_quantity})
        item_product = item.product.get("id") if isinstance(item.product, dict) else item.product

        for index, row in enumerate(self.products):
            if row.product and str(row.product.id) == str(item_product):
                self.products[index] = row.model_copy(update={"items": [item, *row.items]})
        return ActionResult(success=True, message="Item added", data=item)

    def remove_item(self, row_id: EntityId, item_id: EntityId) -> ActionResult:
        if self.read_only:
            return ActionResult(success=False, message=READ_ONLY_MESSAGE)

        response = self.actions["remove_item"](self.document.id, item_id)
        if not response.get("success"):
            return ActionResult(success=False, message="Could not remove the item")

        for index, row in enumerate(self.products):
            if row.id == row_id:
                self.products[index] = row.model_copy(
                    update={"items": [item for item in row.items if item.id != item_id]}
                )
        return ActionResult(success=True, message="Item removed")

    def build_update_payload(self, additional_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        extra = (self.prepare_update_data(self.document, self.products) if self.prepare_update_data else None) or {}
        destination = extra.get("destinationWarehouse")

        products = []
        for row in self.products:
            if not row.product:
                continue
            items = []
            for item in row.items:
                if item.quantity in (0, None):
                    continue
                items.append(
                    {
                        "id": item.id if item.document_id else None,
                        "lot": item.lot_number,
                        "itemNumber": item.item_number,
                        "warehouse": destination or item.warehouse_id,
                        "quantity": to_number(item.quantity),
                    }
                )
            products.append(
                {
                    "product": row.product.id,
                    "requestedQuantity": row.requested_quantity,
                    "price": row.price,
                    "ivaIncluded": row.iva_included,
                    "invoicePercentage": row.invoice_percentage,
                    "items": items,
                }
            )

        return {"products": products, "notes": self.notes, **extra, **(additional_data or {})}

    def save(self, additional_data: Optional[Dict[str, Any]] = None) -> ActionResult:
        if self.read_only:
            return ActionResult(success=False, message=READ_ONLY_MESSAGE)
        result = self.actions["update_document"](self.document.id, self.build_update_payload(additional_data))
        if not result.get("success"):
            logger.info("Update of document %s failed: %s", self.document.id, result.get("error"))
            return ActionResult(success=False, message="Error updating the document")
        return ActionResult(success=True, message="Document updated", data=result.get("data"))

    def delete(self) -> ActionResult:
        if not can_delete(self.document):
            return ActionResult(success=False, message="Only draft or confirmed documents can be deleted")
        result = self.actions["delete_document"](self.document.id)
        if not result.get("success"):
            return ActionResult(success=False, message="Error deleting the document")
        return ActionResult(success=True, message="Document deleted", data=result.get("data"))

    # -- derived values ----------------------------------------------------

    @property
    def stats(self) -> PackingListStats:
        return packing_list_stats(self.products)

    @property
    def resume(self) -> InvoiceResume:
        return invoice_resume(self.products, self.taxes)
