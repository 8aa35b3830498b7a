from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Iterable, Optional

from pydantic import BaseModel

from orderdesk.calc_utils import to_number
from orderdesk.models import Item, OrderProduct, Product

logger = logging.getLogger(__name__)

ProductLookup = Callable[[Optional[str], Optional[str]], Optional[Dict[str, Any]]]


def _new_id() -> str:
    return str(uuid.uuid4())


def empty_item() -> Item:
    return Item(id=_new_id(), quantity=None, lot_number=None, item_number=None)


def empty_product_row() -> OrderProduct:
    return OrderProduct(id=_new_id(), product=None, price=None, items=[empty_item()])


class BulkMapResult(BaseModel):
    success: bool
    message: str
    products: list[OrderProduct] = []
    missing: list[str] = []
    added: int = 0


def _key(value: Any) -> str:
    return str(value or "").strip().lower()


def _matches(product: Product, identifier: str, name: Optional[str]) -> bool:
    if identifier and identifier in (_key(product.id), _key(product.code)):
        return True
    return bool(name) and _key(product.name) == _key(name)


def find_local_product(
    identifier: str,
    name: Optional[str],
    current_products: Iterable[OrderProduct],
    fetched_products: Iterable[Product],
) -> Optional[Product]:
    candidates = [op.product for op in current_products if op.product] + list(fetched_products)
    for product in candidates:
        if _matches(product, _key(identifier), name):
            return product
    return None


def dedupe_products(rows: Iterable[OrderProduct], ensure_empty_row: bool = True) -> list[OrderProduct]:
    """Merge rows that point at the same product and keep one empty row last."""
    seen: Dict[str, OrderProduct] = {}
    result: list[OrderProduct] = []
    empty_row: Optional[OrderProduct] = None

    for row in rows:
        if not row.product:
            if empty_row is None:
                empty_row = row
            continue
        key = _key(row.product.id or row.product.code)
        if not key:
            result.append(row)
            continue
        existing = seen.get(key)
        if existing is None:
            copy = row.model_copy(update={"items": list(row.items)})
            seen[key] = copy
            result.append(copy)
            continue
        existing.items = [*existing.items, *row.items]
        if existing.requested_quantity is None:
            existing.requested_quantity = row.requested_quantity if row.requested_quantity is not None else row.quantity
        if existing.quantity is None:
            existing.quantity = row.quantity
        if existing.price is None:
            existing.price = row.price if row.price is not None else 0

    if empty_row is not None:
        result.append(empty_row)
    if ensure_empty_row and all(row.product for row in result):
        result.append(empty_product_row())
    return result


def _same_product(row: OrderProduct, product: Product) -> bool:
    if not row.product:
        return False
    current_id, current_code = _key(row.product.id), _key(row.product.code)
    return bool(
        (current_id and current_id == _key(product.id))
        or (current_code and current_code == _key(product.code))
        or (current_id and current_id == _key(product.code))
    )


def map_bulk_items(
    items: list[Dict[str, Any]],
    current_products: list[OrderProduct],
    fetched_products: Iterable[Product] = (),
    fetch_product: Optional[ProductLookup] = None,
    ensure_empty_row: bool = True,
) -> BulkMapResult:
    """Attach spreadsheet items to document lines, resolving their products."""
    if not items:
        return BulkMapResult(success=False, message="No items to add", products=current_products)

    if any(not item.get("quantity") or not (item.get("productId") or item.get("name")) for item in items):
        return BulkMapResult(success=False, message="The file format is not valid", products=current_products)

    groups: Dict[str, Dict[str, Any]] = {}
    for item in items:
        raw_identifier = str(item.get("productId") or item.get("name") or item.get("code") or "").strip()
        if not raw_identifier:
            continue
        entry = groups.setdefault(
            _key(raw_identifier),
            {"identifier": raw_identifier, "name": item.get("name"), "items": []},
        )
        entry["items"].append(item)

    fetched = list(fetched_products)
    matched: Dict[str, Dict[str, Any]] = {}
    missing: list[str] = []
    for entry in groups.values():
        product = find_local_product(entry["identifier"], entry["name"], current_products, fetched)
        if product is None and fetch_product is not None:
            raw = fetch_product(entry["identifier"], entry["name"])
            product = Product.model_validate(raw) if raw else None
        if product is None:
            missing.append(entry["identifier"] or entry["name"] or "-")
            continue
        key = str(product.id or product.code)
        if key in matched:
            matched[key]["items"].extend(entry["items"])
        else:
            matched[key] = {"product": product, "items": list(entry["items"])}

    if not matched:
        return BulkMapResult(
            success=False,
            message="Could not match the items with existing products",
            products=current_products,
            missing=missing,
        )

    rows = list(current_products)
    for entry in matched.values():
        product: Product = entry["product"]
        total_quantity = sum(to_number(item.get("quantity")) for item in entry["items"])
        new_items = [
            Item(
                id=_new_id(),
                product=product.id,
                quantity=item.get("quantity"),
                lot_number=item.get("lotNumber"),
                item_number=item.get("itemNumber"),
            )
            for item in entry["items"]
        ]

        index = next((i for i, row in enumerate(rows) if _same_product(row, product)), None)
        if index is not None:
            existing = rows[index]
            rows[index] = existing.model_copy(
                update={
                    "product": product,
                    "requested_quantity": existing.requested_quantity or existing.quantity or total_quantity,
                    "quantity": existing.quantity or total_quantity,
                    "items": new_items,
                }
            )
            continue

        new_row = OrderProduct(
            id=_new_id(),
            product=product,
            name=product.name,
            quantity=total_quantity,
            requested_quantity=total_quantity,
            price=0,
            items=new_items,
        )
        insert_at = next((i for i, row in enumerate(rows) if not row.product), None)
        if insert_at is None:
            rows.append(new_row)
        else:
            rows.insert(insert_at, new_row)

    added = sum(len(entry["items"]) for entry in matched.values())
    message = f"{added} items added to the order"
    if missing:
        logger.info("Bulk items without a product: %s", ", ".join(missing))
        message = f"{message}. Products not found: {', '.join(missing)}"

    return BulkMapResult(
        success=True,
        message=message,
        products=dedupe_products(rows, ensure_empty_row=ensure_empty_row),
        missing=missing,
        added=added,
    )
