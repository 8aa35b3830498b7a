"""Document lifecycle and the state-dependent quantity of each line."""

from __future__ import annotations

from typing import Iterable, Optional

from orderdesk.calc_utils import round2, to_number
from orderdesk.invoice import net_price
from orderdesk.models import DisplayedLine, Document, OrderProduct

DRAFT = "draft"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELED = "canceled"

# Both spellings exist in stored documents.
CANCELED_STATES = frozenset({"canceled", "cancelled"})
TERMINAL_STATES = frozenset({COMPLETED}) | CANCELED_STATES
DELETABLE_STATES = frozenset({DRAFT, CONFIRMED})

_NEXT_STATE = {DRAFT: CONFIRMED, CONFIRMED: COMPLETED}

_QUANTITY_FIELDS = {
    DRAFT: ("requested_quantity", "requested_packages"),
    CONFIRMED: ("confirmed_quantity", "confirmed_packages"),
    COMPLETED: ("delivered_quantity", "delivered_packages"),
}


class InvalidTransition(ValueError):
    pass


def select_quantity(order_product: OrderProduct, state: Optional[str]) -> tuple[float, float]:
    fields = _QUANTITY_FIELDS.get(state or "")
    if fields is None:
        return 0.0, 0.0
    quantity_field, packages_field = fields
    return (
        to_number(getattr(order_product, quantity_field)),
        to_number(getattr(order_product, packages_field)),
    )


def is_terminal(state: Optional[str]) -> bool:
    return (state or "") in TERMINAL_STATES


def is_read_only(document: Document, is_admin: bool = False) -> bool:
    if is_admin:
        return False
    return is_terminal(document.state) or document.is_invoiced


def can_delete(document: Document) -> bool:
    return (document.state or "") in DELETABLE_STATES


def can_transition(current: Optional[str], target: str) -> bool:
    current = current or DRAFT
    if is_terminal(current):
        return False
    if target in CANCELED_STATES:
        return True
    return _NEXT_STATE.get(current) == target


def transition(document: Document, target: str) -> Document:
    if not can_transition(document.state, target):
        raise InvalidTransition(f"Cannot move document from {document.state} to {target}")
    return document.model_copy(update={"state": target})


def line_display(order_product: OrderProduct, state: Optional[str]) -> DisplayedLine:
    price = net_price(order_product)
    quantity, packages = select_quantity(order_product, state)
    return DisplayedLine(
        price=price,
        quantity=quantity,
        packages=packages,
        total=round2(price * quantity),
    )


def footer_totals(order_products: Iterable[OrderProduct], state: Optional[str]) -> DisplayedLine:
    quantity = 0.0
    packages = 0.0
    total = 0.0
    lines = [op for op in order_products if op.product]
    for op in lines:
        line = line_display(op, state)
        quantity += line.quantity
        packages += line.packages
        total += line.price * line.quantity
    return DisplayedLine(
        price=0,
        quantity=round2(quantity),
        packages=round2(packages),
        total=round2(total),
    )
