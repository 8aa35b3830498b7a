from __future__ import annotations

import re
import uuid
from typing import Any, Dict, Iterable, Sequence

from orderdesk.calc_utils import round2, to_number
from orderdesk.models import InvoiceLine, InvoiceResume, OrderProduct, Tax, TaxAmount

IVA_RATE = 0.19

TAX_PRIORITY = ["IVA - 19%", "Retefuente -2,5%", "ICA - 0,77%"]

INCREMENT = "increment"
SUBTOTAL_APPLICATION = "subtotal"


def _tax_key(name: str | None) -> str:
    # "IVA - 19%", "IVA 19%" and "iva 19.0 %" all name the same tax.
    key = (name or "").lower().replace(",", ".")
    key = re.sub(r"[\s\-]+", "", key)
    return re.sub(r"(\d+\.\d*?)0+%", r"\1%", key).replace(".%", "%")


_PRIORITY_INDEX = {_tax_key(name): index for index, name in enumerate(TAX_PRIORITY)}


def net_price(order_product: OrderProduct) -> float:
    """Unit price without IVA; prices entered with IVA included are backed out."""
    price = to_number(order_product.price)
    if order_product.iva_included:
        return round2(price / (1 + IVA_RATE))
    return price


def line_quantity(order_product: OrderProduct) -> float:
    if order_product.items:
        return sum(item.amount for item in order_product.items)
    return to_number(order_product.quantity)


def invoice_line(order_product: OrderProduct) -> InvoiceLine:
    price = net_price(order_product)
    quantity = line_quantity(order_product)
    percentage = to_number(order_product.invoice_percentage) / 100

    quantity_for_taxes = round2(quantity * percentage)
    quantity_with_no_taxes = round2(quantity - quantity_for_taxes)

    return InvoiceLine(
        price=price,
        quantity=quantity,
        quantity_for_taxes=quantity_for_taxes,
        quantity_with_no_taxes=quantity_with_no_taxes,
        subtotal_for_taxes=price * quantity_for_taxes,
        subtotal_with_no_taxes=price * quantity_with_no_taxes,
    )


def order_taxes(taxes: Iterable[TaxAmount]) -> list[TaxAmount]:
    """IVA, Retefuente and ICA first, then everything else in the given order."""
    fallback = len(_PRIORITY_INDEX)
    return sorted(taxes, key=lambda tax: _PRIORITY_INDEX.get(_tax_key(tax.name), fallback))


def _subtotal_taxes(taxes: Iterable[Tax | Dict[str, Any]]) -> list[Tax]:
    parsed = [tax if isinstance(tax, Tax) else Tax.model_validate(tax) for tax in taxes]
    return [
        tax
        for tax in parsed
        if tax.application_type in (None, SUBTOTAL_APPLICATION)
    ]


def invoice_resume(
    order_products: Sequence[OrderProduct],
    taxes: Iterable[Tax | Dict[str, Any]] = (),
) -> InvoiceResume:
    subtotal_for_taxes = 0.0
    subtotal_with_no_taxes = 0.0

    for order_product in order_products:
        if not order_product.product:
            continue
        line = invoice_line(order_product)
        subtotal_for_taxes += line.subtotal_for_taxes
        subtotal_with_no_taxes += line.subtotal_with_no_taxes

    subtotal = subtotal_for_taxes + subtotal_with_no_taxes

    tax_values = order_taxes(
        TaxAmount(
            id=tax.id,
            name=tax.name or "",
            use=tax.use,
            amount=subtotal_for_taxes * tax.rate
            if subtotal_for_taxes >= (tax.threshold or 0)
            else 0,
        )
        for tax in _subtotal_taxes(taxes)
    )

    tax_amount = 0.0
    for tax in tax_values:
        if tax.use == INCREMENT:
            tax_amount += tax.amount
        else:
            tax_amount -= tax.amount

    return InvoiceResume(
        subtotal_for_taxes=round2(subtotal_for_taxes),
        subtotal_with_no_taxes=round2(subtotal_with_no_taxes),
        subtotal=round2(subtotal),
        taxes=[tax.model_copy(update={"amount": round2(tax.amount)}) for tax in tax_values],
        tax_amount=round2(tax_amount),
        total=round2(subtotal + tax_amount),
    )


def resume_rows(resume: InvoiceResume) -> list[Dict[str, Any]]:
    """Subtotal, taxes and Total as rows for the summary table."""
    rows: list[Dict[str, Any]] = [
        {"id": str(uuid.uuid4()), "name": "Subtotal", "amount": resume.subtotal}
    ]
    for tax in resume.taxes:
        rows.append({"id": tax.id, "name": tax.name, "use": tax.use, "amount": tax.amount})
    rows.append({"id": f"total-{uuid.uuid4()}", "name": "Total", "amount": resume.total})
    return rows
