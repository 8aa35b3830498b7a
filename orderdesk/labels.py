from __future__ import annotations

import math
import re
from typing import Any, Iterable, Mapping, Optional

from orderdesk.calc_utils import round2
from orderdesk.models import Document

STATE_LABELS = {
    "draft": ("Pendiente", "yellow"),
    "confirmed": ("Confirmada", "cyan"),
    "completed": ("Completada", "emerald"),
    "canceled": ("Cancelada", "red"),
    "cancelled": ("Cancelada", "red"),
}

TYPE_LABELS = {
    "purchase": "Compra",
    "sale": "Venta",
    "in": "Entrada",
    "out": "Salida",
    "return": "Devolución",
    "cut": "Corte",
    "transform": "Transformación",
}

_AFTER_SLASH_RE = re.compile(r"/\s*\w")


def state_label(state: Optional[str]) -> dict[str, str]:
    if state not in STATE_LABELS:
        return {"key": "error", "label": "Error", "variant": "red"}
    label, variant = STATE_LABELS[state]
    return {"key": state, "label": label, "variant": variant}


def type_label(order_type: Optional[str]) -> str:
    return TYPE_LABELS.get(order_type or "", "")


def badge_variant(document: Document) -> str:
    if document.state == "completed":
        return "purple" if document.type == "sale" and document.is_invoiced else "emerald"
    if document.state in STATE_LABELS:
        return STATE_LABELS[document.state][1]
    return "zinc"


def document_label(
    document: Optional[Document],
    include_code: bool = False,
    include_container_code: bool = True,
    include_invoices: bool = True,
) -> str:
    if document is None:
        return ""
    parts = []
    if include_code and document.code:
        parts.append(document.code)
    if include_container_code and document.container_code:
        parts.append(document.container_code)
    if include_invoices:
        if document.invoice_number_type_a:
            parts.append(f"ADTX-{document.invoice_number_type_a}")
        if document.invoice_number_type_b:
            parts.append(f"AD-{document.invoice_number_type_b}")
    return " | ".join(parts)


def invoice_label(document: Document) -> str:
    """Invoice numbers (A and B) followed by the document code."""
    invoice_a = (
        document.invoice_number_type_a
        or document.invoice_number
        or document.siigo_id_type_a
        or document.siigo_id
    )
    invoice_b = document.invoice_number_type_b or document.siigo_id_type_b

    parts = []
    if invoice_a:
        parts.append(f"ADTX-{invoice_a}")
    if invoice_b:
        parts.append(f"AD-{invoice_b}")
    parts.append(document.code or f"ORDER-{document.id}")
    return " | ".join(parts)


def invoice_code_label(document: Optional[Document]) -> str:
    if document is None:
        return ""
    label = ""
    if document.invoice_number_type_a:
        label = f"ADTX-{document.invoice_number_type_a}"
    if document.invoice_number_type_b:
        label += f" | AD-{document.invoice_number_type_b}"
    return label


def party_label(party: Optional[Mapping[str, Any]]) -> str:
    if not party:
        return ""
    return f"{party.get('name') or ''} {party.get('lastName') or ''}".strip()


def format_amount(value: Any, symbol: Optional[str] = None) -> str:
    """es-ES style: "12.345,60"; four-digit integers are not grouped ("1234,50")."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return ""
    if math.isnan(number) or math.isinf(number):
        return ""

    number = round2(number)
    sign = "-" if number < 0 else ""
    integer, decimals = f"{abs(number):.2f}".split(".")
    if len(integer) > 4:
        integer = f"{int(integer):,}".replace(",", ".")
    text = f"{sign}{integer},{decimals}"
    return f"{symbol} {text}" if symbol else text


def format_product_name(name: str) -> str:
    text = (name or "").lower()
    text = text[:1].upper() + text[1:]
    return _AFTER_SLASH_RE.sub(lambda match: match.group(0).upper(), text, count=1)


def units_are_consistent(products: Iterable[Any]) -> bool:
    products = list(products)
    if not products:
        return False

    def unit(product: Any) -> Optional[str]:
        if isinstance(product, Mapping):
            return product.get("unit")
        return getattr(product, "unit", None)

    first = unit(products[0])
    return all(unit(product) == first for product in products)
