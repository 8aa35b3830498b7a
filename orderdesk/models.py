# orderdesk/models.py
from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


EntityId = Union[int, str]


class StrapiModel(BaseModel):
    """Base for payloads exchanged with Strapi (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        # Editable rows carry "" until the user types something.
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Product(StrapiModel):
    id: Optional[EntityId] = None
    code: Optional[str] = None
    name: Optional[str] = None
    unit: Optional[str] = None
    barcode: Optional[str] = None

    @field_validator("code", "barcode", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class Item(StrapiModel):
    id: Optional[EntityId] = None
    document_id: Optional[str] = None
    quantity: Optional[float] = None
    current_quantity: Optional[float] = None
    original_quantity: Optional[float] = None
    lot_number: Optional[str] = None
    item_number: Optional[str] = None
    barcode: Optional[str] = None
    warehouse: Optional[Any] = None
    product: Optional[Any] = None
    parent_item: Optional["Item"] = None

    @field_validator("lot_number", "item_number", "barcode", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def amount(self) -> float:
        """Quantity on hand for this item, falling back to currentQuantity."""
        if self.quantity:
            return float(self.quantity)
        return float(self.current_quantity or 0)

    @property
    def warehouse_id(self) -> Optional[EntityId]:
        if isinstance(self.warehouse, dict):
            return self.warehouse.get("id")
        return self.warehouse


class OrderProduct(StrapiModel):
    id: Optional[EntityId] = None
    product: Optional[Product] = None
    name: Optional[str] = None
    price: Optional[float] = None
    iva_included: bool = False
    invoice_percentage: float = 100

    quantity: Optional[float] = None
    requested_quantity: Optional[float] = None
    requested_packages: Optional[float] = None
    confirmed_quantity: Optional[float] = None
    confirmed_packages: Optional[float] = None
    delivered_quantity: Optional[float] = None
    delivered_packages: Optional[float] = None

    items: list[Item] = []

    @field_validator("product", mode="before")
    @classmethod
    def _product_ref(cls, value: Any) -> Any:
        # Unpopulated relations arrive as a bare id.
        if value == "":
            return None
        if isinstance(value, (int, str)) and not isinstance(value, bool):
            return {"id": value}
        return value

    @field_validator("iva_included", mode="before")
    @classmethod
    def _iva_default(cls, value: Any) -> Any:
        return False if value in (None, "") else value

    @field_validator("invoice_percentage", mode="before")
    @classmethod
    def _percentage_default(cls, value: Any) -> Any:
        return 100 if value in (None, "") else value

    @field_validator("items", mode="before")
    @classmethod
    def _items_default(cls, value: Any) -> Any:
        return [] if value in (None, "") else value

    @property
    def product_id(self) -> Optional[EntityId]:
        return self.product.id if self.product else None

    @property
    def items_quantity(self) -> float:
        return sum(item.amount for item in self.items)


class Document(StrapiModel):
    id: Optional[EntityId] = None
    document_id: Optional[str] = None
    code: Optional[str] = None
    type: Optional[str] = None
    state: Optional[str] = None
    notes: Optional[str] = None
    container_code: Optional[str] = None

    invoice_number: Optional[str] = None
    invoice_number_type_a: Optional[str] = None
    invoice_number_type_b: Optional[str] = None
    siigo_id: Optional[str] = None
    siigo_id_type_a: Optional[str] = None
    siigo_id_type_b: Optional[str] = None

    customer: Optional[Any] = None
    supplier: Optional[Any] = None
    source_warehouse: Optional[Any] = None
    destination_warehouse: Optional[Any] = None
    parent_order: Optional["Document"] = None

    order_products: list[OrderProduct] = []

    @field_validator(
        "invoice_number",
        "invoice_number_type_a",
        "invoice_number_type_b",
        "siigo_id",
        "siigo_id_type_a",
        "siigo_id_type_b",
        mode="before",
    )
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("order_products", mode="before")
    @classmethod
    def _products_default(cls, value: Any) -> Any:
        return [] if value in (None, "") else value

    @property
    def is_invoiced(self) -> bool:
        return bool(self.siigo_id_type_a or self.siigo_id_type_b)


class Tax(StrapiModel):
    id: Optional[EntityId] = None
    name: Optional[str] = None
    rate: float = Field(default=0, validation_alias=AliasChoices("amount", "rate"))
    threshold: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("treshold", "threshold")
    )
    use: Optional[str] = None
    application_type: Optional[str] = None


class SelectedReturnItem(StrapiModel):
    item_id: EntityId
    product_id: Optional[EntityId] = None
    product_name: Optional[str] = None
    original_quantity: float = 0
    return_quantity: float = 0
    lot_number: Optional[str] = None
    item_number: Optional[str] = None
    warehouse: Optional[Any] = None


# ---------------------------------------------------------------------------
# Derived values / results
# ---------------------------------------------------------------------------


class ActionResult(BaseModel):
    success: bool
    message: str = ""
    data: Any = None


class ValidationResult(BaseModel):
    valid: bool
    message: Optional[str] = None


class DisplayedLine(BaseModel):
    price: float
    quantity: float
    packages: float
    total: float


class InvoiceLine(BaseModel):
    price: float
    quantity: float
    quantity_for_taxes: float
    quantity_with_no_taxes: float
    subtotal_for_taxes: float
    subtotal_with_no_taxes: float


class TaxAmount(BaseModel):
    id: Optional[EntityId] = None
    name: str
    use: Optional[str] = None
    amount: float


class InvoiceResume(BaseModel):
    subtotal_for_taxes: float = 0
    subtotal_with_no_taxes: float = 0
    subtotal: float = 0
    taxes: list[TaxAmount] = []
    tax_amount: float = 0
    total: float = 0


class ProductProgress(BaseModel):
    total_quantity: float
    items_count: int
    items_with_quantity: int
    requested_quantity: float
    confirmed_quantity: float
    percent: float
    is_completed: bool


class PackingListStats(BaseModel):
    products_count: int = 0
    total_items: int = 0
    items_with_quantity: int = 0
    total_quantity: float = 0
    total_requested: float = 0
    percent_complete: int = 0
    display_percent: int = 0


class ReturnStats(BaseModel):
    count: int = 0
    total_units: float = 0


class ReturnProgress(BaseModel):
    original: float
    returned: float
    percent: int
    items_with_quantity: int


class BulkResult(BaseModel):
    succeeded: int = 0
    failed: int = 0
    errors: dict[str, str] = {}

    @property
    def message(self) -> str:
        return f"{self.succeeded} succeeded, {self.failed} failed"


Item.model_rebuild()
Document.model_rebuild()
