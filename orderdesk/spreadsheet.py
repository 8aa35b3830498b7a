from __future__ import annotations

import csv
import logging
import unicodedata
from io import BytesIO, StringIO
from typing import Any, Callable, Dict, Iterable, Optional

from openpyxl import load_workbook
from pydantic import BaseModel

from orderdesk.calc_utils import to_number
from orderdesk.models import ValidationResult

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
CSV_EXTENSIONS = (".csv",)

EMPTY_FILE_MESSAGE = "The file is empty"
UNSUPPORTED_FORMAT_MESSAGE = "Unsupported file format. Use .xlsx or .csv"


class SpreadsheetError(ValueError):
    pass


class ColumnRule(BaseModel):
    label: str
    variants: list[str]
    description: str = ""
    message: Optional[str] = None

    @property
    def error_message(self) -> str:
        return self.message or f'Missing required column "{self.label}"'


PRODUCT_COLUMNS = [
    ColumnRule(label="CODIGO", variants=["codigo", "code", "código"], description="Internal product code"),
    ColumnRule(label="NOMBRE", variants=["nombre", "name"], description="Product name"),
    ColumnRule(label="UNIDAD", variants=["unidad", "unit"], description="Unit of measure (und, kg, mts)"),
]

PACKING_LIST_COLUMNS = [
    ColumnRule(label="CANTIDAD", variants=["cantidad", "quantity"], description="Quantity received"),
    ColumnRule(
        label="ID",
        variants=["id", "nombre", "name"],
        description="Product id or name",
        message='At least one "ID" or "NOMBRE" column is required',
    ),
]


def normalize_column(value: Any) -> str:
    """Lower-case, trimmed, accents stripped: "Código " -> "codigo"."""
    decomposed = unicodedata.normalize("NFD", str(value or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def validate_columns(rows: list[Dict[str, Any]], rules: Iterable[ColumnRule]) -> ValidationResult:
    if not rows:
        return ValidationResult(valid=False, message=EMPTY_FILE_MESSAGE)

    headers = {normalize_column(key) for key in rows[0].keys()}
    for rule in rules:
        variants = {normalize_column(variant) for variant in rule.variants}
        if not headers & variants:
            return ValidationResult(valid=False, message=rule.error_message)

    return ValidationResult(valid=True)


def _cell(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _read_excel(content: bytes) -> list[Dict[str, Any]]:
    workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        columns = [str(h).strip() if h is not None else None for h in header]
        records: list[Dict[str, Any]] = []
        for values in rows:
            record = {
                column: _cell(value)
                for column, value in zip(columns, values)
                if column and _cell(value) is not None
            }
            if record:
                records.append(record)
        return records
    finally:
        workbook.close()


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def _read_csv(content: bytes) -> list[Dict[str, Any]]:
    text = _decode(content)
    try:
        dialect = csv.Sniffer().sniff(text[:2048], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    reader = csv.DictReader(StringIO(text), dialect=dialect)
    records: list[Dict[str, Any]] = []
    for row in reader:
        record = {
            key.strip(): _cell(value)
            for key, value in row.items()
            if key and _cell(value) is not None
        }
        if record:
            records.append(record)
    return records


def read_spreadsheet(content: bytes, filename: str) -> list[Dict[str, Any]]:
    """First sheet of an Excel/CSV file as a list of {header: value} rows.

    Blank cells are left out of a row and blank rows are skipped.
    """
    name = (filename or "").lower()
    if name.endswith(EXCEL_EXTENSIONS):
        try:
            return _read_excel(content)
        except Exception as exc:
            logger.info("Could not read workbook %s: %s", filename, exc)
            raise SpreadsheetError("Could not process the file. Check its format.") from exc
    if name.endswith(CSV_EXTENSIONS):
        return _read_csv(content)
    raise SpreadsheetError(UNSUPPORTED_FORMAT_MESSAGE)


OnFileLoaded = Callable[[list[Dict[str, Any]], Callable[[], None], Optional[Dict[str, Any]]], Any]


class BulkUpload(BaseModel):
    success: bool
    message: str
    filename: Optional[str] = None
    item_count: int = 0
    preview: list[Dict[str, Any]] = []


def load_bulk_file(
    content: bytes,
    filename: str,
    rules: Iterable[ColumnRule],
    on_file_loaded: Optional[OnFileLoaded] = None,
    context: Optional[Dict[str, Any]] = None,
    on_clear: Optional[Callable[[], None]] = None,
) -> BulkUpload:
    try:
        rows = read_spreadsheet(content, filename)
    except SpreadsheetError as exc:
        return BulkUpload(success=False, message=str(exc), filename=filename)

    validation = validate_columns(rows, rules)
    if not validation.valid:
        return BulkUpload(success=False, message=validation.message or "", filename=filename)

    upload = BulkUpload(
        success=True,
        message=f"{len(rows)} rows loaded",
        filename=filename,
        item_count=len(rows),
        preview=rows[:5],
    )

    def remove_file() -> None:
        upload.item_count = 0
        upload.preview = []
        if on_clear:
            on_clear()

    if on_file_loaded:
        on_file_loaded(rows, remove_file, context)

    return upload


def _lookup(row: Dict[str, Any], *names: str) -> Any:
    wanted = {normalize_column(name) for name in names}
    for key, value in row.items():
        if normalize_column(key) in wanted:
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def packing_list_items_from_rows(rows: Iterable[Dict[str, Any]]) -> list[Dict[str, Any]]:
    items = []
    for row in rows:
        quantity = to_number(_lookup(row, "cantidad", "quantity"))
        items.append(
            {
                "productId": _text(_lookup(row, "id")),
                "name": _text(_lookup(row, "nombre", "name")),
                "code": _text(_lookup(row, "codigo", "code")),
                "quantity": quantity or None,
                "lotNumber": _text(_lookup(row, "lote", "lot")) or "",
                "itemNumber": _text(_lookup(row, "numero", "number")) or "",
            }
        )
    return items


def _flag(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return normalize_column(value) in {"true", "1", "si", "yes", "x"}


def products_from_rows(rows: Iterable[Dict[str, Any]]) -> list[Dict[str, Any]]:
    products = []
    for row in rows:
        product: Dict[str, Any] = {
            "code": _text(_lookup(row, "codigo", "code")),
            "name": _text(_lookup(row, "nombre", "name")),
            "unit": _text(_lookup(row, "unidad", "unit")),
        }
        units_per_package = _lookup(row, "unidades_por_paquete", "units_per_package")
        if units_per_package is not None:
            product["unitsPerPackage"] = to_number(units_per_package)
        barcode = _text(_lookup(row, "barcode"))
        if barcode:
            product["barcode"] = barcode
        description = _text(_lookup(row, "descripcion", "description"))
        if description:
            product["description"] = description
        active = _flag(_lookup(row, "activo", "active"))
        if active is not None:
            product["isActive"] = active
        products.append(product)
    return products
