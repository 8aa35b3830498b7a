"""Tests for spreadsheet reading, column validation and row mapping."""

from io import BytesIO
from pathlib import Path

import pytest
from openpyxl import Workbook

from orderdesk.spreadsheet import (
    PACKING_LIST_COLUMNS,
    PRODUCT_COLUMNS,
    SpreadsheetError,
    load_bulk_file,
    normalize_column,
    packing_list_items_from_rows,
    products_from_rows,
    read_spreadsheet,
    validate_columns,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _xlsx(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Column validation
# ---------------------------------------------------------------------------

def test_normalize_column_strips_accents_and_case():
    assert normalize_column(" Código ") == "codigo"


def test_product_headers_with_accents_pass():
    rows = [{"Código": "P-1", "Nombre": "Tela", "Unidad": "mts"}]
    assert validate_columns(rows, PRODUCT_COLUMNS).valid


def test_english_product_headers_pass():
    rows = [{"code": "P-1", "name": "Tela", "unit": "mts"}]
    assert validate_columns(rows, PRODUCT_COLUMNS).valid


def test_missing_quantity_column_is_named():
    result = validate_columns([{"ID": 5, "LOTE": "L1"}], PACKING_LIST_COLUMNS)
    assert not result.valid
    assert "CANTIDAD" in result.message


def test_missing_identifier_column():
    result = validate_columns([{"CANTIDAD": 5}], PACKING_LIST_COLUMNS)
    assert not result.valid
    assert "ID" in result.message
    assert "NOMBRE" in result.message


def test_first_missing_column_is_reported():
    result = validate_columns([{"Nombre": "Tela"}], PRODUCT_COLUMNS)
    assert result.message == 'Missing required column "CODIGO"'


def test_empty_rows():
    result = validate_columns([], PRODUCT_COLUMNS)
    assert not result.valid
    assert result.message == "The file is empty"


# ---------------------------------------------------------------------------
# Reading files
# ---------------------------------------------------------------------------

def test_read_xlsx_skips_blank_rows_and_cells():
    content = _xlsx(
        [
            ["CODIGO", "NOMBRE", "UNIDAD", "BARCODE"],
            ["P-1", "Tela azul", "mts", None],
            [None, None, None, None],
            ["P-2", "  Tela roja ", "mts", 7701234],
        ]
    )
    rows = read_spreadsheet(content, "productos.xlsx")
    assert rows == [
        {"CODIGO": "P-1", "NOMBRE": "Tela azul", "UNIDAD": "mts"},
        {"CODIGO": "P-2", "NOMBRE": "Tela roja", "UNIDAD": "mts", "BARCODE": 7701234},
    ]


def test_read_xlsx_header_only():
    assert read_spreadsheet(_xlsx([["CODIGO", "NOMBRE"]]), "vacio.xlsx") == []


def test_read_semicolon_csv():
    content = (FIXTURES_DIR / "packing_list.csv").read_bytes()
    rows = read_spreadsheet(content, "packing_list.csv")
    assert len(rows) == 3
    assert rows[0] == {"ID": "5", "NOMBRE": "Tela azul", "CANTIDAD": "25.5", "LOTE": "L-01", "NUMERO": "1"}


def test_read_xls_is_unsupported():
    with pytest.raises(SpreadsheetError, match="Unsupported file format"):
        read_spreadsheet(b"\xd0\xcf\x11\xe0", "old.xls")


def test_read_corrupt_workbook():
    with pytest.raises(SpreadsheetError, match="Could not process the file"):
        read_spreadsheet(b"not a zip file", "broken.xlsx")


# ---------------------------------------------------------------------------
# load_bulk_file
# ---------------------------------------------------------------------------

class TestLoadPackingList:
    @pytest.fixture(autouse=True)
    def load(self):
        self.calls = []
        self.cleared = []
        content = (FIXTURES_DIR / "packing_list.csv").read_bytes()
        self.upload = load_bulk_file(
            content,
            "packing_list.csv",
            PACKING_LIST_COLUMNS,
            on_file_loaded=lambda rows, remove, context: self.calls.append((rows, remove, context)),
            context={"order_id": 12},
            on_clear=lambda: self.cleared.append(True),
        )

    def test_upload_summary(self):
        assert self.upload.success
        assert self.upload.item_count == 3
        assert len(self.upload.preview) == 3

    def test_callback_invoked_once_with_context(self):
        assert len(self.calls) == 1
        rows, _, context = self.calls[0]
        assert len(rows) == 3
        assert context == {"order_id": 12}

    def test_remove_callback_clears_upload(self):
        _, remove, _ = self.calls[0]
        remove()
        assert self.upload.item_count == 0
        assert self.upload.preview == []
        assert self.cleared == [True]


def test_load_bulk_file_invalid_columns_skips_callback():
    calls = []
    upload = load_bulk_file(
        b"CODIGO,NOMBRE\nP-1,Tela\n",
        "productos.csv",
        PRODUCT_COLUMNS,
        on_file_loaded=lambda rows, remove, context: calls.append(rows),
    )
    assert not upload.success
    assert upload.message == 'Missing required column "UNIDAD"'
    assert calls == []


def test_load_bulk_file_unsupported_extension():
    upload = load_bulk_file(b"data", "notes.txt", PRODUCT_COLUMNS)
    assert not upload.success
    assert "Unsupported" in upload.message


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def test_packing_list_items_from_rows():
    items = packing_list_items_from_rows(
        [
            {"ID": 12.0, "CANTIDAD": "25.5", "LOTE": "L1"},
            {"Nombre": "Tela roja", "Cantidad": 3, "Número": 4},
        ]
    )
    assert items[0] == {
        "productId": "12",
        "name": None,
        "code": None,
        "quantity": 25.5,
        "lotNumber": "L1",
        "itemNumber": "",
    }
    assert items[1]["name"] == "Tela roja"
    assert items[1]["quantity"] == 3
    assert items[1]["itemNumber"] == "4"


def test_products_from_rows_optional_fields():
    products = products_from_rows(
        [
            {"Código": "P-1", "Nombre": "Tela azul", "Unidad": "mts", "Activo": "Sí", "Barcode": 7701234},
            {"CODIGO": "P-2", "NOMBRE": "Botón", "UNIDAD": "und"},
        ]
    )
    assert products[0] == {
        "code": "P-1",
        "name": "Tela azul",
        "unit": "mts",
        "barcode": "7701234",
        "isActive": True,
    }
    assert products[1] == {"code": "P-2", "name": "Botón", "unit": "und"}
