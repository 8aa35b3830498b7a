from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile, status

from orderdesk import strapi_client
from orderdesk.bulk_actions import BULK_ACTIONS, perform, selected_documents
from orderdesk.bulk_items import map_bulk_items
from orderdesk.document_editor import DocumentEditor, default_actions
from orderdesk.invoice import invoice_resume, resume_rows
from orderdesk.labels import document_label, invoice_label, state_label, type_label
from orderdesk.models import BulkResult, Document
from orderdesk.packing_list import packing_list_stats, product_progress
from orderdesk.quantities import can_delete, footer_totals, is_read_only, line_display
from orderdesk.returns import ReturnSelection, return_progress
from orderdesk.spreadsheet import (
    PACKING_LIST_COLUMNS,
    PRODUCT_COLUMNS,
    load_bulk_file,
    packing_list_items_from_rows,
    products_from_rows,
)
from orderdesk.strapi_query import normalize_filters


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("orderdesk")

APP_VERSION = os.getenv("APP_VERSION", "dev")

app = FastAPI()


@app.get("/version")
async def version() -> Dict[str, Any]:
    return {
        "status": "ok",
        "revision": os.getenv("K_REVISION"),
        "service": os.getenv("K_SERVICE"),
        "app_version": APP_VERSION,
    }


MAX_UPLOAD_BYTES = os.getenv("MAX_UPLOAD_BYTES")
BULK_ACTIONS_ENABLED = os.getenv("BULK_ACTIONS_ENABLED", "true").lower() in {"1", "true", "yes", "on"}


def _max_upload_bytes() -> Optional[int]:
    if not MAX_UPLOAD_BYTES:
        return None
    try:
        return int(MAX_UPLOAD_BYTES)
    except ValueError:
        logger.warning("Invalid MAX_UPLOAD_BYTES value: %s", MAX_UPLOAD_BYTES)
        return None


def _get_token(request: Request) -> str:
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token

    token = (request.cookies.get("token") or "").strip()
    if token:
        return token

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _json_object(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc

    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON payload must be an object")
    return payload


def _unwrap(result: Dict[str, Any]) -> Dict[str, Any]:
    if result.get("success"):
        return {"data": result.get("data"), "meta": result.get("meta") or {}}

    code = result.get("status")
    if not isinstance(code, int) or code < 400 or code >= 500:
        code = status.HTTP_502_BAD_GATEWAY
    raise HTTPException(status_code=code, detail=result.get("error") or "Strapi request failed")


def _load_document(order_id: str, token: str) -> tuple[Document, Dict[str, Any]]:
    try:
        raw = strapi_client.fetch_document(order_id, token=token)
    except RuntimeError as exc:
        logger.info("Could not load order %s: %s", order_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    if not raw:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {order_id} not found")
    return Document.model_validate(raw), raw


def _document_taxes(raw: Dict[str, Any]) -> list[Dict[str, Any]]:
    customer = raw.get("customerForInvoice") or raw.get("customer") or {}
    if not isinstance(customer, dict):
        return []
    return customer.get("taxes") or []


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    limit = _max_upload_bytes()
    if limit is not None and len(content) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds {limit} bytes",
        )
    return content


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Strapi proxy
# ---------------------------------------------------------------------------


@app.get("/api/strapi/{endpoint}")
async def strapi_list(endpoint: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    params = dict(request.query_params)
    return _unwrap(strapi_client.list_entities(endpoint, params, token=token))


@app.get("/api/strapi/{endpoint}/{entity_id}")
async def strapi_get(endpoint: str, entity_id: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    params = dict(request.query_params)
    return _unwrap(strapi_client.get_entity(endpoint, entity_id, params, token=token))


@app.post("/api/strapi/{endpoint}", status_code=status.HTTP_201_CREATED)
async def strapi_create(endpoint: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    payload = await _json_object(request)
    if not isinstance(payload.get("data"), dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A 'data' object is required")
    return _unwrap(strapi_client.create_entity(endpoint, payload["data"], token=token))


@app.put("/api/strapi/{endpoint}/{entity_id}")
async def strapi_update(endpoint: str, entity_id: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    payload = await _json_object(request)
    if not isinstance(payload.get("data"), dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A 'data' object is required")
    return _unwrap(strapi_client.update_entity(endpoint, entity_id, payload["data"], token=token))


@app.delete("/api/strapi/{endpoint}/{entity_id}")
async def strapi_delete(endpoint: str, entity_id: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    return _unwrap(strapi_client.delete_entity(endpoint, entity_id, token=token))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@app.get("/api/orders/{order_id}/summary")
async def order_summary(order_id: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    document, raw = _load_document(order_id, token)
    lines = [op for op in document.order_products if op.product]

    resume = invoice_resume(lines, _document_taxes(raw))
    summary: Dict[str, Any] = {
        "id": document.id,
        "code": document.code,
        "label": document_label(document, include_code=True),
        "invoice_label": invoice_label(document),
        "type": type_label(document.type),
        "state": state_label(document.state),
        "read_only": is_read_only(document),
        "can_delete": can_delete(document),
        "lines": [
            {
                "id": op.id,
                "product": op.product.name if op.product else op.name,
                **line_display(op, document.state).model_dump(),
                "progress": product_progress(op).model_dump(),
            }
            for op in lines
        ],
        "footer": footer_totals(lines, document.state).model_dump(),
        "packing_list": packing_list_stats(lines).model_dump(),
        "invoice": resume.model_dump(),
        "invoice_rows": resume_rows(resume),
    }
    if document.type == "return":
        summary["returns"] = {str(op.id): return_progress(op).model_dump() for op in lines}
    return summary


@app.get("/api/orders/{order_id}/invoiceable-items")
async def order_invoiceable_items(order_id: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    return _unwrap(strapi_client.fetch_invoiceable_items(order_id, token=token))


@app.post("/api/orders/{order_id}/items")
async def order_add_item(order_id: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    payload = await _json_object(request)
    product_id = payload.get("product")
    if not product_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing product")

    document, _ = _load_document(order_id, token)
    editor = DocumentEditor(document, actions=default_actions(token))
    result = editor.add_item(product_id, payload.get("input") or "")
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
    return {"message": result.message, "item": result.data.model_dump(by_alias=True)}


@app.delete("/api/orders/{order_id}/items/{item_id}")
async def order_remove_item(order_id: str, item_id: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    document, _ = _load_document(order_id, token)

    match = next(
        ((op.id, item.id) for op in document.order_products for item in op.items if str(item.id) == item_id),
        None,
    )
    if match is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Item {item_id} not found")

    editor = DocumentEditor(document, actions=default_actions(token))
    result = editor.remove_item(*match)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
    return {"message": result.message}


@app.post("/api/orders/bulk/{action}")
async def orders_bulk(action: str, request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    if not BULK_ACTIONS_ENABLED:
        return {"status": "disabled"}
    if action not in BULK_ACTIONS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown action: {action}")

    payload = await _json_object(request)
    selected_keys = payload.get("selectedKeys")
    if selected_keys != "all" and not isinstance(selected_keys, list):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="selectedKeys must be \"all\" or a list of ids",
        )

    filters = normalize_filters(payload.get("filters") or {})
    page_size = strapi_client.MAX_PAGE_SIZE
    if isinstance(selected_keys, list):
        filters = {**filters, "id": selected_keys}
        page_size = min(max(len(selected_keys), 1), strapi_client.MAX_PAGE_SIZE)
    listing = _unwrap(
        strapi_client.list_all_entities(
            "orders",
            {"filters": filters, "populate": strapi_client.DOCUMENT_POPULATE},
            token=token,
            page_size=page_size,
        )
    )
    documents = selected_documents(
        [Document.model_validate(raw) for raw in listing["data"] or []],
        selected_keys,
    )

    missing: list[str] = []
    if isinstance(selected_keys, list):
        found = {str(doc.id) for doc in documents}
        missing = [key for key in dict.fromkeys(str(k) for k in selected_keys) if key not in found]
    if not documents and not missing:
        return {"succeeded": 0, "failed": 0, "errors": {}, "message": "No documents selected"}

    result = perform(action, documents, token=token) if documents else BulkResult()
    for key in missing:
        result.failed += 1
        result.errors[key] = "Document not found"
    if missing:
        logger.info("Bulk %s: documents not found: %s", action, ", ".join(missing))
    return {**result.model_dump(), "message": result.message}


# ---------------------------------------------------------------------------
# Spreadsheet imports
# ---------------------------------------------------------------------------


@app.post("/api/imports/products")
async def import_products(
    request: Request,
    file: UploadFile = File(...),
    dry_run: bool = Form(False),
) -> Dict[str, Any]:
    token = _get_token(request)
    content = await _read_upload(file)

    loaded: Dict[str, Any] = {}
    upload = load_bulk_file(
        content,
        file.filename or "",
        PRODUCT_COLUMNS,
        on_file_loaded=lambda rows, remove, context: loaded.update(rows=rows),
    )
    if not upload.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=upload.message)

    products = products_from_rows(loaded["rows"])
    if dry_run:
        return {"message": upload.message, "count": len(products), "products": products}

    result = _unwrap(strapi_client.bulk_upsert_products(products, token=token))
    logger.info("Imported %s products from %s", len(products), file.filename)
    return {"message": upload.message, "count": len(products), **result}


@app.post("/api/imports/packing-list")
async def import_packing_list(
    request: Request,
    file: UploadFile = File(...),
    order_id: str = Form(...),
    save: bool = Form(False),
) -> Dict[str, Any]:
    token = _get_token(request)
    content = await _read_upload(file)

    loaded: Dict[str, Any] = {}
    upload = load_bulk_file(
        content,
        file.filename or "",
        PACKING_LIST_COLUMNS,
        on_file_loaded=lambda rows, remove, context: loaded.update(rows=rows),
        context={"order_id": order_id},
    )
    if not upload.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=upload.message)

    document, _ = _load_document(order_id, token)
    editor = DocumentEditor(document, actions=default_actions(token))
    if editor.read_only:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The document can no longer be edited")

    mapped = map_bulk_items(
        packing_list_items_from_rows(loaded["rows"]),
        editor.products,
        fetch_product=lambda identifier, name: strapi_client.fetch_product_by_identifier(
            identifier, name, token=token
        ),
    )
    if not mapped.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=mapped.message)

    editor.products = mapped.products
    response: Dict[str, Any] = {
        "message": mapped.message,
        "added": mapped.added,
        "missing": mapped.missing,
        "stats": editor.stats.model_dump(),
        "products": [row.model_dump(by_alias=True) for row in mapped.products if row.product],
    }
    if save:
        saved = editor.save()
        if not saved.success:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=saved.message)
        response["saved"] = True
    return response


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------


@app.post("/api/returns/preview")
async def returns_preview(request: Request) -> Dict[str, Any]:
    token = _get_token(request)
    payload = await _json_object(request)

    order_id = payload.get("orderId")
    warehouse_id = payload.get("warehouseId")
    if not order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing orderId")

    order, _ = _load_document(str(order_id), token)
    items_by_id = {str(item.id): item for op in order.order_products for item in op.items}

    selection = ReturnSelection(order.order_products)
    entries = payload.get("items") or []
    if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="items must be a list of objects",
        )

    for entry in entries:
        item = items_by_id.get(str(entry.get("itemId")))
        if item is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Item {entry.get('itemId')} is not part of order {order_id}",
            )
        selection.on_item_toggle(item, True)
        if entry.get("quantity") is not None:
            selection.on_quantity_change(item.id, entry["quantity"])

    valid = selection.is_valid(order, warehouse_id)
    response: Dict[str, Any] = {
        "valid": valid,
        "stats": selection.stats.model_dump(),
        "items": [selected.model_dump(by_alias=True) for selected in selection.selected_items],
    }
    if valid:
        response["payload"] = selection.to_payload(order.id, warehouse_id)
        if payload.get("create"):
            response["created"] = _unwrap(
                strapi_client.create_entity("orders", response["payload"], token=token)
            )["data"]
    return response
