from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

import requests
from google.cloud import secretmanager

from orderdesk.strapi_query import build_strapi_query

logger = logging.getLogger(__name__)

DEFAULT_STRAPI_URL = "http://localhost:1337"

# Strapi's default pagination.maxLimit.
MAX_PAGE_SIZE = 100

DOCUMENT_POPULATE = [
    "orderProducts",
    "orderProducts.product",
    "orderProducts.items",
    "orderProducts.items.warehouse",
    "orderProducts.items.parentItem",
    "customer",
    "customerForInvoice",
    "customerForInvoice.taxes",
    "supplier",
    "sourceWarehouse",
    "destinationWarehouse",
    "parentOrder",
]


class StrapiConfigError(RuntimeError):
    pass


def _get_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value else None


def _timeout() -> float:
    raw = _get_env("STRAPI_TIMEOUT")
    if not raw:
        return 30
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid STRAPI_TIMEOUT value: %s", raw)
        return 30


def _base_url() -> str:
    return (_get_env("STRAPI_URL") or DEFAULT_STRAPI_URL).rstrip("/")


def strapi_url(path: str, qs: str = "") -> str:
    path = path.strip("/")
    if not path.startswith("api/"):
        path = f"api/{path}"
    url = f"{_base_url()}/{path}"
    return f"{url}?{qs}" if qs else url


def _service_token() -> Optional[str]:
    secret_name = _get_env("STRAPI_TOKEN_SECRET_NAME")
    if secret_name:
        client = secretmanager.SecretManagerServiceClient()
        version = client.access_secret_version(name=f"{secret_name}/versions/latest")
        return version.payload.data.decode("utf-8").strip()
    return _get_env("STRAPI_TOKEN")


def resolve_token(token: Optional[str] = None) -> str:
    """The caller's token wins; otherwise fall back to the service token."""
    resolved = token or _service_token()
    if not resolved:
        raise StrapiConfigError("Missing Strapi token")
    return resolved


def _headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def error_message(resp: requests.Response) -> str:
    """Prefer the API's own error message over a generic status line."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return f"Error {resp.status_code}: {resp.reason or ''}".strip()


def _request(
    method: str,
    path: str,
    token: Optional[str] = None,
    params: Optional[Mapping[str, Any]] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    url = strapi_url(path, build_strapi_query(params) if params else "")
    try:
        resp = requests.request(
            method,
            url,
            headers=_headers(resolve_token(token)),
            json=payload,
            timeout=_timeout(),
        )
    except requests.RequestException as exc:
        logger.info("Strapi %s %s failed: %s", method, path, exc)
        return {"success": False, "error": str(exc)}

    if resp.status_code >= 400:
        message = error_message(resp)
        logger.info("Strapi %s %s returned %s: %s", method, path, resp.status_code, message)
        return {"success": False, "error": message, "status": resp.status_code}

    if resp.status_code == 204 or not resp.content:
        return {"success": True, "data": None}

    try:
        body = resp.json()
    except ValueError:
        return {"success": False, "error": "Invalid response from server", "status": resp.status_code}

    if not isinstance(body, dict):
        return {"success": True, "data": body}
    return {"success": True, "data": body.get("data"), "meta": body.get("meta") or {}}


def list_entities(
    endpoint: str,
    params: Optional[Mapping[str, Any]] = None,
    token: Optional[str] = None,
) -> Dict[str, Any]:
    return _request("GET", endpoint, token=token, params=params)


def list_all_entities(
    endpoint: str,
    params: Optional[Mapping[str, Any]] = None,
    token: Optional[str] = None,
    page_size: int = MAX_PAGE_SIZE,
) -> Dict[str, Any]:
    """Every page of a listing, following meta.pagination.pageCount."""
    data: list[Any] = []
    page = 1
    while True:
        result = list_entities(
            endpoint,
            {**(params or {}), "pagination": {"page": page, "pageSize": page_size}},
            token=token,
        )
        if not result.get("success"):
            return result

        chunk = result.get("data") or []
        data.extend(chunk)
        pagination = (result.get("meta") or {}).get("pagination") or {}
        try:
            page_count = int(pagination.get("pageCount") or 1)
        except (TypeError, ValueError):
            page_count = 1
        if not chunk or page >= page_count:
            break
        page += 1

    return {"success": True, "data": data, "meta": {"pagination": {"total": len(data)}}}


def get_entity(
    endpoint: str,
    entity_id: Any,
    params: Optional[Mapping[str, Any]] = None,
    token: Optional[str] = None,
) -> Dict[str, Any]:
    return _request("GET", f"{endpoint}/{entity_id}", token=token, params=params)


def create_entity(endpoint: str, data: Optional[Dict[str, Any]], token: Optional[str] = None) -> Dict[str, Any]:
    if not data:
        return {"success": False, "error": f"Data for {endpoint} is required"}
    return _request("POST", endpoint, token=token, payload={"data": data})


def update_entity(
    endpoint: str,
    entity_id: Any,
    data: Optional[Dict[str, Any]],
    token: Optional[str] = None,
) -> Dict[str, Any]:
    if not entity_id or not data:
        return {"success": False, "error": f"Id and data for {endpoint} are required"}
    return _request("PUT", f"{endpoint}/{entity_id}", token=token, payload={"data": data})


def delete_entity(endpoint: str, entity_id: Any, token: Optional[str] = None) -> Dict[str, Any]:
    if not entity_id:
        return {"success": False, "error": f"Id for {endpoint} is required"}
    result = _request("DELETE", f"{endpoint}/{entity_id}", token=token)
    if result.get("success") and result.get("data") is None:
        result["data"] = {"id": entity_id}
    return result


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def fetch_document(order_id: Any, token: Optional[str] = None) -> Optional[Dict[str, Any]]:
    result = list_entities(
        "orders",
        {"filters": {"id": [order_id]}, "populate": DOCUMENT_POPULATE},
        token=token,
    )
    if not result.get("success"):
        raise RuntimeError(result.get("error") or "Could not load document")
    data = result.get("data") or []
    if isinstance(data, list):
        return data[0] if data else None
    return data


def update_order(order_id: Any, data: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
    return update_entity("orders", order_id, data, token=token)


def delete_order(order_id: Any, token: Optional[str] = None) -> Dict[str, Any]:
    return delete_entity("orders", order_id, token=token)


def add_order_item(order_id: Any, payload: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
    return _request("POST", f"orders/{order_id}/add-item", token=token, payload={"data": payload})


def remove_order_item(order_id: Any, item_id: Any, token: Optional[str] = None) -> Dict[str, Any]:
    return _request(
        "POST",
        f"orders/{order_id}/remove-item",
        token=token,
        payload={"data": {"item": item_id}},
    )


def fetch_invoiceable_items(order_id: Any, token: Optional[str] = None) -> Dict[str, Any]:
    return _request("GET", f"orders/{order_id}/invoiceable-items", token=token)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def fetch_product_by_identifier(
    identifier: Optional[str],
    name: Optional[str] = None,
    token: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    conditions: list[Dict[str, Any]] = []
    if identifier:
        if str(identifier).isdigit():
            conditions.append({"id": {"$eq": identifier}})
        conditions.append({"code": {"$eq": identifier}})
    if name:
        conditions.append({"name": {"$eqi": name}})
    if not conditions:
        return None

    result = list_entities(
        "products",
        {"filters": {"$or": conditions}, "pagination": {"pageSize": 1}},
        token=token,
    )
    if not result.get("success"):
        logger.info("Product lookup failed for %s: %s", identifier or name, result.get("error"))
        return None
    data = result.get("data")
    raw = data[0] if isinstance(data, list) and data else data
    if not isinstance(raw, dict):
        return None
    merged = {**(raw.get("attributes") or {}), **raw}
    return {key: merged.get(key) for key in ("id", "code", "name", "unit", "barcode")}


def bulk_upsert_products(products: list[Dict[str, Any]], token: Optional[str] = None) -> Dict[str, Any]:
    if not products:
        return {"success": False, "error": "No products to upload"}
    return _request("POST", "products/bulk-upsert", token=token, payload={"data": products})
