#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Optional

from orderdesk.spreadsheet import PRODUCT_COLUMNS, load_bulk_file, products_from_rows
from orderdesk.strapi_client import bulk_upsert_products


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value else None


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or update products from an Excel/CSV sheet.")
    parser.add_argument("path", help="Spreadsheet with CODIGO, NOMBRE and UNIDAD columns")
    parser.add_argument("--token", default=_env("STRAPI_TOKEN"), help="Strapi API token")
    parser.add_argument("--dry-run", action="store_true", help="Print the payload without sending it")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    path = Path(args.path)
    if not path.is_file():
        raise SystemExit(f"File not found: {path}")

    rows: list = []
    upload = load_bulk_file(
        path.read_bytes(),
        path.name,
        PRODUCT_COLUMNS,
        on_file_loaded=lambda loaded, remove, context: rows.extend(loaded),
    )
    if not upload.success:
        raise SystemExit(upload.message)

    products = products_from_rows(rows)
    if args.dry_run:
        print(json.dumps({"count": len(products), "products": products}, indent=2, ensure_ascii=False))
        return

    if not args.token and not _env("STRAPI_TOKEN_SECRET_NAME"):
        raise SystemExit("Missing required value: token")

    result = bulk_upsert_products(products, token=args.token)
    if not result.get("success"):
        raise SystemExit(f"Upload failed: {result.get('error')}")

    print(json.dumps({"count": len(products), "data": result.get("data")}, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
