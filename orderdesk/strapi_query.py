"""Strapi v4 query-string builder (filters, populate, sort, pagination)."""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping
from urllib.parse import quote

from orderdesk.calc_utils import normalize_date

OPERATORS = frozenset(
    {
        "$eq",
        "$eqi",
        "$ne",
        "$in",
        "$notIn",
        "$lt",
        "$lte",
        "$gt",
        "$gte",
        "$between",
        "$contains",
        "$notContains",
        "$containsi",
        "$notContainsi",
        "$startsWith",
        "$endsWith",
        "$null",
        "$notNull",
    }
)

ORDER_TYPES = (
    "sale",
    "purchase",
    "in",
    "out",
    "return",
    "transfer",
    "transform",
    "partial-invoice",
    "cut",
    "by-warehouse",
    "by-product",
)

DATE_FILTER_FIELDS = ("createdAt", "updatedAt", "dateCreated", "date")

RESERVED_KEYS = frozenset(
    {"filters", "populate", "sort", "pagination", "fields", "locale", "publicationState", "q"}
)


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_filters(filters: Mapping[str, Any] | None) -> Dict[str, str]:
    result: Dict[str, str] = {}
    if not isinstance(filters, Mapping):
        return result

    def process(key: str, value: Any, prefix: str = "filters") -> None:
        if value is None:
            return

        if key in ("$or", "$and"):
            if isinstance(value, list):
                for index, condition in enumerate(value):
                    for cond_key, cond_value in condition.items():
                        process(cond_key, cond_value, f"{prefix}[{key}][{index}]")
            return

        if isinstance(value, Mapping):
            if any(k in OPERATORS for k in value):
                for operator, operand in value.items():
                    if isinstance(operand, (list, tuple)):
                        for index, item in enumerate(operand):
                            result[f"{prefix}[{key}][{operator}][{index}]"] = _text(item)
                    else:
                        result[f"{prefix}[{key}][{operator}]"] = _text(operand)
            else:
                for nested_key, nested_value in value.items():
                    process(nested_key, nested_value, f"{prefix}[{key}]")
        elif isinstance(value, (list, tuple)):
            # A plain list means "any of".
            for index, item in enumerate(value):
                result[f"{prefix}[{key}][$in][{index}]"] = _text(item)
        else:
            result[f"{prefix}[{key}]"] = _text(value)

    for key, value in filters.items():
        process(key, value)
    return result


def _nest_dotted(paths: list[str]) -> Dict[str, Any]:
    tree: Dict[str, Any] = {}
    for path in paths:
        current = tree
        parts = path.split(".")
        for index, part in enumerate(parts):
            if index == len(parts) - 1:
                current.setdefault(part, True)
            else:
                if not isinstance(current.get(part), dict):
                    current[part] = {"populate": {}}
                current = current[part]["populate"]
    return tree


def build_populate(populate: Any) -> Dict[str, str]:
    result: Dict[str, str] = {}

    def process(config: Any, base: str = "populate") -> None:
        if isinstance(config, bool):
            result[base] = _text(config)
            return
        if isinstance(config, str):
            result[base] = config
            return
        if isinstance(config, (list, tuple)):
            if any(isinstance(item, str) and "." in item for item in config):
                process(_nest_dotted([str(item) for item in config]), base)
            else:
                for index, item in enumerate(config):
                    result[f"{base}[{index}]"] = _text(item)
            return
        if not isinstance(config, Mapping):
            return

        for relation, relation_config in config.items():
            path = f"{base}[{relation}]"
            if isinstance(relation_config, bool):
                result[path] = _text(relation_config)
            elif isinstance(relation_config, str):
                result[path] = relation_config
            elif isinstance(relation_config, Mapping):
                for option, option_value in relation_config.items():
                    if option == "fields" and isinstance(option_value, (list, tuple)):
                        for index, field in enumerate(option_value):
                            result[f"{path}[fields][{index}]"] = field
                    elif option == "populate" and isinstance(option_value, (Mapping, list, tuple)):
                        process(option_value, f"{path}[populate]")
                    elif option == "filters":
                        for filter_key, filter_value in build_filters(option_value).items():
                            # "filters[price][$gt]" -> "<path>[filters][price][$gt]"
                            suffix = filter_key[len("filters"):]
                            result[f"{path}[filters]{suffix}"] = filter_value
                    elif option == "sort" and isinstance(option_value, (list, tuple)):
                        for index, item in enumerate(option_value):
                            result[f"{path}[sort][{index}]"] = item
                    else:
                        result[f"{path}[{option}]"] = _text(option_value)

    if populate:
        process(populate)
    return result


def build_sort(sort: Any) -> Dict[str, str]:
    if not sort:
        return {}
    if isinstance(sort, str):
        return {"sort[0]": sort}
    return {f"sort[{index}]": item for index, item in enumerate(sort)}


def build_pagination(pagination: Mapping[str, Any] | None) -> Dict[str, str]:
    if not isinstance(pagination, Mapping):
        return {}
    return {
        f"pagination[{key}]": _text(pagination[key])
        for key in ("page", "pageSize", "start", "limit")
        if pagination.get(key) is not None
    }


def build_query_params(params: Mapping[str, Any] | None) -> Dict[str, str]:
    params = params or {}
    query: Dict[str, str] = {}
    query.update(build_filters(params.get("filters")))
    query.update(build_populate(params.get("populate")))
    query.update(build_sort(params.get("sort")))
    query.update(build_pagination(params.get("pagination")))

    fields = params.get("fields")
    if isinstance(fields, (list, tuple)):
        for index, field in enumerate(fields):
            query[f"fields[{index}]"] = field

    for key in ("locale", "publicationState", "q"):
        if params.get(key):
            query[key] = _text(params[key])

    for key, value in params.items():
        if key not in RESERVED_KEYS and value is not None:
            query[key] = _text(value)
    return query


def build_strapi_query(params: Mapping[str, Any] | None) -> str:
    """Encode params into a query string, leaving the bracketed keys readable."""
    return "&".join(
        f"{key}={quote(value, safe='')}" for key, value in build_query_params(params).items()
    )


def normalize_order_types(types: Any) -> Any:
    if isinstance(types, (list, tuple)):
        return [t for t in (str(t).lower() for t in types) if t in ORDER_TYPES]
    if isinstance(types, str):
        lowered = types.lower()
        return lowered if lowered in ORDER_TYPES else None
    return types


def normalize_filters(filters: Any) -> Any:
    if not isinstance(filters, Mapping):
        return filters

    normalized = copy.deepcopy(dict(filters))
    if "type" in normalized:
        kind = normalized["type"]
        if isinstance(kind, Mapping):
            normalized["type"] = {op: normalize_order_types(value) for op, value in kind.items()}
        else:
            normalized["type"] = normalize_order_types(kind)
        if normalized["type"] in (None, []):
            del normalized["type"]

    for field in DATE_FILTER_FIELDS:
        value = normalized.get(field)
        if isinstance(value, Mapping):
            normalized[field] = {op: normalize_date(operand) for op, operand in value.items()}
        elif value is not None:
            normalized[field] = normalize_date(value)

    return normalized
