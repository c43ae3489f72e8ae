from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

logger = logging.getLogger(__name__)


def _parse_json(raw: str, default: Any) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error("Invalid JSON request param %r: %s", raw, e)
        return default


def _parse_int(raw: Any, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def parse_request_params(
    request_params: Mapping[str, Any] | None,
    params_list: Iterable[str],
    *,
    default_page_size: int = 20,
) -> dict[str, Any]:
    """
    Normalize list-endpoint query params.

    Only the params named in ``params_list`` are produced:
    - filter: JSON object, ``{}`` when absent or invalid
    - sort: JSON value, ``None`` when absent or invalid
    - fields, id: raw values or ``None``
    - page/limit/skip: ``limit`` defaults to ``default_page_size``; ``page`` wins over ``skip``
    """
    wanted = set(params_list)
    params: dict[str, Any] = {}
    if request_params is None:
        return params

    if "filter" in wanted:
        params["filter"] = {}
        if request_params.get("filter"):
            params["filter"] = _parse_json(request_params["filter"], {})
    if "fields" in wanted:
        params["fields"] = request_params.get("fields") or None
    if wanted & {"page", "limit", "skip"}:
        params["limit"] = default_page_size
        params["skip"] = 0
        if request_params.get("limit"):
            params["limit"] = _parse_int(request_params["limit"], default_page_size)
        if request_params.get("skip"):
            params["skip"] = _parse_int(request_params["skip"], 0)
        if request_params.get("page"):
            page = _parse_int(request_params["page"], 1)
            params["page"] = page
            params["skip"] = (page - 1) * params["limit"]
    if "id" in wanted:
        params["id"] = request_params.get("id") or None
    if "sort" in wanted:
        params["sort"] = None
        if request_params.get("sort"):
            params["sort"] = _parse_json(request_params["sort"], None)
    return params
