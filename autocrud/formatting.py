# Response formatting functions:
# - the response envelope, shared by all operations
# - sorting (sort=field,-other)
# - pagination (page=2&limit=5)
#
import math
from typing import Any, Dict, Iterable, Optional, Tuple

import autocrud
from .config import get_config, get_int_config
from .errors import ValidationError


def format_response(route: str, success: bool, message: str, data: Any = None, pagination: Optional[dict] = None, errors: Optional[list] = None) -> Dict[str, Any]:
    """
    Create the response envelope
    :param route: "METHOD path" of the request
    :param success: whether the operation succeeded
    :param message: human readable message
    :param data: the serialized records, omitted if None
    :param pagination: {"total", "totalPages", "currentPage"}, omitted if None
    :param errors: list of {"field", "message"}, omitted if empty
    :return: envelope dict
    """
    result = {"meta": {"route": route}, "status": {"success": success, "message": message}}
    if data is not None:
        result["data"] = data
    if pagination is not None:
        result["pagination"] = pagination
    if errors:
        result["errors"] = errors
    return result


def pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    """
    :param total: number of records matching the filter
    :param page: current page, starting at 1
    :param limit: page size
    :return: pagination dict
    """
    return {"total": total, "totalPages": math.ceil(total / limit) if limit else 0, "currentPage": page}


def parse_pagination(page: Any = None, limit: Any = None) -> Tuple[int, int]:
    """
    Parse the page and limit query arguments
    page and limit are at least 1, limit is capped by MAX_PAGE_LIMIT
    :return: page, limit
    """
    if page in (None, ""):
        page = 1
    if limit in (None, ""):
        limit = get_int_config("DEFAULT_PAGE_LIMIT")
    try:
        page = int(page)
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid pagination: page "{page}" and limit "{limit}" must be integers.')
    max_limit = get_int_config("MAX_PAGE_LIMIT")
    page = max(1, page)
    limit = min(max(1, limit), max_limit)
    return page, limit


def parse_sort(sort: Optional[str], fields: Iterable[str]) -> Dict[str, int]:
    """
    sort by csv sort= values, a - prefix sorts descending
    Unknown fields are ignored, "id" is always added as the last sort key so pages don't overlap
    :param sort: sort argument, eg. "-age,name"
    :param fields: the sortable fields
    :return: {field: 1 | -1}
    """
    if sort is None:
        sort = get_config("DEFAULT_SORT") or ""
    fields = set(fields)
    result = {}
    for sort_attr in sort.split(","):
        sort_attr = sort_attr.strip()
        direction = 1
        if sort_attr.startswith("-"):
            direction = -1
            sort_attr = sort_attr[1:]
        elif sort_attr.startswith("+"):
            sort_attr = sort_attr[1:]
        if not sort_attr:
            continue
        if sort_attr not in fields:
            autocrud.log.debug(f"Ignoring unknown sort attribute {sort_attr}")
            continue
        result.setdefault(sort_attr, direction)
    result.setdefault("id", 1)
    return result


def sort_description(sort: Dict[str, int]) -> str:
    """
    {"age": -1, "id": 1} => "-age,id"
    """
    return ",".join(("-" if direction < 0 else "") + field for field, direction in sort.items())

