# pms_api/common/paging.py
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import request

DEFAULT_PAGE = 1
DEFAULT_SIZE = 20
MAX_SIZE = 100


def page_limit():
    try:
        page = max(int(request.args.get("page", DEFAULT_PAGE)), 1)
    except (TypeError, ValueError):
        page = DEFAULT_PAGE
    try:
        size = int(request.args.get("size", DEFAULT_SIZE))
        size = max(1, min(size, MAX_SIZE))
    except (TypeError, ValueError):
        size = DEFAULT_SIZE
    return page, size


def sort_params(allowed: dict[str, object]):
    """
    allowed: {"name": Model.name, "created_at": Model.created_at, ...}
    ?sort=name,-created_at  => returns list of (column, asc:bool)
    Unknown keys ignored.
    """
    raw = request.args.get("sort", "")
    items = []
    for part in [p.strip() for p in raw.split(",") if p.strip()]:
        asc = True
        key = part
        if part.startswith("-"):
            asc = False
            key = part[1:]
        col = allowed.get(key)
        if col is not None:
            items.append((col, asc))
    return items


def text_q():
    q = request.args.get("q", "")
    return q.strip() or None


def bool_arg(name: str) -> Optional[bool]:
    v = request.args.get(name)
    if v is None:
        return None
    v = v.strip().lower()
    if v in ("true", "1", "yes"):
        return True
    if v in ("false", "0", "no"):
        return False
    raise ValueError(f"{name} must be true/false")


def parse_date(s) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(str(s))
    except ValueError:
        return None


def parse_int(x) -> Optional[int]:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


def parse_decimal(x) -> Optional[Decimal]:
    if x is None or x == "":
        return None
    try:
        d = Decimal(str(x))
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def period_args():
    """?month=&year= as ints; raises ValueError with a readable message."""
    try:
        month = int(request.args.get("month"))
        year = int(request.args.get("year"))
    except (TypeError, ValueError):
        raise ValueError("month and year are required integers")
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    return month, year
