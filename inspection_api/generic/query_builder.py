# inspection_api/generic/query_builder.py
#
# List filtering for the generic models. Everything here produces SQLAlchemy
# expressions, so user input only ever reaches the database as bound parameters.
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import Date, DateTime, or_

from inspection_api.generic.config import EntityConfig

DateValue = Union[date, datetime]

TRUE_WORDS = {"true", "1", "yes", "active"}
FALSE_WORDS = {"false", "0", "no", "inactive"}


@dataclass
class PageWindow:
    page: int
    limit: int
    offset: int


@dataclass
class ListQuery:
    page: int = 1
    limit: Optional[int] = None
    search: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: str = "ASC"
    is_active: Optional[bool] = None
    status: Optional[str] = None
    filters: Dict[str, Any] = field(default_factory=dict)
    date_from: Dict[str, DateValue] = field(default_factory=dict)
    date_to: Dict[str, DateValue] = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Mapping[str, str], config: EntityConfig) -> "ListQuery":
        """
        Build a ListQuery from raw query-string values.
        Unknown keys are ignored; bad dates raise ValueError.
        """
        query = cls(
            page=to_int(params.get("page")) or 1,
            limit=to_int(params.get("limit")),
            search=(params.get("search") or "").strip() or None,
            sort_by=params.get("sortBy") or params.get("sort_by") or None,
            sort_order=(params.get("sortOrder") or params.get("sort_order") or config.default_order),
            is_active=to_bool(params.get("isActive", params.get("is_active"))),
            status=(params.get("status") or "").strip() or None,
        )
        for name in config.filter_fields:
            raw = params.get(name)
            if raw not in (None, ""):
                query.filters[name] = raw
        for name in config.date_fields:
            raw_from = params.get(f"{name}_from")
            raw_to = params.get(f"{name}_to")
            if raw_from:
                query.date_from[name] = parse_date_value(raw_from)
            if raw_to:
                query.date_to[name] = parse_date_value(raw_to)
        return query


def to_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def to_bool(raw: Any) -> Optional[bool]:
    if raw is None or isinstance(raw, bool):
        return raw
    word = str(raw).strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    return None


def parse_date_value(raw: str) -> DateValue:
    text = (raw or "").strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid date value: {raw!r}") from None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def clamp_pagination(page: Optional[int], limit: Optional[int], default_limit: int, max_limit: int) -> PageWindow:
    """Oversized limits are capped, not rejected."""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else default_limit
    limit = min(limit, max_limit)
    return PageWindow(page=page, limit=limit, offset=(page - 1) * limit)


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_condition(model, fields, term: Optional[str]):
    if not term or not term.strip():
        return None
    pattern = f"%{escape_like(term.strip())}%"
    ors = [getattr(model, f).ilike(pattern, escape="\\") for f in fields if hasattr(model, f)]
    return or_(*ors) if ors else None


def coerce_for_column(model, name: str, raw: Any) -> Any:
    """Query-string text to the column's Python type; non-numeric text for a numeric column raises ValueError."""
    if not isinstance(raw, str):
        return raw
    col = model.__table__.c[name]
    try:
        pytype = col.type.python_type
    except NotImplementedError:
        return raw
    if pytype is bool:
        flag = to_bool(raw)
        return raw if flag is None else flag
    if pytype in (int, float):
        try:
            return pytype(raw.strip())
        except ValueError:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from None
    return raw


def _date_bounds(model, name: str, lower: Optional[DateValue], upper: Optional[DateValue]) -> List:
    col = getattr(model, name)
    col_type = model.__table__.c[name].type
    conds = []
    if lower is not None:
        if isinstance(col_type, DateTime) and not isinstance(lower, datetime):
            lower = datetime.combine(lower, time.min)
        elif isinstance(col_type, Date) and isinstance(lower, datetime):
            lower = lower.date()
        conds.append(col >= lower)
    if upper is not None:
        if isinstance(col_type, DateTime) and not isinstance(upper, datetime):
            # date-only upper bound covers the whole day
            conds.append(col < datetime.combine(upper + timedelta(days=1), time.min))
        else:
            if isinstance(col_type, Date) and isinstance(upper, datetime):
                upper = upper.date()
            conds.append(col <= upper)
    return conds


def build_conditions(model, config: EntityConfig, query: ListQuery) -> List:
    conds: List = []
    if query.is_active is not None and config.has_status and hasattr(model, "is_active"):
        conds.append(model.is_active == query.is_active)

    cond = search_condition(model, config.searchable_fields, query.search)
    if cond is not None:
        conds.append(cond)

    for name, value in query.filters.items():
        if name in config.filter_fields and hasattr(model, name) and value not in (None, ""):
            conds.append(getattr(model, name) == coerce_for_column(model, name, value))

    for name in config.date_fields:
        if not hasattr(model, name):
            continue
        conds.extend(_date_bounds(model, name, query.date_from.get(name), query.date_to.get(name)))

    return conds


def resolve_sort(model, config: EntityConfig, sort_by: Optional[str], sort_order: Optional[str]) -> List:
    allowed = config.allowed_sort_fields(c.name for c in model.__table__.columns)
    field_name = sort_by if sort_by in allowed and hasattr(model, sort_by) else config.sort_field
    desc_ = (sort_order or config.default_order).upper() == "DESC"
    col = getattr(model, field_name)
    order_by = [col.desc() if desc_ else col.asc()]
    for pk in config.primary_key:
        if pk != field_name:
            order_by.append(getattr(model, pk).asc())
    return order_by
