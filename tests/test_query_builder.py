from datetime import date, datetime

import pytest
from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import operators

from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.query_builder import (
    ListQuery,
    build_conditions,
    clamp_pagination,
    coerce_for_column,
    escape_like,
    parse_date_value,
    resolve_sort,
    to_bool,
)


class Base(DeclarativeBase):
    pass


class Widget(Base):
    __tablename__ = "widgets"
    id = Column(Integer, primary_key=True)
    name = Column(String(50))
    kind = Column(String(20))
    qty = Column(Integer)
    made_on = Column(Date)
    seen_at = Column(DateTime)
    is_active = Column(Boolean)


CONFIG = EntityConfig(
    entity_name="widget",
    table_name="widgets",
    api_path="/api/widgets",
    pattern=PatternType.SPECIAL,
    searchable_fields=("name", "kind"),
    filter_fields=("kind", "qty"),
    date_fields=("made_on", "seen_at"),
    sortable_fields=("id", "name", "qty"),
    default_sort="name",
)


def _sql(expr) -> str:
    return str(expr.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}))


def test_clamp_pagination_defaults_and_caps():
    window = clamp_pagination(0, None, 20, 100)
    assert (window.page, window.limit, window.offset) == (1, 20, 0)
    window = clamp_pagination(3, 500, 20, 100)
    assert (window.page, window.limit, window.offset) == (3, 100, 200)
    window = clamp_pagination(-2, -5, 50, 200)
    assert (window.page, window.limit, window.offset) == (1, 50, 0)


def test_escape_like_escapes_wildcards():
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


def test_parse_date_value():
    assert parse_date_value("2024-07-01") == date(2024, 7, 1)
    assert parse_date_value("2024-07-01T10:30:00") == datetime(2024, 7, 1, 10, 30)
    # aware values are stored as naive UTC
    assert parse_date_value("2024-07-01T10:30:00+07:00") == datetime(2024, 7, 1, 3, 30)
    assert parse_date_value("2024-07-01T10:30:00Z") == datetime(2024, 7, 1, 10, 30)
    with pytest.raises(ValueError):
        parse_date_value("yesterday")


def test_to_bool_words():
    assert to_bool("active") is True
    assert to_bool("0") is False
    assert to_bool("maybe") is None


def test_from_params_reads_known_keys_only():
    query = ListQuery.from_params(
        {
            "page": "2",
            "limit": "5",
            "search": "  bolt ",
            "sortBy": "qty",
            "sortOrder": "desc",
            "isActive": "true",
            "kind": "metal",
            "colour": "red",
            "made_on_from": "2024-01-01",
            "seen_at_to": "2024-01-31",
            "status": "working",
        },
        CONFIG,
    )
    assert query.page == 2 and query.limit == 5
    assert query.search == "bolt"
    assert query.sort_by == "qty" and query.sort_order == "desc"
    assert query.is_active is True
    assert query.filters == {"kind": "metal"}
    assert query.date_from == {"made_on": date(2024, 1, 1)}
    assert query.date_to == {"seen_at": date(2024, 1, 31)}
    assert query.status == "working"


def test_from_params_rejects_bad_dates():
    with pytest.raises(ValueError):
        ListQuery.from_params({"made_on_from": "01/02/2024"}, CONFIG)


def test_coerce_for_column_uses_column_type():
    assert coerce_for_column(Widget, "qty", "7") == 7
    assert coerce_for_column(Widget, "is_active", "inactive") is False
    assert coerce_for_column(Widget, "name", "7") == "7"


def test_non_numeric_filter_for_integer_column_is_rejected():
    with pytest.raises(ValueError, match="Invalid value for qty"):
        coerce_for_column(Widget, "qty", "seven")
    with pytest.raises(ValueError):
        build_conditions(Widget, CONFIG, ListQuery(filters={"qty": "seven"}))


def test_search_is_case_insensitive_and_escaped():
    conds = build_conditions(Widget, CONFIG, ListQuery(search="50%"))
    assert len(conds) == 1
    compiled = conds[0].compile(dialect=sqlite.dialect())
    sql = str(compiled).lower()
    assert "lower(widgets.name) like lower(?)" in sql
    assert "lower(widgets.kind) like lower(?)" in sql
    assert set(compiled.params.values()) == {"%50\\%%"}


def test_date_only_upper_bound_covers_whole_day():
    query = ListQuery(date_to={"seen_at": date(2024, 1, 31)}, date_from={"made_on": date(2024, 1, 1)})
    lower, upper = build_conditions(Widget, CONFIG, query)
    assert lower.left.name == "made_on" and lower.operator is operators.ge
    assert lower.right.value == date(2024, 1, 1)
    assert upper.left.name == "seen_at" and upper.operator is operators.lt
    assert upper.right.value == datetime(2024, 2, 1)


def test_filters_are_coerced():
    conds = build_conditions(Widget, CONFIG, ListQuery(filters={"qty": "3"}))
    assert len(conds) == 1
    assert conds[0].left.name == "qty"
    assert conds[0].right.value == 3


def test_is_active_only_applies_to_status_entities():
    assert len(build_conditions(Widget, CONFIG, ListQuery(is_active=False))) == 1
    no_status = EntityConfig("widget", "widgets", "/api/widgets", PatternType.SPECIAL, has_status=False)
    assert build_conditions(Widget, no_status, ListQuery(is_active=False)) == []


def test_resolve_sort_whitelists_columns():
    order = resolve_sort(Widget, CONFIG, "kind", "DESC")
    # kind is not sortable: default sort, requested direction, pk tiebreak
    assert [_sql(o) for o in order] == ["widgets.name DESC", "widgets.id ASC"]
    order = resolve_sort(Widget, CONFIG, "qty", None)
    assert [_sql(o) for o in order] == ["widgets.qty ASC", "widgets.id ASC"]
