# inspection_api/generic/config.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class PatternType(str, Enum):
    SERIAL_ID = "SERIAL_ID"
    VARCHAR_CODE = "VARCHAR_CODE"
    SPECIAL = "SPECIAL"


CODE_PATTERN = r"^[A-Za-z0-9_-]+$"


@dataclass(frozen=True)
class EntityConfig:
    """
    Everything the generic layers need to know about one entity:
    where it lives (table, API path), its key shape, and how lists are queried.
    """
    entity_name: str
    table_name: str
    api_path: str
    pattern: PatternType
    primary_key: Tuple[str, ...] = ("id",)
    searchable_fields: Tuple[str, ...] = ()
    filter_fields: Tuple[str, ...] = ()
    date_fields: Tuple[str, ...] = ()
    sortable_fields: Tuple[str, ...] = ()
    required_fields: Tuple[str, ...] = ()
    hidden_fields: Tuple[str, ...] = ()
    default_sort: Optional[str] = None
    default_order: str = "ASC"
    default_limit: int = 20
    max_limit: int = 100
    code_length: Optional[int] = None
    has_status: bool = True
    activity_field: Optional[str] = "created_at"
    description: str = ""

    @property
    def display_name(self) -> str:
        return self.entity_name.replace("-", " ").replace("_", " ")

    @property
    def sort_field(self) -> str:
        return self.default_sort or self.primary_key[0]

    def allowed_sort_fields(self, column_names) -> Tuple[str, ...]:
        if self.sortable_fields:
            return self.sortable_fields
        return tuple(column_names)


def serial_id_config(entity_name: str, table_name: str, api_path: str, **overrides) -> EntityConfig:
    opts = dict(
        primary_key=("id",),
        searchable_fields=("name", "description"),
        sortable_fields=("id", "name", "description", "is_active", "created_at", "updated_at"),
        default_sort="name",
        default_limit=20,
        max_limit=100,
    )
    opts.update(overrides)
    return EntityConfig(entity_name, table_name, api_path, PatternType.SERIAL_ID, **opts)


def varchar_code_config(entity_name: str, table_name: str, api_path: str, code_length: int,
                        **overrides) -> EntityConfig:
    opts = dict(
        primary_key=("code",),
        searchable_fields=("code", "name"),
        sortable_fields=("code", "name", "is_active", "created_at", "updated_at"),
        default_sort="code",
        default_limit=20,
        max_limit=100,
        code_length=code_length,
    )
    opts.update(overrides)
    return EntityConfig(entity_name, table_name, api_path, PatternType.VARCHAR_CODE, **opts)
