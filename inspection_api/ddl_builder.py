# inspection_api/ddl_builder.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from sqlalchemy import Column, ForeignKey, Index, MetaData, func
from sqlalchemy.orm import DeclarativeBase
from inspection_api.meta_models import Column as MetaCol, DataType, ModelMeta, Table
from inspection_api.type_mapping import sqlalchemy_type


@dataclass
class ModelRegistry:
    """ORM classes built from one ModelMeta, sharing one MetaData."""
    meta: ModelMeta
    models: Dict[str, type] = field(default_factory=dict)
    metadata: Optional[MetaData] = None

    def model(self, table_name: str) -> type:
        try:
            return self.models[table_name]
        except KeyError:
            raise KeyError(f"No model built for table '{table_name}'") from None

    def table_meta(self, table_name: str) -> Table:
        return self.meta.table(table_name)

    def create_all(self, engine) -> None:
        self.metadata.create_all(bind=engine)


_NOW_DEFAULTS = {"now", "now()", "current_timestamp", "current_timestamp()"}


def _column_options(col: MetaCol, is_pk: bool) -> Dict[str, Any]:
    """nullable/unique plus defaults; 'now' becomes a server-side default."""
    options: Dict[str, Any] = {"nullable": col.isNullable, "unique": col.isUnique}
    if col.is_serial:
        options["autoincrement"] = True
    elif is_pk:
        options["autoincrement"] = False

    default = col.defaultValue
    if isinstance(default, str) and default.strip().lower() in _NOW_DEFAULTS:
        if col.dataType is DataType.TIMESTAMP:
            options["server_default"] = func.now()
        elif col.dataType is DataType.DATE:
            options["server_default"] = func.current_date()
    elif default is not None:
        options["default"] = default
    return options


def _orm_column(table_meta: Table, col: MetaCol, dialect: str) -> Column:
    sa_type = sqlalchemy_type(
        col.data_type, length=col.length, precision=col.precision, scale=col.scale, dialect=dialect
    )
    is_pk = col.columnName in table_meta.primaryKey
    args: List[Any] = [col.columnName, sa_type]
    fk = table_meta.foreign_key_for(col.columnName)
    if fk is not None:
        args.append(ForeignKey(fk.target, ondelete=fk.onDelete.value if fk.onDelete else None))
    return Column(*args, primary_key=is_pk, **_column_options(col, is_pk))


def _class_attrs(table_meta: Table, dialect: str) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {"__tablename__": table_meta.tableName}
    for col in table_meta.columns:
        attrs[col.columnName] = _orm_column(table_meta, col, dialect)
    if table_meta.indexes:
        attrs["__table_args__"] = tuple(
            Index(idx.name, *idx.columns, unique=idx.unique) for idx in table_meta.indexes
        )
    return attrs


def _class_name(table_name: str) -> str:
    return "".join(part.capitalize() for part in table_name.split("_"))


def build_registry(meta: ModelMeta, dialect: str = "generic") -> ModelRegistry:
    """
    Build one ORM class per metadata table (defects -> Defects, customers_site
    -> CustomersSite). Each call gets its own declarative base, so an app and
    a DDL export can build registries side by side.
    """
    class Base(DeclarativeBase):
        pass

    registry = ModelRegistry(meta=meta, metadata=Base.metadata)
    for table in meta.tables:
        registry.models[table.tableName] = type(_class_name(table.tableName), (Base,), _class_attrs(table, dialect))
    return registry
