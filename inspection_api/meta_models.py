# inspection_api/meta_models.py
#
# Parsed form of schema/qc.meta.json. The JSON-Schema check in meta_loader
# runs first, so these models only carry shape and lookups.
from __future__ import annotations
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel


class DataType(str, Enum):
    SERIAL = "SERIAL"
    VARCHAR = "VARCHAR"
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DECIMAL = "DECIMAL"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    BLOB = "BLOB"


class OnDelete(str, Enum):
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


class Column(BaseModel):
    columnName: str
    dataType: DataType
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    isNullable: bool = False
    isUnique: bool = False
    defaultValue: Optional[Any] = None

    @property
    def data_type(self) -> str:
        return self.dataType.value

    @property
    def is_serial(self) -> bool:
        return self.dataType is DataType.SERIAL


class ForeignKey(BaseModel):
    columnName: str
    referencedTable: str
    referencedColumn: str
    onDelete: Optional[OnDelete] = None

    @property
    def target(self) -> str:
        return f"{self.referencedTable}.{self.referencedColumn}"


class Index(BaseModel):
    name: str
    columns: List[str]
    unique: bool = False


class Table(BaseModel):
    tableName: str
    columns: List[Column]
    primaryKey: List[str]
    foreignKeys: List[ForeignKey] = []
    indexes: List[Index] = []

    def column_names(self) -> List[str]:
        return [c.columnName for c in self.columns]

    def column(self, name: str) -> Optional[Column]:
        return next((c for c in self.columns if c.columnName == name), None)

    def foreign_key_for(self, column_name: str) -> Optional[ForeignKey]:
        return next((fk for fk in self.foreignKeys if fk.columnName == column_name), None)


class ModelMeta(BaseModel):
    version: Optional[str] = None
    tables: List[Table]

    def table_names(self) -> List[str]:
        return [t.tableName for t in self.tables]

    def table(self, name: str) -> Table:
        for t in self.tables:
            if t.tableName == name:
                return t
        raise KeyError(f"Table '{name}' is not declared in the table metadata")
