# inspection_api/export_ddl.py
#
#   python -m inspection_api.export_ddl validate
#   python -m inspection_api.export_ddl export-ddl --dialect=postgres --out=schema.sql
import io
from typing import Optional

import typer
from sqlalchemy.dialects import mssql, postgresql, sqlite
from sqlalchemy.schema import CreateIndex, CreateTable

from inspection_api.ddl_builder import build_registry
from inspection_api.meta_loader import InvalidMetaError, load_meta
from inspection_api.meta_models import ModelMeta

app = typer.Typer(help="Table metadata tools for the QC database")

DIALECTS = {
    "sqlite": sqlite.dialect,
    "postgres": postgresql.dialect,
    "mssql": mssql.dialect,
}


def _require_valid_meta(meta_path: Optional[str]) -> ModelMeta:
    try:
        return load_meta(meta_path)
    except InvalidMetaError as e:
        typer.echo(f"Invalid metadata: {e}", err=True)
        raise typer.Exit(code=1)


def generate_ddl(meta: ModelMeta, dialect: str) -> str:
    """CREATE TABLE and CREATE INDEX statements in foreign-key order."""
    registry = build_registry(meta, dialect=dialect)
    target = DIALECTS[dialect]()
    buf = io.StringIO()
    for table in registry.metadata.sorted_tables:
        buf.write(str(CreateTable(table).compile(dialect=target)).strip())
        buf.write(";\n\n")
        for index in sorted(table.indexes, key=lambda i: i.name):
            buf.write(str(CreateIndex(index).compile(dialect=target)).strip())
            buf.write(";\n\n")
    return buf.getvalue()


@app.command(help="Validate the metadata file against meta.schema.json.")
def validate(meta: Optional[str] = typer.Option(None, help="Metadata file (default: bundled qc.meta.json)")):
    model_meta = _require_valid_meta(meta)
    typer.echo(f"Metadata is valid ({len(model_meta.tables)} tables).")


@app.command("export-ddl", help="Export CREATE TABLE DDL for the metadata.")
def export_ddl(
    dialect: str = typer.Option("postgres", help="Target dialect: sqlite | postgres | mssql"),
    out: str = typer.Option("schema.sql", help="Output .sql file path"),
    meta: Optional[str] = typer.Option(None, help="Metadata file (default: bundled qc.meta.json)"),
):
    model_meta = _require_valid_meta(meta)
    if dialect.lower() not in DIALECTS:
        typer.echo("Unknown dialect. Use one of: sqlite | postgres | mssql", err=True)
        raise typer.Exit(code=2)

    with open(out, "w", encoding="utf-8") as f:
        f.write(generate_ddl(model_meta, dialect.lower()))
    typer.echo(f"DDL written to {out} (dialect={dialect})")


if __name__ == "__main__":
    app()
