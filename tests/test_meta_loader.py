import json

import pytest

from inspection_api.app_factory import prepare_schema
from inspection_api.ddl_builder import build_registry
from inspection_api.generic.payloads import build_payload_models, validate_payload
from inspection_api.meta_loader import InvalidMetaError, load_meta
from inspection_api.schema_guard import diff_schema
from conftest import memory_engine


def _write(tmp_path, data):
    path = tmp_path / "meta.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_bundled_meta_is_valid():
    meta = load_meta()
    names = {t.tableName for t in meta.tables}
    assert {"defects", "customers", "iqadata", "defect_images", "inf_checkin", "inf_lotinput"} <= names
    assert {"sysconfig", "inspectiondata", "defectdata", "defectdata_customer", "defect_image_customer"} <= names


@pytest.mark.parametrize(
    "data, fragment",
    [
        ({"tables": [{"tableName": "t", "primaryKey": ["id"]}]}, "Meta validation failed"),
        (
            {"tables": [{"tableName": "t", "primaryKey": ["id"],
                         "columns": [{"columnName": "name", "dataType": "VARCHAR"}]}]},
            "primary key column 'id'",
        ),
        (
            {"tables": [{"tableName": "t", "primaryKey": ["id"],
                         "columns": [{"columnName": "id", "dataType": "INTEGER"}],
                         "foreignKeys": [{"columnName": "id", "referencedTable": "nope", "referencedColumn": "id"}]}]},
            "unknown table 'nope'",
        ),
    ],
)
def test_invalid_meta_is_rejected(tmp_path, data, fragment):
    with pytest.raises(InvalidMetaError) as exc:
        load_meta(_write(tmp_path, data))
    assert fragment in str(exc.value)


def test_missing_and_malformed_files(tmp_path):
    with pytest.raises(InvalidMetaError):
        load_meta(str(tmp_path / "absent.json"))
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(InvalidMetaError):
        load_meta(str(broken))


def test_diff_schema_reports_missing_tables():
    meta = load_meta()
    engine = memory_engine()
    try:
        diff = diff_schema(engine, meta)
        assert diff.has_changes
        assert "defects" in diff.missing_tables

        build_registry(meta, dialect="sqlite").create_all(engine)
        assert not diff_schema(engine, meta).has_changes
    finally:
        engine.dispose()


def test_strict_schema_refuses_to_start(settings):
    settings.ENGINE_CREATE_TABLES = False
    settings.ENGINE_SCHEMA_STRICT = True
    registry = build_registry(load_meta(), dialect="sqlite")
    engine = memory_engine()
    try:
        with pytest.raises(SystemExit):
            prepare_schema(engine, registry, settings)

        settings.ENGINE_SCHEMA_STRICT = False
        prepare_schema(engine, registry, settings)
    finally:
        engine.dispose()


def test_payload_models_drop_server_managed_fields():
    defects = next(t for t in load_meta().tables if t.tableName == "defects")
    payloads = build_payload_models(defects)
    body = {"name": "Dent", "id": 4, "created_by": 9, "updatedAt": "2024-01-01", "defect_group": "Cosmetic"}

    clean, errors = validate_payload(payloads.create, body)
    assert errors == []
    assert clean == {"name": "Dent", "defect_group": "Cosmetic"}

    clean, errors = validate_payload(payloads.update, {"id": 4, "created_at": "2024-01-01"})
    assert (clean, errors) == ({}, [])
