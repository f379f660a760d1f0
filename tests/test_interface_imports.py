from datetime import datetime

import pytest
from sqlalchemy import insert, update

from inspection_api.external_source import SourceConnection, get_source
from conftest import memory_engine

CHECKINS = [
    {
        "Id": "C1", "LineNoId": "L01", "WorkShiftId": "D", "GrCode": "G1", "Username": "u1",
        "Firstname": "Anan", "CreatedOn": datetime(2024, 7, 1, 8, 0), "CheckedOut": None,
        "DateTimeStartWork": datetime(2024, 7, 1, 8, 0), "DateTimeOffWork": None,
        "TimeStartWork": "08:00", "TimeOffWork": None, "Group": "FVI", "Team": "A",
    },
    {
        "Id": "C2", "LineNoId": "L01", "WorkShiftId": "N", "GrCode": "G2", "Username": "u2",
        "Firstname": "Boon", "CreatedOn": datetime(2024, 7, 1, 20, 0), "CheckedOut": datetime(2024, 7, 2, 5, 0),
        "DateTimeStartWork": datetime(2024, 7, 1, 20, 0), "DateTimeOffWork": datetime(2024, 7, 2, 5, 0),
        "TimeStartWork": "20:00", "TimeOffWork": "05:00", "Group": "FVI", "Team": "B",
    },
    {
        "Id": "C3", "LineNoId": "L02", "WorkShiftId": "D", "GrCode": "G1", "Username": "u1",
        "Firstname": "Anan", "CreatedOn": datetime(2024, 7, 2, 8, 0), "CheckedOut": None,
        "DateTimeStartWork": datetime(2024, 7, 2, 8, 0), "DateTimeOffWork": None,
        "TimeStartWork": "08:00", "TimeOffWork": None, "Group": "FVI", "Team": "A",
    },
]

INPUTS = [
    {
        "Id": 1, "LotNo": "L01A0001", "PartSite": "TH", "ItemNo": "I-1", "Model": "MX", "Version": "A",
        "InputDate": datetime(2024, 7, 1, 9, 0), "FinishOn": None,
    },
    {
        "Id": 2, "LotNo": "L02B0002", "PartSite": "TH", "ItemNo": "I-2", "Model": "MX", "Version": "B",
        "InputDate": datetime(2024, 7, 1, 10, 0), "FinishOn": datetime(2024, 7, 1, 15, 0),
    },
]


@pytest.fixture
def seeded(source, source_engine, source_tables):
    with source_engine.begin() as conn:
        conn.execute(insert(source_tables["CheckIn"]), CHECKINS)
        conn.execute(insert(source_tables["Input"]), INPUTS)
    return source


def _ids(resp):
    return [row["id"] for row in resp.json()["data"]]


def test_import_without_source_is_unavailable(client):
    resp = client.post("/api/inf-checkin/import", json={})
    assert resp.status_code == 503
    assert resp.json()["message"] == "External source is not configured"


def test_import_with_broken_source_is_unavailable(app, client):
    empty = memory_engine()
    app.dependency_overrides[get_source] = lambda: SourceConnection(engine=empty, schema=None)
    try:
        resp = client.post("/api/inf-lotinput/import/today")
    finally:
        app.dependency_overrides.pop(get_source, None)
        empty.dispose()
    assert resp.status_code == 503
    assert resp.json()["message"] == "External source is unavailable"


def test_import_rejects_inverted_range(client, seeded):
    resp = client.post("/api/inf-checkin/import", json={"date_from": "2024-07-05", "date_to": "2024-07-01"})
    assert resp.status_code == 400


def test_checkin_import_and_reads(client, seeded):
    resp = client.post("/api/inf-checkin/import", json={})
    assert resp.status_code == 200, resp.text
    outcome = resp.json()["data"]
    assert (outcome["fetched"], outcome["imported"], outcome["updated"], outcome["skipped"]) == (3, 3, 0, 0)

    listed = client.get("/api/inf-checkin/")
    assert _ids(listed) == ["C3", "C2", "C1"]
    assert listed.json()["pagination"]["limit"] == 50
    assert listed.json()["data"][0]["oprname"] == "Anan"
    assert listed.json()["data"][0]["imported_at"] is not None

    assert _ids(client.get("/api/inf-checkin/", params={"status": "working"})) == ["C3", "C1"]
    assert _ids(client.get("/api/inf-checkin/", params={"status": "checked_out"})) == ["C2"]
    assert _ids(client.get("/api/inf-checkin/", params={"limit": 500})) == ["C3", "C2", "C1"]
    assert _ids(client.get("/api/inf-checkin/", params={"created_on_to": "2024-07-01"})) == ["C2", "C1"]
    assert _ids(client.get("/api/inf-checkin/active")) == ["C3", "C1"]
    assert _ids(client.get("/api/inf-checkin/user/u1")) == ["C3", "C1"]
    assert _ids(client.get("/api/inf-checkin/line/L01")) == ["C2", "C1"]
    assert client.get("/api/inf-checkin/C2").json()["data"]["team"] == "B"

    assert client.get("/api/inf-checkin/operators").json()["data"] == [
        {"username": "u1", "oprname": "Anan"},
        {"username": "u2", "oprname": "Boon"},
    ]
    options = client.get("/api/inf-checkin/filter-options").json()["data"]
    assert options["line_no_id"] == ["L01", "L02"]
    assert options["work_shift_id"] == ["D", "N"]
    assert options["status"] == ["working", "checked_out"]

    stats = client.get("/api/inf-checkin/statistics").json()["data"]
    assert (stats["total"], stats["working"], stats["checkedOut"], stats["operators"]) == (3, 2, 1, 2)
    assert stats["byLine"] == [{"line": "L01", "count": 2}, {"line": "L02", "count": 1}]
    assert stats["lastImport"] is not None


def test_checkin_incremental_then_ranged_import(client, seeded, source_engine, source_tables):
    client.post("/api/inf-checkin/import", json={})

    checkin = source_tables["CheckIn"]
    with source_engine.begin() as conn:
        conn.execute(update(checkin).where(checkin.c.Id == "C1").values(TimeOffWork="17:00"))
        conn.execute(insert(checkin), [{**CHECKINS[0], "Id": "C4", "CreatedOn": datetime(2024, 7, 3, 8, 0)}])

    # no range: only rows newer than the newest imported one
    outcome = client.post("/api/inf-checkin/import", json={}).json()["data"]
    assert (outcome["fetched"], outcome["imported"], outcome["updated"]) == (1, 1, 0)
    assert "C1" in _ids(client.get("/api/inf-checkin/active"))

    resp = client.post("/api/inf-checkin/import", json={"date_from": "2024-07-01", "date_to": "2024-07-03"})
    outcome = resp.json()["data"]
    assert (outcome["fetched"], outcome["imported"], outcome["updated"]) == (4, 0, 4)
    assert "C1" not in _ids(client.get("/api/inf-checkin/active"))


def test_import_reports_empty_source(client, source):
    resp = client.post("/api/inf-checkin/import", json={})
    assert resp.status_code == 200
    assert resp.json()["message"] == "No records found to import"


def test_sync_follows_configured_interval(client, settings, seeded):
    resp = client.get("/api/inf-checkin/sync")
    assert resp.json()["message"] == "Sync interval not configured"
    assert resp.json()["data"]["shouldImport"] is False

    settings.SOURCE_SYNC_MINUTES = 30
    status = client.get("/api/inf-checkin/sync").json()["data"]
    assert status["shouldImport"] is True
    assert status["lastImport"] is None

    synced = client.post("/api/inf-checkin/sync").json()["data"]
    assert synced["import"]["imported"] == 3

    status = client.get("/api/inf-checkin/sync").json()["data"]
    assert status["shouldImport"] is False
    assert status["nextImport"] is not None

    # nothing due: POST /sync only reports status
    again = client.post("/api/inf-checkin/sync").json()["data"]
    assert "import" not in again


def test_lotinput_import_derives_line(client, seeded):
    outcome = client.post("/api/inf-lotinput/import", json={}).json()["data"]
    assert outcome["imported"] == 2

    rows = client.get("/api/inf-lotinput/", params={"sortBy": "id", "sortOrder": "ASC"}).json()["data"]
    assert [(r["id"], r["lineno"]) for r in rows] == [(1, "L01"), (2, "L02")]

    assert _ids(client.get("/api/inf-lotinput/", params={"status": "IN_PROGRESS"})) == [1]
    assert _ids(client.get("/api/inf-lotinput/", params={"status": "finished"})) == [2]
    assert _ids(client.get("/api/inf-lotinput/", params={"lineno": "L02"})) == [2]

    lot = client.get("/api/inf-lotinput/lot/L01A0001").json()["data"]
    assert [r["id"] for r in lot] == [1]
    assert client.get("/api/inf-lotinput/lot/NOPE").status_code == 404

    options = client.get("/api/inf-lotinput/filter-options").json()["data"]
    assert options["lineno"] == ["L01", "L02"]
    assert options["status"] == ["IN_PROGRESS", "FINISHED"]

    stats = client.get("/api/inf-lotinput/statistics").json()["data"]
    assert (stats["total"], stats["inProgress"], stats["finished"]) == (2, 1, 1)
    assert {"today", "thisMonth", "thisYear"} <= set(stats)


def test_lotinput_manual_create_derives_line(client):
    resp = client.post("/api/inf-lotinput/", json={"id": 10, "lotno": "K07X0001"})
    assert resp.status_code == 201, resp.text
    assert resp.json()["data"]["lineno"] == "K07"


def test_lotinput_update_rederives_line(client):
    client.post("/api/inf-lotinput/", json={"id": 10, "lotno": "K07X0001"})

    resp = client.put("/api/inf-lotinput/10", json={"lotno": "M02Y0001"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["lineno"] == "M02"

    resp = client.put("/api/inf-lotinput/10", json={"lotno": "P09Z0001", "lineno": "X01"})
    assert resp.json()["data"]["lineno"] == "X01"


def test_incremental_import_does_not_drop_rows_sharing_a_timestamp(app, client, source_engine, source_tables):
    same_time = datetime(2024, 7, 1, 8, 0)
    with source_engine.begin() as conn:
        conn.execute(insert(source_tables["CheckIn"]), [
            {**CHECKINS[0], "Id": f"T{n}", "CreatedOn": same_time} for n in (1, 2, 3)
        ])

    app.dependency_overrides[get_source] = lambda: SourceConnection(engine=source_engine, schema=None, batch_limit=2)
    try:
        first = client.post("/api/inf-checkin/import", json={}).json()["data"]
        second = client.post("/api/inf-checkin/import", json={}).json()["data"]
        third = client.post("/api/inf-checkin/import", json={}).json()["data"]
    finally:
        app.dependency_overrides.pop(get_source, None)

    assert (first["fetched"], second["fetched"], third["fetched"]) == (2, 1, 0)
    assert sorted(_ids(client.get("/api/inf-checkin/"))) == ["T1", "T2", "T3"]


def test_import_range_requires_both_dates(client, seeded):
    resp = client.post("/api/inf-checkin/import/range", json={"dateFrom": "2024-07-01"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing required parameters: dateFrom and dateTo are required"

    resp = client.post("/api/inf-checkin/import/range", json={"dateFrom": "2024-07-01", "dateTo": "2024-07-01"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["imported"] == 2

    resp = client.post("/api/inf-lotinput/import/range", json={"dateFrom": "2024-07-01", "dateTo": "2024-07-01"})
    assert resp.json()["data"]["imported"] == 2


def test_checkin_search(client, seeded):
    client.post("/api/inf-checkin/import", json={})

    assert _ids(client.get("/api/inf-checkin/search", params={"searchTerm": "ana"})) == ["C3", "C1"]
    assert _ids(client.get("/api/inf-checkin/search", params={"username": "U2"})) == ["C2"]
    assert _ids(client.get("/api/inf-checkin/search", params={"lineId": "L01", "team": "A"})) == ["C1"]
    assert _ids(client.get("/api/inf-checkin/search", params={"dateFrom": "2024-07-02"})) == ["C3"]
    assert _ids(client.get("/api/inf-checkin/search", params={"dateTo": "2024-07-01"})) == ["C2", "C1"]
    assert client.get("/api/inf-checkin/search", params={"dateTo": "soon"}).status_code == 400


def test_fvi_line_lookups(client, seeded):
    client.post("/api/inf-checkin/import", json={})

    resp = client.get("/api/inf-checkin/fvi-line-mapping", params={"line": "L01", "date": "2024-07-01", "shift": "D"})
    assert resp.status_code == 200
    assert resp.json()["data"] == [{"gr_code": "G1", "group_code": "FVI", "username": "u1"}]

    resp = client.get("/api/inf-checkin/fvi-line-mapping", params={"line": "L01", "date": "2024-07-01"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing required parameters: line, date, and shift are required"

    resp = client.get("/api/inf-checkin/fvi-lines-by-date", params={"date": "2024-07-01"})
    assert resp.json()["data"] == [{"line_no_id": "L01"}]
    resp = client.get("/api/inf-checkin/fvi-lines-by-date")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing required parameter: date is required"


def test_lotinput_connection_routes(app, client, source):
    resp = client.post("/api/inf-lotinput/connection/test")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"connected": True}

    resp = client.post("/api/inf-lotinput/sync/today-finished")
    assert resp.status_code == 200
    assert resp.json()["message"] == "No records found to import"

    app.dependency_overrides.pop(get_source, None)
    resp = client.post("/api/inf-lotinput/connection/test")
    assert resp.status_code == 503
    assert resp.json()["message"] == "External source is not configured"


def test_lotinput_connection_refresh(app, client):
    fresh = memory_engine()
    app.dependency_overrides[get_source] = lambda: SourceConnection(engine=fresh, schema=None)
    try:
        resp = client.post("/api/inf-lotinput/connection/refresh")
    finally:
        app.dependency_overrides.pop(get_source, None)
        fresh.dispose()
    assert resp.status_code == 200
    assert resp.json()["message"] == "External source connection refreshed successfully"
