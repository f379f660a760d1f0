import itertools

import pytest

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

_numbers = itertools.count(1)


def _post(client, path, body):
    resp = client.post(f"{path}/", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _inspection(**overrides):
    record = {
        "station": "OQA",
        "inspection_no": f"OQA250702-01{next(_numbers):04d}",
        "fy": "2025",
        "ww": "02",
        "month_year": "2024-07",
        "shift": "A",
        "lotno": "L01A0001",
        "partsite": "TH",
        "itemno": "I-1",
        "model": "MX",
        "version": "A",
        "fvilineno": "F01",
        "mclineno": "M01",
        "round": 1,
    }
    record.update(overrides)
    return record


def _defect_record(defect_id, **overrides):
    record = {
        "inspection_no": "OQA250702-010001",
        "qc_name": "somchai",
        "qclead_name": "malee",
        "mbr_name": "niran",
        "linevi": "L01",
        "groupvi": "G1",
        "station": "OQA",
        "inspector": "insp01",
        "defect_id": defect_id,
        "ng_qty": 2,
    }
    record.update(overrides)
    return record


@pytest.fixture
def defect_id(client):
    return _post(client, "/api/defects", {"name": "Scratch"})["id"]


# ------------------------------------------------------------------ sysconfig


def test_sysconfig_active_and_parsed(client):
    assert client.get("/api/sysconfig/active").status_code == 404

    first = _post(client, "/api/sysconfig", {
        "system_name": "QC", "fvi_lot_qty": "100, 200", "shift": "A, B,", "smtp_password": "secret",
    })
    second = _post(client, "/api/sysconfig", {"system_name": "QC v2"})
    assert "smtp_password" not in first

    assert client.get("/api/sysconfig/active").json()["data"]["id"] == second["id"]

    resp = client.put(f"/api/sysconfig/{first['id']}/activate")
    assert resp.status_code == 200
    assert resp.json()["message"] == "System configuration activated successfully"
    assert client.get(f"/api/sysconfig/{second['id']}").json()["data"]["is_active"] is False

    active = client.get("/api/sysconfig/active/parsed").json()["data"]
    assert active["id"] == first["id"]
    assert active["parsed"]["fvi_lot_qty"] == [100, 200]
    assert active["parsed"]["shift"] == ["A", "B"]
    assert active["parsed"]["site"] == []

    parsed = client.get(f"/api/sysconfig/{second['id']}/parsed").json()["data"]
    assert parsed["parsed"]["fvi_lot_qty"] == []

    listed = client.get("/api/sysconfig/parsed").json()
    assert [c["id"] for c in listed["data"]] == [first["id"], second["id"]]
    assert listed["pagination"]["total"] == 2

    assert client.put("/api/sysconfig/999/activate").status_code == 404


@pytest.mark.parametrize(
    "qty, message",
    [
        ("100, x", "fvi_lot_qty contains invalid numeric values"),
        ("100, -5", "fvi_lot_qty cannot contain negative values"),
        ("9999999", "fvi_lot_qty contains values that are too large (max: 1000000)"),
    ],
)
def test_sysconfig_rejects_bad_quantity_lists(client, qty, message):
    resp = client.post("/api/sysconfig/", json={"fvi_lot_qty": qty})
    assert resp.status_code == 400
    assert resp.json()["errors"] == [message]


# ------------------------------------------------------------- inspectiondata


def test_sampling_round_counts_up_per_station_and_lot(client):
    resp = client.get("/api/inspectiondata/sampling-round", params={"station": "OQA", "lotno": "L01A0001"})
    assert resp.json()["data"] == {"nextRound": 1, "currentRound": 0}

    _post(client, "/api/inspectiondata", _inspection(round=1))
    _post(client, "/api/inspectiondata", _inspection(round=2))
    _post(client, "/api/inspectiondata", _inspection(station="SIV", round=5))

    resp = client.get("/api/inspectiondata/sampling-round", params={"station": "OQA", "lotno": "L01A0001"})
    assert resp.json()["data"] == {"nextRound": 3, "currentRound": 2}

    resp = client.get("/api/inspectiondata/sampling-round", params={"station": "OQA"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Station and lotno are required"


def test_generate_inspection_number(client):
    params = {"station": "OQA", "date": "2024-07-13", "ww": "3"}
    resp = client.get("/api/inspectiondata/generate-inspection-number", params=params)
    assert resp.status_code == 200
    assert resp.json()["data"] == {"inspectionNo": "OQA250703-130001"}

    _post(client, "/api/inspectiondata", _inspection(inspection_no="OQA250703-130007"))
    _post(client, "/api/inspectiondata", _inspection(inspection_no="OQA250703-140002"))
    resp = client.get("/api/inspectiondata/generate-inspection-number", params=params)
    assert resp.json()["data"] == {"inspectionNo": "OQA250703-130008"}

    resp = client.get("/api/inspectiondata/generate-inspection-number", params={"station": "OQA", "ww": "3"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Station, date, and ww are required"

    resp = client.get("/api/inspectiondata/generate-inspection-number", params={**params, "date": "someday"})
    assert resp.status_code == 400


def test_inspection_number_is_unique(client):
    _post(client, "/api/inspectiondata", _inspection(inspection_no="OQA250702-010999"))
    resp = client.post("/api/inspectiondata/", json=_inspection(inspection_no="OQA250702-010999"))
    assert resp.status_code == 400
    assert resp.json()["message"] == "Inspection number 'OQA250702-010999' already exists"


def test_station_stats(client):
    _post(client, "/api/inspectiondata", _inspection(judgment=True))
    _post(client, "/api/inspectiondata", _inspection(judgment=False))
    _post(client, "/api/inspectiondata", _inspection())
    _post(client, "/api/inspectiondata", _inspection(station="SIV", judgment=True))

    stats = client.get("/api/inspectiondata/stats/OQA").json()["data"]
    assert stats == {"station": "OQA", "total": 3, "passed": 1, "failed": 1, "pending": 1}

    rows = client.get("/api/inspectiondata/", params={"station": "SIV"}).json()["data"]
    assert len(rows) == 1


# ----------------------------------------------------------------- defectdata


@pytest.mark.parametrize("path", ["/api/defectdata", "/api/defectdata-customer"])
def test_defect_records_carry_defect_name(client, defect_id, path):
    created = _post(client, path, _defect_record(defect_id, defect_date="2024-07-01T10:00:00"))
    assert created["defect_name"] == "Scratch"
    _post(client, path, _defect_record(defect_id, inspection_no="OQA250702-010002", inspector="insp02"))

    rows = client.get(f"{path}/inspection/OQA250702-010001").json()["data"]
    assert [r["id"] for r in rows] == [created["id"]]
    assert rows[0]["defect_name"] == "Scratch"

    rows = client.get(f"{path}/inspector/insp02").json()["data"]
    assert [r["inspection_no"] for r in rows] == ["OQA250702-010002"]

    resp = client.get(f"{path}/station/OQA", params={"dateFrom": "2024-07-01", "dateTo": "2024-07-01"})
    assert [r["id"] for r in resp.json()["data"]] == [created["id"]]
    assert resp.json()["pagination"]["total"] == 1
    assert client.get(f"{path}/station/OQA", params={"dateFrom": "later"}).status_code == 400


def test_defect_records_check_defect_reference(client, defect_id):
    resp = client.post("/api/defectdata/", json=_defect_record(999))
    assert resp.status_code == 400
    assert resp.json()["errors"] == ["Invalid defect reference"]

    resp = client.post("/api/defectdata/", json=_defect_record(defect_id, ng_qty=-1))
    assert resp.status_code == 400
    assert resp.json()["errors"] == ["ng_qty cannot be negative"]


def test_customer_defect_images(client, defect_id):
    record = _post(client, "/api/defectdata-customer", _defect_record(defect_id))

    resp = client.post(
        "/api/defect-customer-image/",
        data={"defect_id": str(record["id"])},
        files={"image": ("claim.png", PNG, "image/png")},
    )
    assert resp.status_code == 201, resp.text
    [meta] = resp.json()["data"]
    assert client.get(f"/api/defect-customer-image/{meta['id']}").content == PNG

    listed = client.get(f"/api/defect-customer-image/defect/{record['id']}").json()["data"]
    assert [m["id"] for m in listed] == [meta["id"]]

    resp = client.post(
        "/api/defect-customer-image/",
        data={"defect_id": "999"},
        files={"image": ("claim.png", PNG, "image/png")},
    )
    assert resp.status_code == 404
    assert resp.json()["message"] == "Customer defect record not found"

    resp = client.get("/api/defect-customer-image/999")
    assert resp.status_code == 404
    assert resp.json()["message"] == "Defect customer image not found"


# --------------------------------------------------------------------- report


def test_lar_chart_groups_by_fiscal_week(client):
    _post(client, "/api/inspectiondata", _inspection(lotno="A1", judgment=True))
    _post(client, "/api/inspectiondata", _inspection(lotno="A2", judgment=False))
    _post(client, "/api/inspectiondata", _inspection(lotno="A3"))
    _post(client, "/api/inspectiondata", _inspection(ww="03", lotno="B1", judgment=True))
    _post(client, "/api/inspectiondata", _inspection(fy="2024", ww="52", model="MY", lotno="C1", judgment=True))

    rows = client.get("/api/report/lar-chart").json()["data"]
    assert [(r["fy"], r["ww"]) for r in rows] == [("2024", "52"), ("2025", "02"), ("2025", "03")]
    week2 = rows[1]
    assert (week2["total_inspection"], week2["total_lot"]) == (3, 3)
    assert (week2["total_pass_lot"], week2["total_fail_lot"], week2["lar"]) == (1, 1, 50.0)

    rows = client.get("/api/report/lar-chart", params={"yearFrom": "2025", "wwFrom": "3"}).json()["data"]
    assert [(r["ww"], r["lar"]) for r in rows] == [("03", 100.0)]

    rows = client.get("/api/report/lar-chart", params={"yearTo": "2025", "wwTo": "2", "model": "MX"}).json()["data"]
    assert [r["ww"] for r in rows] == ["02"]

    assert client.get("/api/report/lar-chart", params={"yearFrom": "next"}).status_code == 400

    assert client.get("/api/report/models").json()["data"] == ["MX", "MY"]
    assert client.get("/api/report/fiscal-years").json()["data"] == ["2024", "2025"]
    assert client.get("/api/report/work-weeks", params={"fy": "2025"}).json()["data"] == ["02", "03"]
