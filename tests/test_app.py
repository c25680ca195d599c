# tests/test_app.py
from backend.app import create_app
from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.local_store import LocalStore
from botocore.exceptions import ClientError
from unittest.mock import MagicMock
import io
import pytest


@pytest.fixture
def client(tmp_path):
    app = create_app(LocalStore(tmp_path))
    app.config["TESTING"] = True
    return app.test_client()


def add_meter(client, meter_id="house", meter_type="power"):
    resp = client.post("/meters", json={"id": meter_id, "name": "House", "type": meter_type})
    assert resp.status_code == 201
    return resp.get_json()


def add_reading(client, date, value, meter_id="house"):
    resp = client.post("/readings", json={"meter_id": meter_id, "date": date, "value": value})
    assert resp.status_code == 201


def add_contract(client, start, end=None, meter_id="house", provider="Stadtwerke", base=10.0, working=0.3):
    return client.post("/contracts", json={
        "meter_id": meter_id,
        "provider_name": provider,
        "start_date": start,
        "end_date": end,
        "base_price": base,
        "working_price": working,
    })


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok", "storage": "local"}


def test_meter_validation(client):
    assert client.post("/meters", json={"id": "x", "name": "X", "type": "steam"}).status_code == 400
    assert client.post("/meters", data="not json").status_code == 400
    meter = add_meter(client, "gas-1", "gas")
    assert meter["unit"] == "m³"
    assert [m["id"] for m in client.get("/meters").get_json()["meters"]] == ["gas-1"]


def test_readings_with_deltas_and_stats(client):
    add_meter(client)
    add_reading(client, "2023-01-01T00:00:00", 6575)
    add_reading(client, "2023-01-11T00:00:00", 0)
    add_reading(client, "2023-01-21T00:00:00", 426)

    data = client.get("/readings?meter_id=house").get_json()
    assert [r["delta"] for r in data["readings"]] == [426.0, 0.0, 0.0]
    assert data["stats"]["daily_average"] == pytest.approx(21.3)

    stats = client.get("/stats?meter_id=house").get_json()
    assert stats["yearly_projection"] == pytest.approx(21.3 * 365.25)
    assert stats["unit"] == "kWh"


def test_unknown_or_missing_meter(client):
    assert client.get("/readings").status_code == 400
    assert client.get("/readings?meter_id=nope").status_code == 404
    resp = client.post("/readings", json={"meter_id": "nope", "date": "2023-01-01", "value": 1})
    assert resp.status_code == 404


def test_bad_reading_payload(client):
    add_meter(client)
    resp = client.post("/readings", json={"meter_id": "house", "date": "2023-01-01", "value": -1})
    assert resp.status_code == 400
    assert ">= 0" in resp.get_json()["error"]


def test_delete_reading(client):
    add_meter(client)
    add_reading(client, "2023-01-01T00:00:00", 5)
    assert client.delete("/readings?meter_id=house&date=2023-01-01T00:00:00").status_code == 200
    assert client.delete("/readings?meter_id=house&date=2023-01-01T00:00:00").status_code == 404


def test_contract_overlap_is_rejected(client):
    add_meter(client)
    assert add_contract(client, "2026-01-01", "2026-06-30").status_code == 201

    resp = add_contract(client, "2026-03-01", "2026-12-31", provider="Other")
    assert resp.status_code == 400
    assert "Stadtwerke" in resp.get_json()["error"]

    assert add_contract(client, "2026-07-01", "2026-12-31").status_code == 201
    assert len(client.get("/contracts?meter_id=house").get_json()["contracts"]) == 2


def test_contract_update_checks_other_contracts_only(client):
    add_meter(client)
    first = add_contract(client, "2026-01-01", "2026-06-30").get_json()
    add_contract(client, "2026-07-01", None)

    # moving its own end date is fine
    resp = client.put(f"/contracts/{first['id']}", json={"end_date": "2026-06-15"})
    assert resp.status_code == 200
    assert resp.get_json()["end_date"] == "2026-06-15"

    resp = client.put(f"/contracts/{first['id']}", json={"end_date": "2026-08-01"})
    assert resp.status_code == 400
    assert "present" in resp.get_json()["error"]

    assert client.put("/contracts/unknown", json={}).status_code == 404
    assert client.delete(f"/contracts/{first['id']}").status_code == 200
    assert client.delete(f"/contracts/{first['id']}").status_code == 404


def test_estimate_reports_unbilled_consumption(client):
    add_meter(client)
    add_reading(client, "2023-01-01T00:00:00", 0)
    add_reading(client, "2023-01-21T00:00:00", 100)
    add_contract(client, "2023-01-11")

    data = client.get("/estimate?meter_id=house").get_json()
    assert data["estimated_cost"] == 18.29
    assert data["unbilled_consumption"] == pytest.approx(50)
    assert len(data["intervals"]) == 1


def test_gaps_and_projection(client):
    add_meter(client)
    add_reading(client, "2023-01-01T00:00:00", 100)
    add_reading(client, "2023-12-31T00:00:00", 465)
    add_contract(client, "2023-02-01", "2023-12-31")

    gaps = client.get("/gaps?meter_id=house").get_json()["gaps"]
    assert gaps == [{"start_date": "2023-01-01", "end_date": "2023-01-31"}]

    data = client.get("/projection?meter_id=house&days=3").get_json()
    assert len(data["projection"]) == 4
    assert data["projection"][0]["value"] == 465
    assert client.get("/projection?meter_id=house&days=abc").status_code == 400


def test_upload_creates_meters_and_export(client):
    csv_bytes = b"meter_id,date,value\nnew-gas,2025-01-01T00:00:00,10\nnew-gas,2025-02-01T00:00:00,25\n"
    resp = client.post(
        "/upload",
        data={"file": (io.BytesIO(csv_bytes), "readings.csv"), "meter_type": "gas"},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 202
    body = resp.get_json()
    assert body["processed_count"] == 2
    assert body["created_meters"] == ["new-gas"]

    exported = client.get("/export?meter_id=new-gas")
    assert exported.mimetype == "text/csv"
    assert exported.get_data(as_text=True).splitlines()[2] == "new-gas,2025-02-01T00:00:00,25.0"


def test_upload_without_file_or_with_bad_csv(client):
    assert client.post("/upload", data={}, content_type="multipart/form-data").status_code == 400
    resp = client.post(
        "/upload",
        data={"file": (io.BytesIO(b"meter_id,date,value\nm1,2025-01-01,-5\n"), "bad.csv")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400


def test_aggregates_and_meter_delete(client):
    add_meter(client)
    add_reading(client, "2024-01-01T00:00:00", 0)
    add_reading(client, "2024-01-11T00:00:00", 100)

    data = client.get("/aggregates").get_json()
    assert set(data) == {"total_yearly_cost", "per_type_yearly_cost", "previous_year_total", "yearly_history"}
    assert "power" in data["per_type_yearly_cost"]

    assert client.delete("/meters/house").status_code == 200
    assert client.get("/meters").get_json()["meters"] == []
    assert client.delete("/meters/house").status_code == 404


def test_json_and_csv_readings_with_different_zones_mix(client):
    add_meter(client)
    add_reading(client, "2023-01-01", 100)
    csv_bytes = b"meter_id,date,value\nhouse,2023-02-01T00:00:00Z,131\nhouse,2023-03-01T02:00:00+02:00,159\n"
    resp = client.post(
        "/upload",
        data={"file": (io.BytesIO(csv_bytes), "readings.csv")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 202

    data = client.get("/readings?meter_id=house").get_json()
    assert [r["date"] for r in data["readings"]] == [
        "2023-03-01T00:00:00", "2023-02-01T00:00:00", "2023-01-01T00:00:00",
    ]
    assert [r["delta"] for r in data["readings"]] == [28.0, 31.0, 0.0]
    for path in ("/stats?meter_id=house", "/estimate?meter_id=house", "/projection?meter_id=house", "/aggregates"):
        assert client.get(path).status_code == 200

    # a delete written with Z finds the reading stored in naive UTC
    assert client.delete("/readings?meter_id=house&date=2023-02-01T00:00:00Z").status_code == 200
    assert len(client.get("/readings?meter_id=house").get_json()["readings"]) == 2


def dynamodb_client():
    resource = MagicMock()
    service = DynamoDBService(table_name="TestTable", resource=resource, client=MagicMock())
    app = create_app(service)
    app.config["TESTING"] = True
    return app.test_client(), resource.Table.return_value


def dynamodb_error():
    return ClientError({"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}}, "PutItem")


def test_failed_writes_answer_503():
    client, table = dynamodb_client()
    table.put_item.side_effect = dynamodb_error()
    resp = client.post("/meters", json={"id": "house", "name": "House", "type": "power"})
    assert resp.status_code == 503
    assert "error" in resp.get_json()

    table.get_item.return_value = {"Item": {"meter_id": "house", "item_key": "METER", "name": "House", "type": "power", "unit": "kWh"}}
    table.query.return_value = {"Items": []}
    assert client.post("/readings", json={"meter_id": "house", "date": "2023-01-01", "value": 1}).status_code == 503
    assert add_contract(client, "2023-01-01").status_code == 503


def test_upload_reports_unsaved_readings():
    client, table = dynamodb_client()
    table.get_item.return_value = {"Item": {"meter_id": "house", "item_key": "METER", "name": "House", "type": "power", "unit": "kWh"}}
    table.batch_writer.return_value.__enter__.side_effect = dynamodb_error()
    resp = client.post(
        "/upload",
        data={"file": (io.BytesIO(b"meter_id,date,value\nhouse,2023-01-01,1\n"), "readings.csv")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 503
    body = resp.get_json()
    assert body["processed_count"] == 1
    assert body["stored_count"] == 0


def test_dynamodb_deletes_of_missing_records_answer_404():
    client, table = dynamodb_client()
    table.query.return_value = {"Items": []}
    assert client.delete("/meters/ghost").status_code == 404

    table.delete_item.return_value = {}
    assert client.delete("/readings?meter_id=house&date=2023-01-01T00:00:00Z").status_code == 404
