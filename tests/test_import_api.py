"""
Endpoint tests for the /import router, using SQLite and in-memory storage.
"""
from datetime import datetime, timedelta, timezone

from crm_import.domain.imports.catalog import CUSTOMER_FIELDS
from crm_import.domain.imports.store import CustomerRecord

CSV_CONTENT = b"Name,Stage,Deal Value USD\nAcme,Qualified,\"50,000\"\nAcme,Lead,\nBeta,Negotiation,1200\n"


def _upload(client, content=CSV_CONTENT, name="customers.csv"):
    response = client.post("/import/upload", files={"file": (name, content, "text/csv")})
    assert response.status_code == 200, response.text
    return response.json()


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Customer Import API", "version": "1.0.0"}
    assert client.get("/health").json()["status"] == "healthy"


def test_template_download(client):
    response = client.get("/import/template")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="customer-import-template.csv"' in response.headers["content-disposition"]
    header, example = response.text.strip().split("\n")
    assert header.split(",") == [field.key for field in CUSTOMER_FIELDS]
    assert example.startswith("Acme Corporation,")


def test_upload_stores_file_and_opens_session(client, file_storage, session_store):
    body = _upload(client)

    assert body["success"] is True
    assert body["file_path"].startswith("imports/")
    assert body["file_path"].endswith("_customers.csv")
    assert file_storage.objects[body["file_path"]] == CSV_CONTENT

    session = session_store.get(body["session_id"])
    assert session.status.value == "uploaded"
    assert session.file_size == len(CSV_CONTENT)
    assert session.file_type == "csv"


def test_upload_rejects_unsupported_type(client, file_storage):
    response = client.post("/import/upload", files={"file": ("notes.txt", b"hello", "text/plain")})

    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["detail"]
    assert file_storage.objects == {}


def test_upload_rejects_oversized_file(client, file_storage, monkeypatch):
    monkeypatch.setattr("crm_import.api.routers.imports.MAX_UPLOAD_BYTES", 16)

    response = client.post("/import/upload", files={"file": ("customers.csv", CSV_CONTENT, "text/csv")})

    assert response.status_code == 413
    assert "too large" in response.json()["detail"]
    assert file_storage.objects == {}


def test_check_duplicates(client, customer_store):
    acme_id = customer_store.insert(CustomerRecord(name_en="Acme"))

    response = client.post(
        "/import/check-duplicates",
        json={
            "rows": [{"Company": "acme"}, {"Company": "Beta"}, {"Company": " beta "}, {"Company": None}],
            "mappings": {"Company": "name_en"},
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["duplicate_row_indices"] == [0]
    assert data["duplicates"][0]["imported_name"] == "acme"
    assert data["duplicates"][0]["existing_customer"] == {"id": acme_id, "name_en": "Acme"}
    assert data["intra_file_row_indices"] == [1, 2]
    assert data["summary"] == {"total": 4, "with_names": 3, "duplicates": 1, "unique": 2}


def test_check_duplicates_requires_name_mapping(client):
    response = client.post(
        "/import/check-duplicates",
        json={"rows": [{"Company": "Acme"}], "mappings": {"Company": "name_jp"}},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "name_en field must be mapped to check duplicates."


def test_dry_run_then_execute(client, customer_store, session_store):
    session_id = _upload(client)["session_id"]
    mappings = {"Name": "name_en", "Stage": "deal_stage", "Deal Value USD": "deal_value_usd"}

    dry = client.post(
        "/import/execute",
        json={"session_id": session_id, "duplicate_handling": "skip", "dry_run": True, "mappings": mappings},
    )
    assert dry.status_code == 200, dry.text
    assert dry.json() == {"created": 2, "updated": 0, "skipped": 1, "errors": []}
    assert customer_store.count() == 0
    assert session_store.get(session_id).status.value == "previewed"

    real = client.post(
        "/import/execute",
        json={"session_id": session_id, "duplicate_handling": "skip", "mappings": mappings},
    )
    assert real.json() == dry.json()
    assert customer_store.count() == 2
    acme = customer_store.get(customer_store.find_by_identifier("acme"))
    assert acme["deal_value_usd"] == 50000.0
    assert acme["deal_probability"] == 25

    again = client.post("/import/execute", json={"session_id": session_id})
    assert again.status_code == 409


def test_execute_uses_auto_detected_mapping_when_none_given(client, customer_store):
    session_id = _upload(client)["session_id"]

    response = client.post("/import/execute", json={"session_id": session_id, "duplicate_handling": "create"})

    assert response.status_code == 200
    assert response.json()["created"] == 3
    assert customer_store.count() == 3


def test_execute_unknown_session(client):
    response = client.post("/import/execute", json={"session_id": "missing"})

    assert response.status_code == 404


def test_execute_expired_session(client, session_store, customer_store):
    old = session_store.create(
        file_name="customers.csv",
        source_file_ref="imports/1_customers.csv",
        now=datetime.now(timezone.utc) - timedelta(days=30),
    )

    response = client.post("/import/execute", json={"session_id": old.id})

    assert response.status_code == 410
    assert customer_store.count() == 0


def test_execute_rejects_mapping_without_identifier(client):
    session_id = _upload(client)["session_id"]

    response = client.post(
        "/import/execute",
        json={"session_id": session_id, "mappings": {"Name": "name_jp"}},
    )

    assert response.status_code == 400


def test_execute_reports_unparseable_file(client):
    session_id = _upload(client, content=b"\n\n", name="empty.csv")["session_id"]

    response = client.post("/import/execute", json={"session_id": session_id})

    assert response.status_code == 400
    assert "empty" in response.json()["detail"]


def test_session_status_and_error_report(client):
    content = b"Company,Stage\nAcme,Lead\n,Qualified\n"
    session_id = _upload(client, content=content)["session_id"]
    client.post("/import/execute", json={"session_id": session_id, "mappings": {"Company": "name_en"}})

    status = client.get(f"/import/sessions/{session_id}")
    assert status.status_code == 200
    body = status.json()
    assert body["status"] == "completed"
    assert body["total_rows"] == 2
    assert body["result_summary"]["created"] == 1

    report = client.get(f"/import/sessions/{session_id}/errors.csv")
    assert report.status_code == 200
    assert f"import-errors-{session_id}.csv" in report.headers["content-disposition"]
    lines = report.text.strip().split("\n")
    assert lines == ["row,name_en,message", "2,,English Name is required"]


def test_session_status_unknown(client):
    assert client.get("/import/sessions/missing").status_code == 404


def test_preview_session(client, customer_store):
    customer_store.insert(CustomerRecord(name_en="Beta"))
    session_id = _upload(client)["session_id"]

    response = client.post(f"/import/sessions/{session_id}/preview")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["headers"] == ["Name", "Stage", "Deal Value USD"]
    assert data["suggested_mapping"]["Name"] == "name_en"
    assert data["suggested_mapping"]["Stage"] == "deal_stage"
    assert data["total_rows"] == 3
    assert data["validation"]["error_count"] == 0
    assert data["duplicates"]["duplicate_row_indices"] == [2]
    assert data["duplicates"]["intra_file_row_indices"] == [0, 1]
