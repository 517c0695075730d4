import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db
from owner_tokens import issue_owner_token


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _auth(owner_id: int = 1) -> dict:
    return {"Authorization": f"Bearer {issue_owner_token(owner_id)}"}


def _create_salary(client, owner_id: int = 1) -> dict:
    resp = client.post(
        "/api/entries",
        json={
            "entry_type": "income",
            "title": "Salary",
            "amount": "500.00",
            "start_date": "2026-01-01",
            "recurrence": {"frequency": "monthly"},
        },
        headers=_auth(owner_id),
    )
    assert resp.status_code == 201
    return resp.json()


def test_requests_without_owner_token_are_rejected(client):
    assert client.get("/api/entries").status_code == 401
    resp = client.get("/api/entries", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_create_entry_and_project_balance(client):
    created = _create_salary(client)
    assert created["amount"] == "500.00"
    assert created["frequency"] == "monthly"
    assert created["end_date"] is None

    resp = client.put(
        "/api/starting-balance",
        json={"effective_date": "2026-01-01", "amount": "1000.00"},
        headers=_auth(),
    )
    assert resp.status_code == 201
    resp = client.put(
        "/api/starting-balance",
        json={"effective_date": "2026-01-01", "amount": "1000.00"},
        headers=_auth(),
    )
    assert resp.status_code == 200

    resp = client.get("/api/projection", params={"date": "2026-03-01"}, headers=_auth())
    assert resp.status_code == 200
    body = resp.json()
    assert body["projected_balance"] == "2500.00"
    assert body["occurrence_count"] == 3
    assert body["starting_balance"]["amount"] == "1000.00"


def test_projection_without_starting_balance_is_precondition_failure(client):
    _create_salary(client)
    resp = client.get("/api/projection", params={"date": "2026-03-01"}, headers=_auth())
    assert resp.status_code == 412
    assert resp.json()["error"] == "PreconditionFailed"


def test_future_edit_returns_both_halves(client):
    created = _create_salary(client)
    resp = client.patch(
        f"/api/entries/{created['id']}",
        params={"scope": "future", "date": "2026-04-01"},
        json={"title": "Salary (raise)", "amount": "650.00"},
        headers=_auth(),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["scope"] == "future"
    assert body["original"]["end_date"] == "2026-03-31"
    assert body["new_series"]["start_date"] == "2026-04-01"
    assert body["new_series"]["amount"] == "650.00"

    listing = client.get("/api/entries", headers=_auth()).json()
    assert listing["pagination"]["total"] == 2


def test_occurrence_edit_and_listing(client):
    created = _create_salary(client)
    resp = client.patch(
        f"/api/entries/{created['id']}",
        params={"scope": "occurrence", "date": "2026-02-01"},
        json={"title": "Salary", "amount": "520.00"},
        headers=_auth(),
    )
    assert resp.status_code == 200
    assert resp.json()["scope"] == "occurrence"
    assert resp.json()["override"]["kind"] == "modified"

    resp = client.get(
        "/api/occurrences",
        params={"from_date": "2026-01-01", "to_date": "2026-03-31"},
        headers=_auth(),
    )
    amounts = [occ["amount"] for occ in resp.json()["data"]]
    assert amounts == ["500.00", "520.00", "500.00"]


def test_bad_scope_and_off_schedule_date_conflict(client):
    created = _create_salary(client)
    url = f"/api/entries/{created['id']}"

    resp = client.delete(url, params={"scope": "everything"}, headers=_auth())
    assert resp.status_code == 409
    assert "scope" in resp.json()["fields"]

    resp = client.delete(url, params={"scope": "occurrence", "date": "2026-02-02"}, headers=_auth())
    assert resp.status_code == 409
    assert resp.json()["requested_date"] == "2026-02-02"
    assert resp.json()["schedule_start"] == "2026-01-01"

    resp = client.delete(url, params={"scope": "occurrence"}, headers=_auth())
    assert resp.status_code == 400


def test_malformed_amount_is_unprocessable(client):
    resp = client.post(
        "/api/entries",
        json={
            "entry_type": "expense",
            "title": "Lunch",
            "amount": "10.123",
            "start_date": "2026-01-01",
        },
        headers=_auth(),
    )
    assert resp.status_code == 422
    assert "amount" in resp.json()["fields"]


def test_delete_entire_series_then_detail_is_not_found(client):
    created = _create_salary(client)
    url = f"/api/entries/{created['id']}"

    resp = client.delete(url, params={"scope": "entire"}, headers=_auth())
    assert resp.status_code == 200
    assert resp.json()["series_deleted"] is True

    assert client.get(url, headers=_auth()).status_code == 404


def test_other_owner_cannot_see_series(client):
    created = _create_salary(client, owner_id=1)
    resp = client.get(f"/api/entries/{created['id']}", headers=_auth(2))
    assert resp.status_code == 404


def test_starting_balance_lifecycle(client):
    assert client.get("/api/starting-balance", headers=_auth()).status_code == 404
    client.put(
        "/api/starting-balance",
        json={"effective_date": "2026-01-01", "amount": "12.50"},
        headers=_auth(),
    )
    assert client.get("/api/starting-balance", headers=_auth()).json()["amount"] == "12.50"
    assert client.delete("/api/starting-balance", headers=_auth()).status_code == 204
    assert client.delete("/api/starting-balance", headers=_auth()).status_code == 404


def test_patch_documents_each_edit_result_shape(client):
    schema = client.get("/openapi.json").json()
    patch = schema["paths"]["/api/entries/{series_id}"]["patch"]
    body = patch["responses"]["200"]["content"]["application/json"]["schema"]
    assert body["discriminator"]["propertyName"] == "scope"
    refs = sorted(option["$ref"].rsplit("/", 1)[1] for option in body["oneOf"])
    assert refs == ["EntireEditOut", "FutureEditOut", "OccurrenceEditOut"]
