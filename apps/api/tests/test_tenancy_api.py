from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pitch.core.auth import AuthUser, get_current_user
from pitch.core.config import get_settings
from pitch.core.database import Base, get_db
from pitch.crm.models import Contact, PipelineEntry
from pitch.main import app
from pitch.models.audit import AuditLog
from pitch.tenancy.models import Profile, Tenant, UserRole


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def tenancy(db_session: Session) -> dict[str, uuid.UUID]:
    home = Tenant(name="Summit Roofing")
    branch = Tenant(name="Summit Roofing East")
    outsider = Tenant(name="Coastal Roofing")
    db_session.add_all([home, branch, outsider])
    db_session.flush()

    db_session.add_all(
        [
            Profile(id="roamer", tenant_id=home.id, role="rep"),
            UserRole(user_id="roamer", tenant_id=home.id, role="rep"),
            UserRole(user_id="roamer", tenant_id=branch.id, role="sales_manager"),
            Profile(id="admin-a", tenant_id=home.id, role="admin"),
            UserRole(user_id="admin-a", tenant_id=home.id, role="admin"),
            Profile(id="root", tenant_id=home.id, role="master"),
        ]
    )
    db_session.commit()
    return {"home": home.id, "branch": branch.id, "outsider": outsider.id}


@pytest.fixture()
def client(db_session: Session, tenancy: dict[str, uuid.UUID]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthUser:
        return AuthUser(sub=request.headers.get("x-test-user"))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _as(user_id: str) -> dict[str, str]:
    return {"x-test-user": user_id}


def test_access_summary_reports_memberships_and_flags(client: TestClient, tenancy: dict[str, uuid.UUID]) -> None:
    response = client.get("/api/me/access", headers=_as("roamer"))

    assert response.status_code == 200
    body = response.json()
    assert body["tenant_id"] == str(tenancy["home"])
    assert body["home_tenant_id"] == str(tenancy["home"])
    assert body["role"] == "rep"
    assert body["is_manager"] is False
    assert body["is_platform_admin"] is False
    assert {item["tenant_id"]: item["role"] for item in body["memberships"]} == {
        str(tenancy["home"]): "rep",
        str(tenancy["branch"]): "sales_manager",
    }


def test_switching_active_tenant_changes_role_and_is_audited(
    client: TestClient,
    db_session: Session,
    tenancy: dict[str, uuid.UUID],
) -> None:
    switched = client.post(
        "/api/me/active-tenant",
        json={"tenant_id": str(tenancy["branch"])},
        headers={**_as("roamer"), "X-Correlation-Id": "switch-1"},
    )
    assert switched.status_code == 200
    assert switched.json()["tenant_id"] == str(tenancy["branch"])
    assert switched.json()["role"] == "sales_manager"
    assert switched.json()["is_manager"] is True

    audit_row = db_session.scalar(select(AuditLog).where(AuditLog.table_name == "profile"))
    assert audit_row is not None
    assert audit_row.record_id == "roamer"
    assert audit_row.new_values["active_tenant_id"] == str(tenancy["branch"])
    assert audit_row.correlation_id == "switch-1"

    cleared = client.post("/api/me/active-tenant", json={"tenant_id": None}, headers=_as("roamer"))
    assert cleared.status_code == 200
    assert cleared.json()["tenant_id"] == str(tenancy["home"])
    assert cleared.json()["role"] == "rep"


def test_switching_to_tenant_without_membership_is_forbidden(
    client: TestClient,
    db_session: Session,
    tenancy: dict[str, uuid.UUID],
) -> None:
    response = client.post(
        "/api/me/active-tenant",
        json={"tenant_id": str(tenancy["outsider"])},
        headers=_as("roamer"),
    )

    assert response.status_code == 403
    assert response.json()["code"] == "tenancy_switch_failed"
    profile = db_session.get(Profile, "roamer")
    assert profile is not None and profile.active_tenant_id is None


def test_normalize_statuses_requires_org_admin_and_stays_in_tenant(
    client: TestClient,
    db_session: Session,
    tenancy: dict[str, uuid.UUID],
) -> None:
    db_session.add_all(
        [
            PipelineEntry(tenant_id=tenancy["home"], status="New Lead", lead_number=1),
            PipelineEntry(tenant_id=tenancy["outsider"], status="New Lead", lead_number=1),
        ]
    )
    db_session.commit()

    denied = client.post("/api/admin/pipeline-entries/normalize-statuses", json={}, headers=_as("roamer"))
    assert denied.status_code == 403
    assert denied.json()["code"] == "admin_normalize_statuses_failed"

    invalid = client.post(
        "/api/admin/pipeline-entries/normalize-statuses",
        json={"default_status": "pending"},
        headers=_as("admin-a"),
    )
    assert invalid.status_code == 422

    response = client.post(
        "/api/admin/pipeline-entries/normalize-statuses",
        json={"default_status": "lost"},
        headers=_as("admin-a"),
    )
    assert response.status_code == 200
    assert response.json()["repaired"] == 1

    statuses = {row.tenant_id: row.status for row in db_session.scalars(select(PipelineEntry)).all()}
    assert statuses[tenancy["home"]] == "lost"
    assert statuses[tenancy["outsider"]] == "New Lead"

    platform = client.post("/api/admin/pipeline-entries/normalize-statuses", json={}, headers=_as("root"))
    assert platform.status_code == 200
    assert platform.json()["repaired"] == 1


def test_repair_composites_endpoint(
    client: TestClient,
    db_session: Session,
    tenancy: dict[str, uuid.UUID],
) -> None:
    contact = Contact(tenant_id=tenancy["home"], contact_number=3, clj_formatted_number="3")
    db_session.add(contact)
    db_session.commit()

    denied = client.post("/api/admin/numbering/repair-composites", headers=_as("roamer"))
    assert denied.status_code == 403

    response = client.post("/api/admin/numbering/repair-composites", headers=_as("admin-a"))
    assert response.status_code == 200
    assert response.json()["repaired"] == 1

    db_session.refresh(contact)
    assert contact.clj_formatted_number == "3-0-0"


def test_metrics_endpoint_requires_org_admin(client: TestClient) -> None:
    client.post("/api/crm/contacts", json={"first_name": "Ari", "last_name": "Cole"}, headers=_as("admin-a"))

    assert client.get("/metrics", headers=_as("roamer")).status_code == 403

    metrics = client.get("/metrics", headers=_as("admin-a"))
    assert metrics.status_code == 200
    body = metrics.text
    assert "http_requests_total" in body
    assert "numbering_allocations_total" in body
    assert 'path="/api/crm/contacts"' in body


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    assert client.get("/metrics", headers=_as("admin-a")).status_code == 404
