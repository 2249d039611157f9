from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import pitch.models  # noqa: F401
from pitch.context import bind_correlation_id, get_correlation_id
from pitch.core import celery_app as tasks
from pitch.core.database import Base
from pitch.crm.models import Contact, PipelineEntry
from pitch.logging import JsonLogFormatter
from pitch.models.audit import AuditLog
from pitch.tenancy.models import Tenant


@pytest.fixture()
def session_factory(monkeypatch: pytest.MonkeyPatch) -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(tasks, "SessionLocal", SessionLocal)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def seeded(session_factory: sessionmaker[Session]) -> None:
    session = session_factory()
    tenant = Tenant(name="Summit Roofing")
    session.add(tenant)
    session.flush()
    session.add_all(
        [
            Contact(tenant_id=tenant.id, contact_number=9, clj_formatted_number="9"),
            PipelineEntry(
                tenant_id=tenant.id,
                status="Appointment Set",
                lead_number=1,
                clj_formatted_number="0-1-0",
            ),
        ]
    )
    session.commit()
    session.close()


def test_normalize_task_binds_given_correlation_id(session_factory: sessionmaker[Session], seeded: None) -> None:
    repaired = tasks.normalize_pipeline_statuses_task(correlation_id="nightly-1")

    assert repaired == 1
    assert get_correlation_id() is None
    session = session_factory()
    audit_row = session.scalar(select(AuditLog).where(AuditLog.action == "NORMALIZE"))
    assert audit_row is not None
    assert audit_row.correlation_id == "nightly-1"
    assert audit_row.changed_by == tasks.SYSTEM_ACTOR
    session.close()


def test_repair_task_generates_correlation_id_when_missing(
    session_factory: sessionmaker[Session],
    seeded: None,
) -> None:
    assert tasks.repair_composites_task() == 1

    session = session_factory()
    audit_row = session.scalar(select(AuditLog).where(AuditLog.action == "REPAIR"))
    assert audit_row is not None
    assert audit_row.correlation_id
    assert session.scalar(select(Contact.clj_formatted_number)) == "9-0-0"
    session.close()


def test_bind_correlation_id_restores_previous_value() -> None:
    with bind_correlation_id("outer") as outer:
        with bind_correlation_id() as inner:
            assert get_correlation_id() == inner
            assert inner != outer
        assert get_correlation_id() == "outer"
    assert get_correlation_id() is None


def test_json_formatter_promotes_context_and_keeps_known_fields() -> None:
    record = logging.makeLogRecord(
        {
            "name": "pitch.numbering.allocator",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": "numbering.allocated",
            "correlation_id": "corr-9",
            "tenant_id": "tenant-1",
            "kind": "job",
            "number": 4,
            "scope": None,
            "password": "hunter2",
            "error": "x" * 800,
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "numbering.allocated"
    assert payload["correlation_id"] == "corr-9"
    assert payload["tenant_id"] == "tenant-1"
    assert payload["user_id"] is None
    assert payload["fields"]["kind"] == "job"
    assert payload["fields"]["number"] == 4
    assert "scope" not in payload["fields"]
    assert "password" not in payload["fields"]
    assert len(payload["fields"]["error"]) == 500
