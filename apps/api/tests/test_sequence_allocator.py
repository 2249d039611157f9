from __future__ import annotations

import logging
import random
import threading
import uuid
from collections.abc import Generator
from pathlib import Path

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import pitch.models  # noqa: F401
from pitch.core.database import Base
from pitch.crm.models import Contact, Job, PipelineEntry
from pitch.models.audit import AuditLog
from pitch.numbering.allocator import CounterState, SequenceAllocator, repair_composites
from pitch.numbering.errors import (
    AllocationExhaustedError,
    ImmutableNumberError,
    NumberTakenError,
    TenantNotFoundError,
)
from pitch.numbering.interceptor import NumberedWriteInterceptor
from pitch.numbering.models import SequenceCounter
from pitch.numbering.types import JobNumberScope
from pitch.tenancy.models import Tenant


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


@pytest.fixture()
def tenant_id(db_session: Session) -> uuid.UUID:
    tenant = Tenant(name="Acme Roofing", subdomain="acme")
    db_session.add(tenant)
    db_session.commit()
    return tenant.id


@pytest.fixture()
def allocator() -> SequenceAllocator:
    return SequenceAllocator(rng=random.Random(7))


@pytest.fixture()
def interceptor(allocator: SequenceAllocator) -> NumberedWriteInterceptor:
    return NumberedWriteInterceptor(allocator=allocator, max_attempts=3)


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def _create_contact(
    interceptor: NumberedWriteInterceptor,
    session: Session,
    tenant_id: uuid.UUID,
    *,
    contact_number: int | None = None,
) -> Contact:
    return interceptor.create(
        session,
        lambda: Contact(tenant_id=tenant_id, first_name="Pat", last_name="Doe", contact_number=contact_number),
        actor_user_id="user-1",
    )


def _create_entry(
    interceptor: NumberedWriteInterceptor,
    session: Session,
    tenant_id: uuid.UUID,
    contact_id: uuid.UUID | None,
) -> PipelineEntry:
    return interceptor.create(
        session,
        lambda: PipelineEntry(tenant_id=tenant_id, contact_id=contact_id),
        actor_user_id="user-1",
    )


def _create_job(
    interceptor: NumberedWriteInterceptor,
    session: Session,
    tenant_id: uuid.UUID,
    pipeline_entry_id: uuid.UUID | None,
) -> Job:
    return interceptor.create(
        session,
        lambda: Job(tenant_id=tenant_id, pipeline_entry_id=pipeline_entry_id, name="Re-roof"),
        actor_user_id="user-1",
    )


def test_contact_numbers_are_sequential_per_tenant(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    other_tenant = Tenant(name="Other Roofing")
    db_session.add(other_tenant)
    db_session.commit()

    first = _create_contact(interceptor, db_session, tenant_id)
    second = _create_contact(interceptor, db_session, tenant_id)
    elsewhere = _create_contact(interceptor, db_session, other_tenant.id)

    assert (first.contact_number, second.contact_number) == (1, 2)
    assert first.clj_formatted_number == "1-0-0"
    assert second.clj_formatted_number == "2-0-0"
    assert elsewhere.contact_number == 1


def test_allocation_respects_numbers_inserted_out_of_band(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    _create_contact(interceptor, db_session, tenant_id)
    db_session.add(Contact(tenant_id=tenant_id, first_name="Manual", contact_number=40))
    db_session.commit()

    contact = _create_contact(interceptor, db_session, tenant_id)

    assert contact.contact_number == 41


def test_counter_never_moves_backwards_when_rows_are_removed(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    _create_contact(interceptor, db_session, tenant_id)
    last = _create_contact(interceptor, db_session, tenant_id)
    db_session.delete(last)
    db_session.commit()

    contact = _create_contact(interceptor, db_session, tenant_id)

    assert contact.contact_number == 3
    counter = db_session.scalar(
        select(SequenceCounter).where(SequenceCounter.tenant_id == tenant_id, SequenceCounter.kind == "contact")
    )
    assert counter is not None and counter.value == 3


def test_contact_allocation_requires_live_tenant(
    db_session: Session,
    tenant_id: uuid.UUID,
    allocator: SequenceAllocator,
) -> None:
    with pytest.raises(TenantNotFoundError):
        allocator.allocate_contact_number(db_session, uuid.uuid4())

    tenant = db_session.get(Tenant, tenant_id)
    assert tenant is not None
    tenant.deleted_at = tenant.created_at
    db_session.commit()

    with pytest.raises(TenantNotFoundError):
        allocator.allocate_contact_number(db_session, tenant_id)


def test_lead_numbers_are_scoped_per_contact(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    first_contact = _create_contact(interceptor, db_session, tenant_id)
    second_contact = _create_contact(interceptor, db_session, tenant_id)

    first_lead = _create_entry(interceptor, db_session, tenant_id, first_contact.id)
    second_lead = _create_entry(interceptor, db_session, tenant_id, first_contact.id)
    other_lead = _create_entry(interceptor, db_session, tenant_id, second_contact.id)

    assert (first_lead.lead_number, second_lead.lead_number) == (1, 2)
    assert other_lead.lead_number == 1
    assert first_lead.contact_number == 1
    assert second_lead.clj_formatted_number == "1-2-0"
    assert other_lead.clj_formatted_number == "2-1-0"


def test_job_numbers_use_lead_scope_when_chain_is_complete(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
    allocator: SequenceAllocator,
) -> None:
    contact = _create_contact(interceptor, db_session, tenant_id)
    entry = _create_entry(interceptor, db_session, tenant_id, contact.id)

    first_job = _create_job(interceptor, db_session, tenant_id, entry.id)
    second_job = _create_job(interceptor, db_session, tenant_id, entry.id)

    assert (first_job.job_number, second_job.job_number) == (1, 2)
    assert first_job.clj_formatted_number == "1-1-1"
    assert second_job.clj_formatted_number == "1-1-2"

    allocation = allocator.allocate_job_number(db_session, tenant_id, entry)
    assert allocation.scope == JobNumberScope.LEAD
    assert allocation.number == 3


def test_job_numbers_fall_back_to_tenant_scope_for_incomplete_chain(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
    allocator: SequenceAllocator,
) -> None:
    contact = _create_contact(interceptor, db_session, tenant_id)
    entry = _create_entry(interceptor, db_session, tenant_id, contact.id)
    _create_job(interceptor, db_session, tenant_id, entry.id)
    _create_job(interceptor, db_session, tenant_id, entry.id)

    orphan_entry = _create_entry(interceptor, db_session, tenant_id, uuid.uuid4())
    assert orphan_entry.contact_number is None

    allocation = allocator.allocate_job_number(db_session, tenant_id, orphan_entry)
    db_session.rollback()
    assert allocation.scope == JobNumberScope.TENANT
    assert allocation.number == 3

    unattached = _create_job(interceptor, db_session, tenant_id, None)
    assert unattached.job_number == 3
    assert unattached.clj_formatted_number == "0-0-3"


def test_job_numbers_fall_back_to_random_without_counter_context(allocator: SequenceAllocator) -> None:
    allocation = allocator.allocate_job_number(None, None, None)  # type: ignore[arg-type]

    assert allocation.scope == JobNumberScope.RANDOM
    assert 100000 <= allocation.number <= 999999


def test_missing_contact_degrades_lead_composite(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
    caplog: pytest.LogCaptureFixture,
) -> None:
    before = _sample("numbering_missing_ancestor_total", {"kind": "lead"})

    with caplog.at_level(logging.WARNING, logger="pitch.numbering.interceptor"):
        entry = _create_entry(interceptor, db_session, tenant_id, uuid.uuid4())

    assert entry.contact_number is None
    assert entry.lead_number == 1
    assert entry.clj_formatted_number == "0-1-0"
    assert any(record.getMessage() == "numbering.missing_ancestor" for record in caplog.records)
    assert _sample("numbering_missing_ancestor_total", {"kind": "lead"}) == before + 1


def test_missing_lead_degrades_job_composite(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    job = _create_job(interceptor, db_session, tenant_id, uuid.uuid4())

    assert job.contact_number is None
    assert job.lead_number is None
    assert job.job_number == 1
    assert job.clj_formatted_number == "0-0-1"


def test_create_writes_insert_audit_in_same_transaction(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    contact = _create_contact(interceptor, db_session, tenant_id)

    rows = db_session.scalars(select(AuditLog).where(AuditLog.record_id == str(contact.id))).all()
    assert len(rows) == 1
    assert rows[0].action == "INSERT"
    assert rows[0].table_name == "contact"
    assert rows[0].new_values["contact_number"] == 1
    assert rows[0].new_values["clj_formatted_number"] == "1-0-0"
    assert rows[0].changed_by == "user-1"


def test_conflicting_counter_update_is_retried(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
    allocator: SequenceAllocator,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    for _ in range(3):
        _create_contact(interceptor, db_session, tenant_id)

    original = allocator._read_counter
    calls = {"count": 0}

    def stale_on_first_read(session: Session, tenant: uuid.UUID, kind: str, scope_key: str) -> CounterState:
        state = original(session, tenant, kind, scope_key)
        calls["count"] += 1
        if calls["count"] == 1:
            return CounterState(counter_id=state.counter_id, value=state.value - 1)
        return state

    monkeypatch.setattr(allocator, "_read_counter", stale_on_first_read)
    before = _sample("numbering_allocation_conflicts_total", {"kind": "contact"})

    contact = _create_contact(interceptor, db_session, tenant_id)

    assert contact.contact_number == 4
    assert calls["count"] == 2
    assert _sample("numbering_allocation_conflicts_total", {"kind": "contact"}) == before + 1


def test_allocation_gives_up_after_max_attempts(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
    allocator: SequenceAllocator,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _create_contact(interceptor, db_session, tenant_id)
    original = allocator._read_counter

    def always_stale(session: Session, tenant: uuid.UUID, kind: str, scope_key: str) -> CounterState:
        state = original(session, tenant, kind, scope_key)
        return CounterState(counter_id=state.counter_id, value=state.value - 1)

    monkeypatch.setattr(allocator, "_read_counter", always_stale)
    before = _sample("numbering_allocation_exhausted_total", {"kind": "contact"})

    with pytest.raises(AllocationExhaustedError) as exc_info:
        _create_contact(interceptor, db_session, tenant_id)

    assert exc_info.value.attempts == 3
    assert _sample("numbering_allocation_exhausted_total", {"kind": "contact"}) == before + 1
    assert len(db_session.scalars(select(Contact)).all()) == 1


def test_duplicate_explicit_number_is_rejected_without_retry(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    _create_contact(interceptor, db_session, tenant_id)

    conflicts_before = _sample("numbering_allocation_conflicts_total", {"kind": "contact"})

    with pytest.raises(NumberTakenError) as exc_info:
        _create_contact(interceptor, db_session, tenant_id, contact_number=1)

    assert exc_info.value.number == 1
    assert _sample("numbering_allocation_conflicts_total", {"kind": "contact"}) == conflicts_before

    assert len(db_session.scalars(select(Contact)).all()) == 1


def test_update_recomputes_composite_and_guards_contact_number(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    contact = _create_contact(interceptor, db_session, tenant_id)
    entry = _create_entry(interceptor, db_session, tenant_id, contact.id)

    updated = interceptor.update(db_session, entry, {"lead_number": 5}, actor_user_id="user-1")
    assert updated.clj_formatted_number == "1-5-0"

    with pytest.raises(ImmutableNumberError):
        interceptor.update(db_session, contact, {"contact_number": 9}, actor_user_id="user-1")

    actions = db_session.scalars(select(AuditLog.action).where(AuditLog.record_id == str(entry.id))).all()
    assert sorted(actions) == ["INSERT", "UPDATE"]


def test_repair_composites_backfills_fixed_ancestors(
    db_session: Session,
    tenant_id: uuid.UUID,
    interceptor: NumberedWriteInterceptor,
) -> None:
    contact = _create_contact(interceptor, db_session, tenant_id)
    entry = _create_entry(interceptor, db_session, tenant_id, contact.id)
    job = _create_job(interceptor, db_session, tenant_id, entry.id)

    entry.contact_number = None
    entry.clj_formatted_number = "0-1-0"
    job.clj_formatted_number = "stale"
    db_session.commit()

    repaired = repair_composites(db_session, tenant_id, actor_user_id="admin-1")

    assert repaired == 2
    db_session.refresh(entry)
    db_session.refresh(job)
    assert entry.contact_number == 1
    assert entry.clj_formatted_number == "1-1-0"
    assert job.clj_formatted_number == "1-1-1"
    repairs = db_session.scalars(select(AuditLog).where(AuditLog.action == "REPAIR")).all()
    assert {row.record_id for row in repairs} == {str(entry.id), str(job.id)}

    assert repair_composites(db_session, tenant_id) == 0


def test_concurrent_contact_allocation_yields_distinct_numbers(tmp_path: Path) -> None:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'numbering.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as session:
        tenant = Tenant(name="Concurrent Roofing")
        session.add(tenant)
        session.flush()
        session.add_all(
            [Contact(tenant_id=tenant.id, first_name=f"Seed {number}", contact_number=number) for number in (1, 2, 3)]
        )
        session.commit()
        tenant_id = tenant.id

    interceptor = NumberedWriteInterceptor(allocator=SequenceAllocator(), max_attempts=3)
    barrier = threading.Barrier(2)
    allocated: list[int] = []
    errors: list[Exception] = []
    lock = threading.Lock()

    def worker(index: int) -> None:
        with SessionLocal() as session:
            barrier.wait()
            try:
                contact = interceptor.create(
                    session,
                    lambda: Contact(tenant_id=tenant_id, first_name=f"Worker {index}"),
                    actor_user_id=f"worker-{index}",
                )
            except Exception as exc:
                with lock:
                    errors.append(exc)
                return
            with lock:
                allocated.append(contact.contact_number)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    assert sorted(allocated) == [4, 5]

    with SessionLocal() as session:
        numbers = session.scalars(select(Contact.contact_number).where(Contact.tenant_id == tenant_id)).all()
    assert sorted(numbers) == [1, 2, 3, 4, 5]

    Base.metadata.drop_all(bind=engine)
    engine.dispose()
