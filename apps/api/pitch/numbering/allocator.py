from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pitch import audit
from pitch.core.config import get_settings
from pitch.crm.models import Contact, Job, PipelineEntry
from pitch.metrics import observe_allocation
from pitch.numbering.errors import AllocationConflictError, TenantNotFoundError
from pitch.numbering.models import SequenceCounter
from pitch.numbering.types import JobNumberScope, NumberKind, format_composite, parse_number
from pitch.tenancy.models import Tenant


logger = logging.getLogger("pitch.numbering.allocator")
tracer = trace.get_tracer("pitch.numbering")

TENANT_SCOPE_KEY = "tenant"
UNATTACHED_SCOPE_KEY = "unattached"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class JobNumberAllocation:
    number: int
    scope: JobNumberScope


@dataclass(frozen=True, slots=True)
class CounterState:
    counter_id: uuid.UUID | None
    value: int


class SequenceAllocator:
    """Allocates ``1 + max(observed, counter)`` and advances the scope's counter.

    The counter only moves by compare-and-set. A writer that loses the race
    gets ``AllocationConflictError`` and is expected to retry in a fresh
    transaction.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def allocate_contact_number(self, session: Session, tenant_id: uuid.UUID) -> int:
        self._require_tenant(session, tenant_id)
        observed = session.scalar(select(func.max(Contact.contact_number)).where(Contact.tenant_id == tenant_id))
        return self._allocate(session, tenant_id, NumberKind.CONTACT, TENANT_SCOPE_KEY, observed, scope="tenant")

    def allocate_lead_number(self, session: Session, tenant_id: uuid.UUID, contact_id: uuid.UUID | None) -> int:
        query = select(func.max(PipelineEntry.lead_number)).where(PipelineEntry.tenant_id == tenant_id)
        if contact_id is None:
            query = query.where(PipelineEntry.contact_id.is_(None))
            scope_key = UNATTACHED_SCOPE_KEY
        else:
            query = query.where(PipelineEntry.contact_id == contact_id)
            scope_key = str(contact_id)
        return self._allocate(session, tenant_id, NumberKind.LEAD, scope_key, session.scalar(query), scope="contact")

    def allocate_job_number(
        self,
        session: Session,
        tenant_id: uuid.UUID | None,
        pipeline_entry: PipelineEntry | None,
    ) -> JobNumberAllocation:
        if tenant_id is None:
            settings = get_settings()
            number = self._rng.randint(settings.job_number_random_min, settings.job_number_random_max)
            observe_allocation(NumberKind.JOB.value, JobNumberScope.RANDOM.value, 0.0)
            logger.warning(
                "numbering.job_random_fallback",
                extra={"kind": NumberKind.JOB.value, "scope": JobNumberScope.RANDOM.value, "number": number},
            )
            return JobNumberAllocation(number=number, scope=JobNumberScope.RANDOM)

        if pipeline_entry is not None and pipeline_entry.contact_number and pipeline_entry.lead_number:
            observed = session.scalar(
                select(func.max(Job.job_number)).where(Job.pipeline_entry_id == pipeline_entry.id)
            )
            number = self._allocate(
                session,
                tenant_id,
                NumberKind.JOB,
                str(pipeline_entry.id),
                observed,
                scope=JobNumberScope.LEAD.value,
            )
            return JobNumberAllocation(number=number, scope=JobNumberScope.LEAD)

        observed = session.scalar(select(func.max(Job.job_number)).where(Job.tenant_id == tenant_id))
        number = self._allocate(
            session,
            tenant_id,
            NumberKind.JOB,
            TENANT_SCOPE_KEY,
            observed,
            scope=JobNumberScope.TENANT.value,
        )
        return JobNumberAllocation(number=number, scope=JobNumberScope.TENANT)

    def _require_tenant(self, session: Session, tenant_id: uuid.UUID) -> None:
        live = session.scalar(select(Tenant.id).where(Tenant.id == tenant_id, Tenant.deleted_at.is_(None)))
        if live is None:
            raise TenantNotFoundError(tenant_id)

    def _read_counter(self, session: Session, tenant_id: uuid.UUID, kind: str, scope_key: str) -> CounterState:
        row = session.execute(
            select(SequenceCounter.id, SequenceCounter.value).where(
                SequenceCounter.tenant_id == tenant_id,
                SequenceCounter.kind == kind,
                SequenceCounter.scope_key == scope_key,
            )
        ).first()
        if row is None:
            return CounterState(counter_id=None, value=0)
        return CounterState(counter_id=row.id, value=row.value)

    def _allocate(
        self,
        session: Session,
        tenant_id: uuid.UUID,
        kind: NumberKind,
        scope_key: str,
        observed: Any,
        *,
        scope: str,
    ) -> int:
        started = time.perf_counter()
        with tracer.start_as_current_span("numbering.allocate") as span:
            span.set_attribute("numbering.kind", kind.value)
            span.set_attribute("numbering.scope", scope)
            span.set_attribute("tenant_id", str(tenant_id))

            counter = self._read_counter(session, tenant_id, kind.value, scope_key)
            number = max(parse_number(observed), counter.value) + 1
            self._advance(session, tenant_id, kind, scope_key, counter, number)

            span.set_attribute("numbering.number", number)

        observe_allocation(kind.value, scope, time.perf_counter() - started)
        logger.info(
            "numbering.allocated",
            extra={
                "tenant_id": str(tenant_id),
                "kind": kind.value,
                "scope": scope,
                "scope_key": scope_key,
                "number": number,
            },
        )
        return number

    def _advance(
        self,
        session: Session,
        tenant_id: uuid.UUID,
        kind: NumberKind,
        scope_key: str,
        counter: CounterState,
        number: int,
    ) -> None:
        if counter.counter_id is None:
            session.add(SequenceCounter(tenant_id=tenant_id, kind=kind.value, scope_key=scope_key, value=number))
            try:
                session.flush()
            except IntegrityError as exc:
                raise AllocationConflictError(kind.value, scope_key) from exc
            return

        result = session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.id == counter.counter_id, SequenceCounter.value == counter.value)
            .values(value=number, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AllocationConflictError(kind.value, scope_key)


def _repair_entity(entity: Any, contact_number: Any, lead_number: Any) -> bool:
    changed = False
    if hasattr(entity, "contact_number") and contact_number is not None and entity.contact_number != contact_number:
        entity.contact_number = contact_number
        changed = True
    if hasattr(entity, "lead_number") and lead_number is not None and entity.lead_number != lead_number:
        entity.lead_number = lead_number
        changed = True

    composite = format_composite(
        getattr(entity, "contact_number", None),
        getattr(entity, "lead_number", None),
        getattr(entity, "job_number", None),
    )
    if entity.clj_formatted_number != composite:
        entity.clj_formatted_number = composite
        changed = True
    return changed


def repair_composites(
    session: Session,
    tenant_id: uuid.UUID | None = None,
    *,
    actor_user_id: str | None = None,
) -> int:
    """Re-inherit ancestor numbers and recompute drifted composite labels.

    Each repaired row gets an audit entry. Returns the number of rows changed.
    """

    repaired = 0

    def scoped(model: Any) -> Any:
        query = select(model).where(model.deleted_at.is_(None))
        if tenant_id is not None:
            query = query.where(model.tenant_id == tenant_id)
        return query.order_by(model.created_at.asc())

    batches: list[tuple[str, list[Any]]] = [
        ("contact", list(session.scalars(scoped(Contact)).all())),
        ("pipeline_entry", list(session.scalars(scoped(PipelineEntry)).all())),
        ("job", list(session.scalars(scoped(Job)).all())),
    ]

    for table_name, entities in batches:
        for entity in entities:
            before = audit.snapshot(entity)
            contact_number: Any = None
            lead_number: Any = None
            if isinstance(entity, PipelineEntry) and entity.contact is not None:
                contact_number = entity.contact.contact_number
            if isinstance(entity, Job) and entity.pipeline_entry is not None:
                contact_number = entity.pipeline_entry.contact_number
                lead_number = entity.pipeline_entry.lead_number

            if not _repair_entity(entity, contact_number, lead_number):
                continue

            repaired += 1
            audit.record(
                session,
                tenant_id=entity.tenant_id,
                table_name=table_name,
                record_id=str(entity.id),
                action="REPAIR",
                before=before,
                after=audit.snapshot(entity),
                actor_user_id=actor_user_id,
            )
            logger.info(
                "numbering.composite_repaired",
                extra={"tenant_id": str(entity.tenant_id), "entity_type": table_name, "entity_id": str(entity.id)},
            )

    session.commit()
    return repaired


sequence_allocator = SequenceAllocator()
