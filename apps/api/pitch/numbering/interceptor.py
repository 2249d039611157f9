from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pitch import audit
from pitch.core.config import get_settings
from pitch.crm.models import Contact, Job, PipelineEntry
from pitch.metrics import observe_allocation_conflict, observe_allocation_exhausted, observe_missing_ancestor
from pitch.numbering.allocator import SequenceAllocator, sequence_allocator
from pitch.numbering.errors import (
    AllocationConflictError,
    AllocationExhaustedError,
    ImmutableNumberError,
    NumberTakenError,
)
from pitch.numbering.types import NumberKind, format_composite


logger = logging.getLogger("pitch.numbering.interceptor")
tracer = trace.get_tracer("pitch.numbering")

EntityT = TypeVar("EntityT", Contact, PipelineEntry, Job)

NUMBER_FIELDS = ("contact_number", "lead_number", "job_number")

TABLE_NAMES: dict[type, str] = {
    Contact: "contact",
    PipelineEntry: "pipeline_entry",
    Job: "job",
}

OWN_NUMBER_FIELD: dict[NumberKind, str] = {
    NumberKind.CONTACT: "contact_number",
    NumberKind.LEAD: "lead_number",
    NumberKind.JOB: "job_number",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def kind_for(entity: Any) -> NumberKind:
    if isinstance(entity, Contact):
        return NumberKind.CONTACT
    if isinstance(entity, PipelineEntry):
        return NumberKind.LEAD
    if isinstance(entity, Job):
        return NumberKind.JOB
    raise TypeError(f"{type(entity).__name__} is not a numbered entity")


def refresh_composite(entity: Any) -> str:
    composite = format_composite(
        getattr(entity, "contact_number", None),
        getattr(entity, "lead_number", None),
        getattr(entity, "job_number", None),
    )
    entity.clj_formatted_number = composite
    return composite


class NumberedWriteInterceptor:
    """Wraps writes to numbered entities.

    Number allocation, composite refresh, the row write and its audit entry
    share one transaction. ``create`` owns that transaction: it commits on
    success and rolls back before every retry.
    """

    def __init__(self, allocator: SequenceAllocator | None = None, max_attempts: int | None = None) -> None:
        self.allocator = allocator or sequence_allocator
        self.max_attempts = max_attempts or get_settings().numbering_max_attempts

    def create(
        self,
        session: Session,
        build: Callable[[], EntityT],
        *,
        actor_user_id: str | None,
        correlation_id: str | None = None,
    ) -> EntityT:
        kind: NumberKind | None = None
        for attempt in range(1, self.max_attempts + 1):
            entity = build()
            kind = kind_for(entity)
            explicit_number = getattr(entity, OWN_NUMBER_FIELD[kind])
            with tracer.start_as_current_span("numbering.write") as span:
                span.set_attribute("numbering.kind", kind.value)
                span.set_attribute("numbering.attempt", attempt)
                try:
                    self.assign_numbers(session, entity)
                    session.add(entity)
                    session.flush()
                    audit.record(
                        session,
                        tenant_id=entity.tenant_id,
                        table_name=TABLE_NAMES[type(entity)],
                        record_id=str(entity.id),
                        action="INSERT",
                        before=None,
                        after=audit.snapshot(entity),
                        actor_user_id=actor_user_id,
                        correlation_id=correlation_id,
                    )
                    session.commit()
                except IntegrityError as exc:
                    if explicit_number is None:
                        self._retry_conflict(session, span, exc, entity, kind, attempt)
                        continue
                    session.rollback()
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, "number taken"))
                    raise NumberTakenError(kind.value, explicit_number) from exc
                except AllocationConflictError as exc:
                    self._retry_conflict(session, span, exc, entity, kind, attempt)
                    continue

            session.refresh(entity)
            return entity

        kind_value = kind.value if kind is not None else "unknown"
        observe_allocation_exhausted(kind_value)
        logger.error(
            "numbering.allocation_exhausted",
            extra={"kind": kind_value, "attempt": self.max_attempts},
        )
        raise AllocationExhaustedError(kind_value, self.max_attempts)

    @staticmethod
    def _retry_conflict(
        session: Session,
        span: Any,
        exc: Exception,
        entity: Any,
        kind: NumberKind,
        attempt: int,
    ) -> None:
        session.rollback()
        span.record_exception(exc)
        span.set_status(Status(StatusCode.ERROR, "allocation conflict"))
        observe_allocation_conflict(kind.value)
        logger.warning(
            "numbering.allocation_conflict",
            extra={
                "kind": kind.value,
                "attempt": attempt,
                "tenant_id": str(entity.tenant_id) if entity.tenant_id else None,
                "error": str(exc),
            },
        )

    def update(
        self,
        session: Session,
        entity: EntityT,
        changes: dict[str, Any],
        *,
        actor_user_id: str | None,
        correlation_id: str | None = None,
    ) -> EntityT:
        before = audit.snapshot(entity)

        if "contact_number" in changes and entity.contact_number is not None:
            if changes["contact_number"] != entity.contact_number:
                raise ImmutableNumberError("contact_number")

        for field_name, value in changes.items():
            setattr(entity, field_name, value)

        if entity.clj_formatted_number is None or any(field_name in NUMBER_FIELDS for field_name in changes):
            refresh_composite(entity)

        try:
            session.flush()
            audit.record(
                session,
                tenant_id=entity.tenant_id,
                table_name=TABLE_NAMES[type(entity)],
                record_id=str(entity.id),
                action="UPDATE",
                before=before,
                after=audit.snapshot(entity),
                actor_user_id=actor_user_id,
                correlation_id=correlation_id,
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            raise

        session.refresh(entity)
        return entity

    def delete(
        self,
        session: Session,
        entity: EntityT,
        *,
        actor_user_id: str | None,
        correlation_id: str | None = None,
    ) -> None:
        """Soft delete. Numbers stay reserved so they are never reissued."""

        before = audit.snapshot(entity)
        entity.deleted_at = utcnow()
        session.flush()
        audit.record(
            session,
            tenant_id=entity.tenant_id,
            table_name=TABLE_NAMES[type(entity)],
            record_id=str(entity.id),
            action="DELETE",
            before=before,
            after=None,
            actor_user_id=actor_user_id,
            correlation_id=correlation_id,
        )
        session.commit()

    def assign_numbers(self, session: Session, entity: Any) -> None:
        if isinstance(entity, Contact):
            self._assign_contact(session, entity)
        elif isinstance(entity, PipelineEntry):
            self._assign_lead(session, entity)
        elif isinstance(entity, Job):
            self._assign_job(session, entity)
        refresh_composite(entity)

    def _assign_contact(self, session: Session, contact: Contact) -> None:
        if contact.contact_number is None:
            contact.contact_number = self.allocator.allocate_contact_number(session, contact.tenant_id)

    def _assign_lead(self, session: Session, entry: PipelineEntry) -> None:
        contact = self._resolve_ancestor(session, Contact, entry.contact_id, entry.tenant_id)
        if contact is None:
            self._warn_missing_ancestor(NumberKind.LEAD, entry.tenant_id, entry.contact_id)
        elif entry.contact_number is None:
            entry.contact_number = contact.contact_number

        if entry.lead_number is None:
            entry.lead_number = self.allocator.allocate_lead_number(session, entry.tenant_id, entry.contact_id)

    def _assign_job(self, session: Session, job: Job) -> None:
        entry = self._resolve_ancestor(session, PipelineEntry, job.pipeline_entry_id, job.tenant_id)
        if entry is None:
            self._warn_missing_ancestor(NumberKind.JOB, job.tenant_id, job.pipeline_entry_id)
        else:
            if job.contact_number is None:
                job.contact_number = entry.contact_number
            if job.lead_number is None:
                job.lead_number = entry.lead_number

        if job.job_number is None:
            allocation = self.allocator.allocate_job_number(session, job.tenant_id, entry)
            job.job_number = allocation.number

    @staticmethod
    def _resolve_ancestor(
        session: Session,
        model: type[Contact] | type[PipelineEntry],
        ancestor_id: uuid.UUID | None,
        tenant_id: uuid.UUID | None,
    ) -> Any | None:
        if ancestor_id is None:
            return None
        return session.scalar(
            select(model).where(
                model.id == ancestor_id,
                model.tenant_id == tenant_id,
                model.deleted_at.is_(None),
            )
        )

    @staticmethod
    def _warn_missing_ancestor(kind: NumberKind, tenant_id: uuid.UUID | None, ancestor_id: uuid.UUID | None) -> None:
        observe_missing_ancestor(kind.value)
        logger.warning(
            "numbering.missing_ancestor",
            extra={
                "kind": kind.value,
                "tenant_id": str(tenant_id) if tenant_id else None,
                "entity_id": str(ancestor_id) if ancestor_id else None,
            },
        )


numbered_write_interceptor = NumberedWriteInterceptor()
