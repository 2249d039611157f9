from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from pitch import events
from pitch.crm.models import Contact, Job, PipelineEntry
from pitch.crm.repositories import contact_repository, job_repository, pipeline_entry_repository
from pitch.crm.schemas import (
    ContactCreate,
    ContactRead,
    JobCreate,
    JobRead,
    PipelineEntryCreate,
    PipelineEntryRead,
    PipelineEntryStatusUpdate,
)
from pitch.crm.status import is_valid_status, observe_entry_status, observe_entry_statuses
from pitch.numbering.errors import (
    AllocationExhaustedError,
    ImmutableNumberError,
    NumberTakenError,
    TenantNotFoundError,
)
from pitch.numbering.interceptor import NumberedWriteInterceptor, numbered_write_interceptor
from pitch.platform.security.context import AuthContext
from pitch.platform.security.errors import AuthorizationError
from pitch.platform.security.rls import Action


logger = logging.getLogger("pitch.crm.service")


def _require_tenant(ctx: AuthContext) -> uuid.UUID:
    if ctx.tenant_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No active tenant for principal")
    return ctx.tenant_id


def _validate_write(repository: Any, row: Any, ctx: AuthContext, action: Action) -> None:
    try:
        repository.validate_write_security(row, ctx, action=action)
    except AuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


def _create_numbered(
    interceptor: NumberedWriteInterceptor,
    session: Session,
    ctx: AuthContext,
    build: Any,
) -> Any:
    try:
        return interceptor.create(session, build, actor_user_id=ctx.user_id, correlation_id=ctx.correlation_id)
    except (AllocationExhaustedError, NumberTakenError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except TenantNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _validate_status(value: str) -> str:
    if not is_valid_status(value):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"'{value}' is not a recognized pipeline status",
        )
    return value


class ContactService:
    entity_type = "crm.contact"

    def __init__(self, interceptor: NumberedWriteInterceptor | None = None) -> None:
        self.interceptor = interceptor or numbered_write_interceptor

    def create_contact(self, session: Session, ctx: AuthContext, dto: ContactCreate) -> ContactRead:
        tenant_id = _require_tenant(ctx)
        candidate = {
            "tenant_id": tenant_id,
            "location_id": dto.location_id,
            "assigned_to": dto.assigned_to,
            "created_by": ctx.user_id,
        }
        _validate_write(contact_repository, candidate, ctx, Action.INSERT)

        def build() -> Contact:
            return Contact(
                tenant_id=tenant_id,
                location_id=dto.location_id,
                contact_number=dto.contact_number,
                type=dto.type,
                first_name=dto.first_name.strip(),
                last_name=dto.last_name.strip(),
                company_name=dto.company_name,
                email=str(dto.email) if dto.email is not None else None,
                phone=dto.phone,
                address_street=dto.address_street,
                address_city=dto.address_city,
                address_state=dto.address_state,
                address_zip=dto.address_zip,
                assigned_to=dto.assigned_to,
                created_by=ctx.user_id,
            )

        contact = _create_numbered(self.interceptor, session, ctx, build)
        events.publish(
            events.build_envelope(
                "crm.contact.created",
                tenant_id=str(tenant_id),
                actor_user_id=ctx.user_id,
                payload={
                    "contact_id": str(contact.id),
                    "contact_number": contact.contact_number,
                    "clj_formatted_number": contact.clj_formatted_number,
                },
            )
        )
        return ContactRead.model_validate(contact)

    def list_contacts(self, session: Session, ctx: AuthContext, *, limit: int = 50, offset: int = 0) -> list[ContactRead]:
        stmt: Select[tuple[Contact]] = select(Contact).where(Contact.deleted_at.is_(None))
        stmt = contact_repository.apply_scope_query(stmt, ctx)
        stmt = stmt.order_by(Contact.contact_number.asc(), Contact.created_at.asc()).offset(offset).limit(limit)
        return [ContactRead.model_validate(contact) for contact in session.scalars(stmt).all()]

    def get_contact(self, session: Session, ctx: AuthContext, contact_id: uuid.UUID) -> ContactRead:
        return ContactRead.model_validate(self._get_visible(session, ctx, contact_id))

    def delete_contact(self, session: Session, ctx: AuthContext, contact_id: uuid.UUID) -> None:
        contact = self._get_visible(session, ctx, contact_id)
        _validate_write(contact_repository, contact, ctx, Action.DELETE)
        self.interceptor.delete(session, contact, actor_user_id=ctx.user_id, correlation_id=ctx.correlation_id)
        events.publish(
            events.build_envelope(
                "crm.contact.deleted",
                tenant_id=str(contact.tenant_id),
                actor_user_id=ctx.user_id,
                payload={"contact_id": str(contact_id)},
            )
        )

    @staticmethod
    def _get_visible(session: Session, ctx: AuthContext, contact_id: uuid.UUID) -> Contact:
        contact = contact_repository.get_visible(session, ctx, contact_id)
        if contact is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")
        return contact


class PipelineEntryService:
    entity_type = "crm.pipeline_entry"

    def __init__(self, interceptor: NumberedWriteInterceptor | None = None) -> None:
        self.interceptor = interceptor or numbered_write_interceptor

    def create_entry(self, session: Session, ctx: AuthContext, dto: PipelineEntryCreate) -> PipelineEntryRead:
        _require_tenant(ctx)
        entry_status = _validate_status(dto.status)

        contact = contact_repository.get_visible(session, ctx, dto.contact_id)
        if contact is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")
        # An entry lives in its contact's tenant.
        tenant_id = contact.tenant_id

        location_id = dto.location_id or contact.location_id
        candidate = {
            "tenant_id": tenant_id,
            "location_id": location_id,
            "assigned_to": dto.assigned_to,
            "created_by": ctx.user_id,
        }
        _validate_write(pipeline_entry_repository, candidate, ctx, Action.INSERT)

        def build() -> PipelineEntry:
            return PipelineEntry(
                tenant_id=tenant_id,
                contact_id=contact.id,
                location_id=location_id,
                status=entry_status,
                source=dto.source,
                estimated_value=dto.estimated_value,
                notes=dto.notes,
                assigned_to=dto.assigned_to,
                created_by=ctx.user_id,
            )

        entry = _create_numbered(self.interceptor, session, ctx, build)
        events.publish(
            events.build_envelope(
                "crm.pipeline_entry.created",
                tenant_id=str(tenant_id),
                actor_user_id=ctx.user_id,
                payload={
                    "pipeline_entry_id": str(entry.id),
                    "contact_id": str(entry.contact_id),
                    "clj_formatted_number": entry.clj_formatted_number,
                },
            )
        )
        return PipelineEntryRead.model_validate(entry)

    def list_entries(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        contact_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PipelineEntryRead]:
        stmt: Select[tuple[PipelineEntry]] = select(PipelineEntry).where(PipelineEntry.deleted_at.is_(None))
        if contact_id is not None:
            stmt = stmt.where(PipelineEntry.contact_id == contact_id)
        stmt = pipeline_entry_repository.apply_scope_query(stmt, ctx)
        stmt = stmt.order_by(PipelineEntry.created_at.asc()).offset(offset).limit(limit)
        entries = session.scalars(stmt).all()
        observe_entry_statuses(entries)
        return [PipelineEntryRead.model_validate(entry) for entry in entries]

    def update_status(
        self,
        session: Session,
        ctx: AuthContext,
        entry_id: uuid.UUID,
        dto: PipelineEntryStatusUpdate,
    ) -> PipelineEntryRead:
        new_status = _validate_status(dto.status)
        entry = pipeline_entry_repository.get_visible(session, ctx, entry_id)
        if entry is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="pipeline entry not found")
        observe_entry_status(entry)
        _validate_write(pipeline_entry_repository, entry, ctx, Action.UPDATE)

        previous = entry.status
        try:
            entry = self.interceptor.update(
                session,
                entry,
                {"status": new_status},
                actor_user_id=ctx.user_id,
                correlation_id=ctx.correlation_id,
            )
        except ImmutableNumberError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

        logger.info(
            "pipeline.status_changed",
            extra={
                "tenant_id": str(entry.tenant_id),
                "entity_id": str(entry.id),
                "invalid_status": None if is_valid_status(previous) else previous,
                "status": new_status,
            },
        )
        events.publish(
            events.build_envelope(
                "crm.pipeline_entry.status_changed",
                tenant_id=str(entry.tenant_id),
                actor_user_id=ctx.user_id,
                payload={"pipeline_entry_id": str(entry.id), "from": previous, "to": new_status},
            )
        )
        return PipelineEntryRead.model_validate(entry)


class JobService:
    entity_type = "crm.job"

    def __init__(self, interceptor: NumberedWriteInterceptor | None = None) -> None:
        self.interceptor = interceptor or numbered_write_interceptor

    def create_job(self, session: Session, ctx: AuthContext, dto: JobCreate) -> JobRead:
        tenant_id = _require_tenant(ctx)

        location_id = dto.location_id
        if dto.pipeline_entry_id is not None:
            entry = pipeline_entry_repository.get_visible(session, ctx, dto.pipeline_entry_id)
            if entry is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="pipeline entry not found")
            tenant_id = entry.tenant_id
            location_id = location_id or entry.location_id

        candidate = {
            "tenant_id": tenant_id,
            "location_id": location_id,
            "assigned_to": dto.assigned_to,
            "created_by": ctx.user_id,
        }
        _validate_write(job_repository, candidate, ctx, Action.INSERT)

        def build() -> Job:
            return Job(
                tenant_id=tenant_id,
                pipeline_entry_id=dto.pipeline_entry_id,
                location_id=location_id,
                name=dto.name.strip(),
                assigned_to=dto.assigned_to,
                created_by=ctx.user_id,
            )

        job = _create_numbered(self.interceptor, session, ctx, build)
        events.publish(
            events.build_envelope(
                "crm.job.created",
                tenant_id=str(tenant_id),
                actor_user_id=ctx.user_id,
                payload={"job_id": str(job.id), "clj_formatted_number": job.clj_formatted_number},
            )
        )
        return JobRead.model_validate(job)

    def list_jobs(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        pipeline_entry_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[JobRead]:
        stmt: Select[tuple[Job]] = select(Job).where(Job.deleted_at.is_(None))
        if pipeline_entry_id is not None:
            stmt = stmt.where(Job.pipeline_entry_id == pipeline_entry_id)
        stmt = job_repository.apply_scope_query(stmt, ctx)
        stmt = stmt.order_by(Job.created_at.asc()).offset(offset).limit(limit)
        return [JobRead.model_validate(job) for job in session.scalars(stmt).all()]


contact_service = ContactService()
pipeline_entry_service = PipelineEntryService()
job_service = JobService()
