from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from pitch.context import get_correlation_id
from pitch.core.auth import get_auth_context
from pitch.core.database import get_db
from pitch.crm.schemas import (
    ContactCreate,
    ContactRead,
    JobCreate,
    JobRead,
    PipelineEntryCreate,
    PipelineEntryRead,
    PipelineEntryStatusUpdate,
)
from pitch.crm.service import contact_service, job_service, pipeline_entry_service
from pitch.platform.security.context import AuthContext

contacts_router = APIRouter(prefix="/api/crm", tags=["crm.contacts"])
pipeline_entries_router = APIRouter(prefix="/api/crm", tags=["crm.pipeline_entries"])
jobs_router = APIRouter(prefix="/api/crm", tags=["crm.jobs"])


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


@contacts_router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.create_contact(db, ctx, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_contact_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@contacts_router.get("/contacts", response_model=list[ContactRead])
def list_contacts(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ContactRead]:
    return contact_service.list_contacts(db, ctx, limit=limit, offset=offset)


@contacts_router.get("/contacts/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.get_contact(db, ctx, contact_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_contact_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@contacts_router.delete("/contacts/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contact(
    request: Request,
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    try:
        contact_service.delete_contact(db, ctx, contact_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_contact_delete_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@pipeline_entries_router.post(
    "/pipeline-entries",
    response_model=PipelineEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def create_pipeline_entry(
    request: Request,
    dto: PipelineEntryCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> PipelineEntryRead | JSONResponse:
    try:
        return pipeline_entry_service.create_entry(db, ctx, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_pipeline_entry_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@pipeline_entries_router.get("/pipeline-entries", response_model=list[PipelineEntryRead])
def list_pipeline_entries(
    contact_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[PipelineEntryRead]:
    return pipeline_entry_service.list_entries(db, ctx, contact_id=contact_id, limit=limit, offset=offset)


@pipeline_entries_router.patch("/pipeline-entries/{entry_id}/status", response_model=PipelineEntryRead)
def update_pipeline_entry_status(
    request: Request,
    entry_id: uuid.UUID,
    dto: PipelineEntryStatusUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> PipelineEntryRead | JSONResponse:
    try:
        return pipeline_entry_service.update_status(db, ctx, entry_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_pipeline_entry_status_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@jobs_router.post("/jobs", response_model=JobRead, status_code=status.HTTP_201_CREATED)
def create_job(
    request: Request,
    dto: JobCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> JobRead | JSONResponse:
    try:
        return job_service.create_job(db, ctx, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_job_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@jobs_router.get("/jobs", response_model=list[JobRead])
def list_jobs(
    pipeline_entry_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[JobRead]:
    return job_service.list_jobs(db, ctx, pipeline_entry_id=pipeline_entry_id, limit=limit, offset=offset)
