from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    type: str = "homeowner"
    company_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address_street: str | None = None
    address_city: str | None = None
    address_state: str | None = None
    address_zip: str | None = None
    location_id: UUID | None = None
    assigned_to: str | None = None
    contact_number: int | None = Field(default=None, ge=1)


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    location_id: UUID | None
    contact_number: int | None
    clj_formatted_number: str | None
    type: str
    first_name: str | None
    last_name: str | None
    company_name: str | None
    email: str | None
    phone: str | None
    address_street: str | None
    address_city: str | None
    address_state: str | None
    address_zip: str | None
    assigned_to: str | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class PipelineEntryCreate(BaseModel):
    contact_id: UUID
    status: str = "lead"
    source: str | None = None
    location_id: UUID | None = None
    estimated_value: Decimal | None = None
    notes: str | None = None
    assigned_to: str | None = None


class PipelineEntryStatusUpdate(BaseModel):
    status: str = Field(min_length=1)


class PipelineEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    contact_id: UUID | None
    location_id: UUID | None
    status: str
    source: str | None
    contact_number: int | None
    lead_number: int | None
    clj_formatted_number: str | None
    estimated_value: Decimal | None
    notes: str | None
    assigned_to: str | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class JobCreate(BaseModel):
    pipeline_entry_id: UUID | None = None
    name: str = Field(min_length=1)
    location_id: UUID | None = None
    assigned_to: str | None = None


class JobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    pipeline_entry_id: UUID | None
    location_id: UUID | None
    name: str
    status: str
    contact_number: int | None
    lead_number: int | None
    job_number: int | None
    clj_formatted_number: str | None
    assigned_to: str | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class NormalizeStatusesRequest(BaseModel):
    default_status: str | None = None


class MaintenanceResult(BaseModel):
    repaired: int
    details: dict[str, Any] = Field(default_factory=dict)
