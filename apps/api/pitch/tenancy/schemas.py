from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class MembershipRead(BaseModel):
    tenant_id: UUID
    role: str


class AccessSummary(BaseModel):
    user_id: str
    tenant_id: UUID | None
    home_tenant_id: UUID | None
    role: str | None
    is_platform_admin: bool
    is_org_admin: bool
    is_manager: bool
    location_ids: list[UUID] = Field(default_factory=list)
    memberships: list[MembershipRead] = Field(default_factory=list)


class ActiveTenantSwitch(BaseModel):
    tenant_id: UUID | None = None
