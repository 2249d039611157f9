from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from pitch import audit
from pitch.platform.security.context import AuthContext
from pitch.platform.security.errors import MembershipError, TenantResolutionError
from pitch.platform.security.resolver import MEMBERSHIPS_CACHE_KEY, AccessResolver, access_resolver
from pitch.platform.security.rls import PROFILE_POLICY, Action, has_full_access, has_role, validate_rls_write
from pitch.platform.security.roles import ORG_ADMIN_ROLES, PLATFORM_ROLES
from pitch.tenancy.models import Profile, Tenant
from pitch.tenancy.schemas import AccessSummary, MembershipRead


logger = logging.getLogger("pitch.tenancy")


def summarize_access(ctx: AuthContext) -> AccessSummary:
    memberships = ctx._cache.get(MEMBERSHIPS_CACHE_KEY, {})
    return AccessSummary(
        user_id=ctx.user_id,
        tenant_id=ctx.tenant_id,
        home_tenant_id=ctx.home_tenant_id,
        role=ctx.role,
        is_platform_admin=has_role(ctx, PLATFORM_ROLES),
        is_org_admin=has_role(ctx, ORG_ADMIN_ROLES),
        is_manager=has_full_access(ctx),
        location_ids=list(ctx.location_ids),
        memberships=[
            MembershipRead(tenant_id=tenant_id, role=role)
            for tenant_id, role in sorted(memberships.items(), key=lambda item: str(item[0]))
        ],
    )


def switch_active_tenant(
    session: Session,
    ctx: AuthContext,
    tenant_id: uuid.UUID | None,
    *,
    resolver: AccessResolver | None = None,
) -> AuthContext:
    """Point the principal's session at another tenant it belongs to.

    ``None`` clears the switch so resolution falls back to the home tenant.
    Returns the freshly resolved context.
    """

    resolver = resolver or access_resolver
    memberships = ctx._cache.get(MEMBERSHIPS_CACHE_KEY, {})

    if tenant_id is not None:
        if tenant_id != ctx.home_tenant_id and tenant_id not in memberships:
            raise MembershipError(f"user '{ctx.user_id}' holds no membership in tenant '{tenant_id}'")
        live = session.scalar(select(Tenant.id).where(Tenant.id == tenant_id, Tenant.deleted_at.is_(None)))
        if live is None:
            raise TenantResolutionError(f"tenant '{tenant_id}' does not exist or is deleted")

    profile = session.scalar(select(Profile).where(Profile.id == ctx.user_id))
    if profile is None:
        raise TenantResolutionError(f"no profile for user '{ctx.user_id}'")
    validate_rls_write(ctx, profile, Action.UPDATE, PROFILE_POLICY)

    before = audit.snapshot(profile)
    profile.active_tenant_id = tenant_id
    session.flush()
    audit.record(
        session,
        tenant_id=profile.tenant_id,
        table_name="profile",
        record_id=profile.id,
        action="UPDATE",
        before=before,
        after=audit.snapshot(profile),
        actor_user_id=ctx.user_id,
        correlation_id=ctx.correlation_id,
    )
    session.commit()

    logger.info(
        "tenancy.active_tenant_switched",
        extra={"user_id": ctx.user_id, "tenant_id": str(tenant_id) if tenant_id else None},
    )
    return resolver.resolve(session, ctx.user_id, correlation_id=ctx.correlation_id)
