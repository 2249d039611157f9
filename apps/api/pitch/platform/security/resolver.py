from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from pitch.platform.security.context import AuthContext
from pitch.platform.security.errors import RecursivePolicyError, TenantResolutionError
from pitch.platform.security.roles import AppRole, parse_role
from pitch.tenancy.models import Profile, Tenant, UserLocationAssignment, UserRole


logger = logging.getLogger("pitch.security.resolver")

_resolving_users: ContextVar[frozenset[str]] = ContextVar("access_resolving_users", default=frozenset())

MEMBERSHIPS_CACHE_KEY = "memberships"


def current_tenant(
    home_tenant_id: uuid.UUID | None,
    active_tenant_id: uuid.UUID | None,
    is_usable: Callable[[uuid.UUID], bool],
) -> uuid.UUID | None:
    """Active tenant when usable, else the home tenant when usable, else nothing."""

    if active_tenant_id is not None and is_usable(active_tenant_id):
        return active_tenant_id
    if home_tenant_id is not None and is_usable(home_tenant_id):
        return home_tenant_id
    return None


class AccessResolver:
    """Builds an ``AuthContext`` from profile, memberships and location assignments.

    Every lookup is a direct, unfiltered query against the membership tables,
    so resolution never passes through a row filter and costs a fixed number
    of statements regardless of data size.
    """

    def resolve(self, session: Session, user_id: str, *, correlation_id: str | None = None) -> AuthContext:
        in_progress = _resolving_users.get()
        if user_id in in_progress:
            raise RecursivePolicyError(f"access resolution re-entered for user '{user_id}'")

        token = _resolving_users.set(in_progress | {user_id})
        try:
            return self._resolve(session, user_id, correlation_id)
        finally:
            _resolving_users.reset(token)

    def _load_profile(self, session: Session, user_id: str) -> Profile | None:
        return session.scalar(select(Profile).where(Profile.id == user_id))

    def _resolve(self, session: Session, user_id: str, correlation_id: str | None) -> AuthContext:
        profile = self._load_profile(session, user_id)
        if profile is None or not profile.is_active:
            raise TenantResolutionError(f"no active profile for user '{user_id}'")

        candidates = {tenant_id for tenant_id in (profile.tenant_id, profile.active_tenant_id) if tenant_id is not None}
        live_tenants = set(
            session.scalars(select(Tenant.id).where(Tenant.id.in_(candidates), Tenant.deleted_at.is_(None))).all()
        )

        memberships: dict[uuid.UUID, str] = {
            tenant_id: role
            for tenant_id, role in session.execute(
                select(UserRole.tenant_id, UserRole.role).where(UserRole.user_id == user_id)
            ).all()
        }

        def is_usable(tenant_id: uuid.UUID) -> bool:
            if tenant_id not in live_tenants:
                return False
            return tenant_id == profile.tenant_id or tenant_id in memberships

        tenant_id = current_tenant(profile.tenant_id, profile.active_tenant_id, is_usable)
        if profile.active_tenant_id is not None and tenant_id != profile.active_tenant_id:
            logger.warning(
                "access.active_tenant_unusable",
                extra={"user_id": user_id, "tenant_id": str(profile.active_tenant_id)},
            )

        role = self._effective_role(profile, memberships, tenant_id)

        location_ids: list[uuid.UUID] = []
        if tenant_id is not None:
            location_ids = list(
                session.scalars(
                    select(UserLocationAssignment.location_id).where(
                        UserLocationAssignment.user_id == user_id,
                        UserLocationAssignment.tenant_id == tenant_id,
                        UserLocationAssignment.is_active.is_(True),
                    )
                ).all()
            )

        ctx = AuthContext(
            user_id=user_id,
            tenant_id=tenant_id,
            home_tenant_id=profile.tenant_id,
            role=role,
            location_ids=location_ids,
            correlation_id=correlation_id,
        )
        ctx._cache[MEMBERSHIPS_CACHE_KEY] = memberships
        return ctx

    @staticmethod
    def _effective_role(
        profile: Profile,
        memberships: dict[uuid.UUID, str],
        tenant_id: uuid.UUID | None,
    ) -> str | None:
        if parse_role(profile.role) == AppRole.MASTER:
            return AppRole.MASTER.value
        if any(parse_role(role) == AppRole.MASTER for role in memberships.values()):
            return AppRole.MASTER.value
        if tenant_id is None:
            return None
        if tenant_id in memberships:
            return memberships[tenant_id]
        if tenant_id == profile.tenant_id:
            return profile.role
        return None


access_resolver = AccessResolver()
