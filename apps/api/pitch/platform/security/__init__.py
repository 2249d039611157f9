from pitch.platform.security.context import AuthContext
from pitch.platform.security.errors import (
    AccessDeniedError,
    AuthorizationError,
    MembershipError,
    RecursivePolicyError,
    TenantResolutionError,
)
from pitch.platform.security.repository import BaseRepository
from pitch.platform.security.resolver import AccessResolver, access_resolver, current_tenant
from pitch.platform.security.rls import (
    AUDIT_LOG_POLICY,
    CONTACT_POLICY,
    JOB_POLICY,
    PIPELINE_ENTRY_POLICY,
    PROFILE_POLICY,
    Action,
    TablePolicy,
    apply_rls_filter,
    can_access_row,
    filter_rows,
    has_role,
    validate_rls_write,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "AccessDeniedError",
    "MembershipError",
    "RecursivePolicyError",
    "TenantResolutionError",
    "BaseRepository",
    "AccessResolver",
    "access_resolver",
    "current_tenant",
    "Action",
    "TablePolicy",
    "AUDIT_LOG_POLICY",
    "CONTACT_POLICY",
    "JOB_POLICY",
    "PIPELINE_ENTRY_POLICY",
    "PROFILE_POLICY",
    "apply_rls_filter",
    "can_access_row",
    "filter_rows",
    "has_role",
    "validate_rls_write",
]
