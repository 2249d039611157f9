from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from pitch.metrics import observe_rls_denied_read, observe_rls_denied_write
from pitch.platform.security.context import AuthContext
from pitch.platform.security.errors import AccessDeniedError
from pitch.platform.security.roles import (
    FULL_ACCESS_ROLES,
    MANAGER_ROLES,
    ORG_ADMIN_ROLES,
    PLATFORM_ROLES,
    AppRole,
    role_in,
)


logger = logging.getLogger("pitch.security.rls")

RowT = TypeVar("RowT")


class Action(StrEnum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class TablePolicy:
    """Per-table variation of the general row rule.

    A role set of ``None`` means any member of the row's tenant may attempt
    the action; the visibility rule still applies.
    """

    resource: str
    tenant_column: str = "tenant_id"
    location_column: str | None = "location_id"
    assignee_column: str | None = "assigned_to"
    creator_column: str | None = "created_by"
    owner_column: str | None = None
    read_roles: frozenset[AppRole] | None = None
    write_roles: frozenset[AppRole] | None = None
    delete_roles: frozenset[AppRole] | None = MANAGER_ROLES
    immutable: bool = False

    def roles_for(self, action: Action) -> frozenset[AppRole] | None:
        if action == Action.SELECT:
            return self.read_roles
        if action == Action.DELETE:
            return self.delete_roles
        return self.write_roles


CONTACT_POLICY = TablePolicy(resource="crm.contact")
PIPELINE_ENTRY_POLICY = TablePolicy(resource="crm.pipeline_entry")
JOB_POLICY = TablePolicy(resource="crm.job")
AUDIT_LOG_POLICY = TablePolicy(
    resource="audit.log",
    location_column=None,
    assignee_column=None,
    creator_column=None,
    read_roles=ORG_ADMIN_ROLES,
    immutable=True,
)
PROFILE_POLICY = TablePolicy(
    resource="tenancy.profile",
    location_column=None,
    assignee_column=None,
    creator_column=None,
    owner_column="id",
    write_roles=ORG_ADMIN_ROLES,
    delete_roles=ORG_ADMIN_ROLES,
)


def _row_value(row: Any, column: str | None) -> Any:
    if column is None:
        return None
    if isinstance(row, dict):
        return row.get(column)
    return getattr(row, column, None)


def _as_uuid(value: Any) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def has_role(ctx: AuthContext, role_set: frozenset[AppRole]) -> bool:
    return role_in(ctx.role, role_set)


def is_platform_principal(ctx: AuthContext) -> bool:
    return has_role(ctx, PLATFORM_ROLES)


def has_full_access(ctx: AuthContext) -> bool:
    return has_role(ctx, FULL_ACCESS_ROLES)


def tenant_matches(ctx: AuthContext, row: Any, policy: TablePolicy) -> bool:
    row_tenant = _as_uuid(_row_value(row, policy.tenant_column))
    return ctx.tenant_id is not None and row_tenant is not None and row_tenant == ctx.tenant_id


def is_own_row(ctx: AuthContext, row: Any, policy: TablePolicy) -> bool:
    if policy.owner_column is None:
        return False
    return str(_row_value(row, policy.owner_column)) == ctx.user_id


def is_assigned(ctx: AuthContext, row: Any, policy: TablePolicy) -> bool:
    if policy.assignee_column is None:
        return False
    return _row_value(row, policy.assignee_column) == ctx.user_id


def is_creator(ctx: AuthContext, row: Any, policy: TablePolicy) -> bool:
    if policy.creator_column is None:
        return False
    return _row_value(row, policy.creator_column) == ctx.user_id


def row_unrestricted(row: Any, policy: TablePolicy) -> bool:
    return policy.location_column is None or _row_value(row, policy.location_column) is None


def location_allowed(ctx: AuthContext, row: Any, policy: TablePolicy) -> bool:
    location_id = _as_uuid(_row_value(row, policy.location_column))
    return location_id is not None and location_id in set(ctx.location_ids)


def can_access_row(ctx: AuthContext, row: Any, action: Action, policy: TablePolicy) -> bool:
    """General row rule with table variations.

    Clause order matters: the own-row check never touches membership data,
    so it is evaluated before anything else. It is the one allowance that
    ignores the tenant: a principal working in a switched tenant can still
    read and update their own profile, which lives in the home tenant.
    Nothing else in the home tenant becomes visible through it.
    """

    if is_own_row(ctx, row, policy) and action in {Action.SELECT, Action.UPDATE}:
        return True

    if policy.immutable and action != Action.SELECT:
        return False

    if is_platform_principal(ctx):
        return True

    if not tenant_matches(ctx, row, policy):
        return False

    required_roles = policy.roles_for(action)
    if required_roles is not None and not has_role(ctx, required_roles):
        return False

    return (
        has_full_access(ctx)
        or is_assigned(ctx, row, policy)
        or is_creator(ctx, row, policy)
        or location_allowed(ctx, row, policy)
        or row_unrestricted(row, policy)
    )


def filter_rows(ctx: AuthContext, rows: Iterable[RowT], policy: TablePolicy) -> list[RowT]:
    """Drop rows the principal may not read. Denial is silent to the caller."""

    visible: list[RowT] = []
    denied = 0
    for row in rows:
        if can_access_row(ctx, row, Action.SELECT, policy):
            visible.append(row)
        else:
            denied += 1
    observe_rls_denied_read(policy.resource, denied)
    return visible


def _visibility_clause(model: Any, ctx: AuthContext, policy: TablePolicy) -> ColumnElement[bool]:
    if has_full_access(ctx):
        return true()

    clauses: list[ColumnElement[bool]] = []
    if policy.assignee_column and hasattr(model, policy.assignee_column):
        clauses.append(getattr(model, policy.assignee_column) == ctx.user_id)
    if policy.creator_column and hasattr(model, policy.creator_column):
        clauses.append(getattr(model, policy.creator_column) == ctx.user_id)
    if policy.location_column and hasattr(model, policy.location_column):
        location_column = getattr(model, policy.location_column)
        if ctx.location_ids:
            clauses.append(location_column.in_(ctx.location_ids))
        clauses.append(location_column.is_(None))
    else:
        clauses.append(true())
    return or_(*clauses)


def rls_clause(model: Any, ctx: AuthContext, policy: TablePolicy) -> ColumnElement[bool]:
    """SQL form of ``can_access_row`` for SELECT."""

    own_row: ColumnElement[bool] = false()
    if policy.owner_column and hasattr(model, policy.owner_column):
        own_row = getattr(model, policy.owner_column) == ctx.user_id

    if is_platform_principal(ctx):
        return true()

    if ctx.tenant_id is None or not hasattr(model, policy.tenant_column):
        return own_row

    if policy.read_roles is not None and not has_role(ctx, policy.read_roles):
        return own_row

    tenant_scoped = and_(
        getattr(model, policy.tenant_column) == ctx.tenant_id,
        _visibility_clause(model, ctx, policy),
    )
    return or_(own_row, tenant_scoped)


def apply_rls_filter(query: Select[Any], ctx: AuthContext, policy: TablePolicy) -> Select[Any]:
    """Apply the row rule to every mapped entity selected by ``query``."""

    for description in query.column_descriptions:
        model = description.get("entity")
        if model is None:
            continue
        query = query.where(rls_clause(model, ctx, policy))
    return query


def validate_rls_write(ctx: AuthContext, row: Any, action: Action, policy: TablePolicy) -> None:
    """Reject a write synchronously when the check predicate fails."""

    if can_access_row(ctx, row, action, policy):
        return

    observe_rls_denied_write(resource=policy.resource, action=action.value)
    logger.warning(
        "rls.write_denied",
        extra={
            "resource": policy.resource,
            "action": action.value,
            "user_id": ctx.user_id,
            "tenant_id": str(ctx.tenant_id) if ctx.tenant_id else None,
        },
    )
    raise AccessDeniedError(resource=policy.resource, action=action.value)
