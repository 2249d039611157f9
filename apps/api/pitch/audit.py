from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from pitch.context import get_correlation_id
from pitch.models.audit import AuditLog


def snapshot(entity: Any) -> dict[str, Any]:
    """Column values of a mapped entity as JSON-safe primitives."""

    mapper = inspect(entity).mapper
    values: dict[str, Any] = {}
    for column in mapper.column_attrs:
        values[column.key] = _to_json_value(getattr(entity, column.key))
    return values


def _to_json_value(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def record(
    session: Session,
    *,
    tenant_id: uuid.UUID | None,
    table_name: str,
    record_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    actor_user_id: str | None,
    correlation_id: str | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction. The caller commits."""

    entry = AuditLog(
        tenant_id=tenant_id,
        table_name=table_name,
        record_id=record_id,
        action=action,
        old_values=before,
        new_values=after,
        changed_by=actor_user_id,
        correlation_id=correlation_id or get_correlation_id(),
    )
    session.add(entry)
    return entry
