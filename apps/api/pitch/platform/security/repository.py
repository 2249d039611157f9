from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from pitch.platform.security.context import AuthContext
from pitch.platform.security.rls import Action, TablePolicy, apply_rls_filter, can_access_row, validate_rls_write


class BaseRepository:
    model: Any = None
    policy: TablePolicy

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        return apply_rls_filter(query, ctx, self.policy)

    def can_access(self, ctx: AuthContext, row: Any, action: Action = Action.SELECT) -> bool:
        return can_access_row(ctx, row, action, self.policy)

    def validate_write_security(self, row: Any, ctx: AuthContext, *, action: Action) -> None:
        validate_rls_write(ctx, row, action, self.policy)

    def get_visible(self, session: Session, ctx: AuthContext, record_id: uuid.UUID) -> Any | None:
        query = select(self.model).where(self.model.id == record_id)
        if hasattr(self.model, "deleted_at"):
            query = query.where(self.model.deleted_at.is_(None))
        return session.scalar(self.apply_scope_query(query, ctx))
