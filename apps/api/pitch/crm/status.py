from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from pitch import audit
from pitch.core.config import get_settings
from pitch.crm.models import PipelineEntry
from pitch.metrics import observe_invalid_status, observe_status_normalized


logger = logging.getLogger("pitch.crm.status")


class PipelineStatus(StrEnum):
    LEAD = "lead"
    LEGAL_REVIEW = "legal_review"
    CONTINGENCY_SIGNED = "contingency_signed"
    PROJECT = "project"
    COMPLETED = "completed"
    CLOSED = "closed"
    LOST = "lost"
    CANCELED = "canceled"
    DUPLICATE = "duplicate"


VALID_STATUSES = frozenset(status.value for status in PipelineStatus)


def is_valid_status(value: Any) -> bool:
    return isinstance(value, str) and value in VALID_STATUSES


def default_status() -> PipelineStatus:
    return PipelineStatus(get_settings().default_pipeline_status)


def observe_entry_status(entry: PipelineEntry) -> None:
    """Flag a stored status outside the recognized set. Never raises."""

    if is_valid_status(entry.status):
        return
    observe_invalid_status()
    logger.warning(
        "pipeline.invalid_status_observed",
        extra={
            "tenant_id": str(entry.tenant_id),
            "entity_id": str(entry.id),
            "invalid_status": entry.status,
        },
    )


def observe_entry_statuses(entries: Iterable[PipelineEntry]) -> None:
    for entry in entries:
        observe_entry_status(entry)


def normalize_pipeline_statuses(
    session: Session,
    default: PipelineStatus | str | None = None,
    *,
    tenant_id: uuid.UUID | None = None,
    actor_user_id: str | None = None,
) -> int:
    """Rewrite every out-of-set status to ``default`` and audit each change.

    Returns how many entries were repaired. Soft-deleted entries are included
    so the set-membership invariant holds for every stored row.
    """

    target = PipelineStatus(default) if default is not None else default_status()

    query = select(PipelineEntry).where(PipelineEntry.status.not_in(sorted(VALID_STATUSES)))
    if tenant_id is not None:
        query = query.where(PipelineEntry.tenant_id == tenant_id)

    repaired = 0
    for entry in session.scalars(query).all():
        before = audit.snapshot(entry)
        previous = entry.status
        entry.status = target.value
        audit.record(
            session,
            tenant_id=entry.tenant_id,
            table_name="pipeline_entry",
            record_id=str(entry.id),
            action="NORMALIZE",
            before=before,
            after=audit.snapshot(entry),
            actor_user_id=actor_user_id,
        )
        logger.info(
            "pipeline.status_normalized",
            extra={
                "tenant_id": str(entry.tenant_id),
                "entity_id": str(entry.id),
                "invalid_status": previous,
                "status": target.value,
            },
        )
        repaired += 1

    session.commit()
    observe_status_normalized(repaired)
    return repaired
