from __future__ import annotations

import logging

from celery import Celery

from pitch.context import bind_correlation_id
from pitch.core.config import get_settings
from pitch.core.database import SessionLocal
from pitch.crm.status import normalize_pipeline_statuses
from pitch.numbering.allocator import repair_composites

settings = get_settings()
logger = logging.getLogger("pitch.tasks")

SYSTEM_ACTOR = "system:celery"

celery_app = Celery("pitch_api", broker=settings.redis_url, backend=settings.redis_url)


@celery_app.task(name="pitch.tasks.normalize_pipeline_statuses")
def normalize_pipeline_statuses_task(default_status: str | None = None, correlation_id: str | None = None) -> int:
    with bind_correlation_id(correlation_id):
        session = SessionLocal()
        try:
            repaired = normalize_pipeline_statuses(session, default_status, actor_user_id=SYSTEM_ACTOR)
        finally:
            session.close()
        logger.info("pipeline.normalize_task_finished", extra={"count": repaired})
    return repaired


@celery_app.task(name="pitch.tasks.repair_composites")
def repair_composites_task(correlation_id: str | None = None) -> int:
    with bind_correlation_id(correlation_id):
        session = SessionLocal()
        try:
            repaired = repair_composites(session, actor_user_id=SYSTEM_ACTOR)
        finally:
            session.close()
        logger.info("numbering.repair_task_finished", extra={"count": repaired})
    return repaired
