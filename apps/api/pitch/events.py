from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pitch.context import get_correlation_id
from pitch.core.events import event_dispatcher

published_events: list[dict[str, Any]] = []


def build_envelope(
    event_type: str,
    *,
    tenant_id: str | None,
    actor_user_id: str | None,
    payload: dict[str, Any],
) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "tenant_id": tenant_id,
        "actor_user_id": actor_user_id,
        "version": 1,
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_dispatcher.dispatch(envelope)
