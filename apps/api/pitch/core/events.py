from __future__ import annotations

import logging
from collections.abc import Callable
from fnmatch import fnmatchcase
from typing import Any

logger = logging.getLogger("pitch.events")

Envelope = dict[str, Any]
EnvelopeHandler = Callable[[Envelope], None]


class EnvelopeDispatcher:
    """Routes event envelopes to handlers by ``event_type``.

    Subscriptions take glob patterns (``crm.*.created``) so one handler can
    follow a family of events. Handlers run synchronously in subscription
    order; a failing handler is logged and its error propagates to the
    publisher.
    """

    def __init__(self) -> None:
        self._routes: list[tuple[str, EnvelopeHandler]] = []

    def subscribe(self, pattern: str, handler: EnvelopeHandler) -> None:
        if (pattern, handler) not in self._routes:
            self._routes.append((pattern, handler))

    def handlers_for(self, event_type: str) -> list[EnvelopeHandler]:
        return [handler for pattern, handler in self._routes if fnmatchcase(event_type, pattern)]

    def dispatch(self, envelope: Envelope) -> int:
        event_type = envelope.get("event_type")
        if not isinstance(event_type, str) or not event_type:
            raise ValueError("envelope has no event_type")

        handlers = self.handlers_for(event_type)
        for handler in handlers:
            try:
                handler(envelope)
            except Exception as exc:
                logger.error(
                    "events.handler_failed",
                    extra={
                        "action": event_type,
                        "tenant_id": envelope.get("tenant_id"),
                        "error": str(exc),
                    },
                )
                raise
        return len(handlers)


event_dispatcher = EnvelopeDispatcher()
