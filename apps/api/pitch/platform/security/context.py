from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class AuthContext:
    """Resolved principal used by row-level predicates.

    ``tenant_id`` is the current tenant (active if switched, else home).
    ``role`` is the principal's role within that tenant.
    """

    user_id: str
    tenant_id: uuid.UUID | None = None
    home_tenant_id: uuid.UUID | None = None
    role: str | None = None
    location_ids: list[uuid.UUID] = field(default_factory=list)
    correlation_id: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)
