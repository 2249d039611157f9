from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Any


class AppRole(StrEnum):
    MASTER = "master"
    OWNER = "owner"
    CORPORATE = "corporate"
    OFFICE_ADMIN = "office_admin"
    ADMIN = "admin"
    REGIONAL_MANAGER = "regional_manager"
    SALES_MANAGER = "sales_manager"
    PROJECT_MANAGER = "project_manager"
    MANAGER = "manager"
    SALES_REP = "sales_rep"
    REP = "rep"
    USER = "user"


class RoleTier(IntEnum):
    CONTRIBUTOR = 1
    MANAGER = 2
    ORG_ADMIN = 3
    PLATFORM = 4


ROLE_TIERS: dict[AppRole, RoleTier] = {
    AppRole.MASTER: RoleTier.PLATFORM,
    AppRole.OWNER: RoleTier.ORG_ADMIN,
    AppRole.CORPORATE: RoleTier.ORG_ADMIN,
    AppRole.OFFICE_ADMIN: RoleTier.ORG_ADMIN,
    AppRole.ADMIN: RoleTier.ORG_ADMIN,
    AppRole.REGIONAL_MANAGER: RoleTier.MANAGER,
    AppRole.SALES_MANAGER: RoleTier.MANAGER,
    AppRole.PROJECT_MANAGER: RoleTier.MANAGER,
    AppRole.MANAGER: RoleTier.MANAGER,
    AppRole.SALES_REP: RoleTier.CONTRIBUTOR,
    AppRole.REP: RoleTier.CONTRIBUTOR,
    AppRole.USER: RoleTier.CONTRIBUTOR,
}


def parse_role(value: Any) -> AppRole | None:
    if value is None:
        return None
    try:
        return AppRole(str(value).strip().lower())
    except ValueError:
        return None


def role_tier(value: Any) -> RoleTier | None:
    role = parse_role(value)
    if role is None:
        return None
    return ROLE_TIERS[role]


def roles_at_or_above(tier: RoleTier) -> frozenset[AppRole]:
    """Every role whose tier is ``tier`` or higher."""

    return frozenset(role for role, role_level in ROLE_TIERS.items() if role_level >= tier)


PLATFORM_ROLES = roles_at_or_above(RoleTier.PLATFORM)
ORG_ADMIN_ROLES = roles_at_or_above(RoleTier.ORG_ADMIN)
MANAGER_ROLES = roles_at_or_above(RoleTier.MANAGER)
FULL_ACCESS_ROLES = MANAGER_ROLES
ALL_ROLES = roles_at_or_above(RoleTier.CONTRIBUTOR)


def role_in(role: Any, role_set: frozenset[AppRole]) -> bool:
    parsed = parse_role(role)
    return parsed is not None and parsed in role_set
