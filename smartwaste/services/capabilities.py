"""
Role and ownership checks used by every workflow operation
"""
from dataclasses import dataclass
from typing import Any
from smartwaste.errors import Forbidden
from smartwaste.models.enums import Role
from smartwaste.utils import same_id

RESIDENT_ROLES = (Role.RESIDENT, Role.PREMIUM_RESIDENT)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as supplied by the identity service"""
    id: str
    role: Role
    premium_active: bool = False


def is_admin(principal: Principal) -> bool:
    return principal.role == Role.ADMIN


def is_resident(principal: Principal) -> bool:
    return principal.role in RESIDENT_ROLES


def is_premium(principal: Principal) -> bool:
    return principal.role == Role.PREMIUM_RESIDENT and principal.premium_active


def require_role(principal: Principal, *roles: Role):
    if principal.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise Forbidden(f"Access denied. Required roles: {allowed}")


def require_owner(principal: Principal, owner_id: Any, what: str = "resource"):
    if not same_id(principal.id, owner_id):
        raise Forbidden(f"Access denied: not the owner of this {what}")


def require_owner_or_admin(principal: Principal, owner_id: Any, what: str = "resource"):
    if is_admin(principal):
        return
    require_owner(principal, owner_id, what)
