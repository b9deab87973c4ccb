"""
Role strings and the single capability classification used by every
authorization check.
"""
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException

from .dependencies import get_current_principal

USER_ROLES = ("DOCTOR", "NURSE", "STUDENT")
INSTITUTE_ROLES = ("HOSPITAL", "CLINIC", "LAB", "PHARMACY")
ADMIN_ROLE = "ADMIN"


class Capability(str, Enum):
    USER = "USER"
    INSTITUTE = "INSTITUTE"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Principal:
    id: int
    role: str
    capability: Capability

    @property
    def kind(self) -> str:
        # Receiver kind used for notification/push addressing.
        return self.capability.value

    @property
    def is_user(self) -> bool:
        return self.capability is Capability.USER

    @property
    def is_institute(self) -> bool:
        return self.capability is Capability.INSTITUTE

    @property
    def is_admin(self) -> bool:
        return self.capability is Capability.ADMIN


def normalize_role(role: str | None) -> str:
    return (role or "").strip().upper()


def classify_role(role: str | None) -> Capability | None:
    """Map a role string to its capability, or None for unknown roles."""
    r = normalize_role(role)
    if r in USER_ROLES:
        return Capability.USER
    if r in INSTITUTE_ROLES:
        return Capability.INSTITUTE
    if r == ADMIN_ROLE:
        return Capability.ADMIN
    return None


def _capability_required(required: Capability):
    def check_capability(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.capability is not required:
            raise HTTPException(status_code=403, detail=f"{required.value.capitalize()} access only")
        return principal
    return check_capability


user_only = _capability_required(Capability.USER)
institute_only = _capability_required(Capability.INSTITUTE)
admin_only = _capability_required(Capability.ADMIN)


def institute_or_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not (principal.is_institute or principal.is_admin):
        raise HTTPException(status_code=403, detail="Institute or admin access only")
    return principal
