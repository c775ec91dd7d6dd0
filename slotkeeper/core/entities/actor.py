from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


@dataclass(frozen=True, slots=True)
class Actor:
    """An already-authenticated caller."""
    actor_id: str
    role: Role = Role.USER

    @property
    def privileged(self) -> bool:
        return self.role in (Role.ADMIN, Role.SUPERADMIN)
