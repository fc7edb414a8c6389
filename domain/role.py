"""
Domain: caller roles.

Roles come from the identity store (`user_roles`) and are passed into services
explicitly as a Caller, resolved once per request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    USER = "user"
    STAFF = "staff"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Caller:
    user_id: str
    role: Optional[Role]

    @property
    def can_check_in(self) -> bool:
        return self.role in (Role.STAFF, Role.ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


__all__ = ["Role", "Caller"]
