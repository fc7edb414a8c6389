"""
Role lookup against the `user_roles` table.

Every call hits the database: a role revoked a moment ago must not keep
passing authorization.
"""

from __future__ import annotations

from typing import Optional

from supabase import Client  # type: ignore[import-not-found]

from domain.role import Role
from repositories.interfaces import RoleLookup

_ROLES_TABLE: str = "user_roles"


class SupabaseRoleLookup(RoleLookup):
    def __init__(self, client: Client) -> None:
        self._client = client

    def get_role(self, user_id: str) -> Optional[Role]:
        response = (
            self._client.table(_ROLES_TABLE)
            .select("role")
            .eq("user_id", user_id)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch user role: {error}")

        rows = getattr(response, "data", None) or []
        roles = {Role(row["role"]) for row in rows if row.get("role") in Role._value2member_map_}
        # A user may hold several roles; the strongest one wins.
        for role in (Role.ADMIN, Role.STAFF, Role.USER):
            if role in roles:
                return role
        return None


__all__ = ["SupabaseRoleLookup"]
