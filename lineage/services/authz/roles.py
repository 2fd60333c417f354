from __future__ import annotations

from lineage.core.errors import InvalidRoleError


ROLE_OWNER = "owner"
ROLE_EDITOR = "editor"
ROLE_VIEWER = "viewer"

ROLE_ORDER: dict[str, int] = {
    ROLE_VIEWER: 1,
    ROLE_EDITOR: 2,
    ROLE_OWNER: 3,
}

# Roles an owner may hand out or switch members between.
ASSIGNABLE_ROLES = frozenset({ROLE_EDITOR, ROLE_VIEWER})


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for tree access checks.
    normalized = role.strip().lower()
    if normalized not in ROLE_ORDER:
        raise InvalidRoleError(f"Unsupported role: {role}")
    return normalized


def satisfies(effective_role: str | None, required_role: str) -> bool:
    # Compare numeric privilege levels; unknown or missing roles never satisfy anything.
    required_level = ROLE_ORDER.get(required_role)
    if required_level is None:
        raise InvalidRoleError(f"Unsupported role: {required_role}")
    if effective_role is None:
        return False
    return ROLE_ORDER.get(effective_role, 0) >= required_level
