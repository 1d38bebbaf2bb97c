from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_ORG_READ = "org.read"
PERM_ORG_WRITE = "org.write"
PERM_ORG_REQUEST = "org.request"
PERM_ORG_APPROVE = "org.approve"

DEFAULT_PERMISSION_NAMES = [
    PERM_WILDCARD,
    PERM_ORG_READ,
    PERM_ORG_WRITE,
    PERM_ORG_REQUEST,
    PERM_ORG_APPROVE,
]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
