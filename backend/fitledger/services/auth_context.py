# Overview: Builds the immutable, request-scoped AuthContext; fails closed on anything missing.

"""
Authorization Context Resolver

WHY: Every operation needs to know who is acting and inside which tenant
(and optionally which branch). The context is built once per request,
never mutated, and passed explicitly into services; there is no global
"current tenant".

SECURITY INVARIANTS:
1. actor_id, tenant_id and the permission set are mandatory.
   Missing any of them raises Unauthorized. There is no default tenant
   and no default permission set.
2. branch_id None means tenant-wide access; a value restricts the actor
   to that branch.
3. The SYSTEM principal (webhooks, CLI) is an ordinary context for a
   concrete tenant holding "*". It still goes through the same
   permission and scope checks.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from ..errors import Unauthorized


SYSTEM_ACTOR_ID = "SYSTEM"

HEADER_USER_ID = "x-user-id"
HEADER_TENANT_ID = "x-tenant-id"
HEADER_BRANCH_ID = "x-branch-id"
HEADER_PERMISSIONS = "x-user-permissions"
HEADER_ROLES = "x-user-roles"


@dataclass(frozen=True)
class AuthContext:
    actor_id: str
    tenant_id: int
    permissions: frozenset[str]
    roles: frozenset[str] = field(default_factory=frozenset)
    branch_id: int | None = None
    is_system: bool = False

    @property
    def is_branch_scoped(self) -> bool:
        return self.branch_id is not None


def _parse_id(value, field_name: str) -> int:
    if isinstance(value, bool):
        raise Unauthorized(f"Invalid {field_name}")
    if isinstance(value, int):
        parsed = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise Unauthorized(f"Invalid {field_name}")
        parsed = int(text)
    if parsed <= 0:
        raise Unauthorized(f"Invalid {field_name}")
    return parsed


def _parse_string_set(value, field_name: str) -> frozenset[str]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise Unauthorized(f"Session {field_name} must be a list")
    items = list(value)
    if not all(isinstance(item, str) for item in items):
        raise Unauthorized(f"Session {field_name} must be a list of strings")
    return frozenset(items)


def build_auth_context(
    *,
    actor_id,
    tenant_id,
    permissions,
    roles=(),
    branch_id=None,
) -> AuthContext:
    """
    Validate raw identity claims and freeze them into an AuthContext.

    Raises Unauthorized when a mandatory claim is missing or malformed.
    """
    if actor_id is None or not str(actor_id).strip():
        raise Unauthorized("Session missing user ID")

    if tenant_id is None or (isinstance(tenant_id, str) and not tenant_id.strip()):
        raise Unauthorized("Session missing tenant ID - tenant isolation required")

    if permissions is None:
        raise Unauthorized("Session missing permissions - RBAC enforcement required")

    return AuthContext(
        actor_id=str(actor_id).strip(),
        tenant_id=_parse_id(tenant_id, "tenant ID"),
        branch_id=_parse_id(branch_id, "branch ID") if branch_id not in (None, "") else None,
        permissions=_parse_string_set(permissions, "permissions"),
        roles=_parse_string_set(roles if roles is not None else (), "roles"),
    )


def resolve_from_session(session: Mapping | None) -> AuthContext:
    """Build a context from decoded session claims (userId/tenantId/branchId/permissions/roles)."""
    if not session:
        raise Unauthorized("Authentication required")
    return build_auth_context(
        actor_id=session.get("userId") or session.get("sub"),
        tenant_id=session.get("tenantId"),
        branch_id=session.get("branchId"),
        permissions=session.get("permissions"),
        roles=session.get("roles", ()),
    )


def _json_list_header(headers: Mapping, name: str):
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise Unauthorized(f"Header {name} must be a JSON array")


def resolve_from_headers(headers: Mapping) -> AuthContext:
    """
    Build a context from the trusted identity headers set by the edge proxy.

    x-user-id, x-tenant-id and x-user-permissions are required;
    x-branch-id and x-user-roles are optional.
    """
    actor_id = headers.get(HEADER_USER_ID)
    tenant_id = headers.get(HEADER_TENANT_ID)
    if not actor_id or not tenant_id:
        raise Unauthorized("Authentication required")

    roles = _json_list_header(headers, HEADER_ROLES)

    return build_auth_context(
        actor_id=actor_id,
        tenant_id=tenant_id,
        branch_id=headers.get(HEADER_BRANCH_ID),
        permissions=_json_list_header(headers, HEADER_PERMISSIONS),
        roles=roles if roles is not None else (),
    )


def system_context(tenant_id: int, branch_id: int | None = None) -> AuthContext:
    """Trusted principal used by gateway callbacks and maintenance commands."""
    return AuthContext(
        actor_id=SYSTEM_ACTOR_ID,
        tenant_id=_parse_id(tenant_id, "tenant ID"),
        branch_id=branch_id,
        permissions=frozenset({"*"}),
        roles=frozenset({"system"}),
        is_system=True,
    )
