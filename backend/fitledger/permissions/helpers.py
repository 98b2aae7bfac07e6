# Overview: Typed permission codes plus lookups and validation over the catalog.

from __future__ import annotations

from dataclasses import dataclass

from .categories import ALL_MODULES
from .definitions import PERMISSION_DEFINITIONS


WILDCARD = "*"


@dataclass(frozen=True)
class PermissionCode:
    """A catalog permission as a (module, action) pair; the wire form is "module.action"."""
    module: str
    action: str

    @property
    def code(self) -> str:
        return f"{self.module}.{self.action}"

    @classmethod
    def parse(cls, code: str) -> "PermissionCode":
        module, sep, action = code.partition(".")
        if not sep or not module or not action:
            raise ValueError(f"Malformed permission code: {code!r}")
        return cls(module=module, action=action)

    def __str__(self) -> str:
        return self.code


PERMISSION_CODES = frozenset(PermissionCode.parse(perm[0]) for perm in PERMISSION_DEFINITIONS)


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permissions_by_module(module):
    """Get all permissions in a module."""
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == module]


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "module": perm[3],
            }
    return None


def validate_permission_code(code) -> bool:
    """Check if a permission code names a concrete catalog permission."""
    try:
        return PermissionCode.parse(code) in PERMISSION_CODES
    except (ValueError, AttributeError):
        return False


def require_known_permission(code) -> PermissionCode:
    """Resolve a required permission against the catalog; typos fail at decoration time."""
    if not validate_permission_code(code):
        raise ValueError(f"Unknown permission code: {code!r}")
    return PermissionCode.parse(code)


def validate_grant(grant) -> bool:
    """A grant is a catalog code, a module wildcard ("invoices.*") or the global "*"."""
    if grant == WILDCARD:
        return True
    if isinstance(grant, str) and grant.endswith(".*"):
        return grant[:-2] in ALL_MODULES
    return validate_permission_code(grant)
