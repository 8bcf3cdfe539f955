"""
auth/permissions.py -- Role -> capability resolution.

Pure lookup: no state, no side effects. _GRANTS has one entry per Role member;
adding a Role without adding a row makes the module fail at import time
rather than silently granting nothing.
"""

from __future__ import annotations

from enum import Enum

from auth.models import Role


class Capability(str, Enum):
    manage_users = "manage_users"
    manage_medical_records = "manage_medical_records"
    delete_records = "delete_records"
    view_all = "view_all"
    create_basic = "create_basic"
    access_admin_panel = "access_admin_panel"
    edit_invoices = "edit_invoices"
    view_reports = "view_reports"


_BASIC = frozenset({Capability.view_all, Capability.create_basic})
_CLINICAL = _BASIC | {
    Capability.manage_medical_records,
    Capability.delete_records,
    Capability.edit_invoices,
    Capability.view_reports,
}

_GRANTS: dict[Role, frozenset[Capability]] = {
    Role.admin: frozenset(Capability),
    Role.vet: frozenset(_CLINICAL),
    Role.assistant: _BASIC,
}

_missing = set(Role) - set(_GRANTS)
if _missing:
    raise RuntimeError(f"Roles without a permission row: {sorted(r.value for r in _missing)}")


def capabilities_for(role: Role | str) -> frozenset[Capability]:
    """Every capability granted to `role`; empty for unknown roles."""
    parsed = Role.parse(role)
    if parsed is None:
        return frozenset()
    return _GRANTS[parsed]


def has(role: Role | str, capability: Capability | str) -> bool:
    """Return True if `role` grants `capability`. Unknown roles or capabilities -> False."""
    try:
        cap = Capability(capability)
    except ValueError:
        return False
    return cap in capabilities_for(role)


def can_view_medical_record(role: Role | str, is_owner: bool = False) -> bool:
    """Medical-record managers see every record; an assistant only the ones they own."""
    if has(role, Capability.manage_medical_records):
        return True
    return Role.parse(role) is Role.assistant and is_owner
