"""
tests/test_permissions.py -- Unit tests for auth.permissions.

The full role x capability matrix is asserted explicitly so a grant change
shows up as a test diff.
"""

from __future__ import annotations

import pytest

from auth.models import Role
from auth.permissions import Capability, can_view_medical_record, capabilities_for, has

C = Capability

EXPECTED = {
    Role.admin: set(Capability),
    Role.vet: {
        C.view_all,
        C.create_basic,
        C.manage_medical_records,
        C.delete_records,
        C.edit_invoices,
        C.view_reports,
    },
    Role.assistant: {C.view_all, C.create_basic},
}


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.parametrize("capability", list(Capability))
def test_matrix(role, capability):
    assert has(role, capability) is (capability in EXPECTED[role])


def test_string_arguments_are_accepted():
    assert has("vet", "manage_medical_records") is True
    assert has("assistant", "delete_records") is False


@pytest.mark.parametrize("role", ["owner", "", None, 3, "ADMIN"])
def test_unknown_role_has_nothing(role):
    assert capabilities_for(role) == frozenset()
    assert has(role, C.view_all) is False


def test_unknown_capability_is_false():
    assert has(Role.admin, "launch_rockets") is False


def test_only_admin_manages_users():
    assert [r for r in Role if has(r, C.manage_users)] == [Role.admin]


@pytest.mark.parametrize(
    "role, is_owner, expected",
    [
        (Role.admin, False, True),
        (Role.vet, False, True),
        (Role.assistant, False, False),
        (Role.assistant, True, True),
        ("owner", True, False),
    ],
)
def test_can_view_medical_record(role, is_owner, expected):
    assert can_view_medical_record(role, is_owner) is expected
