from __future__ import annotations

from typing import Any

import pytest

from backoffice.domain.models import AuthzState, EmbeddedRef, IdRef, Permission, Role
from backoffice.services.normalizer import (
    extract_id,
    normalize_assignments,
    normalize_permissions,
    normalize_roles,
    normalize_users,
    resolve_role,
    to_ref,
    unwrap_collection,
)


@pytest.mark.parametrize(
    ("ref", "expected"),
    [
        ("u1", "u1"),
        ({"_id": "u1", "email": "a@b.c"}, "u1"),
        ({"id": "u2"}, "u2"),
        (IdRef(id="u3"), "u3"),
        (None, ""),
        ({}, ""),
        (42, ""),
    ],
)
def test_extract_id_accepts_both_reference_shapes(ref: Any, expected: str) -> None:
    assert extract_id(ref) == expected


def test_to_ref_tags_reference_shape() -> None:
    bare = to_ref("r1")
    embedded = to_ref({"_id": "r1", "name": "Manager"})
    assert isinstance(bare, IdRef)
    assert bare.kind == "id"
    assert isinstance(embedded, EmbeddedRef)
    assert embedded.kind == "embedded"
    assert embedded.id == "r1"
    assert embedded.value["name"] == "Manager"


def test_unwrap_collection_handles_every_payload_shape() -> None:
    items = [{"_id": "r1"}]
    assert unwrap_collection(items, "roles") == items
    assert unwrap_collection({"roles": items}, "roles") == items
    assert unwrap_collection({"data": items}, "roles") == items
    assert unwrap_collection({"roles": {"_id": "r1"}}, "roles") == [{"_id": "r1"}]
    assert unwrap_collection({"_id": "r9", "name": "solo"}, "roles") == [{"_id": "r9", "name": "solo"}]
    assert unwrap_collection({}, "roles") == []
    assert unwrap_collection(None, "roles") == []
    assert unwrap_collection("unexpected", "roles") == []
    assert unwrap_collection({"roles": "nope"}, "roles") == []


def test_wrapped_user_roles_are_normalized_to_canonical_ids() -> None:
    payload = {"userRoles": [{"_id": "a1", "userId": {"_id": "u1"}, "roleId": "r1"}]}

    assignments, embedded = normalize_assignments(payload)

    assert len(assignments) == 1
    assert assignments[0].user_id == "u1"
    assert assignments[0].role_id == "r1"
    assert assignments[0].id == "a1"
    assert assignments[0].assigned_by == ""
    assert embedded == {}


def test_assignments_with_unresolvable_references_are_dropped() -> None:
    payload = [
        {"userId": "u1"},
        {"roleId": "r1"},
        "garbage",
        {"userId": "u2", "roleId": {"_id": "r2"}, "assignedBy": {"_id": "root", "email": "root@x"}},
    ]

    assignments, _ = normalize_assignments(payload)

    assert [item.pair for item in assignments] == [("u2", "r2")]
    assert assignments[0].assigned_by == "root"


def test_embedded_roles_land_in_side_table() -> None:
    payload = [
        {
            "userId": "u1",
            "roleId": {
                "_id": "r7",
                "name": "Auditor",
                "description": "read only",
                "permissions": [{"_id": "p9", "name": "view_audit"}],
            },
        }
    ]

    assignments, embedded = normalize_assignments(payload)
    state = AuthzState(user_role_assignments=tuple(assignments), embedded_roles=embedded)

    assert assignments[0].role_id == "r7"
    role = resolve_role(state, "r7")
    assert role is not None
    assert role.name == "Auditor"
    assert [item.name for item in role.permissions] == ["view_audit"]


def test_resolve_role_prefers_local_roles_and_returns_none_when_unknown() -> None:
    local = Role(id="r1", name="Manager")
    state = AuthzState(roles=(local,), embedded_roles={"r1": Role(id="r1", name="Stale")})

    assert resolve_role(state, "r1") == local
    assert resolve_role(state, {"_id": "r1"}) == local
    assert resolve_role(state, "missing") is None
    assert resolve_role(state, None) is None


def test_resolve_role_synthesizes_from_embedded_body() -> None:
    state = AuthzState()

    role = resolve_role(state, {"_id": "r5", "name": "Teller", "permissions": [{"_id": "p1", "name": "view_accounts"}]})

    assert role is not None
    assert role.id == "r5"
    assert role.permissions[0].name == "view_accounts"


def test_permissions_accept_wrapped_shape() -> None:
    permissions = normalize_permissions({"permission": [{"_id": "p1", "name": "view_customers"}, {"_id": "p2"}]})

    assert permissions == [Permission(id="p1", name="view_customers")]


def test_role_permission_ids_resolve_against_known_permissions() -> None:
    known = [Permission(id="p1", name="view_customers")]
    payload = {"roles": [{"_id": "r1", "name": "Manager", "permissions": ["p1", "p-unknown", {"_id": "p2", "name": "edit_accounts"}]}]}

    roles = normalize_roles(payload, known)

    assert len(roles) == 1
    assert [item.name for item in roles[0].permissions] == ["view_customers", "edit_accounts"]


def test_users_are_normalized_from_every_shape() -> None:
    bare = normalize_users([{"_id": "u1", "fullName": "Ada Obi", "email": "ada@bank.test"}])
    wrapped = normalize_users({"users": [{"_id": "u2", "firstName": "Kofi", "lastName": "", "staffId": "S-7"}]})
    unexpected = normalize_users("nope")

    assert [(item.id, item.full_name, item.email) for item in bare] == [("u1", "Ada Obi", "ada@bank.test")]
    assert [(item.id, item.full_name, item.staff_id) for item in wrapped] == [("u2", "Kofi", "S-7")]
    assert unexpected == []
