from __future__ import annotations

import pytest

from workdesk.domain.fields import (
    WRITABLE_FIELDS,
    EmptyUpdateError,
    filter_fields,
    filter_writable_fields,
    require_writable_fields,
)
from workdesk.domain.permissions import ResourceKind


def test_branch_update_drops_ownership_keys() -> None:
    body = {"name": "X", "tenant_id": "T2", "id": "evil"}
    assert filter_writable_fields(ResourceKind.BRANCH, body) == {"name": "X"}


def test_filtering_is_idempotent() -> None:
    body = {"name": "X", "phone": "555", "tenant_id": "T2", "created_at": "yesterday"}
    once = filter_writable_fields(ResourceKind.CLIENT, body)
    assert filter_writable_fields(ResourceKind.CLIENT, once) == once


def test_filtered_keys_are_always_writable() -> None:
    body = {"name": "X", "role": "super_admin", "password_hash": "x", "email": "a@b.c", "avatar": None}
    result = filter_writable_fields(ResourceKind.USER, body)
    assert set(result) <= set(WRITABLE_FIELDS[ResourceKind.USER])
    assert result == {"name": "X", "email": "a@b.c", "avatar": None}


def test_no_writable_field_exposes_ownership_or_role() -> None:
    protected = {"id", "tenant_id", "role", "password_hash", "created_at"}
    for kind, fields in WRITABLE_FIELDS.items():
        assert protected.isdisjoint(fields), kind


def test_empty_result_raises() -> None:
    with pytest.raises(EmptyUpdateError, match="no valid fields to update"):
        require_writable_fields(ResourceKind.CONTRACT, {"tenant_id": "T2", "client_id": "C9"})


def test_filter_fields_accepts_any_allow_list() -> None:
    assert filter_fields(("a",), {"a": 1, "b": 2}) == {"a": 1}
    assert filter_fields((), {"a": 1}) == {}
