import uuid

import pytest

from tradieapp.errors import Forbidden, NotFound
from tradieapp.models.models import Client, OrganizationMember
from tradieapp.services.authorization import (
    Capability,
    authorize,
    has_capability,
    load_for_user,
    parse_id,
)


def membership(role="employee", status="active", **flags) -> OrganizationMember:
    fields = {c.value: False for c in Capability}
    fields.update(flags)
    return OrganizationMember(role=role, status=status, **fields)


@pytest.mark.parametrize("role", ["owner", "admin"])
@pytest.mark.parametrize("capability", list(Capability))
def test_owner_and_admin_hold_every_capability(role, capability):
    assert has_capability(membership(role), capability) is True


@pytest.mark.parametrize("role", ["employee", "subcontractor"])
@pytest.mark.parametrize("capability", list(Capability))
def test_other_roles_follow_their_flags(role, capability):
    assert has_capability(membership(role), capability) is False
    assert has_capability(membership(role, **{capability.value: True}), capability) is True


@pytest.mark.parametrize("status", ["suspended", "invited"])
def test_inactive_membership_grants_nothing(status):
    assert has_capability(membership("owner", status=status), Capability.VIEW_FINANCIALS) is False
    assert has_capability(None, Capability.VIEW_FINANCIALS) is False


def test_outsider_sees_not_found(session, world):
    with pytest.raises(NotFound):
        authorize(session, world.user_ids["erin"], world.acme_id)
    with pytest.raises(NotFound):
        authorize(session, world.user_ids["erin"], world.acme_id, Capability.CREATE_INVOICES)


def test_suspended_member_sees_not_found_despite_flags(session, world):
    with pytest.raises(NotFound):
        authorize(session, world.user_ids["dave"], world.acme_id, Capability.CREATE_INVOICES)


def test_member_without_flag_is_forbidden(session, world):
    with pytest.raises(Forbidden) as exc:
        authorize(session, world.user_ids["bob"], world.acme_id, Capability.CREATE_INVOICES)
    assert "can_create_invoices" in exc.value.message


@pytest.mark.parametrize("name", ["alice", "adam", "carol"])
def test_allowed_members(session, world, name):
    member = authorize(session, world.user_ids[name], world.acme_id, Capability.CREATE_INVOICES)
    assert member.id == world.member_ids[name]


def test_foreign_and_missing_rows_are_indistinguishable(session, world):
    with pytest.raises(NotFound) as foreign:
        load_for_user(session, Client, world.rival_client_id, world.user_ids["alice"], label="Client")
    with pytest.raises(NotFound) as missing:
        load_for_user(session, Client, uuid.uuid4(), world.user_ids["alice"], label="Client")
    assert foreign.value.message == missing.value.message == "Client not found"


def test_load_for_user_returns_row_for_member(session, world):
    row = load_for_user(session, Client, str(world.acme_client_id), world.user_ids["bob"], label="Client")
    assert row.id == world.acme_client_id


def test_malformed_id_is_not_found():
    with pytest.raises(NotFound):
        parse_id("123", "Quote")
