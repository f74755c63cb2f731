import pytest


def test_list_my_organizations(client, auth):
    resp = client.get("/organizations", headers=auth("alice"))
    assert resp.status_code == 200
    assert [(o["name"], o["role"]) for o in resp.json()] == [("Acme Plumbing", "owner")]
    assert client.get("/organizations", headers=auth("dave")).json() == []


def test_members_are_tenant_scoped(client, world, auth):
    resp = client.get(f"/organizations/{world.acme_id}/members", headers=auth("bob"))
    assert resp.status_code == 200
    assert len(resp.json()) == 5
    assert client.get(f"/organizations/{world.acme_id}/members", headers=auth("erin")).status_code == 404
    assert client.get(f"/organizations/members/{world.member_ids['bob']}", headers=auth("erin")).status_code == 404


def test_owner_can_grant_capabilities(client, world, auth):
    url = f"/organizations/members/{world.member_ids['bob']}"
    resp = client.patch(url, json={"can_view_financials": True}, headers=auth("alice"))
    assert resp.status_code == 200
    assert resp.json()["can_view_financials"] is True
    assert resp.json()["can_create_invoices"] is False
    assert resp.json()["role"] == "employee"


@pytest.mark.parametrize("name", ["bob", "carol"])
def test_employees_cannot_manage_members(client, world, auth, name):
    url = f"/organizations/members/{world.member_ids['bob']}"
    resp = client.patch(url, json={"can_create_invoices": True}, headers=auth(name))
    assert resp.status_code == 403


def test_owner_row_cannot_be_changed(client, world, auth):
    owner = world.member_ids["alice"]
    assert client.patch(f"/organizations/members/{owner}", json={"role": "employee"}, headers=auth("adam")).status_code == 403
    resp = client.post(f"/organizations/members/{owner}/suspend", json={"action": "suspend"}, headers=auth("adam"))
    assert resp.status_code == 403
    assert resp.json()["error"] == "Cannot suspend organization owner"


def test_role_cannot_be_promoted_to_owner(client, world, auth):
    resp = client.patch(f"/organizations/members/{world.member_ids['bob']}", json={"role": "owner"}, headers=auth("alice"))
    assert resp.status_code == 400


def test_suspension_revokes_access(client, world, auth):
    url = f"/organizations/members/{world.member_ids['carol']}/suspend"
    resp = client.post(url, json={"action": "suspend"}, headers=auth("adam"))
    assert resp.json()["status"] == "suspended"
    assert client.get(f"/clients/{world.acme_client_id}", headers=auth("carol")).status_code == 404

    resp = client.post(url, json={"action": "unsuspend"}, headers=auth("adam"))
    assert resp.json()["status"] == "active"
    assert client.get(f"/clients/{world.acme_client_id}", headers=auth("carol")).status_code == 200


def test_invalid_suspend_action_is_400(client, world, auth):
    url = f"/organizations/members/{world.member_ids['bob']}/suspend"
    assert client.post(url, json={"action": "fire"}, headers=auth("alice")).status_code == 400


def test_clients(client, world, auth):
    body = {"organization_id": str(world.acme_id), "is_company": True, "company_name": "Harbour Cafe"}
    assert client.post("/clients", json=body, headers=auth("bob")).status_code == 403
    resp = client.post("/clients", json=body, headers=auth("alice"))
    assert resp.status_code == 201
    assert resp.json()["display_name"] == "Harbour Cafe"

    listed = client.get("/clients", params={"organization_id": str(world.acme_id), "q": "harbour"}, headers=auth("bob"))
    assert [c["company_name"] for c in listed.json()] == ["Harbour Cafe"]
    assert client.get(f"/clients/{world.rival_client_id}", headers=auth("alice")).status_code == 404


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


def test_metrics_are_exposed(client):
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert 'handler="/health"' in resp.text


@pytest.mark.parametrize("body", [{"role": None}, {"can_view_financials": None}])
def test_member_patch_rejects_null(client, world, auth, body):
    resp = client.patch(f"/organizations/members/{world.member_ids['bob']}", json=body, headers=auth("alice"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_request"


def test_audit_log_lists_membership_changes(client, world, auth):
    bob = world.member_ids["bob"]
    client.patch(f"/organizations/members/{bob}", json={"can_view_financials": True}, headers=auth("alice"))
    client.post(f"/organizations/members/{bob}/suspend", json={"action": "suspend"}, headers=auth("adam"))

    resp = client.get(
        f"/organizations/{world.acme_id}/audit-logs",
        params={"entity_type": "membership", "entity_id": str(bob)},
        headers=auth("adam"),
    )
    assert resp.status_code == 200
    entries = resp.json()
    assert sorted(e["action"] for e in entries) == ["SUSPEND", "UPDATE"]
    update = next(e for e in entries if e["action"] == "UPDATE")
    assert update["changes_json"] == {"can_view_financials": {"before": False, "after": True}}
    assert update["actor_id"] == str(world.user_ids["alice"])


def test_audit_log_is_for_managers_of_the_organization(client, world, auth):
    url = f"/organizations/{world.acme_id}/audit-logs"
    assert client.get(url, headers=auth("bob")).status_code == 403
    assert client.get(url, headers=auth("erin")).status_code == 404
    assert client.get(f"/organizations/{world.rival_id}/audit-logs", headers=auth("erin")).json() == []
