import uuid


def roles(group_body):
    return {m["user_id"]: m["role"] for m in group_body["members"]}


class TestGroupLifecycle:
    def test_creator_becomes_admin(self, client, group, alice, bob, carol):
        response = client.get(f"/v1/groups/{group['id']}", headers=bob["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["currency_code"] == "USD"
        assert roles(body) == {alice["id"]: "admin", bob["id"]: "member", carol["id"]: "member"}
        assert all(m["user"]["name"] for m in body["members"])

    def test_create_requires_profile(self, client):
        response = client.post(
            "/v1/groups", json={"name": "Ghosts"}, headers={"X-Test-User-ID": str(uuid.uuid4())}
        )
        assert response.status_code == 404

    def test_list_is_paginated(self, client, alice):
        for name in ("One", "Two", "Three"):
            client.post("/v1/groups", json={"name": name}, headers=alice["headers"])
        first = client.get("/v1/groups?limit=2", headers=alice["headers"]).json()
        assert len(first["data"]) == 2
        assert first["pagination"]["has_more"] is True
        assert first["pagination"]["total"] == 3
        second = client.get(
            f"/v1/groups?limit=2&cursor={first['pagination']['cursor']}",
            headers=alice["headers"],
        ).json()
        assert len(second["data"]) == 1
        assert second["pagination"] == {"cursor": None, "has_more": False, "total": 3}
        ids = {g["id"] for g in first["data"]} | {g["id"] for g in second["data"]}
        assert len(ids) == 3

    def test_outsider_is_denied(self, client, group, outsider):
        response = client.get(f"/v1/groups/{group['id']}", headers=outsider["headers"])
        assert response.status_code == 403
        assert response.json()["code"] == "GROUP_ACCESS_DENIED"

    def test_unknown_group(self, client, alice):
        response = client.get(f"/v1/groups/{uuid.uuid4()}", headers=alice["headers"])
        assert response.status_code == 404

    def test_only_admin_updates(self, client, group, alice, bob):
        denied = client.patch(
            f"/v1/groups/{group['id']}", json={"name": "Mine"}, headers=bob["headers"]
        )
        assert denied.status_code == 403
        response = client.patch(
            f"/v1/groups/{group['id']}",
            json={"name": "Porto trip", "currency_code": "eur"},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Porto trip"
        assert response.json()["currency_code"] == "EUR"

    def test_delete_cascades(self, client, group, alice, create_expense):
        expense_id = create_expense().json()["data"]["id"]
        assert client.delete(f"/v1/groups/{group['id']}", headers=alice["headers"]).status_code == 204
        assert client.get(f"/v1/groups/{group['id']}", headers=alice["headers"]).status_code == 404
        assert client.get(f"/v1/expenses/{expense_id}", headers=alice["headers"]).status_code == 404


class TestMembership:
    def test_invite_unknown_email(self, client, group, alice):
        response = client.post(
            f"/v1/groups/{group['id']}/invite",
            json={"email": "nobody@example.com"},
            headers=alice["headers"],
        )
        assert response.status_code == 404

    def test_invite_existing_member(self, client, group, alice, bob):
        response = client.post(
            f"/v1/groups/{group['id']}/invite",
            json={"email": bob["email"]},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        assert response.json()["message"] == "User is already a member of this group"

    def test_member_cannot_invite(self, client, group, bob, outsider):
        response = client.post(
            f"/v1/groups/{group['id']}/invite",
            json={"email": outsider["email"]},
            headers=bob["headers"],
        )
        assert response.status_code == 403

    def test_member_leaves(self, client, group, bob):
        response = client.delete(
            f"/v1/groups/{group['id']}/members/{bob['id']}", headers=bob["headers"]
        )
        assert response.status_code == 204
        assert client.get(f"/v1/groups/{group['id']}", headers=bob["headers"]).status_code == 403

    def test_member_cannot_remove_others(self, client, group, bob, carol):
        response = client.delete(
            f"/v1/groups/{group['id']}/members/{carol['id']}", headers=bob["headers"]
        )
        assert response.status_code == 403

    def test_last_admin_cannot_leave_or_be_demoted(self, client, group, alice):
        leave = client.delete(
            f"/v1/groups/{group['id']}/members/{alice['id']}", headers=alice["headers"]
        )
        assert leave.status_code == 403
        demote = client.patch(
            f"/v1/groups/{group['id']}/members/{alice['id']}",
            json={"role": "member"},
            headers=alice["headers"],
        )
        assert demote.status_code == 403

    def test_promote_then_old_admin_may_leave(self, client, group, alice, bob):
        promote = client.patch(
            f"/v1/groups/{group['id']}/members/{bob['id']}",
            json={"role": "admin"},
            headers=alice["headers"],
        )
        assert promote.status_code == 200
        assert promote.json()["member"]["role"] == "admin"
        leave = client.delete(
            f"/v1/groups/{group['id']}/members/{alice['id']}", headers=alice["headers"]
        )
        assert leave.status_code == 204
