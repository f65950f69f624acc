import uuid

import pytest


@pytest.fixture
def drafts_url(group):
    return f"/v1/groups/{group['id']}/drafts"


@pytest.fixture
def make_draft(client, drafts_url, alice, bob):
    """Factory creating a manual draft (Bob by default) shared by Alice and Bob."""

    def _make(author=None, **fields):
        author = author or bob
        payload = {
            "title": "Museum tickets",
            "amount_cents": 3000,
            "paid_by": author["id"],
            "participants": [alice["id"], bob["id"]],
            **fields,
        }
        response = client.post(drafts_url, json=payload, headers=author["headers"])
        assert response.status_code == 201, response.text
        return response.json()

    return _make


class TestDraftListing:
    def test_no_pending_drafts_is_empty(self, client, drafts_url, alice):
        response = client.get(f"{drafts_url}?status=pending_review", headers=alice["headers"])
        assert response.status_code == 200
        assert response.json() == {
            "data": [],
            "pagination": {"cursor": None, "has_more": False, "total": 0},
        }

    def test_status_filter(self, client, drafts_url, make_draft, bob):
        kept = make_draft()
        rejected = make_draft(title="Boat tour")
        client.post(
            f"{drafts_url}/{rejected['id']}/review", json={"action": "reject"}, headers=bob["headers"]
        )
        pending = client.get(f"{drafts_url}?status=pending_review", headers=bob["headers"]).json()
        assert [d["id"] for d in pending["data"]] == [kept["id"]]
        everything = client.get(drafts_url, headers=bob["headers"]).json()
        assert everything["pagination"]["total"] == 2

    def test_unknown_status_filter(self, client, drafts_url, alice):
        response = client.get(f"{drafts_url}?status=archived", headers=alice["headers"])
        assert response.status_code == 400


class TestDraftCreation:
    def test_manual_draft(self, make_draft, bob):
        draft = make_draft()
        assert draft["status"] == "pending_review"
        assert draft["source"] == "manual"
        assert draft["created_by"] == bob["id"]
        assert draft["created_by_user"]["name"] == "Bob"
        assert draft["validation_warnings"] == []
        assert draft["expense_id"] is None

    def test_warnings_are_recorded(self, make_draft, carol):
        draft = make_draft(paid_by=carol["id"])
        assert "Payer is not among the participants" in draft["validation_warnings"]

    def test_participants_must_be_members(self, client, drafts_url, bob, outsider):
        response = client.post(
            drafts_url,
            json={
                "title": "Sneaky",
                "amount_cents": 100,
                "paid_by": bob["id"],
                "participants": [bob["id"], outsider["id"]],
            },
            headers=bob["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PARTICIPANTS"

    def test_get_unknown_draft(self, client, drafts_url, alice):
        response = client.get(f"{drafts_url}/{uuid.uuid4()}", headers=alice["headers"])
        assert response.status_code == 404
        assert response.json()["code"] == "DRAFT_NOT_FOUND"


class TestParse:
    def test_parse_creates_llm_draft(self, client, drafts_url, alice, bob):
        response = client.post(
            f"{drafts_url}/parse", json={"text": "Lunch $42.10 with Bob"}, headers=alice["headers"]
        )
        assert response.status_code == 201, response.text
        draft = response.json()
        assert draft["source"] == "llm_parsed"
        assert draft["amount_cents"] == 4210
        assert draft["paid_by"] == alice["id"]
        assert draft["participants"] == [alice["id"], bob["id"]]
        assert draft["llm_metadata"]["original_text"] == "Lunch $42.10 with Bob"
        assert draft["llm_metadata"]["confidence"] == 0.8

    def test_parse_without_amount(self, client, drafts_url, alice):
        response = client.post(
            f"{drafts_url}/parse", json={"text": "Lunch with Bob"}, headers=alice["headers"]
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_parse_text_length_limit(self, client, drafts_url, alice):
        response = client.post(
            f"{drafts_url}/parse", json={"text": "x" * 2001}, headers=alice["headers"]
        )
        assert response.status_code == 400


class TestReview:
    def test_approve_creates_expense(self, client, group, drafts_url, make_draft, alice, bob):
        draft = make_draft(amount_cents=3001)
        response = client.post(
            f"{drafts_url}/{draft['id']}/review",
            json={"action": "approve", "reason": "looks right"},
            headers=bob["headers"],
        )
        assert response.status_code == 200, response.text
        reviewed = response.json()
        assert reviewed["status"] == "approved"
        assert reviewed["review_reason"] == "looks right"

        expense = client.get(
            f"/v1/expenses/{reviewed['expense_id']}", headers=alice["headers"]
        ).json()["data"]
        assert expense["description"] == "Approved from draft: Museum tickets"
        assert expense["currency_code"] == group["currency_code"]
        assert expense["paid_by"] == bob["id"]
        assert {s["user_id"]: s["amount_cents"] for s in expense["splits"]} == {
            alice["id"]: 1501,
            bob["id"]: 1500,
        }

    def test_approve_with_custom_shares(self, client, drafts_url, make_draft, alice, bob):
        draft = make_draft(
            split_type="share",
            splits=[{"user_id": alice["id"], "shares": 1}, {"user_id": bob["id"], "shares": 2}],
        )
        reviewed = client.post(
            f"{drafts_url}/{draft['id']}/review", json={"action": "approve"}, headers=bob["headers"]
        ).json()
        expense = client.get(
            f"/v1/expenses/{reviewed['expense_id']}", headers=bob["headers"]
        ).json()["data"]
        assert {s["user_id"]: s["amount_cents"] for s in expense["splits"]} == {
            alice["id"]: 1000,
            bob["id"]: 2000,
        }

    def test_resolved_draft_is_terminal(self, client, drafts_url, make_draft, bob):
        draft = make_draft()
        url = f"{drafts_url}/{draft['id']}"
        assert client.post(f"{url}/review", json={"action": "reject"}, headers=bob["headers"]).status_code == 200
        again = client.post(f"{url}/review", json={"action": "approve"}, headers=bob["headers"])
        assert again.status_code == 400
        assert again.json() == {
            "code": "INVALID_DRAFT_STATUS",
            "message": "Draft is not pending review",
        }
        edit = client.put(url, json={"title": "Changed"}, headers=bob["headers"])
        assert edit.status_code == 400
        assert edit.json()["code"] == "INVALID_DRAFT_STATUS"
        assert client.get(url, headers=bob["headers"]).json()["status"] == "rejected"

    def test_status_checked_before_permissions(self, client, drafts_url, make_draft, bob, carol):
        draft = make_draft()
        url = f"{drafts_url}/{draft['id']}"
        client.post(f"{url}/review", json={"action": "approve"}, headers=bob["headers"])
        review = client.post(f"{url}/review", json={"action": "reject"}, headers=carol["headers"])
        assert review.status_code == 400
        assert review.json()["code"] == "INVALID_DRAFT_STATUS"
        edit = client.put(url, json={"title": "Mine now"}, headers=carol["headers"])
        assert edit.status_code == 400

    def test_only_creator_or_admin_reviews(self, client, drafts_url, make_draft, alice, carol):
        draft = make_draft()
        denied = client.post(
            f"{drafts_url}/{draft['id']}/review", json={"action": "reject"}, headers=carol["headers"]
        )
        assert denied.status_code == 403
        assert denied.json()["code"] == "INSUFFICIENT_PERMISSIONS"
        allowed = client.post(
            f"{drafts_url}/{draft['id']}/review", json={"action": "reject"}, headers=alice["headers"]
        )
        assert allowed.status_code == 200

    def test_unknown_action(self, client, drafts_url, make_draft, bob):
        draft = make_draft()
        response = client.post(
            f"{drafts_url}/{draft['id']}/review", json={"action": "archive"}, headers=bob["headers"]
        )
        assert response.status_code == 400

    def test_approve_with_broken_splits(self, client, drafts_url, make_draft, alice, bob):
        draft = make_draft(
            split_type="amount",
            splits=[
                {"user_id": alice["id"], "amount_cents": 1000},
                {"user_id": bob["id"], "amount_cents": 1000},
            ],
        )
        assert draft["validation_warnings"]
        response = client.post(
            f"{drafts_url}/{draft['id']}/review", json={"action": "approve"}, headers=bob["headers"]
        )
        assert response.status_code == 400
        assert client.get(f"{drafts_url}/{draft['id']}", headers=bob["headers"]).json()["status"] == "pending_review"


class TestEditAndDelete:
    def test_edit_recomputes_warnings(self, client, drafts_url, make_draft, bob, carol):
        draft = make_draft()
        response = client.put(
            f"{drafts_url}/{draft['id']}",
            json={"paid_by": carol["id"], "amount_cents": 4000},
            headers=bob["headers"],
        )
        assert response.status_code == 200, response.text
        updated = response.json()
        assert updated["amount_cents"] == 4000
        assert "Payer is not among the participants" in updated["validation_warnings"]

    def test_other_member_cannot_edit(self, client, drafts_url, make_draft, carol):
        draft = make_draft()
        response = client.put(
            f"{drafts_url}/{draft['id']}", json={"title": "Mine now"}, headers=carol["headers"]
        )
        assert response.status_code == 403

    def test_delete(self, client, drafts_url, make_draft, bob):
        draft = make_draft()
        assert client.delete(f"{drafts_url}/{draft['id']}", headers=bob["headers"]).status_code == 204
        assert client.get(f"{drafts_url}/{draft['id']}", headers=bob["headers"]).status_code == 404


class TestValidate:
    def payload(self, alice, bob, **fields):
        return {
            "title": "Museum tickets",
            "amount_cents": 3000,
            "paid_by": bob["id"],
            "participants": [alice["id"], bob["id"]],
            **fields,
        }

    def test_valid_draft_is_not_saved(self, client, drafts_url, alice, bob):
        response = client.post(
            f"{drafts_url}/validate", json=self.payload(alice, bob), headers=bob["headers"]
        )
        assert response.status_code == 200, response.text
        assert response.json() == {"is_valid": True, "errors": [], "warnings": []}
        listing = client.get(drafts_url, headers=bob["headers"]).json()
        assert listing["pagination"]["total"] == 0

    def test_broken_splits_are_errors(self, client, drafts_url, alice, bob, carol):
        payload = self.payload(
            alice,
            bob,
            paid_by=carol["id"],
            split_type="amount",
            splits=[
                {"user_id": alice["id"], "amount_cents": 1000},
                {"user_id": bob["id"], "amount_cents": 1000},
            ],
        )
        body = client.post(f"{drafts_url}/validate", json=payload, headers=bob["headers"]).json()
        assert body["is_valid"] is False
        assert body["errors"] == ["Split amounts (2000) don't match expense total (3000)"]
        assert body["warnings"] == ["Payer is not among the participants"]

    def test_outsiders_are_errors(self, client, drafts_url, alice, bob, outsider):
        payload = self.payload(alice, bob, participants=[bob["id"], outsider["id"]])
        body = client.post(f"{drafts_url}/validate", json=payload, headers=bob["headers"]).json()
        assert body["is_valid"] is False
        assert body["errors"] == [
            f"Some participants are not members of this group: {outsider['id']}"
        ]

    def test_members_only(self, client, drafts_url, alice, bob, outsider):
        response = client.post(
            f"{drafts_url}/validate", json=self.payload(alice, bob), headers=outsider["headers"]
        )
        assert response.status_code == 403

    def test_amount_above_maximum(self, client, drafts_url, alice, bob):
        response = client.post(
            f"{drafts_url}/validate",
            json=self.payload(alice, bob, amount_cents=10**20),
            headers=bob["headers"],
        )
        assert response.status_code == 400
        assert "amount_cents" in response.json()["details"]
