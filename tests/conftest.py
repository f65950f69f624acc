import uuid

import pytest
from fastapi.testclient import TestClient

from splitbook.core.config import Settings
from splitbook.main import create_app


def auth_headers(user_id: str) -> dict:
    return {"X-Test-User-ID": user_id}


@pytest.fixture
def settings(tmp_path):
    """Test settings on an isolated temporary database."""
    return Settings(
        environment="test",
        data_dir=tmp_path,
        db_path=tmp_path / "splitbook-test.sqlite3",
    )


@pytest.fixture
def app(settings):
    return create_app(settings_override=settings)


@pytest.fixture
def client(app):
    # unhandled errors must come back as 500 responses, not be re-raised
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def make_user(client):
    """Factory registering a profile; returns its id, email, name and auth headers."""

    def _make(name: str = "User"):
        user_id = str(uuid.uuid4())
        email = f"{name.lower()}-{user_id[:8]}@example.com"
        headers = auth_headers(user_id)
        response = client.post(
            "/v1/users",
            json={"id": user_id, "email": email, "name": name},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return {"id": user_id, "email": email, "name": name, "headers": headers}

    return _make


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def carol(make_user):
    return make_user("Carol")


@pytest.fixture
def outsider(make_user):
    """A registered user who belongs to no group."""
    return make_user("Mallory")


@pytest.fixture
def group(client, alice, bob, carol):
    """USD group administered by Alice with Bob and Carol as members."""
    response = client.post(
        "/v1/groups", json={"name": "Lisbon trip"}, headers=alice["headers"]
    )
    assert response.status_code == 201, response.text
    group = response.json()
    for member in (bob, carol):
        invite = client.post(
            f"/v1/groups/{group['id']}/invite",
            json={"email": member["email"]},
            headers=alice["headers"],
        )
        assert invite.status_code == 200, invite.text
    return group


@pytest.fixture
def create_expense(client, group, alice):
    """Factory posting an expense to the shared group (Alice pays by default)."""

    def _create(amount_cents: int = 3000, headers=None, **fields):
        payload = {
            "title": fields.pop("title", "Dinner"),
            "amount_cents": amount_cents,
            "paid_by": fields.pop("paid_by", alice["id"]),
            **fields,
        }
        return client.post(
            f"/v1/groups/{group['id']}/expenses",
            json=payload,
            headers=headers or alice["headers"],
        )

    return _create
