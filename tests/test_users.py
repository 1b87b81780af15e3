import requests

from gebeya.routes import user as user_routes


def test_update_profile_ignores_empty_fields(client, make_user):
    user = make_user(name="Original Name")
    response = client.put(
        "/api/user/update",
        json={"name": "", "location": "Addis Ababa", "phone": "+251911223344", "bio": "Vintage gear"},
        headers=user["headers"],
    )
    assert response.status_code == 200
    body = response.json()["user"]
    assert body["name"] == "Original Name"
    assert body["location"] == "Addis Ababa"
    assert body["phone"] == "+251911223344"


def test_update_profile_rejects_bad_phone(client, make_user):
    user = make_user()
    response = client.put("/api/user/update", json={"phone": "call me"}, headers=user["headers"])
    assert response.status_code == 400


def test_refresh_without_linked_account(client, make_user):
    user = make_user()
    assert client.get("/api/user/refresh", headers=user["headers"]).status_code == 404


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")

    def json(self):
        return self.payload


def test_refresh_pulls_google_profile(client, db, make_user, monkeypatch):
    user = make_user(auth_id="google-42")
    db["account"].insert_one({"auth_id": "google-42", "provider_id": "google", "access_token": "ya29.token"})
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append(headers)
        return FakeResponse({"name": "Refreshed Name", "email": "New@Gebeya.et", "picture": "https://img/p.png"})

    monkeypatch.setattr(user_routes.requests, "get", fake_get)
    response = client.get("/api/user/refresh", headers=user["headers"])
    assert response.status_code == 200
    assert calls[0]["Authorization"] == "Bearer ya29.token"
    refreshed = response.json()["user"]
    assert refreshed["name"] == "Refreshed Name"
    assert refreshed["email"] == "new@gebeya.et"
    assert refreshed["image"] == "https://img/p.png"


def test_refresh_without_access_token(client, db, make_user):
    user = make_user(auth_id="google-43")
    db["account"].insert_one({"auth_id": "google-43", "provider_id": "google"})
    assert client.get("/api/user/refresh", headers=user["headers"]).status_code == 400
