from bson.objectid import ObjectId


def test_register_admin(client, db):
    body = {"name": "Root Admin", "email": "Root@Gebeya.et", "password": "admin-pass"}
    response = client.post("/api/admin/register", json=body)
    assert response.status_code == 200
    admin = response.json()["admin"]
    assert admin["role"] == "admin"
    assert admin["email"] == "root@gebeya.et"
    assert "password_hash" not in admin

    duplicate = client.post("/api/admin/register", json=body)
    assert duplicate.status_code == 400
    assert db["user"].count_documents({"email": "root@gebeya.et"}) == 1

    assert client.post("/api/admin/register", json={"name": "No Email"}).status_code == 400


def test_register_admin_requires_key_when_configured(client, settings):
    client.app.state.context.settings = settings.model_copy(update={"admin_registration_key": "letmein"})
    body = {"name": "Root Admin", "email": "root@gebeya.et", "password": "admin-pass"}

    assert client.post("/api/admin/register", json=body).status_code == 403
    wrong = client.post("/api/admin/register", json=body, headers={"X-Admin-Registration-Key": "nope"})
    assert wrong.status_code == 403
    ok = client.post("/api/admin/register", json=body, headers={"X-Admin-Registration-Key": "letmein"})
    assert ok.status_code == 200


def test_add_users(client, db, make_user):
    admin = make_user(role="admin")
    body = {"name": "Mod Person", "email": "mod@gebeya.et", "password": "pw", "role": "moderator", "location": "Adama"}

    response = client.post("/api/admin/add-users", json=body, headers=admin["headers"])
    assert response.status_code == 200
    user = response.json()["user"]
    assert (user["role"], user["location"], user["is_verified"]) == ("moderator", "Adama", True)

    before = db["user"].count_documents({})
    assert client.post("/api/admin/add-users", json=body, headers=admin["headers"]).status_code == 400
    assert db["user"].count_documents({}) == before

    promoted = {**body, "email": "boss@gebeya.et", "role": "admin"}
    assert client.post("/api/admin/add-users", json=promoted, headers=admin["headers"]).status_code == 400

    regular = make_user()
    assert client.post("/api/admin/add-users", json={**body, "email": "x@gebeya.et"}, headers=regular["headers"]).status_code == 403


def test_list_and_get_users(client, make_user):
    admin = make_user(role="admin", name="Admin Person")
    for i in range(3):
        make_user(name=f"Buyer {i}")
    make_user(role="moderator", name="Moderator Person")

    everyone = client.get("/api/admin", params={"limit": 2}, headers=admin["headers"]).json()
    assert everyone["totalUsers"] == 5
    assert everyone["totalPages"] == 3
    assert len(everyone["users"]) == 2
    assert all("password_hash" not in u for u in everyone["users"])

    buyers = client.get("/api/admin", params={"search": "buyer"}, headers=admin["headers"]).json()
    assert buyers["totalUsers"] == 3
    mods = client.get("/api/admin", params={"role": "moderator"}, headers=admin["headers"]).json()
    assert [u["name"] for u in mods["users"]] == ["Moderator Person"]

    fetched = client.get(f"/api/admin/{admin['id']}", headers=admin["headers"])
    assert fetched.json()["user"]["name"] == "Admin Person"
    assert client.get(f"/api/admin/{ObjectId()}", headers=admin["headers"]).status_code == 404


def test_delete_user(client, db, make_user):
    admin, target = make_user(role="admin"), make_user()
    assert client.delete(f"/api/admin/{target['id']}", headers=admin["headers"]).status_code == 200
    assert db["user"].count_documents({"_id": ObjectId(target["id"])}) == 0
    assert client.delete(f"/api/admin/{target['id']}", headers=admin["headers"]).status_code == 404


def test_ban_and_unban(client, make_user):
    admin, target = make_user(role="admin"), make_user()

    banned = client.patch(f"/api/admin/ban/{target['id']}", json={"ban": True}, headers=admin["headers"])
    assert banned.status_code == 200
    assert banned.json()["user"]["is_banned"] is True
    assert client.get("/api/user/me", headers=target["headers"]).status_code == 403

    client.patch(f"/api/admin/ban/{target['id']}", json={"ban": False}, headers=admin["headers"])
    assert client.get("/api/user/me", headers=target["headers"]).status_code == 200

    assert client.patch(f"/api/admin/ban/{admin['id']}", json={"ban": True}, headers=admin["headers"]).status_code == 400
    assert client.patch(f"/api/admin/ban/{ObjectId()}", json={"ban": True}, headers=admin["headers"]).status_code == 404
