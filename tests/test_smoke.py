from conftest import auth


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_is_json(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert "error" in r.json


def test_login_and_me(client, world):
    # Anonymous is rejected
    r = client.get("/auth/me")
    assert r.status_code == 401

    r = client.post("/auth/login", json={"email": "pd@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "program_director"
    assert r.json["csrf_token"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "pd@example.com"
    assert r.json["memberships"][0]["program_id"] == world["program"]


def test_login_bad_password(client, world):
    r = client.post("/auth/login", json={"email": "pd@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials."


def test_session_mutation_requires_csrf(client, world):
    r = client.post("/auth/login", json={"email": "pd@example.com", "password": "pw"})
    csrf = r.json["csrf_token"]

    r = client.post("/api/surveys", json={"survey_type": "custom", "title": "No token"}, headers={"X-Org-Slug": "memorial", "X-Dept-Slug": "em"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]

    r = client.post(
        "/api/surveys",
        json={"survey_type": "custom", "title": "With token"},
        headers={"X-Org-Slug": "memorial", "X-Dept-Slug": "em", "X-CSRF-Token": csrf},
    )
    assert r.status_code == 201


def test_bearer_token_skips_csrf(client, world):
    r = client.post("/api/surveys", json={"survey_type": "custom", "title": "Token"}, headers=auth("pd"))
    assert r.status_code == 201


def test_token_create_and_revoke(client, world):
    r = client.post("/auth/tokens", json={"name": "ci"}, headers=auth("faculty", tenant=False))
    assert r.status_code == 201
    raw = r.json["token"]
    token_id = r.json["id"]

    r = client.get("/auth/me", headers={"Authorization": f"Bearer {raw}"})
    assert r.status_code == 200
    assert r.json["user"]["email"] == "fac@example.com"

    r = client.delete(f"/auth/tokens/{token_id}", headers={"Authorization": f"Bearer {raw}"})
    assert r.status_code == 200

    r = client.get("/auth/me", headers={"Authorization": f"Bearer {raw}"})
    assert r.status_code == 401
