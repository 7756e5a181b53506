"""
Registration, login, profile and token handling over HTTP.
"""

import pytest


def register(client, student_id="2021001", nickname="alice", password="secret"):
    return client.post("/api/auth/register", json={
        "studentId": student_id,
        "nickname": nickname,
        "password": password,
    })


class TestRegister:

    def test_register(self, client, db):
        response = register(client)
        assert response.status_code == 201

        user = db.users.find_one({"studentId": "2021001"})
        assert user["nickname"] == "alice"
        assert user["passwordHash"] != "secret"
        assert user["isAdmin"] is False
        assert user["reputation"] == {"good": 0, "neutral": 0, "bad": 0}

    def test_duplicate_student_id(self, client):
        register(client)
        response = register(client, nickname="impostor")
        assert response.status_code == 409
        assert "message" in response.get_json()

    @pytest.mark.parametrize("missing", ["studentId", "nickname", "password"])
    def test_required_fields(self, client, missing):
        body = {"studentId": "1", "nickname": "n", "password": "p"}
        body[missing] = ""
        response = client.post("/api/auth/register", json=body)
        assert response.status_code == 400


class TestLogin:

    def test_login_returns_token(self, client):
        register(client)
        response = client.post("/api/auth/login", json={"studentId": "2021001", "password": "secret"})
        assert response.status_code == 200

        body = response.get_json()
        assert body["nickname"] == "alice"
        assert body["isAdmin"] is False
        assert body["accessToken"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['accessToken']}"})
        assert me.status_code == 200
        assert me.get_json()["studentId"] == "2021001"
        assert "passwordHash" not in me.get_json()

    def test_unknown_user(self, client):
        response = client.post("/api/auth/login", json={"studentId": "nobody", "password": "x"})
        assert response.status_code == 404

    def test_wrong_password(self, client):
        register(client)
        response = client.post("/api/auth/login", json={"studentId": "2021001", "password": "wrong"})
        assert response.status_code == 401


class TestTokens:

    def test_missing_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.get_json() == {"message": "No token provided!"}

    def test_invalid_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert "message" in response.get_json()


class TestProfile:

    def test_update_nickname(self, client, db, seller, auth_headers):
        response = client.put("/api/auth/me", json={"nickname": "alicia"}, headers=auth_headers(seller))
        assert response.status_code == 200
        assert db.users.find_one({"_id": seller})["nickname"] == "alicia"

    def test_password_change_requires_current_password(self, client, seller, auth_headers):
        response = client.put(
            "/api/auth/me",
            json={"password": "new-secret", "currentPassword": "wrong"},
            headers=auth_headers(seller),
        )
        assert response.status_code == 401

        response = client.put(
            "/api/auth/me",
            json={"password": "new-secret", "currentPassword": "secret"},
            headers=auth_headers(seller),
        )
        assert response.status_code == 200

        login = client.post("/api/auth/login", json={"studentId": "2021001", "password": "new-secret"})
        assert login.status_code == 200

    def test_public_profile(self, client, seller):
        response = client.get(f"/api/users/{seller}")
        assert response.status_code == 200

        body = response.get_json()
        assert body["nickname"] == "alice"
        assert body["reputation"] == {"good": 0, "neutral": 0, "bad": 0}
        assert "passwordHash" not in body
        assert "studentId" not in body

    def test_public_profile_invalid_id(self, client):
        assert client.get("/api/users/not-an-id").status_code == 400
