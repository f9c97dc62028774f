from datetime import timedelta

from labyrinth.models import Users
from labyrinth.routers.auth import FORGOT_PASSWORD_MESSAGE, utcnow


def _user(factory, email):
    db = factory()
    try:
        return db.query(Users).filter(Users.email == email).first()
    finally:
        db.close()


def test_register_login_and_me(client, auth_headers):
    headers = auth_headers()
    resp = client.get("/auth/me", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["email"] == "ada@example.com"


def test_register_duplicate_email(client):
    body = {"name": "Ada", "email": "ada@example.com", "password": "s3cret-pass"}
    assert client.post("/auth/register", json=body).status_code == 201
    resp = client.post("/auth/register", json=body)
    assert resp.status_code == 409


def test_login_rejects_bad_password(client, auth_headers):
    auth_headers()
    resp = client.post("/auth/login", json={"email": "ada@example.com", "password": "wrong-pass"})
    assert resp.status_code == 401


def test_login_rejects_oauth_only_account(client, db_session_factory):
    db = db_session_factory()
    db.add(Users(name="Oauth", email="oauth@example.com", hashed_password=None))
    db.commit()
    db.close()

    resp = client.post("/auth/login", json={"email": "oauth@example.com", "password": "anything"})
    assert resp.status_code == 401


def test_me_requires_token(client):
    assert client.get("/auth/me").status_code == 401


def test_forgot_password_requires_email(client):
    resp = client.post("/api/auth/forgot-password", json={})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Email is required"


def test_forgot_password_same_answer_for_unknown_and_known(client, auth_headers, mailer, db_session_factory):
    auth_headers()

    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    known = client.post("/api/auth/forgot-password", json={"email": "ada@example.com"})

    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json() == {"message": FORGOT_PASSWORD_MESSAGE}
    assert [m["to"] for m in mailer.sent] == ["ada@example.com"]

    user = _user(db_session_factory, "ada@example.com")
    assert len(user.reset_token) == 64
    assert user.reset_token in mailer.sent[0]["html"]
    assert user.reset_token_expiry <= utcnow() + timedelta(hours=1)


def test_reset_password_flow(client, auth_headers, db_session_factory):
    auth_headers()
    client.post("/api/auth/forgot-password", json={"email": "ada@example.com"})
    token = _user(db_session_factory, "ada@example.com").reset_token

    resp = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new-pass"})
    assert resp.status_code == 200

    login = client.post("/auth/login", json={"email": "ada@example.com", "password": "brand-new-pass"})
    assert login.status_code == 200

    # single use
    again = client.post("/api/auth/reset-password", json={"token": token, "password": "another-pass"})
    assert again.status_code == 400
    assert _user(db_session_factory, "ada@example.com").reset_token is None


def test_reset_password_rejects_expired_token(client, auth_headers, db_session_factory):
    auth_headers()
    client.post("/api/auth/forgot-password", json={"email": "ada@example.com"})

    db = db_session_factory()
    user = db.query(Users).filter(Users.email == "ada@example.com").first()
    token = user.reset_token
    user.reset_token_expiry = utcnow() - timedelta(minutes=1)
    db.commit()
    db.close()

    resp = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new-pass"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired reset token"


def test_reset_password_missing_fields(client):
    resp = client.post("/api/auth/reset-password", json={"token": "abc"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing required fields"


def test_session_cookie_authenticates(client, auth_headers):
    auth_headers()
    assert client.get("/auth/me").json()["email"] == "ada@example.com"

    client.cookies.clear()
    assert client.get("/auth/me").status_code == 401
