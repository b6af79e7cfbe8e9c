from __future__ import annotations

from app.models.company import Company
from app.routers.auth import router as auth_router
from app.services.passwords import hash_password, verify_password
from tests.fixtures_data import build_client, build_session

SIGNUP = {"name": "Initech Delivery", "email": "Owner@Initech.test", "password": "s3cret-pass"}


def _setup():
    db = build_session()
    return db, build_client(db, auth_router)


def test_signup_issues_credentials():
    db, client = _setup()

    response = client.post("/auth/signup", json=SIGNUP)

    assert response.status_code == 201
    company = response.json()["company"]
    assert company["email"] == "owner@initech.test"
    assert company["api_key"].startswith("tk_")
    assert len(company["company_code"]) == 6
    assert company["plan"] == "free"

    stored = db.query(Company).one()
    assert stored.webhook_secret.startswith("whsec_")
    assert stored.password_hash != SIGNUP["password"]
    assert verify_password(SIGNUP["password"], stored.password_hash)


def test_signup_rejects_duplicate_email_and_short_password():
    _db, client = _setup()
    client.post("/auth/signup", json=SIGNUP)

    duplicate = client.post("/auth/signup", json={**SIGNUP, "email": "owner@initech.test"})
    short = client.post("/auth/signup", json={**SIGNUP, "email": "b@initech.test", "password": "short"})

    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "An account with this email already exists"
    assert short.status_code == 400
    assert short.json()["success"] is False


def test_login_returns_api_key_and_hides_failures():
    _db, client = _setup()
    api_key = client.post("/auth/signup", json=SIGNUP).json()["company"]["api_key"]

    ok = client.post("/auth/login", json={"email": "owner@initech.test", "password": SIGNUP["password"]})
    wrong = client.post("/auth/login", json={"email": "owner@initech.test", "password": "nope-nope"})
    unknown = client.post("/auth/login", json={"email": "ghost@initech.test", "password": "whatever1"})

    assert ok.json()["api_key"] == api_key
    assert wrong.status_code == 401
    assert wrong.json()["error"] == unknown.json()["error"] == "Invalid email or password"


def test_password_hashing_handles_long_and_malformed_input():
    long_password = "x" * 100
    hashed = hash_password(long_password)

    assert verify_password(long_password, hashed)
    assert not verify_password("x" * 100, "not-a-bcrypt-hash")
    assert not verify_password("", hashed)
