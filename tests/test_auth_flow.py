def _signup(client, *, email: str, password: str, role: str, **extra):
    body = {"email": email, "password": password, "role": role, **extra}
    return client.post("/auth/signup", json=body)


def _login(client, *, email: str, password: str, role: str | None):
    body = {"email": email, "password": password}
    if role is not None:
        body["role"] = role
    return client.post("/auth/login", json=body)


def _auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_signup_doctor_success(client):
    r = _signup(client, email="doc@example.com", password="Testpass123!", role="doctor", first_name="Ayesha")
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["user"]["role"] == "DOCTOR"
    assert data["user"]["kind"] == "USER"
    assert isinstance(data.get("access_token"), str) and len(data["access_token"]) > 10


def test_signup_hospital_success(client):
    r = _signup(client, email="hosp@example.com", password="Testpass123!", role="HOSPITAL", name="City Hospital")
    assert r.status_code == 201, r.text
    assert r.json()["user"]["kind"] == "INSTITUTE"


def test_signup_institute_requires_name(client):
    r = _signup(client, email="lab@example.com", password="Testpass123!", role="LAB")
    assert r.status_code == 400, r.text


def test_signup_unknown_role_rejected(client):
    r = _signup(client, email="x@example.com", password="Testpass123!", role="recruiter")
    assert r.status_code == 400, r.text


def test_email_unique_across_account_kinds(client):
    assert _signup(client, email="shared@example.com", password="Testpass123!", role="NURSE").status_code == 201
    r = _signup(client, email="shared@example.com", password="Testpass123!", role="CLINIC", name="Shared Clinic")
    assert r.status_code == 400, r.text
    assert r.json()["success"] is False


def test_admin_signup_key_enforced(client, monkeypatch):
    from backend.app import config

    monkeypatch.setattr(config, "ADMIN_SIGNUP_KEY", "s3cret")
    r = _signup(client, email="admin@example.com", password="Testpass123!", role="ADMIN", admin_key="nope")
    assert r.status_code == 403, r.text
    r = _signup(client, email="admin@example.com", password="Testpass123!", role="ADMIN", admin_key="s3cret")
    assert r.status_code == 201, r.text
    assert r.json()["user"]["kind"] == "ADMIN"


def test_login_role_mismatch_fails(client):
    _signup(client, email="nurse2@example.com", password="Testpass123!", role="NURSE")
    r = _login(client, email="nurse2@example.com", password="Testpass123!", role="HOSPITAL")
    assert r.status_code == 403, r.text


def test_login_invalid_credentials_fails(client):
    _signup(client, email="hosp2@example.com", password="Testpass123!", role="HOSPITAL", name="Hosp Two")
    r = _login(client, email="hosp2@example.com", password="wrong", role="HOSPITAL")
    assert r.status_code == 401, r.text


def test_login_sets_cookie_and_me_reads_it(client):
    _signup(client, email="stud@example.com", password="Testpass123!", role="STUDENT")
    client.cookies.clear()
    r = _login(client, email="stud@example.com", password="Testpass123!", role=None)
    assert r.status_code == 200, r.text
    assert "access_token" in r.cookies

    me = client.get("/auth/me")
    assert me.status_code == 200, me.text
    assert me.json()["user"]["email"] == "stud@example.com"


def test_logout_endpoint_exists(client):
    r = client.post("/auth/logout")
    assert r.status_code == 200, r.text
    assert "message" in r.json()


def test_me_requires_token(client):
    client.cookies.clear()
    r = client.get("/auth/me")
    assert r.status_code == 401, r.text
    assert r.json()["success"] is False


def test_garbage_token_rejected(client):
    r = client.get("/auth/me", headers=_auth_headers("not-a-jwt"))
    assert r.status_code == 401, r.text


def test_user_cannot_create_job(client):
    r = _signup(client, email="doc3@example.com", password="Testpass123!", role="DOCTOR")
    token = r.json()["access_token"]
    client.cookies.clear()

    r = client.post("/jobs", json={"title": "Surgeon"}, headers=_auth_headers(token))
    assert r.status_code == 403, r.text
