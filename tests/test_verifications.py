from backend.app.models.notification import Notification


def _submit_user(client, headers, **overrides):
    data = {"full_name": "Dr. Ayesha Khan", "license_number": "PMC-12345"}
    files = {
        "government_id": ("cnic.png", b"\x89PNG\r\n\x1a\n" + b"1" * 16, "image/png"),
    }
    data["degree_certificate_url"] = "https://docs.example.com/degree.pdf"
    data.update(overrides)
    return client.post("/verifications/users", data=data, files=files, headers=headers)


def test_user_verification_review_flow(client, make_account, db_session):
    doctor = make_account("DOCTOR")
    admin = make_account("ADMIN")

    r = _submit_user(client, doctor["headers"])
    assert r.status_code == 201, r.text
    v = r.json()["verification"]
    assert v["status"] == "PENDING"
    assert v["government_id"].startswith("verifications/users/")
    assert v["degree_certificate"] == "https://docs.example.com/degree.pdf"

    # One open request at a time.
    assert _submit_user(client, doctor["headers"]).status_code == 409

    pending = client.get("/verifications/users", params={"status": "pending"}, headers=admin["headers"]).json()
    assert [p["id"] for p in pending["verifications"]] == [v["id"]]

    r = client.patch(f"/verifications/users/{v['id']}/reject", json={"note": "Blurry scan"}, headers=admin["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["verification"]["status"] == "REJECTED"
    # A reviewed request cannot be reviewed again.
    assert client.patch(f"/verifications/users/{v['id']}/approve", headers=admin["headers"]).status_code == 409

    notes = db_session.query(Notification).filter(Notification.receiver_role == "USER").all()
    assert [n.title for n in notes] == ["Verification Rejected"]
    assert "Blurry scan" in notes[0].message

    # Rejected requests allow a resubmission.
    again = _submit_user(client, doctor["headers"])
    assert again.status_code == 201, again.text
    r = client.patch(f"/verifications/users/{again.json()['verification']['id']}/approve", headers=admin["headers"])
    assert r.json()["verification"]["status"] == "APPROVED"

    mine = client.get("/verifications/users/me", headers=doctor["headers"]).json()["verifications"]
    assert [m["status"] for m in mine] == ["APPROVED", "REJECTED"]
    completion = client.get("/profile/completion", headers=doctor["headers"]).json()["completion"]
    assert completion["verification_status"] == "APPROVED"


def test_user_verification_requires_both_documents(client, make_account):
    doctor = make_account("DOCTOR")
    r = client.post(
        "/verifications/users",
        data={"degree_certificate_url": "https://docs.example.com/degree.pdf"},
        headers=doctor["headers"],
    )
    assert r.status_code == 400, r.text
    r = _submit_user(client, doctor["headers"], degree_certificate_url="")
    assert r.status_code == 400, r.text


def test_verification_access_rules(client, make_account):
    doctor = make_account("DOCTOR")
    inst = make_account("HOSPITAL")
    v_id = _submit_user(client, doctor["headers"]).json()["verification"]["id"]

    assert client.get("/verifications/users", headers=doctor["headers"]).status_code == 403
    assert client.patch(f"/verifications/users/{v_id}/approve", headers=inst["headers"]).status_code == 403
    assert client.post("/verifications/users", data={}, headers=inst["headers"]).status_code == 403


def test_admin_deletes_user_verification(client, make_account):
    doctor = make_account("NURSE")
    admin = make_account("ADMIN")
    v_id = _submit_user(client, doctor["headers"]).json()["verification"]["id"]
    assert client.delete(f"/verifications/users/{v_id}", headers=admin["headers"]).status_code == 200
    assert client.get(f"/verifications/users/{v_id}", headers=admin["headers"]).status_code == 404


def _submit_institute(client, headers):
    return client.post(
        "/verifications/institutes",
        data={
            "telephone": "+92 42 111 000",
            "email": "Admin@CityHospital.pk",
            "admin_name": "Imran Ali",
            "admin_phone": "+92 300 0000000",
        },
        files={"registration_certificate": ("reg.pdf", b"%PDF-1.4 reg", "application/pdf")},
        headers=headers,
    )


def test_institute_verification_flow(client, make_account, db_session):
    inst = make_account("HOSPITAL")
    other = make_account("CLINIC")
    admin = make_account("ADMIN")

    r = _submit_institute(client, inst["headers"])
    assert r.status_code == 201, r.text
    v = r.json()["verification"]
    assert v["email"] == "admin@cityhospital.pk"
    assert _submit_institute(client, inst["headers"]).status_code == 409

    assert client.get(f"/verifications/institutes/{inst['id']}", headers=other["headers"]).status_code == 403
    status = client.get(f"/verifications/institutes/{inst['id']}", headers=inst["headers"]).json()
    assert status["verification"]["status"] == "PENDING"

    r = client.patch(f"/verifications/institutes/{v['id']}/approve", headers=admin["headers"])
    assert r.status_code == 200, r.text

    public = client.get(f"/institutes/{inst['id']}").json()["institute"]
    assert public["verification_status"] == "APPROVED"
    notes = db_session.query(Notification).filter(
        Notification.receiver_role == "INSTITUTE", Notification.receiver_id == inst["id"]
    ).all()
    assert [n.title for n in notes] == ["Verification Approved"]
