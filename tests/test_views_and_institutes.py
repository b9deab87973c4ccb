from datetime import datetime, timedelta

from backend.app.models.view import View
from backend.app.services.view_tracker import count_views, record_view
from backend.app.utils.roles import Capability, Principal

T0 = datetime(2030, 5, 1, 12, 0)


def test_identified_viewer_deduplicated_within_window(db_session):
    viewer = Principal(id=7, role="DOCTOR", capability=Capability.USER)

    assert record_view(db_session, "job", 1, viewer, now=T0) is True
    assert record_view(db_session, "job", 1, viewer, now=T0 + timedelta(minutes=5)) is False
    assert record_view(db_session, "job", 1, viewer, now=T0 + timedelta(minutes=11)) is True
    assert count_views(db_session, "job", [1]) == 2


def test_anonymous_views_always_counted(db_session):
    for minute in range(3):
        assert record_view(db_session, "job", 2, None, now=T0 + timedelta(minutes=minute))
    assert count_views(db_session, "job", [2]) == 3
    assert db_session.query(View).filter(View.viewer_id.is_(None)).count() == 3


def test_dedup_is_per_subject_and_viewer_kind(db_session):
    user = Principal(id=3, role="NURSE", capability=Capability.USER)
    inst = Principal(id=3, role="HOSPITAL", capability=Capability.INSTITUTE)

    assert record_view(db_session, "job", 5, user, now=T0)
    assert record_view(db_session, "job", 5, inst, now=T0)
    assert record_view(db_session, "institute", 5, user, now=T0)
    assert count_views(db_session, "job", [5]) == 2


def test_job_detail_records_views(client, make_account, fund, post_job):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)
    job_id = post_job(inst["headers"])["job"]["id"]
    doctor = make_account("DOCTOR")

    client.get(f"/jobs/{job_id}")
    client.get(f"/jobs/{job_id}")
    client.get(f"/jobs/{job_id}", headers=doctor["headers"])
    r = client.get(f"/jobs/{job_id}", headers=doctor["headers"])
    assert r.status_code == 200
    assert "match" in r.json()["job"]

    stats = client.get(f"/institutes/{inst['id']}/stats", headers=inst["headers"]).json()["stats"]
    assert stats["total_job_views"] == 3


def test_institute_profile_and_stats(client, make_account, fund, post_job, complete_profile):
    inst = make_account("HOSPITAL", city="Lahore")
    fund(inst["id"], 100)
    job_id = post_job(inst["headers"])["job"]["id"]

    r = client.put("/institutes/me", json={"about": "Tertiary care hospital", "phone": "+92 42 000"}, headers=inst["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["institute"]["phone"] == "+92 42 000"

    public = client.get(f"/institutes/{inst['id']}").json()["institute"]
    assert public["about"] == "Tertiary care hospital"
    assert public["active_jobs"] == 1
    assert "email" not in public

    # The owner viewing their own page is not counted.
    client.get(f"/institutes/{inst['id']}", headers=inst["headers"])

    doctor = make_account("DOCTOR")
    complete_profile(doctor["id"])
    client.get(f"/jobs/{job_id}", headers=doctor["headers"])
    client.post(
        f"/applications/jobs/{job_id}/apply",
        data={"resume_url": "https://cdn.example.com/cv.pdf"},
        headers=doctor["headers"],
    )

    stats = client.get(f"/institutes/{inst['id']}/stats", headers=inst["headers"]).json()["stats"]
    assert stats["total_jobs"] == 1
    assert stats["active_jobs"] == 1
    assert stats["total_institute_profile_views"] == 1
    assert stats["total_job_views"] == 1
    assert stats["total_applications"] == 1
    assert stats["average_response_rate"] == 100.0
    assert stats["conversion_rate"] == 0.0


def test_stats_restricted_to_owner(client, make_account):
    a = make_account("HOSPITAL")
    b = make_account("PHARMACY")
    assert client.get(f"/institutes/{a['id']}/stats", headers=b["headers"]).status_code == 403
    assert client.get(f"/institutes/{a['id']}/stats").status_code == 401


def test_institute_search(client, make_account):
    make_account("HOSPITAL", name="Shifa International", city="Islamabad")
    make_account("LAB", name="Chughtai Lab", city="Lahore")

    r = client.get("/institutes", params={"q": "shifa"})
    assert [i["name"] for i in r.json()["institutes"]] == ["Shifa International"]
    r = client.get("/institutes", params={"role": "lab"})
    assert [i["name"] for i in r.json()["institutes"]] == ["Chughtai Lab"]
    r = client.get("/institutes", params={"city": "lahore"})
    assert r.json()["pagination"]["total"] == 1
