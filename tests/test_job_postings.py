from datetime import timedelta

from backend.app.models.credit import CreditHistory
from backend.app.models.job import Job
from backend.app.utils.dates import utcnow


def _expire(db_session, job_id: int, *, days_ago: int = 1) -> None:
    job = db_session.query(Job).filter(Job.id == job_id).one()
    job.status = "expired"
    job.deadline = utcnow() - timedelta(days=days_ago)
    db_session.commit()


def test_create_job_debits_credits(client, make_account, fund, post_job, db_session):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)

    data = post_job(inst["headers"])
    assert data["balance"] == 50
    assert data["job"]["status"] == "active"
    assert data["job"]["role"] == "Doctor"

    entry = db_session.query(CreditHistory).filter(CreditHistory.action == "JOB_CREATE").one()
    assert entry.job_id == data["job"]["id"]
    assert entry.amount == 50


def test_create_job_insufficient_credits_creates_nothing(client, make_account, fund, post_job, db_session):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 40)

    body = post_job(inst["headers"], expect=400)
    assert body["details"] == {"required": 50, "available": 40}
    assert db_session.query(Job).count() == 0
    assert client.get("/credits/me", headers=inst["headers"]).json()["account"]["balance"] == 40


def test_create_job_without_account(client, make_account, post_job):
    inst = make_account("CLINIC")
    body = post_job(inst["headers"], expect=400)
    assert body["error"] == "No credits account found for this institute"


def test_create_job_role_pricing(client, make_account, fund, post_job):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)
    assert post_job(inst["headers"], role="Student")["balance"] == 90
    assert post_job(inst["headers"], role="other")["balance"] == 60
    post_job(inst["headers"], role="Surgeon", expect=400)


def test_location_rule(client, make_account, fund, post_job):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 200)

    body = post_job(inst["headers"], work_location="Hybrid", city=None, expect=400)
    assert body["details"]["missing"] == ["city"]

    remote = post_job(inst["headers"], work_location="remote")["job"]
    assert remote["work_location"] == "Remote"
    assert remote["city"] is None and remote["country"] is None

    # Moving a remote job on-site needs a place again.
    r = client.put(f"/jobs/{remote['id']}", json={"work_location": "On-site"}, headers=inst["headers"])
    assert r.status_code == 400, r.text
    r = client.put(
        f"/jobs/{remote['id']}",
        json={"work_location": "On-site", "city": "Karachi", "country": "Pakistan"},
        headers=inst["headers"],
    )
    assert r.status_code == 200, r.text
    assert r.json()["job"]["city"] == "Karachi"


def test_deadline_must_be_future(client, make_account, fund, post_job):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)
    past = (utcnow() - timedelta(days=1)).isoformat()
    post_job(inst["headers"], deadline=past, expect=400)
    post_job(inst["headers"], deadline="next tuesday", expect=400)


def test_toggle_status(client, make_account, fund, post_job, db_session):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)
    job_id = post_job(inst["headers"])["job"]["id"]

    r = client.patch(f"/jobs/{job_id}/toggle-status", headers=inst["headers"])
    assert r.json()["job"]["status"] == "inactive"
    r = client.patch(f"/jobs/{job_id}/toggle-status", headers=inst["headers"])
    assert r.json()["job"]["status"] == "active"

    _expire(db_session, job_id)
    r = client.patch(f"/jobs/{job_id}/toggle-status", headers=inst["headers"])
    assert r.status_code == 400, r.text


def test_renew_expired_job(client, make_account, fund, post_job, db_session):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 60)
    job_id = post_job(inst["headers"])["job"]["id"]

    r = client.post(f"/jobs/{job_id}/renew", headers=inst["headers"])
    assert r.status_code == 400, r.text
    assert r.json()["error"] == "Job is not expired"

    _expire(db_session, job_id, days_ago=2)
    before = utcnow()
    r = client.post(f"/jobs/{job_id}/renew", headers=inst["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["balance"] == 0
    assert body["job"]["status"] == "active"
    assert body["job"]["renewed_at"] is not None

    db_session.expire_all()
    job = db_session.query(Job).filter(Job.id == job_id).one()
    assert job.deadline > before + timedelta(days=27)


def test_renew_without_credits_keeps_job_expired(client, make_account, fund, post_job, db_session):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 55)
    job_id = post_job(inst["headers"])["job"]["id"]
    _expire(db_session, job_id)

    r = client.post(f"/jobs/{job_id}/renew", headers=inst["headers"])
    assert r.status_code == 400, r.text
    assert r.json()["details"] == {"required": 10, "available": 5}
    db_session.expire_all()
    assert db_session.query(Job).filter(Job.id == job_id).one().status == "expired"


def test_student_job_renewal_is_cheaper(client, make_account, fund, post_job, db_session):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 15)
    job_id = post_job(inst["headers"], role="Student")["job"]["id"]
    _expire(db_session, job_id)
    r = client.post(f"/jobs/{job_id}/renew", headers=inst["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["balance"] == 0


def test_only_owner_can_modify(client, make_account, fund, post_job):
    owner = make_account("HOSPITAL")
    other = make_account("CLINIC")
    fund(owner["id"], 100)
    job_id = post_job(owner["headers"])["job"]["id"]

    assert client.put(f"/jobs/{job_id}", json={"title": "Changed"}, headers=other["headers"]).status_code == 403
    assert client.patch(f"/jobs/{job_id}/toggle-status", headers=other["headers"]).status_code == 403
    assert client.delete(f"/jobs/{job_id}", headers=other["headers"]).status_code == 403
    assert client.delete(f"/jobs/{job_id}", headers=owner["headers"]).status_code == 200
    assert client.get(f"/jobs/{job_id}").status_code == 404


def test_deleting_job_keeps_credit_history(client, make_account, fund, post_job, db_session):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)
    job_id = post_job(inst["headers"])["job"]["id"]

    assert client.delete(f"/jobs/{job_id}", headers=inst["headers"]).status_code == 200

    db_session.expire_all()
    entry = db_session.query(CreditHistory).filter(CreditHistory.action == "JOB_CREATE").one()
    assert entry.job_id == job_id
    assert entry.amount == 50
    assert entry.balance_after == 50


def test_public_listing_filters(client, make_account, fund, post_job):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 200)
    post_job(inst["headers"], title="Cardiologist")
    post_job(inst["headers"], title="Remote Radiologist", work_location="Remote", speciality="Radiology")
    inactive = post_job(inst["headers"], title="Night Nurse", role="Other")["job"]["id"]
    client.patch(f"/jobs/{inactive}/toggle-status", headers=inst["headers"])

    r = client.get("/jobs")
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 2

    r = client.get("/jobs", params={"location": "remote"})
    assert [j["title"] for j in r.json()["jobs"]] == ["Remote Radiologist"]

    r = client.get("/jobs", params={"q": "cardiologist"})
    assert [j["title"] for j in r.json()["jobs"]] == ["Cardiologist"]

    mine = client.get("/jobs/mine", headers=inst["headers"]).json()["jobs"]
    assert len(mine) == 3
    assert all(j["application_count"] == 0 for j in mine)


def test_admin_runs_sweep_endpoint(client, make_account):
    admin = make_account("ADMIN")
    inst = make_account("HOSPITAL")
    assert client.post("/jobs/expiry-sweep", headers=inst["headers"]).status_code == 403
    r = client.post("/jobs/expiry-sweep", headers=admin["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["result"]["expired"] == 0
