from backend.app.models.job import Job
from backend.app.models.user import User
from backend.app.services.matching import experience_fits, match_breakdown


def test_completion_tracks_missing_sections(client, make_account):
    nurse = make_account("NURSE")
    h = nurse["headers"]

    report = client.get("/profile/completion", headers=h).json()["completion"]
    assert report["complete"] is False
    assert set(report["missing"]) == {"education", "skills", "speciality", "experience"}

    r = client.post("/profile/educations", json={"degree": "BSc Nursing", "institution": "AKU"}, headers=h)
    assert r.status_code == 201, r.text
    r = client.post("/profile/experiences", json={"title": "Staff Nurse", "organization": "Mayo"}, headers=h)
    assert r.status_code == 201, r.text
    assert client.put("/profile/skills", json={"items": ["ICU", "icu", " Triage "]}, headers=h).json()["skills"] == ["ICU", "Triage"]
    # A profile-level speciality is enough.
    client.put("/profile", json={"speciality": "Critical Care"}, headers=h)

    report = client.get("/profile/completion", headers=h).json()["completion"]
    assert report["complete"] is True
    assert report["missing"] == []


def test_education_dates_and_ownership(client, make_account):
    a = make_account("DOCTOR")
    b = make_account("DOCTOR")
    r = client.post(
        "/profile/educations",
        json={"degree": "MBBS", "institution": "KEMU", "start_date": "2015-09-01", "end_date": "2014-06-01"},
        headers=a["headers"],
    )
    assert r.status_code == 400, r.text

    entry = client.post("/profile/educations", json={"degree": "MBBS", "institution": "KEMU"}, headers=a["headers"]).json()
    entry_id = entry["education"]["id"]
    assert client.delete(f"/profile/educations/{entry_id}", headers=b["headers"]).status_code == 404
    assert client.delete(f"/profile/educations/{entry_id}", headers=a["headers"]).status_code == 200


def test_profile_is_user_only(client, make_account):
    inst = make_account("HOSPITAL")
    assert client.get("/profile", headers=inst["headers"]).status_code == 403


def test_match_breakdown_weights():
    job = Job(role="Doctor", speciality="Cardiology", sub_speciality="Interventional", experience_level="experienced")
    user = User(role="DOCTOR", speciality="cardiology", sub_speciality="interventional", experience_years=6)
    assert match_breakdown(job=job, user=user)["score"] == 100

    user.experience_years = 3
    user.role = "NURSE"
    result = match_breakdown(job=job, user=user)
    assert result["score"] == 55
    assert result["role"] is False and result["experience"] is False

    assert experience_fits("fresher", 1)
    assert not experience_fits("intermediate", 5)
    assert not experience_fits(None, 3)


def test_recommended_jobs(client, make_account, fund, post_job, complete_profile):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 200)
    cardio = post_job(inst["headers"], title="Cardiologist")["job"]["id"]
    post_job(inst["headers"], title="Pharmacist", role="Other", speciality="Pharmacy", experience_level=None)
    doctor = make_account("DOCTOR")
    complete_profile(doctor["id"], speciality="Cardiology")

    jobs = client.get("/jobs/recommended", headers=doctor["headers"]).json()["jobs"]
    assert [j["id"] for j in jobs] == [cardio]
    assert jobs[0]["match_score"] == 50


def test_saved_jobs(client, make_account, fund, post_job):
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)
    job_id = post_job(inst["headers"])["job"]["id"]
    user = make_account("STUDENT")
    h = user["headers"]

    assert client.post(f"/saved-jobs/{job_id}", headers=h).status_code == 201
    assert client.post(f"/saved-jobs/{job_id}", headers=h).status_code == 409
    assert client.post("/saved-jobs/9999", headers=h).status_code == 404

    saved = client.get("/saved-jobs", headers=h).json()["saved_jobs"]
    assert [s["job"]["id"] for s in saved] == [job_id]

    assert client.delete(f"/saved-jobs/{job_id}", headers=h).status_code == 200
    assert client.delete(f"/saved-jobs/{job_id}", headers=h).status_code == 404
    assert client.get("/saved-jobs", headers=h).json()["saved_jobs"] == []
    assert client.post(f"/saved-jobs/{job_id}", headers=inst["headers"]).status_code == 403
