import pytest


@pytest.fixture()
def thread(client, make_account, fund, post_job, complete_profile):
    """An applicant and the institute that owns the job they applied to."""
    inst = make_account("HOSPITAL")
    fund(inst["id"], 100)
    job_id = post_job(inst["headers"])["job"]["id"]
    doctor = make_account("DOCTOR")
    complete_profile(doctor["id"])
    app_id = client.post(
        f"/applications/jobs/{job_id}/apply",
        data={"resume_url": "https://cdn.example.com/cv.pdf"},
        headers=doctor["headers"],
    ).json()["application"]["id"]
    return {"institute": inst, "doctor": doctor, "application_id": app_id}


def _open(client, thread):
    return client.post(
        "/conversations",
        json={"application_id": thread["application_id"]},
        headers=thread["institute"]["headers"],
    )


def test_initiate_is_idempotent(client, thread, registry, recording_connection):
    conn = recording_connection()
    registry.register("USER", thread["doctor"]["id"], conn)

    first = _open(client, thread)
    assert first.status_code == 201, first.text
    assert first.json()["created"] is True
    second = _open(client, thread)
    assert second.status_code == 200, second.text
    assert second.json()["conversation"]["id"] == first.json()["conversation"]["id"]

    assert [e for e, _ in conn.events] == ["new_conversation"]


def test_only_owning_institute_can_initiate(client, thread, make_account):
    stranger = make_account("CLINIC")
    body = {"application_id": thread["application_id"]}
    assert client.post("/conversations", json=body, headers=stranger["headers"]).status_code == 403
    assert client.post("/conversations", json=body, headers=thread["doctor"]["headers"]).status_code == 403
    r = client.post("/conversations", json={"application_id": 9999}, headers=thread["institute"]["headers"])
    assert r.status_code == 404


def test_messages_unread_counts_and_read_receipts(client, thread, registry, recording_connection):
    conv_id = _open(client, thread).json()["conversation"]["id"]
    inst_h, doc_h = thread["institute"]["headers"], thread["doctor"]["headers"]
    doctor_conn, inst_conn = recording_connection(), recording_connection()
    registry.register("USER", thread["doctor"]["id"], doctor_conn)
    registry.register("INSTITUTE", thread["institute"]["id"], inst_conn)

    for text in ("Hello doctor", "When can you start?"):
        r = client.post(f"/conversations/{conv_id}/messages", data={"content": text}, headers=inst_h)
        assert r.status_code == 201, r.text
    assert [e for e, _ in doctor_conn.events] == ["new_message", "new_message"]

    assert client.get("/conversations/unread-count", headers=doc_h).json()["unread_count"] == 2
    assert client.get("/conversations/unread-count", headers=inst_h).json()["unread_count"] == 0

    listed = client.get("/conversations", headers=doc_h).json()["conversations"]
    assert listed[0]["last_message"]["content"] == "When can you start?"
    assert listed[0]["participant"]["kind"] == "INSTITUTE"
    assert listed[0]["unread_count"] == 2

    r = client.patch(f"/conversations/{conv_id}/read", headers=doc_h)
    assert r.json()["marked"] == 2
    assert inst_conn.events[-1] == ("messages_read", {"conversation_id": conv_id, "reader_id": thread["doctor"]["id"]})
    assert client.get("/conversations/unread-count", headers=doc_h).json()["unread_count"] == 0

    r = client.post(f"/conversations/{conv_id}/messages", data={"content": "Next Monday"}, headers=doc_h)
    assert r.status_code == 201
    assert client.get("/conversations/unread-count", headers=inst_h).json()["unread_count"] == 1


def test_message_pages_return_oldest_first(client, thread):
    conv_id = _open(client, thread).json()["conversation"]["id"]
    for i in range(5):
        client.post(f"/conversations/{conv_id}/messages", data={"content": f"m{i}"}, headers=thread["institute"]["headers"])

    page1 = client.get(f"/conversations/{conv_id}/messages", params={"limit": 2}, headers=thread["doctor"]["headers"]).json()
    assert [m["content"] for m in page1["messages"]] == ["m3", "m4"]
    assert page1["pagination"]["total"] == 5
    page2 = client.get(
        f"/conversations/{conv_id}/messages", params={"limit": 2, "page": 2}, headers=thread["doctor"]["headers"]
    ).json()
    assert [m["content"] for m in page2["messages"]] == ["m1", "m2"]


def test_empty_message_rejected(client, thread):
    conv_id = _open(client, thread).json()["conversation"]["id"]
    r = client.post(f"/conversations/{conv_id}/messages", data={"content": "   "}, headers=thread["doctor"]["headers"])
    assert r.status_code == 400, r.text


def test_outsiders_cannot_read_or_post(client, thread, make_account):
    conv_id = _open(client, thread).json()["conversation"]["id"]
    outsider = make_account("NURSE")
    assert client.get(f"/conversations/{conv_id}/messages", headers=outsider["headers"]).status_code == 403
    r = client.post(f"/conversations/{conv_id}/messages", data={"content": "hi"}, headers=outsider["headers"])
    assert r.status_code == 403
    assert client.get("/conversations/9999/messages", headers=outsider["headers"]).status_code == 404


def test_media_message(client, thread):
    conv_id = _open(client, thread).json()["conversation"]["id"]
    png = b"\x89PNG\r\n\x1a\n" + b"0" * 32
    r = client.post(
        f"/conversations/{conv_id}/messages",
        files={"file": ("scan.png", png, "image/png")},
        headers=thread["doctor"]["headers"],
    )
    assert r.status_code == 201, r.text
    message = r.json()["message"]
    assert message["media_type"] == "IMAGE"

    media = client.get(message["media_url"], headers=thread["institute"]["headers"])
    assert media.status_code == 200
    assert media.content == png

    r = client.post(
        f"/conversations/{conv_id}/messages",
        data={"media_type": "VIDEO"},
        files={"file": ("scan.png", png, "image/png")},
        headers=thread["doctor"]["headers"],
    )
    assert r.status_code == 400
