import pytest
from starlette.websockets import WebSocketDisconnect

from backend.app.models.notification import Notification
from backend.app.services.notifications import ConnectionRegistry, NotificationDispatcher


def _send(db_session, dispatcher, receiver_id, title, kind="USER"):
    return dispatcher.send(db_session, receiver_id=receiver_id, receiver_role=kind, title=title, message=f"{title} body")


def test_send_persists_and_pushes(db_session, recording_connection):
    registry = ConnectionRegistry()
    dispatcher = NotificationDispatcher(registry)
    first, second = recording_connection(), recording_connection()
    registry.register("USER", 1, first)
    registry.register("USER", 1, second)
    registry.register("INSTITUTE", 1, recording_connection())

    n = _send(db_session, dispatcher, 1, "Hello")

    assert n is not None and n.id is not None and n.is_read is False
    assert first.titles() == ["Hello"]
    assert second.titles() == ["Hello"]
    assert len(registry) == 3


def test_push_failure_is_not_fatal(db_session, recording_connection):
    registry = ConnectionRegistry()
    dispatcher = NotificationDispatcher(registry)
    broken, healthy = recording_connection(fail=True), recording_connection()
    registry.register("USER", 2, broken)
    registry.register("USER", 2, healthy)

    n = _send(db_session, dispatcher, 2, "Still stored")

    assert n is not None
    assert healthy.titles() == ["Still stored"]
    assert db_session.query(Notification).count() == 1


def test_unregister_stops_delivery(db_session, recording_connection):
    registry = ConnectionRegistry()
    dispatcher = NotificationDispatcher(registry)
    conn = recording_connection()
    registry.register("USER", 3, conn)
    registry.unregister("USER", 3, conn)

    _send(db_session, dispatcher, 3, "Offline")
    assert conn.events == []
    assert len(registry) == 0


def test_flush_unread_oldest_first(db_session):
    dispatcher = NotificationDispatcher(ConnectionRegistry())
    for title in ("one", "two", "three"):
        _send(db_session, dispatcher, 4, title)

    payloads = dispatcher.flush_unread(db_session, "USER", 4)
    assert [p["title"] for p in payloads] == ["one", "two", "three"]
    assert dispatcher.flush_unread(db_session, "USER", 4) == []


def test_notification_api(client, make_account, db_session, dispatcher):
    user = make_account("DOCTOR")
    other = make_account("NURSE")
    for title in ("a", "b", "c"):
        _send(db_session, dispatcher, user["id"], title)
    foreign = _send(db_session, dispatcher, other["id"], "not yours")

    r = client.get("/notifications", headers=user["headers"])
    assert r.status_code == 200, r.text
    assert [n["title"] for n in r.json()["notifications"]] == ["c", "b", "a"]
    assert client.get("/notifications/unread-count", headers=user["headers"]).json()["unread_count"] == 3

    first_id = r.json()["notifications"][-1]["id"]
    r = client.patch(f"/notifications/{first_id}/read", headers=user["headers"])
    assert r.json()["notification"]["is_read"] is True
    assert client.patch(f"/notifications/{foreign.id}/read", headers=user["headers"]).status_code == 403
    assert client.patch("/notifications/9999/read", headers=user["headers"]).status_code == 404

    r = client.patch("/notifications/read-all", headers=user["headers"])
    assert r.json()["updated"] == 2
    assert client.get("/notifications/unread-count", headers=user["headers"]).json()["unread_count"] == 0
    assert client.get("/notifications/unread-count", headers=other["headers"]).json()["unread_count"] == 1


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=garbage"):
            pass
    assert exc.value.code == 4001

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == 4001


def test_websocket_flushes_backlog_then_pushes(client, make_account, db_session, dispatcher):
    user = make_account("DOCTOR")
    _send(db_session, dispatcher, user["id"], "queued 1")
    _send(db_session, dispatcher, user["id"], "queued 2")

    with client.websocket_connect(f"/ws?token={user['token']}") as ws:
        backlog = [ws.receive_json(), ws.receive_json()]
        assert [m["event"] for m in backlog] == ["notification", "notification"]
        assert [m["data"]["title"] for m in backlog] == ["queued 1", "queued 2"]

        ws.send_text("ping")
        assert ws.receive_json() == {"event": "pong", "data": {}}

        _send(db_session, dispatcher, user["id"], "live")
        pushed = ws.receive_json()
        assert pushed["event"] == "notification"
        assert pushed["data"]["title"] == "live"

    db_session.expire_all()
    unread = [
        n.title
        for n in db_session.query(Notification).filter(
            Notification.receiver_id == user["id"], Notification.is_read.is_(False)
        )
    ]
    assert unread == ["live"]
