import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from conftest import NOW, OTHER_ID, THIRD_ID, USER_ID, FakeConnection

from orkut.apis import calls as calls_api
from orkut.apis.calls import MissedCallScheduler, get_missed_call_scheduler
from orkut.libs.call_state import (
    InvalidTransition,
    call_duration,
    can_transition,
    ensure_transition,
    format_duration,
    generate_call_id,
)
from orkut.main import app

CALL_ID = f"call_audio_{USER_ID}_{OTHER_ID}_1736935200000"


class RecordingScheduler:
    def __init__(self):
        self.scheduled = []
        self.cancelled = []

    def schedule(self, call_id, timeout_seconds):
        self.scheduled.append((call_id, timeout_seconds))

    def cancel(self, call_id):
        self.cancelled.append(call_id)


@pytest.fixture
def scheduler(client):
    recording = RecordingScheduler()
    app.dependency_overrides[get_missed_call_scheduler] = lambda: recording
    return recording


def call_row(status="ringing", caller=OTHER_ID, receiver=USER_ID, **overrides):
    row = {
        "id": CALL_ID,
        "caller_id": caller,
        "receiver_id": receiver,
        "call_type": "audio",
        "status": status,
        "caller_info": {"id": caller, "name": "Bia"},
        "started_at": NOW,
        "answered_at": None,
        "ended_at": None,
        "duration_seconds": None,
    }
    row.update(overrides)
    return row


class TestCallState:
    def test_ringing_transitions(self):
        for target in ("connected", "declined", "missed", "ended"):
            assert can_transition("ringing", target)

    def test_connected_can_only_end(self):
        assert can_transition("connected", "ended")
        assert not can_transition("connected", "missed")
        assert not can_transition("connected", "declined")

    def test_terminal_states(self):
        for current in ("ended", "declined", "missed"):
            assert not can_transition(current, "connected")

    def test_ensure_transition_raises(self):
        with pytest.raises(InvalidTransition) as exc_info:
            ensure_transition("ended", "connected")
        assert exc_info.value.current == "ended"
        assert "ended" in str(exc_info.value)

    def test_unknown_status(self):
        assert not can_transition("ringing", "on_hold")

    def test_call_id_is_order_independent(self):
        a = generate_call_id("bbb", "aaa", "video", now_ms=42)
        b = generate_call_id("aaa", "bbb", "video", now_ms=42)
        assert a == b == "call_video_aaa_bbb_42"

    def test_duration(self):
        answered = NOW
        assert call_duration(answered, answered + timedelta(seconds=95)) == 95
        assert call_duration(None, NOW) == 0
        assert call_duration(answered, answered - timedelta(seconds=5)) == 0

    def test_format_duration(self):
        assert format_duration(0) == "00:00"
        assert format_duration(None) == "00:00"
        assert format_duration(95) == "01:35"
        assert format_duration(3600) == "60:00"


class TestStartCall:
    def test_cannot_call_self(self, client, scheduler):
        response = client.post("/api/calls", json={"receiver_id": USER_ID})
        assert response.status_code == 400
        assert response.json()["error"] == "self_call"

    def test_unknown_call_type(self, client, scheduler):
        response = client.post("/api/calls", json={"receiver_id": OTHER_ID, "call_type": "fax"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_unknown_receiver(self, client, db, scheduler):
        response = client.post("/api/calls", json={"receiver_id": OTHER_ID})
        assert response.status_code == 404
        assert response.json()["error"] == "user_not_found"

    def test_busy(self, client, db, scheduler):
        db.fetchrow.return_value = {"id": OTHER_ID, "display_name": "Bia", "username": "bia", "photo_url": None}
        db.fetchval.return_value = "call_other"

        response = client.post("/api/calls", json={"receiver_id": OTHER_ID})

        assert response.status_code == 409
        assert response.json()["error"] == "busy"
        assert response.json()["callId"] == "call_other"
        assert scheduler.scheduled == []

    def test_creates_ringing_call(self, client, db, scheduler, monkeypatch):
        monkeypatch.setenv("CALL_TIMEOUT_SECONDS", "45")
        receiver = {"id": OTHER_ID, "display_name": "Bia", "username": "bia", "photo_url": None}
        caller = {"id": USER_ID, "display_name": "Ana", "username": "ana", "photo_url": "https://img/ana.png"}
        db.fetchrow.side_effect = [
            receiver,
            caller,
            call_row(caller=USER_ID, receiver=OTHER_ID, call_type="video"),
        ]

        response = client.post(
            "/api/calls",
            json={"receiver_id": OTHER_ID, "call_type": "video", "offer": {"type": "offer", "sdp": "v=0"}},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ringing"

        insert = db.fetchrow.await_args_list[2].args
        call_id = insert[1]
        assert call_id.startswith(f"call_video_{USER_ID}_{OTHER_ID}_")
        assert insert[5] == {"id": USER_ID, "name": "Ana", "photo": "https://img/ana.png", "username": "ana"}

        notification = db.execute.await_args.args
        assert notification[1] == OTHER_ID
        assert notification[2] == "call"
        assert notification[3]["offer"] == {"type": "offer", "sdp": "v=0"}
        assert notification[3]["call_id"] == call_id

        assert scheduler.scheduled == [(call_id, 45)]


class TestCallTransitions:
    def test_not_found(self, client, db, scheduler):
        response = client.post(f"/api/calls/{CALL_ID}/accept")
        assert response.status_code == 404
        assert response.json()["error"] == "call_not_found"

    def test_non_participant(self, client, db, scheduler):
        db.fetchrow.return_value = call_row(caller=OTHER_ID, receiver=THIRD_ID)
        response = client.post(f"/api/calls/{CALL_ID}/end")
        assert response.status_code == 403

    def test_caller_cannot_accept(self, client, db, scheduler):
        db.fetchrow.return_value = call_row(caller=USER_ID, receiver=OTHER_ID)
        response = client.post(f"/api/calls/{CALL_ID}/accept")
        assert response.status_code == 403
        assert response.json()["message"] == "Only the receiver can accept a call"

    def test_accept(self, client, db, scheduler):
        db.fetchrow.side_effect = [call_row(), call_row(status="connected", answered_at=NOW)]

        response = client.post(f"/api/calls/{CALL_ID}/accept")

        assert response.status_code == 200
        assert response.json()["status"] == "connected"
        update = db.fetchrow.await_args_list[1].args
        assert "WHERE id = $3 AND status = $4" in update[0]
        assert update[1] == "connected"
        assert update[3:] == (CALL_ID, "ringing")
        assert scheduler.cancelled == [CALL_ID]

    def test_accept_ended_call(self, client, db, scheduler):
        db.fetchrow.return_value = call_row(status="ended")

        response = client.post(f"/api/calls/{CALL_ID}/accept")

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"
        assert response.json()["currentStatus"] == "ended"

    def test_concurrent_update(self, client, db, scheduler):
        db.fetchrow.side_effect = [call_row(), None]

        response = client.post(f"/api/calls/{CALL_ID}/decline")

        assert response.status_code == 409
        assert response.json()["error"] == "call_state_changed"
        assert scheduler.cancelled == []

    def test_decline(self, client, db, scheduler):
        db.fetchrow.side_effect = [call_row(), call_row(status="declined", ended_at=NOW)]
        response = client.post(f"/api/calls/{CALL_ID}/decline")
        assert response.json()["status"] == "declined"

    def test_end_measures_from_answer(self, client, db, scheduler):
        answered = datetime.now(timezone.utc) - timedelta(seconds=90)
        connected = call_row(status="connected", answered_at=answered)
        db.fetchrow.side_effect = [connected, {**connected, "status": "ended", "duration_seconds": 90}]

        response = client.post(f"/api/calls/{CALL_ID}/end")

        assert response.status_code == 200
        update = db.fetchrow.await_args_list[1].args
        assert update[1] == "ended"
        assert 89 <= update[3] <= 91
        assert update[4:] == (CALL_ID, "connected")
        assert response.json()["duration_display"].startswith("01:")

    def test_end_with_reported_duration(self, client, db, scheduler):
        connected = call_row(status="connected", answered_at=NOW)
        db.fetchrow.side_effect = [connected, {**connected, "status": "ended", "duration_seconds": 12}]

        response = client.post(f"/api/calls/{CALL_ID}/end", json={"duration_seconds": 12})

        assert db.fetchrow.await_args_list[1].args[3] == 12
        assert response.json()["duration_display"] == "00:12"

    def test_end_unanswered_call(self, client, db, scheduler):
        db.fetchrow.side_effect = [call_row(caller=USER_ID, receiver=OTHER_ID), call_row(status="ended")]

        response = client.post(f"/api/calls/{CALL_ID}/end")

        assert db.fetchrow.await_args_list[1].args[3] == 0
        assert response.json()["duration_display"] == "00:00"

    def test_missed(self, client, db, scheduler):
        db.fetchrow.side_effect = [call_row(), call_row(status="missed", ended_at=NOW)]
        response = client.post(f"/api/calls/{CALL_ID}/missed")
        assert response.json()["status"] == "missed"
        assert scheduler.cancelled == [CALL_ID]

    def test_connected_call_cannot_be_missed(self, client, db, scheduler):
        db.fetchrow.return_value = call_row(status="connected", answered_at=NOW)
        response = client.post(f"/api/calls/{CALL_ID}/missed")
        assert response.status_code == 409


class TestCallQueries:
    def test_get_call(self, client, db):
        db.fetchrow.return_value = call_row(status="ended", duration_seconds=125)

        body = client.get(f"/api/calls/{CALL_ID}").json()

        assert body["id"] == CALL_ID
        assert body["duration_display"] == "02:05"

    def test_history(self, client, db):
        db.fetch.return_value = [call_row(), call_row(status="missed")]

        response = client.get("/api/calls/history", params={"limit": 10})

        assert [c["status"] for c in response.json()] == ["ringing", "missed"]
        assert db.fetch.await_args.args[1:] == (USER_ID, 10)

    def test_sweep(self, client, db):
        db.fetch.return_value = [{"id": "a"}, {"id": "b"}]

        response = client.post("/api/calls/timeout/sweep", json={"timeout_seconds": 60})

        assert response.json() == {"success": True, "timeoutSeconds": 60, "updatedCount": 2}
        cutoff = db.fetch.await_args.args[1]
        assert datetime.now(timezone.utc) - cutoff >= timedelta(seconds=60)


class TestMissedCallScheduler:
    @pytest.mark.asyncio
    async def test_cancel_before_timeout(self):
        scheduler = MissedCallScheduler()
        scheduler.schedule("call-1", 60)
        scheduler.schedule("call-2", 60)
        scheduler.cancel("call-1")
        assert list(scheduler._handles) == ["call-2"]
        scheduler.cancel_all()
        assert scheduler._handles == {}

    @pytest.mark.asyncio
    async def test_expired_call_is_marked_missed(self, monkeypatch):
        conn = FakeConnection()
        conn.fetchval.return_value = "call-1"

        async def fake_connection():
            return conn

        monkeypatch.setattr(calls_api, "get_db_connection", fake_connection)
        scheduler = MissedCallScheduler()
        scheduler.schedule("call-1", 0.01)
        await asyncio.sleep(0.1)

        assert conn.fetchval.await_args.args[1] == "call-1"
        assert "status = 'ringing'" in conn.fetchval.await_args.args[0]
        conn.close.assert_awaited_once()
        assert scheduler._handles == {}
        assert scheduler._tasks == set()

    @pytest.mark.asyncio
    async def test_cancel_all_stops_running_expiry(self, monkeypatch):
        never = asyncio.Event()

        async def hanging_connection():
            await never.wait()

        monkeypatch.setattr(calls_api, "get_db_connection", hanging_connection)
        scheduler = MissedCallScheduler()
        scheduler.schedule("call-1", 0.01)
        await asyncio.sleep(0.05)

        (task,) = scheduler._tasks
        scheduler.cancel_all()
        await asyncio.sleep(0)

        assert task.cancelled()
        assert scheduler._tasks == set()

    @pytest.mark.asyncio
    async def test_expire_survives_database_errors(self, monkeypatch):
        async def broken_connection():
            raise RuntimeError("DATABASE_URL not set")

        monkeypatch.setattr(calls_api, "get_db_connection", broken_connection)
        scheduler = MissedCallScheduler()
        await scheduler._expire("call-1")
