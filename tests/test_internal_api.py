# tests/test_internal_api.py
from datetime import timedelta
from http import HTTPStatus

from engagement_crm.api.dependencies import internal_auth as auth_module
from engagement_crm.schemas.meeting import MeetingStatus
from tests.factories import (
    add_activity,
    create_meeting,
    create_user,
    get_meeting,
    list_engagements,
    run_async,
    utc,
)

START = utc(2026, 1, 8, 10, 0)
END = utc(2026, 1, 8, 11, 0)


class DummySettingsProd:
    APP_ENV = "prod"
    INTERNAL_API_KEY = "supersecret"


class DummySettingsProdNoKey:
    APP_ENV = "prod"
    INTERNAL_API_KEY = None


class DummySettingsLocalWithKey:
    APP_ENV = "local"
    INTERNAL_API_KEY = "localkey"


def _seed_in_progress():
    owner = run_async(create_user("Olga Owner"))
    ann = run_async(create_user("Ann Lee", email="ann@example.com", creator_id=owner.id))
    meeting = run_async(
        create_meeting(
            owner.id,
            "m-int",
            START,
            END,
            invitee_ids=[ann.id],
            status=MeetingStatus.IN_PROGRESS.value,
            actual_start=START,
        )
    )
    run_async(
        add_activity(meeting.id, "ann-uuid", START + timedelta(minutes=1), None, user_id=ann.id)
    )
    return ann, meeting


def test_finalize_is_idempotent(client):
    ann, meeting = _seed_in_progress()

    first = client.post(f"/internal/meetings/{meeting.id}/finalize")
    assert first.status_code == HTTPStatus.OK
    data = first.json()
    assert data["finalized"] is True
    assert data["attended_user_ids"] == [ann.id]
    # Messaging is not configured under test.
    assert data["dispatch"]["outcomes"][0]["status"] == "SKIPPED"

    stored = run_async(get_meeting(meeting.id))
    assert stored.status == MeetingStatus.ENDED.value
    assert stored.notified_at is not None
    assert [e.attended for e in run_async(list_engagements(meeting.id))] == [True]

    second = client.post(f"/internal/meetings/{meeting.id}/finalize")
    assert second.status_code == HTTPStatus.OK
    assert second.json()["finalized"] is False
    assert second.json()["dispatch"] is None


def test_finalize_unknown_meeting_is_404(client):
    resp = client.post("/internal/meetings/4242/finalize")
    assert resp.status_code == HTTPStatus.NOT_FOUND


def test_missed_outreach_sweep_with_nothing_pending(client):
    resp = client.post("/internal/run-missed-meeting-outreach")
    assert resp.status_code == HTTPStatus.OK
    assert resp.json() == {"meetings_checked": 0, "meetings_dispatched": 0, "reports": []}


def test_internal_endpoint_401_when_key_missing_in_prod(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProd())

    resp = client.post("/internal/run-missed-meeting-outreach")
    assert resp.status_code == HTTPStatus.UNAUTHORIZED
    assert "invalid or missing" in resp.json()["detail"].lower()


def test_internal_endpoint_401_when_key_wrong_in_prod(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProd())

    resp = client.post(
        "/internal/run-missed-meeting-outreach",
        headers={"X-Internal-Api-Key": "wrong-key"},
    )
    assert resp.status_code == HTTPStatus.UNAUTHORIZED


def test_internal_endpoint_200_when_key_correct_in_prod(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProd())

    resp = client.post(
        "/internal/run-missed-meeting-outreach",
        headers={"X-Internal-Api-Key": "supersecret"},
    )
    assert resp.status_code == HTTPStatus.OK


def test_internal_endpoint_500_when_prod_key_not_configured(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProdNoKey())

    resp = client.post("/internal/run-missed-meeting-outreach")
    assert resp.status_code == HTTPStatus.INTERNAL_SERVER_ERROR


def test_local_key_is_enforced_once_configured(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsLocalWithKey())

    assert client.post("/internal/run-missed-meeting-outreach").status_code == HTTPStatus.UNAUTHORIZED
    assert (
        client.post(
            "/internal/run-missed-meeting-outreach",
            headers={"X-Internal-Api-Key": "localkey"},
        ).status_code
        == HTTPStatus.OK
    )
