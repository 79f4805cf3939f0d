# tests/test_webhooks_api.py
import hashlib
import hmac
from http import HTTPStatus

from engagement_crm.schemas.meeting import MeetingStatus
from tests.factories import (
    WEBHOOK_SECRET,
    create_meeting,
    create_user,
    encode,
    get_meeting,
    lifecycle_body,
    list_engagements,
    run_async,
    signed_headers,
    utc,
)

EXTERNAL_ID = "85367388662"


def _seed():
    owner = run_async(create_user("Olga Owner", email="owner@example.com"))
    ann = run_async(
        create_user("Ann Lee", email="ann@example.com", phone="15550001", creator_id=owner.id)
    )
    meeting = run_async(
        create_meeting(
            owner.id,
            EXTERNAL_ID,
            utc(2026, 1, 8, 10, 0),
            utc(2026, 1, 8, 11, 0),
            invitee_ids=[ann.id],
        )
    )
    return owner, ann, meeting


def _post(client, body, headers=None):
    raw = encode(body)
    return client.post("/webhooks/zoom", content=raw, headers=headers or signed_headers(raw))


def test_url_validation_challenge(client):
    body = {"event": "endpoint.url_validation", "payload": {"plainToken": "qgg8vlvZRS6UYooatFL8Aw"}}

    resp = client.post("/webhooks/zoom", json=body)

    assert resp.status_code == HTTPStatus.OK
    data = resp.json()
    assert data["plainToken"] == "qgg8vlvZRS6UYooatFL8Aw"
    assert data["encryptedToken"] == hmac.new(
        WEBHOOK_SECRET.encode(), b"qgg8vlvZRS6UYooatFL8Aw", hashlib.sha256
    ).hexdigest()


def test_bad_signature_is_rejected_without_mutation(client):
    _, _, meeting = _seed()
    raw = encode(lifecycle_body("meeting.started", EXTERNAL_ID))
    headers = signed_headers(raw)
    headers["x-zm-signature"] = "v0=deadbeef"

    resp = client.post("/webhooks/zoom", content=raw, headers=headers)

    assert resp.status_code == HTTPStatus.UNAUTHORIZED
    assert resp.json()["error"]["kind"] == "authentication_failure"
    assert run_async(get_meeting(meeting.id)).status == MeetingStatus.NOT_STARTED.value


def test_missing_signature_headers_are_rejected(client):
    resp = client.post("/webhooks/zoom", json=lifecycle_body("meeting.started", EXTERNAL_ID))
    assert resp.status_code == HTTPStatus.UNAUTHORIZED


def test_signed_lifecycle_flow_marks_attendance(client):
    _, ann, meeting = _seed()

    assert _post(
        client,
        lifecycle_body("meeting.started", EXTERNAL_ID, start_time="2026-01-08T10:00:00Z"),
    ).json()["status"] == "meeting_started"

    participant = {"user_id": "16778240", "user_name": "Ann", "email": "ann@example.com"}
    resp = _post(
        client,
        lifecycle_body(
            "meeting.participant_joined",
            EXTERNAL_ID,
            participant={**participant, "join_time": "2026-01-08T10:05:00Z"},
        ),
    )
    assert resp.json()["status"] == "participant_joined"

    resp = _post(
        client,
        lifecycle_body(
            "meeting.participant_left",
            EXTERNAL_ID,
            participant={**participant, "leave_time": "2026-01-08T10:50:00Z"},
        ),
    )
    assert resp.json()["status"] == "participant_left"

    resp = _post(
        client,
        lifecycle_body("meeting.ended", EXTERNAL_ID, end_time="2026-01-08T11:00:00Z"),
    )
    assert resp.status_code == HTTPStatus.OK
    assert resp.json()["status"] == "meeting_ended"

    engagements = run_async(list_engagements(meeting.id))
    assert [(e.user_id, e.attended) for e in engagements] == [(ann.id, True)]

    participants = client.get(f"/webhooks/zoom/meetings/{EXTERNAL_ID}/participants").json()
    assert len(participants) == 1
    assert participants[0]["user_id"] == ann.id
    assert participants[0]["participant_key"] == "16778240"


def test_unknown_event_is_acknowledged(client):
    resp = _post(client, lifecycle_body("meeting.sharing_started", EXTERNAL_ID))
    assert resp.status_code == HTTPStatus.OK
    assert resp.json()["status"] == "ignored"


def test_event_for_unknown_meeting_is_acknowledged(client):
    resp = _post(client, lifecycle_body("meeting.started", "does-not-exist"))
    assert resp.status_code == HTTPStatus.OK
    assert resp.json()["status"] == "meeting_not_found"


def test_participants_of_unknown_meeting_is_404(client):
    resp = client.get("/webhooks/zoom/meetings/nope/participants")
    assert resp.status_code == HTTPStatus.NOT_FOUND
    assert resp.json()["error"]["kind"] == "not_found"


def test_messaging_verification_handshake(client):
    ok = client.get(
        "/webhooks/messaging",
        params={"hub.mode": "subscribe", "hub.verify_token": "test-verify-token", "hub.challenge": "1158201444"},
    )
    assert ok.status_code == HTTPStatus.OK
    assert ok.text == "1158201444"

    bad = client.get(
        "/webhooks/messaging",
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "x"},
    )
    assert bad.status_code == HTTPStatus.FORBIDDEN


def _reply_body(sender: str, reply_id: str):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "entry-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "messages": [
                                {
                                    "from": sender,
                                    "id": "wamid.1",
                                    "type": "interactive",
                                    "interactive": {
                                        "type": "button_reply",
                                        "button_reply": {"id": reply_id, "title": "5"},
                                    },
                                }
                            ],
                            "statuses": [{"id": "wamid.0", "status": "delivered"}],
                        },
                    }
                ],
            }
        ],
    }


def test_messaging_reply_records_rating(client):
    _, ann, meeting = _seed()

    resp = client.post("/webhooks/messaging", json=_reply_body("15550001", f"rate:{meeting.id}:4"))

    assert resp.status_code == HTTPStatus.OK
    assert resp.json() == {"status": "success", "ratings_recorded": 1, "statuses_seen": 1}
    engagements = run_async(list_engagements(meeting.id))
    assert engagements[0].rating == 4


def test_messaging_reply_out_of_range_or_garbage_is_ignored(client):
    _, _, meeting = _seed()

    for reply_id in (f"rate:{meeting.id}:9", "hello", f"rate:{meeting.id}:x"):
        resp = client.post("/webhooks/messaging", json=_reply_body("15550001", reply_id))
        assert resp.status_code == HTTPStatus.OK
        assert resp.json()["ratings_recorded"] == 0

    assert run_async(list_engagements(meeting.id))[0].rating is None


def test_messaging_webhook_always_acknowledges(client):
    resp = client.post("/webhooks/messaging", content=b"not json")
    assert resp.status_code == HTTPStatus.OK
    assert resp.json()["status"] == "success"


def test_url_validation_with_malformed_payload_is_rejected(client):
    for payload in ("oops", ["plainToken"], {"plainToken": 42}):
        resp = client.post(
            "/webhooks/zoom",
            json={"event": "endpoint.url_validation", "payload": payload},
        )
        assert resp.status_code == HTTPStatus.UNAUTHORIZED
        assert resp.json()["error"]["kind"] == "authentication_failure"


def test_messaging_reply_matches_formatted_stored_phone(client):
    owner = run_async(create_user("Olga Owner", email="owner@example.com"))
    cy = run_async(create_user("Cy Dee", phone="+1 (555) 000-9", creator_id=owner.id))
    meeting = run_async(
        create_meeting(owner.id, "m-fmt", utc(2026, 1, 8, 10, 0), invitee_ids=[cy.id])
    )

    resp = client.post("/webhooks/messaging", json=_reply_body("15550009", f"rate:{meeting.id}:5"))

    assert resp.json()["ratings_recorded"] == 1
    assert run_async(list_engagements(meeting.id))[0].rating == 5
