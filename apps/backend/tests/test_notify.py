import json

import httpx
import pytest

from gymdesk import notify, settings


@pytest.fixture
def webhook(monkeypatch):
    """Route notify's httpx client through a MockTransport and record requests."""
    seen = []
    status = {"code": 202}
    real_client = httpx.Client

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status["code"], json={"ok": True})

    def fake_client(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(settings, "NOTIFY_URL", "http://hooks.test/notify")
    monkeypatch.setattr(notify.httpx, "Client", fake_client)
    return seen, status


def test_without_webhook_only_logs(caplog):
    with caplog.at_level("INFO", logger="gymdesk.notify"):
        assert notify.send_notification(notify.BOOKING_CONFIRMED, {"member_id": "m_1"}) is False
    assert "no webhook configured" in caplog.text


def test_posts_kind_and_payload(webhook):
    seen, _ = webhook
    ok = notify.send_notification(notify.SESSION_CANCELLED, {"session_id": "s_1", "reason": "rain"})
    assert ok is True
    assert len(seen) == 1
    assert str(seen[0].url) == "http://hooks.test/notify"
    assert json.loads(seen[0].content) == {
        "kind": "session_cancelled",
        "payload": {"session_id": "s_1", "reason": "rain"},
    }


def test_delivery_failure_is_reported(webhook, caplog):
    _, status = webhook
    status["code"] = 500
    with caplog.at_level("WARNING", logger="gymdesk.notify"):
        assert notify.send_notification(notify.BOOKING_CANCELLED, {"booking_id": "b_1"}) is False
    assert "failed" in caplog.text


def test_booking_sends_confirmation(webhook, test_client, make_package, make_member, make_session):
    seen, _ = webhook
    group = make_package("Group Class")
    ann = make_member("Ann Lee", packages=[group])
    sid = make_session(offset_days=1)

    r = test_client.post(f"/api/v1/sessions/{sid}/bookings", json={"member_id": ann})
    assert r.status_code == 201

    bodies = [json.loads(req.content) for req in seen]
    assert [b["kind"] for b in bodies] == ["booking_confirmed"]
    assert bodies[0]["payload"]["member_id"] == ann
    assert bodies[0]["payload"]["session_id"] == sid


def test_failed_webhook_does_not_undo_deactivation(webhook, test_client, make_member, make_session):
    _, status = webhook
    status["code"] = 503
    ann = make_member("Ann Lee")
    sid = make_session(offset_days=2, members=[ann])

    r = test_client.post(f"/api/v1/sessions/{sid}/deactivate")
    assert r.status_code == 200
    assert r.json()["status"] == "Inactive"
