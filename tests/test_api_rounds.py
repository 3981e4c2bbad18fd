import pytest

from models import UserRole
from core.exceptions import ChatRateLimited, ForexSpinException, LegalComplianceRequired, UserNotFound
from database import utcnow


def test_health_endpoints(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/health").json()["status"] == "healthy"
    status = client.get("/status").json()
    assert status["scheduler"]["running"] is False


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/nope")
    assert response.status_code == 404
    body = response.json()
    assert body["statusCode"] == 404
    assert body["path"] == "/nope"
    assert body["method"] == "GET"
    assert body["data"] is None


@pytest.mark.parametrize("error, message", [
    (LegalComplianceRequired(code="AGE_CONFIRM_REQUIRED"),
     "Age confirmation or acceptance of the latest legal documents is required"),
    (ChatRateLimited(), "You are sending messages too quickly"),
    (UserNotFound(), "User not found"),
    (ForexSpinException(), "Request failed"),
])
def test_errors_without_message_use_default_text(error, message):
    assert error.message == message


def test_current_round_when_none_exists(client):
    response = client.get("/rounds/current")
    assert response.status_code == 404
    assert response.json()["message"] == "No round available"


def test_current_round_hides_secret(client, open_round):
    round_obj = open_round(now=utcnow())
    body = client.get("/rounds/current").json()

    assert body["id"] == round_obj.id
    assert body["state"] == "OPEN"
    assert body["artifact"]["commitHash"]
    assert body["artifact"]["secret"] is None
    assert body["liveTotals"]["outer"] == {"BUY": "0.00", "SELL": "0.00"}
    assert body["clock"]["phase"] == "ACTIVE"


def test_clock_reports_duration_windows(client, open_round):
    open_round(now=utcnow())
    clock = client.get("/rounds/clock").json()
    assert 0 < clock["remainingSeconds"] <= 1200
    assert set(clock["durations"]) == {"5", "10", "20"}
    assert clock["durations"]["20"] == clock["remainingSeconds"]


def test_round_lookup_by_number_and_totals(client, open_round):
    round_obj = open_round()
    assert client.get("/rounds/1").json()["id"] == round_obj.id
    assert client.get(f"/rounds/{round_obj.id}").json()["roundNumber"] == 1

    totals = client.get("/rounds/1/totals").json()
    assert totals["roundId"] == round_obj.id
    assert set(totals["totals"]) == {"outer", "middle", "inner", "global"}

    assert client.get("/rounds/99").status_code == 404


def test_round_stats(client, open_round):
    open_round()
    stats = client.get("/rounds/stats").json()
    assert stats["totalRounds"] == 1
    assert stats["settledRounds"] == 0
    assert stats["activeRound"]["roundNumber"] == 1


def test_admin_round_controls(client, make_user, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user()
    headers = auth_headers(admin)

    assert client.post("/rounds/admin/open", json={}, headers=auth_headers(user)).status_code == 403

    opened = client.post("/rounds/admin/open", json={}, headers=headers)
    assert opened.status_code == 201
    round_id = opened.json()["id"]
    assert client.post("/rounds/admin/open", json={}, headers=headers).status_code == 409

    # only FROZEN rounds can be settled
    assert client.post(f"/rounds/admin/{round_id}/settle", headers=headers).status_code == 409

    cancelled = client.post(f"/rounds/admin/{round_id}/cancel", json={"reason": "maintenance"}, headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["isCancelled"] is True
    assert cancelled.json()["state"] == "SETTLED"
    assert cancelled.json()["artifact"]["secret"]

    again = client.post(f"/rounds/admin/{round_id}/cancel", json={}, headers=headers)
    assert again.status_code == 409
