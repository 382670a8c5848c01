"""
Tests for the OTP service routes.
"""
from conftest import LICENSE, PHYSICIAN_EMAIL


def send(client, email=PHYSICIAN_EMAIL):
    return client.post("/api/v1/otp/send", json={"license": LICENSE, "email": email})


def validate(client, code):
    return client.post("/api/v1/otp/validate", json={"license": LICENSE, "email": PHYSICIAN_EMAIL, "code": code})


def test_send_returns_expiry_and_challenge_id(client, physician, delivery):
    response = send(client)

    assert response.status_code == 200
    data = response.json()
    assert "expiresAt" in data
    assert "challengeId" in data
    assert "code" not in data
    assert delivery.latest_code(PHYSICIAN_EMAIL) is not None


def test_send_refuses_unverified_destination(client, physician, delivery):
    response = send(client, email="someone.else@example.com")

    assert response.status_code == 403
    assert response.json()["reason"] == "CHANNEL_NOT_VERIFIED"
    assert delivery.outbox == []


def test_send_refuses_unknown_license(client, db, delivery):
    response = send(client)

    assert response.status_code == 403
    assert delivery.outbox == []


def test_validate_ok(client, physician, delivery):
    send(client)
    code = delivery.latest_code(PHYSICIAN_EMAIL)

    response = validate(client, code)

    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_validate_mismatch_reports_reason(client, physician, delivery):
    send(client)
    code = delivery.latest_code(PHYSICIAN_EMAIL)
    wrong = "100000" if code != "100000" else "100001"

    response = validate(client, wrong)

    assert response.status_code == 400
    data = response.json()
    assert data["ok"] is False
    assert data["reason"] == "MISMATCH"


def test_validate_expired_reports_reason(client, physician, delivery, clock):
    send(client)
    code = delivery.latest_code(PHYSICIAN_EMAIL)
    clock.advance(minutes=11)

    response = validate(client, code)

    assert response.status_code == 410
    assert response.json()["reason"] == "EXPIRED"


def test_resend_invalidates_previous_code(client, physician, delivery, clock):
    send(client)
    old_code = delivery.latest_code(PHYSICIAN_EMAIL)
    clock.advance(seconds=30)
    send(client)
    new_code = delivery.latest_code(PHYSICIAN_EMAIL)

    if old_code != new_code:
        assert validate(client, old_code).json()["ok"] is False
    assert validate(client, new_code).json()["ok"] is True


def test_cancel_invalidates_live_code(client, physician, delivery):
    send(client)
    code = delivery.latest_code(PHYSICIAN_EMAIL)

    response = client.post("/api/v1/otp/cancel", json={"license": LICENSE})

    assert response.json() == {"ok": True, "invalidated": 1}
    assert validate(client, code).json()["reason"] == "ALREADY_USED"
