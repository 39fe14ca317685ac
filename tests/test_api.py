"""
tests/test_api.py
─────────────────────────────────────────────────────────────────────────────
Tests for otpshield.api — OTPShieldAPI facade and the FastAPI app.

Coverage:
  - process_message: trust update for OTP messages only, blocked path,
    synthesized senders left out of the trust store
  - report_message: number extraction, validation, data_source
  - lookup_number: calls / sms / new resolution, validation
  - call feedback rejection shape
  - degradation when the SQLite file cannot be opened
  - HTTP endpoints via TestClient, including 429 on cooldown

Every test uses a temporary SQLite DB, a fixed location and a fake clock.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from otpshield.api import OTPShieldAPI, _build_app
from otpshield.simulation import StaticLocationProvider

NUMBER = "+1 (612) 555-0001"
KEY    = "16125550001"


class FakeClock:

    def __init__(self):
        self.now = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api(tmp_path, clock):
    facade = OTPShieldAPI(
        db_path           = tmp_path / "otpshield.db",
        location_provider = StaticLocationProvider(),
        clock             = clock,
    )
    yield facade
    facade.close()


@pytest.fixture
def client(api):
    with TestClient(_build_app(api=api)) as c:
        yield c


# ── FACADE: MESSAGES ─────────────────────────────────────────────────────────

class TestProcessMessage:

    def test_trusted_otp_updates_sender(self, api):
        out = api.process_message("HDFCBK: 123456 is your OTP. Do not share.")
        assert out["analysis"]["is_blocked"] is False
        assert out["analysis"]["otp"] == "123456"
        trust = out["sender_trust"]
        assert trust["sender_id"] == "HDFCBK"
        assert trust["message_count"] == 1
        assert trust["status"]["key"] in ("PLATINUM", "SILVER", "SUSPICIOUS", "BLACKLISTED")

    def test_untrusted_share_request_is_blocked_and_distrusted(self, api):
        out = api.process_message("click here, share your OTP 123456", sender_id="NEWSENDER")
        assert out["analysis"]["is_blocked"] is True
        assert out["analysis"]["analysis"] == 'OTP blocked - Sender not in trusted database'
        assert out["sender_trust"]["status"]["key"] == "BLACKLISTED"

    def test_non_otp_leaves_trust_untouched(self, api):
        out = api.process_message("See you at lunch", sender_id="FRIEND")
        assert out["analysis"]["is_otp_message"] is False
        assert out["sender_trust"] is None
        assert api.get_trust_score("FRIEND")["message_count"] == 0

    def test_headerless_message_without_sender_creates_no_record(self, api):
        for _ in range(20):
            out = api.process_message("Your OTP is 123456")
            assert out["analysis"]["sender_synthesized"] is True
            assert out["sender_trust"] is None
        assert api.senders.known_keys() == []

    def test_headerless_message_with_sender_id_updates_that_sender(self, api):
        out = api.process_message("Your OTP is 123456", sender_id="hdfc-bk")
        assert out["sender_trust"]["sender_id"] == "HDFCBK"
        assert api.senders.known_keys() == ["HDFCBK"]

    def test_analyze_only_does_not_touch_trust(self, api):
        api.analyze_message("HDFCBK: 123456 is your OTP.")
        assert api.get_trust_score("HDFCBK")["message_count"] == 0
        assert len(api.get_analysis_history()) == 1

    def test_sender_feedback(self, api):
        trust = api.record_sender_feedback("hdfc-bk", "safe")
        assert trust["sender_id"] == "HDFCBK"
        assert trust["user_feedback_score"] == 1.0


class TestReportMessage:

    def test_number_extracted_from_text(self, api):
        view = api.report_message("Urgent! Call 6125550001 and share your OTP 123456")
        assert view["data_source"] == "reported"
        assert view["phone_number"] == "6125550001"
        assert view["formatted_number"] == "(612) 555-0001"
        assert view["report_score"] == 0.2
        assert view["classification"]["is_phishing"] is True
        assert view["message_count"] == 1

    def test_explicit_number_wins(self, api):
        view = api.report_message("Your parcel is waiting", phone_number=NUMBER)
        assert view["phone_number"] == KEY
        assert view["analysis"]["is_otp_message"] is False
        assert view["message_count"] == 0

    @pytest.mark.parametrize("message", ["", "   ", None])
    def test_empty_message_rejected(self, api, message):
        with pytest.raises(ValueError):
            api.report_message(message)

    def test_missing_number_rejected(self, api):
        with pytest.raises(ValueError):
            api.report_message("hello there")

    @pytest.mark.parametrize("number", ["abc", "---", "call me"])
    def test_number_without_digits_rejected(self, api, number):
        with pytest.raises(ValueError):
            api.report_message("Urgent! share your OTP 123456", phone_number=number)
        assert api.senders.known_keys() == []


# ── FACADE: CALLS ────────────────────────────────────────────────────────────

class TestCalls:

    def test_record_call(self, api):
        call = api.record_call(NUMBER, duration=45, was_answered=True)
        assert call["phone_number"] == KEY
        assert api.get_call_trust_score(NUMBER)["call_count"] == 1
        assert len(api.get_call_history(KEY)) == 1

    @pytest.mark.parametrize("kwargs", [{"direction": "sideways"}, {"duration": -1}])
    def test_record_call_validation(self, api, kwargs):
        with pytest.raises(ValueError):
            api.record_call(NUMBER, **kwargs)

    def test_feedback_rejection_shape(self, api):
        first = api.record_call_feedback(NUMBER, "scam", user_id="alice")
        assert "error" not in first
        assert first["status"]["key"]

        second = api.record_call_feedback(NUMBER, "scam", user_id="alice")
        assert second["error"] is True
        assert second["cooldown_remaining"] == 30
        assert len(api.get_call_feedback(NUMBER)) == 1


class TestLookupNumber:

    def test_new_number(self, api):
        view = api.lookup_number("6125550001")
        assert view["data_source"] == "new"
        assert view["formatted_number"] == "(612) 555-0001"

    def test_sms_number(self, api):
        api.process_message("6125550001: 123456 is your OTP")
        view = api.lookup_number("(612) 555-0001")
        assert view["data_source"] == "sms"
        assert view["message_count"] == 1
        assert view["score"] == api.get_trust_score("6125550001")["score"]

    def test_call_number(self, api):
        api.process_message("6125550001: 123456 is your OTP")
        api.record_call("6125550001", duration=30)
        assert api.lookup_number("6125550001")["data_source"] == "calls"

    def test_rated_number_counts_as_call_data(self, api):
        api.record_call_feedback(NUMBER, "safe", user_id="alice")
        assert api.lookup_number(NUMBER)["data_source"] == "calls"

    @pytest.mark.parametrize("number", ["", None, "abc"])
    def test_invalid_number(self, api, number):
        with pytest.raises(ValueError):
            api.lookup_number(number)


class TestMisc:

    def test_tiers(self, api):
        tiers = api.tiers()
        assert [t["key"] for t in tiers] == ["PLATINUM", "SILVER", "SUSPICIOUS", "BLACKLISTED"]
        assert api.trust_status(66)["label"] == "Caution (Silver)"

    def test_unopenable_store_runs_in_memory(self, tmp_path):
        with OTPShieldAPI(
            db_path=tmp_path / "missing" / "otpshield.db",
            location_provider=StaticLocationProvider(),
        ) as facade:
            assert facade.kv.is_open is False
            facade.process_message("HDFCBK: 123456 is your OTP.")
            assert facade.get_trust_score("HDFCBK")["message_count"] == 1

    def test_state_survives_restart(self, tmp_path):
        db = tmp_path / "otpshield.db"
        with OTPShieldAPI(db_path=db, location_provider=StaticLocationProvider()) as facade:
            facade.process_message("HDFCBK: 123456 is your OTP.")
            facade.record_call(NUMBER, duration=20)
        with OTPShieldAPI(db_path=db, location_provider=StaticLocationProvider()) as facade:
            assert facade.get_trust_score("HDFCBK")["message_count"] == 1
            assert facade.get_call_trust_score(NUMBER)["call_count"] == 1


# ── HTTP ─────────────────────────────────────────────────────────────────────

class TestHttp:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["store_open"] is True

    def test_analyze(self, client):
        r = client.post("/messages/analyze", json={"message": "HDFCBK: 123456 is your OTP."})
        assert r.status_code == 200
        assert r.json()["analysis"]["is_blocked"] is False
        assert r.json()["sender_trust"]["sender_id"] == "HDFCBK"

        history = client.get("/messages/history").json()
        assert history["count"] == 1

    def test_analyze_headerless_leaves_senders_alone(self, client, api):
        r = client.post("/messages/analyze", json={"message": "Your OTP is 123456"})
        assert r.status_code == 200
        assert r.json()["sender_trust"] is None
        assert api.senders.known_keys() == []

    def test_analyze_without_update(self, client):
        r = client.post("/messages/analyze", json={
            "message": "HDFCBK: 123456 is your OTP.", "update_trust": False,
        })
        assert r.json()["sender_trust"] is None
        assert client.get("/senders/HDFCBK").json()["message_count"] == 0

    def test_sender_endpoints(self, client):
        r = client.post("/senders/hdfc-bk/feedback", json={"feedback_type": "scam"})
        assert r.status_code == 200
        assert client.get("/senders/HDFCBK").json()["user_feedback_score"] == 0.0

    def test_empty_feedback_type_is_rejected(self, client):
        r = client.post("/senders/HDFCBK/feedback", json={"feedback_type": ""})
        assert r.status_code == 422

    def test_report(self, client):
        r = client.post("/messages/report", json={
            "message": "Urgent! Call 6125550001 and share your OTP 123456",
        })
        assert r.status_code == 200
        assert r.json()["data_source"] == "reported"
        assert client.post("/messages/report", json={"message": "hello"}).status_code == 400

    def test_calls(self, client):
        r = client.post("/calls", json={"phone_number": NUMBER, "duration": 60, "was_answered": True})
        assert r.status_code == 200
        assert r.json()["call"]["phone_number"] == KEY
        assert r.json()["trust"]["call_count"] == 1

        assert client.get("/calls/history").json()["count"] == 1
        assert client.get("/calls/history", params={"phone": "6125559999"}).json()["count"] == 0
        assert client.get(f"/calls/{KEY}").json()["call_response_score"] == 1.0

    def test_bad_call_is_400(self, client):
        r = client.post("/calls", json={"phone_number": NUMBER, "direction": "sideways"})
        assert r.status_code == 400

    def test_call_feedback_cooldown_is_429(self, client):
        body = {"feedback_type": "scam", "user_id": "alice"}
        assert client.post(f"/calls/{KEY}/feedback", json=body).status_code == 200

        r = client.post(f"/calls/{KEY}/feedback", json=body)
        assert r.status_code == 429
        assert r.json()["error"] is True
        assert r.json()["cooldown_remaining"] >= 1

        assert client.get(f"/calls/{KEY}/feedback").json()["count"] == 1

    def test_lookup(self, client):
        assert client.get("/lookup/6125550001").json()["data_source"] == "new"
        assert client.get("/lookup/abc").status_code == 400

    def test_tiers(self, client):
        assert len(client.get("/tiers").json()["tiers"]) == 4
