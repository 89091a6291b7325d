from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from api.main import _parse_duration, create_app
from services.config.business_config import DEFAULT_GREETING
from services.conversation.call_state import CallStateStore
from services.conversation.orchestrator import TurnOrchestrator
from services.llm.turn_service import TurnResult
from tests.conftest import BASE_URL, make_settings


AUTH_TOKEN = "test-auth-token"
VOICE_URL = f"{BASE_URL}/twilio/voice"
STATUS_URL = f"{BASE_URL}/twilio/status"

VOICE_FORM = {
    "CallSid": "CA_api_1",
    "To": "+15550001111",
    "From": "+15557654321",
}


def sign(url, params):
    return RequestValidator(AUTH_TOKEN).compute_signature(url, params)


def build(validate=False, **overrides):
    settings = make_settings(twilio_validate_signature=validate, **overrides)
    turn_service = AsyncMock()
    turn_service.take_turn.return_value = TurnResult(text="Happy to help.")
    orchestrator = TurnOrchestrator(store=CallStateStore(), turn_service=turn_service, settings=settings)
    return create_app(settings=settings, orchestrator=orchestrator), orchestrator


@pytest.fixture
def client():
    app, _ = build()
    return TestClient(app)


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert VOICE_URL in response.text
        assert STATUS_URL in response.text

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["active_calls"] == 0


class TestVoiceWebhook:
    def test_first_webhook_returns_greeting_twiml(self, client):
        response = client.post("/twilio/voice", data=VOICE_FORM)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert response.text.startswith('<?xml version="1.0" encoding="UTF-8"?><Response>')
        assert DEFAULT_GREETING in response.text
        assert f'action="{VOICE_URL}"' in response.text

    def test_speech_turn(self, client):
        client.post("/twilio/voice", data=VOICE_FORM)
        response = client.post("/twilio/voice", data={**VOICE_FORM, "SpeechResult": "What are your hours?"})
        assert "Happy to help." in response.text
        assert "<Gather" in response.text

    def test_unexpected_error_still_returns_twiml(self):
        app, orchestrator = build()
        orchestrator.handle_voice = AsyncMock(side_effect=RuntimeError("boom"))
        response = TestClient(app).post("/twilio/voice", data=VOICE_FORM)
        assert response.status_code == 200
        assert response.text == orchestrator.technical_difficulty_response()

    def test_health_counts_active_calls(self, client):
        client.post("/twilio/voice", data=VOICE_FORM)
        assert client.get("/health").json()["active_calls"] == 1


class TestStatusWebhook:
    def test_empty_200(self, client):
        client.post("/twilio/voice", data=VOICE_FORM)
        response = client.post(
            "/twilio/status", data={"CallSid": "CA_api_1", "CallStatus": "completed", "CallDuration": "31"}
        )
        assert response.status_code == 200
        assert response.content == b""
        assert client.get("/health").json()["active_calls"] == 0

    def test_errors_are_acknowledged(self):
        app, orchestrator = build()
        orchestrator.handle_status = AsyncMock(side_effect=RuntimeError("boom"))
        response = TestClient(app).post("/twilio/status", data={"CallSid": "CA_x", "CallStatus": "completed"})
        assert response.status_code == 200


class TestSignatureValidation:
    def test_valid_signature_accepted(self):
        app, _ = build(validate=True)
        response = TestClient(app).post(
            "/twilio/voice", data=VOICE_FORM, headers={"X-Twilio-Signature": sign(VOICE_URL, VOICE_FORM)}
        )
        assert response.status_code == 200
        assert DEFAULT_GREETING in response.text

    def test_valid_status_signature_accepted(self):
        app, _ = build(validate=True)
        form = {"CallSid": "CA_api_1", "CallStatus": "completed"}
        response = TestClient(app).post(
            "/twilio/status", data=form, headers={"X-Twilio-Signature": sign(STATUS_URL, form)}
        )
        assert response.status_code == 200

    def test_missing_signature_rejected(self):
        app, orchestrator = build(validate=True)
        response = TestClient(app).post("/twilio/voice", data=VOICE_FORM)
        assert response.status_code == 403
        assert "CA_api_1" not in orchestrator.store

    def test_wrong_signature_rejected(self):
        app, _ = build(validate=True)
        response = TestClient(app).post(
            "/twilio/voice", data=VOICE_FORM, headers={"X-Twilio-Signature": "bm90LXZhbGlk"}
        )
        assert response.status_code == 403

    def test_tampered_form_rejected(self):
        app, _ = build(validate=True)
        signature = sign(VOICE_URL, VOICE_FORM)
        response = TestClient(app).post(
            "/twilio/voice",
            data={**VOICE_FORM, "SpeechResult": "injected"},
            headers={"X-Twilio-Signature": signature},
        )
        assert response.status_code == 403

    def test_missing_auth_token_rejected(self):
        app, _ = build(validate=True, twilio_auth_token="")
        response = TestClient(app).post(
            "/twilio/voice", data=VOICE_FORM, headers={"X-Twilio-Signature": sign(VOICE_URL, VOICE_FORM)}
        )
        assert response.status_code == 403


class TestParseDuration:
    def test_values(self):
        assert _parse_duration("42") == 42
        assert _parse_duration(None) is None
        assert _parse_duration("") is None
        assert _parse_duration("abc") is None
