import os

os.environ.setdefault("BASE_URL", "https://receptionist.example.com")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from config.settings import Settings
from services.calls.records_base import CallRecordStore
from services.config.business_config import BusinessConfig, BusinessHours
from services.conversation.call_state import CallState, CallStateStore
from services.conversation.orchestrator import TurnOrchestrator
from services.llm.turn_service import CallSummary, TurnResult


BASE_URL = "https://receptionist.example.com"
BUSINESS_ID = "b0000000-0000-0000-0000-000000000001"
DB_CALL_ID = "c0000000-0000-0000-0000-000000000001"


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    values = {
        "base_url": BASE_URL,
        "openai_api_key": "sk-test",
        "twilio_auth_token": "test-auth-token",
        "twilio_validate_signature": False,
        "transfer_phone_number": "",
        "max_call_duration": 600,
        "default_timezone": "America/Chicago",
        "database_url": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def business_row(**overrides) -> dict:
    row = {
        "id": BUSINESS_ID,
        "name": "Lakeside Dental",
        "phone_number": "+15550001111",
        "timezone": "America/New_York",
        "greeting": "Thanks for calling Lakeside Dental. How can I help?",
        "business_hours": {"open_time": "09:00", "close_time": "17:00"},
        "transfer_phone_number": None,
        "allowed_tasks": ["book_appointment", "general_question", "take_message"],
        "voice_style": "warm and upbeat",
        "main_phone": "+15550002222",
        "general_info": "We offer cleanings, fillings and whitening.",
        "address_line1": "12 Shore Rd",
        "address_line2": None,
        "city": "Lakeside",
        "state_region": "NY",
        "postal_code": "10001",
        "country": "USA",
    }
    row.update(overrides)
    return row


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store(clock):
    return CallStateStore(clock=clock)


@pytest.fixture
def turn_service():
    service = AsyncMock()
    service.take_turn.return_value = TurnResult(text="Sure, I can help with that.")
    service.summarize_call.return_value = CallSummary(
        summary="Caller booked a cleaning.", sentiment="positive", outcome="appointment"
    )
    return service


@pytest.fixture
def records():
    fake = AsyncMock(spec=CallRecordStore)
    fake.lookup_business.return_value = business_row()
    fake.create_call.return_value = DB_CALL_ID
    fake.create_appointment.return_value = "appt-1"
    fake.create_customer_request.return_value = "req-1"
    fake.fetch_transcript.return_value = []
    return fake


@pytest.fixture
def orchestrator(store, turn_service, settings, clock):
    return TurnOrchestrator(store=store, turn_service=turn_service, settings=settings, clock=clock)


@pytest.fixture
def persisted_orchestrator(store, turn_service, settings, records, clock):
    return TurnOrchestrator(
        store=store, turn_service=turn_service, settings=settings, records=records, clock=clock
    )


@pytest.fixture
def call_state():
    state = CallState(call_sid="CA_test_123", started_at=1000.0)
    state.config = BusinessConfig.default()
    return state


@pytest.fixture
def open_hours():
    return BusinessHours(open_time="09:00", close_time="17:00")


def utc(year, month, day, hour, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
