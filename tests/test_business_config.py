import json

from services.config.business_config import (
    DEFAULT_ALLOWED_TASKS,
    DEFAULT_BUSINESS_NAME,
    DEFAULT_GREETING,
    BusinessConfig,
    BusinessHours,
    normalize_tasks,
)
from tests.conftest import business_row


class TestBusinessHours:
    def test_parse_dict(self):
        hours = BusinessHours.parse({"open_time": "09:00", "close_time": "17:00"})
        assert hours == BusinessHours(open_time="09:00", close_time="17:00")

    def test_parse_json_string(self):
        hours = BusinessHours.parse(json.dumps({"open_time": "08:30", "close_time": "18:00"}))
        assert hours.open_time == "08:30"

    def test_none_is_always_open(self):
        assert BusinessHours.parse(None) is None

    def test_malformed_is_always_open(self):
        assert BusinessHours.parse("not json") is None
        assert BusinessHours.parse({"open_time": "9am", "close_time": "5pm"}) is None
        assert BusinessHours.parse({"open_time": "25:00", "close_time": "17:00"}) is None
        assert BusinessHours.parse(["09:00", "17:00"]) is None


class TestNormalizeTasks:
    def test_keeps_known_tasks(self):
        assert normalize_tasks(["take_message", "book_appointment"]) == ("take_message", "book_appointment")

    def test_drops_unknown_and_duplicates(self):
        assert normalize_tasks(["take_message", "teleport", "take_message"]) == ("take_message",)

    def test_empty_falls_back_to_defaults(self):
        assert normalize_tasks([]) == DEFAULT_ALLOWED_TASKS
        assert normalize_tasks(None) == DEFAULT_ALLOWED_TASKS
        assert normalize_tasks(["teleport"]) == DEFAULT_ALLOWED_TASKS

    def test_json_string(self):
        assert normalize_tasks('["callback_request"]') == ("callback_request",)


class TestBusinessConfig:
    def test_default(self):
        config = BusinessConfig.default("America/Denver")
        assert config.business_name == DEFAULT_BUSINESS_NAME
        assert config.greeting == DEFAULT_GREETING
        assert config.timezone == "America/Denver"
        assert config.business_hours is None
        assert config.transfer_phone_number is None
        assert config.allowed_tasks == DEFAULT_ALLOWED_TASKS

    def test_from_row(self):
        config = BusinessConfig.from_row(business_row())
        assert config.business_name == "Lakeside Dental"
        assert config.timezone == "America/New_York"
        assert config.business_hours == BusinessHours("09:00", "17:00")
        assert config.allowed_tasks == ("book_appointment", "general_question", "take_message")
        assert config.voice_style == "warm and upbeat"

    def test_from_row_blank_values_use_defaults(self):
        config = BusinessConfig.from_row(
            business_row(name="  ", greeting="", timezone=None, transfer_phone_number=""),
            default_timezone="America/Chicago",
        )
        assert config.business_name == DEFAULT_BUSINESS_NAME
        assert config.greeting == DEFAULT_GREETING
        assert config.timezone == "America/Chicago"
        assert config.transfer_phone_number is None

    def test_from_missing_row(self):
        assert BusinessConfig.from_row(None, "UTC") == BusinessConfig.default("UTC")

    def test_address_text(self):
        config = BusinessConfig.from_row(business_row())
        assert config.address_text() == "12 Shore Rd, Lakeside, NY 10001, USA"

    def test_no_address(self):
        assert BusinessConfig.default().address_text() is None
