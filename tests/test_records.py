import uuid
from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from services.calls.postgres_records import PostgresCallRecordStore
from services.calls.records_base import (
    AppointmentRecord,
    CustomerRequestRecord,
    TranscriptLine,
    parse_scheduled_at,
)
from tests.conftest import BUSINESS_ID, DB_CALL_ID, business_row


CHICAGO = ZoneInfo("America/Chicago")


@pytest.fixture
def pool():
    return AsyncMock()


@pytest.fixture
def records(pool):
    async def pool_getter():
        return pool
    return PostgresCallRecordStore(pool_getter=pool_getter)


class TestParseScheduledAt:
    def test_naive_time_is_business_local(self):
        scheduled = parse_scheduled_at("2026-03-12T10:00:00", CHICAGO)
        assert scheduled == datetime(2026, 3, 12, 10, 0, tzinfo=CHICAGO)

    def test_zulu_suffix(self):
        scheduled = parse_scheduled_at("2026-03-12T15:00:00Z", CHICAGO)
        assert scheduled.utcoffset().total_seconds() == 0
        assert scheduled.hour == 15

    def test_explicit_offset_kept(self):
        scheduled = parse_scheduled_at("2026-03-12T10:00:00-05:00", CHICAGO)
        assert scheduled.utcoffset().total_seconds() == -5 * 3600

    def test_missing(self):
        with pytest.raises(ValueError):
            parse_scheduled_at(None, CHICAGO)

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_scheduled_at("next Tuesday-ish", CHICAGO)


class TestRecordsFromToolArgs:
    def test_appointment_folds_service_into_notes(self):
        record = AppointmentRecord.from_tool_args(
            {"client_name": " Ana Ruiz ", "scheduled_at": "2026-03-12T10:00:00",
             "service_type": "cleaning", "notes": "Prefers mornings."},
            business_id=BUSINESS_ID, call_id=DB_CALL_ID, caller_number="+15557654321", timezone=CHICAGO,
        )
        assert record.client_name == "Ana Ruiz"
        assert record.client_phone == "+15557654321"
        assert record.notes == "Service: cleaning. Prefers mornings."

    def test_appointment_without_service(self):
        record = AppointmentRecord.from_tool_args(
            {"scheduled_at": "2026-03-12T10:00:00"},
            business_id=BUSINESS_ID, call_id=None, caller_number=None, timezone=CHICAGO,
        )
        assert record.notes is None
        assert record.client_phone is None

    def test_customer_request_defaults(self):
        record = CustomerRequestRecord.from_tool_args(
            {"message": "Please call about my bill"},
            business_id=BUSINESS_ID, call_id=DB_CALL_ID, caller_number="+15557654321",
        )
        assert record.request_type == "take_message"
        assert record.callback_number == "+15557654321"

    def test_customer_request_explicit_number(self):
        record = CustomerRequestRecord.from_tool_args(
            {"request_type": "callback_request", "callback_number": "+15559990000", "message": "x"},
            business_id=BUSINESS_ID, call_id=DB_CALL_ID, caller_number="+15557654321",
        )
        assert record.request_type == "callback_request"
        assert record.callback_number == "+15559990000"


class TestPostgresCallRecordStore:
    @pytest.mark.asyncio
    async def test_lookup_business(self, records, pool):
        row = business_row(id=uuid.UUID(BUSINESS_ID))
        pool.fetchrow.return_value = row
        business = await records.lookup_business("+15550001111")
        assert business["id"] == BUSINESS_ID
        assert business["name"] == "Lakeside Dental"
        assert pool.fetchrow.await_args.args[1] == "+15550001111"

    @pytest.mark.asyncio
    async def test_lookup_business_miss(self, records, pool):
        pool.fetchrow.return_value = None
        assert await records.lookup_business("+15550009999") is None

    @pytest.mark.asyncio
    async def test_lookup_business_empty_number(self, records, pool):
        assert await records.lookup_business("") is None
        pool.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_call_returns_string_id(self, records, pool):
        pool.fetchval.return_value = uuid.UUID(DB_CALL_ID)
        call_id = await records.create_call(BUSINESS_ID, "CA_1", "+15557654321", "+15550001111")
        assert call_id == DB_CALL_ID
        assert pool.fetchval.await_args.args[1:] == (BUSINESS_ID, "CA_1", "+15557654321", "+15550001111")

    @pytest.mark.asyncio
    async def test_add_transcript_line(self, records, pool):
        await records.add_transcript_line(DB_CALL_ID, "caller", "Hello", 4)
        sql, *params = pool.execute.await_args.args
        assert "INSERT INTO call_transcripts" in sql
        assert params == [DB_CALL_ID, "caller", "Hello", 4]

    @pytest.mark.asyncio
    async def test_complete_call(self, records, pool):
        await records.complete_call("CA_1", "completed", 42)
        sql, *params = pool.execute.await_args.args
        assert "UPDATE calls" in sql
        assert params == ["CA_1", "completed", 42]

    @pytest.mark.asyncio
    async def test_create_appointment(self, records, pool):
        pool.fetchval.return_value = uuid.uuid4()
        record = AppointmentRecord(
            business_id=BUSINESS_ID, call_id=DB_CALL_ID,
            scheduled_at=datetime(2026, 3, 12, 10, tzinfo=CHICAGO), client_name="Ana",
        )
        appointment_id = await records.create_appointment(record)
        assert isinstance(appointment_id, str)
        assert "INSERT INTO appointments" in pool.fetchval.await_args.args[0]

    @pytest.mark.asyncio
    async def test_create_customer_request(self, records, pool):
        pool.fetchval.return_value = uuid.uuid4()
        record = CustomerRequestRecord(business_id=BUSINESS_ID, call_id=DB_CALL_ID, request_type="take_message")
        await records.create_customer_request(record)
        sql, *params = pool.fetchval.await_args.args
        assert "INSERT INTO customer_requests" in sql
        assert params[2] == "take_message"

    @pytest.mark.asyncio
    async def test_fetch_transcript(self, records, pool):
        pool.fetch.return_value = [
            {"speaker": "ai", "message": "Hi", "sequence": 1},
            {"speaker": "caller", "message": "Hello", "sequence": 2},
        ]
        lines = await records.fetch_transcript(DB_CALL_ID)
        assert lines == [TranscriptLine("ai", "Hi", 1), TranscriptLine("caller", "Hello", 2)]

    @pytest.mark.asyncio
    async def test_update_call_summary(self, records, pool):
        await records.update_call_summary("CA_1", "Booked a cleaning.", "positive", "appointment")
        sql, *params = pool.execute.await_args.args
        assert "summary = $2" in sql
        assert params == ["CA_1", "Booked a cleaning.", "positive", "appointment"]
