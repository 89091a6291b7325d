"""
=====================================================
AI Phone Receptionist - PostgreSQL Call Record Store
=====================================================
asyncpg-backed implementation of CallRecordStore (schema in
database/schema.sql).
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncpg
from loguru import logger

from services.database import get_db_pool
from .records_base import (
    AppointmentRecord,
    CallRecordStore,
    CustomerRequestRecord,
    TranscriptLine,
)


class PostgresCallRecordStore(CallRecordStore):
    """
    Stores calls, transcripts, appointments and customer requests.

    Args:
        pool_getter: Coroutine returning the asyncpg pool (shared pool by default)
    """

    def __init__(self, pool_getter: Callable[[], Awaitable[asyncpg.Pool]] = get_db_pool):
        self._pool_getter = pool_getter

    @staticmethod
    def _id(value) -> Optional[str]:
        return str(value) if value is not None else None

    async def lookup_business(self, phone_number: str) -> Optional[Dict[str, Any]]:
        if not phone_number:
            return None
        pool = await self._pool_getter()
        row = await pool.fetchrow(
            "SELECT * FROM businesses WHERE phone_number = $1 LIMIT 1", phone_number
        )
        if row is None:
            logger.info(f"Records: No business configured for {phone_number}")
            return None
        business = dict(row)
        business["id"] = self._id(business.get("id"))
        return business

    async def create_call(
        self, business_id: str, call_sid: str, caller_number: Optional[str], twilio_number: Optional[str]
    ) -> Optional[str]:
        pool = await self._pool_getter()
        call_id = await pool.fetchval(
            """
            INSERT INTO calls (business_id, twilio_call_sid, caller_number, twilio_number)
            VALUES ($1, $2, $3, $4)
            RETURNING id
            """,
            business_id,
            call_sid,
            caller_number,
            twilio_number,
        )
        logger.info(f"Records: Created call row {call_id} for {call_sid}")
        return self._id(call_id)

    async def add_transcript_line(self, call_id: str, speaker: str, message: str, sequence: int) -> None:
        pool = await self._pool_getter()
        await pool.execute(
            """
            INSERT INTO call_transcripts (call_id, speaker, message, sequence)
            VALUES ($1, $2, $3, $4)
            """,
            call_id,
            speaker,
            message,
            sequence,
        )

    async def complete_call(self, call_sid: str, status: str, duration_seconds: Optional[int]) -> None:
        pool = await self._pool_getter()
        await pool.execute(
            """
            UPDATE calls
            SET status = $2,
                ended_at = NOW(),
                duration_seconds = COALESCE($3, duration_seconds)
            WHERE twilio_call_sid = $1
            """,
            call_sid,
            status,
            duration_seconds,
        )
        logger.info(f"Records: Call {call_sid} marked {status} (duration={duration_seconds})")

    async def create_appointment(self, record: AppointmentRecord) -> Optional[str]:
        pool = await self._pool_getter()
        appointment_id = await pool.fetchval(
            """
            INSERT INTO appointments
                (business_id, call_id, client_name, client_phone, scheduled_at, notes)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING id
            """,
            record.business_id,
            record.call_id,
            record.client_name,
            record.client_phone,
            record.scheduled_at,
            record.notes,
        )
        logger.info(f"Records: Created appointment {appointment_id} at {record.scheduled_at.isoformat()}")
        return self._id(appointment_id)

    async def create_customer_request(self, record: CustomerRequestRecord) -> Optional[str]:
        pool = await self._pool_getter()
        request_id = await pool.fetchval(
            """
            INSERT INTO customer_requests
                (business_id, call_id, request_type, caller_name, callback_number,
                 message, preferred_time, notes)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING id
            """,
            record.business_id,
            record.call_id,
            record.request_type,
            record.caller_name,
            record.callback_number,
            record.message,
            record.preferred_time,
            record.notes,
        )
        logger.info(f"Records: Created {record.request_type} request {request_id}")
        return self._id(request_id)

    async def fetch_transcript(self, call_id: str) -> List[TranscriptLine]:
        pool = await self._pool_getter()
        rows = await pool.fetch(
            """
            SELECT speaker, message, sequence
            FROM call_transcripts
            WHERE call_id = $1
            ORDER BY sequence ASC
            """,
            call_id,
        )
        return [
            TranscriptLine(speaker=row["speaker"], message=row["message"], sequence=row["sequence"])
            for row in rows
        ]

    async def update_call_summary(
        self, call_sid: str, summary: Optional[str], sentiment: Optional[str], outcome: Optional[str] = None
    ) -> None:
        pool = await self._pool_getter()
        await pool.execute(
            """
            UPDATE calls
            SET summary = $2,
                sentiment = $3,
                outcome = COALESCE($4, outcome)
            WHERE twilio_call_sid = $1
            """,
            call_sid,
            summary,
            sentiment,
            outcome,
        )
