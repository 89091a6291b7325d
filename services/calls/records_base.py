"""
=====================================================
AI Phone Receptionist - Call Record Store Interface
=====================================================
Everything the orchestrator persists about a call: the call row,
transcript lines, appointments, customer requests and the post-call
summary. Implementations may fail; the orchestrator treats every write
as best-effort.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo


SPEAKER_CALLER = "caller"
SPEAKER_AI = "ai"


@dataclass
class TranscriptLine:
    """One spoken line of a call"""
    speaker: str  # "caller" or "ai"
    message: str
    sequence: int

    def to_dict(self) -> dict:
        return {"speaker": self.speaker, "message": self.message, "sequence": self.sequence}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_scheduled_at(value: Any, timezone: ZoneInfo) -> datetime:
    """
    Parse the model's ISO 8601 appointment time.

    Naive times are read as local to the business.

    Raises:
        ValueError: Missing or unparseable value
    """
    text = _clean(value)
    if text is None:
        raise ValueError("scheduled_at is required")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    scheduled = datetime.fromisoformat(text)
    if scheduled.tzinfo is None:
        scheduled = scheduled.replace(tzinfo=timezone)
    return scheduled


@dataclass
class AppointmentRecord:
    """Appointment booked through the book_appointment tool"""
    business_id: str
    call_id: Optional[str]
    scheduled_at: datetime
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_tool_args(
        cls,
        args: Dict[str, Any],
        business_id: str,
        call_id: Optional[str],
        caller_number: Optional[str],
        timezone: ZoneInfo,
    ) -> "AppointmentRecord":
        """
        Build a record from book_appointment arguments.

        Raises:
            ValueError: scheduled_at is missing or not ISO 8601
        """
        service = _clean(args.get("service_type"))
        notes = _clean(args.get("notes"))
        if service:
            notes = f"Service: {service}." + (f" {notes}" if notes else "")
        return cls(
            business_id=business_id,
            call_id=call_id,
            scheduled_at=parse_scheduled_at(args.get("scheduled_at"), timezone),
            client_name=_clean(args.get("client_name")),
            client_phone=_clean(caller_number),
            notes=notes,
        )


@dataclass
class CustomerRequestRecord:
    """Message or callback request recorded through record_customer_request"""
    business_id: str
    call_id: Optional[str]
    request_type: str
    caller_name: Optional[str] = None
    callback_number: Optional[str] = None
    message: Optional[str] = None
    preferred_time: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_tool_args(
        cls,
        args: Dict[str, Any],
        business_id: str,
        call_id: Optional[str],
        caller_number: Optional[str],
    ) -> "CustomerRequestRecord":
        return cls(
            business_id=business_id,
            call_id=call_id,
            request_type=_clean(args.get("request_type")) or "take_message",
            caller_name=_clean(args.get("caller_name")),
            callback_number=_clean(args.get("callback_number")) or _clean(caller_number),
            message=_clean(args.get("message")),
            preferred_time=_clean(args.get("preferred_time")),
            notes=_clean(args.get("notes")),
        )


class CallRecordStore(ABC):
    """
    Persistence collaborator for calls.

    All methods except create_call are safe to repeat.
    """

    @abstractmethod
    async def lookup_business(self, phone_number: str) -> Optional[Dict[str, Any]]:
        """Business row for the dialed number, or None"""

    @abstractmethod
    async def create_call(
        self, business_id: str, call_sid: str, caller_number: Optional[str], twilio_number: Optional[str]
    ) -> Optional[str]:
        """Insert the call row and return its id"""

    @abstractmethod
    async def add_transcript_line(self, call_id: str, speaker: str, message: str, sequence: int) -> None:
        """Append one transcript line"""

    @abstractmethod
    async def complete_call(self, call_sid: str, status: str, duration_seconds: Optional[int]) -> None:
        """Mark the call terminal with its final status and duration"""

    @abstractmethod
    async def create_appointment(self, record: AppointmentRecord) -> Optional[str]:
        """Insert an appointment and return its id"""

    @abstractmethod
    async def create_customer_request(self, record: CustomerRequestRecord) -> Optional[str]:
        """Insert a message/callback request and return its id"""

    @abstractmethod
    async def fetch_transcript(self, call_id: str) -> List[TranscriptLine]:
        """All transcript lines for a call, ordered by sequence"""

    @abstractmethod
    async def update_call_summary(
        self, call_sid: str, summary: Optional[str], sentiment: Optional[str], outcome: Optional[str] = None
    ) -> None:
        """Store the post-call summary, sentiment and outcome"""
