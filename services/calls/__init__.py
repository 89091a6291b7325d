"""
=====================================================
AI Phone Receptionist - Call Records
=====================================================
"""

from .records_base import (
    AppointmentRecord,
    CallRecordStore,
    CustomerRequestRecord,
    TranscriptLine,
)
from .postgres_records import PostgresCallRecordStore

__all__ = [
    "AppointmentRecord",
    "CallRecordStore",
    "CustomerRequestRecord",
    "TranscriptLine",
    "PostgresCallRecordStore",
]
