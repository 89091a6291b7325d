"""
=====================================================
AI Phone Receptionist - Business Configuration
=====================================================
Per-business settings loaded once per call from the `businesses` table.
A missing row (unknown number, persistence disabled) yields the default
configuration: generic greeting, default capabilities, no transfer and
no business-hours restriction.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from loguru import logger


DEFAULT_GREETING = "Hi, this is your AI receptionist. How can I help you today?"
DEFAULT_BUSINESS_NAME = "our office"

# Everything a business can enable; the model's intent enum is drawn from this
KNOWN_TASKS = ("book_appointment", "general_question", "take_message", "callback_request")
DEFAULT_ALLOWED_TASKS = ("book_appointment", "general_question")

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class BusinessHours:
    """Opening window in 24-hour HH:MM, local to the business timezone"""
    open_time: str
    close_time: str

    @classmethod
    def parse(cls, value: Any) -> Optional["BusinessHours"]:
        """
        Parse the business_hours column.

        Accepts a dict or a JSON string {"open_time": "09:00", "close_time": "17:00"}.
        Returns None ("always open") for null or malformed values.
        """
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                logger.warning(f"BusinessConfig: Unparseable business_hours {value!r}, treating as always open")
                return None
        if not isinstance(value, dict):
            return None

        open_time = str(value.get("open_time", "")).strip()
        close_time = str(value.get("close_time", "")).strip()
        if not (_HHMM.match(open_time) and _HHMM.match(close_time)):
            logger.warning(f"BusinessConfig: Invalid business_hours {value!r}, treating as always open")
            return None
        return cls(open_time=open_time, close_time=close_time)


def normalize_tasks(value: Any) -> Tuple[str, ...]:
    """
    Normalize the allowed_tasks column into a capability tuple.

    Unknown names are dropped; an empty result falls back to the defaults
    so the model is never left without tools.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            value = None
    if not isinstance(value, (list, tuple)):
        return DEFAULT_ALLOWED_TASKS

    tasks = []
    for task in value:
        if task in KNOWN_TASKS and task not in tasks:
            tasks.append(task)
        elif task not in KNOWN_TASKS:
            logger.warning(f"BusinessConfig: Ignoring unknown task {task!r}")
    return tuple(tasks) if tasks else DEFAULT_ALLOWED_TASKS


def _text(row: Dict[str, Any], key: str) -> Optional[str]:
    value = row.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class BusinessConfig:
    """Read-only configuration for the business that owns the dialed number"""
    business_name: str = DEFAULT_BUSINESS_NAME
    greeting: str = DEFAULT_GREETING
    timezone: str = "America/Chicago"
    business_hours: Optional[BusinessHours] = None
    transfer_phone_number: Optional[str] = None
    allowed_tasks: Tuple[str, ...] = field(default=DEFAULT_ALLOWED_TASKS)
    voice_style: Optional[str] = None
    main_phone: Optional[str] = None
    general_info: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state_region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def default(cls, timezone: str = "America/Chicago") -> "BusinessConfig":
        return cls(timezone=timezone)

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]], default_timezone: str = "America/Chicago") -> "BusinessConfig":
        """
        Build a configuration from a businesses row.

        Args:
            row: Row mapping (None when no business matched)
            default_timezone: Timezone used when the row has none

        Returns:
            Normalized BusinessConfig
        """
        if not row:
            return cls.default(default_timezone)

        return cls(
            business_name=_text(row, "name") or DEFAULT_BUSINESS_NAME,
            greeting=_text(row, "greeting") or DEFAULT_GREETING,
            timezone=_text(row, "timezone") or default_timezone,
            business_hours=BusinessHours.parse(row.get("business_hours")),
            transfer_phone_number=_text(row, "transfer_phone_number"),
            allowed_tasks=normalize_tasks(row.get("allowed_tasks")),
            voice_style=_text(row, "voice_style"),
            main_phone=_text(row, "main_phone"),
            general_info=_text(row, "general_info"),
            address_line1=_text(row, "address_line1"),
            address_line2=_text(row, "address_line2"),
            city=_text(row, "city"),
            state_region=_text(row, "state_region"),
            postal_code=_text(row, "postal_code"),
            country=_text(row, "country"),
        )

    def address_text(self) -> Optional[str]:
        """Single-line address, or None when no address fields are set"""
        locality = " ".join(p for p in (self.state_region, self.postal_code) if p)
        parts = [
            self.address_line1,
            self.address_line2,
            self.city,
            locality or None,
            self.country,
        ]
        parts = [p for p in parts if p]
        return ", ".join(parts) if parts else None
