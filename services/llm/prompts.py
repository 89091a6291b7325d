"""
=====================================================
AI Phone Receptionist - System Instruction Builder
=====================================================
The system instruction is rebuilt on every turn from the business
configuration, the current time in the business's timezone and the
call's current step. Given the same inputs (including `now`) the output
is identical.
"""

from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from loguru import logger

from services.config.business_config import BusinessConfig, BusinessHours
from services.conversation.call_state import CallStep
from services.llm.tools import enabled_tasks


TASK_DESCRIPTIONS = {
    "book_appointment": "Book appointments (collect name, date/time and the service needed).",
    "general_question": "Answer general questions about the business.",
    "take_message": "Take a message for the team.",
    "callback_request": "Arrange for someone to call the caller back.",
}


def resolve_timezone(name: Optional[str], fallback: str = "America/Chicago") -> ZoneInfo:
    """Resolve an IANA zone name, falling back (then to UTC) on unknown names"""
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Prompts: Unknown timezone {candidate!r}")
    return ZoneInfo("UTC")


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def is_open(hours: Optional[BusinessHours], local_now: datetime) -> bool:
    """
    Whether the business is open at `local_now`.

    None means always open. A close time earlier than the open time is an
    overnight window (e.g. 22:00-06:00).
    """
    if hours is None:
        return True
    open_at = _parse_hhmm(hours.open_time)
    close_at = _parse_hhmm(hours.close_time)
    current = local_now.time().replace(second=0, microsecond=0)

    if open_at == close_at:
        return True
    if open_at < close_at:
        return open_at <= current < close_at
    return current >= open_at or current < close_at


def _format_clock(value: str) -> str:
    return _parse_hhmm(value).strftime("%I:%M %p").lstrip("0")


def _step_directive(step: CallStep, intent: Optional[str], business_open: bool) -> str:
    if step in (CallStep.GREETING, CallStep.IDENTIFY_INTENT):
        return (
            "Your current task: Figure out why the caller is calling. "
            "As soon as you understand their purpose, call set_call_intent with the "
            "appropriate intent and then start helping them in the same turn. "
            "Do not wait for another message."
        )

    if step == CallStep.GATHER_DETAILS:
        if intent == "book_appointment":
            directive = (
                "Your current task: Collect appointment details: the caller's name, "
                "preferred date and time, and what kind of service they need. "
                "Once you have all the details, repeat them back for confirmation. "
                "When the caller confirms, call book_appointment."
            )
            if not business_open:
                directive += (
                    " The office is closed right now, so offer to take a message or "
                    "arrange a callback first; only book if the caller insists."
                )
            return directive
        if intent in ("take_message", "callback_request"):
            return (
                "Your current task: Take down the caller's name, the best number to "
                "reach them and their message or the reason for the callback. "
                "Read the details back, then call record_customer_request."
            )
        return (
            "Your current task: Answer the caller's question helpfully and concisely. "
            "When you've fully addressed their question and they seem satisfied, call end_call."
        )

    if step == CallStep.CONFIRM:
        return (
            "The appointment has just been booked. Confirm the details to the caller, "
            "then ask if there is anything else you can help with. "
            "If they have a new request, call set_call_intent with the new intent. "
            "If they are finished, call end_call."
        )

    return "The call is ending. Say a brief, warm goodbye."


def build_system_instruction(
    config: BusinessConfig,
    step: CallStep,
    intent: Optional[str],
    now: Optional[datetime] = None,
    transfer_available: bool = False,
    default_timezone: str = "America/Chicago",
) -> str:
    """
    Build the per-turn system instruction.

    Args:
        config: Business configuration for the call
        step: Current call step
        intent: Current intent (or None)
        now: Current instant (timezone-aware; defaults to now in UTC)
        transfer_available: Whether a live transfer number is configured
        default_timezone: Zone used when the business timezone is unknown

    Returns:
        System instruction text
    """
    tz = resolve_timezone(config.timezone, default_timezone)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(tz)
    business_open = is_open(config.business_hours, local_now)

    tone = config.voice_style or "friendly and professional"
    sections = [
        f"You are a {tone} AI receptionist for {config.business_name}. "
        "Keep responses to 1-2 sentences and natural for a phone conversation. "
        "Ask one question at a time.",
        f"Current date and time: {local_now.strftime('%A, %B %d, %Y')}, "
        f"{local_now.strftime('%I:%M %p').lstrip('0')} ({tz.key}).\n"
        "When discussing appointments or scheduling, use this real date to offer accurate "
        "days and dates. Never invent or guess dates; always calculate from the current date above.",
    ]

    hours = config.business_hours
    if hours is None:
        sections.append("Business hours: open 24 hours. The office is currently OPEN.")
    else:
        window = f"{_format_clock(hours.open_time)} to {_format_clock(hours.close_time)}"
        if business_open:
            sections.append(f"Business hours: {window}. The office is currently OPEN.")
        else:
            sections.append(
                f"Business hours: {window}. The office is currently CLOSED. "
                "Let the caller know the team is not available right now and offer to take "
                "a message or arrange a callback instead of scheduling right away."
            )

    contact = []
    address = config.address_text()
    if address:
        contact.append(f"Address: {address}.")
    if config.main_phone:
        contact.append(f"Main phone: {config.main_phone}.")
    if contact:
        sections.append(" ".join(contact))

    if config.general_info:
        sections.append(f"About the business:\n{config.general_info}")

    capability_lines = "\n".join(
        f"- {TASK_DESCRIPTIONS[task]}" for task in enabled_tasks(config.allowed_tasks)
    )
    sections.append(
        "You can help callers with:\n"
        f"{capability_lines}\n"
        "Politely decline anything else and offer what you can do instead."
    )

    if transfer_available:
        sections.append(
            "If the caller asks for a person, they will be transferred automatically; "
            "you may mention they can ask for a representative."
        )
    else:
        sections.append(
            "Live transfer to a person is not available. If the caller wants a person, "
            "offer to take a message instead."
        )

    sections.append(_step_directive(step, intent, business_open))
    return "\n\n".join(sections)
