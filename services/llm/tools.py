"""
=====================================================
AI Phone Receptionist - Tool Declarations
=====================================================
The tools the model may call are a pure function of the business's
enabled capabilities. CAPABILITY_TOOLS is the lookup table; every
capability maps to the (possibly empty) list of tools it turns on.
"""

from typing import Dict, Iterable, List, Tuple

from services.config.business_config import DEFAULT_ALLOWED_TASKS, KNOWN_TASKS


SET_CALL_INTENT = "set_call_intent"
BOOK_APPOINTMENT = "book_appointment"
RECORD_CUSTOMER_REQUEST = "record_customer_request"
END_CALL = "end_call"

REQUEST_TASKS = ("take_message", "callback_request")

CAPABILITY_TOOLS: Dict[str, Tuple[str, ...]] = {
    "book_appointment": (BOOK_APPOINTMENT,),
    "general_question": (),
    "take_message": (RECORD_CUSTOMER_REQUEST,),
    "callback_request": (RECORD_CUSTOMER_REQUEST,),
}


def _set_call_intent(intents: List[str]) -> dict:
    return {
        "name": SET_CALL_INTENT,
        "description": (
            "Call this as soon as you understand why the caller is calling. "
            "Do NOT wait: identify the intent, call this immediately, "
            "then continue helping in the same response."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "intent": {
                    "type": "string",
                    "enum": intents,
                    "description": "The caller's primary intent",
                },
            },
            "required": ["intent"],
        },
    }


def _book_appointment(intents: List[str]) -> dict:
    return {
        "name": BOOK_APPOINTMENT,
        "description": (
            "Book an appointment after the caller has confirmed the details "
            "(name, date/time, service type). Call this only after confirmation."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "client_name": {"type": "string", "description": "Full name of the client"},
                "scheduled_at": {
                    "type": "string",
                    "description": "ISO 8601 datetime for the appointment (e.g. 2025-03-15T10:00:00)",
                },
                "service_type": {"type": "string", "description": "Type of service or consultation requested"},
                "notes": {"type": "string", "description": "Any additional notes about the appointment"},
            },
            "required": ["scheduled_at"],
        },
    }


def _record_customer_request(intents: List[str]) -> dict:
    request_types = [t for t in intents if t in REQUEST_TASKS]
    return {
        "name": RECORD_CUSTOMER_REQUEST,
        "description": (
            "Record a message or a callback request for the business once the "
            "caller has given the details. Read the details back before calling this."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "request_type": {
                    "type": "string",
                    "enum": request_types,
                    "description": "take_message for a message, callback_request for a call back",
                },
                "caller_name": {"type": "string", "description": "Caller's name"},
                "callback_number": {"type": "string", "description": "Number to call back, if different from the caller ID"},
                "message": {"type": "string", "description": "The message or reason for the callback"},
                "preferred_time": {"type": "string", "description": "When the caller prefers to be called back"},
                "notes": {"type": "string", "description": "Anything else worth recording"},
            },
            "required": ["request_type", "message"],
        },
    }


def _end_call(intents: List[str]) -> dict:
    return {
        "name": END_CALL,
        "description": (
            "Signal that the conversation is naturally complete and the caller "
            "is ready to hang up. Include a brief goodbye in your text response."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "reason": {"type": "string", "description": "Brief reason the call is ending"},
            },
            "required": ["reason"],
        },
    }


TOOL_BUILDERS = {
    SET_CALL_INTENT: _set_call_intent,
    BOOK_APPOINTMENT: _book_appointment,
    RECORD_CUSTOMER_REQUEST: _record_customer_request,
    END_CALL: _end_call,
}


def enabled_tasks(capabilities: Iterable[str]) -> List[str]:
    """Known capabilities in declaration order; empty falls back to the defaults"""
    tasks = [t for t in KNOWN_TASKS if t in set(capabilities or ())]
    return tasks or list(DEFAULT_ALLOWED_TASKS)


def tool_names_for_capabilities(capabilities: Iterable[str]) -> List[str]:
    """Names of the tools declared for a capability set"""
    names = [SET_CALL_INTENT]
    for task in enabled_tasks(capabilities):
        for name in CAPABILITY_TOOLS[task]:
            if name not in names:
                names.append(name)
    names.append(END_CALL)
    return names


def tools_for_capabilities(capabilities: Iterable[str]) -> List[dict]:
    """
    Tool declarations for a capability set.

    Always declares set_call_intent (enum limited to the enabled intents)
    and end_call, plus booking and message/callback recording when enabled.
    """
    intents = enabled_tasks(capabilities)
    return [TOOL_BUILDERS[name](intents) for name in tool_names_for_capabilities(capabilities)]
