"""
=====================================================
AI Phone Receptionist - Call Step Machine
=====================================================
Transitions are driven by the model's tool calls:

    greeting --(first silent webhook)--> identify_intent
    identify_intent --(set_call_intent)--> gather_details
    gather_details --(book_appointment)--> confirm
    confirm --(set_call_intent)--> gather_details
    any --(end_call / transfer / time limit / silence)--> ending

Steps only move forward, with the single exception of confirm ->
gather_details when the caller brings up a follow-up request. `ending`
is absorbing.
"""

from typing import Dict, FrozenSet
from loguru import logger

from services.conversation.call_state import CallState, CallStep
from services.llm.turn_service import TurnResult


TRANSITIONS: Dict[CallStep, FrozenSet[CallStep]] = {
    CallStep.GREETING: frozenset({CallStep.IDENTIFY_INTENT, CallStep.ENDING}),
    CallStep.IDENTIFY_INTENT: frozenset({CallStep.GATHER_DETAILS, CallStep.ENDING}),
    CallStep.GATHER_DETAILS: frozenset({CallStep.CONFIRM, CallStep.ENDING}),
    CallStep.CONFIRM: frozenset({CallStep.GATHER_DETAILS, CallStep.ENDING}),
    CallStep.ENDING: frozenset(),
}


def can_transition(current: CallStep, target: CallStep) -> bool:
    return target in TRANSITIONS[current]


def advance(state: CallState, target: CallStep) -> bool:
    """
    Move the call to `target` if the transition table allows it.

    Returns:
        True if the step changed
    """
    if state.step == target:
        return False
    if not can_transition(state.step, target):
        logger.warning(
            f"Steps: Ignoring illegal transition {state.step.value} -> {target.value} "
            f"for call {state.call_sid}"
        )
        return False
    logger.info(f"Steps: Call {state.call_sid} {state.step.value} -> {target.value}")
    state.step = target
    return True


def mark_ending(state: CallState) -> None:
    """Force the call into the terminal step"""
    if state.step != CallStep.ENDING:
        advance(state, CallStep.ENDING)


def apply_turn(state: CallState, result: TurnResult) -> CallStep:
    """
    Apply a model turn's structured outcomes to the call state.

    Order matters: an intent and a booking declared in the same turn walk
    identify_intent -> gather_details -> confirm.

    Returns:
        The resulting step
    """
    if state.step == CallStep.ENDING:
        return state.step

    # Caller spoke before the greeting was played
    if state.step == CallStep.GREETING:
        advance(state, CallStep.IDENTIFY_INTENT)

    if result.intent:
        state.intent = result.intent
        if state.step in (CallStep.IDENTIFY_INTENT, CallStep.CONFIRM):
            advance(state, CallStep.GATHER_DETAILS)

    if result.appointment is not None and state.step == CallStep.GATHER_DETAILS:
        advance(state, CallStep.CONFIRM)

    if result.end_call is not None:
        mark_ending(state)

    return state.step
