"""
=====================================================
AI Phone Receptionist - Turn Orchestrator
=====================================================

The orchestrator decides, for every Twilio voice webhook, what the caller
hears next. One webhook is one turn: a spoken utterance (SpeechResult) or
a silence (Gather timed out and Twilio followed the Redirect).

Per turn, under the call's lock:
1. Resolve the call state and bind the business on the first hit
2. Enforce the call-duration ceiling
3. Short-circuit calls already ending
4. Silence: greet, re-listen, "are you still there?", then hang up
5. Escape phrase: transfer to a human (or apologize and keep listening)
6. Replay the cached response for a re-posted identical utterance
7. Otherwise ask the model, apply step transitions and side effects

Every path returns exactly one TwiML document. Persistence writes never
block or fail the response: they run as best-effort background tasks.
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Set
from loguru import logger

from config.settings import Settings
from services.calls.records_base import (
    SPEAKER_AI,
    SPEAKER_CALLER,
    AppointmentRecord,
    CallRecordStore,
    CustomerRequestRecord,
)
from services.config.business_config import BusinessConfig
from services.conversation.call_state import (
    CallEndedError,
    CallState,
    CallStateStore,
    CallStep,
    ProcessedUtterance,
)
from services.conversation.escape import wants_human
from services.conversation.steps import advance, apply_turn, mark_ending
from services.llm.llm_base import TurnTimeoutError
from services.llm.prompts import resolve_timezone
from services.llm.turn_service import TurnResult, TurnService
from services.reporting.error_reporter import capture_exception
from services.telephony.twiml import VoiceResponseBuilder


TERMINAL_STATUSES = frozenset({"completed", "failed", "busy", "no-answer", "canceled"})

GOODBYE_MESSAGE = "Thank you for calling. Goodbye."
STILL_THERE_MESSAGE = "Are you still there?"
SILENCE_GOODBYE_MESSAGE = "It seems we got disconnected. Please call back any time. Goodbye."
TIME_LIMIT_MESSAGE = "We've reached the time limit for this call. Thank you for calling, and goodbye."
TRANSFER_MESSAGE = "Of course, let me transfer you now. One moment please."
NO_TRANSFER_MESSAGE = "I'm sorry, I'm unable to transfer you right now. Can I help you with something else?"
TIMEOUT_MESSAGE = "Sorry, I'm taking a bit longer than expected. Could you please say that again?"
TECHNICAL_ISSUE_MESSAGE = "Sorry, I'm having a technical issue. Please try again in a moment."

MAX_SILENCES = 3


@dataclass
class VoiceEvent:
    """Form fields of one voice webhook"""
    call_sid: str
    to_number: str = ""
    from_number: str = ""
    speech: str = ""


@dataclass
class StatusEvent:
    """Form fields of one status callback"""
    call_sid: str
    status: str
    duration: Optional[int] = None


@dataclass
class BestEffortResult:
    """Outcome of a side effect that is logged but never raised"""
    operation: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


async def run_best_effort(operation: str, coro: Awaitable, **tags) -> BestEffortResult:
    """
    Await a side effect, converting any failure into a logged result.

    Args:
        operation: Name used in logs and error reports
        coro: The awaitable to run
        **tags: Extra error-report tags (e.g. call_sid)
    """
    try:
        value = await coro
    except Exception as e:
        logger.warning(f"Orchestrator: {operation} failed: {e}")
        capture_exception(e, operation=operation, **tags)
        return BestEffortResult(operation=operation, ok=False, error=e)
    return BestEffortResult(operation=operation, ok=True, value=value)


def fingerprint(text: str) -> str:
    """Content fingerprint of an utterance for the idempotency cache"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class TurnOrchestrator:
    """
    Call-turn orchestrator

    ARCHITECTURE NOTES:
    - The state store is injected; the app factory owns the only instance
    - The per-call lock is held for the whole turn, so a Twilio retry of an
      utterance still being answered waits, then replays the cached reply
    - records=None means persistence is disabled

    Args:
        store: Call state store
        turn_service: Language-model turn service
        settings: Application settings
        records: Persistence collaborator (optional)
        clock: Monotonic clock (seconds)
    """

    def __init__(
        self,
        store: CallStateStore,
        turn_service: TurnService,
        settings: Settings,
        records: Optional[CallRecordStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.turn_service = turn_service
        self.settings = settings
        self.records = records
        self._clock = clock
        self.responses = VoiceResponseBuilder(
            settings.voice_url,
            voice=settings.tts_voice,
            language=settings.tts_language,
        )
        self._pending: Set[asyncio.Task] = set()

    # =====================================================
    # VOICE WEBHOOK
    # =====================================================

    async def handle_voice(self, event: VoiceEvent) -> str:
        """
        Decide the response to one voice webhook.

        Args:
            event: Parsed webhook fields

        Returns:
            TwiML document
        """
        speech = (event.speech or "").strip()

        try:
            async with self.store.session(event.call_sid) as state:
                await self._bind_call(state, event)
                return await self._handle_turn(state, event, speech)
        except CallEndedError:
            logger.info(f"Orchestrator: Call {event.call_sid} already ended, hanging up")
            return self.responses.speak_then_hangup(GOODBYE_MESSAGE)

    def technical_difficulty_response(self) -> str:
        """Keep-alive response used when a turn fails unexpectedly"""
        return self.responses.listen_and_redirect(prompt=TECHNICAL_ISSUE_MESSAGE)

    async def _bind_call(self, state: CallState, event: VoiceEvent) -> None:
        """Look up the business and create the call row (first webhook only)"""
        if state.config is not None:
            return

        state.caller_number = event.from_number or None
        config = None

        if self.records is not None:
            try:
                business = await self.records.lookup_business(event.to_number)
            except Exception as e:
                logger.warning(f"Orchestrator: Business lookup failed for {event.to_number}: {e}")
                capture_exception(e, operation="lookup_business", call_sid=state.call_sid)
                business = None

            if business:
                config = BusinessConfig.from_row(business, self.settings.default_timezone)
                state.business_id = business.get("id")
                created = await run_best_effort(
                    "create_call",
                    self.records.create_call(
                        state.business_id, state.call_sid, state.caller_number, event.to_number or None
                    ),
                    call_sid=state.call_sid,
                )
                state.db_call_id = created.value if created.ok else None
            else:
                logger.warning(
                    f"Orchestrator: No business for {event.to_number or 'unknown number'}, "
                    "using default configuration"
                )

        state.config = config or BusinessConfig.default(self.settings.default_timezone)
        logger.info(f"Orchestrator: Call {state.call_sid} bound to {state.config.business_name}")

    async def _handle_turn(self, state: CallState, event: VoiceEvent, speech: str) -> str:
        now = self._clock()

        # Hard ceiling on call length
        limit = self.settings.max_call_duration
        if limit and state.step != CallStep.ENDING and state.elapsed(now) > limit:
            logger.info(f"Orchestrator: Call {state.call_sid} exceeded {limit}s, hanging up")
            mark_ending(state)
            state.add_assistant_message(TIME_LIMIT_MESSAGE)
            self._persist_ai_line(state, TIME_LIMIT_MESSAGE)
            return self.responses.speak_then_hangup(TIME_LIMIT_MESSAGE)

        # A previous turn decided to end the call
        if state.step == CallStep.ENDING:
            return self.responses.speak_then_hangup(GOODBYE_MESSAGE)

        if not speech:
            return self._handle_silence(state)

        state.silence_count = 0

        if wants_human(speech):
            return self._handle_escape(state, event, speech)

        # Twilio re-posts the same SpeechResult on retries and redirect loops
        speech_fingerprint = fingerprint(speech)
        cached = state.last_processed
        if (
            cached is not None
            and cached.fingerprint == speech_fingerprint
            and now - cached.timestamp < self.settings.idempotency_window_seconds
            and cached.response
        ):
            logger.info(f"Orchestrator: Replaying cached response for call {state.call_sid}")
            return cached.response

        return await self._handle_utterance(state, speech, speech_fingerprint)

    def _handle_silence(self, state: CallState) -> str:
        if state.step == CallStep.GREETING:
            advance(state, CallStep.IDENTIFY_INTENT)
            greeting = state.config.greeting
            state.add_assistant_message(greeting)
            self._persist_ai_line(state, greeting)
            return self.responses.listen_and_redirect(prompt=greeting)

        state.silence_count += 1
        timeout = self.settings.gather_timeout_seconds
        logger.info(f"Orchestrator: Call {state.call_sid} silence #{state.silence_count}")

        if state.silence_count == 1:
            return self.responses.listen_and_redirect(timeout=timeout)
        if state.silence_count == 2:
            return self.responses.listen_and_redirect(prompt=STILL_THERE_MESSAGE, timeout=timeout)

        mark_ending(state)
        self._persist_ai_line(state, SILENCE_GOODBYE_MESSAGE)
        return self.responses.speak_then_hangup(SILENCE_GOODBYE_MESSAGE)

    def _handle_escape(self, state: CallState, event: VoiceEvent, speech: str) -> str:
        transfer_number = state.config.transfer_phone_number or self.settings.transfer_phone_number
        state.add_user_message(speech)

        if not transfer_number:
            logger.info(f"Orchestrator: Call {state.call_sid} asked for a human, no transfer number")
            state.add_assistant_message(NO_TRANSFER_MESSAGE)
            self._persist_exchange(state, speech, NO_TRANSFER_MESSAGE)
            return self.responses.listen_and_redirect(prompt=NO_TRANSFER_MESSAGE)

        logger.info(f"Orchestrator: Call {state.call_sid} transferring to {transfer_number}")
        mark_ending(state)
        state.add_assistant_message(TRANSFER_MESSAGE)
        self._persist_exchange(state, speech, TRANSFER_MESSAGE)
        return self.responses.speak_then_transfer(
            TRANSFER_MESSAGE, transfer_number, caller_id=event.to_number or None
        )

    async def _handle_utterance(self, state: CallState, speech: str, speech_fingerprint: str) -> str:
        transfer_available = bool(state.config.transfer_phone_number or self.settings.transfer_phone_number)

        try:
            result = await self.turn_service.take_turn(
                list(state.history),
                speech,
                state.step,
                state.intent,
                state.config,
                transfer_available=transfer_available,
            )
        except TurnTimeoutError:
            logger.warning(f"Orchestrator: Turn timed out for call {state.call_sid}")
            return self.responses.listen_and_redirect(prompt=TIMEOUT_MESSAGE)
        except Exception as e:
            logger.error(f"Orchestrator: Turn failed for call {state.call_sid}: {e}")
            capture_exception(e, operation="take_turn", call_sid=state.call_sid)
            return self.technical_difficulty_response()

        state.add_user_message(speech)
        state.add_assistant_message(result.text)
        step = apply_turn(state, result)

        self._dispatch_tool_writes(state, result)
        self._persist_exchange(state, speech, result.text)

        if step == CallStep.ENDING:
            return self.responses.speak_then_hangup(result.text)

        response = self.responses.speak_then_listen(result.text)
        state.last_processed = ProcessedUtterance(
            fingerprint=speech_fingerprint,
            timestamp=self._clock(),
            response=response,
        )
        return response

    # =====================================================
    # STATUS CALLBACK
    # =====================================================

    async def handle_status(self, event: StatusEvent) -> None:
        """
        Handle a call-status callback.

        Terminal statuses persist the final status, queue the summary for
        completed calls and evict the call's state.
        """
        status = (event.status or "").strip().lower()
        if not event.call_sid or status not in TERMINAL_STATUSES:
            logger.debug(f"Orchestrator: Ignoring status {status!r} for call {event.call_sid}")
            return

        state = self.store.get(event.call_sid)
        logger.info(f"Orchestrator: Call {event.call_sid} ended with status {status}")

        if self.records is not None:
            self._dispatch(
                "complete_call",
                self.records.complete_call(event.call_sid, status, event.duration),
                call_sid=event.call_sid,
            )
            if status == "completed" and state is not None and state.db_call_id:
                self._dispatch(
                    "summarize_call",
                    self._summarize_call(event.call_sid, state.db_call_id),
                    call_sid=event.call_sid,
                )

        self.store.remove(event.call_sid)

    async def _summarize_call(self, call_sid: str, call_id: str):
        transcript = await self.records.fetch_transcript(call_id)
        if not transcript:
            logger.info(f"Orchestrator: No transcript for call {call_sid}, skipping summary")
            return None

        summary = await self.turn_service.summarize_call([line.to_dict() for line in transcript])
        await self.records.update_call_summary(call_sid, summary.summary, summary.sentiment, summary.outcome)
        logger.info(f"Orchestrator: Stored summary for call {call_sid} (sentiment={summary.sentiment})")
        return summary

    # =====================================================
    # BEST-EFFORT SIDE EFFECTS
    # =====================================================

    def _dispatch(self, operation: str, coro: Awaitable, **tags) -> None:
        """Run a side effect in the background; the caller never waits for it"""
        task = asyncio.create_task(run_best_effort(operation, coro, **tags))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for outstanding side effects (shutdown and tests)"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _persist_exchange(self, state: CallState, caller_text: str, ai_text: str) -> None:
        sequence = state.next_sequence()
        if self.records is None or not state.db_call_id:
            return
        self._dispatch(
            "add_transcript_line",
            self.records.add_transcript_line(state.db_call_id, SPEAKER_CALLER, caller_text, sequence),
            call_sid=state.call_sid,
        )
        self._dispatch(
            "add_transcript_line",
            self.records.add_transcript_line(state.db_call_id, SPEAKER_AI, ai_text, sequence + 1),
            call_sid=state.call_sid,
        )

    def _persist_ai_line(self, state: CallState, ai_text: str) -> None:
        sequence = state.next_sequence()
        if self.records is None or not state.db_call_id:
            return
        self._dispatch(
            "add_transcript_line",
            self.records.add_transcript_line(state.db_call_id, SPEAKER_AI, ai_text, sequence + 1),
            call_sid=state.call_sid,
        )

    def _dispatch_tool_writes(self, state: CallState, result: TurnResult) -> None:
        if result.appointment is None and result.customer_request is None:
            return
        if self.records is None or not state.business_id:
            logger.warning(f"Orchestrator: No business bound for call {state.call_sid}, not saving tool results")
            return

        if result.appointment is not None:
            self._dispatch(
                "create_appointment",
                self._save_appointment(state, result.appointment),
                call_sid=state.call_sid,
                table="appointments",
            )
        if result.customer_request is not None:
            self._dispatch(
                "create_customer_request",
                self._save_customer_request(state, result.customer_request),
                call_sid=state.call_sid,
                table="customer_requests",
            )

    async def _save_appointment(self, state: CallState, args: dict) -> Optional[str]:
        record = AppointmentRecord.from_tool_args(
            args,
            business_id=state.business_id,
            call_id=state.db_call_id,
            caller_number=state.caller_number,
            timezone=resolve_timezone(state.config.timezone, self.settings.default_timezone),
        )
        return await self.records.create_appointment(record)

    async def _save_customer_request(self, state: CallState, args: dict) -> Optional[str]:
        record = CustomerRequestRecord.from_tool_args(
            args,
            business_id=state.business_id,
            call_id=state.db_call_id,
            caller_number=state.caller_number,
        )
        return await self.records.create_customer_request(record)
