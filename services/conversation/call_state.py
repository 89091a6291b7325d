"""
=====================================================
AI Phone Receptionist - Call State Store
=====================================================
Per-call conversation state, keyed by Twilio CallSid.

State lives in process memory only. It is created lazily on the first
webhook for a call and evicted on a terminal status callback; a process
restart loses it.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Dict, List, Optional
from loguru import logger

from services.config.business_config import BusinessConfig


class CallStep(Enum):
    """Call-flow steps: greeting -> identify_intent -> gather_details -> confirm -> ending"""
    GREETING = "greeting"
    IDENTIFY_INTENT = "identify_intent"
    GATHER_DETAILS = "gather_details"
    CONFIRM = "confirm"
    ENDING = "ending"


@dataclass
class ProcessedUtterance:
    """Idempotency cache entry for the most recently answered utterance"""
    fingerprint: str
    timestamp: float
    response: str


@dataclass
class CallState:
    """Mutable state for one live call"""
    call_sid: str
    started_at: float
    step: CallStep = CallStep.GREETING
    intent: Optional[str] = None

    # [{"role": "user" | "assistant", "content": "..."}]
    history: List[dict] = field(default_factory=list)

    silence_count: int = 0
    last_processed: Optional[ProcessedUtterance] = None

    # Bound once on the first webhook
    config: Optional[BusinessConfig] = None
    db_call_id: Optional[str] = None
    business_id: Optional[str] = None
    caller_number: Optional[str] = None

    # Transcript ordering: caller line = n, AI line = n + 1
    sequence_counter: int = 0

    def add_user_message(self, message: str) -> None:
        self.history.append({"role": "user", "content": message})

    def add_assistant_message(self, message: str) -> None:
        self.history.append({"role": "assistant", "content": message})

    def next_sequence(self) -> int:
        """Reserve a caller/AI sequence pair and return the caller number"""
        sequence = self.sequence_counter
        self.sequence_counter += 2
        return sequence

    def elapsed(self, now: float) -> float:
        return now - self.started_at


class CallEndedError(Exception):
    """A webhook arrived for a call whose terminal status was already handled"""


class CallStateStore:
    """
    Process-wide map of CallSid -> CallState with per-call locking.

    Two webhooks for the same call (a Twilio retry racing the original)
    serialize on that call's lock; different calls never contend.

    Evicted calls leave a tombstone for `ended_ttl` seconds so a webhook
    still queued on the call's lock cannot recreate the state.

    Args:
        clock: Monotonic clock used for started_at and tombstone expiry
        ended_ttl: Seconds an evicted CallSid stays refused
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, ended_ttl: float = 3600.0):
        self._clock = clock
        self._ended_ttl = ended_ttl
        self._states: Dict[str, CallState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._ended: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, call_sid: str) -> bool:
        return call_sid in self._states

    def get(self, call_sid: str) -> Optional[CallState]:
        return self._states.get(call_sid)

    def has_ended(self, call_sid: str) -> bool:
        ended_at = self._ended.get(call_sid)
        return ended_at is not None and self._clock() - ended_at < self._ended_ttl

    def _get_or_create(self, call_sid: str) -> CallState:
        state = self._states.get(call_sid)
        if state is None:
            state = CallState(call_sid=call_sid, started_at=self._clock())
            self._states[call_sid] = state
            logger.info(f"CallState: Created state for call {call_sid}")
        return state

    @asynccontextmanager
    async def session(self, call_sid: str) -> AsyncIterator[CallState]:
        """
        Hold the call's lock and yield its state (created if missing).

        Raises:
            CallEndedError: The call was evicted, before or while waiting for the lock

        Usage:
            async with store.session(call_sid) as state:
                state.silence_count += 1
        """
        if self.has_ended(call_sid):
            raise CallEndedError(call_sid)

        lock = self._locks.setdefault(call_sid, asyncio.Lock())
        async with lock:
            if self.has_ended(call_sid):
                raise CallEndedError(call_sid)
            yield self._get_or_create(call_sid)

    def remove(self, call_sid: str) -> Optional[CallState]:
        """Evict a call's state (terminal status callback) and refuse it from now on"""
        self._prune_ended()
        self._ended[call_sid] = self._clock()
        self._locks.pop(call_sid, None)
        state = self._states.pop(call_sid, None)
        if state is not None:
            logger.info(f"CallState: Evicted state for call {call_sid}")
        return state

    def _prune_ended(self) -> None:
        now = self._clock()
        expired = [sid for sid, ended_at in self._ended.items() if now - ended_at >= self._ended_ttl]
        for sid in expired:
            del self._ended[sid]
