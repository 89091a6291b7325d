"""
=====================================================
AI Phone Receptionist - Conversation Turn Service
=====================================================
Runs one caller turn against the language model:

1. Build the system instruction and the tool set for the business
2. Send system + history + the new utterance
3. Acknowledge any tool calls and re-send, up to MAX_TOOL_ROUNDS
4. Return the reply text plus the structured outcomes the tools carried

The whole exchange races a hard deadline. If the deadline wins, the turn
fails with TurnTimeoutError and whatever the model eventually returns is
dropped.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional
from loguru import logger

from services.config.business_config import BusinessConfig
from services.conversation.call_state import CallStep
from services.llm import tools as tool_defs
from services.llm.llm_base import (
    LLMRequest,
    LLMResponse,
    LLMRole,
    LLMServiceBase,
    Message,
    TurnTimeoutError,
)
from services.llm.prompts import build_system_instruction
from services.reporting.error_reporter import capture_exception


FALLBACK_REPLY = "I'm sorry, I didn't catch that. Could you say that again?"

SENTIMENTS = ("positive", "neutral", "negative")
OUTCOMES = (
    "general_inquiry", "appointment", "sales", "support", "message", "callback",
    "after_hours", "emergency", "transfer", "spam", "unknown",
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass
class TurnResult:
    """Reply text plus the last value seen for each tool across rounds"""
    text: str
    intent: Optional[str] = None
    appointment: Optional[dict] = None
    customer_request: Optional[dict] = None
    end_call: Optional[dict] = None
    rounds: int = 0


@dataclass
class CallSummary:
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    outcome: Optional[str] = None


def _parse_arguments(raw: str) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"TurnService: Tool arguments are not valid JSON: {raw[:100]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _discard_result(task: asyncio.Task) -> None:
    """Consume a timed-out turn's outcome so it is never reported as unhandled"""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"TurnService: Discarded late failure from timed-out turn: {error}")
    else:
        logger.debug("TurnService: Discarded late reply from timed-out turn")


class TurnService:
    """
    Language-model turn service

    Args:
        llm: LLM provider
        temperature: Sampling temperature for conversation turns
        max_tokens: Max tokens per model reply
        turn_timeout: Hard deadline for a whole turn (seconds)
        max_tool_rounds: Max tool-call rounds per turn
        clock: Returns the current timezone-aware datetime (for the prompt)
    """

    def __init__(
        self,
        llm: LLMServiceBase,
        temperature: float = 0.75,
        max_tokens: int = 256,
        turn_timeout: float = 14.0,
        max_tool_rounds: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
        default_timezone: str = "America/Chicago",
    ):
        self.llm = llm
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.turn_timeout = turn_timeout
        self.max_tool_rounds = max_tool_rounds
        self._clock = clock
        self.default_timezone = default_timezone

    async def take_turn(
        self,
        history: List[dict],
        utterance: str,
        step: CallStep,
        intent: Optional[str],
        config: BusinessConfig,
        transfer_available: bool = False,
    ) -> TurnResult:
        """
        Get the model's reply to one caller utterance.

        Args:
            history: Prior turns as {"role", "content"} dicts
            utterance: What the caller just said
            step: Current call step
            intent: Current call intent
            config: Business configuration
            transfer_available: Whether live transfer is configured

        Returns:
            TurnResult

        Raises:
            TurnTimeoutError: The deadline elapsed first
            LLMError: The model call failed
        """
        task = asyncio.create_task(
            self._converse(history, utterance, step, intent, config, transfer_available)
        )
        done, _ = await asyncio.wait({task}, timeout=self.turn_timeout)

        if task not in done:
            task.add_done_callback(_discard_result)
            task.cancel()
            logger.warning(f"TurnService: Turn exceeded {self.turn_timeout}s deadline")
            raise TurnTimeoutError(f"turn exceeded {self.turn_timeout}s")

        return task.result()

    async def _converse(
        self,
        history: List[dict],
        utterance: str,
        step: CallStep,
        intent: Optional[str],
        config: BusinessConfig,
        transfer_available: bool,
    ) -> TurnResult:
        now = self._clock() if self._clock else None
        system_prompt = build_system_instruction(
            config,
            step,
            intent,
            now=now,
            transfer_available=transfer_available,
            default_timezone=self.default_timezone,
        )

        messages = [Message(role=LLMRole.SYSTEM, content=system_prompt)]
        messages.extend(Message.from_history(entry) for entry in history)
        messages.append(Message(role=LLMRole.USER, content=utterance))

        request = LLMRequest(
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            tools=tool_defs.tools_for_capabilities(config.allowed_tasks),
        )

        response = await self.llm.chat_with_tools(request)
        result = TurnResult(text="")
        earlier_text = ""

        while response.tool_calls and result.rounds < self.max_tool_rounds:
            result.rounds += 1
            if response.content.strip():
                earlier_text = response.content.strip()

            messages.append(Message(
                role=LLMRole.ASSISTANT,
                content=response.content or None,
                tool_calls=list(response.tool_calls),
            ))
            for tool_call in response.tool_calls:
                ack = self._record_tool_call(result, tool_call.name, _parse_arguments(tool_call.arguments))
                messages.append(Message(
                    role=LLMRole.TOOL,
                    content=json.dumps(ack),
                    tool_call_id=tool_call.id,
                ))

            response = await self.llm.chat_with_tools(request)

        if response.tool_calls:
            logger.warning(f"TurnService: Stopped after {result.rounds} tool rounds with calls still pending")

        result.text = self._reply_text(response, earlier_text)
        logger.info(
            f"TurnService: Reply ready after {result.rounds} tool rounds "
            f"(intent={result.intent}, booking={result.appointment is not None}, "
            f"request={result.customer_request is not None}, end={result.end_call is not None})"
        )
        return result

    @staticmethod
    def _record_tool_call(result: TurnResult, name: str, arguments: dict) -> Dict:
        """Keep the latest arguments per tool and build the synthetic acknowledgement"""
        logger.info(f"TurnService: Model called {name}: {arguments}")

        if name == tool_defs.SET_CALL_INTENT:
            intent = arguments.get("intent")
            if isinstance(intent, str) and intent:
                result.intent = intent
            return {"success": True}
        if name == tool_defs.BOOK_APPOINTMENT:
            result.appointment = arguments
            return {"success": True, "message": "Appointment recorded successfully."}
        if name == tool_defs.RECORD_CUSTOMER_REQUEST:
            result.customer_request = arguments
            return {"success": True, "message": "Request recorded successfully."}
        if name == tool_defs.END_CALL:
            result.end_call = arguments
            return {"success": True}

        logger.warning(f"TurnService: Model called unknown tool {name}")
        return {"error": "Unknown function"}

    @staticmethod
    def _reply_text(response: LLMResponse, earlier_text: str) -> str:
        text = (response.content or "").strip()
        if text:
            return text
        if earlier_text:
            return earlier_text
        logger.warning("TurnService: Model returned no text, using fallback reply")
        return FALLBACK_REPLY

    async def summarize_call(self, transcript: List[dict]) -> CallSummary:
        """
        Summarize a finished call.

        Args:
            transcript: [{"speaker": "caller" | "ai", "message": str, ...}]

        Returns:
            CallSummary (all None when the model fails or answers badly)
        """
        lines = "\n".join(
            f"{'AI' if line.get('speaker') == 'ai' else 'Caller'}: {line.get('message', '')}"
            for line in transcript
        )
        prompt = (
            "Analyze this phone call transcript. Respond with JSON only, no markdown:\n"
            '{"summary":"1-2 sentence summary of the call",'
            '"sentiment":"positive|neutral|negative",'
            f'"outcome":"{"|".join(OUTCOMES)}"}}\n\n'
            f"Transcript:\n{lines}"
        )

        try:
            response = await self.llm.chat(LLMRequest(
                messages=[Message(role=LLMRole.USER, content=prompt)],
                temperature=0.1,
                max_tokens=150,
            ))
            raw = _CODE_FENCE.sub("", response.content.strip())
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                raise ValueError("summary response is not a JSON object")
        except Exception as e:
            logger.error(f"TurnService: Call summary failed: {e}")
            capture_exception(e, operation="summarize_call")
            return CallSummary()

        summary = parsed.get("summary")
        sentiment = parsed.get("sentiment")
        outcome = parsed.get("outcome")
        return CallSummary(
            summary=summary if isinstance(summary, str) and summary.strip() else None,
            sentiment=sentiment if sentiment in SENTIMENTS else None,
            outcome=outcome if outcome in OUTCOMES else None,
        )
