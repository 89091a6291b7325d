"""
=====================================================
AI Phone Receptionist - LLM Service Base Interface
=====================================================
Abstract base class for LLM (Large Language Model) providers
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
from enum import Enum


class LLMError(Exception):
    """Language-model call failed (transport, API or response error)"""


class TurnTimeoutError(LLMError):
    """The model did not answer within the per-turn deadline"""


class LLMRole(Enum):
    """Roles in conversation"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A function call requested by the model"""
    id: str
    name: str
    arguments: str  # raw JSON string as sent by the model

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class Message:
    """Conversation message"""
    role: LLMRole
    content: Optional[str] = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API calls"""
        data: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_history(cls, entry: dict) -> "Message":
        """Build a message from a {"role", "content"} history entry"""
        return cls(role=LLMRole(entry["role"]), content=entry["content"])


@dataclass
class LLMRequest:
    """Request for LLM completion"""
    messages: List[Message]
    temperature: float = 0.75
    max_tokens: int = 256
    tools: List[Dict] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResponse:
    """Response from LLM"""
    content: str
    role: LLMRole = LLMRole.ASSISTANT
    finish_reason: Optional[str] = None
    tokens_used: int = 0
    tool_calls: List[ToolCall] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class LLMServiceBase(ABC):
    """
    Abstract base class for LLM services

    All LLM providers must implement this interface.
    """

    def __init__(self, api_key: str, model: str):
        """
        Initialize LLM service

        Args:
            api_key: Provider API key
            model: Model identifier
        """
        self.api_key = api_key
        self.model = model

    @abstractmethod
    async def chat(self, request: LLMRequest) -> LLMResponse:
        """
        Plain chat completion (no tools)

        Args:
            request: LLM request

        Returns:
            Complete LLM response
        """

    @abstractmethod
    async def chat_with_tools(self, request: LLMRequest) -> LLMResponse:
        """
        Chat completion with function calling

        Args:
            request: LLM request with tools declared

        Returns:
            LLM response with content and/or tool calls
        """

    async def close(self) -> None:
        """Release any network resources"""

    async def __aenter__(self):
        """Context manager entry"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        await self.close()
