"""
=====================================================
AI Phone Receptionist - OpenAI LLM Service
=====================================================
Chat completions with function calling for phone conversations
"""

from typing import Optional
from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from .llm_base import (
    LLMServiceBase,
    LLMError,
    LLMRequest,
    LLMResponse,
    LLMRole,
    ToolCall,
)


class OpenAILLM(LLMServiceBase):
    """
    OpenAI chat-completions service

    Non-streaming only: every voice turn needs the complete response to
    see whether the model requested tool calls.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize OpenAI LLM service

        Args:
            api_key: OpenAI API key
            model: Model to use
            base_url: Optional custom base URL
            timeout: HTTP timeout in seconds (the turn deadline is enforced above this)
        """
        super().__init__(api_key, model)

        self._client: Optional[AsyncOpenAI] = None
        self._base_url = base_url
        self._timeout = timeout

    def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client"""
        if self._client is None:
            kwargs = {"api_key": self.api_key, "timeout": self._timeout, "max_retries": 0}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def _complete(self, request: LLMRequest, with_tools: bool) -> LLMResponse:
        client = self._get_client()
        messages = [msg.to_dict() for msg in request.messages]

        kwargs = {
            "model": self.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }

        if with_tools and request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool.get("description", ""),
                        "parameters": tool.get("parameters", {}),
                    },
                }
                for tool in request.tools
            ]
            kwargs["tool_choice"] = "auto"

        logger.info(
            f"OpenAI: Calling {self.model} with {len(messages)} messages "
            f"and {len(kwargs.get('tools', []))} tools"
        )

        try:
            response = await client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.error(f"OpenAI: Request failed: {e}")
            raise LLMError(str(e)) from e

        if not response.choices:
            raise LLMError("OpenAI returned no choices")

        choice = response.choices[0]
        content = choice.message.content or ""

        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "")
            for tc in (choice.message.tool_calls or [])
        ]
        if tool_calls:
            logger.info(f"OpenAI: Tool calls: {[tc.name for tc in tool_calls]}")

        usage = response.usage
        return LLMResponse(
            content=content,
            role=LLMRole.ASSISTANT,
            finish_reason=choice.finish_reason,
            tool_calls=tool_calls,
            tokens_used=usage.total_tokens if usage else 0,
            metadata={
                "model": response.model,
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
            },
        )

    async def chat(self, request: LLMRequest) -> LLMResponse:
        """
        Plain chat completion

        Args:
            request: LLM request

        Returns:
            Complete LLM response
        """
        return await self._complete(request, with_tools=False)

    async def chat_with_tools(self, request: LLMRequest) -> LLMResponse:
        """
        Chat completion with function/tool calling support.

        Args:
            request: LLM request with tools defined

        Returns:
            LLMResponse with content and/or tool_calls
        """
        return await self._complete(request, with_tools=True)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# Factory function
def create_openai_llm(config: dict) -> OpenAILLM:
    """
    Factory function to create OpenAI LLM service from config

    Args:
        config: Configuration dictionary (from Settings.model_dump())

    Returns:
        Configured OpenAILLM instance
    """
    return OpenAILLM(
        api_key=config.get("openai_api_key"),
        model=config.get("openai_model", "gpt-4o-mini"),
        base_url=config.get("openai_base_url") or None,
    )
