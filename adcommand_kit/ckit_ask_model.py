import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import openai

logger = logging.getLogger("ask_model")


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str  # raw JSON text exactly as the model produced it


@dataclass
class ModelTurn:
    content: Optional[str]
    tool_calls: List[ToolCall] = field(default_factory=list)

    def as_message(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ]
        return msg


class ChatModel(Protocol):
    async def next_turn(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> ModelTurn:
        ...


class OpenAIChatModel:
    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        max_tokens: int = 4000,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def next_turn(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> ModelTurn:
        completion = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=messages,
            tools=tools,
            tool_choice="auto",
        )
        if not completion.choices:
            return ModelTurn(content=None)
        message = completion.choices[0].message
        tool_calls = []
        for tc in message.tool_calls or []:
            tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or ""))
        if completion.usage:
            logger.debug("model=%s prompt_tokens=%s completion_tokens=%s tool_calls=%d", self.model, completion.usage.prompt_tokens, completion.usage.completion_tokens, len(tool_calls))
        return ModelTurn(content=message.content, tool_calls=tool_calls)
