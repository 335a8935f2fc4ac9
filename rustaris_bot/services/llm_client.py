from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List

import aiohttp


logger = logging.getLogger("rustaris_bot")

_RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}


@dataclass(slots=True)
class ToolCall:
    id: str
    name: str
    # Raw JSON text exactly as the model produced it; parsing is the registry's job.
    arguments: str


@dataclass(slots=True)
class Completion:
    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    raw_message: Dict[str, Any] = field(default_factory=dict)

    def assistant_message(self) -> Dict[str, Any]:
        """The assistant turn to replay into the next request."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in self.tool_calls
            ]
        return message


class ChatCompletionClient:
    """OpenAI-compatible chat completion client with function calling."""

    backend_name = "openai_compatible"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        base_url: str = "https://api.deepseek.com",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.max_output_tokens: int | None = int(max_output_tokens) if int(max_output_tokens) > 0 else None
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def _request(self, payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = self._endpoint()
        last_error: Exception | None = None

        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(url, json=payload, headers=self._headers()) as response:
                    text = await response.text()
                    if response.status == 200:
                        return json.loads(text)

                    if response.status not in _RETRIABLE_STATUSES:
                        raise RuntimeError(f"LLM error {response.status}: {text}")
                    last_error = RuntimeError(f"LLM retriable error {response.status}: {text}")
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
                last_error = exc

            if attempt < retries:
                logger.warning("LLM request attempt %s/%s failed: %s", attempt, retries, last_error)
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if last_error is not None:
            raise RuntimeError(f"LLM request failed after retries: {last_error}")
        raise RuntimeError("LLM request failed without explicit error")

    def _build_payload(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]] | None,
        temperature: float | None,
        max_output_tokens: int | None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            "stream": False,
        }
        selected_tokens = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        if selected_tokens is not None and int(selected_tokens) > 0:
            payload["max_tokens"] = int(selected_tokens)
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    @staticmethod
    def _parse_completion(data: Dict[str, Any]) -> Completion:
        choices = data.get("choices") or []
        if not choices:
            error = data.get("error")
            if error:
                raise RuntimeError(f"LLM returned error: {error}")
            raise RuntimeError("LLM returned no choices")

        message = choices[0].get("message") or {}
        content = message.get("content")
        tool_calls: List[ToolCall] = []
        for raw_call in message.get("tool_calls") or []:
            function = raw_call.get("function") or {}
            name = str(function.get("name") or "").strip()
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments if arguments is not None else {}, ensure_ascii=False)
            tool_calls.append(ToolCall(id=str(raw_call.get("id") or ""), name=name, arguments=arguments))
        return Completion(
            content=content.strip() if isinstance(content, str) else "",
            tool_calls=tool_calls,
            raw_message=message,
        )

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> Completion:
        payload = self._build_payload(messages, tools, temperature, max_output_tokens)
        data = await self._request(payload)
        return self._parse_completion(data)

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        completion = await self.complete(messages, None, temperature, max_output_tokens)
        return completion.content
