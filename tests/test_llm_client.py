from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rustaris_bot.errors import EmbeddingError  # noqa: E402
from rustaris_bot.services.embedding_client import EmbeddingClient  # noqa: E402
from rustaris_bot.services.llm_client import ChatCompletionClient  # noqa: E402


def _client() -> ChatCompletionClient:
    return ChatCompletionClient(
        api_key="sk-test",
        model="deepseek-chat",
        timeout_seconds=10,
        temperature=0.7,
        max_output_tokens=256,
    )


def test_complete_sends_tools_and_parses_tool_calls() -> None:
    client = _client()
    captured: Dict[str, Any] = {}

    async def fake_request(payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        captured["payload"] = payload
        return {
            "choices": [
                {
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "call_abc",
                                "type": "function",
                                "function": {"name": "search_memory", "arguments": '{"query": "tea"}'},
                            }
                        ],
                    }
                }
            ]
        }

    client._request = fake_request  # type: ignore[method-assign]
    tools = [{"type": "function", "function": {"name": "search_memory", "parameters": {"type": "object"}}}]

    completion = asyncio.run(client.complete([{"role": "user", "content": "hi"}], tools))

    payload = captured["payload"]
    assert payload["model"] == "deepseek-chat"
    assert payload["tools"] == tools
    assert payload["tool_choice"] == "auto"
    assert payload["max_tokens"] == 256
    assert payload["stream"] is False
    assert completion.content == ""
    assert len(completion.tool_calls) == 1
    call = completion.tool_calls[0]
    assert (call.id, call.name, call.arguments) == ("call_abc", "search_memory", '{"query": "tea"}')

    replay = completion.assistant_message()
    assert replay["role"] == "assistant"
    assert replay["tool_calls"][0]["function"]["arguments"] == '{"query": "tea"}'


def test_chat_omits_tools_and_honours_temperature_override() -> None:
    client = _client()
    captured: Dict[str, Any] = {}

    async def fake_request(payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        captured["payload"] = payload
        return {"choices": [{"message": {"role": "assistant", "content": "  plain answer "}}]}

    client._request = fake_request  # type: ignore[method-assign]

    text = asyncio.run(client.chat([{"role": "user", "content": "hi"}], temperature=0.1))

    assert text == "plain answer"
    assert "tools" not in captured["payload"]
    assert captured["payload"]["temperature"] == 0.1


def test_missing_choices_raise() -> None:
    client = _client()

    async def fake_request(payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        return {"error": {"message": "quota"}}

    client._request = fake_request  # type: ignore[method-assign]

    with pytest.raises(RuntimeError):
        asyncio.run(client.chat([{"role": "user", "content": "hi"}]))


def test_dict_arguments_are_serialized_to_json_text() -> None:
    completion = ChatCompletionClient._parse_completion(
        {"choices": [{"message": {"tool_calls": [{"id": "x", "function": {"name": "n", "arguments": {"a": 1}}}]}}]}
    )

    assert completion.tool_calls[0].arguments == '{"a": 1}'


def test_embedding_client_checks_dimensions() -> None:
    client = EmbeddingClient(base_url="http://localhost:11434/v1/", model="bge-m3", dimensions=3, timeout_seconds=5)
    captured: Dict[str, Any] = {}

    async def fake_request(payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        captured["payload"] = payload
        return {"data": [{"embedding": [0.1, 0.2, 0.3]}]}

    client._request = fake_request  # type: ignore[method-assign]

    assert asyncio.run(client.embed("hello")) == [0.1, 0.2, 0.3]
    assert captured["payload"] == {"model": "bge-m3", "input": "hello"}
    assert client._endpoint() == "http://localhost:11434/v1/embeddings"

    async def short_request(payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        return {"data": [{"embedding": [0.1, 0.2]}]}

    client._request = short_request  # type: ignore[method-assign]
    with pytest.raises(EmbeddingError):
        asyncio.run(client.embed("hello"))
