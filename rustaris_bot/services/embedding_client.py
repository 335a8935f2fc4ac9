from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict, List

import aiohttp

from ..errors import EmbeddingError


logger = logging.getLogger("rustaris_bot")

_RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}


class EmbeddingClient:
    """OpenAI-compatible /embeddings client returning one fixed-size vector per text."""

    backend_name = "openai_compatible"

    def __init__(
        self,
        base_url: str,
        model: str,
        dimensions: int,
        timeout_seconds: int,
        api_key: str = "",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimensions = int(dimensions)
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        return f"{self.base_url}/embeddings"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

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
                        raise EmbeddingError(f"Embedding error {response.status}: {text}")
                    last_error = RuntimeError(f"Embedding retriable error {response.status}: {text}")
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
                last_error = exc

            if attempt < retries:
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if last_error is not None:
            raise EmbeddingError(f"Embedding request failed after retries: {last_error}")
        raise EmbeddingError("Embedding request failed without explicit error")

    def _extract_vector(self, data: Dict[str, Any]) -> List[float]:
        items = data.get("data") or []
        if not items or not isinstance(items[0], dict):
            raise EmbeddingError("Embedding response carries no data")
        raw = items[0].get("embedding")
        if not isinstance(raw, list):
            raise EmbeddingError("Embedding response carries no vector")
        try:
            vector = [float(value) for value in raw]
        except (TypeError, ValueError) as exc:
            raise EmbeddingError(f"Embedding vector is not numeric: {exc}") from exc
        if len(vector) != self.dimensions:
            raise EmbeddingError(f"Embedding has {len(vector)} dimensions, expected {self.dimensions}")
        return vector

    async def embed(self, text: str) -> List[float]:
        payload = {"model": self.model, "input": text}
        data = await self._request(payload)
        return self._extract_vector(data)
