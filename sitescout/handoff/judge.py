"""Deep-reasoning backend client used by the hand-off stage."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from sitescout.config import HandoffConfig, get_settings
from sitescout.errors import HandoffFailed

logger = logging.getLogger(__name__)


class Judge(ABC):
    """Abstract interface for the slow, JSON-producing reasoning model."""

    @abstractmethod
    async def complete_json(
        self, prompt: str, system_prompt: str, max_output_tokens: int | None = None
    ) -> str:
        """Send one user turn, return the model's JSON text. Raises HandoffFailed."""
        ...


class GeminiJudge(Judge):
    """generateContent client with low temperature and a JSON response type."""

    def __init__(
        self,
        api_key: str = "",
        config: HandoffConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or get_settings().handoff
        self.api_key = api_key or get_settings().gemini_api_key
        self._client = client

    async def complete_json(
        self, prompt: str, system_prompt: str, max_output_tokens: int | None = None
    ) -> str:
        cfg = self.config
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "generationConfig": {
                "temperature": cfg.temperature,
                "topK": cfg.top_k,
                "topP": cfg.top_p,
                "maxOutputTokens": max_output_tokens or cfg.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        url = f"{cfg.api_url}/{cfg.model}:generateContent"
        try:
            if self._client is not None:
                resp = await self._client.post(url, params={"key": self.api_key}, json=body)
            else:
                async with httpx.AsyncClient(timeout=cfg.request_timeout_s) as client:
                    resp = await client.post(url, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as e:
            raise HandoffFailed(f"request failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("Judge API error %s: %s", resp.status_code, resp.text[:200])
            raise HandoffFailed(f"API error: {resp.status_code}")
        try:
            return resp.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise HandoffFailed(f"invalid response from judge model: {e}") from e
