"""Polling engine: one generateContent request per sampled frame.

Used when a persistent live connection is unavailable. At most one frame
analysis is in flight; a frame sampled while a call is outstanding is
dropped, not queued. Free-text questions are independent of the frame loop
and carry a rolling window of the most recent exchanges.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable

import httpx

from sitescout.config import PollingConfig, get_settings
from sitescout.engines.base import AnalysisResult, EngineObserver, VisionAnalysisEngine
from sitescout.engines.prompts import FRAME_PROMPT, POLLING_SYSTEM_PROMPT
from sitescout.engines.tools import REPORT_FINDING, parse_finding_args, tool_declarations
from sitescout.errors import AnalysisCallFailed, MalformedServerMessage

logger = logging.getLogger(__name__)

POLLING_CONFIDENCE = 0.85


def _candidate_parts(data: dict) -> list[dict]:
    """Parts of the first candidate. Raises AnalysisCallFailed on a misshapen reply."""
    candidates = data.get("candidates") or []
    if not isinstance(candidates, list):
        raise AnalysisCallFailed("unexpected response shape: candidates is not a list")
    if not candidates:
        return []
    candidate = candidates[0]
    if not isinstance(candidate, dict):
        raise AnalysisCallFailed("unexpected response shape: candidate is not an object")
    content = candidate.get("content") or {}
    if not isinstance(content, dict):
        raise AnalysisCallFailed("unexpected response shape: candidate content is not an object")
    parts = content.get("parts") or []
    if not isinstance(parts, list) or not all(isinstance(p, dict) for p in parts):
        raise AnalysisCallFailed("unexpected response shape: parts")
    return parts


def _texts(parts: list[dict]) -> list[str]:
    return [p["text"] for p in parts if isinstance(p.get("text"), str) and p["text"]]


class PollingEngine(VisionAnalysisEngine):
    kind = "polling"

    def __init__(
        self,
        observer: EngineObserver,
        api_key: str = "",
        config: PollingConfig | None = None,
        client: httpx.AsyncClient | None = None,
        system_prompt: str = POLLING_SYSTEM_PROMPT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.observer = observer
        self.config = config or get_settings().polling
        self.api_key = api_key or get_settings().gemini_api_key
        self.system_prompt = system_prompt
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._session_start = clock()
        self._busy = False
        self._active = False
        self._history: deque[dict] = deque(maxlen=self.config.max_history_exchanges * 2)
        self.frames_analyzed = 0
        self.frames_dropped = 0

    # ── Session ───────────────────────────────────────────

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_ready(self) -> bool:
        return self._active and not self._busy

    @property
    def history(self) -> list[dict]:
        return list(self._history)

    def start_session(self) -> None:
        self._session_start = self._clock()
        self._history.clear()
        self._active = True
        logger.info("Polling session started (model=%s)", self.config.model)

    def end_session(self) -> None:
        self._history.clear()
        self._active = False
        logger.info("Polling session ended")

    async def start(self) -> None:
        self.start_session()
        self.observer.on_connection_change(True)

    async def stop(self) -> None:
        was_active = self._active
        self.end_session()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        if was_active:
            self.observer.on_connection_change(False)

    # ── Frame analysis ────────────────────────────────────

    async def analyze_frame(self, image_b64: str) -> AnalysisResult | None:
        """Analyze one frame. Returns None when skipped or when the call failed."""
        if self._busy:
            self.frames_dropped += 1
            logger.debug("Already analyzing, skipping frame")
            return None

        self._busy = True
        try:
            started = time.perf_counter()
            data = await self._generate(self._frame_request(image_b64))
            logger.debug("Frame analyzed in %.0fms", (time.perf_counter() - started) * 1000)
            result = self._process_response(data)
            self.frames_analyzed += 1
            return result
        except AnalysisCallFailed as e:
            logger.error("Frame analysis failed: %s", e)
            self.observer.on_error(e)
            return None
        finally:
            self._busy = False

    def _frame_request(self, image_b64: str) -> dict:
        cfg = self.config
        return {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": FRAME_PROMPT},
                    {"inlineData": {"mimeType": "image/jpeg", "data": image_b64}},
                ],
            }],
            "systemInstruction": {"parts": [{"text": self.system_prompt}]},
            "generationConfig": {
                "temperature": cfg.temperature,
                "topK": cfg.top_k,
                "topP": cfg.top_p,
                "maxOutputTokens": cfg.max_output_tokens,
                "responseMimeType": "text/plain",
            },
            "tools": tool_declarations("functionDeclarations"),
            "toolConfig": {"functionCallingConfig": {"mode": "AUTO"}},
        }

    def _process_response(self, data: dict) -> AnalysisResult | None:
        parts = _candidate_parts(data)
        if not parts:
            logger.info("No content in response")
            return None

        result = AnalysisResult()
        texts = _texts(parts)
        if texts:
            result.text = "".join(texts).strip()
            self.observer.on_text(result.text)

        for part in parts:
            call = part.get("functionCall")
            if not isinstance(call, dict) or call.get("name") != REPORT_FINDING:
                continue
            try:
                finding = parse_finding_args(
                    call.get("args"),
                    timestamp_seconds=self._clock() - self._session_start,
                    confidence=POLLING_CONFIDENCE,
                )
            except MalformedServerMessage as e:
                logger.warning("%s", e)
                continue
            logger.info("Finding reported: %s", finding.title)
            result.finding = finding
            self.observer.on_finding(finding)
            break  # one function call per response

        return result

    # ── Free-text questions ───────────────────────────────

    async def send_message(self, text: str, image_b64: str | None = None) -> str | None:
        """Ask a question with the recent conversation as context."""
        parts: list[dict[str, Any]] = [{"text": text}]
        if image_b64:
            parts.append({"inlineData": {"mimeType": "image/jpeg", "data": image_b64}})

        body = {
            "contents": [*self._history, {"role": "user", "parts": parts}],
            "systemInstruction": {"parts": [{"text": self.system_prompt}]},
            "generationConfig": {
                "temperature": self.config.chat_temperature,
                "maxOutputTokens": self.config.chat_max_output_tokens,
            },
        }
        try:
            data = await self._generate(body)
            texts = _texts(_candidate_parts(data))
        except AnalysisCallFailed as e:
            logger.error("Message failed: %s", e)
            self.observer.on_error(e)
            return None
        if not texts:
            return None
        answer = "".join(texts).strip()

        # The deque drops the oldest turns once the window is full.
        self._history.append({"role": "user", "parts": [{"text": text}]})
        self._history.append({"role": "model", "parts": [{"text": answer}]})
        self.observer.on_text(answer)
        return answer

    # ── VisionAnalysisEngine ──────────────────────────────

    async def submit_frame(self, image_b64: str) -> bool:
        if self._busy:
            self.frames_dropped += 1
            return False
        await self.analyze_frame(image_b64)
        return True

    async def submit_audio(self, chunk_b64: str) -> bool:
        # No audio input over request/response; the operator speaks through ask().
        return False

    async def ask(self, text: str, image_b64: str | None = None) -> str | None:
        return await self.send_message(text, image_b64)

    # ── Transport ─────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout_s)
        return self._client

    async def _generate(self, body: dict) -> dict:
        url = f"{self.config.api_url}/{self.config.model}:generateContent"
        try:
            resp = await self._get_client().post(url, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as e:
            raise AnalysisCallFailed(f"request failed: {e}") from e
        if resp.status_code >= 400:
            raise AnalysisCallFailed(
                f"API error: {resp.status_code} - {resp.text[:200]}", status_code=resp.status_code
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise AnalysisCallFailed(f"invalid JSON from API: {e}", status_code=resp.status_code) from e
        if not isinstance(data, dict):
            raise AnalysisCallFailed("unexpected response shape", status_code=resp.status_code)
        return data
