"""Streaming engine: persistent bidirectional session with the Live API.

State machine::

    Idle -> Connecting -> AwaitingAck -> Ready -> {Reconnecting, Closing} -> Closed

``connect()`` opens the socket, sends the setup descriptor and resolves once
the server acknowledges it (``setupComplete``). It rejects on handshake
timeout, on transport failure, or when the socket closes before the
acknowledgment. Media is only transmitted in ``Ready``; frames and audio
submitted in any other state are dropped, never queued.

Once ``Ready`` has been reached, a non-normal close schedules a reconnect
after a fixed delay, up to ``max_reconnect_attempts`` times. A normal close
(code 1000) goes straight to ``Closed`` without error.
"""

from __future__ import annotations

import asyncio
import base64
import enum
import functools
import json
import logging
import time
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from sitescout.config import StreamingConfig, get_settings
from sitescout.engines.base import EngineObserver, VisionAnalysisEngine
from sitescout.engines.prompts import LIVE_SYSTEM_PROMPT
from sitescout.engines.tools import REPORT_FINDING, parse_finding_args, tool_declarations
from sitescout.errors import (
    EngineNotReady, HandshakeFailed, HandshakeTimeout, InspectionError, MalformedServerMessage,
    ReconnectExhausted, TransportClosedUnexpectedly,
)

logger = logging.getLogger(__name__)

NORMAL_CLOSE = 1000
ABNORMAL_CLOSE = 1006
STREAMING_CONFIDENCE = 0.8

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_ACK = "awaiting_ack"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"
    CLOSED = "closed"


def build_setup_message(config: StreamingConfig, system_prompt: str) -> dict:
    """Build the initial `setup` message for the Live API."""
    return {
        "setup": {
            "model": f"models/{config.model}",
            "generation_config": {
                "response_modalities": list(config.response_modalities),
                "speech_config": {
                    "voice_config": {
                        "prebuilt_voice_config": {
                            "voice_name": config.voice,
                        }
                    }
                },
            },
            "system_instruction": {
                "parts": [{"text": system_prompt}]
            },
            "tools": tool_declarations("function_declarations"),
        }
    }


def _media_message(data: str, mime_type: str) -> dict:
    return {
        "realtime_input": {
            "media_chunks": [{"mime_type": mime_type, "data": data}]
        }
    }


async def _websocket_connector(url: str, max_size: int):
    return await websockets.connect(
        url,
        additional_headers={"Content-Type": "application/json"},
        max_size=max_size,
        ping_interval=20,
        ping_timeout=60,
        close_timeout=10,
    )


def _consume_exception(fut: asyncio.Future) -> None:
    # Reconnect attempts have no awaiting caller; keep asyncio from warning.
    if not fut.cancelled():
        fut.exception()


class StreamingEngine(VisionAnalysisEngine):
    kind = "streaming"

    def __init__(
        self,
        observer: EngineObserver,
        api_key: str = "",
        config: StreamingConfig | None = None,
        system_prompt: str = LIVE_SYSTEM_PROMPT,
        connector: Connector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.observer = observer
        self.config = config or get_settings().streaming
        self.api_key = api_key or get_settings().gemini_api_key
        self.system_prompt = system_prompt
        self._connector = connector or functools.partial(
            _websocket_connector, max_size=self.config.max_message_bytes
        )
        self._clock = clock

        self._state = ConnectionState.IDLE
        self._ws: Any = None
        self._generation = 0  # bumped per transport attempt; stale callbacks are ignored
        self._handshake: asyncio.Future | None = None
        self._handshake_timer: asyncio.TimerHandle | None = None
        self._attempt_is_reconnect = False
        self._opener: asyncio.Task | None = None
        self._receiver: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._reconnect_attempts = 0
        self._disconnected = False
        self._session_start = clock()
        self.last_error: Exception | None = None
        self.frames_sent = 0
        self.frames_dropped = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        logger.info("Live session %s -> %s", old.value, new.value)
        was_ready = old is ConnectionState.READY
        now_ready = new is ConnectionState.READY
        if was_ready != now_ready:
            self.observer.on_connection_change(now_ready)
        on_state = getattr(self.observer, "on_state_change", None)
        if on_state is not None:
            on_state(new)

    def _url(self) -> str:
        return f"{self.config.ws_url}?key={self.api_key}"

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.connect()

    async def stop(self) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Open the session and wait for the setup acknowledgment."""
        if self._state is ConnectionState.READY:
            return
        if self._handshake is not None and not self._handshake.done():
            # Only one handshake is ever in flight.
            return await asyncio.shield(self._handshake)
        if self._state is ConnectionState.CLOSED and self._disconnected:
            raise InspectionError("engine was disconnected; create a new engine for a new session")
        if self._state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
            raise InspectionError(f"cannot connect while {self._state.value}")

        self._reconnect_attempts = 0
        self.last_error = None
        self._session_start = self._clock()
        fut = self._begin_attempt(reconnect=False)
        await asyncio.shield(fut)

    async def disconnect(self) -> None:
        """Close the session with a normal close code. No reconnect follows."""
        self._disconnected = True
        if self._state is ConnectionState.CLOSED:
            return
        self._generation += 1
        self._cancel_handshake_timer()
        for task in (self._reconnect_task, self._opener):
            if task is not None and not task.done():
                task.cancel()
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(HandshakeFailed("connection cancelled by disconnect()"))

        self._set_state(ConnectionState.CLOSING)
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close(code=NORMAL_CLOSE, reason="Session ended")
            except Exception as e:
                logger.debug("Error while closing live socket: %s", e)
        if self._receiver is not None and not self._receiver.done():
            self._receiver.cancel()
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CLOSED)

    async def send_video_frame(self, image_b64: str, mime_type: str = "image/jpeg") -> bool:
        if not self.is_ready:
            self.frames_dropped += 1
            logger.debug("Dropping frame: session %s", self._state.value)
            return False
        sent = await self._send(_media_message(image_b64, mime_type))
        if sent:
            self.frames_sent += 1
        else:
            self.frames_dropped += 1
        return sent

    async def send_audio_chunk(self, chunk_b64: str, mime_type: str = "audio/pcm;rate=16000") -> bool:
        if not self.is_ready:
            return False
        return await self._send(_media_message(chunk_b64, mime_type))

    async def send_text(self, text: str) -> bool:
        if not self.is_ready:
            return False
        return await self._send({
            "client_content": {
                "turns": [{"role": "user", "parts": [{"text": text}]}],
                "turn_complete": True,
            }
        })

    async def submit_frame(self, image_b64: str) -> bool:
        return await self.send_video_frame(image_b64)

    async def submit_audio(self, chunk_b64: str) -> bool:
        return await self.send_audio_chunk(chunk_b64)

    async def ask(self, text: str, image_b64: str | None = None) -> str | None:
        if not self.is_ready:
            raise EngineNotReady(f"cannot send a question while {self._state.value}")
        if image_b64:
            await self.send_video_frame(image_b64)
        await self.send_text(text)
        return None

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def _begin_attempt(self, reconnect: bool) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        self._generation += 1
        gen = self._generation
        fut = loop.create_future()
        fut.add_done_callback(_consume_exception)
        self._handshake = fut
        self._attempt_is_reconnect = reconnect
        self._set_state(ConnectionState.CONNECTING)
        self._handshake_timer = loop.call_later(
            self.config.handshake_timeout_s, self._on_handshake_timeout, gen
        )
        self._opener = asyncio.create_task(self._open(gen))
        return fut

    async def _open(self, gen: int) -> None:
        try:
            ws = await self._connector(self._url())
        except Exception as e:
            logger.warning("Live socket failed to open: %s", e)
            self._attempt_failed(gen, HandshakeFailed(f"could not open live connection: {e}"))
            return
        if gen != self._generation:
            # Superseded by disconnect() or a timeout while the socket was opening.
            await self._close_quietly(ws)
            return

        self._ws = ws
        try:
            await ws.send(json.dumps(build_setup_message(self.config, self.system_prompt)))
        except Exception as e:
            self._attempt_failed(gen, HandshakeFailed(f"could not send setup: {e}"))
            return
        if gen != self._generation:
            return
        logger.info("Sent live setup message (model=%s)", self.config.model)
        self._set_state(ConnectionState.AWAITING_ACK)
        self._receiver = asyncio.create_task(self._receive_loop(ws, gen))

    def _on_setup_complete(self, gen: int) -> None:
        if gen != self._generation or self._state is not ConnectionState.AWAITING_ACK:
            logger.debug("Ignoring stray setupComplete")
            return
        self._cancel_handshake_timer()
        if self._attempt_is_reconnect:
            logger.info("Live session re-established (attempt %d)", self._reconnect_attempts)
        self._set_state(ConnectionState.READY)
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(None)

    def _on_handshake_timeout(self, gen: int) -> None:
        if gen != self._generation:
            return
        logger.error("Live setup timed out after %.1fs", self.config.handshake_timeout_s)
        self._attempt_failed(gen, HandshakeTimeout(
            f"no setup acknowledgment within {self.config.handshake_timeout_s:g}s"
        ))

    def _cancel_handshake_timer(self) -> None:
        if self._handshake_timer is not None:
            self._handshake_timer.cancel()
            self._handshake_timer = None

    def _attempt_failed(self, gen: int, exc: InspectionError, retry: bool = False) -> None:
        """A connection attempt failed before the acknowledgment arrived.

        The pending connect() is rejected once. Reconnect attempts, and attempts
        whose socket dropped unexpectedly, go on to the reconnect policy.
        """
        if gen != self._generation:
            return
        self._generation += 1
        self._cancel_handshake_timer()
        self._drop_transport()
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(exc)
        if retry or self._attempt_is_reconnect:
            self._after_unexpected_loss(exc)
            return
        self.last_error = exc
        self._set_state(ConnectionState.CLOSED)
        self.observer.on_error(exc)

    def _drop_transport(self) -> None:
        ws, self._ws = self._ws, None
        if self._receiver is not None and not self._receiver.done():
            if self._receiver is not asyncio.current_task():
                self._receiver.cancel()
        if ws is not None:
            self._spawn(self._close_quietly(ws))

    async def _close_quietly(self, ws) -> None:
        try:
            await ws.close(code=NORMAL_CLOSE)
        except Exception as e:
            logger.debug("Ignoring close error: %s", e)

    # ------------------------------------------------------------------
    # Close handling + reconnect
    # ------------------------------------------------------------------

    def _on_transport_closed(self, gen: int, code: int | None, reason: str) -> None:
        if gen != self._generation:
            return
        logger.info("Live socket closed (code=%s, reason=%r)", code, reason)
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            self._set_state(ConnectionState.CLOSED)
            return

        normal = code == NORMAL_CLOSE
        if self._state in (ConnectionState.CONNECTING, ConnectionState.AWAITING_ACK):
            if normal and self._attempt_is_reconnect:
                self._generation += 1
                self._cancel_handshake_timer()
                self._drop_transport()
                if self._handshake is not None and not self._handshake.done():
                    self._handshake.set_exception(HandshakeFailed("closed normally during handshake"))
                self._set_state(ConnectionState.CLOSED)
                return
            self._attempt_failed(gen, HandshakeFailed(
                f"connection closed during handshake (code={code}, reason={reason!r})"
            ), retry=not normal)
            return

        self._drop_transport()
        if normal:
            self._generation += 1
            self._set_state(ConnectionState.CLOSED)
            return
        self._generation += 1
        self._after_unexpected_loss(TransportClosedUnexpectedly(code, reason))

    def _after_unexpected_loss(self, exc: Exception) -> None:
        if self._reconnect_attempts < self.config.max_reconnect_attempts:
            self._reconnect_attempts += 1
            logger.warning(
                "Live session lost (%s); reconnecting in %.1fs (attempt %d/%d)",
                exc, self.config.reconnect_delay_s,
                self._reconnect_attempts, self.config.max_reconnect_attempts,
            )
            self._set_state(ConnectionState.RECONNECTING)
            self._reconnect_task = self._spawn(self._reconnect_later())
            return

        err = ReconnectExhausted(self._reconnect_attempts, exc)
        logger.error("%s", err)
        self.last_error = err
        self._set_state(ConnectionState.CLOSED)
        self.observer.on_error(err)

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.config.reconnect_delay_s)
        if self._state is not ConnectionState.RECONNECTING:
            return
        self._begin_attempt(reconnect=True)

    # ------------------------------------------------------------------
    # Downlink
    # ------------------------------------------------------------------

    async def _receive_loop(self, ws, gen: int) -> None:
        code: int | None = None
        reason = ""
        try:
            async for raw in ws:
                try:
                    await self._handle_message(raw, gen)
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    logger.warning("%s", MalformedServerMessage(f"unexpected live message shape: {e!r}"))
            code = getattr(ws, "close_code", None)
            reason = getattr(ws, "close_reason", "") or ""
        except ConnectionClosed as e:
            rcvd = getattr(e, "rcvd", None)
            code = rcvd.code if rcvd is not None else ABNORMAL_CLOSE
            reason = rcvd.reason if rcvd is not None else str(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Live downlink failed: %s", e)
            code, reason = ABNORMAL_CLOSE, str(e)
        self._on_transport_closed(gen, code if code is not None else ABNORMAL_CLOSE, reason)

    async def _handle_message(self, raw: str | bytes, gen: int) -> None:
        if isinstance(raw, bytes):
            try:
                data = json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                # Raw binary frames carry PCM audio.
                self.observer.on_audio(raw)
                return
        else:
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning("%s", MalformedServerMessage(f"undecodable live message: {e}"))
                return

        if not isinstance(data, dict):
            logger.warning("%s", MalformedServerMessage(f"unexpected live message: {str(data)[:120]}"))
            return

        if "setupComplete" in data:
            logger.info("Live setup complete")
            self._on_setup_complete(gen)

        server_content = data.get("serverContent")
        if isinstance(server_content, dict):
            self._handle_server_content(server_content)
        elif server_content:
            logger.warning("%s", MalformedServerMessage("serverContent is not an object"))

        tool_call = data.get("toolCall")
        if isinstance(tool_call, dict):
            await self._handle_tool_call(tool_call)
        elif tool_call:
            logger.warning("%s", MalformedServerMessage("toolCall is not an object"))

        error = data.get("error")
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.error("Live API error: %s", message)
            self.observer.on_error(InspectionError(f"live API error: {message}"))

    def _handle_server_content(self, server_content: dict) -> None:
        model_turn = server_content.get("modelTurn") or {}
        parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
        if not isinstance(parts, list):
            parts = []
        for part in parts:
            if not isinstance(part, dict):
                logger.warning("%s", MalformedServerMessage(f"skipping content part {part!r:.80}"))
                continue
            if isinstance(part.get("text"), str) and part["text"]:
                self.observer.on_text(part["text"])
            inline = part.get("inlineData")
            if isinstance(inline, dict) and str(inline.get("mimeType", "")).startswith("audio/"):
                try:
                    self.observer.on_audio(base64.b64decode(inline.get("data", "")))
                except (ValueError, TypeError) as e:
                    logger.warning("%s", MalformedServerMessage(f"bad inline audio: {e}"))

        if server_content.get("turnComplete"):
            on_turn = getattr(self.observer, "on_turn_complete", None)
            if on_turn is not None:
                on_turn()
        if server_content.get("interrupted"):
            logger.debug("Model turn interrupted")

    async def _handle_tool_call(self, tool_call: dict) -> None:
        responses = []
        calls = tool_call.get("functionCalls")
        for call in calls if isinstance(calls, list) else []:
            if not isinstance(call, dict):
                logger.warning("%s", MalformedServerMessage(f"skipping function call {call!r:.80}"))
                continue
            name = call.get("name")
            call_id = call.get("id")
            if name != REPORT_FINDING:
                logger.warning("Unknown tool call %r", name)
                responses.append({"id": call_id, "name": name, "response": {"error": "unknown function"}})
                continue
            try:
                finding = parse_finding_args(
                    call.get("args"),
                    timestamp_seconds=self._clock() - self._session_start,
                    confidence=STREAMING_CONFIDENCE,
                )
            except MalformedServerMessage as e:
                logger.warning("%s", e)
                responses.append({"id": call_id, "name": name, "response": {"error": str(e)}})
                continue
            logger.info("Finding reported: %s", finding.title)
            self.observer.on_finding(finding)
            responses.append({"id": call_id, "name": name, "response": {"acknowledged": True}})

        if responses:
            # The model waits for the tool response before continuing its turn.
            await self._send({"tool_response": {"function_responses": responses}})

    async def _send(self, message: dict) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send(json.dumps(message))
        except Exception as e:
            # The receive loop observes the close and drives the state machine.
            logger.debug("Live send failed: %s", e)
            return False
        return True
