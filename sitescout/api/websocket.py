from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from sitescout.dependencies import runners
from sitescout.errors import EngineNotReady
from sitescout.schemas import ClientMessage
from sitescout.services.runner import InspectionRunner
from sitescout.services.ws_manager import ws_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


async def handle_client_message(runner: InspectionRunner, msg: ClientMessage) -> str | None:
    """Route one client message into the session. Returns an error text for bad input."""
    if msg.type == "frame":
        if not msg.data:
            return "frame message requires data"
        runner.push_frame(msg.data)
    elif msg.type == "audio":
        if msg.data:
            await runner.push_audio(msg.data)
    elif msg.type == "question":
        if not msg.text:
            return "question message requires text"
        try:
            await runner.ask(msg.text)
        except EngineNotReady as e:
            return str(e)
    elif msg.type == "confirm":
        runner.confirm(msg.text)
    elif msg.type == "follow_up":
        if not msg.question:
            return "follow_up message requires question"
        runner.follow_up(msg.question, msg.answer)
    else:
        return f"unknown message type {msg.type!r}"
    return None


@router.websocket("/api/ws/{session_id}")
async def websocket_endpoint(websocket: WebSocket, session_id: str):
    runner = runners.get(session_id)
    if runner is None:
        await websocket.close(code=4404, reason="Unknown or finished session")
        return

    await ws_manager.connect(session_id, websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = ClientMessage.model_validate_json(raw)
            except ValidationError as e:
                await websocket.send_json({"event": "error", "session_id": session_id,
                                           "data": {"message": f"invalid message: {e.error_count()} error(s)"}})
                continue
            # The runner may have been finished by the REST surface meanwhile.
            runner = runners.get(session_id)
            if runner is None:
                await websocket.close(code=4404, reason="Session finished")
                break
            error = await handle_client_message(runner, msg)
            if error:
                await websocket.send_json({"event": "error", "session_id": session_id,
                                           "data": {"message": error}})
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(session_id, websocket)
