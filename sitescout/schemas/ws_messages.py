from __future__ import annotations
from typing import Any
from pydantic import BaseModel


class WSMessage(BaseModel):
    event: str  # narration | hazard | connection | error | analysis
    session_id: str = ""
    data: dict[str, Any] = {}


class ClientMessage(BaseModel):
    type: str  # frame | audio | question | confirm | follow_up
    data: str = ""
    text: str = ""
    question: str = ""
    answer: str | None = None
