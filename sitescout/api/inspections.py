from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitescout.config import Settings
from sitescout.db import crud
from sitescout.dependencies import (
    RunnerFactory, get_db, get_runner_factory, get_runners,
    get_session_factory, get_settings_dep,
)
from sitescout.errors import EngineNotReady, InspectionError
from sitescout.schemas import (
    ComplianceAnalysis, FindingRead, InspectionCreate, InspectionRead,
    QuestionCreate, TaggedHazard,
)
from sitescout.services.runner import EventSink, InspectionRunner
from sitescout.services.ws_manager import ws_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["inspections"])


def make_event_sink(session_id: str, session_factory: async_sessionmaker[AsyncSession]) -> EventSink:
    """Persist hazards as they are tagged and broadcast every event to the session's clients."""

    async def sink(event: str, data: dict) -> None:
        if event == "hazard":
            async with session_factory() as db:
                await crud.add_finding(db, session_id, TaggedHazard.model_validate(data))
        await ws_manager.broadcast(session_id, event, data)

    return sink


def _live_runner(runners: dict[str, InspectionRunner], session_id: str) -> InspectionRunner:
    runner = runners.get(session_id)
    if runner is None:
        raise HTTPException(409, "Session has no live runner")
    return runner


@router.post("/inspections", response_model=InspectionRead, status_code=201)
async def create_inspection(
    body: InspectionCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings_dep),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    runner_factory: RunnerFactory = Depends(get_runner_factory),
    runners: dict[str, InspectionRunner] = Depends(get_runners),
):
    engine_kind = body.engine or settings.default_engine
    sess = await crud.create_session(
        db, body.site_name, body.site_address, body.latitude, body.longitude, engine_kind,
    )
    runner = runner_factory(
        sess.id, body.site_name, body.site_address,
        engine_kind=engine_kind, settings=settings,
        event_sink=make_event_sink(sess.id, session_factory),
    )
    try:
        await runner.start()
    except InspectionError as e:
        logger.error("Inspection %s failed to start: %s", sess.id, e)
        await runner.stop()
        await crud.update_session_status(db, sess, "cancelled")
        raise HTTPException(502, f"Could not start {engine_kind} engine: {e}")
    runners[sess.id] = runner
    return sess


@router.get("/inspections", response_model=list[InspectionRead])
async def list_inspections(status: str | None = None, db: AsyncSession = Depends(get_db)):
    return await crud.list_sessions(db, status)


@router.get("/inspections/{session_id}", response_model=InspectionRead)
async def get_inspection(session_id: str, db: AsyncSession = Depends(get_db)):
    sess = await crud.get_session(db, session_id)
    if not sess:
        raise HTTPException(404, "Session not found")
    return sess


@router.get("/inspections/{session_id}/findings", response_model=list[FindingRead])
async def list_inspection_findings(session_id: str, db: AsyncSession = Depends(get_db)):
    sess = await crud.get_session(db, session_id)
    if not sess:
        raise HTTPException(404, "Session not found")
    return await crud.list_findings(db, session_id)


@router.post("/inspections/{session_id}/end", response_model=ComplianceAnalysis)
async def end_inspection(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    runners: dict[str, InspectionRunner] = Depends(get_runners),
):
    """Stop the session, run the hand-off and store the analysis."""
    sess = await crud.get_session(db, session_id)
    if not sess:
        raise HTTPException(404, "Session not found")
    if sess.status == "completed" and sess.analysis_json:
        return ComplianceAnalysis.model_validate_json(sess.analysis_json)
    if sess.status == "cancelled":
        raise HTTPException(409, "Session was cancelled")

    runner = _live_runner(runners, session_id)
    analysis = await runner.finish()
    snapshot = runner.snapshot
    await crud.update_session_status(db, sess, "completed", ended_at=snapshot.end_time if snapshot else None)
    await crud.attach_analysis(db, sess, analysis)
    runners.pop(session_id, None)
    return analysis


@router.post("/inspections/{session_id}/cancel", response_model=InspectionRead)
async def cancel_inspection(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    runners: dict[str, InspectionRunner] = Depends(get_runners),
):
    sess = await crud.get_session(db, session_id)
    if not sess:
        raise HTTPException(404, "Session not found")
    if sess.status != "active":
        raise HTTPException(409, f"Session already {sess.status}")
    runner = runners.pop(session_id, None)
    if runner is not None:
        await runner.stop()
    return await crud.update_session_status(db, sess, "cancelled")


@router.post("/inspections/{session_id}/messages")
async def ask_question(
    session_id: str,
    body: QuestionCreate,
    runners: dict[str, InspectionRunner] = Depends(get_runners),
):
    """Free-text operator question. Streaming answers arrive over the websocket."""
    runner = _live_runner(runners, session_id)
    try:
        answer = await runner.ask(body.text)
    except EngineNotReady as e:
        raise HTTPException(409, str(e))
    return {"answer": answer}
