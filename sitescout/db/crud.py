"""CRUD operations for inspection sessions and their findings."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitescout.models import FindingRecord, InspectionSessionRecord
from sitescout.schemas import ComplianceAnalysis, TaggedHazard

TERMINAL_STATUSES = ("completed", "cancelled")


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# ── InspectionSession ─────────────────────────────────────

async def create_session(
    db: AsyncSession, site_name: str, site_address: str | None = None,
    latitude: float | None = None, longitude: float | None = None,
    engine: str = "polling",
) -> InspectionSessionRecord:
    sess = InspectionSessionRecord(
        site_name=site_name, site_address=site_address,
        latitude=latitude, longitude=longitude, engine=engine,
    )
    db.add(sess)
    await db.commit()
    await db.refresh(sess)
    return sess


async def get_session(db: AsyncSession, session_id: str) -> InspectionSessionRecord | None:
    return await db.get(InspectionSessionRecord, session_id)


async def list_sessions(db: AsyncSession, status: str | None = None) -> list[InspectionSessionRecord]:
    stmt = select(InspectionSessionRecord).order_by(InspectionSessionRecord.started_at.desc())
    if status:
        stmt = stmt.where(InspectionSessionRecord.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_session_status(
    db: AsyncSession, sess: InspectionSessionRecord, status: str,
    ended_at: datetime | None = None,
) -> InspectionSessionRecord:
    """Move a session to a new status. A completed or cancelled session is final."""
    if sess.status in TERMINAL_STATUSES:
        raise ValueError(f"Session {sess.id} is already {sess.status}")
    sess.status = status
    if status in TERMINAL_STATUSES:
        ended = ended_at or datetime.now(timezone.utc)
        sess.ended_at = ended
        sess.duration_seconds = max(0, int((_aware(ended) - _aware(sess.started_at)).total_seconds()))
    await db.commit()
    await db.refresh(sess)
    return sess


async def attach_analysis(
    db: AsyncSession, sess: InspectionSessionRecord, analysis: ComplianceAnalysis,
) -> InspectionSessionRecord:
    sess.risk_level = analysis.overall_risk_level
    sess.risk_score = analysis.risk_score
    sess.analysis_origin = analysis.origin
    sess.analysis_json = analysis.model_dump_json()
    await db.commit()
    await db.refresh(sess)
    return sess


# ── Findings ──────────────────────────────────────────────

async def add_finding(db: AsyncSession, session_id: str, hazard: TaggedHazard) -> FindingRecord:
    finding = FindingRecord(
        session_id=session_id,
        hazard_id=hazard.id,
        timestamp_seconds=hazard.timestamp_seconds,
        category=hazard.category,
        severity=hazard.severity,
        title=hazard.title,
        description=hazard.description or None,
        location_hint=hazard.location_hint,
        ai_confidence=hazard.confidence,
    )
    db.add(finding)
    sess = await db.get(InspectionSessionRecord, session_id)
    if sess is not None:
        sess.findings_count += 1
    await db.commit()
    await db.refresh(finding)
    return finding


async def list_findings(db: AsyncSession, session_id: str) -> list[FindingRecord]:
    result = await db.execute(
        select(FindingRecord)
        .where(FindingRecord.session_id == session_id)
        .order_by(FindingRecord.timestamp_seconds, FindingRecord.created_at)
    )
    return list(result.scalars().all())
