from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitescout.models.base import Base, ULIDMixin, utcnow


class InspectionSessionRecord(Base, ULIDMixin):
    __tablename__ = "inspection_sessions"

    site_name: Mapped[str] = mapped_column(String(255))
    site_address: Mapped[str | None] = mapped_column(String(500), nullable=True, default=None)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True, default=None)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True, default=None)
    engine: Mapped[str] = mapped_column(String(20), default="polling")  # streaming | polling
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active | completed | cancelled
    findings_count: Mapped[int] = mapped_column(Integer, default=0)
    risk_level: Mapped[str | None] = mapped_column(String(20), nullable=True, default=None)
    risk_score: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    analysis_origin: Mapped[str | None] = mapped_column(String(20), nullable=True, default=None)
    analysis_json: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    findings = relationship(
        "FindingRecord", back_populates="session", lazy="selectin",
        order_by="FindingRecord.timestamp_seconds",
    )
