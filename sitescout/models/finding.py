from __future__ import annotations

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitescout.models.base import Base, ULIDMixin


class FindingRecord(Base, ULIDMixin):
    """One tagged hazard. Rows are only ever appended."""

    __tablename__ = "session_findings"

    session_id: Mapped[str] = mapped_column(String(26), ForeignKey("inspection_sessions.id"))
    hazard_id: Mapped[str] = mapped_column(String(100))
    timestamp_seconds: Mapped[int] = mapped_column(Integer, default=0)
    category: Mapped[str] = mapped_column(String(30))
    severity: Mapped[str] = mapped_column(String(20))
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    location_hint: Mapped[str | None] = mapped_column(String(255), nullable=True, default=None)
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True, default=None)

    session = relationship("InspectionSessionRecord", back_populates="findings")
