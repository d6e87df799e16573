"""FastAPI dependency providers: settings, DB sessions, live runners."""

from __future__ import annotations

from functools import lru_cache
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitescout.config import Settings, get_settings
from sitescout.db.engine import async_session_factory, get_db
from sitescout.services.runner import InspectionRunner

RunnerFactory = Callable[..., InspectionRunner]

# Live runners by session id; a session has a runner only while this process owns it.
runners: dict[str, InspectionRunner] = {}


@lru_cache
def get_settings_dep() -> Settings:
    return get_settings()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives a request (runner event sinks)."""
    return async_session_factory


def get_runner_factory() -> RunnerFactory:
    return InspectionRunner


def get_runners() -> dict[str, InspectionRunner]:
    return runners


__all__ = [
    "RunnerFactory", "get_db", "get_runner_factory", "get_runners",
    "get_session_factory", "get_settings_dep", "runners",
]
