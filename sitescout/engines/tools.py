"""The `report_finding` tool schema shared by both engines, and its decoder."""

from __future__ import annotations

import logging
from typing import Any

from sitescout.errors import MalformedServerMessage
from sitescout.schemas import CATEGORIES, SEVERITIES, HazardEvent

logger = logging.getLogger(__name__)

REPORT_FINDING = "report_finding"

REPORT_FINDING_DECLARATION: dict[str, Any] = {
    "name": REPORT_FINDING,
    "description": (
        "Report a safety, security, compliance, or maintenance finding "
        "that needs to be logged"
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "category": {
                "type": "string",
                "enum": list(CATEGORIES),
                "description": "Category of the finding",
            },
            "severity": {
                "type": "string",
                "enum": list(SEVERITIES),
                "description": "Severity level - critical for immediate danger",
            },
            "title": {
                "type": "string",
                "description": "Brief title of the finding (5-10 words)",
            },
            "description": {
                "type": "string",
                "description": "Detailed description of what was observed",
            },
            "location_hint": {
                "type": "string",
                "description": 'Location hint (e.g., "near entrance", "left side of frame")',
            },
        },
        "required": ["category", "severity", "title", "description"],
    },
}


def tool_declarations(key: str = "function_declarations") -> list[dict]:
    """The tools block for a request.

    The live socket protocol uses snake_case keys, the REST endpoint camelCase.
    """
    return [{key: [REPORT_FINDING_DECLARATION]}]


def _enum_or_none(value: Any, allowed: tuple[str, ...]) -> str | None:
    if isinstance(value, str) and value.lower() in allowed:
        return value.lower()
    return None


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_finding_args(
    args: Any, timestamp_seconds: float, confidence: float
) -> HazardEvent:
    """Decode `report_finding` arguments into a HazardEvent.

    Out-of-vocabulary category/severity values are dropped so the collector
    defaults apply; a non-object argument payload is malformed.
    """
    if not isinstance(args, dict):
        raise MalformedServerMessage(f"{REPORT_FINDING} args must be an object, got {type(args).__name__}")

    category = _enum_or_none(args.get("category"), CATEGORIES)
    severity = _enum_or_none(args.get("severity"), SEVERITIES)
    if args.get("category") and category is None:
        logger.warning("Unknown finding category %r, defaulting", args.get("category"))
    if args.get("severity") and severity is None:
        logger.warning("Unknown finding severity %r, defaulting", args.get("severity"))

    return HazardEvent(
        category=category,
        severity=severity,
        title=_str_or_none(args.get("title")),
        description=_str_or_none(args.get("description")),
        location_hint=_str_or_none(args.get("location_hint")),
        confidence=confidence,
        timestamp_seconds=round(timestamp_seconds, 3),
    )
