import pytest
from pydantic import ValidationError

from sitescout.schemas import (
    ClientMessage,
    ComplianceAnalysis,
    HazardEvent,
    InspectionCreate,
    WSMessage,
)


def test_snapshot_summary_partitions_hazards(make_snapshot):
    snap = make_snapshot(["critical", "high", "high", "low"])
    s = snap.summary
    assert s.total_hazards == 4
    assert (s.critical_count, s.high_count, s.medium_count, s.low_count) == (1, 2, 0, 1)
    assert s.critical_count + s.high_count + s.medium_count + s.low_count == s.total_hazards
    assert s.areas_inspected == ("loading bay",)


def test_snapshot_summary_included_in_dump(make_snapshot):
    data = make_snapshot(["medium"]).model_dump(mode="json")
    assert data["summary"]["medium_count"] == 1


def test_snapshot_is_immutable(make_snapshot):
    snap = make_snapshot(["low"])
    with pytest.raises(ValidationError):
        snap.site_name = "Elsewhere"
    with pytest.raises(ValidationError):
        snap.hazards[0].title = "Changed"


def test_snapshot_json_round_trip_recomputes_summary(make_snapshot):
    snap = make_snapshot(["critical", "medium"])
    restored = type(snap).model_validate_json(snap.model_dump_json())
    assert restored.hazards == snap.hazards
    assert restored.summary == snap.summary


def test_hazard_event_all_optional():
    event = HazardEvent()
    assert event.category is None
    assert event.severity is None
    assert event.timestamp_seconds == 0.0


def test_hazard_event_rejects_unknown_severity():
    with pytest.raises(ValidationError):
        HazardEvent(severity="catastrophic")


def test_hazard_event_confidence_bounds():
    with pytest.raises(ValidationError):
        HazardEvent(confidence=1.5)


def test_compliance_analysis_score_bounds():
    with pytest.raises(ValidationError):
        ComplianceAnalysis(executive_summary="x", overall_risk_level="low", risk_score=101, origin="remote")


def test_compliance_analysis_requires_origin():
    with pytest.raises(ValidationError):
        ComplianceAnalysis(executive_summary="x", overall_risk_level="low", risk_score=10)


def test_inspection_create_requires_site_name():
    with pytest.raises(ValidationError):
        InspectionCreate(site_name="")
    assert InspectionCreate(site_name="Depot").engine is None


def test_inspection_create_rejects_unknown_engine():
    with pytest.raises(ValidationError):
        InspectionCreate(site_name="Depot", engine="carrier-pigeon")


def test_ws_message_construction():
    msg = WSMessage(event="hazard", session_id="s1", data={"title": "Loose cable"})
    assert msg.event == "hazard"
    assert msg.data["title"] == "Loose cable"


def test_client_message_defaults():
    msg = ClientMessage.model_validate_json('{"type": "follow_up", "question": "Is it live?"}')
    assert msg.question == "Is it live?"
    assert msg.answer is None
    assert msg.text == ""
