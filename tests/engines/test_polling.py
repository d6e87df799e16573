"""Tests for the polling engine, with the REST backend mocked by httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from sitescout.config import PollingConfig
from sitescout.engines import CallbackObserver
from sitescout.engines.polling import PollingEngine
from sitescout.errors import AnalysisCallFailed


def _reply(*parts) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": list(parts)}}]}


class Events:
    def __init__(self):
        self.texts, self.findings, self.errors, self.connection = [], [], [], []

    def observer(self) -> CallbackObserver:
        return CallbackObserver(
            text=self.texts.append,
            finding=self.findings.append,
            error=self.errors.append,
            connection=self.connection.append,
        )


@pytest.fixture
def events():
    return Events()


def make_engine(events, handler, **config):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    engine = PollingEngine(
        events.observer(), api_key="test-key",
        config=PollingConfig(model="flash-test", **config), client=client,
    )
    engine.start_session()
    return engine


async def test_frame_analysis_reports_text_and_finding(events):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_reply(
            {"text": "Wet floor near the entrance. "},
            {"functionCall": {"name": "report_finding", "args": {
                "category": "safety", "severity": "high", "title": "Wet floor",
                "description": "Standing water", "location_hint": "entrance"}}},
        ))

    engine = make_engine(events, handler)
    result = await engine.analyze_frame("ZnJhbWU=")

    assert result.text == "Wet floor near the entrance."
    assert result.finding.title == "Wet floor"
    assert events.texts == ["Wet floor near the entrance."]
    assert events.findings[0].confidence == 0.85
    assert events.findings[0].location_hint == "entrance"
    assert engine.frames_analyzed == 1

    request = requests[0]
    assert request.url.path.endswith("/flash-test:generateContent")
    assert request.url.params["key"] == "test-key"
    body = json.loads(request.content)
    assert body["toolConfig"]["functionCallingConfig"]["mode"] == "AUTO"
    assert body["tools"][0]["functionDeclarations"][0]["name"] == "report_finding"
    assert body["contents"][0]["parts"][1]["inlineData"]["data"] == "ZnJhbWU="
    assert body["generationConfig"]["temperature"] == 0.4


async def test_only_first_function_call_is_used(events):
    def handler(request):
        return httpx.Response(200, json=_reply(
            {"functionCall": {"name": "report_finding", "args": {"title": "first"}}},
            {"functionCall": {"name": "report_finding", "args": {"title": "second"}}},
        ))

    engine = make_engine(events, handler)
    await engine.analyze_frame("f")
    assert [f.title for f in events.findings] == ["first"]


async def test_empty_candidates_yield_none(events):
    engine = make_engine(events, lambda request: httpx.Response(200, json={"candidates": []}))
    assert await engine.analyze_frame("f") is None
    assert events.texts == [] and events.errors == []


async def test_frame_dropped_while_busy(events):
    release = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        await release.wait()
        return httpx.Response(200, json=_reply({"text": "All clear."}))

    engine = make_engine(events, handler)
    first = asyncio.create_task(engine.analyze_frame("f1"))
    while not engine.is_busy:
        await asyncio.sleep(0)

    assert await engine.analyze_frame("f2") is None
    assert not await engine.submit_frame("f3")
    assert engine.frames_dropped == 2

    release.set()
    result = await first
    assert result.text == "All clear."
    assert len(calls) == 1
    assert not engine.is_busy


async def test_failure_is_reported_and_engine_recovers(events):
    responses = iter([
        httpx.Response(500, text="backend exploded"),
        httpx.Response(200, json=_reply({"text": "Back online."})),
    ])
    engine = make_engine(events, lambda request: next(responses))

    assert await engine.analyze_frame("f1") is None
    assert isinstance(events.errors[0], AnalysisCallFailed)
    assert events.errors[0].status_code == 500
    assert not engine.is_busy

    result = await engine.analyze_frame("f2")
    assert result.text == "Back online."


async def test_transport_error_maps_to_analysis_failure(events):
    def handler(request):
        raise httpx.ConnectError("no route to host")

    engine = make_engine(events, handler)
    assert await engine.analyze_frame("f") is None
    assert isinstance(events.errors[0], AnalysisCallFailed)


async def test_history_keeps_last_exchanges(events):
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        question = body["contents"][-1]["parts"][0]["text"]
        return httpx.Response(200, json=_reply({"text": f"re: {question}"}))

    engine = make_engine(events, handler, max_history_exchanges=2)
    for q in ("q1", "q2", "q3"):
        assert await engine.send_message(q) == f"re: {q}"

    history = engine.history
    assert len(history) == 4
    assert [turn["parts"][0]["text"] for turn in history] == ["q2", "re: q2", "q3", "re: q3"]
    assert [turn["role"] for turn in history] == ["user", "model", "user", "model"]
    # The third request carried the two earlier exchanges plus the new question.
    assert len(bodies[2]["contents"]) == 5
    assert bodies[2]["generationConfig"]["temperature"] == 0.7


async def test_failed_message_not_added_to_history(events):
    engine = make_engine(events, lambda request: httpx.Response(503, text="busy"))
    assert await engine.send_message("anyone there?") is None
    assert engine.history == []
    assert isinstance(events.errors[0], AnalysisCallFailed)


async def test_message_can_attach_frame(events):
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_reply({"text": "That is a fire extinguisher."}))

    engine = make_engine(events, handler)
    answer = await engine.ask("What is that?", "aW1n")
    assert answer == "That is a fire extinguisher."
    assert bodies[0]["contents"][-1]["parts"][1]["inlineData"]["data"] == "aW1n"
    # Only the text is kept in history.
    assert engine.history[0] == {"role": "user", "parts": [{"text": "What is that?"}]}


async def test_session_lifecycle(events):
    engine = PollingEngine(
        events.observer(), api_key="k", config=PollingConfig(),
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))),
    )
    assert not engine.is_ready
    await engine.start()
    assert engine.is_ready
    assert not await engine.submit_audio("pcm")
    await engine.stop()
    assert not engine.is_ready
    assert events.connection == [True, False]


@pytest.mark.parametrize("payload", [
    {"candidates": ["x"]},
    {"candidates": {"content": {}}},
    {"candidates": [{"content": "text"}]},
    {"candidates": [{"content": {"parts": ["just a string"]}}]},
])
async def test_misshapen_reply_reported_as_failed_call(events, payload):
    responses = iter([
        httpx.Response(200, json=payload),
        httpx.Response(200, json=_reply({"text": "Corridor is clear."})),
    ])
    engine = make_engine(events, lambda request: next(responses))

    assert await engine.analyze_frame("f1") is None
    assert isinstance(events.errors[0], AnalysisCallFailed)
    assert engine.frames_analyzed == 0
    assert not engine.is_busy

    result = await engine.analyze_frame("f2")
    assert result.text == "Corridor is clear."


async def test_misshapen_chat_reply_reported(events):
    engine = make_engine(events, lambda request: httpx.Response(200, json={"candidates": [7]}))
    assert await engine.send_message("Is that exit blocked?") is None
    assert isinstance(events.errors[0], AnalysisCallFailed)
    assert engine.history == []
