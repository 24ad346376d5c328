import asyncio

import pytest

from backend.src.services import ai_gateway as gateway_module
from backend.src.services.context_builder import PromptContext

from conftest import FALLBACK, StubGateway

SETTINGS = {"max_tokens": 500, "temperature": 0.2, "response_delay": 0, "fallback_message": FALLBACK}


def make_context():
    return PromptContext(
        chatbot_id="bot-1",
        conversation_id="conv-1",
        system_instruction="You are a test bot.",
        grounding="",
        history=(("visitor", "What are your hours?"),),
    )


async def test_successful_reply_passes_settings_through():
    gateway = StubGateway(reply="  We open at nine.  ")

    reply = await gateway.generate_reply(make_context(), SETTINGS)

    assert reply.content == "We open at nine."
    assert reply.fallback is False
    assert reply.as_metadata() == {"model": "stub-model"}
    _, seen_settings = gateway.calls[0]
    assert seen_settings["temperature"] == 0.2


async def test_provider_error_returns_fallback(caplog):
    gateway = StubGateway(error=ConnectionError("quota exceeded"))

    with caplog.at_level("ERROR"):
        reply = await gateway.generate_reply(make_context(), SETTINGS)

    assert reply.content == FALLBACK
    assert reply.fallback is True
    assert reply.reason == "ai_service_error"
    assert "chatbot=bot-1" in caplog.text
    assert "conversation=conv-1" in caplog.text
    assert "ConnectionError" in caplog.text


async def test_timeout_returns_fallback():
    gateway = StubGateway(reply="too late", delay=1.0, timeout=0.05)

    reply = await gateway.generate_reply(make_context(), SETTINGS)

    assert reply.content == FALLBACK
    assert reply.reason == "timeout"


async def test_empty_reply_returns_fallback():
    reply = await StubGateway(reply="   ").generate_reply(make_context(), SETTINGS)

    assert reply.content == FALLBACK
    assert reply.reason == "empty_response"


async def test_single_attempt_per_message():
    gateway = StubGateway(error=RuntimeError("boom"))

    await gateway.generate_reply(make_context(), SETTINGS)

    assert len(gateway.calls) == 1


async def test_response_delay_paces_the_reply(monkeypatch):
    slept = []
    real_sleep = asyncio.sleep

    async def fake_sleep(seconds, *args, **kwargs):
        slept.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr(gateway_module.asyncio, "sleep", fake_sleep)

    await StubGateway(reply="ok").generate_reply(make_context(), {**SETTINGS, "response_delay": 1500})

    assert slept == [1.5]


async def test_stream_yields_fragments_once():
    gateway = StubGateway(chunks=["We ", "open ", "at nine."])
    stream = gateway.generate_stream(make_context(), SETTINGS)

    fragments = [chunk async for chunk in stream]

    assert "".join(fragments) == "We open at nine."
    assert stream.fallback is False
    with pytest.raises(RuntimeError):
        stream.__aiter__()


async def test_stream_failure_before_first_fragment_yields_fallback():
    stream = StubGateway(error=ConnectionError("down")).generate_stream(make_context(), SETTINGS)

    fragments = [chunk async for chunk in stream]

    assert fragments == [FALLBACK]
    assert stream.fallback is True
    assert stream.reason == "ai_service_error"


async def test_stream_timeout_yields_fallback():
    stream = StubGateway(delay=1.0, timeout=0.05).generate_stream(make_context(), SETTINGS)

    fragments = [chunk async for chunk in stream]

    assert fragments == [FALLBACK]
    assert stream.reason == "timeout"


async def test_connection_check_reports_failure():
    result = await StubGateway(error=RuntimeError("no key")).test_connection()

    assert result == {"success": False, "error": "no key"}


async def test_connection_check_reports_success():
    result = await StubGateway(reply="Connection successful!").test_connection()

    assert result["success"] is True


async def test_stream_deadline_covers_the_whole_stream():
    gateway = StubGateway(chunks=[f"t{i}" for i in range(6)], interval=0.3, timeout=0.5)
    stream = gateway.generate_stream(make_context(), SETTINGS)
    loop = asyncio.get_running_loop()

    started = loop.time()
    fragments = [chunk async for chunk in stream]
    elapsed = loop.time() - started

    assert fragments == ["t0", "t1"]
    assert elapsed < 1.0
    assert stream.reason == "timeout"
    assert stream.fallback is False
    assert gateway.stream_closed is True


async def test_closing_stream_early_releases_provider():
    gateway = StubGateway(chunks=["We ", "open ", "at nine."])
    stream = gateway.generate_stream(make_context(), SETTINGS)

    async for chunk in stream:
        assert chunk == "We "
        break
    assert gateway.stream_closed is False

    await stream.aclose()

    assert gateway.stream_closed is True
