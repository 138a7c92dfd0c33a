"""Test request handling in the enhancement worker."""
import asyncio

import pytest

from channel.errors import ApplicationError, ConfigurationError, RateLimited
from channel.messages import (
    CancelEnhancementRequest,
    EnhanceOptions,
    PingRequest,
    PortPing,
    ProcessDocumentRequest,
    ReenhanceChunkRequest
)
from conftest import ScriptedEnhancer
from worker.worker import EnhancementWorker

CONTENT = "A chapter that is comfortably longer than the minimum content length."


def _process(chunk_index=None, total_chunks=None):
    options = EnhanceOptions(chunk_index=chunk_index, total_chunks=total_chunks)
    return ProcessDocumentRequest(title="Chapter 1", content=CONTENT, options=options).to_wire()


def _handle(worker, message):
    return asyncio.run(worker.handle(message))


def test_ping():
    """Test that a ping succeeds without touching the enhancer."""
    enhancer = ScriptedEnhancer()
    worker = EnhancementWorker(enhancer)

    assert _handle(worker, PingRequest().to_wire()) == {"success": True}
    assert enhancer.calls == []
    assert worker.requests_handled == 1


def test_process_document():
    """Test a successful enhancement payload in wire form."""
    worker = EnhancementWorker(ScriptedEnhancer())

    response = _handle(worker, _process(chunk_index=0, total_chunks=2))

    assert response["success"] is True
    assert response["result"]["enhancedContent"] == "<p>enhanced 0 v1</p>"
    assert response["result"]["originalContent"] == CONTENT
    assert response["result"]["modelInfo"]["name"] == "scripted"


def test_unknown_action():
    """Test that malformed requests get a failure payload."""
    worker = EnhancementWorker(ScriptedEnhancer())

    response = _handle(worker, {"action": "summarize", "content": "x"})

    assert response["success"] is False
    assert "summarize" in response["error"]
    assert worker.requests_handled == 0


def test_failures_become_payloads():
    """Test the failure flags for each error class."""
    enhancer = ScriptedEnhancer(failures={
        0: ConfigurationError("no key"),
        1: RateLimited("Rate limit reached", wait_time=12000),
        2: ApplicationError("model refused"),
        3: KeyError("surprise")
    })
    worker = EnhancementWorker(enhancer)
    pushed = []
    worker.notify = pushed.append

    config_failure = _handle(worker, _process(0, 4))
    rate_limited = _handle(worker, _process(1, 4))
    app_failure = _handle(worker, _process(2, 4))
    unexpected = _handle(worker, _process(3, 4))

    assert config_failure == {"success": False, "error": "no key", "needsApiKey": True}
    assert pushed[0] == {"action": "apiKeyMissing", "error": "no key"}
    assert [notice["action"] for notice in pushed] == [
        "apiKeyMissing", "chunkError", "chunkError", "chunkError", "allChunksProcessed"
    ]

    assert rate_limited["isRateLimit"] is True
    assert rate_limited["waitTime"] == 12000

    assert app_failure == {"success": False, "error": "model refused"}

    assert unexpected["success"] is False
    assert unexpected["error"].startswith("Unexpected error:")


def test_chunk_notices_pushed():
    """Test chunkProcessed, chunkError and the end-of-run summary pushes."""
    enhancer = ScriptedEnhancer(failures={
        1: RateLimited("Rate limit reached", wait_time=5000),
        2: ApplicationError("model refused")
    })
    worker = EnhancementWorker(enhancer)
    pushed = []
    worker.notify = pushed.append

    async def main():
        for index in range(3):
            await worker.handle(_process(index, 3))

    asyncio.run(main())

    processed, limited, failed, summary = pushed
    assert processed["action"] == "chunkProcessed"
    assert processed["chunkIndex"] == 0
    assert processed["totalChunks"] == 3
    assert processed["isComplete"] is False
    assert processed["result"]["enhancedContent"] == "<p>enhanced 0 v1</p>"

    assert limited == {
        "action": "chunkError",
        "chunkIndex": 1,
        "totalChunks": 3,
        "error": "Rate limit reached",
        "isRateLimit": True,
        "waitTime": 5000,
        "finalFailure": False
    }
    assert failed["chunkIndex"] == 2
    assert failed["finalFailure"] is True
    assert failed["isRateLimit"] is False

    assert summary == {
        "action": "allChunksProcessed",
        "totalProcessed": 1,
        "totalChunks": 3,
        "failedChunks": [2]
    }


def test_last_chunk_marks_complete():
    """Test that the final chunk's notice is flagged complete and re-enhance skips the summary."""
    worker = EnhancementWorker(ScriptedEnhancer())
    pushed = []
    worker.notify = pushed.append

    request = ReenhanceChunkRequest(chunk_index=2, total_chunks=3, title="Chapter 1", content=CONTENT)
    _handle(worker, request.to_wire())
    _handle(worker, _process())

    assert len(pushed) == 1
    assert pushed[0]["action"] == "chunkProcessed"
    assert pushed[0]["isComplete"] is True


def test_cancel_blocks_later_chunks():
    """Test that after a cancel, follow-up chunks are refused until a new job starts."""
    enhancer = ScriptedEnhancer()
    worker = EnhancementWorker(enhancer)
    pushed = []
    worker.notify = pushed.append

    async def main():
        await worker.handle(_process(0, 3))
        await worker.handle(CancelEnhancementRequest().to_wire())
        refused = await worker.handle(_process(1, 3))
        restarted = await worker.handle(_process(0, 3))
        return refused, restarted

    refused, restarted = asyncio.run(main())

    assert refused == {"success": False, "error": "Enhancement cancelled"}
    assert restarted["success"] is True
    assert worker.cancel_requested is False
    assert enhancer.calls == [0, 0]
    assert [notice["chunkIndex"] for notice in pushed] == [0, 0]


def test_new_run_clears_cancel():
    """Test that a run starting past chunk 0 is not refused after an earlier cancel."""
    enhancer = ScriptedEnhancer()
    worker = EnhancementWorker(enhancer)

    async def main():
        await worker.handle(CancelEnhancementRequest().to_wire())
        options = EnhanceOptions(chunk_index=2, total_chunks=4, new_run=True)
        first = await worker.handle(
            ProcessDocumentRequest(title="Chapter 1", content=CONTENT, options=options).to_wire()
        )
        second = await worker.handle(_process(3, 4))
        return first, second

    first, second = asyncio.run(main())

    assert first["success"] is True
    assert second["success"] is True
    assert worker.cancel_requested is False
    assert enhancer.calls == [2, 3]


def test_reenhance_clears_cancel():
    """Test that a re-enhance request always runs and carries its chunk position."""
    enhancer = ScriptedEnhancer()
    worker = EnhancementWorker(enhancer)
    worker.cancel_requested = True

    request = ReenhanceChunkRequest(chunk_index=4, total_chunks=6, title="Chapter 1", content=CONTENT)
    response = _handle(worker, request.to_wire())

    assert response["success"] is True
    assert response["result"]["enhancedContent"] == "<p>enhanced 4 v1</p>"
    assert worker.cancel_requested is False


def test_port_messages():
    """Test that keep-alive pings are answered with a pong."""
    worker = EnhancementWorker(ScriptedEnhancer())

    reply = worker.handle_port_message(PortPing(ts=1.0, trigger="startup").to_wire())

    assert reply["type"] == "pong"
    assert reply["ts"] > 0
    assert worker.handle_port_message({"type": "pong"}) is None
    assert worker.handle_port_message({"type": "bogus"}) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
