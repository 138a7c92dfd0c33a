"""Test the progressive view and its user-facing messages."""
import asyncio

import pytest

from channel.errors import ApplicationError, RateLimited
from conftest import ScriptedEnhancer
from enhancement.events import ApiKeyMissing, ChunkFailed, ChunkProcessed
from enhancement.models import JobStatus, JobSummary
from enhancement.orchestrator import Orchestrator
from enhancement.view import ProgressiveView, describe_error, describe_summary
from ingestion.models import ChunkingSettings

SETTINGS = ChunkingSettings(chunk_size=400, min_chunk_length=200)


def _failed(**overrides):
    values = dict(document_id="doc", chunk_index=2, total_chunks=5, error="boom")
    values.update(overrides)
    return ChunkFailed(**values)


def test_describe_error():
    """Test that every failure message tells the user what to do."""
    assert describe_error(_failed()) == "Chunk 3 failed: boom. Use retry on chunk 3."
    assert describe_error(_failed(is_rate_limit=True, wait_time=30000)) == (
        "Rate limit reached. Wait 30 seconds, then resume from chunk 3."
    )
    assert describe_error(_failed(error="Cancelled")) == "Chunk 3 was cancelled."
    assert "ANTHROPIC_API_KEY" in describe_error(ApiKeyMissing(error="no key"))


def test_describe_summary():
    """Test the one-line outcome."""
    done = JobSummary(document_id="d", status=JobStatus.COMPLETED, total_chunks=5, total_processed=5)
    assert describe_summary(done) == "Enhanced 5 of 5 chunks."

    partial = JobSummary(
        document_id="d",
        status=JobStatus.COMPLETED,
        total_chunks=5,
        total_processed=3,
        failed_chunks=[1, 4]
    )
    assert describe_summary(partial) == "Enhanced 3 of 5 chunks; 2 failed (chunks 2, 5)."

    paused = JobSummary(
        document_id="d",
        status=JobStatus.IDLE,
        total_chunks=5,
        total_processed=2,
        paused_for_rate_limit=True,
        wait_time=60000,
        resume_index=2
    )
    assert describe_summary(paused).endswith("wait 60 seconds, then resume from chunk 3.")


def _run_with_view(build_stack, chapter_text, enhancer, steps):
    async def main():
        channel, transport, worker = build_stack(enhancer=enhancer)
        orchestrator = Orchestrator(channel, settings=SETTINGS)
        job = orchestrator.create_job("doc-1", "Chapter 1", chapter_text)
        view = ProgressiveView(orchestrator, job)
        try:
            await steps(orchestrator, job, view)
        finally:
            view.close()
            await channel.close()
        return job, view

    return asyncio.run(main())


def test_view_tracks_failures_and_retry(build_stack, chapter_text):
    """Test that a failed chunk shows its error and can be retried."""
    enhancer = ScriptedEnhancer(failures={1: ApplicationError("model refused")})

    async def steps(orchestrator, job, view):
        await orchestrator.run(job)
        assert view.failed_indices == [1]
        assert view.messages == ["Chunk 2 failed: model refused. Use retry on chunk 2."]
        assert view.finished is True
        await view.retry(1)

    job, view = _run_with_view(build_stack, chapter_text, enhancer, steps)

    assert view.failed_indices == []
    assert view.completed_count == 5
    assert view.chunks[1].error is None
    assert view.content_for(1) == "<p>enhanced 1 v2</p>"


def test_view_resume_after_rate_limit(build_stack, chapter_text):
    """Test that the view remembers where to resume after a rate limit."""
    enhancer = ScriptedEnhancer(failures={3: RateLimited("Rate limit reached", wait_time=2000)})
    seen = {}

    async def steps(orchestrator, job, view):
        await orchestrator.run(job)
        seen["resume_index"] = view.resume_index
        seen["wait"] = view.rate_limit_wait
        seen["finished"] = view.finished
        await view.resume()

    job, view = _run_with_view(build_stack, chapter_text, enhancer, steps)

    assert seen == {"resume_index": 3, "wait": 2000, "finished": False}
    assert view.finished is True
    assert view.resume_index is None
    assert view.completed_count == 5


def test_revert_and_finalize(build_stack, chapter_text):
    """Test that reverting swaps the displayed version without touching the job."""

    async def steps(orchestrator, job, view):
        await orchestrator.run(job)

    job, view = _run_with_view(build_stack, chapter_text, ScriptedEnhancer(), steps)

    view.revert(0)
    assert view.content_for(0) == job.chunk(0).original_structured
    assert job.chunk(0).enhanced_content == "<p>enhanced 0 v1</p>"

    merged = view.finalize()
    assert merged.startswith(job.chunk(0).original_structured)
    assert merged.endswith("<p>enhanced 4 v1</p>")

    view.toggle(0)
    assert view.content_for(0) == "<p>enhanced 0 v1</p>"


def test_show_enhanced_without_result(build_stack, chapter_text):
    """Test that a chunk with no enhanced version keeps showing the original."""

    async def steps(orchestrator, job, view):
        view.revert(0)
        view.show_enhanced(0)

    job, view = _run_with_view(build_stack, chapter_text, ScriptedEnhancer(), steps)

    assert view.chunks[0].showing_original is True
    assert view.content_for(0) == job.chunk(0).original_structured


def test_events_for_other_documents_ignored(build_stack, chapter_text):
    """Test that the view filters events by document id."""

    async def steps(orchestrator, job, view):
        orchestrator.events.publish(ChunkProcessed(
            document_id="someone-else",
            chunk_index=0,
            total_chunks=5,
            enhanced_content="<p>wrong</p>"
        ))

    job, view = _run_with_view(build_stack, chapter_text, ScriptedEnhancer(), steps)

    assert view.chunks[0].enhanced_content is None
    assert view.completed_count == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
