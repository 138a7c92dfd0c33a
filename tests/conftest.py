"""Shared fixtures: a scripted enhancer and a fast in-process worker stack."""
import asyncio

import pytest

from channel.channel import Channel
from channel.local import LocalWorkerTransport
from channel.messages import ChunkResult
from channel.settings import ChannelSettings
from worker.worker import EnhancementWorker


class ScriptedEnhancer:
    """Stands in for ChapterEnhancer.

    failures maps a chunk index to the exception its next call raises; each
    failure is used once, so a retry of the same chunk succeeds.
    """

    def __init__(self, failures=None, delay=0.0):
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def enhance(self, title, content, options=None):
        index = options.chunk_index if options is not None else None
        self.calls.append(index)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            error = self.failures.pop(index, None)
            if error is not None:
                raise error
            attempt = self.calls.count(index)
            return ChunkResult(
                original_content=content,
                enhanced_content=f"<p>enhanced {index} v{attempt}</p>",
                model_info={"name": "scripted", "provider": "test"}
            )
        finally:
            self.active -= 1


@pytest.fixture
def channel_settings():
    return ChannelSettings(
        heartbeat_interval_ms=60000,
        jitter_ms=0,
        reconnect_delay_ms=5,
        max_retries=3,
        wake_attempts=5,
        wake_backoff_ms=2,
        send_retry_delay_ms=1,
        max_send_attempts=3
    )


@pytest.fixture
def build_stack(channel_settings):
    """Factory for (channel, transport, worker) around an enhancer."""

    def _build(enhancer=None, idle_timeout=None, wake_delay=0.01, settings=None):
        worker = EnhancementWorker(enhancer or ScriptedEnhancer())
        transport = LocalWorkerTransport(worker, idle_timeout=idle_timeout, wake_delay=wake_delay)
        channel = Channel(transport, settings=settings or channel_settings)
        return channel, transport, worker

    return _build


@pytest.fixture
def chapter_text():
    """Five paragraphs of roughly 300 characters each."""
    paragraphs = [f"Paragraph {i} begins here. " + "word " * 55 for i in range(5)]
    return "\n\n".join(p.strip() for p in paragraphs)
