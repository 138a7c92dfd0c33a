"""Test the CLI's enhancement loop."""
import asyncio

import pytest

import main
from channel.errors import RateLimited
from conftest import ScriptedEnhancer
from ingestion.models import ChunkingSettings, ExtractedChapter
from storage.cache import EnhancedContentCache


def test_rate_limit_prompt_runs_off_loop(monkeypatch, build_stack, chapter_text, tmp_path):
    """Test that the resume prompt is asked from a thread while the loop keeps running."""
    enhancer = ScriptedEnhancer(failures={2: RateLimited("Rate limit exceeded", wait_time=1)})
    prompts = []

    def confirm(text, default=False):
        try:
            asyncio.get_running_loop()
            on_loop = True
        except RuntimeError:
            on_loop = False
        prompts.append((text, on_loop))
        return True

    monkeypatch.setattr("click.confirm", confirm)
    monkeypatch.setattr(main, "build_channel", lambda: build_stack(enhancer=enhancer)[0])
    monkeypatch.setattr(main, "EnhancedContentCache", lambda: EnhancedContentCache(cache_dir=tmp_path))

    chapter = ExtractedChapter(
        found=True,
        title="Chapter 1",
        text=chapter_text,
        html="".join(f"<p>{p}</p>" for p in chapter_text.split("\n\n"))
    )
    settings = ChunkingSettings(chunk_size=400, min_chunk_length=200)

    merged, summary = asyncio.run(
        main.run_enhancement("doc-1", chapter, settings, site_prompt="", force=False)
    )

    assert prompts == [("Rate limited. Wait 0s and resume?", False)]
    assert summary.total_processed == 5
    assert summary.paused_for_rate_limit is False
    assert enhancer.calls == [0, 1, 2, 2, 3, 4]
    assert "<p>enhanced 4 v1</p>" in merged


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
