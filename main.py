"""Main CLI entry point for Chapter Enhancer."""
import asyncio
from pathlib import Path
from typing import Optional, Tuple

import click
from bs4 import BeautifulSoup
from rich.console import Console
from rich.table import Table

from utils.logger import setup_logger
from channel.channel import Channel
from channel.local import LocalWorkerTransport
from channel.messages import EnhanceOptions
from enhancement.models import JobSummary
from enhancement.orchestrator import Orchestrator
from enhancement.view import ProgressiveView, describe_summary
from handlers.registry import HandlerRegistry
from ingestion.fetcher import FetchError, PageFetcher
from ingestion.models import ChunkingSettings, ExtractedChapter
from ingestion.splitter import TextSplitter, count_tokens
from monitoring.progress_tracker import ProgressTracker
from storage.cache import EnhancedContentCache
from storage.exporter import export_html
from worker.enhancer import ChapterEnhancer
from worker.worker import EnhancementWorker
import config

logger = setup_logger(__name__)
console = Console()


def load_chapter(url: Optional[str], file: Optional[str]) -> Tuple[str, ExtractedChapter, str]:
    """Extract a chapter from a URL or a saved HTML file.

    Returns:
        (document id, extracted chapter, site prompt)
    """
    registry = HandlerRegistry()

    if url:
        try:
            page = asyncio.run(PageFetcher().fetch(url))
        except FetchError as e:
            raise click.ClickException(str(e))
        soup = BeautifulSoup(page, "html.parser")
        handler = registry.resolve(url)
        document_id = url
    else:
        path = Path(file)
        soup = BeautifulSoup(path.read_text(encoding="utf-8"), "html.parser")
        handler = registry.detect(soup)
        document_id = str(path.resolve())

    chapter = handler.extract_content(soup, source_url=document_id)
    if not chapter.found:
        raise click.ClickException(f"No chapter content found ({handler.name} handler)")
    return document_id, chapter, handler.site_prompt


def build_channel() -> Channel:
    worker = EnhancementWorker(ChapterEnhancer())
    return Channel(LocalWorkerTransport(worker))


async def run_enhancement(
    document_id: str,
    chapter: ExtractedChapter,
    settings: ChunkingSettings,
    site_prompt: str,
    force: bool
) -> Tuple[str, Optional[JobSummary]]:
    """Enhance a chapter, pausing for confirmation on rate limits.

    Returns:
        (merged HTML, summary or None when served from cache)
    """
    channel = build_channel()
    orchestrator = Orchestrator(
        channel,
        settings=settings,
        cache=EnhancedContentCache(),
        options=EnhanceOptions(site_prompt=site_prompt)
    )

    await channel.start()
    try:
        if force:
            orchestrator.delete_cached(document_id)
        else:
            cached = orchestrator.load_cached(document_id)
            if cached is not None:
                console.print(f"[yellow]Using cached enhancement for {chapter.title} (use --force to redo)[/yellow]")
                return cached.enhanced_content, None

        root = BeautifulSoup(chapter.html, "html.parser")
        job = orchestrator.create_job(document_id, chapter.title, chapter.text, structured_root=root)
        if not force:
            orchestrator.restore_progress(job)

        view = ProgressiveView(orchestrator, job)
        tracker = ProgressTracker(console)
        try:
            with tracker.track(orchestrator.events, job):
                summary = await orchestrator.run(job)

            while summary.paused_for_rate_limit:
                seconds = round((summary.wait_time or 0) / 1000)
                resume = await asyncio.to_thread(
                    click.confirm, f"Rate limited. Wait {seconds}s and resume?", default=True
                )
                if not resume:
                    break
                with console.status(f"Waiting {seconds}s for the rate limit..."):
                    await asyncio.sleep(seconds)
                with tracker.track(orchestrator.events, job):
                    summary = await view.resume()

            return view.finalize(), summary
        finally:
            view.close()
    finally:
        orchestrator.detach()
        await channel.close()


@click.group()
def cli():
    """Chapter Enhancer - rewrite novel chapters with an LLM, chunk by chunk"""
    pass


@cli.command()
@click.option('--url', help='Chapter URL')
@click.option('--file', type=click.Path(exists=True, dir_okay=False), help='Saved chapter HTML file')
@click.option('--chunk-size', type=click.IntRange(min=1), default=config.CHUNK_SIZE, show_default=True, help='Max characters per chunk')
@click.option('--no-chunking', is_flag=True, help='Send the chapter as one piece')
@click.option('--force', is_flag=True, help='Ignore cached results')
def enhance(url, file, chunk_size, no_chunking, force):
    """Enhance a chapter from a URL or a local HTML file."""
    if bool(url) == bool(file):
        raise click.UsageError("Pass exactly one of --url or --file")

    console.print("\n[bold cyan]Chapter Enhancement[/bold cyan]\n")

    if not config.ANTHROPIC_API_KEY:
        console.print("[red]Error: ANTHROPIC_API_KEY not set in environment[/red]")
        return

    document_id, chapter, site_prompt = load_chapter(url, file)
    console.print(f"Title: [cyan]{chapter.title}[/cyan] ({chapter.word_count:,} words, {chapter.handler_name} handler)")

    settings = ChunkingSettings(chunk_size=chunk_size, chunking_enabled=not no_chunking)
    merged, summary = asyncio.run(run_enhancement(document_id, chapter, settings, site_prompt, force))

    output_path = asyncio.run(export_html(chapter.title, merged, document_id))

    table = Table(show_header=False)
    table.add_row("Title", chapter.title)
    if summary is not None:
        table.add_row("Chunks", str(summary.total_chunks))
        table.add_row("Enhanced", f"[green]{summary.total_processed}[/green]")
        table.add_row("Failed", f"[red]{len(summary.failed_chunks)}[/red]")
        table.add_row("Status", summary.status.value)
    else:
        table.add_row("Source", "cache")
    table.add_row("Output File", str(output_path))
    console.print(table)

    if summary is not None:
        colour = "green" if not summary.failed_chunks and summary.status.value == "completed" else "yellow"
        console.print(f"\n[{colour}]{describe_summary(summary)}[/{colour}]")


@cli.command()
@click.option('--file', required=True, type=click.Path(exists=True, dir_okay=False), help='Saved chapter HTML file')
@click.option('--chunk-size', type=click.IntRange(min=1), default=config.CHUNK_SIZE, show_default=True, help='Max characters per chunk')
def split(file, chunk_size):
    """Show how a chapter would be split into chunks."""
    _, chapter, _ = load_chapter(None, file)
    chunks = TextSplitter(ChunkingSettings(chunk_size=chunk_size)).split(chapter.text)

    table = Table(title=f"Chunks - {chapter.title}")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Chars", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Starts with", style="dim")

    for i, chunk in enumerate(chunks, 1):
        preview = chunk[:60].replace("\n", " ")
        table.add_row(str(i), f"{len(chunk):,}", f"{count_tokens(chunk):,}", preview)

    console.print(table)
    console.print(f"Total: {len(chapter.text):,} characters in {len(chunks)} chunks")


@cli.command('cache-stats')
@click.option('--cleanup', is_flag=True, help='Delete expired entries first')
def cache_stats(cleanup):
    """Show enhanced-content cache statistics."""
    cache = EnhancedContentCache()
    if cleanup:
        removed = cache.cleanup_expired()
        console.print(f"Removed {removed} expired files")

    stats = cache.stats()
    table = Table(show_header=False)
    table.add_row("Documents", str(stats["total_entries"]))
    table.add_row("Chunk records", str(stats["chunk_records"]))
    table.add_row("Size", f"{stats['total_size_kb']} KB")
    table.add_row("Expiry", f"{stats['cache_expiry_days']} days")
    table.add_row("Directory", stats["cache_dir"])
    console.print(table)


@cli.command('clear-cache')
@click.option('--url', help='Only remove this chapter (URL or file path)')
def clear_cache(url):
    """Delete cached enhancements."""
    cache = EnhancedContentCache()
    if url:
        key = url if "://" in url else str(Path(url).resolve())
        if cache.remove(key):
            console.print(f"[green]✓ Removed cached content for {url}[/green]")
        else:
            console.print(f"[yellow]Nothing cached for {url}[/yellow]")
        return

    if click.confirm("Delete every cached enhancement?", default=False):
        count = cache.clear()
        console.print(f"[green]✓ Cache cleared ({count} documents)[/green]")


if __name__ == '__main__':
    cli()
