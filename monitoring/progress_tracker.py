from contextlib import contextmanager

from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeRemainingColumn

from enhancement.events import (
    AllChunksProcessed,
    ApiKeyMissing,
    ChunkFailed,
    ChunkProcessed,
    ChunkProcessingStarted,
    EventBus,
    ProcessingCancelled
)
from enhancement.models import DocumentJob
from enhancement.view import describe_error


class ProgressTracker:
    """Renders orchestrator events as a live progress bar."""

    def __init__(self, console):
        self.console = console
        self.finished_chunks = set()

    def create_progress(self):
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=self.console
        )

    @contextmanager
    def track(self, events: EventBus, job: DocumentJob):
        """Show progress for job while the block runs."""
        self.finished_chunks = {c.index for c in job.chunks if c.is_done}
        progress = self.create_progress()
        task = progress.add_task(
            f"Enhancing {job.title}",
            total=max(job.total_chunks, 1),
            completed=len(self.finished_chunks)
        )

        def _handle(event):
            self.render(progress, task, event)

        events.subscribe(_handle)
        try:
            with progress:
                yield progress
        finally:
            events.unsubscribe(_handle)

    def render(self, progress: Progress, task, event) -> None:
        match event:
            case ChunkProcessingStarted(chunk_index=index, total_chunks=total):
                progress.update(task, description=f"Chunk {index + 1}/{total}")

            case ChunkProcessed(chunk_index=index):
                self.finished_chunks.add(index)
                progress.update(task, completed=len(self.finished_chunks))

            case ChunkFailed(chunk_index=index):
                if not event.is_rate_limit:
                    self.finished_chunks.add(index)
                    progress.update(task, completed=len(self.finished_chunks))
                progress.console.print(describe_error(event), style="red")

            case ApiKeyMissing():
                progress.console.print(describe_error(event), style="red")

            case ProcessingCancelled(completed_chunks=done, total_chunks=total):
                progress.update(task, description=f"Cancelled ({done}/{total} done)")

            case AllChunksProcessed(total_processed=done, total_chunks=total):
                progress.update(task, description=f"Done ({done}/{total} enhanced)")
