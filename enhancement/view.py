"""Per-chunk display state built from orchestrator events."""
from typing import Dict, List, Optional, Union

from pydantic import BaseModel

from utils.logger import setup_logger
from enhancement.events import (
    AllChunksProcessed,
    ApiKeyMissing,
    ChunkFailed,
    ChunkProcessed,
    ChunkProcessingStarted,
    ProcessingCancelled
)
from enhancement.models import Chunk, DocumentJob, JobSummary
from enhancement.orchestrator import CANCELLED_MESSAGE, Orchestrator

logger = setup_logger(__name__)


def describe_error(event: Union[ChunkFailed, ApiKeyMissing]) -> str:
    """Turn a failure event into a message telling the user what to do next."""
    if isinstance(event, ApiKeyMissing):
        return "Anthropic API key is missing. Set ANTHROPIC_API_KEY and try again."

    number = event.chunk_index + 1
    if event.is_rate_limit:
        seconds = round((event.wait_time or 0) / 1000)
        return f"Rate limit reached. Wait {seconds} seconds, then resume from chunk {number}."
    if event.error == CANCELLED_MESSAGE:
        return f"Chunk {number} was cancelled."
    return f"Chunk {number} failed: {event.error}. Use retry on chunk {number}."


def describe_summary(summary: JobSummary) -> str:
    """One-line outcome with succeeded and failed counts."""
    failed = len(summary.failed_chunks)
    line = f"Enhanced {summary.total_processed} of {summary.total_chunks} chunks"
    if failed:
        numbers = ", ".join(str(i + 1) for i in summary.failed_chunks)
        line += f"; {failed} failed (chunks {numbers})"

    if summary.paused_for_rate_limit:
        seconds = round((summary.wait_time or 0) / 1000)
        line += f". Paused for rate limit: wait {seconds} seconds, then resume from chunk {(summary.resume_index or 0) + 1}"
    elif summary.halted_reason == "configuration":
        line += ". Halted: set ANTHROPIC_API_KEY and try again"
    elif summary.halted_reason == "cancelled":
        line += ". Cancelled"
    return line + "."


class ChunkView(BaseModel):
    """What the reader currently sees for one chunk."""
    index: int
    state: str = "pending"
    enhanced_content: Optional[str] = None
    error: Optional[str] = None
    showing_original: bool = False


class ProgressiveView:
    """Follows a job's events and issues retry, revert and resume commands.

    The view never changes chunk state itself. Reverting only switches which
    version of a chunk is shown.
    """

    def __init__(self, orchestrator: Orchestrator, job: DocumentJob):
        self.orchestrator = orchestrator
        self.job = job
        self.chunks: Dict[int, ChunkView] = {
            c.index: ChunkView(index=c.index, state=c.state.value, enhanced_content=c.enhanced_content)
            for c in job.chunks
        }
        self.messages: List[str] = []
        self.resume_index: Optional[int] = None
        self.rate_limit_wait: Optional[int] = None
        self.api_key_missing = False
        self.cancelled = False
        self.finished = False

        orchestrator.events.subscribe(self.handle_event)

    def close(self) -> None:
        self.orchestrator.events.unsubscribe(self.handle_event)

    def handle_event(self, event: BaseModel) -> None:
        document_id = getattr(event, "document_id", None)
        if document_id is not None and document_id != self.job.document_id:
            return

        match event:
            case ChunkProcessingStarted(chunk_index=index):
                view = self.chunks[index]
                view.state = "processing"
                view.error = None

            case ChunkProcessed(chunk_index=index, enhanced_content=content):
                view = self.chunks[index]
                view.state = "completed"
                view.enhanced_content = content
                view.showing_original = False

            case ChunkFailed(chunk_index=index, error=error):
                view = self.chunks[index]
                view.state = "error"
                view.error = error
                if event.is_rate_limit:
                    self.resume_index = index
                    self.rate_limit_wait = event.wait_time
                self.messages.append(describe_error(event))

            case AllChunksProcessed():
                self.finished = True
                self.resume_index = None

            case ApiKeyMissing():
                self.api_key_missing = True
                self.messages.append(describe_error(event))

            case ProcessingCancelled():
                self.cancelled = True

    # ==================== Commands ====================

    async def retry(self, index: int) -> Chunk:
        """Re-enhance one chunk from its original text."""
        return await self.orchestrator.reenhance_chunk(self.job, index)

    async def resume(self) -> JobSummary:
        """Continue after a rate-limit pause from the chunk that hit it."""
        start, self.resume_index = self.resume_index, None
        self.rate_limit_wait = None
        self.cancelled = False
        return await self.orchestrator.resume(self.job, start)

    def revert(self, index: int) -> None:
        """Show the original version of a chunk."""
        self.chunks[index].showing_original = True

    def show_enhanced(self, index: int) -> None:
        view = self.chunks[index]
        if view.enhanced_content is None:
            logger.warning(f"Chunk {index + 1} has no enhanced version to show")
            return
        view.showing_original = False

    def toggle(self, index: int) -> None:
        if self.chunks[index].showing_original:
            self.show_enhanced(index)
        else:
            self.revert(index)

    # ==================== Output ====================

    def content_for(self, index: int) -> str:
        view = self.chunks[index]
        if view.showing_original or view.enhanced_content is None:
            chunk = self.job.chunk(index)
            return chunk.original_structured or chunk.original_text
        return view.enhanced_content

    def finalize(self, separator: str = "\n") -> str:
        """Merge every chunk as currently displayed, in index order."""
        return separator.join(self.content_for(i) for i in sorted(self.chunks))

    @property
    def completed_count(self) -> int:
        return sum(1 for v in self.chunks.values() if v.state == "completed")

    @property
    def failed_indices(self) -> List[int]:
        return sorted(i for i, v in self.chunks.items() if v.state == "error")
