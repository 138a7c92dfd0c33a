"""Drives a document job through the worker one chunk at a time."""
import asyncio
from typing import Any, Dict, Optional

from bs4 import Tag
from pydantic import ValidationError

from utils.logger import setup_logger
from channel.channel import Channel
from channel.errors import (
    ApplicationError,
    ChannelError,
    ConfigurationError,
    RateLimited,
    error_from_response
)
from channel.messages import (
    ApiKeyMissingNotice,
    CancelEnhancementRequest,
    ChunkResult,
    EnhanceOptions,
    ProcessDocumentRequest,
    ReenhanceChunkRequest,
    WorkerResponse,
    parse_notification
)
from enhancement.events import (
    AllChunksProcessed,
    ApiKeyMissing,
    ChunkFailed,
    ChunkProcessed,
    ChunkProcessingStarted,
    EventBus,
    ProcessingCancelled
)
from enhancement.models import Chunk, ChunkState, DocumentJob, JobStatus, JobSummary
from ingestion.aligner import StructureAligner
from ingestion.cleaner import text_to_html
from ingestion.models import ChunkingSettings
from ingestion.splitter import TextSplitter, count_tokens
from storage.cache import CacheRecord, ChunkRecord, EnhancedContentCache

logger = setup_logger(__name__)

CANCELLED_MESSAGE = "Cancelled"
RETRYABLE_STATES = (ChunkState.PENDING, ChunkState.ERROR)


class JobAlreadyRunning(Exception):
    """Raised when run/resume is called on a job that is already dispatching."""
    pass


class Orchestrator:
    """Owns document jobs and dispatches their chunks over a Channel.

    Exactly one chunk is in flight at a time: the dispatch loop and one-off
    re-enhancements share a lock. A failed chunk never stops the job, except
    for a rate limit (the job pauses and can be resumed) or a missing
    credential (the job halts).
    """

    def __init__(
        self,
        channel: Channel,
        settings: Optional[ChunkingSettings] = None,
        cache: Optional[EnhancedContentCache] = None,
        splitter: Optional[TextSplitter] = None,
        aligner: Optional[StructureAligner] = None,
        events: Optional[EventBus] = None,
        options: Optional[EnhanceOptions] = None
    ):
        """Initialize orchestrator.

        Args:
            channel: Channel to the enhancement worker
            settings: Chunking settings, defaults from config
            cache: Where finished documents and chunks are saved (optional)
            splitter: Text splitter, built from settings when omitted
            aligner: HTML structure aligner
            events: Event bus lifecycle events are published on
            options: Options sent with every enhancement request
        """
        self.channel = channel
        self.settings = settings or ChunkingSettings()
        self.cache = cache
        self.splitter = splitter or TextSplitter(self.settings)
        self.aligner = aligner or StructureAligner()
        self.events = events or EventBus()
        self.options = options or EnhanceOptions()

        self._lock = asyncio.Lock()
        self._active: Optional[DocumentJob] = None
        self._api_key_reported = False
        self._model_info: Dict[str, Any] = {}

        self.channel.add_listener(self._on_notification)

    # ==================== Jobs ====================

    def create_job(
        self,
        document_id: str,
        title: str,
        text: str,
        structured_root: Optional[Tag] = None
    ) -> DocumentJob:
        """Split a document and build a job with every chunk pending.

        Args:
            document_id: Stable id (URL or file path)
            title: Document title
            text: Plain text of the document
            structured_root: Content-area element the HTML fragments come from

        Returns:
            New DocumentJob (possibly with zero chunks)
        """
        text_chunks = self.splitter.split(text)
        if structured_root is None:
            fragments = [text_to_html(chunk) for chunk in text_chunks]
        else:
            fragments = self.aligner.align(structured_root, text_chunks)

        chunks = [
            Chunk(
                index=i,
                original_text=chunk_text,
                original_structured=fragment,
                token_count=count_tokens(chunk_text)
            )
            for i, (chunk_text, fragment) in enumerate(zip(text_chunks, fragments))
        ]

        job = DocumentJob(document_id=document_id, title=title, chunks=chunks)
        logger.info(f"Created job for \"{title}\" with {job.total_chunks} chunks")
        return job

    def restore_progress(self, job: DocumentJob) -> int:
        """Mark pending chunks completed from cached chunk records of an earlier run.

        A record is only used if its chunk text and chunk count still match.

        Returns:
            Number of chunks restored
        """
        if self.cache is None:
            return 0

        records = self.cache.load_chunks(job.document_id)
        restored = 0
        for chunk in job.chunks:
            record = records.get(chunk.index)
            if record is None or chunk.state != ChunkState.PENDING:
                continue
            if record.total_chunks != job.total_chunks or record.original_content != chunk.original_text:
                continue
            chunk.transition_to(ChunkState.PROCESSING)
            chunk.enhanced_content = record.enhanced_content
            chunk.transition_to(ChunkState.COMPLETED)
            self._model_info = record.model_info or self._model_info
            restored += 1

        if restored:
            logger.info(f"✓ Restored {restored}/{job.total_chunks} chunks from cache")
        return restored

    async def run(self, job: DocumentJob) -> JobSummary:
        """Dispatch every pending or failed chunk in index order."""
        return await self._dispatch(job, start_index=0)

    async def resume(self, job: DocumentJob, start_index: Optional[int] = None) -> JobSummary:
        """Continue dispatch from start_index, or from the first unfinished chunk."""
        if start_index is None:
            start_index = next(
                (c.index for c in job.chunks if c.state in RETRYABLE_STATES),
                job.total_chunks
            )
        logger.info(f"Resuming \"{job.title}\" from chunk {start_index + 1}")
        return await self._dispatch(job, start_index=start_index)

    async def cancel(self, job: DocumentJob) -> None:
        """Stop dispatch before the next chunk. A result still in flight is dropped."""
        if job.status not in (JobStatus.RUNNING, JobStatus.IDLE):
            logger.info(f"Nothing to cancel for \"{job.title}\" ({job.status.value})")
            return

        job.status = JobStatus.CANCELLED
        logger.info(f"Cancelling \"{job.title}\"")
        self.events.publish(ProcessingCancelled(
            document_id=job.document_id,
            completed_chunks=job.completed_count,
            total_chunks=job.total_chunks
        ))

        try:
            await self.channel.send(CancelEnhancementRequest().to_wire())
        except Exception as e:
            logger.warning(f"Could not tell the worker to cancel: {e}")

    async def reenhance_chunk(self, job: DocumentJob, index: int) -> Chunk:
        """Enhance one chunk again from its original text.

        Raises:
            IndexError: If the job has no such chunk
        """
        chunk = job.chunk(index)
        if job.status == JobStatus.CANCELLED:
            job.status = JobStatus.IDLE
        if job.status != JobStatus.RUNNING:
            self.channel.new_user_action()
            self._api_key_reported = False

        logger.info(f"Re-enhancing chunk {index + 1}/{job.total_chunks} of \"{job.title}\"")
        error = await self._process_chunk(job, chunk, reenhance=True)

        if error is None and job.status == JobStatus.COMPLETED:
            self._save_document(job)
        return chunk

    def load_cached(self, document_id: str) -> Optional[CacheRecord]:
        if self.cache is None:
            return None
        return self.cache.load(document_id)

    def delete_cached(self, document_id: str) -> bool:
        """Delete the cached document and its chunk records."""
        if self.cache is None:
            return False
        return self.cache.remove(document_id)

    # ==================== Dispatch ====================

    async def _dispatch(self, job: DocumentJob, start_index: int) -> JobSummary:
        if job.status == JobStatus.RUNNING:
            raise JobAlreadyRunning(f"Job {job.document_id} is already running")

        self.channel.new_user_action()
        self._api_key_reported = False
        self._active = job
        job.status = JobStatus.RUNNING
        logger.info(f"Processing \"{job.title}\": {job.total_chunks} chunks")

        new_run = True
        for chunk in job.chunks:
            if chunk.index < start_index or chunk.state not in RETRYABLE_STATES:
                continue
            if job.status == JobStatus.CANCELLED:
                break

            error = await self._process_chunk(job, chunk, new_run=new_run)
            new_run = False

            if isinstance(error, RateLimited):
                job.status = JobStatus.IDLE
                logger.warning(
                    f"Paused at chunk {chunk.index + 1}: rate limited for "
                    f"{(error.wait_time or 0) / 1000:.0f}s"
                )
                return self._summary(
                    job,
                    paused_for_rate_limit=True,
                    wait_time=error.wait_time,
                    resume_index=chunk.index
                )

            if isinstance(error, ConfigurationError):
                job.status = JobStatus.IDLE
                logger.error(f"Halted \"{job.title}\": {error}")
                return self._summary(job, halted_reason="configuration", resume_index=chunk.index)

        if job.status == JobStatus.CANCELLED:
            logger.info(f"Cancelled \"{job.title}\" after {job.completed_count} chunks")
            return self._summary(job, halted_reason="cancelled")

        return self._finish(job)

    async def _process_chunk(
        self,
        job: DocumentJob,
        chunk: Chunk,
        reenhance: bool = False,
        new_run: bool = False
    ) -> Optional[ChannelError]:
        """Send one chunk and apply the outcome.

        Returns:
            None on success, otherwise the error the chunk failed with
        """
        async with self._lock:
            if job.status == JobStatus.CANCELLED:
                return None

            chunk.transition_to(ChunkState.PROCESSING)
            self.events.publish(ChunkProcessingStarted(
                document_id=job.document_id,
                chunk_index=chunk.index,
                total_chunks=job.total_chunks
            ))

            error: Optional[ChannelError] = None
            result: Optional[ChunkResult] = None
            try:
                response = await self.channel.send_with_retry(self._request(job, chunk, reenhance, new_run))
                if not response.get("success"):
                    raise error_from_response(response)
                result = WorkerResponse.model_validate(response).result
                if result is None:
                    raise ApplicationError("Worker returned no result")
            except ChannelError as e:
                error = e
            except ValidationError as e:
                error = ApplicationError(f"Malformed worker response: {e}")
            except Exception as e:
                logger.exception(f"Chunk {chunk.index + 1} failed unexpectedly")
                error = ApplicationError(str(e))

            if job.status == JobStatus.CANCELLED:
                chunk.transition_to(ChunkState.ERROR, CANCELLED_MESSAGE)
                logger.info(f"Dropped result of chunk {chunk.index + 1}: job was cancelled")
                self.events.publish(ChunkFailed(
                    document_id=job.document_id,
                    chunk_index=chunk.index,
                    total_chunks=job.total_chunks,
                    error=CANCELLED_MESSAGE
                ))
                return None

            if error is not None:
                self._apply_failure(job, chunk, error)
                return error

            chunk.enhanced_content = result.enhanced_content
            chunk.transition_to(ChunkState.COMPLETED)
            self._model_info = result.model_info or self._model_info
            self._save_chunk(job, chunk)

            logger.info(f"✓ Chunk {chunk.index + 1}/{job.total_chunks} enhanced")
            self.events.publish(ChunkProcessed(
                document_id=job.document_id,
                chunk_index=chunk.index,
                total_chunks=job.total_chunks,
                enhanced_content=result.enhanced_content,
                is_complete=job.completed_count == job.total_chunks
            ))
            return None

    def _request(self, job: DocumentJob, chunk: Chunk, reenhance: bool, new_run: bool = False) -> Dict[str, Any]:
        options = self.options.model_copy(update={
            "chunk_index": chunk.index,
            "total_chunks": job.total_chunks,
            "new_run": True if new_run else None
        })
        if reenhance:
            request = ReenhanceChunkRequest(
                chunk_index=chunk.index,
                total_chunks=job.total_chunks,
                title=job.title,
                content=chunk.original_text,
                options=options
            )
        else:
            request = ProcessDocumentRequest(
                title=job.title,
                content=chunk.original_text,
                options=options
            )
        return request.to_wire()

    def _apply_failure(self, job: DocumentJob, chunk: Chunk, error: ChannelError) -> None:
        message = str(error)
        chunk.transition_to(ChunkState.ERROR, message)
        is_rate_limit = isinstance(error, RateLimited)

        logger.error(f"Chunk {chunk.index + 1}/{job.total_chunks} failed: {message}")
        self.events.publish(ChunkFailed(
            document_id=job.document_id,
            chunk_index=chunk.index,
            total_chunks=job.total_chunks,
            error=message,
            is_rate_limit=is_rate_limit,
            wait_time=error.wait_time if is_rate_limit else None,
            final_failure=not is_rate_limit
        ))

        if isinstance(error, ConfigurationError):
            self._report_api_key_missing(job.document_id, message)

    def _report_api_key_missing(self, document_id: Optional[str], message: str) -> None:
        if self._api_key_reported:
            return
        self._api_key_reported = True
        self.events.publish(ApiKeyMissing(document_id=document_id, error=message))

    def _on_notification(self, message: Dict[str, Any]) -> None:
        try:
            notice = parse_notification(message)
        except ValidationError:
            logger.debug(f"Ignoring unknown worker notification: {message.get('action')}")
            return

        match notice:
            case ApiKeyMissingNotice(error=error):
                document_id = self._active.document_id if self._active else None
                self._report_api_key_missing(document_id, error or "")
            case _:
                logger.debug(f"Worker notification: {notice.action}")

    def _finish(self, job: DocumentJob) -> JobSummary:
        job.status = JobStatus.COMPLETED
        failed = job.failed_indices
        self.events.publish(AllChunksProcessed(
            document_id=job.document_id,
            total_processed=job.completed_count,
            total_chunks=job.total_chunks,
            failed_chunks=failed
        ))

        if failed:
            logger.warning(
                f"Finished \"{job.title}\": {job.completed_count}/{job.total_chunks} chunks enhanced, "
                f"failed: {[i + 1 for i in failed]}"
            )
        else:
            logger.info(f"✓ Finished \"{job.title}\": all {job.total_chunks} chunks enhanced")

        self._save_document(job)
        return self._summary(job)

    def _summary(self, job: DocumentJob, **kwargs) -> JobSummary:
        return JobSummary(
            document_id=job.document_id,
            status=job.status,
            total_chunks=job.total_chunks,
            total_processed=job.completed_count,
            failed_chunks=job.failed_indices,
            **kwargs
        )

    # ==================== Cache ====================

    def _save_chunk(self, job: DocumentJob, chunk: Chunk) -> None:
        if self.cache is None:
            return
        try:
            self.cache.save_chunk(job.document_id, ChunkRecord(
                key=job.document_id,
                chunk_index=chunk.index,
                total_chunks=job.total_chunks,
                original_content=chunk.original_text,
                enhanced_content=chunk.enhanced_content or "",
                model_info=self._model_info
            ))
        except OSError as e:
            logger.warning(f"Chunk {chunk.index + 1} was not cached: {e}")

    def _save_document(self, job: DocumentJob) -> None:
        if self.cache is None or job.completed_count == 0:
            return
        try:
            self.cache.save(job.document_id, CacheRecord(
                key=job.document_id,
                title=job.title,
                original_content="\n".join(c.original_structured for c in job.chunks),
                enhanced_content=job.merged_content(),
                model_info=self._model_info,
                settings={
                    "chunk_size": self.settings.chunk_size,
                    "chunking_enabled": self.settings.chunking_enabled
                },
                total_chunks=job.total_chunks,
                failed_chunks=job.failed_indices
            ))
        except OSError as e:
            logger.warning(f"Enhanced document was not cached: {e}")

    def detach(self) -> None:
        """Stop listening to worker notifications."""
        self.channel.remove_listener(self._on_notification)
