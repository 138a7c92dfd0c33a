"""Message-handling side of the enhancement worker."""
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from utils.logger import setup_logger
from channel.errors import ApplicationError, ConfigurationError, RateLimited
from channel.messages import (
    AllChunksProcessedNotice,
    ApiKeyMissingNotice,
    CancelEnhancementRequest,
    ChunkErrorNotice,
    ChunkProcessedNotice,
    EnhanceOptions,
    PingRequest,
    PortPing,
    PortPong,
    ProcessDocumentRequest,
    ReenhanceChunkRequest,
    WireModel,
    WorkerResponse,
    parse_port_message,
    parse_request
)
from worker.enhancer import ChapterEnhancer

logger = setup_logger(__name__)


class EnhancementWorker:
    """Answers channel requests by running the ChapterEnhancer.

    Failures never escape handle(): they come back as success == False
    payloads flagged with needsApiKey or isRateLimit where that applies.
    """

    def __init__(self, enhancer: ChapterEnhancer):
        self.enhancer = enhancer
        self.notify: Optional[Callable[[Dict[str, Any]], None]] = None
        self.cancel_requested = False
        self.requests_handled = 0
        self.run_processed = 0
        self.run_failed: List[int] = []

    async def handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        try:
            request = parse_request(message)
        except ValidationError:
            logger.warning(f"Rejected malformed request: {message.get('action')!r}")
            return WorkerResponse(
                success=False,
                error=f"Unknown or malformed request: {message.get('action')!r}"
            ).to_wire()

        self.requests_handled += 1

        match request:
            case PingRequest():
                return WorkerResponse(success=True).to_wire()

            case CancelEnhancementRequest():
                self.cancel_requested = True
                logger.info("Enhancement cancellation requested")
                return WorkerResponse(success=True).to_wire()

            case ProcessDocumentRequest(title=title, content=content, options=options):
                if options.new_run or not options.chunk_index:
                    self._start_run()
                elif self.cancel_requested:
                    return WorkerResponse(success=False, error="Enhancement cancelled").to_wire()
                response = await self._enhance(title, content, options)
                self._track_run(options, response)
                return response

            case ReenhanceChunkRequest():
                self.cancel_requested = False
                options = request.options.model_copy(update={
                    "chunk_index": request.chunk_index,
                    "total_chunks": request.total_chunks
                })
                return await self._enhance(request.title, request.content, options)

    async def _enhance(self, title: str, content: str, options: EnhanceOptions) -> Dict[str, Any]:
        """Run the enhancer and turn the outcome into a response payload.

        Requests that carry a chunk index also push chunkProcessed or
        chunkError so listeners can follow progress without the reply.
        """
        try:
            result = await self.enhancer.enhance(title, content, options)
        except ConfigurationError as e:
            logger.error(f"Cannot enhance: {e}")
            self._push(ApiKeyMissingNotice(error=str(e)))
            return WorkerResponse(success=False, error=str(e), needs_api_key=True).to_wire()
        except RateLimited as e:
            self._push_chunk_error(options, str(e), is_rate_limit=True, wait_time=e.wait_time)
            return WorkerResponse(
                success=False,
                error=str(e),
                is_rate_limit=True,
                wait_time=e.wait_time
            ).to_wire()
        except ApplicationError as e:
            logger.error(f"Enhancement failed: {e}")
            self._push_chunk_error(options, str(e))
            return WorkerResponse(success=False, error=str(e)).to_wire()
        except Exception as e:
            logger.exception("Unexpected enhancement failure")
            self._push_chunk_error(options, f"Unexpected error: {e}")
            return WorkerResponse(success=False, error=f"Unexpected error: {e}").to_wire()

        if options.chunk_index is not None:
            total = options.total_chunks or 1
            self._push(ChunkProcessedNotice(
                chunk_index=options.chunk_index,
                total_chunks=total,
                result=result,
                is_complete=options.chunk_index >= total - 1
            ))
        return WorkerResponse(success=True, result=result).to_wire()

    def _push_chunk_error(self, options: EnhanceOptions, error: str,
                          is_rate_limit: bool = False, wait_time: Optional[int] = None) -> None:
        if options.chunk_index is None:
            return
        self._push(ChunkErrorNotice(
            chunk_index=options.chunk_index,
            total_chunks=options.total_chunks or 1,
            error=error,
            is_rate_limit=is_rate_limit,
            wait_time=wait_time,
            # A rate-limited chunk is retried after the wait
            final_failure=not is_rate_limit
        ))

    def _start_run(self) -> None:
        self.cancel_requested = False
        self.run_processed = 0
        self.run_failed = []

    def _track_run(self, options: EnhanceOptions, response: Dict[str, Any]) -> None:
        """Count a processDocument outcome and announce the end of the run."""
        if options.chunk_index is None:
            return
        if response["success"]:
            self.run_processed += 1
        elif response.get("isRateLimit") or response.get("needsApiKey"):
            # The run pauses here and resumes with a fresh first chunk
            return
        else:
            self.run_failed.append(options.chunk_index)

        total = options.total_chunks or 1
        if options.chunk_index >= total - 1:
            self._push(AllChunksProcessedNotice(
                total_processed=self.run_processed,
                total_chunks=total,
                failed_chunks=list(self.run_failed)
            ))

    def handle_port_message(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Answer keep-alive port traffic. Pings get a pong, anything else is ignored."""
        try:
            parsed = parse_port_message(message)
        except ValidationError:
            return None

        match parsed:
            case PortPing(trigger=trigger):
                logger.debug(f"Keep-alive ping ({trigger})")
                return PortPong(ts=time.time() * 1000).to_wire()
            case _:
                return None

    def _push(self, notice: WireModel) -> None:
        if self.notify is not None:
            self.notify(notice.to_wire())

    def reset(self) -> None:
        """Drop per-session state when the host suspends the worker."""
        self._start_run()
