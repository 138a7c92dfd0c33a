"""Lifecycle events published by the orchestrator."""
from typing import Annotated, Callable, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from utils.logger import setup_logger

logger = setup_logger(__name__)


class ChunkProcessingStarted(BaseModel):
    type: Literal["chunk_processing_started"] = "chunk_processing_started"
    document_id: str
    chunk_index: int
    total_chunks: int


class ChunkProcessed(BaseModel):
    type: Literal["chunk_processed"] = "chunk_processed"
    document_id: str
    chunk_index: int
    total_chunks: int
    enhanced_content: str
    is_complete: bool = False


class ChunkFailed(BaseModel):
    type: Literal["chunk_error"] = "chunk_error"
    document_id: str
    chunk_index: int
    total_chunks: int
    error: str
    is_rate_limit: bool = False
    wait_time: Optional[int] = None  # milliseconds
    final_failure: bool = False


class AllChunksProcessed(BaseModel):
    type: Literal["all_chunks_processed"] = "all_chunks_processed"
    document_id: str
    total_processed: int
    total_chunks: int
    failed_chunks: List[int] = Field(default_factory=list)


class ApiKeyMissing(BaseModel):
    type: Literal["api_key_missing"] = "api_key_missing"
    document_id: Optional[str] = None
    error: str = ""


class ProcessingCancelled(BaseModel):
    type: Literal["processing_cancelled"] = "processing_cancelled"
    document_id: str
    completed_chunks: int
    total_chunks: int


Event = Annotated[
    Union[
        ChunkProcessingStarted,
        ChunkProcessed,
        ChunkFailed,
        AllChunksProcessed,
        ApiKeyMissing,
        ProcessingCancelled,
    ],
    Field(discriminator="type"),
]

Subscriber = Callable[[BaseModel], None]


class EventBus:
    """Synchronous fan-out of events to subscribers."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: BaseModel) -> None:
        # A failing subscriber must not stop dispatch
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception(f"Event subscriber failed on {getattr(event, 'type', event)}")
