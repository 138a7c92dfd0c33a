"""Pydantic models for document jobs and their chunks."""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field


class ChunkState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ALLOWED_TRANSITIONS: Dict[ChunkState, FrozenSet[ChunkState]] = {
    ChunkState.PENDING: frozenset({ChunkState.PROCESSING}),
    ChunkState.PROCESSING: frozenset({ChunkState.COMPLETED, ChunkState.ERROR}),
    ChunkState.ERROR: frozenset({ChunkState.PROCESSING}),
    ChunkState.COMPLETED: frozenset({ChunkState.PROCESSING}),
}


class InvalidTransitionError(Exception):
    """Raised on a chunk state change the state machine does not allow."""

    def __init__(self, index: int, current: ChunkState, target: ChunkState):
        super().__init__(f"Chunk {index}: cannot go from {current.value} to {target.value}")
        self.index = index
        self.current = current
        self.target = target


class Chunk(BaseModel):
    """One bounded unit of a document job."""
    index: int
    original_text: str
    original_structured: str = ""
    enhanced_content: Optional[str] = None
    state: ChunkState = ChunkState.PENDING
    last_error: Optional[str] = None
    token_count: int = 0

    def transition_to(self, target: ChunkState, error: Optional[str] = None) -> None:
        """Move to target state, enforcing the allowed transitions.

        Args:
            target: New state
            error: Error message, kept only when target is ERROR

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.index, self.state, target)

        self.state = target
        self.last_error = (error or "Unknown error") if target == ChunkState.ERROR else None

    @property
    def is_done(self) -> bool:
        return self.state == ChunkState.COMPLETED

    @property
    def display_content(self) -> str:
        """Enhanced content when available, the original markup otherwise."""
        if self.enhanced_content is not None:
            return self.enhanced_content
        return self.original_structured or self.original_text


class DocumentJob(BaseModel):
    """A document being enhanced chunk by chunk."""
    document_id: str
    title: str = ""
    chunks: List[Chunk] = Field(default_factory=list)
    status: JobStatus = JobStatus.IDLE

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    def chunk(self, index: int) -> Chunk:
        if index < 0 or index >= len(self.chunks):
            raise IndexError(f"Job {self.document_id} has no chunk {index}")
        return self.chunks[index]

    @property
    def processing_chunk(self) -> Optional[Chunk]:
        for chunk in self.chunks:
            if chunk.state == ChunkState.PROCESSING:
                return chunk
        return None

    @property
    def completed_count(self) -> int:
        return sum(1 for c in self.chunks if c.state == ChunkState.COMPLETED)

    @property
    def failed_indices(self) -> List[int]:
        return [c.index for c in self.chunks if c.state == ChunkState.ERROR]

    def counts(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in ChunkState}
        for chunk in self.chunks:
            counts[chunk.state.value] += 1
        return counts

    def merged_content(self, separator: str = "\n") -> str:
        """Join every chunk's current display content in index order."""
        return separator.join(chunk.display_content for chunk in self.chunks)


class JobSummary(BaseModel):
    """Outcome of one run or resume call."""
    document_id: str
    status: JobStatus
    total_chunks: int
    total_processed: int
    failed_chunks: List[int] = Field(default_factory=list)
    paused_for_rate_limit: bool = False
    wait_time: Optional[int] = None  # milliseconds
    resume_index: Optional[int] = None
    halted_reason: Optional[str] = None  # "configuration" or "cancelled"

    @property
    def partial(self) -> bool:
        return 0 < self.total_processed < self.total_chunks
