"""Message types exchanged with the enhancement worker.

Wire messages are plain dicts with camelCase keys. Each family is a tagged
union: requests and push notifications are discriminated by ``action``,
keep-alive port messages by ``type``.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EnhanceOptions(WireModel):
    """Per-request options forwarded to the worker."""
    use_emoji: bool = False
    site_prompt: str = ""
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    # Set on the first chunk of a run; clears a pending cancellation
    new_run: Optional[bool] = None


# ==================== Requests ====================

class PingRequest(WireModel):
    action: Literal["ping"] = "ping"


class ProcessDocumentRequest(WireModel):
    action: Literal["processDocument"] = "processDocument"
    title: str = ""
    content: str
    options: EnhanceOptions = Field(default_factory=EnhanceOptions)


class ReenhanceChunkRequest(WireModel):
    action: Literal["reenhanceChunk"] = "reenhanceChunk"
    chunk_index: int
    total_chunks: int = 1
    title: str = ""
    content: str
    options: EnhanceOptions = Field(default_factory=EnhanceOptions)


class CancelEnhancementRequest(WireModel):
    action: Literal["cancelEnhancement"] = "cancelEnhancement"


WorkerRequest = Annotated[
    Union[PingRequest, ProcessDocumentRequest, ReenhanceChunkRequest, CancelEnhancementRequest],
    Field(discriminator="action"),
]


# ==================== Responses ====================

class ChunkResult(WireModel):
    original_content: str = ""
    enhanced_content: str
    model_info: Dict[str, Any] = Field(default_factory=dict)


class WorkerResponse(WireModel):
    success: bool
    result: Optional[ChunkResult] = None
    error: Optional[str] = None
    needs_api_key: Optional[bool] = None
    is_rate_limit: Optional[bool] = None
    wait_time: Optional[int] = None  # milliseconds


# ==================== Push notifications ====================

class ChunkProcessedNotice(WireModel):
    action: Literal["chunkProcessed"] = "chunkProcessed"
    chunk_index: int
    total_chunks: int
    result: ChunkResult
    is_complete: bool = False


class ChunkErrorNotice(WireModel):
    action: Literal["chunkError"] = "chunkError"
    chunk_index: int
    total_chunks: int
    error: str
    is_rate_limit: bool = False
    wait_time: Optional[int] = None
    final_failure: Optional[bool] = None


class AllChunksProcessedNotice(WireModel):
    action: Literal["allChunksProcessed"] = "allChunksProcessed"
    total_processed: int
    total_chunks: int
    failed_chunks: List[int] = Field(default_factory=list)


class ApiKeyMissingNotice(WireModel):
    action: Literal["apiKeyMissing"] = "apiKeyMissing"
    error: Optional[str] = None


Notification = Annotated[
    Union[ChunkProcessedNotice, ChunkErrorNotice, AllChunksProcessedNotice, ApiKeyMissingNotice],
    Field(discriminator="action"),
]


# ==================== Keep-alive port ====================

class PortPing(WireModel):
    type: Literal["ping"] = "ping"
    ts: float
    trigger: str = "heartbeat"


class PortPong(WireModel):
    type: Literal["pong"] = "pong"
    ts: Optional[float] = None


PortMessage = Annotated[Union[PortPing, PortPong], Field(discriminator="type")]


_request_adapter = TypeAdapter(WorkerRequest)
_notification_adapter = TypeAdapter(Notification)
_port_adapter = TypeAdapter(PortMessage)


def parse_request(message: Dict[str, Any]):
    """Validate a request dict into its request model (raises pydantic.ValidationError)."""
    return _request_adapter.validate_python(message)


def parse_notification(message: Dict[str, Any]):
    """Validate a push notification dict into its notice model."""
    return _notification_adapter.validate_python(message)


def parse_port_message(message: Dict[str, Any]):
    """Validate a keep-alive port message."""
    return _port_adapter.validate_python(message)
