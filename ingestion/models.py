"""Pydantic models for ingestion module."""
from pydantic import BaseModel, Field
from typing import Dict, Any

import config


class ExtractedChapter(BaseModel):
    """Represents a chapter extracted from a reading site or local file."""
    found: bool
    title: str = ""
    text: str = ""
    html: str = ""
    source_url: str = ""
    handler_name: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def word_count(self) -> int:
        return len(self.text.split())


class ChunkingSettings(BaseModel):
    """Options consumed by the splitter and the orchestrator."""
    chunk_size: int = Field(default=config.CHUNK_SIZE, gt=0)
    chunking_enabled: bool = config.CHUNKING_ENABLED
    min_chunk_length: int = Field(default=config.MIN_CHUNK_LENGTH, ge=0)
