"""On-disk cache of enhanced chapters and per-chunk results."""
import hashlib
import json
import shutil
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from utils.logger import setup_logger
import config

logger = setup_logger(__name__)

CACHE_VERSION = "1.0"
SECONDS_PER_DAY = 24 * 60 * 60


class CacheRecord(BaseModel):
    """A fully enhanced document."""
    key: str
    title: str = ""
    original_content: str = ""
    enhanced_content: str
    model_info: Dict[str, Any] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    total_chunks: int = 0
    failed_chunks: List[int] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)
    version: str = CACHE_VERSION


class ChunkRecord(BaseModel):
    """One enhanced chunk of a document still in progress."""
    key: str
    chunk_index: int
    total_chunks: int
    original_content: str
    enhanced_content: str
    model_info: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


def _digest(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class EnhancedContentCache:
    """Stores enhanced content as JSON files named by the sha256 of their key."""

    def __init__(
        self,
        cache_dir: Path = config.CACHE_DIR,
        expiry_days: float = config.CACHE_EXPIRY_DAYS
    ):
        """Initialize cache.

        Args:
            cache_dir: Directory to store cache files
            expiry_days: Entries older than this are treated as missing
        """
        self.cache_dir = Path(cache_dir)
        self.expiry_days = expiry_days
        self.entries_dir = self.cache_dir / "entries"
        self.chunks_dir = self.cache_dir / "chunks"
        self.entries_dir.mkdir(parents=True, exist_ok=True)
        self.chunks_dir.mkdir(parents=True, exist_ok=True)

    def _entry_file(self, key: str) -> Path:
        return self.entries_dir / f"{_digest(key)}.json"

    def _chunk_dir(self, key: str) -> Path:
        return self.chunks_dir / _digest(key)

    def _chunk_file(self, key: str, index: int) -> Path:
        return self._chunk_dir(key) / f"{index:05d}.json"

    def _expired(self, timestamp: float) -> bool:
        return time.time() - timestamp > self.expiry_days * SECONDS_PER_DAY

    def _write(self, path: Path, model: BaseModel) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(model.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Failed to write cache file {path.name}: {e}")
            raise

    def _read(self, path: Path, model_cls):
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return model_cls(**json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cache file {path.name}: {e}")
            return None

    # ==================== Documents ====================

    def save(self, key: str, record: CacheRecord) -> None:
        """Save an enhanced document.

        Args:
            key: Document id (URL or file path)
            record: Record to store

        Raises:
            OSError: If the file cannot be written
        """
        record = record.model_copy(update={"key": key})
        self._write(self._entry_file(key), record)
        logger.info(f"✓ Enhanced content cached for: {key}")

    def load(self, key: str) -> Optional[CacheRecord]:
        """Load an enhanced document, dropping it if expired.

        Returns:
            CacheRecord or None if missing, expired or unreadable
        """
        path = self._entry_file(key)
        record = self._read(path, CacheRecord)
        if record is None:
            return None

        if self._expired(record.timestamp):
            logger.info(f"Cache entry expired for: {key}")
            path.unlink(missing_ok=True)
            return None
        return record

    def remove(self, key: str) -> bool:
        """Delete a document and its chunk records.

        Returns:
            True if anything was removed
        """
        removed = False
        path = self._entry_file(key)
        if path.exists():
            path.unlink()
            removed = True

        chunk_dir = self._chunk_dir(key)
        if chunk_dir.exists():
            shutil.rmtree(chunk_dir)
            removed = True

        if removed:
            logger.info(f"Removed cached content for: {key}")
        return removed

    def exists(self, key: str) -> bool:
        return self.load(key) is not None

    # ==================== Chunks ====================

    def save_chunk(self, key: str, record: ChunkRecord) -> None:
        record = record.model_copy(update={"key": key})
        self._write(self._chunk_file(key, record.chunk_index), record)
        logger.debug(f"Saved chunk {record.chunk_index} for {key}")

    def load_chunks(self, key: str) -> Dict[int, ChunkRecord]:
        """Load every unexpired chunk record of a document, keyed by chunk index."""
        chunk_dir = self._chunk_dir(key)
        if not chunk_dir.exists():
            return {}

        records = {}
        for path in sorted(chunk_dir.glob("*.json")):
            record = self._read(path, ChunkRecord)
            if record is None:
                continue
            if self._expired(record.timestamp):
                path.unlink(missing_ok=True)
                continue
            records[record.chunk_index] = record
        return records

    def remove_chunk(self, key: str, index: int) -> bool:
        path = self._chunk_file(key, index)
        if not path.exists():
            return False
        path.unlink()
        return True

    # ==================== Maintenance ====================

    def cleanup_expired(self) -> int:
        """Delete expired and unreadable files.

        Returns:
            Number of files removed
        """
        removed = 0
        for path in list(self.entries_dir.glob("*.json")) + list(self.chunks_dir.glob("*/*.json")):
            model_cls = CacheRecord if path.parent == self.entries_dir else ChunkRecord
            record = self._read(path, model_cls)
            if record is None or self._expired(record.timestamp):
                path.unlink(missing_ok=True)
                removed += 1

        for chunk_dir in self.chunks_dir.iterdir():
            if chunk_dir.is_dir() and not any(chunk_dir.iterdir()):
                chunk_dir.rmdir()

        if removed:
            logger.info(f"Cleaned up {removed} expired cache files")
        return removed

    def clear(self) -> int:
        """Delete everything in the cache.

        Returns:
            Number of cached documents removed
        """
        count = len(list(self.entries_dir.glob("*.json")))
        shutil.rmtree(self.entries_dir, ignore_errors=True)
        shutil.rmtree(self.chunks_dir, ignore_errors=True)
        self.entries_dir.mkdir(parents=True, exist_ok=True)
        self.chunks_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cache cleared ({count} documents)")
        return count

    def stats(self) -> Dict[str, Any]:
        entries = list(self.entries_dir.glob("*.json"))
        chunk_files = list(self.chunks_dir.glob("*/*.json"))
        total_size = sum(p.stat().st_size for p in entries + chunk_files)
        return {
            "total_entries": len(entries),
            "chunk_records": len(chunk_files),
            "total_size_kb": round(total_size / 1024),
            "cache_expiry_days": self.expiry_days,
            "cache_dir": str(self.cache_dir),
        }
