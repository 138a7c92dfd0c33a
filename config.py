"""Configuration module for Chapter Enhancer."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# API Configuration
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
MAX_OUTPUT_TOKENS = int(os.getenv("MAX_OUTPUT_TOKENS", "8192"))

# Chunking Configuration (characters)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "12000"))
CHUNKING_ENABLED = _env_bool("CHUNKING_ENABLED", True)
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "200"))

# Keep-alive session
HEARTBEAT_INTERVAL_MS = int(os.getenv("HEARTBEAT_INTERVAL_MS", "20000"))
HEARTBEAT_JITTER_MS = int(os.getenv("HEARTBEAT_JITTER_MS", "5000"))
RECONNECT_DELAY_MS = int(os.getenv("RECONNECT_DELAY_MS", "1000"))
KEEPALIVE_MAX_RETRIES = int(os.getenv("KEEPALIVE_MAX_RETRIES", "5"))

# Request retries and worker wake-up
WAKE_ATTEMPTS = int(os.getenv("WAKE_ATTEMPTS", "3"))
WAKE_BACKOFF_MS = int(os.getenv("WAKE_BACKOFF_MS", "250"))
SEND_RETRY_DELAY_MS = int(os.getenv("SEND_RETRY_DELAY_MS", "500"))
MAX_SEND_ATTEMPTS = int(os.getenv("MAX_SEND_ATTEMPTS", "3"))

# Rate Limiting
API_CALL_DELAY = float(os.getenv("API_CALL_DELAY", "1.0"))  # Seconds between upstream calls
DEFAULT_RATE_LIMIT_WAIT_MS = 60000

# Local worker lifecycle
WORKER_IDLE_TIMEOUT = float(os.getenv("WORKER_IDLE_TIMEOUT", "30.0"))
WORKER_WAKE_DELAY = float(os.getenv("WORKER_WAKE_DELAY", "0.5"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Output Paths
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "./output"))
CACHE_DIR = Path(os.getenv("CACHE_DIR", str(OUTPUT_DIR / "cache")))
ENHANCED_DIR = OUTPUT_DIR / "enhanced"
CACHE_EXPIRY_DAYS = int(os.getenv("CACHE_EXPIRY_DAYS", "7"))

# Ensure output directories exist
CACHE_DIR.mkdir(parents=True, exist_ok=True)
ENHANCED_DIR.mkdir(parents=True, exist_ok=True)
