"""Channel and keep-alive settings."""
from pydantic import BaseModel, Field

import config


class ChannelSettings(BaseModel):
    """Timing and retry configuration for the worker channel (milliseconds)."""
    heartbeat_interval_ms: int = Field(default=config.HEARTBEAT_INTERVAL_MS, gt=0)
    jitter_ms: int = Field(default=config.HEARTBEAT_JITTER_MS, ge=0)
    reconnect_delay_ms: int = Field(default=config.RECONNECT_DELAY_MS, ge=0)
    max_retries: int = Field(default=config.KEEPALIVE_MAX_RETRIES, ge=0)
    wake_attempts: int = Field(default=config.WAKE_ATTEMPTS, ge=1)
    wake_backoff_ms: int = Field(default=config.WAKE_BACKOFF_MS, ge=0)
    send_retry_delay_ms: int = Field(default=config.SEND_RETRY_DELAY_MS, ge=0)
    max_send_attempts: int = Field(default=config.MAX_SEND_ATTEMPTS, ge=1)
    port_name: str = "enhancer-keepalive"
