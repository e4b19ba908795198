"""
Configuration management for the Call Router
Uses Pydantic Settings for environment variable management
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application Settings
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    service_name: str = Field(default="call-router")

    # Server Configuration
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8000)

    # Redis (idempotency cache, call locks, call state, event streams)
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_socket_timeout_seconds: float = Field(default=2.0)

    # Webhook Configuration
    webhook_base_url: str = Field(default="http://localhost:8000")
    webhook_secret: Optional[str] = Field(default=None)
    webhook_verify_signature: bool = Field(default=False)
    webhook_signature_header: str = Field(default="X-Cloudonix-Signature")
    webhook_deadline_seconds: float = Field(default=4.0)
    retry_after_seconds: int = Field(default=1)

    # Idempotency
    idempotency_ttl_seconds: int = Field(default=86400)
    idempotency_max_response_bytes: int = Field(default=102400)

    # Call Locks
    lock_ttl_seconds: float = Field(default=10.0)
    lock_acquire_timeout_seconds: float = Field(default=3.0)
    lock_retry_interval_seconds: float = Field(default=0.05)

    # Call State
    call_state_ttl_seconds: int = Field(default=3600)
    call_state_grace_seconds: int = Field(default=300)

    # Routing
    default_ring_timeout_seconds: int = Field(default=20)
    routing_cache_ttl_seconds: float = Field(default=30.0)
    routing_config_file: Optional[str] = Field(default=None)

    # Control Plane (routing configuration source)
    control_plane_base_url: Optional[str] = Field(default=None)
    control_plane_token: Optional[str] = Field(default=None)
    control_plane_timeout_seconds: float = Field(default=2.0)

    # Event Publishing
    event_publish_timeout_seconds: float = Field(default=1.0)
    event_stream_maxlen: int = Field(default=10000)

    # Response Markup
    say_voice: str = Field(default="woman")
    say_language: str = Field(default="en-US")
    voicemail_url: Optional[str] = Field(default=None)
    voicemail_max_length_seconds: int = Field(default=120)

    @property
    def dial_action_url(self) -> str:
        """Callback URL the platform posts ring attempt results to"""
        return f"{self.webhook_base_url.rstrip('/')}/webhooks/voice/dial-result"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
