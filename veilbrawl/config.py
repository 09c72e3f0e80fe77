"""Application configuration using Pydantic Settings."""

import os
import socket
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    # ZK verification
    zk_verify_enabled: bool = True
    zk_vk_path: str = ""
    zk_verify_cmd: str = "bb verify -k {VK_PATH} -p {PROOF_PATH} -i {PUBLIC_INPUTS_PATH}"
    zk_verify_timeout_seconds: float = 30.0
    zk_strict_mode: bool = False  # refuse to run with verification disabled
    zk_verify_commit_proof: bool = True  # false defers verification to reveal
    zk_reverify_on_resolve: bool = False

    # On-chain anchoring
    onchain_gate_enabled: bool = False
    anchor_url: str = ""
    anchor_timeout_seconds: float = 10.0

    # Round protocol
    move_timer_seconds: int = 30
    resolution_lock_stale_seconds: int = 45
    resolution_lock_owner: str = ""

    # Retry for transient failures
    transient_retry_attempts: int = 4
    transient_retry_base_ms: int = 200

    # Fan-out and background work
    event_queue_size: int = 256
    outbound_task_limit: int = 64

    # Application
    app_env: str = "dev"
    app_version: str = "1"
    log_level: str = "INFO"

    # CORS
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def lock_owner_token(self) -> str:
        """Prefix of resolution lock owners ("host:pid" by default); each acquisition adds a unique suffix."""
        return self.resolution_lock_owner or f"{socket.gethostname()}:{os.getpid()}"

    @property
    def anchor_configured(self) -> bool:
        return bool(self.anchor_url.strip())


# Global settings instance
settings = Settings()
