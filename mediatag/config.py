"""
Central application configuration.

Every tunable value lives here as a typed, documented field.
Any field can be overridden at runtime via an environment variable of the
same name (case-insensitive), e.g.:

    SYNTHETIC_BLOCK_THRESHOLD=60 uvicorn mediatag.main:app   # stricter gate
    export REGISTRATION_GRANULARITY=per_item                 # one Tag per batch item

A `.env` file at the project root is loaded automatically.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,   # LEDGER_RPC_URL == ledger_rpc_url
        extra="ignore",         # silently drop unknown env vars
    )

    # ------------------------------------------------------------------ #
    # Detector service                                                    #
    # ------------------------------------------------------------------ #
    detector_url: str = Field(
        "http://localhost:8001/api", description="Base URL of the authenticity detector"
    )
    detector_timeout_sec: int = Field(
        120, description="Total timeout for one /detect call (large videos are slow)"
    )

    # ------------------------------------------------------------------ #
    # Pinning service (content-addressed storage)                         #
    # ------------------------------------------------------------------ #
    pinning_api_url: str = Field(
        "https://api.pinata.cloud", description="Base URL of the pinning service"
    )
    pinning_jwt: str = Field("", description="Bearer token for the pinning service")
    pinning_gateway_url: str = Field(
        "https://gateway.pinata.cloud/ipfs", description="Public gateway prefix for pinned CIDs"
    )
    pinning_timeout_sec: int = Field(
        120, description="Total timeout for a single pin / unpin request"
    )
    source_fetch_timeout_sec: int = Field(
        60, description="Timeout when re-fetching a hosted media copy for pinning"
    )

    # ------------------------------------------------------------------ #
    # Ledger (JSON-RPC gateway to the registry contract)                  #
    # ------------------------------------------------------------------ #
    ledger_rpc_url: str = Field(
        "http://localhost:8545", description="JSON-RPC endpoint relaying registry contract calls"
    )
    ledger_contract_address: str = Field(
        "", description="Registry contract address forwarded with every call"
    )
    ledger_timeout_sec: int = Field(
        180, description="Transport timeout; covers waitForTransaction blocking on confirmation"
    )

    # ------------------------------------------------------------------ #
    # Authenticity thresholds (natural probability, 0-100)                #
    # ------------------------------------------------------------------ #
    authentic_threshold: int = Field(
        90, description="natural >= this → AUTHENTIC"
    )
    inconclusive_threshold: int = Field(
        70, description="natural >= this (and < authentic) → INCONCLUSIVE, else SYNTHETIC"
    )
    synthetic_block_threshold: int = Field(
        50, description="natural <= this → hard block, item never reaches storage"
    )

    # ------------------------------------------------------------------ #
    # Backing stores                                                      #
    # ------------------------------------------------------------------ #
    upstash_redis_host: str = Field(
        "", description="Upstash REST URL; empty → audit trails stay in process memory"
    )
    upstash_redis_password: str = Field("", description="Upstash REST token")
    firebase_service_account: str = Field(
        "", description="Service-account JSON; empty → application default credentials"
    )

    # ------------------------------------------------------------------ #
    # Audit trail local store                                             #
    # ------------------------------------------------------------------ #
    audit_trail_ttl_sec: int = Field(
        604_800, description="7 days; unfinished trails kept for user-visible history"
    )
    local_audit_max_size: int = Field(
        500, description="Max trails held by the in-memory fallback store"
    )

    # ------------------------------------------------------------------ #
    # Batch registration                                                  #
    # ------------------------------------------------------------------ #
    batch_max_items: int = Field(
        10, description="Max files accepted by one batch submission"
    )
    registration_granularity: str = Field(
        "per_batch", description="'per_batch' (one Tag for survivors) or 'per_item'"
    )
    default_collection_name: str = Field(
        "My Collection", description="Tag file_name when a batch has no collection name"
    )

    # ------------------------------------------------------------------ #
    # Record limits                                                       #
    # ------------------------------------------------------------------ #
    max_file_name_length: int = Field(255, description="Tag file_name max length")
    max_description_length: int = Field(1000, description="Tag description max length")

    # ------------------------------------------------------------------ #
    # File Size Limits                                                    #
    # ------------------------------------------------------------------ #
    max_image_upload_mb: int = Field(
        20, description="Max MB for image uploads"
    )
    max_video_upload_mb: int = Field(
        200, description="Max MB for video uploads"
    )
    max_audio_upload_mb: int = Field(
        50, description="Max MB for audio uploads"
    )
    pil_max_image_pixels: int = Field(
        20_000_000, description="PIL decompression-bomb guard (pixels)"
    )

    # ------------------------------------------------------------------ #
    # Derived byte-level properties (computed from MB fields)             #
    # ------------------------------------------------------------------ #
    @property
    def max_image_upload_bytes(self) -> int:
        return self.max_image_upload_mb * 1024 * 1024

    @property
    def max_video_upload_bytes(self) -> int:
        return self.max_video_upload_mb * 1024 * 1024

    @property
    def max_audio_upload_bytes(self) -> int:
        return self.max_audio_upload_mb * 1024 * 1024


# Single shared instance, import this everywhere.
settings = Settings()
