"""Runtime settings loaded from the environment (prefix ``ZKPOOL_``) or a .env file."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from zkpool.core.events import DEFAULT_EVENT_HISTORY
from zkpool.core.merkle_tree import DEFAULT_MERKLE_DEPTH, MAX_MERKLE_DEPTH
from zkpool.core.nullifier_ledger import MAX_NULLIFIERS_PER_SHARD, MAX_SHARD_BITS
from zkpool.core.root_history import DEFAULT_ROOT_WINDOW, MAX_ROOT_WINDOW

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class PoolSettings(BaseSettings):
    """Pool deployment settings."""

    model_config = SettingsConfigDict(
        env_prefix="ZKPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "test", "production"] = Field(
        "development", description="Deployment environment"
    )
    merkle_depth: int = Field(DEFAULT_MERKLE_DEPTH, ge=1, le=MAX_MERKLE_DEPTH)
    root_window: int = Field(DEFAULT_ROOT_WINDOW, ge=1, le=MAX_ROOT_WINDOW)
    nullifier_shard_bits: int = Field(0, ge=0, le=MAX_SHARD_BITS)
    nullifier_shard_capacity: int = Field(MAX_NULLIFIERS_PER_SHARD, ge=1)
    event_history: int = Field(DEFAULT_EVENT_HISTORY, ge=1, description="Events kept in memory")
    verifier_backend: Literal["groth16", "structural"] = Field(
        "groth16", description="Proof verifier implementation"
    )
    allow_insecure_verifier: bool = Field(
        False, description="Permit the structural verifier outside production"
    )
    database_url: str = Field("sqlite:///zk_pool.db", description="SQLAlchemy database URL")
    jwt_secret: str = Field("change-me-in-production", min_length=8)
    jwt_expire_minutes: int = Field(60, ge=1)
    log_level: str = Field("INFO")


@lru_cache(maxsize=1)
def get_settings() -> PoolSettings:
    return PoolSettings()


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
