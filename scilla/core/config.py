"""Configuration management for the scilla shell."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from scilla.core.constants import (
    CLUSTER_MONIKERS,
    DEFAULT_KEYPAIR_PATH,
    MAINNET_RPC,
    SCILLA_CONFIG_RELATIVE_PATH,
    TEST_CLUSTER_HOSTS,
)


class Commitment(str, Enum):
    """Commitment level enumeration, ordered from weakest to strongest."""

    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _COMMITMENT_RANK[self]

    def satisfied_by(self, observed: Commitment | None) -> bool:
        """Return True when an observed status is at least this level."""
        return observed is not None and observed.rank >= self.rank


_COMMITMENT_RANK = {
    Commitment.PROCESSED: 0,
    Commitment.CONFIRMED: 1,
    Commitment.FINALIZED: 2,
}


@dataclass(frozen=True, slots=True)
class ClusterEndpoint:
    """RPC endpoint and commitment fixed for the lifetime of a session."""

    url: str
    commitment: Commitment

    @property
    def is_mainnet(self) -> bool:
        """Verdict from the URL alone: any host not known to serve a test cluster."""
        return (urlsplit(self.url).hostname or "") not in TEST_CLUSTER_HOSTS


def config_file_path() -> Path:
    """Location of the TOML config file (overridable with SCILLA_CONFIG_PATH)."""
    override = os.environ.get("SCILLA_CONFIG_PATH")
    if override:
        return Path(override).expanduser()
    return Path.home() / SCILLA_CONFIG_RELATIVE_PATH


class ScillaConfig(BaseSettings):
    """Session configuration.

    Values come from init arguments, ``SCILLA_*`` environment variables, a
    ``.env`` file and finally the TOML config file, in that order of precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCILLA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Connection settings
    rpc_url: str = Field(default=MAINNET_RPC, description="JSON-RPC endpoint or cluster moniker")
    keypair_path: Path = Field(
        default_factory=lambda: Path.home() / DEFAULT_KEYPAIR_PATH,
        description="Solana CLI keypair file used as fee payer and default authority",
    )
    commitment_level: Commitment = Field(
        default=Commitment.CONFIRMED, description="Commitment required for confirmation"
    )

    # Transport retry bounds
    rpc_timeout_seconds: float = Field(default=10.0, description="Per-request HTTP timeout")
    rpc_max_attempts: int = Field(default=3, description="Attempts per RPC call before giving up")
    rpc_backoff_base_seconds: float = Field(
        default=0.5, description="Initial backoff delay, doubled after each failed attempt"
    )
    rpc_backoff_max_seconds: float = Field(default=4.0, description="Upper bound on backoff delay")

    # Transaction lifecycle bounds
    submit_max_attempts: int = Field(
        default=3, description="Build/sign/submit attempts before the outcome is reported"
    )
    confirm_poll_interval_seconds: float = Field(
        default=2.0, description="Delay between signature status polls"
    )
    confirm_timeout_seconds: float = Field(
        default=60.0, description="Wall-clock deadline for reaching the required commitment"
    )

    # Safety settings
    max_transaction_lamports: int | None = Field(
        default=None, description="Refuse any single intent moving more lamports than this"
    )

    # Data paths
    log_dir: Path = Field(default=Path("logs"), description="Directory for logs")
    audit_log: Path | None = Field(
        default=None, description="Optional JSON lines file recording transaction outcomes"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=config_file_path()),
            file_secret_settings,
        )

    @field_validator("rpc_url")
    @classmethod
    def expand_cluster_moniker(cls, value: str) -> str:
        """Accept short cluster names in place of full URLs."""
        value = value.strip()
        if not value:
            raise ValueError("rpc_url cannot be empty")
        moniker = CLUSTER_MONIKERS.get(value.lower())
        if moniker is not None:
            return moniker
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"rpc_url must be an http(s) URL or a cluster name, got {value!r}")
        return value

    @field_validator("keypair_path")
    @classmethod
    def expand_keypair_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("rpc_max_attempts", "submit_max_attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("attempt bounds must be at least 1")
        return value

    @field_validator(
        "rpc_timeout_seconds",
        "confirm_poll_interval_seconds",
        "confirm_timeout_seconds",
    )
    @classmethod
    def validate_positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be positive")
        return value

    @field_validator("rpc_backoff_base_seconds", "rpc_backoff_max_seconds")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("backoff delays cannot be negative")
        return value

    def model_post_init(self, __context: object) -> None:
        """Create directories after initialization."""
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def endpoint(self) -> ClusterEndpoint:
        return ClusterEndpoint(url=self.rpc_url, commitment=self.commitment_level)


def load_config() -> ScillaConfig:
    """Load configuration from environment, .env and the TOML config file."""
    return ScillaConfig()
