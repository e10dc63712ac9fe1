"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``NOS2BCH_``, nested via ``__``)
2. YAML config file (``--config path`` or ``NOS2BCH_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class StorageEngine(enum.StrEnum):
    """Supported key-value storage backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class Network(enum.StrEnum):
    """Bitcoin Cash network, which selects the CashAddr prefix."""

    MAINNET = "mainnet"
    TESTNET = "testnet"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class StorageConfig(BaseSettings):
    """Persistent key-value storage settings."""

    model_config = SettingsConfigDict(
        env_prefix="NOS2BCH_STORAGE__",
        case_sensitive=False,
    )

    engine: StorageEngine = Field(
        default=StorageEngine.SQLITE,
        description="Storage backend: memory or sqlite",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./nos2bch.db",
        description="Async database connection string",
    )
    debug_sql: bool = False


class LedgerConfig(BaseSettings):
    """Indexer endpoints and retry policy for balance/UTXO/fee/broadcast calls."""

    model_config = SettingsConfigDict(
        env_prefix="NOS2BCH_LEDGER__",
        case_sensitive=False,
    )

    endpoints: list[str] = Field(
        default_factory=lambda: [
            "https://api.fullstack.cash/v5",
            "https://bchn.fullstack.cash/v5",
        ]
    )
    network: Network = Network.MAINNET
    timeout: float = 5.0
    max_attempts: int = 3
    retry_delay: float = 2.0
    cache_ttl: int = 300  # seconds
    fee_target_blocks: int = 2
    fallback_fee_rate: int = 1  # sat/byte


class TipConfig(BaseSettings):
    """Tipping limits and the post-tip notification message."""

    model_config = SettingsConfigDict(
        env_prefix="NOS2BCH_TIP__",
        case_sensitive=False,
    )

    min_tip: int = 1000  # satoshis
    notify_relays: list[str] = Field(
        default_factory=lambda: [
            "wss://relay.damus.io",
            "wss://nos.lol",
            "wss://nostr.mom",
        ]
    )
    relay_timeout: float = 5.0
    explorer_url: str = "https://blockchair.com/bitcoin-cash/transaction/"


class BrokerConfig(BaseSettings):
    """Authorization broker settings."""

    model_config = SettingsConfigDict(
        env_prefix="NOS2BCH_BROKER__",
        case_sensitive=False,
    )

    shared_secret_cache_size: int = 100
    prompt_timeout: float | None = None  # seconds; None waits for the user


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``NOS2BCH_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOS2BCH_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    version: str = "0.1.0"
    config_path: str = ""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    tip: TipConfig = Field(default_factory=TipConfig)
    broker: BrokerConfig = Field(default_factory=BrokerConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))

    @property
    def address_prefix(self) -> str:
        """CashAddr prefix for the configured network."""
        return "bchtest" if self.ledger.network == Network.TESTNET else "bitcoincash"
