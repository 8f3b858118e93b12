"""
Provenance Engine Configuration - Networks, windows, retries and cache.

Defaults are safe for public RPC endpoints.
Endpoints and contract addresses can be overridden from environment
variables (a local .env file is loaded by ``from_env``).
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import load_dotenv

from provenance_engine.exceptions import ConfigurationError


@dataclass
class NetworkConfig:
    """Configuration for a ledger network."""
    name: str
    chain_id: int
    rpc_url: str
    explorer_url: str = ""
    token_contract: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "chain_id": self.chain_id,
            "explorer_url": self.explorer_url,
            "token_contract": self.token_contract,
        }


def default_networks() -> dict[str, NetworkConfig]:
    """Built-in networks with environment overrides."""
    return {
        "u2u": NetworkConfig(
            name="U2U Network",
            chain_id=39,
            rpc_url=os.environ.get("U2U_RPC_URL", "https://rpc-mainnet.u2u.xyz"),
            explorer_url="https://u2uscan.xyz",
            token_contract=os.environ.get(
                "U2U_CROPBATCH_TOKEN_CONTRACT",
                "0xd3549d47D09b485d3921E5169596deB47158b490",
            ),
        ),
        "lisk": NetworkConfig(
            name="Lisk Sepolia",
            chain_id=4202,
            rpc_url=os.environ.get("LISK_RPC_URL", "https://rpc.sepolia-api.lisk.com"),
            explorer_url="https://sepolia-blockscout.lisk.com",
            token_contract=os.environ.get(
                "LISK_CROPBATCH_TOKEN_CONTRACT",
                "0x4097236ED51C12a7b57Af129190E0166248709D0",
            ),
        ),
    }


@dataclass
class ProvenanceConfig:
    """Main configuration for the provenance engine."""

    # Network
    network: str = "lisk"
    networks: dict[str, NetworkConfig] = field(default_factory=dict)

    # Block windowing (2s blocks: 86_400 blocks is about two days)
    window_blocks: int = 86_400
    max_range_blocks: int = 1_000_000
    chunk_size_blocks: int = 50_000
    history_from_block: Optional[int] = None  # contract deployment block

    # Retry / timeouts
    max_retries: int = 3
    retry_backoff_base: float = 2.0
    retry_backoff_initial: float = 0.5
    request_timeout: float = 30.0
    max_concurrent_lookups: int = 16

    # Cache
    cache_ttl_seconds: float = 300.0  # 5 minutes
    cache_max_entries: int = 1000

    # Activity feed
    default_activity_limit: int = 10
    max_activity_limit: int = 100

    def __post_init__(self) -> None:
        if not self.networks:
            self.networks = default_networks()

    def get_network(self, name: Optional[str] = None) -> NetworkConfig:
        """Get configuration for a network (the active one by default)."""
        key = name or self.network
        if key not in self.networks:
            raise ConfigurationError(
                f"Unknown network '{key}' (known: {', '.join(sorted(self.networks))})",
                config_key="network",
            )
        return self.networks[key]

    def validate(self) -> list[str]:
        """Validate configuration. Returns a list of error messages."""
        errors = []
        if self.network not in self.networks:
            errors.append(f"network '{self.network}' is not configured")
        if self.window_blocks <= 0:
            errors.append("window_blocks must be positive")
        if self.chunk_size_blocks <= 0:
            errors.append("chunk_size_blocks must be positive")
        # the default window head - window_blocks .. head spans window_blocks + 1 blocks
        if self.max_range_blocks <= self.window_blocks:
            errors.append("max_range_blocks must exceed window_blocks")
        if self.history_from_block is not None and self.history_from_block < 0:
            errors.append("history_from_block must be non-negative")
        if self.max_retries < 1:
            errors.append("max_retries must be at least 1")
        if self.max_concurrent_lookups < 1:
            errors.append("max_concurrent_lookups must be at least 1")
        if self.cache_ttl_seconds <= 0:
            errors.append("cache_ttl_seconds must be positive")
        if not 1 <= self.default_activity_limit <= self.max_activity_limit:
            errors.append("default_activity_limit must be between 1 and max_activity_limit")
        return errors

    @classmethod
    def from_env(cls) -> "ProvenanceConfig":
        """Build configuration from PROVENANCE_* environment variables."""
        load_dotenv()

        def _int(name: str, default: int) -> int:
            value = os.environ.get(name)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(
                    f"{name} must be an integer, got {value!r}",
                    config_key=name,
                    original_error=e,
                )

        def _float(name: str, default: float) -> float:
            value = os.environ.get(name)
            if value is None or value == "":
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(
                    f"{name} must be a number, got {value!r}",
                    config_key=name,
                    original_error=e,
                )

        from_block = _int("PROVENANCE_HISTORY_FROM_BLOCK", -1)
        defaults = cls()
        return cls(
            network=os.environ.get("ACTIVE_NETWORK", defaults.network),
            window_blocks=_int("PROVENANCE_WINDOW_BLOCKS", defaults.window_blocks),
            max_range_blocks=_int("PROVENANCE_MAX_RANGE_BLOCKS", defaults.max_range_blocks),
            chunk_size_blocks=_int("PROVENANCE_CHUNK_SIZE_BLOCKS", defaults.chunk_size_blocks),
            history_from_block=from_block if from_block >= 0 else None,
            max_retries=_int("PROVENANCE_MAX_RETRIES", defaults.max_retries),
            request_timeout=_float("PROVENANCE_REQUEST_TIMEOUT", defaults.request_timeout),
            max_concurrent_lookups=_int(
                "PROVENANCE_MAX_CONCURRENT_LOOKUPS", defaults.max_concurrent_lookups
            ),
            cache_ttl_seconds=_float("PROVENANCE_CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
            cache_max_entries=_int("PROVENANCE_CACHE_MAX_ENTRIES", defaults.cache_max_entries),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "networks": {k: v.to_dict() for k, v in self.networks.items()},
            "window_blocks": self.window_blocks,
            "max_range_blocks": self.max_range_blocks,
            "chunk_size_blocks": self.chunk_size_blocks,
            "history_from_block": self.history_from_block,
            "max_retries": self.max_retries,
            "request_timeout": self.request_timeout,
            "max_concurrent_lookups": self.max_concurrent_lookups,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "cache_max_entries": self.cache_max_entries,
        }


# Default configuration instance
_default_config: Optional[ProvenanceConfig] = None


def get_config() -> ProvenanceConfig:
    """Get the default configuration."""
    global _default_config
    if _default_config is None:
        _default_config = ProvenanceConfig.from_env()
    return _default_config


def set_config(config: ProvenanceConfig) -> None:
    """Set the default configuration."""
    global _default_config
    _default_config = config
