"""
Core Module - Configuration.

============================================================
RESPONSIBILITY
============================================================
Process configuration for the block indexer.

- Loads .env into the environment (python-dotenv)
- Reads and type-converts every setting
- Fails fast with ConfigurationError before any processing

============================================================
ENVIRONMENT
============================================================
RPC_NODE              Ledger websocket endpoint (required)
DB_URL                SQLAlchemy async URL of the store (required)
DB_USE_SSL            "true" enables TLS with certificate validation
DB_NAME               Overrides the database name in DB_URL
NUM_CONCURRENT_JOBS   Catch-up concurrency width
START_BLOCK           Height floor for cold starts

See IndexerConfig for the remaining tuning knobs.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .exceptions import ConfigurationError


DEFAULT_CID_ALIASES: Dict[str, str] = {
    # consolidate multiple LEU cids
    "u0qj92QX9PQ": "u0qj944rhWE",
    "u0qj9QqA2Q": "u0qj944rhWE",
}

DEFAULT_EXCLUDED_METHODS: Tuple[str, ...] = ("setValidationData",)


# ============================================================
# PARSING HELPERS
# ============================================================

def _parse_bool(raw: Optional[str]) -> bool:
    return raw == "true"


def _parse_aliases(raw: Optional[str]) -> Dict[str, str]:
    """Parse "old=new,old2=new" into a mapping on top of the built-in table."""
    aliases = dict(DEFAULT_CID_ALIASES)
    if not raw:
        return aliases
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        if "=" not in pair:
            raise ConfigurationError(
                f"Invalid CID alias entry '{pair}', expected old=new",
                config_key="CID_ALIASES",
            )
        legacy, canonical = (part.strip() for part in pair.split("=", 1))
        aliases[legacy] = canonical
    return aliases


def _parse_methods(raw: Optional[str]) -> Tuple[str, ...]:
    if raw is None:
        return DEFAULT_EXCLUDED_METHODS
    return tuple(m.strip() for m in raw.split(",") if m.strip())


# ============================================================
# INDEXER CONFIG
# ============================================================

@dataclass
class IndexerConfig:
    """Complete configuration of one indexer process."""

    # Endpoints
    rpc_node: str = ""
    db_url: str = ""
    db_use_ssl: bool = False
    db_name: Optional[str] = None

    # Catch-up
    num_concurrent_jobs: int = 5000
    start_block: int = 1
    retry_backoff_seconds: float = 5.0
    bootstrap_safety_factor: int = 2

    # Live mode
    live_safety_factor: int = 5
    reconcile_every: int = 5
    reconcile_window: int = 20
    sweep_max_attempts: int = 3
    decoding_alert_threshold: int = 10

    # Chain client
    chain_pool_size: int = 8
    type_registry_path: Optional[str] = None
    ss58_format: int = 2

    # Store pool
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 300

    # Normalization policy
    cid_aliases: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_CID_ALIASES))
    excluded_methods: Tuple[str, ...] = DEFAULT_EXCLUDED_METHODS

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def live_safety_margin(self) -> int:
        """Heights re-verified below the last processed one on the first live head."""
        return self.live_safety_factor * self.num_concurrent_jobs

    @property
    def bootstrap_safety_margin(self) -> int:
        return self.bootstrap_safety_factor * self.num_concurrent_jobs

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty when valid)
        """
        errors = []

        if not self.rpc_node:
            errors.append("RPC_NODE is required")
        if not self.db_url:
            errors.append("DB_URL is required")
        if self.num_concurrent_jobs < 1:
            errors.append("NUM_CONCURRENT_JOBS must be at least 1")
        if self.start_block < 0:
            errors.append("START_BLOCK must not be negative")
        if self.retry_backoff_seconds < 0:
            errors.append("RETRY_BACKOFF_SECONDS must not be negative")
        if self.reconcile_every < 1:
            errors.append("RECONCILE_EVERY must be at least 1")
        if self.reconcile_window < 0:
            errors.append("RECONCILE_WINDOW must not be negative")
        if self.sweep_max_attempts < 1:
            errors.append("SWEEP_MAX_ATTEMPTS must be at least 1")
        if self.chain_pool_size < 1:
            errors.append("CHAIN_POOL_SIZE must be at least 1")
        if self.log_format not in ("json", "text"):
            errors.append("LOG_FORMAT must be 'json' or 'text'")

        return errors

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        load_env_file: bool = True,
    ) -> "IndexerConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            load_env_file: Load .env into os.environ first

        Raises:
            ConfigurationError: If any value is missing or invalid
        """
        if load_env_file:
            load_dotenv()
        env = os.environ if environ is None else environ

        def get_int(key: str, default: int) -> int:
            raw = env.get(key)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"{key} must be an integer, got '{raw}'",
                    config_key=key,
                    cause=e,
                ) from e

        def get_float(key: str, default: float) -> float:
            raw = env.get(key)
            if raw is None or raw == "":
                return default
            try:
                return float(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"{key} must be a number, got '{raw}'",
                    config_key=key,
                    cause=e,
                ) from e

        config = cls(
            rpc_node=env.get("RPC_NODE", ""),
            db_url=env.get("DB_URL", ""),
            db_use_ssl=_parse_bool(env.get("DB_USE_SSL")),
            db_name=env.get("DB_NAME") or None,
            num_concurrent_jobs=get_int("NUM_CONCURRENT_JOBS", 5000),
            start_block=get_int("START_BLOCK", 1),
            retry_backoff_seconds=get_float("RETRY_BACKOFF_SECONDS", 5.0),
            bootstrap_safety_factor=get_int("BOOTSTRAP_SAFETY_FACTOR", 2),
            live_safety_factor=get_int("LIVE_SAFETY_FACTOR", 5),
            reconcile_every=get_int("RECONCILE_EVERY", 5),
            reconcile_window=get_int("RECONCILE_WINDOW", 20),
            sweep_max_attempts=get_int("SWEEP_MAX_ATTEMPTS", 3),
            decoding_alert_threshold=get_int("DECODING_ALERT_THRESHOLD", 10),
            chain_pool_size=get_int("CHAIN_POOL_SIZE", 8),
            type_registry_path=env.get("TYPE_REGISTRY_PATH") or None,
            ss58_format=get_int("SS58_FORMAT", 2),
            db_pool_size=get_int("DB_POOL_SIZE", 10),
            db_max_overflow=get_int("DB_MAX_OVERFLOW", 20),
            db_pool_timeout=get_int("DB_POOL_TIMEOUT", 300),
            cid_aliases=_parse_aliases(env.get("CID_ALIASES")),
            excluded_methods=_parse_methods(env.get("EXCLUDED_METHODS")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_format=env.get("LOG_FORMAT", "text").lower(),
        )

        errors = config.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid configuration: {', '.join(errors)}",
            )
        return config
