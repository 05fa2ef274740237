"""
config.py - Injected configuration for the distribution engine

Every tunable threshold lives in one frozen TributaryParameters value that is
passed to each component's constructor. There is no module-level "current
parameters" state: two executors in one process can run with different
settings, and tests override a single field with dataclasses.replace().

Sources, lowest to highest priority:
1. Defaults declared on the dataclasses below
2. A JSON parameters file (TRIBUTARY_PARAMETERS_FILE, or ./tributary-parameters.json)
3. TRIBUTARY_* environment variables
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import json
import os

from .core import ConfigurationError, DEFAULT_BATCH_SIZE, DEFAULT_CACHE_TTL_SECONDS


NETWORKS = ("devnet", "testnet", "mainnet-beta")
LOG_LEVELS = ("debug", "info", "warning", "error")

DEFAULT_PARAMETERS_FILE = "tributary-parameters.json"


@dataclass(frozen=True)
class NetworkParameters:
    default_network: str = "devnet"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    commitment: str = "confirmed"


@dataclass(frozen=True)
class RpcParameters:
    endpoints: Dict[str, str] = field(default_factory=lambda: {
        "devnet": "https://api.devnet.solana.com",
        "testnet": "https://api.testnet.solana.com",
        "mainnet-beta": "https://api.mainnet-beta.solana.com",
    })

    def endpoint_for(self, network: str) -> str:
        try:
            return self.endpoints[network]
        except KeyError:
            raise ConfigurationError(f"Unknown network: {network}", {'network': network}) from None


@dataclass(frozen=True)
class DistributionParameters:
    default_batch_size: int = DEFAULT_BATCH_SIZE
    max_batch_size: int = 50
    batch_delay_seconds: float = 0.1
    estimated_cost_per_transaction: Decimal = Decimal("0.000005")
    estimated_seconds_per_batch: float = 2.0
    # Risk thresholds (advisory only)
    large_amount_threshold: Decimal = Decimal("100000")
    large_recipient_count_threshold: int = 1000
    small_amount_threshold: Decimal = Decimal("0.001")


@dataclass(frozen=True)
class CacheParameters:
    default_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS


@dataclass(frozen=True)
class TributaryParameters:
    network: NetworkParameters = field(default_factory=NetworkParameters)
    rpc: RpcParameters = field(default_factory=RpcParameters)
    distribution: DistributionParameters = field(default_factory=DistributionParameters)
    cache: CacheParameters = field(default_factory=CacheParameters)
    storage_dir: str = "./data"
    log_level: str = "info"

    def __post_init__(self):
        if self.network.default_network not in NETWORKS:
            raise ConfigurationError(
                f"Unknown network: {self.network.default_network}",
                {'allowed': list(NETWORKS)},
            )
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        if self.network.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.network.timeout_seconds <= 0 or self.network.retry_delay_seconds < 0:
            raise ConfigurationError("Network timeout must be positive and retry delay non-negative")
        d = self.distribution
        if d.default_batch_size <= 0 or d.max_batch_size <= 0:
            raise ConfigurationError("Batch sizes must be positive")
        if d.default_batch_size > d.max_batch_size:
            raise ConfigurationError(
                "default_batch_size cannot exceed max_batch_size",
                {'default_batch_size': d.default_batch_size, 'max_batch_size': d.max_batch_size},
            )
        if d.batch_delay_seconds < 0:
            raise ConfigurationError("batch_delay_seconds cannot be negative")
        if self.cache.default_ttl_seconds <= 0:
            raise ConfigurationError("Cache TTL must be positive")


# Environment variable -> (section, field) or top-level field name.
_ENV_OVERRIDES = {
    "TRIBUTARY_DEFAULT_NETWORK": ("network", "default_network"),
    "TRIBUTARY_NETWORK_TIMEOUT": ("network", "timeout_seconds"),
    "TRIBUTARY_MAX_RETRIES": ("network", "max_retries"),
    "TRIBUTARY_RETRY_DELAY": ("network", "retry_delay_seconds"),
    "TRIBUTARY_BATCH_SIZE": ("distribution", "default_batch_size"),
    "TRIBUTARY_LOG_LEVEL": (None, "log_level"),
    "TRIBUTARY_STORAGE_DIR": (None, "storage_dir"),
}

_ENV_ENDPOINTS = {
    "TRIBUTARY_DEVNET_RPC": "devnet",
    "TRIBUTARY_TESTNET_RPC": "testnet",
    "TRIBUTARY_MAINNET_RPC": "mainnet-beta",
}


def _coerce(value: Any, current: Any, name: str) -> Any:
    """Coerce a raw file/env value to the type of the field's current value."""
    try:
        if isinstance(current, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(current, Decimal):
            return Decimal(str(value))
        if isinstance(current, int):
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"expected an integer, got {value}")
            return int(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, dict):
            if not isinstance(value, dict):
                raise ValueError("expected an object")
            return {**current, **value}
        return str(value)
    except (TypeError, ValueError, InvalidOperation) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r} ({e})") from e


def _merge(obj: Any, overrides: Mapping[str, Any], prefix: str = "") -> Any:
    """Deep-merge a mapping into a (nested) frozen dataclass, returning a new one."""
    known = {f.name for f in fields(obj)}
    changes = {}
    for key, value in overrides.items():
        if key not in known:
            raise ConfigurationError(f"Unknown parameter: {prefix}{key}")
        current = getattr(obj, key)
        if is_dataclass(current):
            if not isinstance(value, Mapping):
                raise ConfigurationError(f"Parameter {prefix}{key} must be an object")
            changes[key] = _merge(current, value, f"{prefix}{key}.")
        else:
            changes[key] = _coerce(value, current, f"{prefix}{key}")
    return replace(obj, **changes)


def _snake_case(data: Any) -> Any:
    """Accept camelCase keys in parameter files; network names are left as-is."""
    if not isinstance(data, dict):
        return data
    out = {}
    for key, value in data.items():
        snake = "".join("_" + c.lower() if c.isupper() else c for c in key)
        out[snake] = value if snake == "endpoints" else _snake_case(value)
    return out


def load_parameters_file(path: Path) -> Dict[str, Any]:
    """Read a JSON parameters file into a plain dict."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read parameters file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Parameters file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Parameters file {path} must contain an object")
    return _snake_case(data)


def load_parameters(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TributaryParameters:
    """
    Build parameters from defaults, an optional JSON file, and the environment.

    Args:
        path: Explicit parameters file. When None, TRIBUTARY_PARAMETERS_FILE or
              ./tributary-parameters.json is used if it exists.
        environ: Environment mapping (default: os.environ)

    Returns:
        A validated TributaryParameters

    Raises:
        ConfigurationError: If the file is unreadable or any value is invalid
    """
    environ = os.environ if environ is None else environ
    params = TributaryParameters()

    if path is None:
        candidate = environ.get("TRIBUTARY_PARAMETERS_FILE", DEFAULT_PARAMETERS_FILE)
        if Path(candidate).exists():
            path = candidate
    if path is not None:
        params = _merge(params, load_parameters_file(Path(path)))

    for var, (section, name) in _ENV_OVERRIDES.items():
        if var not in environ:
            continue
        if section is None:
            params = _merge(params, {name: environ[var]})
        else:
            params = _merge(params, {section: {name: environ[var]}})

    endpoints = {net: environ[var] for var, net in _ENV_ENDPOINTS.items() if var in environ}
    if endpoints:
        params = _merge(params, {"rpc": {"endpoints": endpoints}})

    return params
