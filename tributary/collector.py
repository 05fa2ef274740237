"""
collector.py - Wallet Collector: current holders of a reference asset

Collection pipeline on a cache miss (order matters):
1. Query every holder of the asset from the ledger
2. Balance threshold filter (balance >= threshold)
3. Exclusion filter
4. Descending-balance sort (stable: ties keep ledger order)
5. Size cap, applied after the sort so the cap keeps the largest holders

The result is written through to the HolderStore. A cache hit within the
TTL returns the stored snapshot without touching the ledger.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple
import csv
import json
import logging
import time

from .config import TributaryParameters
from .core import (
    AssetProgram, HolderRecord, LedgerClient, NetworkError, TributaryError,
    ValidationError, to_decimal, with_percentages,
)
from .holder_store import HolderStore


logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")
CSV_HEADER = ("address", "balance", "percentage")

ProgressCallback = Callable[[int, int, float], None]  # (current, total, rate)


@dataclass(frozen=True, slots=True)
class CollectionOptions:
    """
    Filters for one holder collection.

    Attributes:
        asset_address: Mint of the reference asset
        threshold: Minimum balance a holder needs to be returned
        max_holders: Keep only the N largest holders (None = unlimited)
        exclude_addresses: Owners never returned (treasury, pools, ...)
        use_cache: Read and write the holder cache
        cache_ttl_seconds: Snapshot lifetime; None means the configured default
    """
    asset_address: str
    threshold: Decimal = Decimal("0")
    max_holders: Optional[int] = None
    exclude_addresses: Tuple[str, ...] = ()
    use_cache: bool = True
    cache_ttl_seconds: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'threshold', to_decimal(self.threshold))
        object.__setattr__(self, 'exclude_addresses', tuple(self.exclude_addresses))
        if not self.asset_address or not self.asset_address.strip():
            raise ValidationError("Asset address is required")
        if self.threshold < 0:
            raise ValidationError("Threshold must be non-negative", {'threshold': str(self.threshold)})
        if self.max_holders is not None and self.max_holders <= 0:
            raise ValidationError("Max holders must be positive", {'max_holders': self.max_holders})
        if self.cache_ttl_seconds is not None and self.cache_ttl_seconds <= 0:
            raise ValidationError("Cache TTL must be positive", {'cache_ttl_seconds': self.cache_ttl_seconds})


def select_holders(holders: Iterable[HolderRecord], options: CollectionOptions) -> List[HolderRecord]:
    """Apply threshold, exclusions, descending sort and cap, in that order."""
    excluded = set(options.exclude_addresses)
    selected = [
        h for h in holders
        if h.balance >= options.threshold and h.address not in excluded
    ]
    selected.sort(key=lambda h: h.balance, reverse=True)
    if options.max_holders is not None:
        selected = selected[:options.max_holders]
    return with_percentages(selected)


class WalletCollector:
    """
    Collects and caches the holder set of a reference asset.

    Example:
        collector = WalletCollector(client, HolderStore(FileStorage("./data")))
        holders = await collector.collect(CollectionOptions(mint, max_holders=100))
    """

    def __init__(
        self,
        client: LedgerClient,
        store: HolderStore,
        parameters: Optional[TributaryParameters] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.store = store
        self.parameters = parameters or TributaryParameters()
        self._timer = timer

    @staticmethod
    def cache_key(options: CollectionOptions) -> str:
        """Deterministic key built from every filter parameter."""
        excludes = "|".join(sorted(options.exclude_addresses)) or "none"
        cap = options.max_holders if options.max_holders is not None else "unlimited"
        return f"wallets_{options.asset_address}_{options.threshold}_{cap}_{excludes}"

    def _ttl(self, options: CollectionOptions) -> int:
        if options.cache_ttl_seconds is not None:
            return options.cache_ttl_seconds
        return self.parameters.cache.default_ttl_seconds

    async def collect(
        self,
        options: CollectionOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[HolderRecord]:
        """
        Return the filtered holder set, balance-descending.

        Raises:
            NetworkError: If the ledger query fails
        """
        key = self.cache_key(options)

        if options.use_cache:
            cached = self._read_cache(key)
            if cached is not None:
                logger.info("Returning %d cached holders of %s", len(cached), options.asset_address)
                return cached

        start = self._timer()
        try:
            fetched = await self.client.get_all_holders_of(options.asset_address, options.threshold)
        except TributaryError:
            raise
        except Exception as e:
            raise NetworkError(
                f"Failed to fetch holders: {e}", {'asset_address': options.asset_address}
            ) from e
        elapsed = self._timer() - start

        if on_progress is not None:
            rate = len(fetched) / elapsed if elapsed > 0 else float(len(fetched))
            on_progress(len(fetched), len(fetched), rate)

        holders = select_holders(fetched, options)

        if options.use_cache:
            self._write_cache(key, holders, self._ttl(options))

        logger.info(
            "Collected %d of %d holders of %s (threshold %s)",
            len(holders), len(fetched), options.asset_address, options.threshold,
        )
        return holders

    def _read_cache(self, key: str) -> Optional[List[HolderRecord]]:
        try:
            return self.store.get(key)
        except TributaryError as e:
            logger.warning("Failed to read cache %s: %s", key, e)
            return None

    def _write_cache(self, key: str, holders: List[HolderRecord], ttl_seconds: int) -> None:
        try:
            self.store.put(key, holders, ttl_seconds)
            logger.debug("Cached %d holders under %s for %ss", len(holders), key, ttl_seconds)
        except TributaryError as e:
            logger.warning("Failed to cache result %s: %s", key, e)

    async def validate_asset_address(self, asset_address: str) -> bool:
        """True when the address is an existing mint owned by a known asset program."""
        try:
            info = await self.client.get_account_info(asset_address)
        except Exception as e:
            logger.warning("Asset address validation failed for %s: %s", asset_address, e)
            return False
        return info is not None and AssetProgram.from_owner(info.owner) is not None

    def clear_cache(self) -> int:
        removed = self.store.clear()
        logger.info("Cleared %d cached holder snapshots", removed)
        return removed


# ============================================================================
# EXPORT / IMPORT
# ============================================================================

def _format_for(path: Path, format: Optional[str]) -> str:
    fmt = (format or path.suffix.lstrip(".") or "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {fmt}", {'allowed': list(EXPORT_FORMATS)})
    return fmt


def export_holders(holders: Iterable[HolderRecord], path: str, format: Optional[str] = None) -> Path:
    """
    Write holders as CSV rows or a JSON list.

    The format defaults to the file extension, then to JSON.

    Returns:
        The path written
    """
    target = Path(path)
    fmt = _format_for(target, format)
    target.parent.mkdir(parents=True, exist_ok=True)
    holders = list(holders)
    with open(target, "w", encoding="utf-8", newline="") as f:
        if fmt == "csv":
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for h in holders:
                writer.writerow([h.address, str(h.balance), str(h.percentage)])
        else:
            json.dump([h.to_dict() for h in holders], f, indent=2)
    logger.info("Exported %d holders to %s (%s)", len(holders), target, fmt)
    return target


def load_holders(path: str, format: Optional[str] = None) -> List[HolderRecord]:
    """
    Read holders written by export_holders.

    A JSON file may also be an object with a "holders" list.

    Raises:
        ValidationError: If the file is missing or malformed
    """
    source = Path(path)
    fmt = _format_for(source, format)
    try:
        with open(source, "r", encoding="utf-8", newline="") as f:
            if fmt == "csv":
                return [HolderRecord.from_dict(row) for row in csv.DictReader(f)]
            data = json.load(f)
            if isinstance(data, dict):
                data = data.get('holders', [])
            return [HolderRecord.from_dict(item) for item in data]
    except OSError as e:
        raise ValidationError(f"Cannot read holders file {path}: {e}", {'path': path}) from e
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise ValidationError(f"Malformed holders file {path}: {e}", {'path': path}) from e
