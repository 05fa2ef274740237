"""
Core types and protocols for the distribution engine.

This module provides the foundational data structures shared by every component:
1. Protocols: LedgerClient for the ledger transport, Signer for the distributing account
2. Immutable data structures: HolderRecord, DistributionRequest, TransferOutcome, instructions
3. The append-only DistributionRun record
4. Exceptions: TributaryError and its domain-specific subclasses
5. Type aliases: AllocationMap

Nothing in this module performs I/O.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, Iterable, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Allocation arithmetic must be deterministic. prec=50 leaves headroom for
# scaling 18-decimal assets by large totals without silent rounding.
#
_TRIBUTARY_DECIMAL_CONTEXT = getcontext()
_TRIBUTARY_DECIMAL_CONTEXT.prec = 50
_TRIBUTARY_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Program ids that own fungible asset mints.
LEGACY_ASSET_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
EXTENDED_ASSET_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

DEFAULT_BATCH_SIZE = 10
DEFAULT_CACHE_TTL_SECONDS = 3600

# Storage key prefix of a persisted run document.
RUN_DOCUMENT_PREFIX = "distribution_"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Ordered mapping from recipient address to the amount it receives.
AllocationMap = Dict[str, Decimal]


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings and floats to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def utcnow() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class TributaryError(Exception):
    """
    Base exception for all distribution errors.

    Attributes:
        code: Process exit code used by the command line
        details: Structured context (addresses, figures) for logs and reports
    """
    code = 1

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details: Dict[str, Any] = dict(details or {})


class ValidationError(TributaryError):
    """Raised for malformed input, always before any I/O."""
    code = 2


class ConfigurationError(TributaryError):
    """Raised when parameters cannot be loaded or are inconsistent."""
    code = 3


class NetworkError(TributaryError):
    """Raised for unclassified transport failures, with the asset/account being resolved."""
    code = 4


class DataIntegrityError(TributaryError):
    """Raised when a stored document exists but cannot be parsed."""
    code = 6


class ResourceError(TributaryError):
    """
    Raised when a resource is missing or insufficient.

    The pre-flight funding check sets required/available.
    """
    code = 7

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        required: Optional[Decimal] = None,
        available: Optional[Decimal] = None,
    ):
        super().__init__(message, details)
        self.required = required
        self.available = available
        if required is not None:
            self.details.setdefault('required', str(required))
        if available is not None:
            self.details.setdefault('available', str(available))


# ============================================================================
# ENUMS
# ============================================================================

class DistributionPolicy(Enum):
    """How the total amount is split across eligible holders."""
    EQUAL = "equal"
    PROPORTIONAL = "proportional"


class TransferStatus(Enum):
    """
    Lifecycle of a single recipient transfer.

    PENDING: Dequeued, not yet submitted or awaiting confirmation.
    CONFIRMED: Submitted and confirmed by the ledger (terminal).
    FAILED: Any failure while provisioning or transferring (terminal).
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AssetProgram(Enum):
    """
    Variant of the program owning an asset.

    LEGACY: original token program, plain transfers.
    EXTENDED: metadata-aware token program, decimal-checked transfers.
    """
    LEGACY = "legacy"
    EXTENDED = "extended"

    @property
    def program_id(self) -> str:
        if self is AssetProgram.EXTENDED:
            return EXTENDED_ASSET_PROGRAM_ID
        return LEGACY_ASSET_PROGRAM_ID

    @classmethod
    def from_owner(cls, owner: str) -> Optional['AssetProgram']:
        """Map an owning program id to its variant, None for unknown programs."""
        if owner == EXTENDED_ASSET_PROGRAM_ID:
            return cls.EXTENDED
        if owner == LEGACY_ASSET_PROGRAM_ID:
            return cls.LEGACY
        return None


# ============================================================================
# HOLDERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class HolderRecord:
    """
    One account holding the reference asset.

    Produced by the collector and never mutated; the next collection
    supersedes it.

    Attributes:
        address: Owner address of the holding account
        balance: Balance in asset units (not raw units)
        percentage: Share of the collected set's total balance, in percent
    """
    address: str
    balance: Decimal
    percentage: Decimal = Decimal("0")

    def __post_init__(self):
        if not self.address or not self.address.strip():
            raise ValidationError("Holder address cannot be empty")
        object.__setattr__(self, 'balance', to_decimal(self.balance))
        object.__setattr__(self, 'percentage', to_decimal(self.percentage))
        if not self.balance.is_finite() or self.balance < 0:
            raise ValidationError(
                f"Holder balance must be a non-negative number: {self.balance}",
                {'address': self.address},
            )

    def to_dict(self) -> Dict[str, str]:
        return {
            'address': self.address,
            'balance': str(self.balance),
            'percentage': str(self.percentage),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HolderRecord':
        return cls(
            address=data['address'],
            balance=to_decimal(data['balance']),
            percentage=to_decimal(data.get('percentage', "0")),
        )


def with_percentages(holders: Iterable[HolderRecord]) -> List[HolderRecord]:
    """Recompute each holder's percentage of the group's total balance."""
    holders = list(holders)
    total = sum((h.balance for h in holders), Decimal("0"))
    if total <= 0:
        return [replace(h, percentage=Decimal("0")) for h in holders]
    return [replace(h, percentage=h.balance / total * 100) for h in holders]


# ============================================================================
# DISTRIBUTION REQUEST
# ============================================================================

@dataclass(frozen=True, slots=True)
class DistributionRequest:
    """
    A request to distribute total_amount of an asset across holders.

    Attributes:
        total_amount: Amount to distribute, in asset units (must be positive)
        asset_address: Mint address of the asset being distributed
        holders: Candidate recipients, in plan order
        policy: EQUAL or PROPORTIONAL (default)
        minimum_holder_balance: Holders below this balance receive nothing
        batch_size: Recipients per batch; None means the configured default

    Validated in __post_init__; an invalid request cannot be constructed.
    """
    total_amount: Decimal
    asset_address: str
    holders: Tuple[HolderRecord, ...]
    policy: DistributionPolicy = DistributionPolicy.PROPORTIONAL
    minimum_holder_balance: Decimal = Decimal("0")
    batch_size: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'holders', tuple(self.holders))
        object.__setattr__(self, 'total_amount', to_decimal(self.total_amount))
        object.__setattr__(self, 'minimum_holder_balance', to_decimal(self.minimum_holder_balance))
        if isinstance(self.policy, str):
            object.__setattr__(self, 'policy', DistributionPolicy(self.policy))

        if not self.total_amount.is_finite() or self.total_amount <= 0:
            raise ValidationError(
                "Distribution amount must be positive",
                {'total_amount': str(self.total_amount)},
            )
        if not self.asset_address or not self.asset_address.strip():
            raise ValidationError("Asset address is required")
        if not self.holders:
            raise ValidationError("At least one recipient is required")
        if self.batch_size is not None and self.batch_size <= 0:
            raise ValidationError(
                "Batch size must be positive", {'batch_size': self.batch_size}
            )
        if self.minimum_holder_balance < 0:
            raise ValidationError("Minimum holder balance cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_amount': str(self.total_amount),
            'asset_address': self.asset_address,
            'holders': [h.to_dict() for h in self.holders],
            'policy': self.policy.value,
            'minimum_holder_balance': str(self.minimum_holder_balance),
            'batch_size': self.batch_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DistributionRequest':
        return cls(
            total_amount=to_decimal(data['total_amount']),
            asset_address=data['asset_address'],
            holders=tuple(HolderRecord.from_dict(h) for h in data['holders']),
            policy=DistributionPolicy(data.get('policy', DistributionPolicy.PROPORTIONAL.value)),
            minimum_holder_balance=to_decimal(data.get('minimum_holder_balance', "0")),
            batch_size=data.get('batch_size'),
        )


# ============================================================================
# TRANSFER OUTCOMES AND RUNS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransferOutcome:
    """
    Result of transferring an allocation to one recipient.

    Created PENDING when the recipient is dequeued; confirmed() and failed()
    return the terminal successor. Terminal outcomes are never retried
    within the same run.
    """
    recipient: str
    amount: Decimal
    status: TransferStatus = TransferStatus.PENDING
    transaction_id: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    error: Optional[str] = None

    def confirmed(self, transaction_id: str) -> 'TransferOutcome':
        if self.status is not TransferStatus.PENDING:
            raise ValueError(f"Cannot confirm a {self.status.value} transfer")
        return replace(self, status=TransferStatus.CONFIRMED, transaction_id=transaction_id)

    def failed(self, error: str) -> 'TransferOutcome':
        if self.status is not TransferStatus.PENDING:
            raise ValueError(f"Cannot fail a {self.status.value} transfer")
        return replace(self, status=TransferStatus.FAILED, error=error)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'recipient': self.recipient,
            'amount': str(self.amount),
            'status': self.status.value,
            'transaction_id': self.transaction_id,
            'timestamp': self.timestamp.isoformat(),
        }
        if self.error is not None:
            data['error'] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferOutcome':
        return cls(
            recipient=data['recipient'],
            amount=to_decimal(data['amount']),
            status=TransferStatus(data['status']),
            transaction_id=data.get('transaction_id', ""),
            timestamp=datetime.fromisoformat(data['timestamp']),
            error=data.get('error'),
        )


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """Aggregate progress reported after every transfer attempt."""
    completed: int
    total: int
    successful: int
    failed: int
    rate: float  # completed transfers per elapsed second


class DistributionRun:
    """
    One end-to-end execution of a distribution request.

    Created at execution start, mutated only by appending outcomes, persisted
    once at the end. Never created on the simulation path.
    """

    def __init__(
        self,
        run_id: str,
        request: DistributionRequest,
        created_at: Optional[datetime] = None,
    ):
        self.id = run_id
        self.request = request
        self.created_at = created_at or utcnow()
        self._results: List[TransferOutcome] = []

    def add_result(self, outcome: TransferOutcome) -> None:
        """Append an outcome (completion order)."""
        self._results.append(outcome)

    @property
    def results(self) -> Tuple[TransferOutcome, ...]:
        return tuple(self._results)

    @property
    def successful_count(self) -> int:
        return sum(1 for r in self._results if r.status is TransferStatus.CONFIRMED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self._results if r.status is TransferStatus.FAILED)

    @property
    def total_distributed(self) -> Decimal:
        """Sum of confirmed amounts."""
        return sum(
            (r.amount for r in self._results if r.status is TransferStatus.CONFIRMED),
            Decimal("0"),
        )

    def failed_recipients(self) -> List[TransferOutcome]:
        """Failed outcomes, so an operator can retry only that subset."""
        return [r for r in self._results if r.status is TransferStatus.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'request': self.request.to_dict(),
            'results': [r.to_dict() for r in self._results],
            'created_at': self.created_at.isoformat(),
            'successful_count': self.successful_count,
            'failed_count': self.failed_count,
            'total_distributed': str(self.total_distributed),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DistributionRun':
        """Rebuild a run by replaying its stored outcomes onto a fresh record."""
        created_at = datetime.fromisoformat(data['created_at'])
        if created_at.tzinfo is None:
            # Timestamps without an offset are read as UTC
            created_at = created_at.replace(tzinfo=timezone.utc)
        run = cls(data['id'], DistributionRequest.from_dict(data['request']), created_at)
        for result in data['results']:
            run.add_result(TransferOutcome.from_dict(result))
        return run

    def __repr__(self) -> str:
        return (
            f"DistributionRun({self.id}, {len(self._results)} results, "
            f"{self.successful_count} confirmed, {self.failed_count} failed)"
        )


# ============================================================================
# LEDGER INSTRUCTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CreateAssetAccount:
    """Provision owner's asset account for asset, paid for by payer."""
    payer: str
    owner: str
    asset: str
    program: AssetProgram


@dataclass(frozen=True, slots=True)
class TransferAsset:
    """
    Transfer amount raw units of asset between two owners' asset accounts.

    Attributes:
        amount: Raw (decimal-scaled) integer amount, always positive
        decimals: Asset decimals, checked by the EXTENDED program
    """
    source_owner: str
    destination_owner: str
    asset: str
    amount: int
    decimals: int
    program: AssetProgram

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")
        if self.source_owner == self.destination_owner:
            raise ValueError("Source and destination must be different")


Instruction = Any  # CreateAssetAccount | TransferAsset


# ============================================================================
# LEDGER TRANSPORT
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountInfo:
    """Minimal account metadata: the program that owns the account."""
    address: str
    owner: str


@dataclass(frozen=True, slots=True)
class AssetBalance:
    """Raw balance of an asset account together with the asset's decimals."""
    amount: int
    decimals: int

    @property
    def ui_amount(self) -> Decimal:
        return Decimal(self.amount).scaleb(-self.decimals)


@runtime_checkable
class Signer(Protocol):
    """The distributing account. Read-only: address derivation and signing."""

    @property
    def address(self) -> str:
        ...


@runtime_checkable
class LedgerClient(Protocol):
    """
    Narrow interface to the ledger transport.

    This boundary is the sole source of network non-determinism. All
    queries and submissions are awaited; submit_signed_transfer owns its
    own retry and backoff.
    """

    async def get_asset_account_balance(self, owner: str, asset: str) -> AssetBalance:
        """Balance of owner's asset account."""
        ...

    async def get_account_info(self, address: str) -> Optional[AccountInfo]:
        """Account metadata, or None when the account does not exist."""
        ...

    async def get_all_holders_of(self, asset: str, min_balance: Decimal) -> List[HolderRecord]:
        """Every account holding at least min_balance of asset."""
        ...

    async def submit_signed_transfer(self, instructions: Tuple[Instruction, ...], signer: Signer) -> str:
        """Sign, submit and confirm one transaction, returning its id."""
        ...

    async def get_asset_decimals(self, asset: str) -> int:
        """Decimals of the asset mint."""
        ...

    def find_asset_account(self, owner: str, asset: str, program: AssetProgram) -> str:
        """Derive the address of owner's asset account (no I/O)."""
        ...
