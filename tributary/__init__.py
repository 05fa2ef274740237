"""
tributary - Holder-weighted token distribution engine

Collects the holders of a reference asset, plans a rounding-exact allocation
of a total amount, and executes it as batched ledger transfers.

Usage:
    from decimal import Decimal
    from tributary import (
        CollectionOptions, DistributionExecutor, DistributionLedger,
        DistributionRequest, FileStorage, HolderStore, KeypairSigner,
        SolanaLedgerClient, WalletCollector, load_parameters, simulate,
    )

    params = load_parameters()
    storage = FileStorage(params.storage_dir)

    async with SolanaLedgerClient.for_network(params) as client:
        collector = WalletCollector(client, HolderStore(storage), params)
        holders = await collector.collect(CollectionOptions(reference_mint, max_holders=500))

        request = DistributionRequest(Decimal("1000"), reward_mint, tuple(holders))
        print(simulate(request, params).risk_factors)

        signer = KeypairSigner.from_file("id.json")
        executor = DistributionExecutor(client, signer, params, DistributionLedger(storage))
        run = await executor.execute(request)
"""

__version__ = "0.1.0"

# Core types
from .core import (
    AllocationMap,
    HolderRecord,
    DistributionPolicy,
    DistributionRequest,
    TransferStatus,
    TransferOutcome,
    ProgressUpdate,
    DistributionRun,
    AssetProgram,
    CreateAssetAccount,
    TransferAsset,
    AccountInfo,
    AssetBalance,
    LedgerClient,
    Signer,
    TributaryError,
    ValidationError,
    ConfigurationError,
    NetworkError,
    DataIntegrityError,
    ResourceError,
    with_percentages,
    LEGACY_ASSET_PROGRAM_ID,
    EXTENDED_ASSET_PROGRAM_ID,
)

# Configuration
from .config import (
    TributaryParameters,
    NetworkParameters,
    RpcParameters,
    DistributionParameters,
    CacheParameters,
    load_parameters,
)

# Storage and caching
from .storage import FileStorage, CacheEntry, sanitize_key
from .holder_store import HolderStore

# Components
from .collector import (
    CollectionOptions,
    WalletCollector,
    select_holders,
    export_holders,
    load_holders,
)
from .planner import plan, partition, summarize, AllocationBreakdown
from .executor import (
    DistributionExecutor,
    ValidationReport,
    build_transfer_instructions,
    new_run_id,
)
from .simulation import simulate, SimulationResult
from .history import DistributionLedger

# Solana transport
from .solana_client import SolanaLedgerClient, KeypairSigner
