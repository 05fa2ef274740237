"""
executor.py - Distribution Executor: batched, sequential transfers with partial-failure isolation

Execution of a DistributionRequest:
1. Validate the batch size (before any I/O)
2. Resolve the asset's program variant once; it is reused for every recipient
3. Fetch the asset's decimals and plan the allocation at that precision.
   A total finer than the minimal unit fails here, after these two read-only
   queries and before anything is submitted
4. Pre-flight funding: provision the distributor's asset account if missing,
   then require balance >= total_amount (ResourceError otherwise)
5. Transfer batch by batch, recipient by recipient, pausing between batches
6. Persist the run

A failed transfer becomes a FAILED TransferOutcome and the run continues.
No two transfers are ever in flight at the same time.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import logging
import secrets
import string
import time

from .config import TributaryParameters
from .core import (
    AssetProgram, CreateAssetAccount, DistributionRequest, DistributionRun,
    Instruction, LedgerClient, NetworkError, ProgressUpdate, ResourceError,
    Signer, TransferAsset, TransferOutcome, TransferStatus, TributaryError, ValidationError,
    AllocationMap, utcnow,
)
from .history import DistributionLedger
from .planner import partition, plan


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressUpdate], None]

_RUN_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_run_id() -> str:
    """dist_<epoch millis>_<9 random base-36 characters>"""
    suffix = "".join(secrets.choice(_RUN_ID_ALPHABET) for _ in range(9))
    return f"dist_{int(time.time() * 1000)}_{suffix}"


def to_raw_units(amount: Decimal, decimals: int) -> int:
    """Scale an amount in asset units to integer raw units, flooring."""
    return int(amount.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def build_transfer_instructions(
    program: AssetProgram,
    payer: str,
    recipient: str,
    asset: str,
    amount: Decimal,
    decimals: int,
    provision: bool,
) -> Tuple[Instruction, ...]:
    """
    Instructions paying amount of asset from payer to recipient.

    When provision is set the recipient's asset account is created first,
    in the same transaction, at the payer's expense.
    """
    instructions: List[Instruction] = []
    if provision:
        instructions.append(CreateAssetAccount(payer=payer, owner=recipient, asset=asset, program=program))
    instructions.append(TransferAsset(
        source_owner=payer,
        destination_owner=recipient,
        asset=asset,
        amount=to_raw_units(amount, decimals),
        decimals=decimals,
        program=program,
    ))
    return tuple(instructions)


def allocation_items(allocations: AllocationMap) -> List[Tuple[str, Decimal]]:
    """(recipient, amount) pairs with a non-zero amount, in plan order."""
    return [(address, amount) for address, amount in allocations.items() if amount > 0]


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Outcome of a dry pre-flight check; errors block execution, warnings do not."""
    is_valid: bool
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()


class DistributionExecutor:
    """
    Executes distribution requests from one signer.

    Example:
        executor = DistributionExecutor(client, signer, params, DistributionLedger(storage))
        run = await executor.execute(request, on_progress=print)
        print(run.successful_count, run.failed_count)
        retry = [o.recipient for o in run.failed_recipients()]
    """

    def __init__(
        self,
        client: LedgerClient,
        signer: Signer,
        parameters: Optional[TributaryParameters] = None,
        history: Optional[DistributionLedger] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.signer = signer
        self.parameters = parameters or TributaryParameters()
        self.history = history
        self._clock = clock
        self._sleep = sleep
        self._timer = timer
        self._programs: Dict[str, AssetProgram] = {}

    # ========================================================================
    # PRE-FLIGHT
    # ========================================================================

    def batch_size_for(self, request: DistributionRequest) -> int:
        d = self.parameters.distribution
        size = request.batch_size or d.default_batch_size
        if size > d.max_batch_size:
            raise ValidationError(
                f"Batch size cannot exceed {d.max_batch_size}",
                {'batch_size': size, 'max_batch_size': d.max_batch_size},
            )
        return size

    async def resolve_program(self, asset: str) -> AssetProgram:
        """
        Variant of the program owning the asset mint, resolved once per asset.

        A missing mint, an unknown owner or a failed lookup falls back to
        LEGACY with a warning; fallbacks are not cached.
        """
        if asset in self._programs:
            return self._programs[asset]
        try:
            info = await self.client.get_account_info(asset)
        except Exception as e:
            logger.warning("Failed to detect asset program of %s, using legacy: %s", asset, e)
            return AssetProgram.LEGACY
        if info is None:
            logger.warning("Asset mint %s not found, using legacy program", asset)
            return AssetProgram.LEGACY
        program = AssetProgram.from_owner(info.owner)
        if program is None:
            logger.warning("Asset %s is owned by unknown program %s, using legacy", asset, info.owner)
            return AssetProgram.LEGACY
        logger.info("Detected %s asset program for %s", program.value, asset)
        self._programs[asset] = program
        return program

    async def check_funding(
        self,
        request: DistributionRequest,
        program: AssetProgram,
        provision: bool = True,
    ) -> Decimal:
        """
        Ensure the distributor holds at least total_amount of the asset.

        With provision set, a missing distributor asset account is created
        first; without it a missing account counts as a zero balance.

        Returns:
            The available balance

        Raises:
            ResourceError: If available < total_amount
            NetworkError: If the ledger cannot be queried
        """
        asset = request.asset_address
        payer = self.signer.address
        try:
            account = self.client.find_asset_account(payer, asset, program)
            exists = await self.client.get_account_info(account) is not None
            if not exists and provision:
                logger.info("Creating asset account %s for distributor %s", account, payer)
                await self.client.submit_signed_transfer(
                    (CreateAssetAccount(payer=payer, owner=payer, asset=asset, program=program),),
                    self.signer,
                )
                exists = True
            if exists:
                available = (await self.client.get_asset_account_balance(payer, asset)).ui_amount
            else:
                available = Decimal("0")
        except TributaryError:
            raise
        except Exception as e:
            raise NetworkError(
                f"Failed to validate asset balance: {e}",
                {'asset_address': asset, 'account': payer},
            ) from e

        if available < request.total_amount:
            raise ResourceError(
                f"Insufficient asset balance. Required: {request.total_amount}, Available: {available}",
                {'asset_address': asset},
                required=request.total_amount,
                available=available,
            )
        logger.info("Balance check passed: %s available, %s required", available, request.total_amount)
        return available

    async def _asset_decimals(self, asset: str) -> int:
        try:
            return await self.client.get_asset_decimals(asset)
        except TributaryError:
            raise
        except Exception as e:
            raise NetworkError(f"Failed to fetch asset decimals: {e}", {'asset_address': asset}) from e

    async def validate(self, request: DistributionRequest) -> ValidationReport:
        """
        Pre-flight check that reports problems instead of raising.

        Read-only: a missing distributor account is reported, not created.
        """
        errors: List[str] = []
        warnings: List[str] = []

        try:
            self.batch_size_for(request)
        except ValidationError as e:
            errors.append(str(e))

        try:
            program = await self.resolve_program(request.asset_address)
            await self.check_funding(request, program, provision=False)
        except (ResourceError, NetworkError) as e:
            errors.append(str(e))

        counts = Counter(h.address for h in request.holders)
        duplicates = [address for address, n in counts.items() if n > 1]
        if duplicates:
            warnings.append(f"Found {len(duplicates)} duplicate recipient addresses")

        zero_balance = sum(1 for h in request.holders if h.balance == 0)
        if zero_balance:
            warnings.append(f"Found {zero_balance} recipients with zero balance")

        return ValidationReport(not errors, tuple(errors), tuple(warnings))

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def execute(
        self,
        request: DistributionRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DistributionRun:
        """
        Plan and execute a distribution.

        Individual transfer failures are recorded on the run, never raised.

        Raises:
            ValidationError: If the batch size exceeds the maximum (before any
                             I/O), or the total is finer than the asset's
                             minimal unit (after the read-only program and
                             decimals queries, before any submission)
            ResourceError: If the distributor is underfunded (before any transfer)
            NetworkError: If pre-flight queries fail
        """
        batch_size = self.batch_size_for(request)
        asset = request.asset_address

        program = await self.resolve_program(asset)
        decimals = await self._asset_decimals(asset)
        allocations = plan(
            request.holders,
            request.total_amount,
            request.policy,
            request.minimum_holder_balance,
            decimals,
        )
        await self.check_funding(request, program, provision=True)

        run = DistributionRun(new_run_id(), request, self._clock())
        items = allocation_items(allocations)
        if not items:
            logger.warning("Run %s has no eligible recipients", run.id)

        batches = partition(items, batch_size)
        logger.info(
            "Starting run %s: %d recipients, %s total, %d batches",
            run.id, len(items), request.total_amount, len(batches),
        )
        await self._process(run, program, decimals, batches, len(items), on_progress)

        self._persist(run)
        logger.info(
            "Finished run %s: %d confirmed, %d failed, %s distributed",
            run.id, run.successful_count, run.failed_count, run.total_distributed,
        )
        return run

    async def _process(
        self,
        run: DistributionRun,
        program: AssetProgram,
        decimals: int,
        batches: List[List[Tuple[str, Decimal]]],
        total: int,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        delay = self.parameters.distribution.batch_delay_seconds
        completed = successful = failed = 0
        start = self._timer()

        for index, batch in enumerate(batches):
            logger.debug("Processing batch %d/%d (%d recipients)", index + 1, len(batches), len(batch))
            for recipient, amount in batch:
                outcome = await self._transfer(run.request.asset_address, program, decimals, recipient, amount)
                run.add_result(outcome)
                completed += 1
                if outcome.status is TransferStatus.CONFIRMED:
                    successful += 1
                else:
                    failed += 1
                if on_progress is not None:
                    elapsed = self._timer() - start
                    rate = completed / elapsed if elapsed > 0 else float(completed)
                    on_progress(ProgressUpdate(completed, total, successful, failed, rate))
            if index < len(batches) - 1 and delay > 0:
                await self._sleep(delay)

    async def _transfer(
        self,
        asset: str,
        program: AssetProgram,
        decimals: int,
        recipient: str,
        amount: Decimal,
    ) -> TransferOutcome:
        pending = TransferOutcome(recipient=recipient, amount=amount, timestamp=self._clock())
        try:
            account = self.client.find_asset_account(recipient, asset, program)
            provision = await self.client.get_account_info(account) is None
            instructions = build_transfer_instructions(
                program, self.signer.address, recipient, asset, amount, decimals, provision,
            )
            transaction_id = await self.client.submit_signed_transfer(instructions, self.signer)
        except Exception as e:
            logger.warning("Transfer of %s to %s failed: %s", amount, recipient, e)
            return pending.failed(str(e) or type(e).__name__)
        logger.debug("Transferred %s to %s: %s", amount, recipient, transaction_id)
        return pending.confirmed(transaction_id)

    def _persist(self, run: DistributionRun) -> None:
        if self.history is None:
            logger.debug("No distribution ledger configured, run %s not saved", run.id)
            return
        try:
            self.history.save(run)
        except Exception as e:
            logger.warning("Failed to save run %s: %s", run.id, e)
