"""
solana_client.py - LedgerClient over Solana JSON-RPC

Implements the LedgerClient protocol with solana-py's AsyncClient and
solders types. Engine-level instructions (CreateAssetAccount, TransferAsset)
are translated here:

    CreateAssetAccount -> associated token account program, CreateIdempotent
    TransferAsset      -> spl-token Transfer (legacy program)
                          spl-token TransferChecked (Token-2022)

Holders are read with getProgramAccounts filtered on the mint, decoding the
owner and amount straight from the token account layout:

    mint (0..32) | owner (32..64) | amount (64..72, u64 little endian)
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union
import asyncio
import json
import logging
import struct

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.instruction import AccountMeta, Instruction as SoldersInstruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.rpc.filter import Memcmp
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction
from spl.token.instructions import (
    TransferCheckedParams, TransferParams, transfer, transfer_checked,
)

from .config import TributaryParameters
from .core import (
    AccountInfo, AssetBalance, AssetProgram, CreateAssetAccount, HolderRecord,
    Instruction, NetworkError, TransferAsset, ValidationError, with_percentages,
)


logger = logging.getLogger(__name__)

ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# Size of a legacy token account; Token-2022 accounts may carry extensions.
TOKEN_ACCOUNT_SIZE = 165

_CREATE_IDEMPOTENT = bytes([1])


def to_pubkey(address: str) -> Pubkey:
    """Parse a base58 address, raising ValidationError when it is malformed."""
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise ValidationError(f"Invalid address: {address}", {'address': address}) from e


def parse_token_account(data: bytes) -> Optional[Tuple[str, int]]:
    """(owner, raw amount) of a token account, None when data is too short."""
    if len(data) < 72:
        return None
    owner = str(Pubkey.from_bytes(data[32:64]))
    (amount,) = struct.unpack_from("<Q", data, 64)
    return owner, amount


def derive_asset_account(owner: str, asset: str, program: AssetProgram) -> str:
    """Associated token account address of owner for asset."""
    address, _ = Pubkey.find_program_address(
        [bytes(to_pubkey(owner)), bytes(to_pubkey(program.program_id)), bytes(to_pubkey(asset))],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return str(address)


class KeypairSigner:
    """
    Distributor credential backed by a solders Keypair.

    Example:
        signer = KeypairSigner.from_file("~/.config/solana/id.json")
        signer.address  # base58 public key
    """

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())

    @classmethod
    def from_file(cls, path: str) -> 'KeypairSigner':
        """Load a Solana CLI keypair file (a JSON array of 64 secret key bytes)."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                secret = json.load(f)
            return cls(Keypair.from_bytes(bytes(secret)))
        except OSError as e:
            raise ValidationError(f"Cannot read keypair file {path}: {e}", {'path': path}) from e
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid keypair file {path}: {e}", {'path': path}) from e

    @classmethod
    def from_base58(cls, secret: str) -> 'KeypairSigner':
        try:
            return cls(Keypair.from_base58_string(secret))
        except ValueError as e:
            raise ValidationError(f"Invalid base58 secret key: {e}") from e

    def __repr__(self) -> str:
        return f"KeypairSigner({self.address})"


class SolanaLedgerClient:
    """
    LedgerClient for a Solana cluster.

    Every query is awaited; submit_signed_transfer retries up to
    network.max_retries times with a linearly growing delay.

    Example:
        params = load_parameters()
        async with SolanaLedgerClient.for_network(params) as client:
            holders = await client.get_all_holders_of(mint, Decimal("0"))
    """

    def __init__(
        self,
        endpoint: str,
        parameters: Optional[TributaryParameters] = None,
        rpc: Optional[AsyncClient] = None,
    ):
        self.parameters = parameters or TributaryParameters()
        network = self.parameters.network
        self.endpoint = endpoint
        self.commitment = Commitment(network.commitment)
        self.rpc = rpc or AsyncClient(endpoint, commitment=self.commitment, timeout=network.timeout_seconds)
        self._decimals: Dict[str, int] = {}

    @classmethod
    def for_network(
        cls,
        parameters: TributaryParameters,
        network: Optional[str] = None,
    ) -> 'SolanaLedgerClient':
        name = network or parameters.network.default_network
        return cls(parameters.rpc.endpoint_for(name), parameters)

    async def close(self) -> None:
        await self.rpc.close()

    async def __aenter__(self) -> 'SolanaLedgerClient':
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ========================================================================
    # QUERIES
    # ========================================================================

    def find_asset_account(self, owner: str, asset: str, program: AssetProgram) -> str:
        return derive_asset_account(owner, asset, program)

    async def get_account_info(self, address: str) -> Optional[AccountInfo]:
        resp = await self.rpc.get_account_info(to_pubkey(address))
        if resp.value is None:
            return None
        return AccountInfo(address=address, owner=str(resp.value.owner))

    async def get_asset_decimals(self, asset: str) -> int:
        if asset not in self._decimals:
            resp = await self.rpc.get_token_supply(to_pubkey(asset))
            self._decimals[asset] = resp.value.decimals
        return self._decimals[asset]

    async def get_asset_account_balance(self, owner: str, asset: str) -> AssetBalance:
        program = await self._program_of(asset)
        account = derive_asset_account(owner, asset, program)
        resp = await self.rpc.get_token_account_balance(to_pubkey(account))
        return AssetBalance(amount=int(resp.value.amount), decimals=resp.value.decimals)

    async def _program_of(self, asset: str) -> AssetProgram:
        info = await self.get_account_info(asset)
        if info is None:
            raise NetworkError(f"Asset mint not found: {asset}", {'asset_address': asset})
        return AssetProgram.from_owner(info.owner) or AssetProgram.LEGACY

    async def get_all_holders_of(self, asset: str, min_balance: Decimal) -> List[HolderRecord]:
        """
        Owners holding at least min_balance of asset, in ledger order.

        Balances of several accounts with the same owner are summed.
        """
        program = await self._program_of(asset)
        decimals = await self.get_asset_decimals(asset)

        filters: List[Union[int, Memcmp]] = [Memcmp(offset=0, bytes_=asset)]
        if program is AssetProgram.LEGACY:
            filters.insert(0, TOKEN_ACCOUNT_SIZE)
        resp = await self.rpc.get_program_accounts(
            to_pubkey(program.program_id), encoding="base64", filters=filters,
        )

        balances: Dict[str, int] = {}
        for keyed in resp.value:
            parsed = parse_token_account(bytes(keyed.account.data))
            if parsed is None:
                continue
            owner, amount = parsed
            if amount > 0:
                balances[owner] = balances.get(owner, 0) + amount

        holders = [
            HolderRecord(owner, Decimal(raw).scaleb(-decimals))
            for owner, raw in balances.items()
        ]
        holders = [h for h in holders if h.balance >= min_balance]
        logger.debug("Fetched %d holder accounts of %s (%d owners kept)", len(resp.value), asset, len(holders))
        return with_percentages(holders)

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    def _translate(self, instruction: Instruction) -> SoldersInstruction:
        if isinstance(instruction, CreateAssetAccount):
            program_id = to_pubkey(instruction.program.program_id)
            owner = to_pubkey(instruction.owner)
            asset = to_pubkey(instruction.asset)
            account = to_pubkey(derive_asset_account(instruction.owner, instruction.asset, instruction.program))
            return SoldersInstruction(
                ASSOCIATED_TOKEN_PROGRAM_ID,
                _CREATE_IDEMPOTENT,
                [
                    AccountMeta(to_pubkey(instruction.payer), is_signer=True, is_writable=True),
                    AccountMeta(account, is_signer=False, is_writable=True),
                    AccountMeta(owner, is_signer=False, is_writable=False),
                    AccountMeta(asset, is_signer=False, is_writable=False),
                    AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
                    AccountMeta(program_id, is_signer=False, is_writable=False),
                ],
            )
        if isinstance(instruction, TransferAsset):
            program_id = to_pubkey(instruction.program.program_id)
            source = to_pubkey(derive_asset_account(instruction.source_owner, instruction.asset, instruction.program))
            dest = to_pubkey(derive_asset_account(instruction.destination_owner, instruction.asset, instruction.program))
            owner = to_pubkey(instruction.source_owner)
            if instruction.program is AssetProgram.EXTENDED:
                return transfer_checked(TransferCheckedParams(
                    program_id=program_id,
                    source=source,
                    mint=to_pubkey(instruction.asset),
                    dest=dest,
                    owner=owner,
                    amount=instruction.amount,
                    decimals=instruction.decimals,
                ))
            return transfer(TransferParams(
                program_id=program_id,
                source=source,
                dest=dest,
                owner=owner,
                amount=instruction.amount,
            ))
        raise ValueError(f"Unsupported instruction: {instruction!r}")

    async def submit_signed_transfer(
        self,
        instructions: Sequence[Instruction],
        signer: KeypairSigner,
    ) -> str:
        """
        Sign, send and confirm one transaction.

        Sending is retried; a transaction that landed but failed on chain is
        not resent.

        Raises:
            NetworkError: After max_retries failed attempts, or when the
                          confirmed transaction carries an error
        """
        network = self.parameters.network
        native = [self._translate(ix) for ix in instructions]
        payer = signer.keypair.pubkey()

        last_error: Optional[Exception] = None
        for attempt in range(1, network.max_retries + 1):
            try:
                blockhash = (await self.rpc.get_latest_blockhash()).value.blockhash
                message = Message.new_with_blockhash(native, payer, blockhash)
                tx = Transaction([signer.keypair], message, blockhash)
                signature = (await self.rpc.send_transaction(tx)).value
                confirmation = await self.rpc.confirm_transaction(signature, commitment=self.commitment)
            except Exception as e:
                last_error = e
                logger.debug("Submit attempt %d/%d failed: %s", attempt, network.max_retries, e)
                if attempt < network.max_retries:
                    await asyncio.sleep(network.retry_delay_seconds * attempt)
                continue

            statuses = confirmation.value or [None]
            status = statuses[0]
            if status is None or status.err is not None:
                error = "no status returned" if status is None else status.err
                raise NetworkError(
                    f"Transaction {signature} failed: {error}",
                    {'payer': str(payer), 'signature': str(signature)},
                )
            return str(signature)

        raise NetworkError(
            f"Transaction failed after {network.max_retries} attempts: {last_error}",
            {'payer': str(payer)},
        ) from last_error
