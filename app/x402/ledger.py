# app/x402/ledger.py
"""
Solana ledger access for payment verification.

This module is the only place that talks to the ledger:
- fetch_transaction: JSON-RPC getTransaction (jsonParsed) at the configured
  commitment, decoded into a TransactionRecord of SPL token transfers
- resolve_receiving_account: associated token account derivation for the
  configured wallet (pure, no network)

Transactions are fetched fresh on every call. A just-confirmed payment must be
visible immediately, so nothing here is cached.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.exceptions import RequestException, Timeout
from solders.pubkey import Pubkey

from app.core.config import settings

logger = logging.getLogger(__name__)

# Program ids
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# USDC mint addresses by network
USDC_MINTS = {
    "solana": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "solana-devnet": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
}

SPL_TOKEN_PROGRAM = "spl-token"
TRANSFER = "transfer"
TRANSFER_CHECKED = "transferChecked"

EXPLORER_BASE_URL = "https://explorer.solana.com/tx"


class LedgerError(Exception):
    """The ledger could not be queried (transport, HTTP or JSON-RPC failure)."""


class LedgerTimeoutError(LedgerError):
    """The ledger did not answer within SOLANA_RPC_TIMEOUT_SECONDS."""


class ReceivingAccountError(Exception):
    """The receiving wallet is not configured or is not a valid address."""


@dataclass(frozen=True)
class TransferInstruction:
    """A decoded SPL token transfer. `mint` is None for untyped transfers."""
    kind: str
    destination: str
    amount: int
    mint: Optional[str] = None
    source: Optional[str] = None

    @property
    def is_typed(self) -> bool:
        return self.kind == TRANSFER_CHECKED


@dataclass(frozen=True)
class TransactionRecord:
    """The ledger's view of a transaction, as returned by getTransaction."""
    signature: str
    has_meta: bool
    error: Any
    transfers: Tuple[TransferInstruction, ...]
    slot: Optional[int] = None
    block_time: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.has_meta and self.error is None


def get_asset_mint(network: Optional[str] = None) -> str:
    """Mint of the settlement asset: X402_ASSET_MINT, else USDC for the network."""
    if settings.X402_ASSET_MINT:
        return settings.X402_ASSET_MINT
    return USDC_MINTS.get(network or settings.X402_NETWORK, USDC_MINTS["solana-devnet"])


def explorer_url(signature: str, network: Optional[str] = None) -> str:
    """Solana Explorer link for a transaction signature."""
    network = network or settings.X402_NETWORK
    url = f"{EXPLORER_BASE_URL}/{signature}"
    if network != "solana":
        url += f"?cluster={network.replace('solana-', '')}"
    return url


def resolve_receiving_account(wallet_address: Optional[str], mint: Optional[str] = None) -> str:
    """
    Derive the associated token account that receives payments.

    Args:
        wallet_address: Base58 wallet address (X402_WALLET_ADDRESS)
        mint: Token mint. Uses get_asset_mint() if not provided.

    Returns:
        Base58 address of the wallet's associated token account for the mint

    Raises:
        ReceivingAccountError: If the wallet or mint is missing or invalid
    """
    if not wallet_address or not wallet_address.strip():
        raise ReceivingAccountError("X402_WALLET_ADDRESS not configured")

    mint = mint or get_asset_mint()
    try:
        owner = Pubkey.from_string(wallet_address.strip())
        mint_key = Pubkey.from_string(mint)
    except Exception as e:  # solders parse errors
        raise ReceivingAccountError(f"Invalid wallet or mint address: {e}") from e

    account, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint_key)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return str(account)


def _parse_transfer(instruction: Dict[str, Any]) -> Optional[TransferInstruction]:
    """Decode one jsonParsed instruction, or None if it is not an SPL token transfer."""
    if instruction.get("program") != SPL_TOKEN_PROGRAM:
        return None

    parsed = instruction.get("parsed")
    if not isinstance(parsed, dict):
        return None

    kind = parsed.get("type")
    info = parsed.get("info") or {}
    destination = info.get("destination")
    if kind not in (TRANSFER, TRANSFER_CHECKED) or not destination:
        return None

    try:
        if kind == TRANSFER_CHECKED:
            amount = int((info.get("tokenAmount") or {}).get("amount", 0))
        else:
            amount = int(info.get("amount", 0))
    except (TypeError, ValueError):
        logger.warning(f"Unparseable transfer amount in instruction: {info}")
        return None

    return TransferInstruction(
        kind=kind,
        destination=destination,
        amount=amount,
        mint=info.get("mint") if kind == TRANSFER_CHECKED else None,
        source=info.get("source"),
    )


def parse_transaction(signature: str, result: Dict[str, Any]) -> TransactionRecord:
    """
    Build a TransactionRecord from a getTransaction result.

    Transfers follow execution order: each top-level instruction is followed
    by the inner instructions it invoked. Inner groups whose index has no
    top-level instruction go last, in index order.
    """
    meta = result.get("meta")
    message = (result.get("transaction") or {}).get("message") or {}
    top_level: List[Dict[str, Any]] = list(message.get("instructions") or [])

    inner_by_index: Dict[int, List[Dict[str, Any]]] = {}
    if isinstance(meta, dict):
        for group in meta.get("innerInstructions") or []:
            inner_by_index.setdefault(group.get("index", 0), []).extend(group.get("instructions") or [])

    raw_instructions: List[Dict[str, Any]] = []
    for index, instruction in enumerate(top_level):
        raw_instructions.append(instruction)
        raw_instructions.extend(inner_by_index.pop(index, []))
    for index in sorted(inner_by_index):
        raw_instructions.extend(inner_by_index[index])

    transfers = []
    for raw in raw_instructions:
        transfer = _parse_transfer(raw)
        if transfer is not None:
            transfers.append(transfer)

    return TransactionRecord(
        signature=signature,
        has_meta=isinstance(meta, dict),
        error=meta.get("err") if isinstance(meta, dict) else None,
        transfers=tuple(transfers),
        slot=result.get("slot"),
        block_time=result.get("blockTime"),
    )


class SolanaLedgerClient:
    """
    JSON-RPC client for the transactions the gateway verifies.

    Connection parameters fall back to settings when not given, so tests can
    construct a client pointed anywhere.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        commitment: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._rpc_url = rpc_url
        self._commitment = commitment
        self._timeout_seconds = timeout_seconds

    @property
    def rpc_url(self) -> str:
        return self._rpc_url or str(settings.SOLANA_RPC_URL)

    @property
    def commitment(self) -> str:
        return self._commitment or settings.SOLANA_COMMITMENT

    @property
    def timeout_seconds(self) -> float:
        if self._timeout_seconds is not None:
            return self._timeout_seconds
        return settings.SOLANA_RPC_TIMEOUT_SECONDS

    def _rpc(self, method: str, params: list) -> Any:
        try:
            response = requests.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": method,
                    "params": params,
                },
                timeout=self.timeout_seconds
            )
            response.raise_for_status()
            body = response.json()
        except Timeout as e:
            logger.error(f"Solana RPC {method} timed out after {self.timeout_seconds}s")
            raise LedgerTimeoutError(f"Ledger request timed out after {self.timeout_seconds}s") from e
        except RequestException as e:
            logger.error(f"Error calling Solana RPC {method} ({self.rpc_url}): {e}")
            raise LedgerError(f"Ledger request failed: {e}") from e
        except ValueError as e:
            raise LedgerError(f"Invalid JSON from ledger: {e}") from e

        if "error" in body:
            raise LedgerError(f"RPC error: {body['error']}")
        if "result" not in body:
            raise LedgerError("Invalid RPC response: missing 'result' field")
        return body["result"]

    def fetch_transaction(self, signature: str) -> Optional[TransactionRecord]:
        """
        Fetch a transaction by signature.

        Returns:
            TransactionRecord (possibly failed, see TransactionRecord.succeeded),
            or None if the ledger does not know the transaction yet

        Raises:
            LedgerError: If the ledger could not be queried
        """
        result = self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            logger.info(f"Transaction {signature} not found at commitment '{self.commitment}'")
            return None

        record = parse_transaction(signature, result)
        logger.debug(
            f"Fetched transaction {signature}: slot={record.slot} "
            f"succeeded={record.succeeded} transfers={len(record.transfers)}"
        )
        return record
