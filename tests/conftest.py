# tests/conftest.py
"""
Shared fixtures for gateway tests.

No test talks to a real ledger: the Solana client is replaced by a MagicMock
whose fetch_transaction returns hand-built TransactionRecords.
"""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from solders.keypair import Keypair

from app.core.config import settings
from app.services.catalog import Catalog, Item
from app.x402.gate import AccessGate
from app.x402.ledger import (
    SolanaLedgerClient,
    TransactionRecord,
    TransferInstruction,
    USDC_MINTS,
    resolve_receiving_account,
)
from app.x402.proofs import InMemoryProofStore
from app.x402.verifier import PaymentVerifier

DEVNET_USDC = USDC_MINTS["solana-devnet"]
DECIMALS = 6


def new_address() -> str:
    """A fresh, valid base58 Solana address."""
    return str(Keypair().pubkey())


def transfer_checked(destination: str, amount: int, mint: str = DEVNET_USDC) -> TransferInstruction:
    return TransferInstruction(kind="transferChecked", destination=destination, amount=amount, mint=mint)


def transfer(destination: str, amount: int) -> TransferInstruction:
    return TransferInstruction(kind="transfer", destination=destination, amount=amount)


def make_record(signature: str, *transfers, has_meta: bool = True, error=None) -> TransactionRecord:
    return TransactionRecord(
        signature=signature,
        has_meta=has_meta,
        error=error,
        transfers=tuple(transfers),
        slot=123456,
        block_time=1760000000,
    )


@pytest.fixture(autouse=True)
def audit_log_in_tmp(tmp_path, monkeypatch):
    """Keep audit writes out of the working tree."""
    path = tmp_path / "audit" / "x402_audit.jsonl"
    monkeypatch.setattr(settings, "X402_AUDIT_LOG_PATH", str(path))
    monkeypatch.setattr(settings, "X402_AUDIT_ENABLED", True)
    return path


@pytest.fixture
def wallet_address() -> str:
    return new_address()


@pytest.fixture
def receiving_account(wallet_address) -> str:
    return resolve_receiving_account(wallet_address, DEVNET_USDC)


@pytest.fixture
def ledger():
    mock_ledger = MagicMock(spec=SolanaLedgerClient)
    mock_ledger.fetch_transaction.return_value = None
    return mock_ledger


@pytest.fixture
def proof_store() -> InMemoryProofStore:
    return InMemoryProofStore()


@pytest.fixture
def verifier(ledger, proof_store, wallet_address) -> PaymentVerifier:
    return PaymentVerifier(
        ledger=ledger,
        proof_store=proof_store,
        wallet_address=wallet_address,
        mint=DEVNET_USDC,
        decimals=DECIMALS,
        tolerance_percent=Decimal("1"),
    )


@pytest.fixture
def catalog() -> Catalog:
    return Catalog([
        Item("x", "Test Item", Decimal("0.001"), "USDC", "# Secret content for x"),
        Item("big", "Big Item", Decimal("1"), "USDC", "# One whole USDC of content"),
    ])


@pytest.fixture
def gate(catalog, verifier, wallet_address) -> AccessGate:
    return AccessGate(
        catalog=catalog,
        verifier=verifier,
        wallet_address=wallet_address,
        production=True,
    )
