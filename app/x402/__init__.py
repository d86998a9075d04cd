# app/x402/__init__.py
"""
x402 Payment Verification Gate.

This module gates catalog content behind per-request Solana USDC payments,
using HTTP 402 as a challenge-response protocol.

Key components:
- gate: request-level policy (404 / 402 challenge / verify / allow)
- verifier: on-chain verification with a precise rejection taxonomy
- proofs: consumed-proof set with per-proof serialization
- ledger: Solana JSON-RPC client and receiving account derivation
- audit: payment event audit log

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "1.0.0"
