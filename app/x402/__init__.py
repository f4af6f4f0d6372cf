# app/x402/__init__.py
"""
x402 Payment Protocol facilitator for Cardano.

This package verifies client payment envelopes, submits their signed
transactions through Blockfrost and confirms settlement on-chain.

Key components:
- envelope: X-PAYMENT decoding, protocol gate, transaction fingerprint
- facilitator: verify / settle / status state machine
- settlement_store: fingerprint -> transaction hash records (dedup)
- middleware: 402 Payment Required for protected resources
- audit: Settlement audit logging

The Blockfrost gateway lives in app.services.blockfrost. Configuration is
loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
