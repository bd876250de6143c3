"""
Test package for the M33T event token service.

Test Structure:
- integration/: flow, HTTP route and MCP tool tests against the real modules,
  with the Solana RPC client and the AMM gateway replaced by test doubles
- integration/conftest.py: shared fixtures (in-memory ledger, mock chain, fake AMM)
"""

# Test package for m33t
