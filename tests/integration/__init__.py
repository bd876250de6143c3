"""
Integration Tests for M33T

These tests drive the request flows end to end: through the FastAPI routes via
TestClient, through the MCP tools with a mocked Context, and through the flow
modules directly.

The integration tests cover:
- Event token creation (validation, partial signing, ledger write)
- Swap quotes and unsigned swap transactions
- Ledger lookups and the per-event / per-user on-chain views
- Wallet sign-in and bearer token verification
- Circle wallet provisioning against a mocked HTTP transport
- The client-side wallet session cache and its watcher

Solana RPC calls are mocked and the ledger is an in-memory SQLite database, so no
test touches a real chain or network service.
"""

# Integration tests for m33t
