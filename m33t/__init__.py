"""
M33T event token service

This package backs the M33T events platform: organizers mint an SPL token for an
event and open an AMM pool pairing it with a stablecoin, attendees swap into it
to unlock perks. Signing, pool math and settlement stay with external services;
this package validates requests, builds the (partially signed) transactions and
keeps a ledger of the tokens it created.

Main components:
- api.py: FastAPI application with the HTTP routes
- server.py: MCP server exposing the swap and query flows as tools
- pool_creation.py, swap.py, queries.py: the request flows
- amm.py: client for the external AMM gateway
- models.py, crud.py, database.py: the token ledger (SQLAlchemy)
- auth.py: wallet sign-in and bearer tokens
- custodial.py: Circle developer-controlled wallet provisioning
- wallet_session.py: client-side wallet session cache
"""

# M33T
