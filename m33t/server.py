import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from pydantic import Field
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from m33t import crud, queries, schemas, swap
from m33t.amm import AmmGateway, HttpAmmGateway
from m33t.config import Settings
from m33t.database import Database
from m33t.errors import M33TError

logger = get_logger(__name__)


@dataclass
class ServerResources:
    """Collaborators shared by every tool call, alive for the whole server run."""
    settings: Settings
    database: Database
    chain: AsyncClient
    amm: AmmGateway


@asynccontextmanager
async def server_lifespan(server: FastMCP) -> AsyncIterator[ServerResources]:
    settings = Settings.from_env()
    database = Database(settings.database_url)
    database.create_all()
    amm = HttpAmmGateway(settings.amm_gateway_url)
    chain = AsyncClient(settings.rpc_url, commitment=Confirmed)
    logger.info(f"MCP server using RPC {settings.rpc_url}, database {settings.database_url}")
    try:
        yield ServerResources(settings=settings, database=database, chain=chain, amm=amm)
    finally:
        await chain.close()
        await amm.aclose()
        database.dispose()


# --- Server Setup ---
mcp = FastMCP(name="M33T Event Token Server", lifespan=server_lifespan)


def _resources(context: Context) -> ServerResources:
    return context.request_context.lifespan_context


def _error(action: str, e: Exception) -> str:
    if isinstance(e, M33TError):
        return f"Error: {e}"
    logger.exception(f"Error {action}: {e}")
    return f"An error occurred while {action}: {e}"


# --- MCP Tools ---

@mcp.tool()
async def get_swap_quote(
    context: Context,
    pool_address: str = Field(..., description="Address of the AMM pool."),
    token_in: str = Field(..., description="Mint address of the token being sold."),
    token_out: str = Field(..., description="Mint address of the token being bought."),
    amount_in: str = Field(..., description="Amount to sell, in base units."),
    slippage_bps: int = Field(swap.DEFAULT_SLIPPAGE_BPS, description="Slippage tolerance used for minAmountOut, in basis points."),
) -> str:
    """Quotes a swap against the pool's current on-chain state."""
    logger.info(f"Received get_swap_quote request for pool={pool_address}, amount_in={amount_in}")
    try:
        res = _resources(context)
        quote = await swap.get_quote(res.chain, res.amm, pool_address, token_in, token_out, amount_in, slippage_bps)
        return json.dumps(quote.model_dump(by_alias=True), indent=2)
    except Exception as e:
        return _error("getting the swap quote", e)


@mcp.tool()
async def build_swap_transaction(
    context: Context,
    pool_address: str = Field(..., description="Address of the AMM pool."),
    token_in: str = Field(..., description="Mint address of the token being sold."),
    token_out: str = Field(..., description="Mint address of the token being bought."),
    amount_in: str = Field(..., description="Amount to sell, in base units."),
    min_amount_out: str = Field(..., description="Lowest acceptable output, in base units."),
    user_address: str = Field(..., description="Public key of the wallet that will sign and pay."),
) -> str:
    """
    Builds an unsigned swap transaction (base64). The wallet owner must sign and
    submit it; this tool never sends anything to the chain.
    """
    logger.info(f"Received build_swap_transaction request for pool={pool_address}, user={user_address}")
    try:
        res = _resources(context)
        request = schemas.SwapExecuteRequest(
            pool_address=pool_address,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            min_amount_out=min_amount_out,
            user_address=user_address,
        )
        result = await swap.build_swap_transaction(res.chain, res.amm, request)
        return json.dumps(result, indent=2)
    except Exception as e:
        return _error("building the swap transaction", e)


@mcp.tool()
async def get_token_by_mint(
    context: Context,
    mint_address: str = Field(..., description="Mint address of the event token."),
) -> str:
    """Looks up the ledger record for an event token."""
    try:
        res = _resources(context)
        with res.database.session() as db:
            token = await asyncio.to_thread(crud.get_token_by_mint, db, mint_address)
            if token is None:
                return f"Error: Token {mint_address} not found."
            return json.dumps(queries.serialize_token(token), indent=2)
    except Exception as e:
        return _error("looking up the token", e)


@mcp.tool()
async def get_event_tokens(
    context: Context,
    event_id: str = Field(..., description="Identifier of the event."),
    user_address: Optional[str] = Field(None, description="Optional wallet to include balances for."),
) -> str:
    """Lists the event's tokens that exist on-chain."""
    # FastMCP may hand over the FieldInfo itself when the argument is omitted
    if not isinstance(user_address, str):
        user_address = None
    try:
        res = _resources(context)
        with res.database.session() as db:
            result = await queries.get_event_tokens(res.chain, db, event_id, user_address)
        return json.dumps(result, indent=2)
    except Exception as e:
        return _error("getting event tokens", e)


@mcp.tool()
async def get_user_tokens(
    context: Context,
    user_address: str = Field(..., description="Wallet public key."),
) -> str:
    """Reports the wallet's balance in every event token that exists on-chain."""
    try:
        res = _resources(context)
        with res.database.session() as db:
            result = await queries.get_user_tokens(res.chain, db, user_address)
        return json.dumps(result, indent=2)
    except Exception as e:
        return _error("getting user tokens", e)


if __name__ == "__main__":
    # Example: poetry run python -m m33t.server
    mcp.run(transport="stdio")
