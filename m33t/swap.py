import time
from typing import Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t import chain, schemas
from m33t.amm import QUOTE_SLIPPAGE_PERCENT, AmmGateway, PoolState
from m33t.errors import ValidationError

logger = get_logger(__name__)

DEFAULT_SLIPPAGE_BPS = 50


def _swap_direction(pool_state: PoolState, token_in: Pubkey, token_out: Pubkey) -> str:
    direction = pool_state.direction(str(token_in))
    if direction is None or token_in == token_out or pool_state.direction(str(token_out)) is None:
        raise ValidationError(
            f"tokenIn and tokenOut must be the two mints of pool {pool_state.pool} "
            f"({pool_state.token_a_mint}, {pool_state.token_b_mint})"
        )
    return direction


def _parse_pair(pool_address: Optional[str], token_in: Optional[str], token_out: Optional[str]) -> Tuple[Pubkey, Pubkey, Pubkey]:
    return (
        chain.parse_pubkey(pool_address, "poolAddress"),
        chain.parse_pubkey(token_in, "tokenIn"),
        chain.parse_pubkey(token_out, "tokenOut"),
    )


async def get_quote(
    client: AsyncClient,
    amm: AmmGateway,
    pool_address: Optional[str],
    token_in: Optional[str],
    token_out: Optional[str],
    amount_in: Optional[str],
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
) -> schemas.SwapQuote:
    """Prices a swap against the pool's live state. Read-only."""
    if not (pool_address and token_in and token_out and amount_in):
        raise ValidationError("poolAddress, tokenIn, tokenOut, and amountIn are required")
    pool, mint_in, mint_out = _parse_pair(pool_address, token_in, token_out)
    in_amount = chain.parse_amount(amount_in, "amountIn")
    chain.check_slippage_bps(slippage_bps)

    pool_state = await amm.fetch_pool_state(pool)
    direction = _swap_direction(pool_state, mint_in, mint_out)
    slot_resp = await client.get_slot()

    quote = await amm.get_quote(
        pool_state=pool_state,
        input_mint=mint_in,
        in_amount=in_amount,
        slippage=QUOTE_SLIPPAGE_PERCENT,
        current_time=int(time.time()),
        current_slot=slot_resp.value,
    )
    logger.debug(f"Quote {pool}: {in_amount} {mint_in} -> {quote.swap_out_amount} {mint_out} (impact {quote.price_impact})")

    return schemas.SwapQuote(
        pool_address=str(pool),
        token_in=str(mint_in),
        token_out=str(mint_out),
        amount_in=str(in_amount),
        amount_out=str(quote.swap_out_amount),
        min_amount_out=str(chain.min_amount_out(quote.swap_out_amount, slippage_bps)),
        price_impact=quote.price_impact,
        fee=str(quote.total_fee),
        swap_direction=direction,
    )


async def build_swap_transaction(client: AsyncClient, amm: AmmGateway, request: schemas.SwapExecuteRequest) -> dict:
    """
    Builds an unsigned swap transaction for the caller. Pool state is fetched again
    rather than reused from the quote, since other traders may have moved it.
    """
    fields = request.model_dump(by_alias=True)
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(
            "All fields are required: poolAddress, tokenIn, tokenOut, amountIn, minAmountOut, userAddress"
        )
    pool, mint_in, mint_out = _parse_pair(request.pool_address, request.token_in, request.token_out)
    user = chain.parse_pubkey(request.user_address, "userAddress")
    amount_in = chain.parse_amount(request.amount_in, "amountIn")
    minimum_out = chain.parse_amount(request.min_amount_out, "minAmountOut")

    pool_state = await amm.fetch_pool_state(pool)
    _swap_direction(pool_state, mint_in, mint_out)

    instructions = await amm.build_swap(
        payer=user,
        pool_state=pool_state,
        input_mint=mint_in,
        output_mint=mint_out,
        amount_in=amount_in,
        minimum_amount_out=minimum_out,
    )
    blockhash = await chain.latest_blockhash(client)
    tx = chain.build_transaction(instructions, fee_payer=user, blockhash=blockhash)
    logger.info(f"Built swap transaction for {user}: {amount_in} {mint_in} -> >= {minimum_out} {mint_out} via {pool}")

    return {
        "success": True,
        "transaction": chain.encode_transaction(tx),
        "message": "Swap transaction ready. Please sign with your wallet.",
        "swapDetails": {
            "poolAddress": str(pool),
            "tokenIn": str(mint_in),
            "tokenOut": str(mint_out),
            "amountIn": str(amount_in),
            "minAmountOut": str(minimum_out),
        },
    }
