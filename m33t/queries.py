"""
Read side: ledger lookups, and the per-event / per-user views that cross-check
ledger rows against on-chain state.

A ledger row whose mint does not exist on-chain is left out of the on-chain views
rather than reported: the creator built the transaction but never submitted it.
"""

import asyncio
from decimal import Decimal
from typing import List, Optional

from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey
from sqlalchemy.orm import Session

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t import chain, crud, models, schemas
from m33t.errors import NotFoundError, ValidationError

logger = get_logger(__name__)


def serialize_token(db_token: models.TokenCreation) -> dict:
    return schemas.TokenCreation.model_validate(db_token).model_dump(by_alias=True, mode="json")


def lookup_tokens(db: Session, creator: Optional[str] = None, mint: Optional[str] = None) -> dict:
    if creator:
        tokens = crud.get_tokens_by_creator(db, creator)
        return {"success": True, "tokens": [serialize_token(t) for t in tokens], "count": len(tokens)}
    if mint:
        token = crud.get_token_by_mint(db, mint)
        if token is None:
            raise NotFoundError("Token not found")
        return {"success": True, "token": serialize_token(token)}
    raise ValidationError("Please provide either 'creator' or 'mint' query parameter")


def attach_signature(db: Session, request: schemas.AttachSignatureRequest) -> dict:
    if not request.mint_address or not request.transaction_signature:
        raise ValidationError("Both mintAddress and transactionSignature are required")
    chain.parse_signature(request.transaction_signature, "transactionSignature")
    token = crud.attach_signature(db, request.mint_address, request.transaction_signature)
    if token is None:
        raise NotFoundError("Token not found")
    logger.info(f"Attached signature to token {token.id} (mint {token.mint_address})")
    return {"success": True, "token": serialize_token(token)}


def _holding(db_token: models.TokenCreation) -> schemas.TokenHolding:
    return schemas.TokenHolding(
        token_id=db_token.id,
        name=db_token.name,
        symbol=db_token.symbol,
        mint_address=db_token.mint_address,
        pool_address=db_token.pool_address,
        position_address=db_token.position_address,
        event_id=db_token.event_id,
        created_at=db_token.created_at,
        transaction_signature=db_token.transaction_signature,
    )


async def _check_token(client: AsyncClient, db_token: models.TokenCreation, owner: Optional[Pubkey]) -> Optional[schemas.TokenHolding]:
    """
    None when the mint is absent on-chain. Otherwise the holding, with the owner's
    balance when an owner is given. Lookup failures degrade to a zero balance.
    """
    holding = _holding(db_token)
    try:
        mint = Pubkey.from_string(db_token.mint_address)
        if not await chain.mint_exists(client, mint):
            logger.info(f"Mint {db_token.mint_address} does not exist on-chain, skipping")
            return None
        if owner is None:
            return holding
        ata, amount = await chain.get_token_balance(client, owner, mint)
    except Exception as e:
        logger.warning(f"Error checking token {db_token.mint_address}: {e}")
        holding.error = str(e)
        return holding

    holding.ata_address = str(ata)
    holding.balance = str(amount)
    holding.balance_formatted = chain.format_amount(amount)
    holding.has_balance = amount > 0
    return holding


async def check_tokens(client: AsyncClient, tokens: List[models.TokenCreation], owner: Optional[Pubkey] = None) -> List[schemas.TokenHolding]:
    """One concurrent chain read per token; order of the input is kept."""
    results = await asyncio.gather(*(_check_token(client, t, owner) for t in tokens))
    return [r for r in results if r is not None]


def summarize(holdings: List[schemas.TokenHolding]) -> schemas.PortfolioSummary:
    with_balance = sum(1 for h in holdings if h.has_balance)
    total = sum((Decimal(h.balance_formatted) for h in holdings), Decimal(0))
    return schemas.PortfolioSummary(
        total_tokens=len(holdings),
        tokens_with_balance=with_balance,
        tokens_without_balance=len(holdings) - with_balance,
        total_balance_value=f"{total:.{chain.TOKEN_DECIMALS}f}",
    )


async def get_event_tokens(client: AsyncClient, db: Session, event_id: Optional[str], user_address: Optional[str] = None) -> dict:
    if not event_id:
        raise ValidationError("Event ID is required")
    owner = chain.parse_pubkey(user_address, "userAddress") if user_address else None

    event_tokens = await asyncio.to_thread(crud.get_tokens_by_event, db, event_id)
    if not event_tokens:
        return {"success": True, "message": "No tokens found for this event", "eventId": event_id, "tokens": []}

    confirmed = await check_tokens(client, event_tokens, owner)
    balance_fields = set() if owner else {"ata_address", "balance", "balance_formatted", "has_balance"}
    return {
        "success": True,
        "eventId": event_id,
        "tokenCount": len(confirmed),
        "tokens": [h.model_dump(by_alias=True, mode="json", exclude=balance_fields) for h in confirmed],
    }


async def get_user_tokens(client: AsyncClient, db: Session, user_address: Optional[str]) -> dict:
    if not user_address:
        raise ValidationError("User address is required")
    owner = chain.parse_pubkey(user_address, "userAddress")

    all_tokens = await asyncio.to_thread(crud.get_all_tokens, db)
    if not all_tokens:
        return {"success": True, "message": "No tokens found in the system", "userAddress": user_address,
                "summary": summarize([]).model_dump(by_alias=True), "tokens": []}

    holdings = await check_tokens(client, all_tokens, owner)
    logger.debug(f"Portfolio for {owner}: {len(holdings)}/{len(all_tokens)} ledger tokens exist on-chain")
    return {
        "success": True,
        "userAddress": user_address,
        "summary": summarize(holdings).model_dump(by_alias=True),
        "tokens": [h.model_dump(by_alias=True, mode="json") for h in holdings],
    }
