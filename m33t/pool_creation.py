import asyncio
from typing import Optional

from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import MINT_LEN
from sqlalchemy.orm import Session

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t import chain, crud, schemas
from m33t.amm import AmmGateway
from m33t.errors import ValidationError

logger = get_logger(__name__)

STABLECOIN_DECIMALS = 6
REQUIRED_FIELDS = ("userPublicKey", "name", "symbol", "uri", "eventId")


def validate_request(request: schemas.CreatePoolRequest) -> Pubkey:
    """Checks every field is present and the creator address parses. No chain calls happen before this passes."""
    values = request.model_dump(by_alias=True)
    missing = [f for f in REQUIRED_FIELDS if not (values.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"All fields are required: {', '.join(REQUIRED_FIELDS)} (missing: {', '.join(missing)})")
    return chain.parse_pubkey(request.user_public_key.strip(), "userPublicKey")


async def create_pool_transaction(
    client: AsyncClient,
    amm: AmmGateway,
    db: Session,
    stablecoin_mint: Pubkey,
    request: schemas.CreatePoolRequest,
) -> dict:
    """
    Builds the mint + pool transaction for an event token, partially signed by the
    server-generated mint and position keypairs, and records the ledger row.

    The creator still has to sign and submit. Nothing is sent to the chain here, so
    a failure part way just drops the ephemeral keypairs.
    """
    creator = validate_request(request)
    logger.info(f"Building event token transaction for event={request.event_id} creator={creator} symbol={request.symbol}")

    mint_keypair = Keypair()
    position_keypair = Keypair()
    mint = mint_keypair.pubkey()

    rent_resp = await client.get_minimum_balance_for_rent_exemption(MINT_LEN)
    _, mint_instructions = chain.build_mint_instructions(creator, mint, rent_resp.value)
    logger.debug(f"Mint {mint}: rent {rent_resp.value} lamports, supply {chain.TOKEN_SUPPLY}")

    created_pool = await amm.build_create_pool(
        creator=creator,
        position_nft=position_keypair.pubkey(),
        token_a_mint=mint,
        token_b_mint=stablecoin_mint,
        token_a_amount=chain.TOKEN_SUPPLY,
        token_a_decimals=chain.TOKEN_DECIMALS,
        token_b_decimals=STABLECOIN_DECIMALS,
    )
    logger.debug(f"AMM gateway returned pool {created_pool.pool}, position {created_pool.position}")

    blockhash = await chain.latest_blockhash(client)
    tx = chain.build_transaction(
        mint_instructions + list(created_pool.instructions),
        fee_payer=creator,
        blockhash=blockhash,
        signers=[mint_keypair, position_keypair],
    )
    encoded = chain.encode_transaction(tx)

    record = schemas.TokenCreationCreate(
        mint_address=str(mint),
        creator_address=str(creator),
        pool_address=str(created_pool.pool),
        position_address=str(created_pool.position),
        name=request.name.strip(),
        symbol=request.symbol.strip(),
        uri=request.uri.strip(),
        event_id=request.event_id.strip(),
    )
    db_token = await asyncio.to_thread(crud.create_token_creation, db, record)
    logger.info(f"Recorded token {db_token.id} (mint {mint}) for event {db_token.event_id}")

    token_data = schemas.CreatedTokenData(
        id=db_token.id,
        mint_address=db_token.mint_address,
        pool_address=db_token.pool_address,
        position_address=db_token.position_address,
        creator_address=db_token.creator_address,
        name=db_token.name,
        symbol=db_token.symbol,
        uri=db_token.uri,
        event_id=db_token.event_id,
    )
    return {
        "success": True,
        "transaction": encoded,
        "message": "Pool creation transaction ready. Please sign with your wallet.",
        "tokenData": token_data.model_dump(by_alias=True),
    }


async def get_transaction_status(client: AsyncClient, signature: Optional[str]) -> dict:
    sig = chain.parse_signature(signature, "Transaction signature")
    status = await chain.get_signature_status(client, sig)
    return {"success": True, "status": status, "signature": signature}
