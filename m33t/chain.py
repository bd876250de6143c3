"""
Solana helpers shared by the flows: address and amount parsing, the SPL mint
instruction set, partially-signed transaction assembly and the few RPC reads the
query flow needs.
"""

import base64
import json
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solders.hash import Hash as Blockhash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction
from spl.token.constants import MINT_LEN, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    InitializeMintParams,
    MintToParams,
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to,
)

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t.errors import ValidationError

logger = get_logger(__name__)

TOKEN_DECIMALS = 6
TOKEN_SUPPLY = 1_000_000 * 10**TOKEN_DECIMALS # Full supply minted to the creator, in base units
BPS_DENOMINATOR = 10_000


def parse_pubkey(value: Optional[str], field: str) -> Pubkey:
    """Parses a base58 chain address, raising ValidationError on a malformed one."""
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise ValidationError(f"Invalid {field} format: {value}")


def parse_signature(value: Optional[str], field: str = "signature") -> Signature:
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return Signature.from_string(value)
    except ValueError:
        raise ValidationError(f"Invalid {field} format")


def parse_amount(value: Any, field: str) -> int:
    """Parses a positive integer amount in base units."""
    try:
        amount = int(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer amount in base units")
    if amount <= 0:
        raise ValidationError(f"{field} must be positive")
    return amount


def check_slippage_bps(slippage_bps: int) -> None:
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValidationError(f"slippageBps must be between 0 and {BPS_DENOMINATOR}")


def min_amount_out(amount_out: int, slippage_bps: int) -> int:
    """Lowest output accepted at the given slippage: floor(amount - amount * bps / 10000)."""
    check_slippage_bps(slippage_bps)
    return (amount_out * (BPS_DENOMINATOR - slippage_bps)) // BPS_DENOMINATOR


def format_amount(base_units: int, decimals: int = TOKEN_DECIMALS) -> str:
    value = Decimal(base_units) / (Decimal(10) ** decimals)
    return f"{value:.{decimals}f}"


def build_mint_instructions(
    creator: Pubkey,
    mint: Pubkey,
    rent_lamports: int,
    supply: int = TOKEN_SUPPLY,
    decimals: int = TOKEN_DECIMALS,
) -> Tuple[Pubkey, List[Instruction]]:
    """
    Create-and-fund the mint account, initialize it, create the creator's ATA and
    mint the whole supply into it. The creator is payer, mint authority and freeze authority.
    """
    ata = get_associated_token_address(creator, mint)
    instructions = [
        create_account(
            CreateAccountParams(
                from_pubkey=creator,
                to_pubkey=mint,
                lamports=rent_lamports,
                space=MINT_LEN,
                owner=TOKEN_PROGRAM_ID,
            )
        ),
        initialize_mint(
            InitializeMintParams(
                decimals=decimals,
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                mint_authority=creator,
                freeze_authority=creator,
            )
        ),
        create_associated_token_account(payer=creator, owner=creator, mint=mint),
        mint_to(
            MintToParams(
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                dest=ata,
                mint_authority=creator,
                amount=supply,
            )
        ),
    ]
    return ata, instructions


def build_transaction(
    instructions: Sequence[Instruction],
    fee_payer: Pubkey,
    blockhash: Blockhash,
    signers: Sequence[Keypair] = (),
) -> Transaction:
    """
    Assembles a legacy transaction and partially signs it with whichever of `signers`
    the message requires. Remaining signature slots (the fee payer's) stay empty.
    """
    message = Message.new_with_blockhash(list(instructions), fee_payer, blockhash)
    tx = Transaction.new_unsigned(message)
    required = set(message.account_keys[: message.header.num_required_signatures])
    present = [kp for kp in signers if kp.pubkey() in required]
    if present:
        tx.partial_sign(present, blockhash)
    return tx


def encode_transaction(tx: Transaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


async def latest_blockhash(client: AsyncClient) -> Blockhash:
    resp = await client.get_latest_blockhash()
    return resp.value.blockhash


async def mint_exists(client: AsyncClient, mint: Pubkey) -> bool:
    resp = await client.get_account_info(mint)
    return resp.value is not None


async def get_token_balance(client: AsyncClient, owner: Pubkey, mint: Pubkey) -> Tuple[Pubkey, int]:
    """Returns the owner's ATA for `mint` and its balance. A missing ATA reads as 0."""
    ata = get_associated_token_address(owner, mint)
    try:
        resp = await client.get_token_account_balance(ata)
        return ata, int(resp.value.amount)
    except RPCException as rpc_err:
        err_str = str(rpc_err)
        if "could not find account" in err_str or "Account not found" in err_str:
            logger.debug(f"ATA {ata} (owner {owner}, mint {mint}) not found, balance 0")
            return ata, 0
        raise


async def get_signature_status(client: AsyncClient, signature: Signature) -> Optional[dict]:
    resp = await client.get_signature_statuses([signature])
    status = resp.value[0]
    if status is None:
        return None
    return json.loads(status.to_json())
