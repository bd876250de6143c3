"""
AMM gateway client.

Pool creation, quoting and swap building for the constant-product pools belong to
an external AMM gateway; this module only speaks its JSON contract and turns the
instructions it hands back into solders objects. No pool math lives here.
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t.errors import UpstreamError

logger = get_logger(__name__)

# Fixed parameters for every event pool
INITIAL_PRICE = 0.1
BASE_FEE_BPS = 100
PROTOCOL_FEE_PERCENT = 20
PARTNER_FEE_PERCENT = 0
REFERRAL_FEE_PERCENT = 20
ACTIVATION_TYPE = 0 # slot based
COLLECT_FEE_MODE = 1 # fees collected in token B only
QUOTE_SLIPPAGE_PERCENT = 0.2


class PoolState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pool: str
    token_a_mint: str = Field(alias="tokenAMint")
    token_b_mint: str = Field(alias="tokenBMint")
    token_a_vault: str = Field(alias="tokenAVault")
    token_b_vault: str = Field(alias="tokenBVault")
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    def direction(self, input_mint: str) -> Optional[str]:
        if input_mint == self.token_a_mint:
            return "tokenAToTokenB"
        if input_mint == self.token_b_mint:
            return "tokenBToTokenA"
        return None


class QuoteResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    swap_out_amount: int = Field(alias="swapOutAmount")
    price_impact: float = Field(alias="priceImpact")
    total_fee: int = Field(alias="totalFee")


@dataclass
class CreatedPool:
    pool: Pubkey
    position: Pubkey
    instructions: List[Instruction]


def instruction_from_json(data: Dict[str, Any]) -> Instruction:
    """Decodes `{programId, keys:[{pubkey,isSigner,isWritable}], data}` (base64 data)."""
    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(key["pubkey"]),
            is_signer=bool(key.get("isSigner", False)),
            is_writable=bool(key.get("isWritable", False)),
        )
        for key in data.get("keys", [])
    ]
    return Instruction(
        program_id=Pubkey.from_string(data["programId"]),
        data=base64.b64decode(data.get("data", "")),
        accounts=accounts,
    )


class AmmGateway(ABC):
    """What the flows need from the AMM. Implementations own all curve and fee math."""

    @abstractmethod
    async def fetch_pool_state(self, pool: Pubkey) -> PoolState:
        ...

    @abstractmethod
    async def get_quote(
        self,
        pool_state: PoolState,
        input_mint: Pubkey,
        in_amount: int,
        slippage: float,
        current_time: int,
        current_slot: int,
    ) -> QuoteResult:
        ...

    @abstractmethod
    async def build_swap(
        self,
        payer: Pubkey,
        pool_state: PoolState,
        input_mint: Pubkey,
        output_mint: Pubkey,
        amount_in: int,
        minimum_amount_out: int,
    ) -> List[Instruction]:
        ...

    @abstractmethod
    async def build_create_pool(
        self,
        creator: Pubkey,
        position_nft: Pubkey,
        token_a_mint: Pubkey,
        token_b_mint: Pubkey,
        token_a_amount: int,
        token_a_decimals: int,
        token_b_decimals: int,
    ) -> CreatedPool:
        ...


class HttpAmmGateway(AmmGateway):
    """Talks to the AMM gateway service over HTTP."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        logger.debug(f"AMM gateway {method} {path}")
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.RequestError as e:
            raise UpstreamError(f"AMM gateway unreachable: {e}") from e
        if response.status_code >= 400:
            try:
                message = response.json().get("error") or response.text
            except ValueError:
                message = response.text
            raise UpstreamError(f"AMM gateway error ({response.status_code}): {message}")
        return response.json()

    async def fetch_pool_state(self, pool: Pubkey) -> PoolState:
        data = await self._request("GET", f"/pools/{pool}")
        state = PoolState.model_validate(data)
        state.raw = data
        return state

    async def get_quote(self, pool_state, input_mint, in_amount, slippage, current_time, current_slot) -> QuoteResult:
        data = await self._request("POST", "/quote", {
            "pool": pool_state.pool,
            "poolState": pool_state.raw,
            "inputTokenMint": str(input_mint),
            "inAmount": str(in_amount),
            "slippage": slippage,
            "currentTime": current_time,
            "currentSlot": current_slot,
        })
        return QuoteResult(**data)

    async def build_swap(self, payer, pool_state, input_mint, output_mint, amount_in, minimum_amount_out) -> List[Instruction]:
        data = await self._request("POST", "/swap", {
            "payer": str(payer),
            "pool": pool_state.pool,
            "inputTokenMint": str(input_mint),
            "outputTokenMint": str(output_mint),
            "amountIn": str(amount_in),
            "minimumAmountOut": str(minimum_amount_out),
            "tokenAVault": pool_state.token_a_vault,
            "tokenBVault": pool_state.token_b_vault,
            "tokenAMint": pool_state.token_a_mint,
            "tokenBMint": pool_state.token_b_mint,
            "tokenAProgram": str(TOKEN_PROGRAM_ID),
            "tokenBProgram": str(TOKEN_PROGRAM_ID),
            "referralTokenAccount": None,
        })
        return [instruction_from_json(ix) for ix in data["instructions"]]

    async def build_create_pool(self, creator, position_nft, token_a_mint, token_b_mint, token_a_amount,
                                token_a_decimals, token_b_decimals) -> CreatedPool:
        data = await self._request("POST", "/pools", {
            "payer": str(creator),
            "creator": str(creator),
            "positionNft": str(position_nft),
            "tokenAMint": str(token_a_mint),
            "tokenBMint": str(token_b_mint),
            "tokenAAmount": str(token_a_amount),
            "tokenBAmount": "0",
            "tokenADecimals": token_a_decimals,
            "tokenBDecimals": token_b_decimals,
            "initialPrice": INITIAL_PRICE,
            "poolFees": {
                "baseFeeBps": BASE_FEE_BPS,
                "protocolFeePercent": PROTOCOL_FEE_PERCENT,
                "partnerFeePercent": PARTNER_FEE_PERCENT,
                "referralFeePercent": REFERRAL_FEE_PERCENT,
                "dynamicFee": None,
            },
            "hasAlphaVault": False,
            "activationType": ACTIVATION_TYPE,
            "collectFeeMode": COLLECT_FEE_MODE,
            "activationPoint": None,
            "tokenAProgram": str(TOKEN_PROGRAM_ID),
            "tokenBProgram": str(TOKEN_PROGRAM_ID),
        })
        return CreatedPool(
            pool=Pubkey.from_string(data["pool"]),
            position=Pubkey.from_string(data["position"]),
            instructions=[instruction_from_json(ix) for ix in data["instructions"]],
        )
