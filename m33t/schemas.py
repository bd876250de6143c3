import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Ledger ---

class TokenCreationBase(CamelModel):
    mint_address: str
    creator_address: str
    pool_address: str
    position_address: str
    name: str
    symbol: str
    uri: Optional[str] = None
    event_id: str
    transaction_signature: Optional[str] = None


class TokenCreationCreate(TokenCreationBase):
    pass


class TokenCreation(TokenCreationBase):
    id: int
    created_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Requests ---
# Fields are optional at the schema level; the flows report missing ones with their own messages.

class CreatePoolRequest(CamelModel):
    user_public_key: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    uri: Optional[str] = None
    event_id: Optional[str] = None


class SwapExecuteRequest(CamelModel):
    pool_address: Optional[str] = None
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    amount_in: Optional[str] = None
    min_amount_out: Optional[str] = None
    user_address: Optional[str] = None


class AttachSignatureRequest(CamelModel):
    mint_address: Optional[str] = None
    transaction_signature: Optional[str] = None


class SignInMessage(CamelModel):
    domain: Optional[str] = None
    public_key: Optional[str] = None
    nonce: Optional[str] = None
    statement: str = ""
    issued_at: Optional[str] = None


class WalletSignInRequest(CamelModel):
    public_key: Optional[str] = None
    message: Optional[SignInMessage] = None
    signature: Optional[str] = None


class CreateWalletRequest(CamelModel):
    wallet_set_name: str = "Event Wallet Set"
    blockchains: List[str] = Field(default_factory=lambda: ["MATIC-AMOY"])


# --- Flow results ---

class CreatedTokenData(CamelModel):
    id: int
    mint_address: str
    pool_address: str
    position_address: str
    creator_address: str
    name: str
    symbol: str
    uri: str
    event_id: str


class SwapQuote(CamelModel):
    pool_address: str
    token_in: str
    token_out: str
    amount_in: str
    amount_out: str
    min_amount_out: str
    price_impact: float
    fee: str
    swap_direction: str


class TokenHolding(CamelModel):
    token_id: int
    name: str
    symbol: str
    mint_address: str
    pool_address: str
    position_address: str
    event_id: str
    ata_address: Optional[str] = None
    balance: str = "0"
    balance_formatted: str = "0.000000"
    has_balance: bool = False
    created_at: Optional[datetime.datetime] = None
    transaction_signature: Optional[str] = None
    error: Optional[str] = None


class PortfolioSummary(CamelModel):
    total_tokens: int
    tokens_with_balance: int
    tokens_without_balance: int
    total_balance_value: str
