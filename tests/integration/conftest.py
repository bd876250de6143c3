from typing import Dict, Generator, List, Optional, Set, Tuple
from unittest.mock import AsyncMock, MagicMock # For mocking the RPC client and MCP Context

import pytest
from fastapi.testclient import TestClient
from solana.rpc.core import RPCException
from solders.hash import Hash as Blockhash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from m33t import crud, schemas
from m33t.amm import AmmGateway, CreatedPool, PoolState, QuoteResult
from m33t.api import create_app, get_amm, get_chain
from m33t.config import Settings
from m33t.database import Database
from m33t.server import ServerResources

# Stand-in program id for the pool program the gateway targets
AMM_PROGRAM_ID = Pubkey.new_unique()
USDC_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")


# --- Fake AMM gateway ---

class FakeAmmGateway(AmmGateway):
    """Deterministic AMM gateway: fixed quote, one placeholder instruction per build."""

    def __init__(self, token_a_mint: Pubkey, token_b_mint: Pubkey = USDC_MINT):
        self.pool = Pubkey.new_unique()
        self.state = PoolState(
            pool=str(self.pool),
            token_a_mint=str(token_a_mint),
            token_b_mint=str(token_b_mint),
            token_a_vault=str(Pubkey.new_unique()),
            token_b_vault=str(Pubkey.new_unique()),
        )
        self.quote = QuoteResult(swap_out_amount=1_000_000, price_impact=0.42, total_fee=2_500)
        self.fetch_count = 0
        self.quote_calls: List[dict] = []
        self.swap_calls: List[dict] = []
        self.create_calls: List[dict] = []
        self.fail_with: Optional[Exception] = None

    async def fetch_pool_state(self, pool):
        if self.fail_with:
            raise self.fail_with
        self.fetch_count += 1
        return self.state

    async def get_quote(self, pool_state, input_mint, in_amount, slippage, current_time, current_slot):
        self.quote_calls.append({
            "pool_state": pool_state, "input_mint": input_mint, "in_amount": in_amount,
            "slippage": slippage, "current_time": current_time, "current_slot": current_slot,
        })
        return self.quote

    async def build_swap(self, payer, pool_state, input_mint, output_mint, amount_in, minimum_amount_out):
        self.swap_calls.append({
            "payer": payer, "pool_state": pool_state, "input_mint": input_mint, "output_mint": output_mint,
            "amount_in": amount_in, "minimum_amount_out": minimum_amount_out,
        })
        return [Instruction(
            program_id=AMM_PROGRAM_ID,
            data=bytes([1]) + amount_in.to_bytes(8, "little") + minimum_amount_out.to_bytes(8, "little"),
            accounts=[
                AccountMeta(payer, is_signer=True, is_writable=True),
                AccountMeta(Pubkey.from_string(pool_state.pool), is_signer=False, is_writable=True),
                AccountMeta(Pubkey.from_string(pool_state.token_a_vault), is_signer=False, is_writable=True),
                AccountMeta(Pubkey.from_string(pool_state.token_b_vault), is_signer=False, is_writable=True),
            ],
        )]

    async def build_create_pool(self, creator, position_nft, token_a_mint, token_b_mint, token_a_amount,
                                token_a_decimals, token_b_decimals):
        if self.fail_with:
            raise self.fail_with
        self.create_calls.append({
            "creator": creator, "position_nft": position_nft, "token_a_mint": token_a_mint,
            "token_b_mint": token_b_mint, "token_a_amount": token_a_amount,
        })
        pool = Pubkey.new_unique()
        position = Pubkey.new_unique()
        ix = Instruction(
            program_id=AMM_PROGRAM_ID,
            data=bytes([2]),
            accounts=[
                AccountMeta(creator, is_signer=True, is_writable=True),
                AccountMeta(position_nft, is_signer=True, is_writable=True),
                AccountMeta(pool, is_signer=False, is_writable=True),
                AccountMeta(position, is_signer=False, is_writable=True),
                AccountMeta(token_a_mint, is_signer=False, is_writable=False),
                AccountMeta(token_b_mint, is_signer=False, is_writable=False),
            ],
        )
        return CreatedPool(pool=pool, position=position, instructions=[ix])


# --- Mock chain helpers ---

def create_mock_resp(value) -> MagicMock:
    mock_resp = MagicMock()
    mock_resp.value = value
    return mock_resp


def create_mock_token_balance_resp(amount: int, decimals: int = 6) -> MagicMock:
    mock_value = MagicMock()
    mock_value.amount = str(amount)
    mock_value.decimals = decimals
    return create_mock_resp(mock_value)


class ChainState:
    """On-chain facts the mock RPC client answers from."""

    def __init__(self):
        self.existing_mints: Set[Pubkey] = set()
        self.balances: Dict[Pubkey, int] = {} # keyed by ATA
        self.failing_atas: Set[Pubkey] = set()

    def add_mint(self, mint: Pubkey) -> None:
        self.existing_mints.add(mint)

    def set_balance(self, owner: Pubkey, mint: Pubkey, amount: int) -> Pubkey:
        ata = get_associated_token_address(owner, mint)
        self.balances[ata] = amount
        return ata


@pytest.fixture(scope="function")
def chain_state() -> ChainState:
    return ChainState()


@pytest.fixture(scope="function")
def mock_chain(chain_state: ChainState) -> AsyncMock:
    """An AsyncClient stand-in answering from `chain_state`."""
    client = AsyncMock()
    client.get_minimum_balance_for_rent_exemption.return_value = create_mock_resp(1_461_600)
    blockhash_value = MagicMock()
    blockhash_value.blockhash = Blockhash.new_unique()
    client.get_latest_blockhash.return_value = create_mock_resp(blockhash_value)
    client.get_slot.return_value = create_mock_resp(250_000_000)

    async def get_account_info(pubkey, *args, **kwargs):
        return create_mock_resp(MagicMock() if pubkey in chain_state.existing_mints else None)

    async def get_token_account_balance(pubkey, *args, **kwargs):
        if pubkey in chain_state.failing_atas:
            raise RPCException("Node is behind by 4000 slots")
        if pubkey not in chain_state.balances:
            raise RPCException("Invalid param: could not find account")
        return create_mock_token_balance_resp(chain_state.balances[pubkey])

    client.get_account_info.side_effect = get_account_info
    client.get_token_account_balance.side_effect = get_token_account_balance
    return client


@pytest.fixture(scope="function")
def event_mint() -> Pubkey:
    return Keypair().pubkey()


@pytest.fixture(scope="function")
def fake_amm(event_mint: Pubkey) -> FakeAmmGateway:
    return FakeAmmGateway(token_a_mint=event_mint)


# --- Ledger fixtures ---

@pytest.fixture(scope="function")
def database() -> Generator[Database, None, None]:
    """A fresh in-memory ledger per test."""
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture(scope="function")
def db_session(database: Database):
    with database.session() as db:
        yield db


def make_record(event_id: str = "event-1", creator: Optional[str] = None, mint: Optional[str] = None,
                symbol: str = "M33T") -> schemas.TokenCreationCreate:
    return schemas.TokenCreationCreate(
        mint_address=mint or str(Keypair().pubkey()),
        creator_address=creator or str(Keypair().pubkey()),
        pool_address=str(Pubkey.new_unique()),
        position_address=str(Pubkey.new_unique()),
        name=f"{symbol} Token",
        symbol=symbol,
        uri=f"https://example.com/{symbol.lower()}.json",
        event_id=event_id,
    )


def seed_tokens(database: Database, records: List[schemas.TokenCreationCreate]) -> List[Tuple[int, str]]:
    with database.session() as db:
        return [(t.id, t.mint_address) for t in (crud.create_token_creation(db, r) for r in records)]


# --- HTTP app fixture ---

@pytest.fixture(scope="function")
def api_client(mock_chain: AsyncMock, fake_amm: FakeAmmGateway) -> Generator[TestClient, None, None]:
    """
    The FastAPI app on an in-memory ledger, with the chain client and AMM gateway
    swapped for test doubles.
    """
    app = create_app(Settings(database_url="sqlite://", log_level="DEBUG"))
    app.dependency_overrides[get_chain] = lambda: mock_chain
    app.dependency_overrides[get_amm] = lambda: fake_amm
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


# --- Mock Context Fixture ---

@pytest.fixture(scope="function")
def mock_context(database: Database, mock_chain: AsyncMock, fake_amm: FakeAmmGateway) -> MagicMock:
    """Provides a mock MCP Context whose lifespan context holds the test doubles."""
    context = MagicMock()
    context.request_context.lifespan_context = ServerResources(
        settings=Settings(database_url="sqlite://"),
        database=database,
        chain=mock_chain,
        amm=fake_amm,
    )
    return context
