from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.pubkey import Pubkey
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from mcp.server.fastmcp.utilities.logging import configure_logging, get_logger

from m33t import auth, custodial, pool_creation, queries, schemas, swap
from m33t.amm import AmmGateway, HttpAmmGateway
from m33t.auth import TokenSigner
from m33t.config import Settings
from m33t.custodial import CircleWalletClient
from m33t.database import Database
from m33t.errors import M33TError, UpstreamError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    logger.info("M33T API starting up...")

    database = Database(settings.database_url)
    database.create_all()
    app.state.database = database
    app.state.chain = AsyncClient(settings.rpc_url, commitment=Confirmed)
    app.state.amm = HttpAmmGateway(settings.amm_gateway_url)
    app.state.circle = CircleWalletClient(settings.circle_api_key, settings.circle_entity_secret, settings.circle_api_url)
    app.state.signer = TokenSigner.from_base58(settings.auth_signing_key)
    app.state.stablecoin_mint = Pubkey.from_string(settings.stablecoin_mint)
    logger.info(f"Using RPC endpoint {settings.rpc_url}, AMM gateway {settings.amm_gateway_url}")
    yield
    logger.info("M33T API shutting down...")
    await app.state.chain.close()
    await app.state.amm.aclose()
    await app.state.circle.aclose()
    database.dispose()


# --- Dependencies ---

def get_db(request: Request):
    with request.app.state.database.session() as db:
        yield db


def get_chain(request: Request) -> AsyncClient:
    return request.app.state.chain


def get_amm(request: Request) -> AmmGateway:
    return request.app.state.amm


def get_circle(request: Request) -> CircleWalletClient:
    return request.app.state.circle


def get_signer(request: Request) -> TokenSigner:
    return request.app.state.signer


def get_stablecoin_mint(request: Request) -> Pubkey:
    return request.app.state.stablecoin_mint


# --- Error handlers ---

async def handle_m33t_error(request: Request, exc: M33TError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {details}"})


async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


# --- Routes ---

router = APIRouter()


@router.post("/wallet-signin", tags=["Auth"])
def wallet_sign_in(body: schemas.WalletSignInRequest = Body(...), signer: TokenSigner = Depends(get_signer)):
    return auth.wallet_sign_in(signer, body)


@router.get("/wallet-signin", tags=["Auth"])
def verify_token(authorization: Optional[str] = Header(None), signer: TokenSigner = Depends(get_signer)):
    return auth.verify_bearer(signer, authorization)


@router.post("/circle/create-wallet", tags=["Wallets"])
async def create_wallet(
    body: Optional[schemas.CreateWalletRequest] = Body(None),
    circle: CircleWalletClient = Depends(get_circle),
):
    body = body or schemas.CreateWalletRequest()
    try:
        return await custodial.provision_event_wallets(circle, body.wallet_set_name, body.blockchains)
    except Exception as e:
        logger.exception(f"Circle wallet creation failed: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e) or "Unknown error"})


@router.post("/solana/create-transaction", tags=["Tokens"])
async def create_transaction(
    body: schemas.CreatePoolRequest = Body(...),
    client: AsyncClient = Depends(get_chain),
    amm: AmmGateway = Depends(get_amm),
    stablecoin_mint: Pubkey = Depends(get_stablecoin_mint),
    db: Session = Depends(get_db),
):
    return await pool_creation.create_pool_transaction(client, amm, db, stablecoin_mint, body)


@router.get("/solana/create-transaction", tags=["Tokens"])
async def transaction_status(signature: Optional[str] = Query(None), client: AsyncClient = Depends(get_chain)):
    try:
        return await pool_creation.get_transaction_status(client, signature)
    except M33TError:
        raise
    except Exception as e:
        logger.error(f"Get transaction status error: {e}")
        raise UpstreamError("Failed to get transaction status") from e


@router.get("/solana/swap/quote", tags=["Swap"])
async def swap_quote(
    pool_address: Optional[str] = Query(None, alias="poolAddress"),
    token_in: Optional[str] = Query(None, alias="tokenIn"),
    token_out: Optional[str] = Query(None, alias="tokenOut"),
    amount_in: Optional[str] = Query(None, alias="amountIn"),
    slippage_bps: int = Query(swap.DEFAULT_SLIPPAGE_BPS, alias="slippageBps"),
    client: AsyncClient = Depends(get_chain),
    amm: AmmGateway = Depends(get_amm),
):
    quote = await swap.get_quote(client, amm, pool_address, token_in, token_out, amount_in, slippage_bps)
    return {"success": True, "quote": quote.model_dump(by_alias=True)}


@router.post("/solana/swap/execute", tags=["Swap"])
async def swap_execute(
    body: schemas.SwapExecuteRequest = Body(...),
    client: AsyncClient = Depends(get_chain),
    amm: AmmGateway = Depends(get_amm),
):
    return await swap.build_swap_transaction(client, amm, body)


@router.get("/tokens", tags=["Tokens"])
def get_tokens(
    creator: Optional[str] = Query(None),
    mint: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    return queries.lookup_tokens(db, creator=creator, mint=mint)


@router.patch("/tokens", tags=["Tokens"])
def update_token(body: schemas.AttachSignatureRequest = Body(...), db: Session = Depends(get_db)):
    return queries.attach_signature(db, body)


@router.get("/events/{event_id}/tokens", tags=["Tokens"])
async def event_tokens(
    event_id: str,
    user_address: Optional[str] = Query(None, alias="userAddress"),
    client: AsyncClient = Depends(get_chain),
    db: Session = Depends(get_db),
):
    return await queries.get_event_tokens(client, db, event_id, user_address)


@router.get("/user/tokens", tags=["Tokens"])
async def user_tokens(
    user_address: Optional[str] = Query(None, alias="userAddress"),
    client: AsyncClient = Depends(get_chain),
    db: Session = Depends(get_db),
):
    return await queries.get_user_tokens(client, db, user_address)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(lifespan=lifespan, title="M33T Event Token API")
    app.state.settings = settings or Settings.from_env()
    app.add_exception_handler(M33TError, handle_m33t_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
