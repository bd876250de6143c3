import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from the .env file at the project root
dotenv_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=dotenv_path)

MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
USDC_MINT_ADDRESS = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
CIRCLE_API_URL = "https://api.circle.com"


class Settings(BaseModel):
    """Runtime configuration, read once at startup and passed to whatever needs it."""
    rpc_url: str = MAINNET_RPC_URL
    stablecoin_mint: str = USDC_MINT_ADDRESS
    database_url: str = "sqlite:///./m33t.db"
    amm_gateway_url: str = "http://localhost:8787"
    circle_api_url: str = CIRCLE_API_URL
    circle_api_key: Optional[str] = None
    circle_entity_secret: Optional[str] = None
    auth_signing_key: Optional[str] = None # base58 keypair used to sign bearer tokens
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            rpc_url=os.getenv("SOLANA_RPC_URL", MAINNET_RPC_URL),
            stablecoin_mint=os.getenv("STABLECOIN_MINT", USDC_MINT_ADDRESS),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./m33t.db"),
            amm_gateway_url=os.getenv("AMM_GATEWAY_URL", "http://localhost:8787"),
            circle_api_url=os.getenv("CIRCLE_API_URL", CIRCLE_API_URL),
            circle_api_key=os.getenv("CIRCLE_API_KEY"),
            circle_entity_secret=os.getenv("CIRCLE_ENTITY_SECRET"),
            auth_signing_key=os.getenv("AUTH_SIGNING_KEY"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
