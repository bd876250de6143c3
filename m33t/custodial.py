"""
Circle developer-controlled wallet provisioning over Circle's REST API.

Every write call carries a freshly generated entity-secret ciphertext: the entity
secret (32 bytes, hex) encrypted with Circle's RSA public key using OAEP/SHA-256.
"""

import base64
import uuid
from typing import Any, Dict, List, Optional

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t.errors import UpstreamError

logger = get_logger(__name__)


def encrypt_entity_secret(entity_secret_hex: str, public_key_pem: str) -> str:
    public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    ciphertext = public_key.encrypt(
        bytes.fromhex(entity_secret_hex),
        padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
    )
    return base64.b64encode(ciphertext).decode("ascii")


class CircleWalletClient:
    def __init__(self, api_key: Optional[str], entity_secret: Optional[str], base_url: str,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.entity_secret = entity_secret
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=30)
        self._public_key_pem: Optional[str] = None

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise UpstreamError("CIRCLE_API_KEY is missing")
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=payload, headers=self._headers())
        except httpx.RequestError as e:
            raise UpstreamError(f"Circle API unreachable: {e}") from e
        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            raise UpstreamError(f"Circle API error ({response.status_code}): {message}")
        return response.json().get("data") or {}

    async def _entity_secret_ciphertext(self) -> str:
        if not self.entity_secret:
            raise UpstreamError("CIRCLE_ENTITY_SECRET is missing")
        if self._public_key_pem is None:
            data = await self._request("GET", "/v1/w3s/config/entity/publicKey")
            self._public_key_pem = data["publicKey"]
        return encrypt_entity_secret(self.entity_secret, self._public_key_pem)

    async def create_wallet_set(self, name: str) -> Dict[str, Any]:
        data = await self._request("POST", "/v1/w3s/developer/walletSets", {
            "idempotencyKey": str(uuid.uuid4()),
            "entitySecretCiphertext": await self._entity_secret_ciphertext(),
            "name": name,
        })
        wallet_set = data.get("walletSet") or {}
        if not wallet_set.get("id"):
            raise UpstreamError("WalletSet creation failed: missing ID")
        logger.info(f"Created WalletSet {wallet_set['id']}")
        return wallet_set

    async def create_wallets(self, wallet_set_id: str, blockchains: List[str], count: int = 1) -> List[Dict[str, Any]]:
        data = await self._request("POST", "/v1/w3s/developer/wallets", {
            "idempotencyKey": str(uuid.uuid4()),
            "entitySecretCiphertext": await self._entity_secret_ciphertext(),
            "blockchains": blockchains,
            "count": count,
            "walletSetId": wallet_set_id,
        })
        wallets = data.get("wallets") or []
        logger.info(f"Created {len(wallets)} wallet(s) in WalletSet {wallet_set_id}")
        return wallets


async def provision_event_wallets(circle: CircleWalletClient, wallet_set_name: str, blockchains: List[str]) -> dict:
    wallet_set = await circle.create_wallet_set(wallet_set_name)
    wallets = await circle.create_wallets(wallet_set["id"], blockchains)
    return {"success": True, "walletSet": wallet_set, "wallets": wallets}
