"""
Wallet sign-in.

The wallet proves ownership by signing a short sign-in message with its ed25519
key. In exchange the server issues a bearer token: a JSON payload and the server
keypair's ed25519 signature over it, both base64url-encoded and joined by a dot.
Verification checks that signature and the expiry.
"""

import base64
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t import schemas
from m33t.errors import AuthenticationError, ValidationError

logger = get_logger(__name__)

MESSAGE_MAX_AGE = timedelta(minutes=5)
MESSAGE_MAX_CLOCK_SKEW = timedelta(seconds=60)
TOKEN_LIFETIME_SECONDS = 24 * 60 * 60


def format_sign_in_message(message: schemas.SignInMessage) -> str:
    """The exact text the wallet signs."""
    return f"{message.statement}\n\nDomain: {message.domain}\nNonce: {message.nonce}\nIssued At: {message.issued_at}"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _parse_issued_at(value: str) -> datetime:
    try:
        issued_at = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid message format: issuedAt is not an ISO-8601 timestamp")
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    return issued_at


class TokenSigner:
    """Issues and verifies bearer tokens with a server-held ed25519 keypair."""

    def __init__(self, keypair: Optional[Keypair] = None, lifetime_seconds: int = TOKEN_LIFETIME_SECONDS):
        if keypair is None:
            logger.warning("AUTH_SIGNING_KEY not set, using an ephemeral signing key; tokens will not survive a restart")
            keypair = Keypair()
        self.keypair = keypair
        self.lifetime_seconds = lifetime_seconds

    @classmethod
    def from_base58(cls, secret: Optional[str]) -> "TokenSigner":
        return cls(Keypair.from_base58_string(secret) if secret else None)

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    def issue(self, claims: Dict[str, Any], now: Optional[int] = None) -> str:
        iat = int(time.time()) if now is None else now
        payload = {**claims, "iat": iat, "exp": iat + self.lifetime_seconds}
        encoded = _b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode())
        signature = self.keypair.sign_message(encoded.encode("ascii"))
        return f"{encoded}.{_b64url_encode(bytes(signature))}"

    def verify(self, token: str, now: Optional[int] = None) -> Dict[str, Any]:
        """Returns the claims of a valid token. Raises AuthenticationError otherwise."""
        try:
            encoded, encoded_sig = token.split(".")
            signature = Signature.from_bytes(_b64url_decode(encoded_sig))
        except (ValueError, TypeError):
            raise AuthenticationError("Invalid token")
        if not signature.verify(self.public_key, encoded.encode("ascii")):
            raise AuthenticationError("Invalid token")
        try:
            claims = json.loads(_b64url_decode(encoded))
        except ValueError:
            raise AuthenticationError("Invalid token")
        current = int(time.time()) if now is None else now
        if not isinstance(claims.get("exp"), int) or claims["exp"] <= current:
            raise AuthenticationError("Token expired")
        return claims


def wallet_sign_in(signer: TokenSigner, request: schemas.WalletSignInRequest, now: Optional[datetime] = None) -> dict:
    if not request.public_key or not request.message:
        raise ValidationError("Public key and message are required")
    try:
        wallet = Pubkey.from_string(request.public_key)
    except ValueError:
        raise ValidationError("Invalid public key format")

    message = request.message
    if not message.domain or not message.nonce or not message.issued_at:
        raise ValidationError("Invalid message format")
    if message.public_key and message.public_key != request.public_key:
        raise ValidationError("Message public key does not match request public key")

    current = now or datetime.now(timezone.utc)
    issued_at = _parse_issued_at(message.issued_at)
    if current - issued_at > MESSAGE_MAX_AGE:
        raise ValidationError("Message expired")
    if issued_at - current > MESSAGE_MAX_CLOCK_SKEW:
        raise ValidationError("Message issued in the future")

    if not request.signature:
        raise AuthenticationError("Signature is required")
    try:
        signature = Signature.from_string(request.signature)
    except ValueError:
        raise AuthenticationError("Invalid signature format")
    if not signature.verify(wallet, format_sign_in_message(message).encode("utf-8")):
        raise AuthenticationError("Signature does not match public key")

    token = signer.issue(
        {"sub": request.public_key, "domain": message.domain, "issuedAt": message.issued_at},
        now=int(current.timestamp()),
    )
    logger.info(f"Wallet authenticated: {request.public_key}")
    return {
        "success": True,
        "jwt": token,
        "publicKey": request.public_key,
        "message": "Wallet authentication successful",
    }


def verify_bearer(signer: TokenSigner, authorization: Optional[str]) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("No token provided")
    claims = signer.verify(authorization[len("Bearer "):])
    return {"success": True, "message": "Token is valid", "claims": claims}
