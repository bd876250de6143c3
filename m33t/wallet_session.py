"""
Client-side wallet session cache.

Holds the connected wallet's session (public key, auth token, connect time) in a
small key/value store and keeps it in step with the external wallet bridge. A
session is only good while the bridge still reports the same public key and it
is less than 24 hours old.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from mcp.server.fastmcp.utilities.logging import get_logger

from m33t.errors import AuthenticationError

logger = get_logger(__name__)

SESSION_STORAGE_KEY = "wallet_session"
JWT_STORAGE_KEY = "wallet_jwt"
SESSION_MAX_AGE = timedelta(hours=24)
POLL_INTERVAL_SECONDS = 5.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WalletSession(BaseModel):
    public_key: str
    is_authenticated: bool = True
    jwt: Optional[str] = None
    connected_at: datetime
    last_activity: datetime


# --- Storage ---

class SessionStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryStore(SessionStore):
    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def remove(self, key):
        self.data.pop(key, None)


class JsonFileStore(SessionStore):
    """Key/value store persisted as one JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        try:
            if self.path.exists():
                with open(self.path, 'r') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.error(f"Session store {self.path} does not hold a JSON object. Starting fresh.")
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Error loading session store from {self.path}: {e}. Starting fresh.")
        return {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(data, f, indent=4)

    def get(self, key):
        return self._load().get(key)

    def set(self, key, value):
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key):
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


# --- Wallet bridge ---

class WalletBridge(ABC):
    """The externally provided wallet (browser extension, hardware wallet, ...)."""

    @abstractmethod
    def public_key(self) -> Optional[str]:
        """Connected wallet's public key, or None when disconnected."""

    @abstractmethod
    async def connect(self) -> Optional[str]:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    def subscribe(self, callback: Callable[[Optional[str]], None]) -> Optional[Callable[[], None]]:
        """
        Registers for connect/disconnect/account-change notifications and returns an
        unsubscribe callable. Bridges without notifications return None and get polled.
        """
        return None


# --- Cache ---

class WalletSessionCache:
    def __init__(self, store: SessionStore, bridge: WalletBridge, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.bridge = bridge
        self.clock = clock

    async def sign_in(self) -> WalletSession:
        """Connects the wallet and starts a fresh session."""
        public_key = await self.bridge.connect()
        if not public_key:
            raise AuthenticationError("Failed to connect wallet")
        now = self.clock()
        session = WalletSession(public_key=public_key, is_authenticated=True, connected_at=now, last_activity=now)
        self.save(session)
        logger.info(f"Wallet session started for {public_key}")
        return session

    def _read(self) -> Optional[WalletSession]:
        raw = self.store.get(SESSION_STORAGE_KEY)
        if not raw:
            return None
        try:
            return WalletSession.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(f"Error reading wallet session: {e}")
            return None

    def current_session(self) -> Optional[WalletSession]:
        """The stored session, or None if absent or older than 24 hours. Touches last activity."""
        session = self._read()
        if session is None:
            return None
        now = self.clock()
        if now - session.connected_at > SESSION_MAX_AGE:
            logger.info(f"Wallet session for {session.public_key} expired")
            self.clear()
            return None
        session.last_activity = now
        self.save(session)
        return session

    def save(self, session: WalletSession) -> None:
        self.store.set(SESSION_STORAGE_KEY, session.model_dump_json())
        if session.jwt:
            self.store.set(JWT_STORAGE_KEY, session.jwt)

    def attach_token(self, token: str) -> Optional[WalletSession]:
        session = self.current_session()
        if session is None:
            return None
        session.jwt = token
        self.save(session)
        return session

    def clear(self) -> None:
        self.store.remove(SESSION_STORAGE_KEY)
        self.store.remove(JWT_STORAGE_KEY)

    async def sign_out(self) -> None:
        try:
            await self.bridge.disconnect()
        finally:
            self.clear()

    def auth_token(self) -> Optional[str]:
        return self.store.get(JWT_STORAGE_KEY)

    def is_authenticated(self) -> bool:
        session = self.current_session()
        live_key = self.bridge.public_key()
        return bool(session and session.is_authenticated and live_key and session.public_key == live_key)

    def refresh(self) -> Optional[WalletSession]:
        """Drops the session when the wallet disconnected or switched accounts."""
        session = self.current_session()
        live_key = self.bridge.public_key()
        if session is None or not live_key or session.public_key != live_key:
            self.clear()
            return None
        return session


class SessionWatcher:
    """
    Keeps a WalletSessionCache in step with the bridge and tells listeners when the
    session's public key changes. Uses the bridge's notifications when it has them,
    otherwise polls every `interval` seconds until stopped.
    """

    def __init__(self, cache: WalletSessionCache, interval: float = POLL_INTERVAL_SECONDS):
        self.cache = cache
        self.interval = interval
        self.listeners: List[Callable[[Optional[WalletSession]], None]] = []
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_key: Optional[str] = None

    def add_listener(self, listener: Callable[[Optional[WalletSession]], None]) -> None:
        self.listeners.append(listener)

    @property
    def polling(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        session = self.cache.refresh()
        self._last_key = session.public_key if session else None
        self._unsubscribe = self.cache.bridge.subscribe(lambda _key: self.check())
        if self._unsubscribe is None:
            logger.debug(f"Wallet bridge has no change notifications, polling every {self.interval}s")
            self._task = asyncio.get_running_loop().create_task(self._poll())

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def check(self) -> Optional[WalletSession]:
        """One refresh; notifies listeners if the session's public key changed."""
        try:
            session = self.cache.refresh()
        except Exception as e:
            logger.error(f"Error refreshing wallet session: {e}")
            session = None
        key = session.public_key if session else None
        if key != self._last_key:
            self._last_key = key
            for listener in self.listeners:
                try:
                    listener(session)
                except Exception as e:
                    logger.exception(f"Wallet session listener failed: {e}")
        return session

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.check()
