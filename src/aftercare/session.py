"""Process-wide session: configuration, identity, backend and store.

A session is started explicitly at application start, which selects the
persistence backend once from configuration and hydrates the store. Logging
out clears the in-memory collections and the stored token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from aftercare.config import AftercareConfig, BackendKind
from aftercare.core.logging import set_user_context
from aftercare.identity import IdentityService
from aftercare.persistence import PersistenceAdapter, local_adapter, remote_adapter
from aftercare.storage import KeyValueStore
from aftercare.store import RecoveryStore

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Raised when no session is active or one is already running."""


@dataclass
class Session:
    config: AftercareConfig
    kv: KeyValueStore
    identity: IdentityService
    store: RecoveryStore
    adapter: PersistenceAdapter
    client: httpx.AsyncClient | None = None
    _closed: bool = field(default=False, repr=False)

    def logout(self) -> None:
        """Clear all three collections and the stored token."""
        self.store.reset()
        self.identity.logout()
        set_user_context(None)
        logger.info("Logged out; session state cleared")

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.adapter.aclose()
        if self.client is not None:
            await self.client.aclose()


_current: Session | None = None


def build_client(config: AftercareConfig) -> httpx.AsyncClient | None:
    """Create the API client when an API URL is configured."""
    if not config.api.url:
        return None
    return httpx.AsyncClient(
        base_url=config.api.url,
        headers={"Content-Type": "application/json"},
        timeout=httpx.Timeout(config.api.timeout_s),
    )


def build_adapter(
    config: AftercareConfig,
    kv: KeyValueStore,
    identity: IdentityService,
    client: httpx.AsyncClient | None = None,
) -> PersistenceAdapter:
    """Select the persistence backend named by *config*."""
    if config.backend is BackendKind.REMOTE:
        if client is None:
            raise SessionError("The remote backend needs an API client (set aftercare.api.url)")
        return remote_adapter(
            client,
            identity.get_token,
            checked_items_path=config.api.checked_items_path,
        )
    return local_adapter(kv)


async def start_session(
    config: AftercareConfig,
    client: httpx.AsyncClient | None = None,
) -> Session:
    """Open storage and clients, hydrate the store, and install the session.

    *client* overrides the HTTP client built from configuration; the session
    closes whichever client it ends up using.
    """
    global _current
    if _current is not None:
        raise SessionError("A session is already active")

    kv = KeyValueStore.in_directory(config.data_dir)
    client = client if client is not None else build_client(config)
    adapter: PersistenceAdapter | None = None
    try:
        identity = IdentityService(kv, client)
        adapter = build_adapter(config, kv, identity, client)
        store = RecoveryStore(adapter)

        user = identity.current_user()
        set_user_context(user.id if user else None)

        logger.info("Starting session with %s backend", adapter.name)
        await store.hydrate()
    except BaseException:
        logger.exception("Session startup failed")
        if adapter is not None:
            await adapter.aclose()
        if client is not None:
            await client.aclose()
        raise

    _current = Session(
        config=config, kv=kv, identity=identity, store=store, adapter=adapter, client=client
    )
    return _current


def get_session() -> Session:
    if _current is None:
        raise SessionError("No active session")
    return _current


async def end_session() -> None:
    """Close the active session's resources and forget it."""
    global _current
    session, _current = _current, None
    if session is not None:
        await session.aclose()
