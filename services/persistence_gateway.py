"""Two-phase persistence of subscription records: remote write, then local cache.

The local cache is what the session reads between round-trips. A failed remote
write is logged and not retried; the next successful remote read overwrites
the cached record, so the backend is authoritative whenever it is reachable.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from core.logging import get_logger
from services.clock import Clock
from services.json_store import JsonDocumentStore, JsonStoreError
from services.subscription_api import SubscriptionApiClient, SubscriptionApiError
from services.subscription_record import SubscriptionRecord

logger = get_logger(__name__)

RemoteWrite = Callable[[], Awaitable[Any]]


class PersistenceUnavailableError(RuntimeError):
    """Raised when the local cache itself cannot be written."""


@dataclass(frozen=True, slots=True)
class WriteOutcome:
    record: SubscriptionRecord
    remote_synced: bool
    error: Optional[str] = None


class SubscriptionCache:
    """Last-known record per user in a single JSON document keyed by user id."""

    def __init__(self, path: Path) -> None:
        self._document = JsonDocumentStore(path, root_key="users")

    def get(self, user_id: str) -> Optional[SubscriptionRecord]:
        payload = self._document.load().get(user_id)
        if not isinstance(payload, dict):
            return None
        try:
            return SubscriptionRecord.from_payload(payload)
        except ValueError as exc:
            logger.warning("Ignoring corrupt cached subscription for user=%s: %s", user_id, exc)
            return None

    def put(self, user_id: str, record: SubscriptionRecord, *, cached_at: str) -> None:
        payload = {**record.to_payload(), "cachedAt": cached_at}
        self._document.update(lambda users: users.__setitem__(user_id, payload))


class PersistenceGateway:
    def __init__(
        self,
        *,
        cache: SubscriptionCache,
        clock: Clock,
        api: Optional[SubscriptionApiClient] = None,
    ) -> None:
        self._cache = cache
        self._clock = clock
        self._api = api

    async def write(
        self,
        user_id: str,
        record: SubscriptionRecord,
        *,
        remote_write: Optional[RemoteWrite] = None,
    ) -> WriteOutcome:
        """Push ``record`` to the backend, then mirror it locally whatever happened remotely.

        ``remote_write`` replaces the default ``PUT /users/{userId}`` for
        transitions that have a dedicated endpoint (trial, upgrade, cancel).
        """

        remote_synced = False
        error: Optional[str] = None
        call = remote_write
        if call is None and self._api is not None:
            call = partial(self._api.put_subscription, user_id, record)
        if call is None:
            error = "remote backend not configured"
        else:
            try:
                await call()
                remote_synced = True
            except SubscriptionApiError as exc:
                error = str(exc)
                logger.warning(
                    "persistence.unavailable: remote write failed for user=%s; keeping local copy. %s",
                    user_id,
                    exc,
                )

        try:
            self._cache.put(user_id, record, cached_at=self._clock.now().isoformat())
        except JsonStoreError as exc:
            logger.error("Local subscription cache write failed for user=%s: %s", user_id, exc)
            raise PersistenceUnavailableError("Subscription state could not be saved on this device.") from exc
        return WriteOutcome(record=record, remote_synced=remote_synced, error=error)

    async def read(self, user_id: str) -> SubscriptionRecord:
        """Fetch the authoritative record, falling back to the local cache when offline."""
        if self._api is not None:
            try:
                remote = await self._api.fetch_subscription(user_id)
            except SubscriptionApiError as exc:
                logger.info("Remote subscription read failed for user=%s; using cache. %s", user_id, exc)
            else:
                try:
                    self._cache.put(user_id, remote, cached_at=self._clock.now().isoformat())
                except JsonStoreError as exc:
                    logger.warning("Could not refresh local cache for user=%s: %s", user_id, exc)
                return remote
        return self.cached(user_id)

    def cached(self, user_id: str) -> SubscriptionRecord:
        return self._cache.get(user_id) or SubscriptionRecord.initial()


__all__ = [
    "PersistenceGateway",
    "PersistenceUnavailableError",
    "RemoteWrite",
    "SubscriptionCache",
    "WriteOutcome",
]
