"""Durable, append-only record of users who have consumed their trial."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from core.logging import get_logger
from core.tier_constants import Tier
from services.json_store import JsonDocumentStore

logger = get_logger(__name__)


class TrialRegistry:
    """Stores one entry per user that ever started a trial.

    The registry is independent of the subscription record, so cancel and
    expiry cycles never clear it. Entries are never removed.
    """

    def __init__(self, path: Path) -> None:
        self._document = JsonDocumentStore(path, root_key="users")

    def has_used_trial(self, user_id: str) -> bool:
        return user_id in self._document.load(reload=True)

    def entry(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._document.load(reload=True).get(user_id)

    def mark_used(self, user_id: str, tier: Tier, started_at: datetime) -> None:
        def _append(users: Dict[str, Any]) -> None:
            if user_id in users:
                return
            users[user_id] = {"tier": Tier(tier).value, "startedAt": started_at.isoformat()}

        self._document.update(_append)
        logger.info("Trial usage recorded for user=%s tier=%s.", user_id, tier)


__all__ = ["TrialRegistry"]
