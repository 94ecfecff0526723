"""
Summary read cache

Read-through TTL cache for membership summaries, keyed by player and day.
Writes invalidate explicitly; a load that started before an invalidation is
not stored, so a stale summary cannot outlive the write that replaced it.
"""

import logging
import time
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .models import MembershipSummary

logger = logging.getLogger(__name__)


class SummaryCache:
    """TTL cache for MembershipSummary reads"""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl_seconds
        self.max_size = max_size
        self.clock = clock
        self.cache: Dict[Tuple[str, date], Tuple[Optional[MembershipSummary], float]] = {}
        self._membership_players: Dict[str, str] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self.hits = 0
        self.misses = 0

    def get(self, player_id: str, as_of: date) -> Tuple[bool, Optional[MembershipSummary]]:
        """Return (hit, summary); a cached miss for a player is stored as None"""
        key = (player_id, as_of)
        if key in self.cache:
            summary, stored_at = self.cache[key]
            if self.clock() - stored_at < self.ttl:
                self.hits += 1
                return True, summary
            self._drop(key)
        self.misses += 1
        return False, None

    def set(self, player_id: str, as_of: date, summary: Optional[MembershipSummary]):
        if self.ttl <= 0:
            return
        if len(self.cache) >= self.max_size:
            oldest_key = min(self.cache.items(), key=lambda x: x[1][1])[0]
            self._drop(oldest_key)
        self.cache[(player_id, as_of)] = (summary, self.clock())
        if summary is not None:
            self._membership_players[summary.membership_id] = player_id

    async def get_or_load(
        self,
        player_id: str,
        as_of: date,
        loader: Callable[[], Awaitable[Optional[MembershipSummary]]],
    ) -> Optional[MembershipSummary]:
        """Serve from cache, or call loader and cache its result"""
        hit, summary = self.get(player_id, as_of)
        if hit:
            return summary

        token = (self._epoch, self._generations.get(player_id, 0))
        summary = await loader()
        if (self._epoch, self._generations.get(player_id, 0)) == token:
            self.set(player_id, as_of, summary)
        return summary

    def invalidate_player(self, player_id: str) -> None:
        self._generations[player_id] = self._generations.get(player_id, 0) + 1
        for key in [k for k in self.cache if k[0] == player_id]:
            del self.cache[key]
        self._forget_player(player_id)

    def invalidate_membership(self, membership_id: str, player_id: Optional[str] = None) -> None:
        """Drop every cached summary for the player owning a membership"""
        owner = player_id or self._membership_players.get(membership_id)
        if owner:
            self.invalidate_player(owner)
        logger.debug(f"Invalidated cached summaries for membership {membership_id}")

    def clear(self) -> None:
        # Loads in flight across a clear are discarded like after an invalidation
        self._epoch += 1
        self._generations.clear()
        self.cache.clear()
        self._membership_players.clear()

    def _drop(self, key: Tuple[str, date]) -> None:
        del self.cache[key]
        player_id = key[0]
        if not any(k[0] == player_id for k in self.cache):
            self._forget_player(player_id)

    def _forget_player(self, player_id: str) -> None:
        for membership_id in [m for m, p in self._membership_players.items() if p == player_id]:
            del self._membership_players[membership_id]

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "size": len(self.cache),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0
        }


__all__ = ["SummaryCache"]
