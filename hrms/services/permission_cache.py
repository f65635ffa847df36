"""
HRMS Core - Permission Cache and Resolution

A user's effective permissions are the union of the codes granted to every
role assigned to them. Resolving that set hits three tables, so results are
cached per user for a bounded time.

The cache is an injected capability: routes receive it through the
`get_permission_cache` dependency, so tests can swap the Redis backend for an
in-memory one. Storage outages never fail a request; they degrade to a miss
and the set is resolved from the database again.
"""

import logging
import time
import uuid
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Protocol, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.config import settings
from hrms.models.rbac import Permission, RolePermission, UserRoleAssignment
from hrms.services.cache_service import CacheService, get_cache_service

logger = logging.getLogger(__name__)


class PermissionCache(Protocol):
    """Storage for resolved permission sets, keyed by user id."""

    async def get(self, user_id: uuid.UUID) -> Optional[FrozenSet[str]]:
        ...

    async def put(self, user_id: uuid.UUID, codes: Iterable[str], ttl_seconds: int) -> None:
        ...

    async def invalidate(self, user_id: uuid.UUID) -> None:
        ...


class InMemoryPermissionCache:
    """
    Process-local cache. Entries past their TTL are dropped on read.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[uuid.UUID, Tuple[FrozenSet[str], float]] = {}

    async def get(self, user_id: uuid.UUID) -> Optional[FrozenSet[str]]:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        codes, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[user_id]
            return None
        return codes

    async def put(self, user_id: uuid.UUID, codes: Iterable[str], ttl_seconds: int) -> None:
        now = self._clock()
        self._prune(now)
        self._entries[user_id] = (frozenset(codes), now + ttl_seconds)

    async def invalidate(self, user_id: uuid.UUID) -> None:
        self._entries.pop(user_id, None)

    def _prune(self, now: float) -> None:
        """Drop entries of users who have not been looked up since expiry."""
        expired = [user_id for user_id, (_, expires_at) in self._entries.items() if now >= expires_at]
        for user_id in expired:
            del self._entries[user_id]

    def __len__(self) -> int:
        return len(self._entries)


class RedisPermissionCache:
    """Distributed cache backed by Redis (JSON list under permissions:{user_id})."""

    def __init__(self, cache_service: Optional[CacheService] = None):
        self.cache = cache_service or get_cache_service()

    async def get(self, user_id: uuid.UUID) -> Optional[FrozenSet[str]]:
        codes = await self.cache.get_json(self.cache.permissions_key(user_id))
        if codes is None:
            return None
        return frozenset(codes)

    async def put(self, user_id: uuid.UUID, codes: Iterable[str], ttl_seconds: int) -> None:
        await self.cache.set_json(
            self.cache.permissions_key(user_id),
            sorted(codes),
            ttl=ttl_seconds,
        )

    async def invalidate(self, user_id: uuid.UUID) -> None:
        await self.cache.delete(self.cache.permissions_key(user_id))


_memory_cache: Optional[InMemoryPermissionCache] = None


def get_permission_cache() -> PermissionCache:
    """FastAPI dependency returning the configured cache backend."""
    global _memory_cache
    if settings.permission_cache_backend == "memory":
        if _memory_cache is None:
            _memory_cache = InMemoryPermissionCache()
        return _memory_cache
    return RedisPermissionCache(get_cache_service())


class PermissionResolver:
    """Resolves and caches the permission codes a user holds through their roles."""

    def __init__(
        self,
        db: AsyncSession,
        cache: PermissionCache,
        ttl_seconds: Optional[int] = None,
    ):
        self.db = db
        self.cache = cache
        self.ttl_seconds = ttl_seconds or settings.permission_cache_ttl_seconds

    async def resolve(self, user_id: uuid.UUID) -> FrozenSet[str]:
        """Return the user's permission codes, from cache when possible."""
        cached = await self.cache.get(user_id)
        if cached is not None:
            return cached

        logger.debug(f"Permission cache miss for user {user_id}")
        codes = await self.load_from_database(user_id)
        await self.cache.put(user_id, codes, self.ttl_seconds)
        return codes

    async def load_from_database(self, user_id: uuid.UUID) -> FrozenSet[str]:
        """Union of permission codes across every role assigned to the user."""
        result = await self.db.execute(
            select(Permission.code)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == RolePermission.role_id)
            .where(UserRoleAssignment.user_id == user_id)
            .distinct()
        )
        return frozenset(result.scalars().all())

    async def invalidate_users(self, user_ids: Iterable[uuid.UUID]) -> int:
        """Evict cached sets; returns how many users were evicted."""
        count = 0
        for user_id in set(user_ids):
            await self.cache.invalidate(user_id)
            count += 1
        if count:
            logger.info(f"Invalidated cached permissions for {count} user(s)")
        return count

    async def invalidate_role_holders(self, role_id: uuid.UUID) -> int:
        """Evict every user currently holding the role."""
        result = await self.db.execute(
            select(UserRoleAssignment.user_id).where(UserRoleAssignment.role_id == role_id)
        )
        return await self.invalidate_users(result.scalars().all())

    async def invalidate_permission_holders(self, permission_id: uuid.UUID) -> int:
        """Evict every user holding the permission through any role."""
        result = await self.db.execute(
            select(UserRoleAssignment.user_id)
            .join(RolePermission, RolePermission.role_id == UserRoleAssignment.role_id)
            .where(RolePermission.permission_id == permission_id)
        )
        return await self.invalidate_users(result.scalars().all())
