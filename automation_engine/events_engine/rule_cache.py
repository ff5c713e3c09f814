"""Read-through rule cache powered by Upstash Redis with in-memory fallback.

Entries are short-lived copies of the enabled rules for one
``(tenant_id, event_type)`` pair. Storage stays authoritative: every rule write
invalidates the tenant's entries, and the TTL bounds staleness for writes made
outside this service.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple, cast
from uuid import UUID

import httpx

from automation_engine.core.config import get_settings
from automation_engine.schemas.rule import RuleSnapshot

RuleCacheKey = Tuple[str, str]


def cache_key(tenant_id: UUID | str, event_type: str) -> RuleCacheKey:
    return str(tenant_id), event_type


class RuleCache(Protocol):
    """Contract for caching enabled rules per tenant and event type."""

    def get(self, key: RuleCacheKey) -> Optional[List[RuleSnapshot]]:
        ...

    def set(self, key: RuleCacheKey, rules: Sequence[RuleSnapshot]) -> None:
        ...

    def invalidate(self) -> None:
        ...

    def invalidate_for_tenant(self, tenant_id: UUID | str) -> None:
        ...


@dataclass
class InMemoryRuleCache(RuleCache):
    """Thread-safe in-memory cache with tenant-level invalidation."""

    ttl_seconds: float = 30.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def __post_init__(self) -> None:
        self._store: Dict[RuleCacheKey, Tuple[float, List[RuleSnapshot]]] = {}
        self._tenant_index: Dict[str, Set[RuleCacheKey]] = {}
        self._lock = RLock()

    def get(self, key: RuleCacheKey) -> Optional[List[RuleSnapshot]]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, rules = entry
            if self._now() >= expires_at:
                self._store.pop(key, None)
                return None
            return list(rules)

    def set(self, key: RuleCacheKey, rules: Sequence[RuleSnapshot]) -> None:
        with self._lock:
            self._store[key] = (self._now() + self.ttl_seconds, list(rules))
            self._tenant_index.setdefault(key[0], set()).add(key)

    def invalidate(self) -> None:
        with self._lock:
            self._store.clear()
            self._tenant_index.clear()

    def invalidate_for_tenant(self, tenant_id: UUID | str) -> None:
        with self._lock:
            keys = self._tenant_index.pop(str(tenant_id), set())
            for key in keys:
                self._store.pop(key, None)

    def _now(self) -> float:
        return self.clock()


class RedisRuleCache(RuleCache):
    """Redis-backed cache using the Upstash REST API."""

    def __init__(
        self,
        *,
        url: str,
        token: str,
        prefix: str,
        ttl_seconds: int,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=5.0,
        )
        self._ttl_ms = max(ttl_seconds, 1) * 1000
        self._prefix = prefix
        self._registry_key = f"{self._prefix}:rule-tenants"

    def get(self, key: RuleCacheKey) -> Optional[List[RuleSnapshot]]:
        result = self._execute("GET", self._rules_key(key))
        if result is None:
            return None
        return [RuleSnapshot.model_validate(item) for item in json.loads(str(result))]

    def set(self, key: RuleCacheKey, rules: Sequence[RuleSnapshot]) -> None:
        cache_key_str = self._rules_key(key)
        body = json.dumps([rule.model_dump(mode="json") for rule in rules])
        self._execute("SET", cache_key_str, body, "PX", str(self._ttl_ms))

        index_key = self._tenant_index_key(key[0])
        ttl_seconds = str(max(self._ttl_ms // 1000, 1))
        self._execute("SADD", index_key, cache_key_str)
        self._execute("EXPIRE", index_key, ttl_seconds)
        self._execute("SADD", self._registry_key, key[0])
        self._execute("EXPIRE", self._registry_key, ttl_seconds)

    def invalidate(self) -> None:
        tenants = cast(Sequence[str], self._execute("SMEMBERS", self._registry_key) or [])
        for tenant in tenants:
            self.invalidate_for_tenant(tenant)
        if tenants:
            self._execute("DEL", self._registry_key)

    def invalidate_for_tenant(self, tenant_id: UUID | str) -> None:
        index_key = self._tenant_index_key(str(tenant_id))
        keys = list(cast(Sequence[str], self._execute("SMEMBERS", index_key) or []))
        self._execute("DEL", index_key, *keys)
        self._execute("SREM", self._registry_key, str(tenant_id))

    def _rules_key(self, key: RuleCacheKey) -> str:
        tenant_id, event_type = key
        return f"{self._prefix}:rules:{tenant_id}:{event_type}"

    def _tenant_index_key(self, tenant_id: str) -> str:
        return f"{self._prefix}:tenant:{tenant_id}"

    def _execute(self, *command: str) -> Optional[object]:
        response = self._client.post("/", json=list(command))
        response.raise_for_status()
        payload = response.json()
        return payload.get("result")


_shared_cache: Optional[RuleCache] = None


def get_rule_cache() -> RuleCache:
    """Return the process-wide rule cache instance."""

    global _shared_cache
    if _shared_cache is not None:
        return _shared_cache

    settings = get_settings()
    if settings.redis_url and settings.redis_token:
        _shared_cache = RedisRuleCache(
            url=settings.redis_url,
            token=settings.redis_token,
            prefix=settings.rule_cache_prefix,
            ttl_seconds=settings.rule_cache_ttl,
        )
    else:
        _shared_cache = InMemoryRuleCache(ttl_seconds=settings.rule_cache_ttl)

    return _shared_cache


def set_rule_cache(cache: Optional[RuleCache]) -> None:
    """Override the cached instance (primarily for tests)."""

    global _shared_cache
    _shared_cache = cache
