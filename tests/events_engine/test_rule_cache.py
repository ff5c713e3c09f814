from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import uuid4

import httpx

from automation_engine.events_engine.rule_cache import InMemoryRuleCache, RedisRuleCache, cache_key
from automation_engine.schemas.rule import RuleSnapshot


def _rule(tenant_id) -> RuleSnapshot:
    return RuleSnapshot(
        id=uuid4(),
        tenant_id=tenant_id,
        name="welcome",
        trigger_event_type="customer.created",
        filters=[],
        actions=[{"channel": "email", "recipient_path": "email"}],
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_in_memory_cache_expires_entries() -> None:
    clock = FakeClock()
    cache = InMemoryRuleCache(ttl_seconds=30, clock=clock)
    tenant = uuid4()
    key = cache_key(tenant, "customer.created")

    cache.set(key, [_rule(tenant)])
    assert cache.get(key) is not None

    clock.now += 31
    assert cache.get(key) is None


def test_in_memory_cache_invalidates_one_tenant() -> None:
    cache = InMemoryRuleCache()
    tenant_a, tenant_b = uuid4(), uuid4()
    key_a = cache_key(tenant_a, "customer.created")
    key_b = cache_key(tenant_b, "customer.created")
    cache.set(key_a, [_rule(tenant_a)])
    cache.set(key_b, [_rule(tenant_b)])

    cache.invalidate_for_tenant(tenant_a)

    assert cache.get(key_a) is None
    assert cache.get(key_b) is not None


class FakeUpstash:
    """Minimal in-process stand-in for the Upstash REST endpoint."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.commands: list[list[str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        command = json.loads(request.content)
        self.commands.append(command)
        name, args = command[0], command[1:]
        result: object = "OK"
        if name == "GET":
            result = self.strings.get(args[0])
        elif name == "SET":
            self.strings[args[0]] = args[1]
        elif name == "SADD":
            self.sets.setdefault(args[0], set()).update(args[1:])
            result = 1
        elif name == "SMEMBERS":
            result = sorted(self.sets.get(args[0], set()))
        elif name == "SREM":
            self.sets.get(args[0], set()).difference_update(args[1:])
            result = 1
        elif name == "DEL":
            for key in args:
                self.strings.pop(key, None)
                self.sets.pop(key, None)
            result = len(args)
        elif name == "EXPIRE":
            result = 1
        return httpx.Response(200, json={"result": result})


def test_redis_cache_round_trip_and_tenant_invalidation() -> None:
    upstash = FakeUpstash()
    client = httpx.Client(base_url="https://redis.local", transport=httpx.MockTransport(upstash.handler))
    cache = RedisRuleCache(url="https://redis.local", token="t", prefix="test", ttl_seconds=30, client=client)
    tenant = uuid4()
    key = cache_key(tenant, "customer.created")
    rule = _rule(tenant)

    assert cache.get(key) is None
    cache.set(key, [rule])
    cached = cache.get(key)
    assert cached is not None and cached[0].id == rule.id
    assert ["SET", f"test:rules:{tenant}:customer.created"] == upstash.commands[1][:2]

    cache.invalidate_for_tenant(tenant)
    assert cache.get(key) is None
