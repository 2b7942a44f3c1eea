from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ipverdict.cache import MemoryCache
from ipverdict.signals import SignalResult, Verdict, VerdictResult
from ipverdict.store import HistoryQuery, HistoryStore

BASE = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _result(ip, verdict=Verdict.ORIGINAL, *, minutes=0, score=10):
    return VerdictResult(
        ip=ip,
        score=score,
        verdict=verdict,
        confidence=75.0,
        signals=(SignalResult("CIDR_CHECK", verdict is Verdict.PROXY_VPN, float(score), 0.4, 1.0, "range"),),
        anomalies=(),
        timestamp=BASE + timedelta(minutes=minutes),
    )


def _populated(store):
    store.save(_result("203.0.113.1", minutes=0))
    store.save(_result("203.0.113.2", Verdict.PROXY_VPN, minutes=10, score=90))
    store.save(_result("198.51.100.3", minutes=20))
    store.save(_result("198.51.100.4", Verdict.PROXY_VPN, minutes=30, score=80))
    return store


def test_query_newest_first_with_pagination():
    store = _populated(HistoryStore())
    first = store.query(HistoryQuery(page=1, limit=3))
    second = store.query(HistoryQuery(page=2, limit=3))

    assert [record.result.ip for record in first.records] == ["198.51.100.4", "198.51.100.3", "203.0.113.2"]
    assert [record.result.ip for record in second.records] == ["203.0.113.1"]
    assert first.total == 4
    assert first.pages == 2


def test_query_filters():
    store = _populated(HistoryStore())

    proxies = store.query(HistoryQuery(verdict=Verdict.PROXY_VPN))
    assert {record.result.ip for record in proxies.records} == {"203.0.113.2", "198.51.100.4"}

    window = store.query(HistoryQuery(start=BASE + timedelta(minutes=5), end=BASE + timedelta(minutes=25)))
    assert [record.result.ip for record in window.records] == ["198.51.100.3", "203.0.113.2"]

    naive_start = datetime(2025, 3, 1, 12, 15)
    assert store.query(HistoryQuery(start=naive_start)).total == 2

    search = store.query(HistoryQuery(search="198.51"))
    assert search.total == 2


def test_stats():
    stats = _populated(HistoryStore()).stats()
    assert stats.as_dict() == {"total": 4, "proxy_vpn": 2, "original": 2, "proxy_vpn_percentage": 50.0}


def test_empty_stats():
    assert HistoryStore().stats().proxy_vpn_percentage == 0.0


def test_get_and_delete():
    store = HistoryStore()
    record = store.save(_result("203.0.113.9"))

    assert store.get(record.id) == record
    assert store.delete(record.id)
    assert store.get(record.id) is None
    assert not store.delete(record.id)


def test_max_records_keeps_newest():
    store = HistoryStore(max_records=2)
    _populated(store)
    assert [record.result.ip for record in store.query().records] == ["198.51.100.4", "198.51.100.3"]


def test_encrypted_store_round_trip(tmp_path):
    path = tmp_path / "history.enc"
    store = HistoryStore("test-secret", path)
    saved = store.save(_result("203.0.113.9", Verdict.PROXY_VPN, score=88))

    raw = path.read_bytes()
    assert b"203.0.113.9" not in raw

    reloaded = HistoryStore("test-secret", path)
    assert reloaded.persistent
    assert reloaded.get(saved.id).result == saved.result


def test_encrypted_store_wrong_key(tmp_path):
    path = tmp_path / "history.enc"
    HistoryStore("right-key", path).save(_result("203.0.113.9"))
    with pytest.raises(RuntimeError):
        HistoryStore("wrong-key", path)


def test_store_without_key_is_memory_only(tmp_path):
    path = tmp_path / "history.enc"
    store = HistoryStore(None, path)
    store.save(_result("203.0.113.9"))
    assert not store.persistent
    assert not path.exists()


def test_memory_cache_expiry():
    now = [100.0]
    cache = MemoryCache(clock=lambda: now[0])
    result = _result("203.0.113.9")

    async def scenario():
        await cache.set("verdict:203.0.113.9", result, 60)
        hit = await cache.get("verdict:203.0.113.9")
        now[0] += 61
        miss = await cache.get("verdict:203.0.113.9")
        return hit, miss

    hit, miss = asyncio.run(scenario())
    assert hit == result
    assert miss is None


def test_memory_cache_evicts_oldest_when_full():
    now = [0.0]
    cache = MemoryCache(clock=lambda: now[0], max_entries=2)

    async def scenario():
        for index in range(3):
            now[0] += 1
            await cache.set(f"k{index}", _result(f"203.0.113.{index}"), 60)
        return await cache.get("k0"), await cache.get("k2")

    oldest, newest = asyncio.run(scenario())
    assert oldest is None
    assert newest is not None
    assert len(cache) == 2
