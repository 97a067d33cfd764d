# -*- coding: utf-8 -*-
"""
test_identity.py - 身份解析与共享缓存测试
"""

import hashlib
import threading

from gitlineage.backfill.identity import NOT_FOUND, ActorCache, ActorResolver, cache_key
from gitlineage.common.redaction import IdentityHider

from tests.backfill.fakes import FakeActor, FakeCommitStore


def _store_with_actors() -> FakeCommitStore:
    store = FakeCommitStore()
    store.add_actor(FakeActor(id=1, login="alice", name="Alice Liddell", emails=["alice@example.com"]))
    store.add_actor(FakeActor(id=2, login="bob", name="Bob", alias_names=["Robert B"]))
    store.add_actor(FakeActor(id=3, login="carol", name="Carol C"))
    store.add_actor(FakeActor(id=4, login="dave-login"))
    return store


class TestLookupOrder:
    """查找优先级: email > gha_actors_names > gha_actors.name > gha_actors.login"""

    def test_email_match_first(self):
        store = _store_with_actors()
        resolver = ActorResolver()
        assert resolver.resolve(store, "Somebody Else", "ALICE@example.com") == (1, "alice")
        assert store.lookups["alias_name"] == 0

    def test_alias_name(self):
        store = _store_with_actors()
        assert ActorResolver().resolve(store, "robert b", "unknown@example.com") == (2, "bob")

    def test_primary_name(self):
        store = _store_with_actors()
        assert ActorResolver().resolve(store, "Carol C", "") == (3, "carol")
        assert store.lookups["email"] == 0

    def test_login(self):
        store = _store_with_actors()
        assert ActorResolver().resolve(store, "DAVE-LOGIN", "x@example.com") == (4, "dave-login")
        assert store.lookups == {"email": 1, "alias_name": 1, "name": 1, "login": 1}

    def test_not_found(self):
        store = _store_with_actors()
        assert ActorResolver().resolve(store, "Nobody", "nobody@example.com") == NOT_FOUND

    def test_highest_id_wins(self):
        store = FakeCommitStore()
        store.add_actor(FakeActor(id=10, login="old", emails=["dup@example.com"]))
        store.add_actor(FakeActor(id=20, login="new", emails=["dup@example.com"]))
        assert ActorResolver().resolve(store, "", "dup@example.com") == (20, "new")


class TestCache:
    """缓存一致性"""

    def test_repeated_resolution_hits_cache(self):
        """同一 (name, email) 第二次解析不访问数据库"""
        store = _store_with_actors()
        resolver = ActorResolver()
        first = resolver.resolve(store, "Alice Liddell", "alice@example.com")
        calls = dict(store.lookups)
        second = resolver.resolve(store, "alice liddell", " ALICE@example.com ")
        assert first == second
        assert store.lookups == calls
        assert resolver.lookups == 1

    def test_not_found_is_cached(self):
        store = _store_with_actors()
        resolver = ActorResolver()
        resolver.resolve(store, "Ghost", "ghost@example.com")
        resolver.resolve(store, "Ghost", "ghost@example.com")
        assert store.lookups["login"] == 1
        assert len(resolver.cache) == 1

    def test_shared_cache_across_resolvers(self):
        cache = ActorCache()
        store = _store_with_actors()
        ActorResolver(cache).resolve(store, "Bob", "")
        other = ActorResolver(cache)
        assert other.resolve(store, "Bob", "") == (2, "bob")
        assert other.lookups == 0

    def test_cache_key_normalization(self):
        assert cache_key(" Jane ", "JANE@X.org ") == ("jane@x.org", "jane")

    def test_concurrent_resolution(self):
        store = _store_with_actors()
        resolver = ActorResolver()
        results = []

        def work():
            for _ in range(50):
                results.append(resolver.resolve(store, "Carol C", "carol@example.com"))

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert set(results) == {(3, "carol")}
        assert len(resolver.cache) == 1


class TestHiding:
    """hide 列表中的身份在查找前被替换"""

    def test_hidden_email_not_looked_up_in_clear(self):
        digest = hashlib.sha1(b"alice@example.com").hexdigest()
        store = _store_with_actors()
        resolver = ActorResolver(hider=IdentityHider([digest]))
        assert resolver.resolve(store, "", "alice@example.com") == NOT_FOUND
