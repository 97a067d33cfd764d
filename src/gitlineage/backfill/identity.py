# -*- coding: utf-8 -*-
"""
identity - 提交作者/提交者身份解析

查找顺序（首个命中即返回，均大小写不敏感）:
1. gha_actors_emails.email
2. gha_actors_names.name
3. gha_actors.name
4. gha_actors.login

未命中返回 (0, "")。所有结果（含未命中）按 (小写 email, 小写 name) 缓存，
缓存生命周期为一次数据库处理，由该库的所有仓库 worker 共享。
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Tuple

from gitlineage.common.redaction import IdentityHider

from .commit_db import ActorRef, CommitStore

logger = logging.getLogger(__name__)

NOT_FOUND: ActorRef = (0, "")

CacheKey = Tuple[str, str]


def cache_key(name: str, email: str) -> CacheKey:
    return (email or "").strip().lower(), (name or "").strip().lower()


class ReadWriteLock:
    """读多写少的读写锁：多个读者并发，写者独占"""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ActorCache:
    """线程安全的身份缓存 {(email, name): (actor_id, login)}"""

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, ActorRef] = {}
        self._lock = ReadWriteLock()

    def get(self, key: CacheKey) -> Optional[ActorRef]:
        with self._lock.read():
            return self._entries.get(key)

    def put(self, key: CacheKey, value: ActorRef) -> None:
        with self._lock.write():
            self._entries[key] = value

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)


class ActorResolver:
    """
    身份解析器

    Args:
        cache: 每个数据库一个、由各仓库 worker 共享的 ActorCache
        hider: 身份脱敏（hide 列表）
    """

    def __init__(self, cache: Optional[ActorCache] = None, hider: Optional[IdentityHider] = None) -> None:
        self.cache = cache if cache is not None else ActorCache()
        self.hider = hider if hider is not None else IdentityHider()
        self._lookups = 0
        self._counter_lock = threading.Lock()

    @property
    def lookups(self) -> int:
        """实际发往数据库的解析次数（缓存未命中数）"""
        with self._counter_lock:
            return self._lookups

    def resolve(self, store: CommitStore, name: str, email: str) -> ActorRef:
        """
        解析 (name, email) 对应的 actor

        查询在调用方传入的 store（即当前仓库事务所在连接）上执行。
        """
        name = self.hider(name or "")
        email = self.hider(email or "")
        key = cache_key(name, email)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        with self._counter_lock:
            self._lookups += 1
        found = self._lookup(store, name, email)
        self.cache.put(key, found)
        return found

    def _lookup(self, store: CommitStore, name: str, email: str) -> ActorRef:
        name = name.strip()
        email = email.strip()
        steps: Tuple[Tuple[Callable[[str], Optional[ActorRef]], str], ...] = (
            (store.find_actor_by_email, email),
            (store.find_actor_by_alias_name, name),
            (store.find_actor_by_name, name),
            (store.find_actor_by_login, name),
        )
        for find, value in steps:
            if not value:
                continue
            hit = find(value)
            if hit is not None:
                return hit
        return NOT_FOUND
