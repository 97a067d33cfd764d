# -*- coding: utf-8 -*-
"""
回填引擎测试用 Fake 依赖

- FakeGitRepo: 内存中的提交图（sha -> parents）与提交元数据
- FakeRunner: 实现 CommandRunner 协议，按参数模拟 git_commits.sh /
  git_commits_range.sh / git fetch / git merge-base
- FakeCommitStore: 实现 CommitStore 协议，支持事务回滚与查找计数

使用示例:
    repo = FakeGitRepo()
    a, b, c = repo.linear(3)
    runner = FakeRunner({"/repos/org/repo": repo})
    git = GitCommands(runner, Path("/scripts"))
"""

import base64
import copy
import hashlib
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from gitlineage.backfill.git_runner import CommandResult
from gitlineage.backfill.models import ZERO_SHA, CommitInfo, CommitRecord, CommitRole, PushEvent

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_sha(label: str) -> str:
    """由标签生成确定性的 40 位 SHA"""
    return hashlib.sha1(label.encode("utf-8")).hexdigest()


def b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def make_event(
    event_id: int,
    before: str,
    head: str,
    *,
    repo_name: str = "org/repo",
    size: Optional[int] = None,
    recorded: int = 0,
    created_at: datetime = T0,
) -> PushEvent:
    return PushEvent(
        event_id=event_id,
        actor_id=100,
        actor_login="pusher",
        repo_id=7,
        repo_name=repo_name,
        created_at=created_at,
        head=head,
        before=before,
        ref="refs/heads/main",
        size=size,
        recorded_commits=recorded,
    )


# ============== Fake git ==============


class FakeGitRepo:
    """内存提交图；pr_only 中的提交只有 fetch PR refs 之后才可见"""

    def __init__(self) -> None:
        self.parents: Dict[str, List[str]] = {}
        self.order: List[str] = []
        self.infos: Dict[str, CommitInfo] = {}
        self.pr_only: Set[str] = set()
        self.broken: Set[str] = set()
        self.fetched = False

    def add(
        self,
        label: str,
        parents: Sequence[str] = (),
        *,
        author: Tuple[str, str] = ("Alice", "alice@example.com"),
        committer: Optional[Tuple[str, str]] = None,
        message: str = "",
        pr_only: bool = False,
    ) -> str:
        sha = make_sha(label)
        committer = committer or author
        self.parents[sha] = list(parents)
        self.order.append(sha)
        self.infos[sha] = CommitInfo(
            sha=sha,
            author_name=author[0],
            author_email=author[1],
            committer_name=committer[0],
            committer_email=committer[1],
            message=message or f"commit {label}",
        )
        if pr_only:
            self.pr_only.add(sha)
        return sha

    def linear(self, n: int, prefix: str = "c", **kwargs) -> List[str]:
        shas: List[str] = []
        for i in range(n):
            parents = [shas[-1]] if shas else ([self.order[-1]] if self.order else [])
            shas.append(self.add(f"{prefix}{i}", parents, **kwargs))
        return shas

    def visible(self, sha: str) -> bool:
        return sha in self.parents and (self.fetched or sha not in self.pr_only)

    def ancestors(self, sha: str) -> Set[str]:
        seen: Set[str] = set()
        stack = [sha]
        while stack:
            cur = stack.pop()
            if cur in seen:
                continue
            seen.add(cur)
            stack.extend(self.parents.get(cur, []))
        return seen


class FakeRunner:
    """
    CommandRunner 的 Fake 实现

    Args:
        repos: 仓库路径字符串 -> FakeGitRepo
        fail_fetch: fetch PR refs 时返回失败
    """

    def __init__(self, repos: Dict[str, FakeGitRepo], fail_fetch: bool = False) -> None:
        self.repos = repos
        self.fail_fetch = fail_fetch
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    def calls_of(self, kind: str) -> List[List[str]]:
        with self._lock:
            return [c for c in self.calls if any(kind in part for part in c[:6])]

    def run(self, args: Sequence[str]) -> CommandResult:
        args = list(args)
        with self._lock:
            self.calls.append(args)
        if args[0] == "bash" and args[1].endswith("git_commits.sh"):
            return self._commits(args, args[2], args[3:])
        if args[0] == "bash" and args[1].endswith("git_commits_range.sh"):
            return self._range(args, args[2], args[3], args[4], int(args[5]), int(args[6]))
        if args[0] == "git" and "fetch" in args:
            return self._fetch(args, args[2])
        if args[0] == "git" and "merge-base" in args:
            return self._merge_base(args, args[2], args[-2], args[-1])
        return CommandResult(args, 127, stderr="unknown command")

    def _repo(self, path: str) -> Optional[FakeGitRepo]:
        return self.repos.get(path)

    def _commits(self, args: List[str], path: str, shas: Sequence[str]) -> CommandResult:
        repo = self._repo(path)
        if repo is None:
            return CommandResult(args, 128, stderr=f"not a git repository: {path}")
        out: List[str] = []
        for sha in shas:
            if not repo.visible(sha) or sha in repo.broken:
                return CommandResult(args, 1, stderr=f"fatal: bad object {sha}")
            info = repo.infos[sha]
            out.append(
                ",".join(
                    [
                        sha,
                        b64(info.author_name),
                        b64(info.author_email),
                        b64(info.committer_name),
                        b64(info.committer_email),
                        b64(info.message),
                    ]
                )
                + ";"
            )
        return CommandResult(args, 0, stdout="".join(out))

    def _range(
        self, args: List[str], path: str, before: str, head: str, skip: int, limit: int
    ) -> CommandResult:
        repo = self._repo(path)
        if repo is None or not repo.visible(head):
            return CommandResult(args, 128, stderr=f"fatal: bad revision {head}")
        reachable = repo.ancestors(head)
        if before and before != ZERO_SHA:
            if not repo.visible(before):
                return CommandResult(args, 128, stderr=f"fatal: bad revision {before}")
            reachable -= repo.ancestors(before)
        newest_first = [sha for sha in reversed(repo.order) if sha in reachable]
        page = newest_first[skip: skip + limit]
        return CommandResult(args, 0, stdout="".join(f"{sha}\n" for sha in page))

    def _fetch(self, args: List[str], path: str) -> CommandResult:
        repo = self._repo(path)
        if repo is None or self.fail_fetch:
            return CommandResult(args, 128, stderr="fatal: could not read from remote repository")
        repo.fetched = True
        return CommandResult(args, 0)

    def _merge_base(self, args: List[str], path: str, before: str, head: str) -> CommandResult:
        repo = self._repo(path)
        if repo is None or not repo.visible(before) or not repo.visible(head):
            return CommandResult(args, 128, stderr="fatal: not a valid object name")
        return CommandResult(args, 0 if before in repo.ancestors(head) else 1)


# ============== Fake store ==============


class FakeStoreError(Exception):
    """模拟数据库写入错误"""


@dataclass
class FakeActor:
    id: int
    login: str
    name: str = ""
    emails: List[str] = field(default_factory=list)
    alias_names: List[str] = field(default_factory=list)


class FakeCommitStore:
    """
    CommitStore 的 Fake 实现

    - transaction(): 进入时快照，异常时恢复（整体回滚）
    - fail_on_sha: 插入该 SHA 时抛出 FakeStoreError
    - lookups: 各查找方法的调用次数
    - 所有方法在同一把 RLock 下执行，事务期间独占
    """

    def __init__(self) -> None:
        self.events: Dict[str, List[PushEvent]] = {}
        self.actors: List[FakeActor] = []
        self.commits: Dict[Tuple[str, int], CommitRecord] = {}
        self.roles: Dict[Tuple[str, int, str, str, str], CommitRole] = {}
        self.payload_sizes: Dict[int, Optional[int]] = {}
        self.latest_created_at: Dict[str, datetime] = {}
        self.fail_on_sha: Optional[str] = None
        self.lookups: Dict[str, int] = {"email": 0, "alias_name": 0, "name": 0, "login": 0}
        self.selector_calls: List[Tuple[str, datetime, int]] = []
        self.closed = 0
        self._lock = threading.RLock()

    # ---------- 测试数据 ----------

    def add_events(self, *events: PushEvent) -> None:
        for ev in events:
            self.events.setdefault(ev.repo_name, []).append(ev)
            self.payload_sizes[ev.event_id] = ev.size

    def add_actor(self, actor: FakeActor) -> None:
        self.actors.append(actor)

    def commit_count(self, repo_name: Optional[str] = None) -> int:
        return sum(
            1 for r in self.commits.values() if repo_name is None or r.dup_repo_name == repo_name
        )

    # ---------- CommitStore ----------

    def close(self) -> None:
        self.closed += 1

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = (
                copy.copy(self.commits),
                copy.copy(self.roles),
                copy.copy(self.payload_sizes),
            )
            try:
                yield self
            except BaseException:
                self.commits, self.roles, self.payload_sizes = snapshot
                raise

    def select_push_events_needing_commits(
        self, repo_name: str, dt_from: datetime, mode: int
    ) -> List[PushEvent]:
        with self._lock:
            self.selector_calls.append((repo_name, dt_from, mode))
            out = []
            for ev in self.events.get(repo_name, []):
                if ev.created_at < dt_from:
                    continue
                recorded = sum(1 for (_, eid) in self.commits if eid == ev.event_id)
                size = self.payload_sizes.get(ev.event_id)
                if recorded == 0 or (mode >= 2 and size is not None and recorded < size):
                    out.append(ev)
            return out

    def latest_commit_created_at(self, repo_name: str) -> Optional[datetime]:
        return self.latest_created_at.get(repo_name)

    def _find(self, kind: str, match) -> Optional[Tuple[int, str]]:
        with self._lock:
            self.lookups[kind] += 1
            hits = [a for a in self.actors if match(a)]
        if not hits:
            return None
        best = max(hits, key=lambda a: a.id)
        return best.id, best.login

    def find_actor_by_email(self, email: str):
        email = email.lower()
        return self._find("email", lambda a: email in [e.lower() for e in a.emails])

    def find_actor_by_alias_name(self, name: str):
        name = name.lower()
        return self._find("alias_name", lambda a: name in [n.lower() for n in a.alias_names])

    def find_actor_by_name(self, name: str):
        return self._find("name", lambda a: a.name.lower() == name.lower())

    def find_actor_by_login(self, login: str):
        return self._find("login", lambda a: a.login.lower() == login.lower())

    def insert_commit(self, record: CommitRecord) -> bool:
        with self._lock:
            if self.fail_on_sha is not None and record.sha == self.fail_on_sha:
                raise FakeStoreError(f"insert failed for {record.sha}")
            key = (record.sha, record.event_id)
            if key in self.commits:
                return False
            self.commits[key] = record
            return True

    def insert_commit_role(self, role: CommitRole) -> bool:
        with self._lock:
            key = (role.sha, role.event_id, role.role, role.actor_name, role.actor_email)
            if key in self.roles:
                return False
            self.roles[key] = role
            return True

    def update_payload_size(self, event_id: int, size: int) -> bool:
        with self._lock:
            current = self.payload_sizes.get(event_id)
            if (current is None or current <= 1) and current != size:
                self.payload_sizes[event_id] = size
                return True
            return False
