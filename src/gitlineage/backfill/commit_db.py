# -*- coding: utf-8 -*-
"""
commit_db - 事件库 / 提交表 数据库访问层

读取:
- gha_events + gha_payloads: 需要回填提交的 PushEvent（Needed-Work Selector）
- gha_actors / gha_actors_emails / gha_actors_names: 身份查找

写入（均为幂等插入）:
- gha_commits: ON CONFLICT DO NOTHING
- gha_commits_roles: ON CONFLICT DO NOTHING
- gha_payloads.size: 仅在 NULL 或 <= 1 且与重建数量不同时更新

PgCommitStore 封装一个 psycopg 连接；一个仓库的写入只在其自身 worker 的
连接事务中进行。
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Protocol, Tuple

import psycopg
from psycopg.rows import dict_row

from .errors import QueryError
from .models import CommitRecord, CommitRole, PushEvent

logger = logging.getLogger(__name__)

ActorRef = Tuple[int, str]

# mode=1: 仅缺失; mode>=2: 缺失或计数不足 (cnt < payload.size)
SELECT_PUSH_EVENTS_SQL = """
select
  e.id,
  e.actor_id,
  e.dup_actor_login,
  e.repo_id,
  e.dup_repo_name,
  e.created_at,
  p.head,
  p.befor,
  p.ref,
  p.size,
  coalesce(c.cnt, 0) as cnt
from gha_events e
join gha_payloads p on p.event_id = e.id
left join (
  select event_id, count(*) as cnt
  from gha_commits
  where dup_repo_name = %(repo)s
    and dup_created_at >= %(dt_from)s
  group by event_id
) c on c.event_id = e.id
where e.type = 'PushEvent'
  and e.dup_repo_name = %(repo)s
  and e.created_at >= %(dt_from)s
  and (
    p.size is null
    or p.size > 0
    or (
      p.size = 0
      and p.befor is not null
      and p.befor <> ''
      and p.befor <> '0000000000000000000000000000000000000000'
    )
  )
  and (
    c.cnt is null
    or c.cnt = 0
    or (
      %(mode)s >= 2
      and p.size is not null
      and c.cnt < p.size
    )
  )
order by e.created_at, e.id
"""

LATEST_COMMIT_SQL = "select max(dup_created_at) from gha_commits where dup_repo_name = %s"

INSERT_COMMIT_SQL = """
insert into gha_commits(
  sha, event_id, author_name, encrypted_email, message,
  is_distinct, dup_actor_id, dup_actor_login, dup_repo_id, dup_repo_name, dup_type, dup_created_at,
  author_id, committer_id, dup_author_login, dup_committer_login,
  author_email, committer_name, committer_email
)
select
  %(sha)s::varchar(40), %(event_id)s, %(author_name)s, %(author_email)s, %(message)s,
  not exists(select 1 from gha_commits c2 where c2.sha = %(sha)s::varchar(40) limit 1),
  %(dup_actor_id)s, %(dup_actor_login)s, %(dup_repo_id)s, %(dup_repo_name)s, %(dup_type)s, %(dup_created_at)s,
  %(author_id)s, %(committer_id)s, %(dup_author_login)s, %(dup_committer_login)s,
  %(author_email)s, %(committer_name)s, %(committer_email)s
on conflict do nothing
"""

INSERT_ROLE_SQL = """
insert into gha_commits_roles(
  sha, event_id, role, actor_id, actor_login, actor_name, actor_email,
  dup_repo_id, dup_repo_name, dup_created_at
) values (
  %(sha)s, %(event_id)s, %(role)s, %(actor_id)s, %(actor_login)s, %(actor_name)s, %(actor_email)s,
  %(dup_repo_id)s, %(dup_repo_name)s, %(dup_created_at)s
)
on conflict do nothing
"""

UPDATE_PAYLOAD_SIZE_SQL = """
update gha_payloads set size = %(size)s
where event_id = %(event_id)s
  and (size is null or size <= 1)
  and (size is null or size <> %(size)s)
"""

ACTOR_BY_EMAIL_SQL = (
    "select a.id, a.login from gha_actors a, gha_actors_emails ae "
    "where a.id = ae.actor_id and lower(ae.email) = lower(%s) order by a.id desc limit 1"
)
ACTOR_BY_ALIAS_NAME_SQL = (
    "select a.id, a.login from gha_actors a, gha_actors_names an "
    "where a.id = an.actor_id and lower(an.name) = lower(%s) order by a.id desc limit 1"
)
ACTOR_BY_NAME_SQL = "select id, login from gha_actors where lower(name) = lower(%s) order by id desc limit 1"
ACTOR_BY_LOGIN_SQL = "select id, login from gha_actors where lower(login) = lower(%s) order by id desc limit 1"


class CommitStore(Protocol):
    """回填引擎使用的存储接口（PgCommitStore 与测试 Fake 实现）"""

    def select_push_events_needing_commits(
        self, repo_name: str, dt_from: datetime, mode: int
    ) -> List[PushEvent]:
        ...

    def latest_commit_created_at(self, repo_name: str) -> Optional[datetime]:
        ...

    def find_actor_by_email(self, email: str) -> Optional[ActorRef]:
        ...

    def find_actor_by_alias_name(self, name: str) -> Optional[ActorRef]:
        ...

    def find_actor_by_name(self, name: str) -> Optional[ActorRef]:
        ...

    def find_actor_by_login(self, login: str) -> Optional[ActorRef]:
        ...

    def insert_commit(self, record: CommitRecord) -> bool:
        ...

    def insert_commit_role(self, role: CommitRole) -> bool:
        ...

    def update_payload_size(self, event_id: int, size: int) -> bool:
        ...

    def transaction(self):
        ...

    def close(self) -> None:
        ...


def _row_to_push_event(row: dict) -> PushEvent:
    return PushEvent(
        event_id=row["id"],
        actor_id=row["actor_id"],
        actor_login=row["dup_actor_login"] or "",
        repo_id=row["repo_id"],
        repo_name=row["dup_repo_name"],
        created_at=row["created_at"],
        head=row["head"] or "",
        before=row["befor"] or "",
        ref=row["ref"],
        size=row["size"],
        recorded_commits=row["cnt"] or 0,
    )


class PgCommitStore:
    """基于 psycopg 连接的 CommitStore"""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator["PgCommitStore"]:
        """仓库级事务：正常退出提交，异常时整体回滚"""
        with self.conn.transaction():
            yield self

    def select_push_events_needing_commits(
        self, repo_name: str, dt_from: datetime, mode: int
    ) -> List[PushEvent]:
        try:
            with self.conn.cursor(row_factory=dict_row) as cur:
                cur.execute(SELECT_PUSH_EVENTS_SQL, {"repo": repo_name, "dt_from": dt_from, "mode": mode})
                return [_row_to_push_event(row) for row in cur.fetchall()]
        except psycopg.Error as e:
            raise QueryError(
                f"查询需要回填的 PushEvent 失败 (repo={repo_name}): {e}",
                {"repo": repo_name},
            ) from e

    def latest_commit_created_at(self, repo_name: str) -> Optional[datetime]:
        try:
            with self.conn.cursor() as cur:
                cur.execute(LATEST_COMMIT_SQL, (repo_name,))
                row = cur.fetchone()
        except psycopg.Error as e:
            raise QueryError(
                f"select max(dup_created_at) from gha_commits failed (repo={repo_name}): {e}",
                {"repo": repo_name},
            ) from e
        return row[0] if row else None

    def _find_actor(self, sql: str, value: str, what: str) -> Optional[ActorRef]:
        # 在保存点中执行，查找失败不会中止外层事务
        try:
            with self.conn.transaction():
                with self.conn.cursor() as cur:
                    cur.execute(sql, (value,))
                    row = cur.fetchone()
        except psycopg.Error as e:
            logger.warning(f"按 {what} 查找 actor 失败 ({what}={value!r}): {e}")
            return None
        if row is None:
            return None
        return int(row[0]), row[1] or ""

    def find_actor_by_email(self, email: str) -> Optional[ActorRef]:
        return self._find_actor(ACTOR_BY_EMAIL_SQL, email, "email")

    def find_actor_by_alias_name(self, name: str) -> Optional[ActorRef]:
        return self._find_actor(ACTOR_BY_ALIAS_NAME_SQL, name, "gha_actors_names.name")

    def find_actor_by_name(self, name: str) -> Optional[ActorRef]:
        return self._find_actor(ACTOR_BY_NAME_SQL, name, "gha_actors.name")

    def find_actor_by_login(self, login: str) -> Optional[ActorRef]:
        return self._find_actor(ACTOR_BY_LOGIN_SQL, login, "gha_actors.login")

    def insert_commit(self, record: CommitRecord) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(INSERT_COMMIT_SQL, vars(record))
            return cur.rowcount > 0

    def insert_commit_role(self, role: CommitRole) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(INSERT_ROLE_SQL, vars(role))
            return cur.rowcount > 0

    def update_payload_size(self, event_id: int, size: int) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(UPDATE_PAYLOAD_SIZE_SQL, {"event_id": event_id, "size": size})
            return cur.rowcount > 0
