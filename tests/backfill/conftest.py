# -*- coding: utf-8 -*-
"""
回填引擎测试共享 fixtures

提供:
- 本地克隆目录（tmp_path 下的 org/repo）与对应的 FakeGitRepo/FakeRunner
- BackfillSettings（指向临时 repos_dir）
- PostgreSQL 临时数据库（TEST_PG_DSN 未设置或不可连接时跳过）
"""

import os
import uuid
from pathlib import Path
from typing import Generator

import psycopg
import pytest

from gitlineage.backfill.config import BackfillSettings
from gitlineage.backfill.git_runner import GitCommands

from tests.backfill.fakes import FakeCommitStore, FakeGitRepo, FakeRunner

ENV_TEST_PG_DSN = "TEST_PG_DSN"

SCHEMA_FILE = Path(__file__).resolve().parent / "gha_schema.sql"

REPO_NAME = "org/repo"


@pytest.fixture
def repos_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    # 不使用以测试名命名的 tmp_path，避免路径中含 "fetch" 等子串干扰 calls_of 匹配
    d = tmp_path_factory.mktemp("clone", numbered=True) / "repos"
    (d / REPO_NAME).mkdir(parents=True)
    return d


@pytest.fixture
def repo_path(repos_dir: Path) -> Path:
    return repos_dir / REPO_NAME


@pytest.fixture
def git_repo() -> FakeGitRepo:
    return FakeGitRepo()


@pytest.fixture
def runner(repo_path: Path, git_repo: FakeGitRepo) -> FakeRunner:
    return FakeRunner({str(repo_path): git_repo})


@pytest.fixture
def git(runner: FakeRunner) -> GitCommands:
    return GitCommands(runner, Path("/opt/gitlineage/git"))


@pytest.fixture
def store() -> FakeCommitStore:
    return FakeCommitStore()


@pytest.fixture
def settings(repos_dir: Path) -> BackfillSettings:
    return BackfillSettings(
        mode=2,
        batch_size=1000,
        workers=2,
        repos_dir=str(repos_dir),
        databases={"gha": "postgresql://unused"},
        repos={"gha": [REPO_NAME]},
    )


# ---------- PostgreSQL ----------


def _replace_db_in_dsn(dsn: str, new_db: str) -> str:
    base = dsn.rsplit("/", 1)[0]
    return f"{base}/{new_db}"


@pytest.fixture(scope="session")
def pg_dsn() -> Generator[str, None, None]:
    """
    为测试会话创建独立数据库并建表，结束后删除

    数据库名格式: gitlineage_test_<uuid>
    """
    admin_dsn = os.environ.get(ENV_TEST_PG_DSN)
    if not admin_dsn:
        pytest.skip(f"{ENV_TEST_PG_DSN} 未设置，跳过 PostgreSQL 集成测试")

    db_name = f"gitlineage_test_{uuid.uuid4().hex[:12]}"
    try:
        with psycopg.connect(admin_dsn, autocommit=True) as conn:
            conn.execute(f'CREATE DATABASE "{db_name}"')
    except Exception as e:
        pytest.skip(f"无法创建测试数据库: {e}")

    dsn = _replace_db_in_dsn(admin_dsn, db_name)
    with psycopg.connect(dsn, autocommit=True) as conn:
        conn.execute(SCHEMA_FILE.read_text(encoding="utf-8"))

    yield dsn

    try:
        with psycopg.connect(admin_dsn, autocommit=True) as conn:
            conn.execute(
                "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                "WHERE datname = %s AND pid != pg_backend_pid()",
                (db_name,),
            )
            conn.execute(f'DROP DATABASE IF EXISTS "{db_name}"')
    except Exception as e:
        import warnings

        warnings.warn(f"清理测试数据库失败 {db_name}: {e}")


@pytest.fixture
def pg_conn(pg_dsn: str) -> Generator[psycopg.Connection, None, None]:
    """每个测试前清空表"""
    conn = psycopg.connect(pg_dsn, autocommit=True)
    conn.execute(
        "TRUNCATE gha_events, gha_payloads, gha_commits, gha_commits_roles, "
        "gha_actors, gha_actors_emails, gha_actors_names"
    )
    try:
        yield conn
    finally:
        conn.close()
