# -*- coding: utf-8 -*-
"""
test_git_scripts.py - 打包的 git_commits.sh / git_commits_range.sh 与真实 git 的集成测试

需要 git 与 bash，不可用时跳过。
"""

import hashlib
import shutil
import subprocess
from pathlib import Path
from typing import List

import pytest

from gitlineage.backfill.commit_range import CommitRangeResolver
from gitlineage.backfill.config import PACKAGED_GIT_SCRIPTS_DIR
from gitlineage.backfill.git_metadata import CommitMetadataFetcher
from gitlineage.backfill.git_runner import GitCommands, SubprocessRunner
from gitlineage.backfill.models import ZERO_SHA
from gitlineage.common.redaction import IdentityHider

pytestmark = pytest.mark.skipif(
    shutil.which("git") is None or shutil.which("bash") is None or shutil.which("base64") is None,
    reason="需要 git、bash 和 base64",
)


def _git(repo: Path, *args: str) -> str:
    return subprocess.run(
        ["git", "-C", str(repo), *args],
        check=True,
        capture_output=True,
        text=True,
        env={
            "GIT_AUTHOR_NAME": "Jane Doe",
            "GIT_AUTHOR_EMAIL": "jane@example.com",
            "GIT_COMMITTER_NAME": "Bot",
            "GIT_COMMITTER_EMAIL": "bot@example.com",
            "HOME": str(repo),
            "PATH": "/usr/bin:/bin:/usr/local/bin",
        },
    ).stdout.strip()


@pytest.fixture
def linear_repo(tmp_path: Path):
    """A -> B -> C -> D"""
    repo = tmp_path / "org" / "repo"
    repo.mkdir(parents=True)
    _git(repo, "init", "-q")
    shas: List[str] = []
    for label in "ABCD":
        _git(repo, "commit", "-q", "--allow-empty", "-m", f"commit {label}\n\nSigned-off-by: Jane Doe <jane@example.com>")
        shas.append(_git(repo, "rev-parse", "HEAD"))
    return repo, shas


@pytest.fixture
def git_cmds() -> GitCommands:
    return GitCommands(SubprocessRunner(timeout=30), PACKAGED_GIT_SCRIPTS_DIR)


class TestRangeScript:
    def test_range_between(self, linear_repo, git_cmds):
        repo, (a, b, c, d) = linear_repo
        assert CommitRangeResolver(git_cmds, page_size=2).list_range(repo, a, d) == [b, c, d]

    def test_zero_before_lists_history(self, linear_repo, git_cmds):
        repo, shas = linear_repo
        assert CommitRangeResolver(git_cmds).list_range(repo, ZERO_SHA, shas[-1]) == shas

    def test_unknown_head_fails(self, linear_repo, git_cmds):
        repo, shas = linear_repo
        result = git_cmds.commit_range(repo, shas[0], "f" * 40, 0, 10)
        assert not result.success

    def test_ancestry(self, linear_repo, git_cmds):
        repo, (a, b, c, d) = linear_repo
        assert git_cmds.is_ancestor(repo, a, d)
        assert not git_cmds.is_ancestor(repo, d, a)


class TestMetadataScript:
    def test_fetch_metadata(self, linear_repo, git_cmds):
        repo, shas = linear_repo
        infos, err = CommitMetadataFetcher(git_cmds).fetch(repo, shas)
        assert err is None
        info = infos[shas[1]]
        assert info.author_name == "Jane Doe"
        assert info.author_email == "jane@example.com"
        assert info.committer_name == "Bot"
        assert info.message.startswith("commit B")
        assert "Signed-off-by: Jane Doe <jane@example.com>" in info.message

    def test_bisection_with_missing_object(self, linear_repo, git_cmds):
        repo, shas = linear_repo
        missing = "e" * 40
        infos, err = CommitMetadataFetcher(git_cmds).fetch(repo, shas[:2] + [missing] + shas[2:])
        assert set(infos) == set(shas)
        assert err is not None

    def test_fields_have_no_trailing_newline(self, linear_repo, git_cmds):
        """身份字段与 git 原值完全一致，消息只保留一个结尾换行"""
        repo, shas = linear_repo
        infos, err = CommitMetadataFetcher(git_cmds).fetch(repo, shas[:1])
        assert err is None
        info = infos[shas[0]]
        assert (info.author_name, info.author_email) == ("Jane Doe", "jane@example.com")
        assert (info.committer_name, info.committer_email) == ("Bot", "bot@example.com")
        assert info.message == "commit A\n\nSigned-off-by: Jane Doe <jane@example.com>\n"

    def test_fetched_identity_is_hidden(self, linear_repo, git_cmds):
        repo, shas = linear_repo
        digest = hashlib.sha1(b"jane@example.com").hexdigest()
        hider = IdentityHider([digest])
        infos, _ = CommitMetadataFetcher(git_cmds).fetch(repo, shas[:1])
        assert hider(infos[shas[0]].author_email) == f"anon-{digest}"
