"""Tests for source commit provenance."""

import tempfile
from pathlib import Path

from git import Actor, Repo

from pacplan.utils.git_ops import find_repo, get_source_commit


def _commit_all(repo: Repo, message: str = "initial") -> str:
    repo.git.add(A=True)
    author = Actor("Test", "test@example.com")
    return repo.index.commit(message, author=author, committer=author).hexsha


def test_outside_a_repository():
    with tempfile.TemporaryDirectory() as tmpdir:
        assert find_repo(tmpdir) is None
        assert get_source_commit(tmpdir) == ""


def test_repository_without_commits():
    with tempfile.TemporaryDirectory() as tmpdir:
        Repo.init(tmpdir)
        assert get_source_commit(tmpdir) == ""


def test_definitions_folder_below_repository_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        repo = Repo.init(tmpdir)
        definitions = Path(tmpdir) / "Definitions"
        definitions.mkdir()
        (definitions / "global-settings.yaml").write_text("pacOwnerId: o\n")
        sha = _commit_all(repo)

        assert get_source_commit(definitions) == sha


def test_uncommitted_changes_are_flagged():
    with tempfile.TemporaryDirectory() as tmpdir:
        repo = Repo.init(tmpdir)
        definitions = Path(tmpdir) / "Definitions"
        definitions.mkdir()
        (definitions / "global-settings.yaml").write_text("pacOwnerId: o\n")
        sha = _commit_all(repo)

        (definitions / "global-settings.yaml").write_text("pacOwnerId: changed\n")

        assert get_source_commit(definitions) == f"{sha}-dirty"
