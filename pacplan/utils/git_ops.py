"""Git operations — provenance of the definitions folder."""

from __future__ import annotations

import logging
from pathlib import Path

from git import InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)


def find_repo(path: str | Path) -> Repo | None:
    """Return the repository containing a path, or None when it is not in one."""
    try:
        return Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None


def get_source_commit(definitions_folder: str | Path) -> str:
    """Return the HEAD commit of the definitions folder, or empty string.

    A repository without commits also yields an empty string. A dirty work
    tree is flagged with a ``-dirty`` suffix since the plan then reflects
    uncommitted files.
    """
    repo = find_repo(definitions_folder)
    if repo is None:
        logger.debug("%s is not inside a git repository", definitions_folder)
        return ""
    try:
        sha = repo.head.commit.hexsha
    except ValueError:
        logger.debug("Repository at %s has no commits", repo.working_dir)
        return ""
    if repo.is_dirty(untracked_files=True, path=str(Path(definitions_folder).resolve())):
        return f"{sha}-dirty"
    return sha
