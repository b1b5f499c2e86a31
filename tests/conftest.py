"""Shared fixtures: a working repository pushed to a bare origin."""

from pathlib import Path

import pytest
from git import Repo

from mrpilot.git_ops import GitExecutor


def commit_file(repo: Repo, name: str, content: str, message: str):
    """Write ``name`` in the work tree and commit it."""
    path = Path(repo.working_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    return repo.index.commit(message)


@pytest.fixture
def origin_repo(tmp_path):
    """Bare repository acting as the GitLab remote."""
    return Repo.init(tmp_path / "origin.git", bare=True)


@pytest.fixture
def work_repo(tmp_path, origin_repo):
    """Repository on ``main`` with one commit, pushed to origin."""
    repo = Repo.init(tmp_path / "work")
    with repo.config_writer() as config:
        config.set_value("user", "name", "Dev Eloper")
        config.set_value("user", "email", "dev@example.com")
    commit_file(repo, "src/app.ts", "export const app = 1;\n", "Initial commit")
    repo.git.branch("-M", "main")
    repo.create_remote("origin", origin_repo.git_dir)
    repo.git.push("-u", "origin", "main")
    return repo


@pytest.fixture
def git(work_repo):
    return GitExecutor(work_repo.working_dir)


@pytest.fixture
def make_commit():
    return commit_file
