"""Tests for the git executor against real repositories."""

from pathlib import Path

import pytest

from mrpilot.errors import GitConflictError, GitOperationError
from mrpilot.models.diff import FileStatus


def test_branch_and_status(git, work_repo):
    assert git.current_branch() == "main"
    assert git.is_clean()

    (Path(work_repo.working_dir) / "src" / "app.ts").write_text("export const app = 2;\n")
    status = git.status_porcelain()
    assert status == [" M src/app.ts"]
    assert not git.is_clean()


def test_remote_branches(git):
    assert git.has_remote_branch("main")
    assert not git.has_remote_branch("feature/FE-1")
    assert git.remote_url().endswith("origin.git")


def test_failed_command_raises_git_operation_error(git):
    with pytest.raises(GitOperationError) as excinfo:
        git.checkout("does-not-exist")
    assert "checkout does-not-exist" in str(excinfo.value)


def test_changed_files_against_target(git, work_repo, make_commit):
    git.checkout("feature/FE-1", create=True)
    make_commit(work_repo, "src/app.ts", "export const app = 2;\n", "update app")
    make_commit(work_repo, "src/button.tsx", "export const Button = null;\n", "add button")

    files = sorted(git.changed_files("main"), key=lambda f: f.path)
    assert [(f.path, f.status) for f in files] == [
        ("src/app.ts", FileStatus.MODIFIED),
        ("src/button.tsx", FileStatus.ADDED),
    ]
    assert "+export const app = 2;" in git.diff_file("main", "src/app.ts")
    assert git.show_file("origin/main", "src/app.ts") == "export const app = 1;"
    assert git.show_file("origin/main", "src/button.tsx") is None


def test_push_and_force_push_detection(git, work_repo, make_commit):
    git.checkout("feature/FE-2", create=True)
    make_commit(work_repo, "src/a.ts", "a\n", "feat(FE-2): add a")
    git.push("feature/FE-2", set_upstream=True)

    assert git.has_remote_branch("feature/FE-2")
    assert not git.needs_force_push("feature/FE-2")
    assert git.unpushed_commits("feature/FE-2") == []

    git.run("commit", "--amend", "-m", "feat(FE-2): add a file")
    assert git.needs_force_push("feature/FE-2")
    git.push("feature/FE-2", force_with_lease=True)
    assert not git.needs_force_push("feature/FE-2")


def test_notes_round_trip(git):
    assert git.read_note("start-task") is None
    git.add_note("start-task", '{"ticket": "FE-3"}')
    assert git.read_note("start-task") == '{"ticket": "FE-3"}'


def test_rebase_conflict_lists_files(git, work_repo, make_commit):
    git.checkout("feature/FE-4", create=True)
    make_commit(work_repo, "src/app.ts", "export const app = 'feature';\n", "feature change")

    git.checkout("main")
    make_commit(work_repo, "src/app.ts", "export const app = 'main';\n", "main change")
    git.push("main")
    git.checkout("feature/FE-4")

    with pytest.raises(GitConflictError) as excinfo:
        git.rebase("origin/main")
    assert excinfo.value.files == ["src/app.ts"]
    assert git.rebase_in_progress()
    git.run("rebase", "--abort")
    assert not git.rebase_in_progress()


def test_merge_base_and_ancestry(git, work_repo, make_commit):
    base = git.head_sha()
    git.checkout("feature/FE-5", create=True)
    make_commit(work_repo, "src/b.ts", "b\n", "add b")

    assert git.merge_base("origin/main") == base
    assert git.is_ancestor("origin/main")
    assert not git.is_ancestor("HEAD", "origin/main")
    assert git.last_commit_subject() == "add b"
    assert git.user_name() == "Dev Eloper"
