"""Thin wrapper over GitPython for the git commands the workflows need."""

import os
from typing import List, Optional

from git import Repo
from git.exc import GitCommandError
from loguru import logger

from mrpilot.errors import GitConflictError, GitOperationError
from mrpilot.models.diff import ChangedFile, FileStatus

CONFLICT_CODES = {"UU", "AA", "DD", "AU", "UA", "DU", "UD"}


class GitExecutor:
    """Runs git commands against one working tree.

    Every command goes through ``repo.git`` so that a non-zero exit surfaces as
    :class:`GitOperationError` carrying git's stderr.
    """

    def __init__(self, repo_path: str = ".", remote: str = "origin"):
        self.repo = Repo(repo_path, search_parent_directories=True)
        self.remote = remote

    @property
    def root(self) -> str:
        return self.repo.working_tree_dir

    def run(self, command: str, *args: str) -> str:
        """Run ``git <command> <args>`` and return stdout without trailing whitespace."""
        logger.debug(f"git {command} {' '.join(args)}")
        try:
            return getattr(self.repo.git, command.replace("-", "_"))(*args).rstrip()
        except GitCommandError as e:
            raise GitOperationError(f"{command} {' '.join(args)}".strip(), str(e.stderr or "")) from e

    # Working tree state

    def status_porcelain(self) -> List[str]:
        output = self.run("status", "--porcelain")
        return [line for line in output.splitlines() if line.strip()]

    def is_clean(self) -> bool:
        return not self.status_porcelain()

    def current_branch(self) -> str:
        return self.run("rev-parse", "--abbrev-ref", "HEAD")

    def head_sha(self) -> str:
        return self.run("rev-parse", "HEAD")

    def last_commit_subject(self) -> str:
        return self.run("log", "-1", "--pretty=%s")

    def user_name(self) -> Optional[str]:
        return self.config_get("user.name")

    def config_get(self, key: str) -> Optional[str]:
        try:
            value = self.run("config", "--get", key)
        except GitOperationError:
            return None
        return value or None

    def remote_url(self) -> str:
        return self.run("remote", "get-url", self.remote)

    def rebase_in_progress(self) -> bool:
        git_dir = self.repo.git_dir
        return os.path.isdir(os.path.join(git_dir, "rebase-merge")) or os.path.isdir(
            os.path.join(git_dir, "rebase-apply")
        )

    def conflicted_files(self) -> List[str]:
        files = []
        for line in self.status_porcelain():
            if line[:2] in CONFLICT_CODES:
                files.append(line[3:].strip())
        return files

    # Branches and remotes

    def branch_exists(self, branch: str) -> bool:
        return bool(self.run("branch", "--list", branch))

    def has_remote_branch(self, branch: str) -> bool:
        return bool(self.run("ls-remote", "--heads", self.remote, branch))

    def checkout(self, branch: str, create: bool = False):
        if create:
            self.run("checkout", "-b", branch)
        else:
            self.run("checkout", branch)

    def pull(self, branch: str):
        self.run("pull", self.remote, branch)

    def fetch(self, branch: Optional[str] = None):
        if branch:
            self.run("fetch", self.remote, branch)
        else:
            self.run("fetch", self.remote)

    def rebase(self, onto: str):
        """Rebase HEAD onto ``onto``; raise GitConflictError when it stops on conflicts."""
        try:
            self.run("rebase", onto)
        except GitOperationError:
            conflicts = self.conflicted_files()
            if conflicts:
                raise GitConflictError(conflicts)
            raise

    def is_ancestor(self, ancestor: str, descendant: str = "HEAD") -> bool:
        try:
            self.run("merge-base", "--is-ancestor", ancestor, descendant)
        except GitOperationError:
            return False
        return True

    def merge_base(self, a: str, b: str = "HEAD") -> Optional[str]:
        try:
            return self.run("merge-base", a, b) or None
        except GitOperationError:
            return None

    def needs_force_push(self, branch: str) -> bool:
        """True when the remote branch exists but is no longer an ancestor of HEAD."""
        if not self.has_remote_branch(branch):
            return False
        return not self.is_ancestor(f"{self.remote}/{branch}")

    def unpushed_commits(self, branch: str) -> List[str]:
        try:
            output = self.run("log", f"{self.remote}/{branch}..HEAD", "--oneline")
        except GitOperationError:
            output = self.run("log", "--oneline")
        return [line for line in output.splitlines() if line.strip()]

    def push(self, branch: str, set_upstream: bool = False, force_with_lease: bool = False):
        args = []
        if set_upstream:
            args.append("-u")
        if force_with_lease:
            args.append("--force-with-lease")
        self.run("push", *args, self.remote, branch)

    def rename_branch(self, old: str, new: str):
        self.run("branch", "-m", old, new)

    def delete_remote_branch(self, branch: str):
        self.run("push", self.remote, "--delete", branch)

    # Diffs

    def changed_files(self, target: str) -> List[ChangedFile]:
        """Files changed on this branch relative to ``origin/<target>``."""
        output = self.run("diff", "--name-status", f"{self.remote}/{target}...HEAD")
        files = []
        for line in output.splitlines():
            parts = line.split("\t")
            if len(parts) < 2:
                continue
            code = parts[0][:1]
            path = parts[2] if code == "R" and len(parts) > 2 else parts[1]
            files.append(ChangedFile(path=path, status=FileStatus.from_code(code)))
        return files

    def diff_file(self, target: str, path: str) -> str:
        return self.run("diff", f"{self.remote}/{target}...HEAD", "--", path)

    def diff_stat(self, target: str) -> str:
        return self.run("diff", "--stat", f"{self.remote}/{target}...HEAD")

    def diff_text(self, target: str) -> str:
        return self.run("diff", f"{self.remote}/{target}...HEAD")

    def show_file(self, ref: str, path: str) -> Optional[str]:
        """Content of ``path`` at ``ref``, or None when the file does not exist there."""
        try:
            return self.repo.git.show(f"{ref}:{path}")
        except GitCommandError:
            return None

    def read_file(self, path: str) -> Optional[str]:
        full_path = os.path.join(self.root, path)
        if not os.path.isfile(full_path):
            return None
        with open(full_path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    # Notes

    def read_note(self, ref: str, commit: str = "HEAD") -> Optional[str]:
        try:
            return self.run("notes", f"--ref={ref}", "show", commit) or None
        except GitOperationError:
            return None

    def add_note(self, ref: str, content: str, commit: str = "HEAD"):
        self.run("notes", f"--ref={ref}", "add", "-f", "-m", content, commit)

    # Commits

    def add_all(self):
        self.run("add", ".")

    def commit(self, message: str):
        self.run("commit", "-m", message)
