"""Conventional commit validation and the agent commit flow."""

import re
import subprocess
from typing import List, Optional, Tuple

from loguru import logger

from mrpilot.errors import ValidationError
from mrpilot.git_ops import GitExecutor
from mrpilot.task import copy_start_task_note
from mrpilot.tickets import validate_ticket

CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")
MAX_MESSAGE_LENGTH = 64
COMMIT_TYPES = ("feat", "fix", "update", "refactor", "docs", "style", "test", "chore", "perf", "build", "ci", "revert")
LINT_COMMAND = ["pnpm", "run", "format-and-lint"]
SUBJECT_PATTERN = re.compile(r"^(\w+)\(([A-Z0-9]+-[0-9]+)\):\s*(.+)$")


def commit_message_problems(message: Optional[str]) -> List[str]:
    """Every rule the message breaks; an empty list means it is acceptable."""
    if not message:
        return ["message is empty"]
    problems = []
    if len(message) > MAX_MESSAGE_LENGTH:
        problems.append(f"message is {len(message)} characters (max {MAX_MESSAGE_LENGTH})")
    if message != message.lower():
        problems.append("message must be lowercase")
    if CJK_PATTERN.search(message):
        problems.append("message must not contain Chinese characters")
    return problems


def validate_commit_message(message: Optional[str]) -> bool:
    return not commit_message_problems(message)


def format_commit_message(commit_type: str, ticket: str, message: str) -> str:
    return f"{commit_type}({ticket}): {message}"


def parse_commit_subject(subject: Optional[str]) -> Optional[Tuple[str, str, str]]:
    """``"fix(FE-1): x"`` -> ``("fix", "FE-1", "x")``; None for free-form subjects."""
    match = SUBJECT_PATTERN.match((subject or "").strip())
    if not match:
        return None
    return match.group(1), match.group(2), match.group(3).strip()


def check_commit_args(commit_type: str, ticket: str, message: str) -> None:
    """Raise ValidationError describing the first bad argument."""
    if commit_type not in COMMIT_TYPES:
        raise ValidationError(
            f"Unknown commit type: {commit_type}", hint=f"Use one of: {', '.join(COMMIT_TYPES)}"
        )
    if not validate_ticket(ticket):
        raise ValidationError(f"Invalid ticket format: {ticket}", hint="Expected something like FE-1234")
    problems = commit_message_problems(message)
    if problems:
        raise ValidationError(
            f"Invalid commit message: {'; '.join(problems)}",
            hint=f"Keep it lowercase English, at most {MAX_MESSAGE_LENGTH} characters",
        )


def run_lint(cwd: str) -> None:
    logger.info("Running format-and-lint")
    try:
        result = subprocess.run(LINT_COMMAND, cwd=cwd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ValidationError("pnpm is not installed", hint="Install pnpm or pass --skip-lint") from e
    if result.returncode != 0:
        output = (result.stdout + result.stderr).strip()
        raise ValidationError(
            "format-and-lint failed",
            hint=output[-2000:] or "Fix the lint errors and commit again (or pass --skip-lint)",
        )


def agent_commit(
    git: GitExecutor,
    commit_type: str,
    ticket: str,
    message: str,
    skip_lint: bool = False,
    auto_push: bool = False,
    base_branch: str = "main",
) -> str:
    """Validate, lint, stage everything and commit; optionally push. Returns the commit message."""
    check_commit_args(commit_type, ticket, message)
    if not skip_lint:
        run_lint(git.root)

    full_message = format_commit_message(commit_type, ticket, message)
    git.add_all()
    git.commit(full_message)
    logger.success(f"Committed: {full_message}")
    copy_start_task_note(git, base_branch)

    if auto_push:
        branch = git.current_branch()
        has_remote = git.has_remote_branch(branch)
        git.push(branch, set_upstream=not has_remote)
        logger.info(f"Pushed {branch}")
    return full_message
