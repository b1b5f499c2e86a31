"""Error kinds raised by mrpilot.

Each class maps to one failure category so callers and tests can tell them
apart without parsing console text.
"""

from typing import List, Optional


class MrPilotError(Exception):
    """Base class for every error mrpilot raises on purpose."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ValidationError(MrPilotError):
    """Bad input or a repository state the workflow refuses to continue from."""


class ConfigError(MrPilotError):
    """A required token or configuration file is missing or unreadable."""


class ApiError(MrPilotError):
    """Non-2xx response from an external HTTP service."""

    def __init__(self, service: str, status: Optional[int], message: str, hint: Optional[str] = None):
        super().__init__(f"{service} API error ({status}): {message}", hint=hint)
        self.service = service
        self.status = status


class JiraAuthError(ApiError):
    """Jira rejected the credentials (401/403)."""

    def __init__(self, status: int):
        super().__init__(
            "Jira",
            status,
            "Jira API Token expired or invalid, please contact the administrator",
            hint="Refresh JIRA_API_TOKEN in .cursor/.env.local or ask the administrator for a new token",
        )


class GitOperationError(MrPilotError):
    """A git command exited with a non-zero status."""

    def __init__(self, command: str, stderr: str = "", hint: Optional[str] = None):
        message = f"git {command} failed"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message, hint=hint)
        self.command = command
        self.stderr = stderr


class GitConflictError(GitOperationError):
    """A rebase stopped on conflicts that need manual resolution."""

    def __init__(self, files: List[str]):
        super().__init__(
            "rebase",
            "conflicts in: " + ", ".join(files),
            hint=(
                "Resolve the conflicts manually, then run `git add <file>` and "
                "`git rebase --continue` (or `git rebase --abort` to give up)"
            ),
        )
        self.files = files
