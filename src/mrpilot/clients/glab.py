"""Alternate GitLab transport through the ``glab`` CLI, used when no API token is configured."""

import json
import shutil
import subprocess
from typing import Any, Dict, List, Optional

from loguru import logger

from mrpilot.errors import ApiError


class GlabCli:
    """Runs ``glab`` commands; mirrors the subset of GitLabClient the MR flow needs."""

    def __init__(self, hostname: str, cwd: Optional[str] = None):
        self.hostname = hostname
        self.cwd = cwd

    def available(self) -> bool:
        return shutil.which("glab") is not None

    def _run(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        logger.debug(f"glab {' '.join(args)}")
        result = subprocess.run(
            ["glab", *args],
            cwd=self.cwd,
            capture_output=True,
            text=True,
        )
        if check and result.returncode != 0:
            raise ApiError("glab", result.returncode, (result.stderr or result.stdout).strip())
        return result

    def is_authenticated(self) -> bool:
        if not self.available():
            return False
        return self._run(["auth", "status", "--hostname", self.hostname], check=False).returncode == 0

    def find_merge_request(self, source_branch: str) -> Optional[Dict[str, Any]]:
        result = self._run(
            ["mr", "list", "--source-branch", source_branch, "--output", "json"], check=False
        )
        if result.returncode != 0 or not result.stdout.strip():
            return None
        try:
            merge_requests = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("glab returned non-JSON output for `mr list`")
            return None
        return merge_requests[0] if merge_requests else None

    def create_merge_request(
        self,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
        draft: bool = True,
        assignee: Optional[str] = None,
        reviewer: Optional[str] = None,
        labels: Optional[List[str]] = None,
        remove_source_branch: bool = True,
    ) -> str:
        """Create the MR and return glab's stdout (which contains the MR URL)."""
        args = [
            "mr",
            "create",
            "--source-branch",
            source_branch,
            "--target-branch",
            target_branch,
            "--title",
            f"Draft: {title}" if draft and not title.startswith("Draft:") else title,
            "--description",
            description,
            "--yes",
        ]
        if draft:
            args.append("--draft")
        if assignee:
            args.extend(["--assignee", assignee.lstrip("@")])
        if reviewer:
            args.extend(["--reviewer", reviewer.lstrip("@")])
        if labels:
            args.extend(["--label", ",".join(labels)])
        if remove_source_branch:
            args.append("--remove-source-branch")
        return self._run(args).stdout.strip()
