"""
State shared by the merge request workflow nodes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, TypedDict

from mrpilot.clients.gitlab import GitLabClient
from mrpilot.clients.glab import GlabCli
from mrpilot.clients.jira import JiraClient, JiraIssue
from mrpilot.config import Settings
from mrpilot.git_ops import GitExecutor
from mrpilot.labels import LabelDecision
from mrpilot.models.diff import ChangedFile
from mrpilot.models.report import MergeRequestDescriptionInfo


@dataclass
class MrOptions:
    """Command-line choices for create-mr / update-mr."""

    target: Optional[str] = None
    reviewer: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    ticket: Optional[str] = None
    draft: bool = True
    review: bool = True
    rebase: bool = True
    yes: bool = False
    auto_fill: bool = False
    label_strategy: str = "heuristic"
    keep_task_files: bool = False

    @property
    def target_explicit(self) -> bool:
        return bool(self.target)


class AgentState(TypedDict, total=False):
    """State container for the MR workflows.

    Using TypedDict for LangGraph compatibility. total=False means all fields
    are optional.
    """

    # Wiring
    mode: Literal["create", "update"]
    settings: Settings
    options: MrOptions
    git: GitExecutor
    gitlab: Optional[GitLabClient]
    glab: Optional[GlabCli]
    jira: Optional[JiraClient]
    llm: Any

    # Branch and ticket
    branch: str
    branch_ticket: Optional[str]  # ticket as found in the branch name
    ticket: str
    stale_remote_branch: Optional[str]  # old remote branch left behind by a rename
    issue: Optional[JiraIssue]
    title: str

    # Labels and target
    target_branch: str
    changed_files: List[ChangedFile]
    label_decision: LabelDecision
    labels: List[str]

    # Description and MR
    description_info: MergeRequestDescriptionInfo
    description: str
    merge_request: Dict[str, Any]
    review_submitted: bool

    # Global state
    errors: List[Dict[str, Any]]
    warnings: List[Dict[str, Any]]
