"""Start-task metadata: the marker that a branch was started by the agent workflow."""

import json
from datetime import datetime
from typing import List, Optional

from loguru import logger
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from mrpilot.clients.jira import JiraClient
from mrpilot.errors import ValidationError
from mrpilot.git_ops import GitExecutor
from mrpilot.models.report import PLACEHOLDER, DocumentModel, MergeRequestDescriptionInfo
from mrpilot.report import storage
from mrpilot.tickets import feature_branch, validate_ticket

NOTES_REF = "start-task"


class StartTaskInfo(DocumentModel):
    ticket: str
    summary: str = ""
    issue_type: str = ""
    source_branch: str = "main"
    branch: str = ""
    description: str = ""
    suggested_steps: List[str] = Field(default_factory=list)
    plan_confirmed: bool = False
    result_verified: bool = False
    created_at: str = ""


def suggested_steps(issue_type: str) -> List[str]:
    kind = (issue_type or "").lower()
    if any(word in kind for word in ("feature", "story", "task")):
        return [
            "Read the requirement and list the acceptance criteria",
            "Identify the components and pages to change",
            "Implement the feature behind the right UI variant checks",
            "Add or update tests",
            "Verify in the browser for every affected variant",
        ]
    if any(word in kind for word in ("bug", "fix")):
        return [
            "Reproduce the bug and note the exact steps",
            "Find the root cause and the change that introduced it",
            "Fix it with the smallest safe change",
            "Add a regression test",
            "Check related screens for the same problem",
        ]
    return [
        "Read the ticket and clarify the goal",
        "Plan the change and its scope",
        "Implement and test",
    ]


def _parse_note(content: Optional[str]) -> Optional[StartTaskInfo]:
    if not content:
        return None
    try:
        return StartTaskInfo.model_validate(json.loads(content))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        logger.debug(f"Ignoring unreadable start-task note: {e}")
        return None


def read_note_info(git: GitExecutor, base_branch: str = "main") -> Optional[StartTaskInfo]:
    """Start-task note on HEAD, HEAD^ or the merge-base with ``base_branch``, in that order."""
    refs = ["HEAD", "HEAD^"]
    base = git.merge_base(f"{git.remote}/{base_branch}") or git.merge_base(base_branch)
    if base:
        refs.append(base)
    for ref in refs:
        info = _parse_note(git.read_note(NOTES_REF, ref))
        if info is not None:
            return info
    return None


def read_start_task_info(git: GitExecutor, ticket: Optional[str] = None, base_branch: str = "main") -> Optional[StartTaskInfo]:
    """Notes first, then ``.cursor/tmp/<ticket>/start-task-info.json``."""
    info = read_note_info(git, base_branch)
    if info is not None:
        return info
    if not ticket:
        return None
    try:
        data = storage.read_json_if_exists(storage.task_dir(git.root, ticket) / storage.START_TASK_INFO_FILE)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Could not read start-task info for {ticket}: {e}")
        return None
    if data is None:
        return None
    try:
        return StartTaskInfo.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Ignoring malformed start-task info for {ticket}: {e}")
        return None


def has_task_origin(info: Optional[StartTaskInfo], ticket: Optional[str], project_root: str) -> bool:
    """True when the branch was started by start-task for this ticket and has a written plan or report."""
    if info is None or not ticket or info.ticket != ticket:
        return False
    try:
        description_info = storage.load_description_info(project_root, ticket)
    except (ValueError, PydanticValidationError) as e:
        logger.warning(f"Could not read description info for {ticket}: {e}")
        return False
    if description_info is None:
        return False
    report = description_info.report
    return description_info.plan.has_content or (report is not None and report.has_content)


def save_start_task_info(git: GitExecutor, info: StartTaskInfo) -> None:
    """Persist the info as a working file and as a note on HEAD."""
    if not info.created_at:
        info.created_at = datetime.now().isoformat(timespec="seconds")
    storage.write_json_file(storage.ensure_task_dir(git.root, info.ticket) / storage.START_TASK_INFO_FILE, info.to_json())
    git.add_note(NOTES_REF, json.dumps(info.to_json(), ensure_ascii=False))


def copy_start_task_note(git: GitExecutor, base_branch: str = "main") -> bool:
    """Carry the start-task note from the parent (or merge-base) onto a freshly created HEAD."""
    if git.read_note(NOTES_REF, "HEAD"):
        return False
    content = git.read_note(NOTES_REF, "HEAD^")
    if not content:
        base = git.merge_base(f"{git.remote}/{base_branch}") or git.merge_base(base_branch)
        content = git.read_note(NOTES_REF, base) if base else None
    if not content:
        return False
    git.add_note(NOTES_REF, content)
    logger.debug("Copied start-task note onto the new commit")
    return True


def start_task(git: GitExecutor, jira: JiraClient, ticket: str, source_branch: str = "main") -> StartTaskInfo:
    """Branch ``feature/<ticket>`` off a fresh ``source_branch`` and record the Jira issue."""
    if not validate_ticket(ticket):
        raise ValidationError(f"Invalid ticket format: {ticket}", hint="Expected something like FE-1234")
    if not git.is_clean():
        raise ValidationError("Working tree has uncommitted changes", hint="Commit or stash them before starting a task")

    issue = jira.fetch_issue(ticket)
    if issue is None:
        raise ValidationError(f"Jira ticket {ticket} does not exist")

    git.checkout(source_branch)
    git.pull(source_branch)
    branch = feature_branch(ticket)
    git.checkout(branch, create=not git.branch_exists(branch))
    logger.info(f"On {branch} (from {source_branch})")

    info = StartTaskInfo(
        ticket=ticket,
        summary=issue.summary,
        issue_type=issue.issue_type,
        source_branch=source_branch,
        branch=branch,
        description=issue.description_text,
        suggested_steps=suggested_steps(issue.issue_type),
    )
    save_start_task_info(git, info)
    if storage.load_description_info(git.root, ticket) is None:
        storage.save_description_info(git.root, MergeRequestDescriptionInfo.default(ticket))
    logger.success(f"Started {ticket}: {issue.summary}")
    return info


def set_gate(git: GitExecutor, ticket: str, plan_confirmed: Optional[bool] = None, result_verified: Optional[bool] = None) -> StartTaskInfo:
    """Flip the plan-confirmed / result-verified gates on the ticket's start-task info."""
    info = read_start_task_info(git, ticket)
    if info is None or info.ticket != ticket:
        raise ValidationError(f"No start-task info for {ticket}", hint=f"Run `mrpilot start-task --ticket {ticket}` first")
    if plan_confirmed is not None:
        info.plan_confirmed = plan_confirmed
    if result_verified is not None:
        info.result_verified = result_verified
    save_start_task_info(git, info)
    return info


def description_info_gaps(info: Optional[MergeRequestDescriptionInfo]) -> List[str]:
    """What is still missing before the description info can back a merge request."""
    if info is None:
        return ["merge-request-description-info.json does not exist"]
    gaps = []
    if not info.plan.has_content:
        gaps.append("plan is empty (target / scope / test)")
    report = info.report
    if report is None:
        gaps.append("report is missing")
        return gaps
    if not report.change_summary:
        gaps.append("report.changeSummary is empty")
    if not report.changes.files:
        gaps.append("report.changes has no files")
    pending = [risk.path for risk in report.risk_assessment.files if risk.reason == PLACEHOLDER]
    if pending:
        gaps.append(f"risk assessment pending for: {', '.join(pending)}")
    if report.is_bug:
        if not report.bug.impact_scope:
            gaps.append("report.bug.impactScope is empty")
        if not report.bug.root_cause:
            gaps.append("report.bug.rootCause is empty")
    return gaps
