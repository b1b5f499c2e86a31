"""Ticket validation against Jira, branch renaming and the MR title."""

from typing import Optional

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.clients.jira import JiraIssue
from mrpilot.commit import parse_commit_subject
from mrpilot.errors import ValidationError
from mrpilot.git_ops import GitExecutor
from mrpilot.nodes.common import record_error, record_warning
from mrpilot.tickets import feature_branch, validate_ticket

DEFAULT_TITLE_TYPE = "feat"


def build_title(ticket: str, issue: Optional[JiraIssue], last_subject: str) -> str:
    """``type(TICKET): <Jira summary>``; the type comes from the last commit, else ``feat``."""
    parsed = parse_commit_subject(last_subject)
    commit_type = parsed[0] if parsed else DEFAULT_TITLE_TYPE
    if issue is not None and issue.summary:
        return f"{commit_type}({ticket}): {issue.summary}"
    if parsed:
        return f"{commit_type}({ticket}): {parsed[2]}"
    return last_subject.strip() or f"{commit_type}({ticket})"


def rename_to_ticket(git: GitExecutor, branch: str, ticket: str) -> str:
    """Move ``branch`` to ``feature/<ticket>`` locally and on the remote; returns the new name."""
    new_branch = feature_branch(ticket)
    had_remote = git.has_remote_branch(branch)
    git.rename_branch(branch, new_branch)
    git.push(new_branch, set_upstream=True)
    if had_remote:
        git.delete_remote_branch(branch)
    logger.success(f"Renamed branch {branch} -> {new_branch}")
    return new_branch


async def ticket_node(state: AgentState) -> AgentState:
    logger.info("Executing Ticket Node")
    try:
        git = state["git"]
        ticket = state["ticket"]
        if not validate_ticket(ticket):
            raise ValidationError(f"Invalid ticket format: {ticket}", hint="Expected something like FE-1234")

        issue = None
        jira = state.get("jira")
        if jira is None:
            record_warning(state, "ticket_node", "Jira is not configured, the ticket was not verified")
        else:
            # JiraAuthError propagates: an expired token stops the flow here.
            issue = jira.fetch_issue(ticket)
            if issue is None:
                raise ValidationError(
                    f"Jira ticket {ticket} does not exist",
                    hint="Pass the right ticket with --ticket=FE-1234; the branch is renamed to match",
                )
            logger.info(f"{ticket}: {issue.summary} ({issue.issue_type})")
        state["issue"] = issue

        if state.get("branch_ticket") != ticket:
            state["branch"] = rename_to_ticket(git, state["branch"], ticket)
            state["branch_ticket"] = ticket

        state["title"] = build_title(ticket, issue, git.last_commit_subject())
        logger.info(f"Merge request title: {state['title']}")

    except Exception as e:
        record_error(state, "ticket_node", e)

    return state
