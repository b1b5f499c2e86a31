"""Tests for the Rebase, Push and Ticket nodes against a local origin."""

from unittest.mock import MagicMock

import pytest

from mrpilot.agents.state import MrOptions
from mrpilot.clients.jira import JiraIssue
from mrpilot.errors import JiraAuthError
from mrpilot.nodes.push_node import push_node
from mrpilot.nodes.rebase_node import rebase_node
from mrpilot.nodes.ticket_node import build_title, ticket_node


@pytest.fixture
def diverged(git, work_repo, make_commit):
    """feature/FE-1 with one commit while main moved on upstream."""
    git.checkout("feature/FE-1", create=True)
    make_commit(work_repo, "src/banner.ts", "export const banner = true;\n", "feat(FE-1): add banner")
    git.checkout("main")
    make_commit(work_repo, "README.md", "# app\n", "docs: readme")
    git.push("main")
    git.checkout("feature/FE-1")
    return git


@pytest.mark.asyncio
async def test_rebase_onto_moved_target(make_state, diverged):
    state = await rebase_node(make_state())

    assert state["errors"] == []
    assert diverged.is_ancestor("origin/main")
    assert diverged.last_commit_subject() == "feat(FE-1): add banner"


@pytest.mark.asyncio
async def test_rebase_can_be_skipped(make_state, diverged):
    state = await rebase_node(make_state(options=MrOptions(rebase=False)))

    assert state["errors"] == []
    assert not diverged.is_ancestor("origin/main")


@pytest.mark.asyncio
async def test_push_new_then_rewritten_branch(make_state, diverged, work_repo):
    state = await push_node(make_state(branch="feature/FE-1"))
    assert state["errors"] == []
    assert diverged.has_remote_branch("feature/FE-1")

    work_repo.git.commit("--amend", "-m", "feat(FE-1): add banner v2")
    assert diverged.needs_force_push("feature/FE-1")

    state = await push_node(make_state(branch="feature/FE-1"))
    assert state["errors"] == []
    diverged.fetch("feature/FE-1")
    assert diverged.unpushed_commits("feature/FE-1") == []


def test_build_title():
    issue = JiraIssue(key="FE-1", summary="Login banner", issue_type="Story")

    assert build_title("FE-1", issue, "fix(FE-1): typo") == "fix(FE-1): Login banner"
    assert build_title("FE-1", None, "chore(FE-1): bump deps") == "chore(FE-1): bump deps"
    assert build_title("FE-1", issue, "wip") == "feat(FE-1): Login banner"
    assert build_title("FE-1", None, "") == "feat(FE-1)"


@pytest.mark.asyncio
async def test_ticket_without_jira_warns(make_state, diverged):
    state = await ticket_node(make_state(branch="feature/FE-1", branch_ticket="FE-1", ticket="FE-1"))

    assert state["errors"] == []
    assert state["issue"] is None
    assert state["title"] == "feat(FE-1): add banner"
    assert "Jira is not configured" in state["warnings"][0]["warning"]


@pytest.mark.asyncio
async def test_ticket_renames_branch(make_state, diverged):
    jira = MagicMock()
    jira.fetch_issue.return_value = JiraIssue(key="FE-7", summary="Login banner", issue_type="Story")
    diverged.push("feature/FE-1", set_upstream=True)

    state = await ticket_node(make_state(branch="feature/FE-1", branch_ticket="FE-1", ticket="FE-7", jira=jira))

    assert state["errors"] == []
    assert state["branch"] == "feature/FE-7"
    assert diverged.current_branch() == "feature/FE-7"
    assert diverged.has_remote_branch("feature/FE-7")
    assert not diverged.has_remote_branch("feature/FE-1")
    assert state["title"] == "feat(FE-7): Login banner"


@pytest.mark.asyncio
async def test_ticket_missing_in_jira_stops(make_state, diverged):
    jira = MagicMock()
    jira.fetch_issue.return_value = None

    state = await ticket_node(make_state(branch="feature/FE-1", branch_ticket="FE-1", ticket="FE-1", jira=jira))

    assert "does not exist" in state["errors"][0]["error"]
    assert "--ticket" in state["errors"][0]["hint"]


@pytest.mark.asyncio
async def test_ticket_with_expired_jira_token_stops(make_state, diverged):
    jira = MagicMock()
    jira.fetch_issue.side_effect = JiraAuthError(401)

    state = await ticket_node(make_state(branch="feature/FE-1", branch_ticket="FE-1", ticket="FE-1", jira=jira))

    assert "expired or invalid" in state["errors"][0]["error"]
