"""Tests for the Review Node."""

from unittest.mock import MagicMock, patch

import pytest

from mrpilot.agents.state import MrOptions
from mrpilot.config import Settings
from mrpilot.models.report import MergeRequestDescriptionInfo
from mrpilot.nodes.review_node import review_node
from mrpilot.report.storage import save_description_info, task_dir
from mrpilot.review import marker_body

HEAD = "0123456789abcdef0123456789abcdef01234567"
MR_URL = "https://gitlab.example.com/web/-/merge_requests/3"


@pytest.fixture
def settings(git):
    return Settings(
        project_root=git.root,
        compass_api_token="compass",
        compass_base_url="https://compass.example.com",
        jira_email="jira@example.com",
    )


@pytest.fixture
def gitlab():
    client = MagicMock()
    client.current_user.return_value = {"id": 1, "email": "dev@example.com"}
    client.list_notes.return_value = []
    return client


def node_state(make_state, git, **overrides):
    save_description_info(git.root, MergeRequestDescriptionInfo.default("FE-1"))
    defaults = {
        "ticket": "FE-1",
        "description": "body",
        "merge_request": {"iid": 3, "sha": HEAD, "web_url": MR_URL},
    }
    defaults.update(overrides)
    return make_state(**defaults)


@pytest.mark.asyncio
async def test_submits_review_and_cleans_up(make_state, git, settings, gitlab):
    with patch("mrpilot.nodes.review_node.CompassClient") as compass:
        state = await review_node(node_state(make_state, git, settings=settings, gitlab=gitlab))

    assert state["review_submitted"] is True
    compass.return_value.submit_review.assert_called_once_with(MR_URL, "dev@example.com", settings.llm_model, provider="openai")
    gitlab.create_note.assert_called_once_with(3, marker_body(HEAD))
    assert not task_dir(git.root, "FE-1").exists()


@pytest.mark.asyncio
async def test_update_skips_already_reviewed_head(make_state, git, settings, gitlab):
    gitlab.list_notes.return_value = [{"id": 8, "body": marker_body(HEAD[:12])}]
    gitlab.get_merge_request.return_value = {"description": "body\n"}

    with patch("mrpilot.nodes.review_node.CompassClient") as compass:
        state = await review_node(node_state(make_state, git, mode="update", settings=settings, gitlab=gitlab))

    assert state["review_submitted"] is False
    compass.assert_not_called()
    assert not task_dir(git.root, "FE-1").exists()


@pytest.mark.asyncio
async def test_update_keeps_files_when_description_differs(make_state, git, settings, gitlab):
    gitlab.get_merge_request.return_value = {"description": "edited elsewhere"}

    state = await review_node(
        node_state(make_state, git, mode="update", settings=settings, gitlab=gitlab, options=MrOptions(review=False))
    )

    assert state["review_submitted"] is False
    assert task_dir(git.root, "FE-1").exists()
    assert "differs from the local copy" in state["warnings"][0]["warning"]


@pytest.mark.asyncio
async def test_review_failure_only_warns(make_state, git, settings, gitlab):
    with patch("mrpilot.nodes.review_node.CompassClient") as compass:
        compass.return_value.submit_review.side_effect = RuntimeError("compass down")
        state = await review_node(
            node_state(make_state, git, settings=settings, gitlab=gitlab, options=MrOptions(keep_task_files=True))
        )

    assert state["errors"] == []
    assert "compass down" in state["warnings"][0]["warning"]
    assert task_dir(git.root, "FE-1").exists()


@pytest.mark.asyncio
async def test_review_without_gitlab_token(make_state, git, settings):
    state = await review_node(node_state(make_state, git, settings=settings))

    assert state["review_submitted"] is False
    assert "needs a GitLab token" in state["warnings"][0]["warning"]


@pytest.mark.asyncio
async def test_compass_not_configured(make_state, git, gitlab):
    state = await review_node(node_state(make_state, git, gitlab=gitlab))

    assert state["review_submitted"] is False
    gitlab.create_note.assert_not_called()
