"""Tests for the Labels Node."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mrpilot.agents.state import MrOptions
from mrpilot.errors import ApiError, JiraAuthError
from mrpilot.nodes.labels_node import labels_node


@pytest.fixture
def feature(git, work_repo, make_commit):
    git.checkout("feature/FE-1", create=True)
    make_commit(work_repo, "src/banner.ts", "export const banner = true;\n", "feat(FE-1): add banner")
    return git


@pytest.fixture
def jira():
    client = MagicMock()
    client.get_fix_version.return_value = "5.36.1"
    return client


def node_state(make_state, **overrides):
    overrides.setdefault("options", MrOptions(label_strategy="none"))
    return make_state(ticket="FE-1", branch="feature/FE-1", **overrides)


@pytest.mark.asyncio
async def test_hotfix_labels_and_release_target(make_state, feature, jira):
    state = await labels_node(node_state(make_state, jira=jira))

    assert state["errors"] == []
    assert state["labels"] == ["FE Board", "v5.36", "Hotfix"]
    assert state["target_branch"] == "release/5.36"
    assert state["label_decision"].is_hotfix


@pytest.mark.asyncio
async def test_explicit_non_release_target_needs_confirmation(make_state, feature, jira):
    options = MrOptions(label_strategy="none", target="main")

    state = await labels_node(node_state(make_state, jira=jira, options=options))

    assert "is a hotfix" in state["errors"][0]["error"]
    assert "--target=release/5.36" in state["errors"][0]["hint"]

    options = MrOptions(label_strategy="none", target="main", yes=True)
    state = await labels_node(node_state(make_state, jira=jira, options=options))

    assert state["errors"] == []
    assert state["target_branch"] == "main"


@pytest.mark.asyncio
async def test_expired_jira_token_keeps_other_labels(make_state, feature, jira):
    jira.get_fix_version.side_effect = JiraAuthError(401)

    state = await labels_node(node_state(make_state, jira=jira))

    assert state["errors"] == []
    assert state["labels"] == ["FE Board"]
    assert "expired or invalid" in state["warnings"][0]["warning"]


@pytest.mark.asyncio
async def test_only_explicit_labels_are_filtered(make_state, feature, jira):
    Path(feature.root, "adapt.json").write_text(
        json.dumps({"labels": [{"name": "FE Board"}, {"name": "QA"}, {"name": "Design"}]})
    )
    gitlab = MagicMock()
    gitlab.list_labels.return_value = [{"name": "FE Board"}, {"name": "QA"}]
    options = MrOptions(label_strategy="none", labels=["QA", "Design", "Random"])

    state = await labels_node(node_state(make_state, jira=jira, gitlab=gitlab, options=options))

    assert state["errors"] == []
    assert state["labels"] == ["FE Board", "v5.36", "Hotfix", "QA"]
    assert state["target_branch"] == "release/5.36"
    assert state["warnings"][-1]["warning"].endswith("Design, Random")


@pytest.mark.asyncio
async def test_rule_labels_survive_without_explicit_labels(make_state, feature, jira):
    Path(feature.root, "adapt.json").write_text(json.dumps({"labels": [{"name": "QA"}]}))
    gitlab = MagicMock()

    state = await labels_node(node_state(make_state, jira=jira, gitlab=gitlab))

    assert state["labels"] == ["FE Board", "v5.36", "Hotfix"]
    assert state["warnings"] == []
    gitlab.list_labels.assert_not_called()


@pytest.mark.asyncio
async def test_project_label_lookup_failure_is_a_warning(make_state, feature, jira):
    gitlab = MagicMock()
    gitlab.list_labels.side_effect = ApiError("GitLab", 500, "boom")
    options = MrOptions(label_strategy="none", labels=["QA"])

    state = await labels_node(node_state(make_state, jira=jira, gitlab=gitlab, options=options))

    assert state["errors"] == []
    assert state["labels"] == ["FE Board", "v5.36", "Hotfix", "QA"]
    assert "Could not list project labels" in state["warnings"][0]["warning"]


@pytest.mark.asyncio
async def test_update_mode_only_adds_new_explicit_labels(make_state, feature, jira):
    options = MrOptions(labels=["QA", "FE Board"])
    merge_request = {"iid": 3, "labels": ["FE Board"]}

    state = await labels_node(node_state(make_state, mode="update", jira=jira, options=options, merge_request=merge_request))

    assert state["errors"] == []
    assert state["labels"] == ["QA"]
    jira.get_fix_version.assert_not_called()
