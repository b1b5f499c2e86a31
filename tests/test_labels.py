"""Tests for label helpers and the label decision pipeline."""

from unittest.mock import AsyncMock, patch

import pytest

from mrpilot.errors import JiraAuthError
from mrpilot.knowledge import RepoKnowledge
from mrpilot.labels import (
    LabelContext,
    LabelDecider,
    LabelSet,
    LlmLabelSource,
    TaskOriginLabelSource,
    build_label_sources,
    extract_release_branch,
    extract_version_label,
    filter_allowed_labels,
    is_hotfix_version,
    merge_labels,
    parse_label_arg,
)
from mrpilot.models.diff import ChangedFile
from mrpilot.models.report import MergeRequestDescriptionInfo
from mrpilot.report.storage import save_description_info
from mrpilot.task import StartTaskInfo


class FakeJira:
    def __init__(self, fix_version=None, error=None):
        self.fix_version = fix_version
        self.error = error

    def get_fix_version(self, ticket):
        if self.error:
            raise self.error
        return self.fix_version


@pytest.mark.parametrize(
    "fix_version,label",
    [("5.35.3", "v5.35"), ("5.36.0", "v5.36"), ("5.36", "v5.36"), ("next", None), (None, None)],
)
def test_extract_version_label(fix_version, label):
    assert extract_version_label(fix_version) == label


@pytest.mark.parametrize(
    "fix_version,hotfix",
    [("5.36.1", True), ("5.36.0", False), ("5.36", False), ("5.36.1-rc", False), ("", False)],
)
def test_is_hotfix_version(fix_version, hotfix):
    assert is_hotfix_version(fix_version) is hotfix


def test_extract_release_branch():
    assert extract_release_branch("5.36.1") == "release/5.36"
    assert extract_release_branch("soon") is None


def test_label_set_keeps_first_occurrence_order():
    labels = LabelSet(["AI", "FE Board", "AI", " FE Board ", ""])
    labels.add("v5.36")
    assert labels.to_list() == ["AI", "FE Board", "v5.36"]
    assert len(labels) == 3
    assert "AI" in labels


def test_merge_and_parse_labels():
    assert merge_labels(["AI"], ["FE Board", "AI"], None) == ["AI", "FE Board"]
    assert parse_label_arg("UX, Needs QA,,UX") == ["UX", "Needs QA"]
    assert parse_label_arg(None) == []


def test_filter_allowed_labels():
    knowledge = RepoKnowledge.model_validate(
        {
            "labels": [
                {"name": "AI"},
                {"name": "UX", "applicable": True},
                {"name": "Legacy", "applicable": False},
                {"name": "Perf", "applicable": {"ok": False, "reason": "unused"}},
            ]
        }
    )
    kept, dropped = filter_allowed_labels(["AI", "UX", "Legacy", "Perf", "Other"], knowledge)
    assert kept == ["AI", "UX"]
    assert dropped == ["Legacy", "Perf", "Other"]

    kept, dropped = filter_allowed_labels(["AI", "UX"], knowledge, project_labels=["AI"])
    assert kept == ["AI"]
    assert dropped == ["UX"]

    assert filter_allowed_labels(["Anything"], None) == (["Anything"], [])


@pytest.mark.asyncio
async def test_hotfix_ticket_on_fe_board(tmp_path):
    """feature/FE-1234 with fix version 5.36.1 targets the release branch."""
    decider = LabelDecider(build_label_sources("heuristic", FakeJira("5.36.1")))
    decision = await decider.decide(LabelContext(ticket="FE-1234", project_root=str(tmp_path)))

    assert decision.labels.to_list() == ["FE Board", "v5.36", "Hotfix"]
    assert decision.release_branch == "release/5.36"
    assert decision.is_hotfix
    assert decision.auth_error is None


@pytest.mark.asyncio
async def test_regular_release_has_no_release_branch(tmp_path):
    decider = LabelDecider(build_label_sources("none", FakeJira("5.37.0")))
    decision = await decider.decide(LabelContext(ticket="IN-5", project_root=str(tmp_path)))

    assert decision.labels.to_list() == ["v5.37"]
    assert decision.release_branch is None


@pytest.mark.asyncio
async def test_jira_auth_error_keeps_other_labels(tmp_path):
    decider = LabelDecider(build_label_sources("none", FakeJira(error=JiraAuthError(401))))
    decision = await decider.decide(LabelContext(ticket="FE-1", project_root=str(tmp_path)))

    assert decision.labels.to_list() == ["FE Board"]
    assert isinstance(decision.auth_error, JiraAuthError)
    assert "contact the administrator" in str(decision.auth_error)


@pytest.mark.asyncio
async def test_missing_jira_is_a_warning(tmp_path):
    decision = await LabelDecider(build_label_sources("none", None)).decide(
        LabelContext(ticket="FE-1", project_root=str(tmp_path))
    )
    assert decision.labels.to_list() == ["FE Board"]
    assert decision.warnings


@pytest.mark.asyncio
async def test_task_origin_adds_ai_label(tmp_path):
    save_description_info(
        str(tmp_path), MergeRequestDescriptionInfo(ticket="FE-1234", plan={"target": "show the banner"})
    )
    context = LabelContext(
        ticket="FE-1234", project_root=str(tmp_path), task_info=StartTaskInfo(ticket="FE-1234")
    )
    decision = await LabelDecider([TaskOriginLabelSource()]).decide(context)
    assert decision.labels.to_list() == ["AI"]

    context.task_info = StartTaskInfo(ticket="FE-9999")
    decision = await LabelDecider([TaskOriginLabelSource()]).decide(context)
    assert decision.labels.to_list() == []


@pytest.mark.asyncio
async def test_llm_labels_stay_inside_the_allowlist(tmp_path):
    knowledge = RepoKnowledge.model_validate(
        {"labels": [{"name": "UX", "scenario": "visual changes"}, {"name": "Legacy", "applicable": False}]}
    )
    context = LabelContext(
        ticket="FE-2", project_root=str(tmp_path), changed_files=[ChangedFile("src/a.tsx")]
    )
    reply = {"labels": ["UX", "Legacy", "Invented", "UX"]}
    with patch("mrpilot.labels.complete_json", AsyncMock(return_value=reply)) as mock_llm:
        decision = await LabelDecider([LlmLabelSource(object(), knowledge)]).decide(context)

    assert decision.labels.to_list() == ["UX"]
    payload = mock_llm.call_args.args[2]
    assert payload["candidates"] == [{"name": "UX", "scenario": "visual changes"}]


@pytest.mark.asyncio
async def test_llm_failure_is_a_warning(tmp_path):
    knowledge = RepoKnowledge.model_validate({"labels": [{"name": "UX"}]})
    context = LabelContext(ticket="FE-2", project_root=str(tmp_path))
    with patch("mrpilot.labels.complete_json", AsyncMock(side_effect=ValueError("no json"))):
        decision = await LabelDecider([LlmLabelSource(object(), knowledge)]).decide(context)
    assert decision.labels.to_list() == []
    assert "no json" in decision.warnings[0]


def test_llm_strategy_without_model_falls_back_to_heuristics():
    sources = build_label_sources("llm", None, llm=None)
    assert [type(s).__name__ for s in sources] == [
        "TaskOriginLabelSource",
        "TicketPrefixLabelSource",
        "ImpactLabelSource",
        "FixVersionLabelSource",
    ]
