"""Workflow state fixtures for node tests."""

import pytest

from mrpilot.agents.state import MrOptions
from mrpilot.config import Settings


@pytest.fixture
def make_state(git):
    """Build a workflow state around the test repository with no external clients."""

    def _make_state(mode="create", **overrides):
        state = {
            "mode": mode,
            "settings": Settings(project_root=git.root),
            "options": MrOptions(),
            "git": git,
            "gitlab": None,
            "glab": None,
            "jira": None,
            "llm": None,
            "target_branch": "main",
            "labels": [],
            "errors": [],
            "warnings": [],
        }
        state.update(overrides)
        return state

    return _make_state
