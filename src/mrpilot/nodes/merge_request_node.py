"""Create or update the GitLab merge request."""

import re
from typing import Any, Dict, Optional

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.clients.gitlab import GitLabClient
from mrpilot.errors import ApiError
from mrpilot.nodes.common import record_error, record_warning

MR_LINK_PATTERN = re.compile(r"https?://\S+/-/merge_requests/(\d+)")


def _reviewer_id(state: AgentState, gitlab: GitLabClient, username: str) -> Optional[int]:
    user_id = gitlab.find_user_id(username)
    if user_id is None:
        record_warning(state, "merge_request_node", f"Reviewer @{username} not found, leaving the MR without reviewer")
    return user_id


def _create_with_glab(state: AgentState, reviewer: str) -> Dict[str, Any]:
    glab = state.get("glab")
    if glab is None or not glab.is_authenticated():
        state["settings"].require("gitlab_token")
    options = state["options"]
    output = glab.create_merge_request(
        source_branch=state["branch"],
        target_branch=state["target_branch"],
        title=state["title"],
        description=state["description"],
        draft=options.draft,
        assignee="@me",
        reviewer=reviewer,
        labels=state.get("labels"),
    )
    created = glab.find_merge_request(state["branch"])
    if created:
        return created
    match = MR_LINK_PATTERN.search(output)
    if not match:
        raise ApiError("glab", None, f"Could not find the merge request URL in glab output: {output}")
    return {"iid": int(match.group(1)), "web_url": match.group(0)}


async def merge_request_node(state: AgentState) -> AgentState:
    logger.info("Executing Merge Request Node")
    try:
        settings = state["settings"]
        options = state["options"]
        gitlab = state.get("gitlab")
        reviewer = (options.reviewer or settings.mr_reviewer).lstrip("@")

        if state.get("mode") == "update":
            merge_request = state["merge_request"]
            fields: Dict[str, Any] = {
                "description": state["description"],
                "add_labels": state.get("labels") or None,
                "remove_source_branch": True,
            }
            if options.reviewer or not merge_request.get("reviewers"):
                reviewer_id = _reviewer_id(state, gitlab, reviewer)
                if reviewer_id:
                    fields["reviewer_ids"] = [reviewer_id]
            updated = gitlab.update_merge_request(merge_request["iid"], **fields)
            state["merge_request"] = {**merge_request, **updated}
            logger.success(f"Updated merge request: {state['merge_request'].get('web_url')}")
            return state

        if gitlab is None:
            merge_request = _create_with_glab(state, reviewer)
        else:
            reviewer_id = _reviewer_id(state, gitlab, reviewer)
            merge_request = gitlab.create_merge_request(
                source_branch=state["branch"],
                target_branch=state["target_branch"],
                title=state["title"],
                description=state["description"],
                draft=options.draft,
                assignee_id=gitlab.current_user().get("id"),
                reviewer_ids=[reviewer_id] if reviewer_id else None,
                labels=state.get("labels"),
                remove_source_branch=True,
            )
        state["merge_request"] = merge_request
        logger.success(f"Created merge request: {merge_request.get('web_url')}")

    except Exception as e:
        record_error(state, "merge_request_node", e)

    return state
