"""Submit the AI code review and tidy up the ticket's working files."""

from typing import Optional

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.clients.compass import CompassClient
from mrpilot.errors import ConfigError
from mrpilot.nodes.common import record_warning
from mrpilot.report.codec import normalize_for_compare
from mrpilot.report.storage import remove_task_dir
from mrpilot.review import last_reviewed_sha, upsert_review_marker


def review_email(state: AgentState) -> Optional[str]:
    """GitLab account email, falling back to the Jira email."""
    gitlab = state.get("gitlab")
    if gitlab is not None:
        email = gitlab.current_user().get("email")
        if email:
            return email
    return state["settings"].jira_email


def submit_review(state: AgentState) -> bool:
    """Queue a review for the MR head unless it was already reviewed; True when submitted."""
    settings = state["settings"]
    gitlab = state.get("gitlab")
    merge_request = state["merge_request"]
    iid = merge_request.get("iid")
    head_sha = merge_request.get("sha") or state["git"].head_sha()

    if gitlab is None:
        record_warning(state, "review_node", "AI review needs a GitLab token to track reviewed commits, skipping")
        return False

    if state.get("mode") == "update":
        reviewed = last_reviewed_sha(gitlab.list_notes(iid))
        if reviewed and (head_sha.startswith(reviewed) or reviewed.startswith(head_sha)):
            logger.info(f"No new commits since the last AI review ({reviewed[:8]}), not resubmitting")
            return False

    email = review_email(state)
    if not email:
        raise ConfigError("No email available for the AI review", hint="Set GITLAB_TOKEN or JIRA_EMAIL")

    CompassClient(settings).submit_review(
        merge_request["web_url"], email, settings.llm_model, provider=settings.llm_provider
    )
    upsert_review_marker(gitlab, iid, head_sha, settings.agent_display_name, state["git"].user_name())
    logger.success(f"AI review submitted for {head_sha[:8]}")
    return True


def description_applied(state: AgentState) -> bool:
    gitlab = state.get("gitlab")
    if gitlab is None or state.get("mode") != "update":
        return True
    remote = gitlab.get_merge_request(state["merge_request"]["iid"]).get("description") or ""
    return normalize_for_compare(remote) == normalize_for_compare(state["description"])


async def review_node(state: AgentState) -> AgentState:
    """Failures here degrade to warnings: the MR itself already exists."""
    logger.info("Executing Review Node")
    settings = state["settings"]
    options = state["options"]

    state["review_submitted"] = False
    if not options.review:
        logger.info("Skipping AI review (--no-review)")
    elif not settings.compass_api_token or not settings.compass_base_url:
        logger.info("Compass is not configured, skipping AI review")
    else:
        try:
            state["review_submitted"] = submit_review(state)
        except Exception as e:
            record_warning(state, "review_node", f"AI review submission failed: {e}")

    if options.keep_task_files:
        return state
    try:
        if description_applied(state):
            remove_task_dir(state["git"].root, state["ticket"])
        else:
            record_warning(state, "review_node", "Merge request description differs from the local copy, keeping working files")
    except Exception as e:
        record_warning(state, "review_node", f"Could not clean up working files: {e}")

    return state
