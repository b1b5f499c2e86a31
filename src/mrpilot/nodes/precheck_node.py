"""Pre-flight checks shared by create-mr and update-mr."""

from typing import Any, Dict, Optional

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.errors import ValidationError
from mrpilot.nodes.common import record_error, record_warning
from mrpilot.tickets import extract_ticket_from_branch


def find_existing_merge_request(state: AgentState, branch: str) -> Optional[Dict[str, Any]]:
    """Open MR for ``branch`` through the API, else glab; None when neither can answer."""
    gitlab = state.get("gitlab")
    if gitlab is not None:
        return gitlab.find_open_merge_request(branch)
    glab = state.get("glab")
    if glab is not None and glab.is_authenticated():
        return glab.find_merge_request(branch)
    record_warning(state, "precheck_node", "No GitLab token or glab login, cannot check for an existing merge request")
    return None


async def precheck_node(state: AgentState) -> AgentState:
    """Refuse to run on a dirty tree, mid-rebase, or without a ticket; look up the existing MR."""
    logger.info("Executing Precheck Node")
    try:
        git = state["git"]
        options = state["options"]
        mode = state.get("mode", "create")

        if git.rebase_in_progress():
            raise ValidationError(
                "A rebase is in progress",
                hint="Finish it with `git rebase --continue` or abort it with `git rebase --abort`",
            )
        dirty = git.status_porcelain()
        if dirty:
            raise ValidationError(
                f"Working tree has {len(dirty)} uncommitted change(s)",
                hint="Commit them with `mrpilot commit` or stash them first",
            )

        branch = git.current_branch()
        branch_ticket = extract_ticket_from_branch(branch)
        ticket = options.ticket or branch_ticket
        if not ticket:
            raise ValidationError(
                f"Cannot find a ticket in branch {branch}",
                hint="Use a feature/<TICKET> branch or pass --ticket=FE-1234",
            )
        state["branch"] = branch
        state["branch_ticket"] = branch_ticket
        state["ticket"] = ticket
        logger.info(f"Branch {branch}, ticket {ticket}")

        if mode == "update":
            if not git.has_remote_branch(branch):
                raise ValidationError(
                    f"Branch {branch} does not exist on {git.remote}",
                    hint="Create the merge request with `mrpilot create-mr` first",
                )
            gitlab = state.get("gitlab")
            if gitlab is None:
                state["settings"].require("gitlab_token")
            existing = gitlab.find_open_merge_request(branch)
            if not existing:
                raise ValidationError(
                    f"No open merge request for {branch}",
                    hint="Create it with `mrpilot create-mr`",
                )
            merge_request = gitlab.get_merge_request(existing["iid"])
            state["merge_request"] = merge_request
            state["target_branch"] = merge_request.get("target_branch") or state.get("target_branch")
            logger.info(f"Updating merge request !{existing['iid']} into {state['target_branch']}")
        else:
            existing = find_existing_merge_request(state, branch)
            if existing:
                raise ValidationError(
                    f"Merge request !{existing.get('iid')} already exists for {branch}: {existing.get('web_url')}",
                    hint="Use `mrpilot update-mr` to refresh it",
                )

    except Exception as e:
        record_error(state, "precheck_node", e)

    return state
