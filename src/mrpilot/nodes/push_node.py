"""Publish the branch to the remote."""

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.nodes.common import record_error


async def push_node(state: AgentState) -> AgentState:
    """Push with ``-u`` for a new branch, ``--force-with-lease`` after a rebase, plain otherwise."""
    logger.info("Executing Push Node")
    try:
        git = state["git"]
        branch = state["branch"]

        if not git.has_remote_branch(branch):
            git.push(branch, set_upstream=True)
            logger.success(f"Pushed new branch {branch}")
            return state

        git.fetch(branch)
        if git.needs_force_push(branch):
            git.push(branch, force_with_lease=True)
            logger.success(f"Force-pushed {branch} (history was rewritten)")
        elif git.unpushed_commits(branch):
            git.push(branch)
            logger.success(f"Pushed {branch}")
        else:
            logger.info(f"{branch} is up to date on {git.remote}")

    except Exception as e:
        record_error(state, "push_node", e)

    return state
