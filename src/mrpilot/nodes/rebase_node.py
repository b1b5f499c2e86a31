"""Rebase the branch onto the latest target."""

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.nodes.common import record_error


async def rebase_node(state: AgentState) -> AgentState:
    logger.info("Executing Rebase Node")
    try:
        git = state["git"]
        options = state["options"]
        target = state.get("target_branch") or state["settings"].default_target_branch
        state["target_branch"] = target

        git.fetch(target)
        if not options.rebase:
            logger.info("Skipping rebase (--no-rebase)")
            return state

        upstream = f"{git.remote}/{target}"
        if git.is_ancestor(upstream):
            logger.info(f"Branch already contains {upstream}")
            return state
        # GitConflictError carries the manual resolution steps as its hint
        git.rebase(upstream)
        logger.success(f"Rebased onto {upstream}")

    except Exception as e:
        record_error(state, "rebase_node", e)

    return state
