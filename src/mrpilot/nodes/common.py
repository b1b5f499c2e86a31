"""Helpers shared by the workflow nodes."""

from datetime import datetime

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.errors import MrPilotError


def record_error(state: AgentState, node: str, error: Exception) -> None:
    """Log a fatal node error; the graph stops after the node returns."""
    logger.error(f"{node}: {error}")
    hint = getattr(error, "hint", None) if isinstance(error, MrPilotError) else None
    if hint:
        logger.error(hint)
    state.setdefault("errors", []).append(
        {"node": node, "error": str(error), "hint": hint, "timestamp": datetime.now()}
    )


def record_warning(state: AgentState, node: str, message: str) -> None:
    """Log a degraded step; the workflow keeps going."""
    logger.warning(f"{node}: {message}")
    state.setdefault("warnings", []).append({"node": node, "warning": message, "timestamp": datetime.now()})
