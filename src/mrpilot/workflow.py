"""MR workflows wired as LangGraph state graphs."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from langgraph.graph import END, StateGraph
from loguru import logger

from mrpilot.agents.state import AgentState, MrOptions
from mrpilot.clients.gitlab import GitLabClient, parse_remote_url
from mrpilot.clients.glab import GlabCli
from mrpilot.clients.jira import JiraClient
from mrpilot.config import Settings
from mrpilot.git_ops import GitExecutor
from mrpilot.llm import create_chat_model
from mrpilot.nodes.description_node import description_node
from mrpilot.nodes.labels_node import labels_node
from mrpilot.nodes.merge_request_node import merge_request_node
from mrpilot.nodes.precheck_node import precheck_node
from mrpilot.nodes.push_node import push_node
from mrpilot.nodes.rebase_node import rebase_node
from mrpilot.nodes.review_node import review_node
from mrpilot.nodes.ticket_node import ticket_node

NODES: Dict[str, Callable] = {
    "precheck_node": precheck_node,
    "rebase_node": rebase_node,
    "push_node": push_node,
    "ticket_node": ticket_node,
    "labels_node": labels_node,
    "description_node": description_node,
    "merge_request_node": merge_request_node,
    "review_node": review_node,
}

CREATE_STEPS = [
    "precheck_node",
    "rebase_node",
    "push_node",
    "ticket_node",
    "labels_node",
    "description_node",
    "merge_request_node",
    "review_node",
]
UPDATE_STEPS = ["precheck_node", "description_node", "labels_node", "merge_request_node", "review_node"]


def _continue_or_end(next_node: str) -> Callable[[AgentState], str]:
    def route(state: AgentState) -> str:
        return END if state.get("errors") else next_node

    return route


def build_workflow(steps: List[str]):
    """Chain ``steps`` in order, leaving the graph at the first node that records an error."""
    workflow = StateGraph(AgentState)

    for name in steps:
        workflow.add_node(name, NODES[name])

    workflow.set_entry_point(steps[0])
    for current, following in zip(steps, steps[1:]):
        workflow.add_conditional_edges(current, _continue_or_end(following), {following: following, END: END})
    workflow.add_edge(steps[-1], END)

    return workflow.compile()


def create_mr_workflow():
    return build_workflow(CREATE_STEPS)


def update_mr_workflow():
    return build_workflow(UPDATE_STEPS)


def build_clients(settings: Settings, git: GitExecutor) -> Dict[str, Any]:
    """GitLab/glab/Jira/LLM clients for whatever credentials are configured."""
    host, project_path = parse_remote_url(git.remote_url())
    clients: Dict[str, Any] = {
        "gitlab": GitLabClient(host, settings.gitlab_token, project_path) if settings.gitlab_token else None,
        "glab": GlabCli(host, cwd=git.root),
        "jira": JiraClient(settings) if settings.jira_email and settings.jira_api_token else None,
        "llm": None,
    }
    api_key = settings.groq_api_key if settings.llm_provider == "groq" else settings.openai_api_key
    if api_key:
        clients["llm"] = create_chat_model(settings)
    return clients


def build_initial_state(
    settings: Settings, options: MrOptions, mode: str, git: Optional[GitExecutor] = None
) -> AgentState:
    git = git or GitExecutor(settings.project_root)
    state: AgentState = {
        "mode": mode,
        "settings": settings,
        "options": options,
        "git": git,
        "target_branch": options.target or settings.default_target_branch,
        "labels": [],
        "errors": [],
        "warnings": [],
    }
    state.update(build_clients(settings, git))
    return state


async def run_workflow_async(initial_state: AgentState) -> AgentState:
    """Run the create or update graph (by ``initial_state["mode"]``) and return the final state."""
    app = update_mr_workflow() if initial_state.get("mode") == "update" else create_mr_workflow()
    final_state = initial_state
    async for state in app.astream(initial_state):
        final_state = list(state.values())[0]
        if "errors" in final_state and final_state["errors"]:
            logger.error(f"Stopped after {final_state['errors'][-1]['node']}")

    return final_state


def run_workflow(initial_state: AgentState) -> AgentState:
    """Synchronous wrapper for the async workflow."""
    return asyncio.run(run_workflow_async(initial_state))
