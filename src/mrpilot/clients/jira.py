"""
Jira REST v3 client: issue lookups, comments and workflow transitions.
"""

import base64
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from mrpilot.clients.http import DEFAULT_TIMEOUT, json_or_empty, raise_for_status
from mrpilot.config import Settings
from mrpilot.errors import ApiError, JiraAuthError, ValidationError
from mrpilot.signature import append_signature
from mrpilot.tickets import parse_ticket_reference


@dataclass
class JiraIssue:
    """The handful of issue fields the workflows consume."""

    key: str
    summary: str
    issue_type: str
    fix_versions: List[str] = field(default_factory=list)
    description_text: str = ""


@dataclass
class JiraTransition:
    id: str
    name: str
    to: str = ""


def text_to_adf(text: str) -> Dict[str, Any]:
    """Plain text as an ADF document: blank lines split paragraphs, single newlines become hard breaks."""
    content = []
    for paragraph in re.split(r"\n\s*\n", (text or "").replace("\r\n", "\n").strip()):
        inline: List[Dict[str, Any]] = []
        for index, line in enumerate(paragraph.split("\n")):
            if index > 0:
                inline.append({"type": "hardBreak"})
            if line:
                inline.append({"type": "text", "text": line})
        content.append({"type": "paragraph", "content": inline})
    return {"version": 1, "type": "doc", "content": content}


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format tree (or plain string) into text.

    Block-level nodes are separated by newlines, inline text is concatenated.
    """
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(adf_to_text(child) for child in node)
    if not isinstance(node, dict):
        return ""

    node_type = node.get("type")
    if node_type == "text":
        return node.get("text", "")
    if node_type == "hardBreak":
        return "\n"
    if node_type in ("mention", "emoji"):
        attrs = node.get("attrs") or {}
        return attrs.get("text") or attrs.get("shortName") or ""

    text = adf_to_text(node.get("content") or [])
    if node_type in ("paragraph", "heading", "listItem", "codeBlock", "blockquote", "tableRow"):
        return text.rstrip("\n") + "\n"
    if node_type == "doc":
        return text.strip()
    return text


class JiraClient:
    """
    Client for the Jira issue endpoint, authenticated with email + API token.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.jira_base_url.rstrip("/")
        email = settings.require("jira_email")
        token = settings.require("jira_api_token")
        credentials = base64.b64encode(f"{email}:{token}".encode("utf-8")).decode("ascii")
        self.headers = {
            "Authorization": f"Basic {credentials}",
            "Accept": "application/json",
        }

    def ticket_url(self, ticket: str) -> str:
        return f"{self.base_url}/browse/{ticket}"

    def get_issue(self, ticket: str) -> Optional[Dict[str, Any]]:
        """
        Fetch the raw issue JSON.

        Returns:
            The issue dict, or None when Jira answers 404.

        Raises:
            JiraAuthError: on 401/403 so callers can tell a stale token from a missing ticket.
            ApiError: on any other non-2xx status.
        """
        url = f"{self.base_url}/rest/api/3/issue/{ticket}"
        response = requests.get(url, headers=self.headers, timeout=DEFAULT_TIMEOUT)
        if response.status_code in (401, 403):
            raise JiraAuthError(response.status_code)
        if response.status_code == 404:
            return None
        raise_for_status("Jira", response)
        return response.json()

    def get_fix_version(self, ticket: str) -> Optional[str]:
        """Name of the first fix version, or None when unavailable.

        Only auth failures raise; every other problem degrades to None with a warning.
        """
        url = f"{self.base_url}/rest/api/3/issue/{ticket}"
        try:
            response = requests.get(
                url, headers=self.headers, params={"fields": "fixVersions"}, timeout=DEFAULT_TIMEOUT
            )
        except requests.RequestException as e:
            logger.warning(f"Could not reach Jira for {ticket}: {e}")
            return None

        if response.status_code in (401, 403):
            raise JiraAuthError(response.status_code)
        if response.status_code == 404:
            logger.warning(f"Jira ticket {ticket} not found, skipping fix version")
            return None
        if response.status_code != 200:
            logger.warning(f"Jira returned {response.status_code} for {ticket}, skipping fix version")
            return None

        fix_versions = (response.json().get("fields") or {}).get("fixVersions") or []
        if not fix_versions:
            return None
        return fix_versions[0].get("name")

    @staticmethod
    def summarize_issue(issue: Dict[str, Any]) -> JiraIssue:
        fields = issue.get("fields") or {}
        return JiraIssue(
            key=issue.get("key", ""),
            summary=(fields.get("summary") or "").strip(),
            issue_type=((fields.get("issuetype") or {}).get("name") or "").strip(),
            fix_versions=[v.get("name") for v in fields.get("fixVersions") or [] if v.get("name")],
            description_text=adf_to_text(fields.get("description")),
        )

    def fetch_issue(self, ticket: str) -> Optional[JiraIssue]:
        issue = self.get_issue(ticket)
        if issue is None:
            return None
        return self.summarize_issue(issue)

    def _raise_for_ticket(self, ticket: str, response) -> None:
        if response.status_code in (401, 403):
            raise JiraAuthError(response.status_code)
        if response.status_code == 404:
            raise ApiError("Jira", 404, f"ticket {ticket} not found")
        raise_for_status("Jira", response)

    def comment_url(self, ticket: str, comment_id: str) -> str:
        return f"{self.ticket_url(ticket)}?focusedCommentId={comment_id}"

    def add_comment(
        self, ticket: str, text: str, display_name: Optional[str] = None, owner: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Post a signed comment on ``ticket``.

        Args:
            ticket: Ticket key or browse URL.
            text: Plain text; blank lines start a new paragraph.
            display_name: Agent name for the signature line; None posts the text unsigned.
            owner: Developer the agent acts for.

        Returns:
            The created comment as Jira returns it.
        """
        key = self._ticket_key(ticket)
        if not (text or "").strip():
            raise ValidationError("Comment body is empty")
        body = {"body": text_to_adf(append_signature(text, display_name, owner))}
        url = f"{self.base_url}/rest/api/3/issue/{key}/comment"
        response = requests.post(url, headers=self.headers, json=body, timeout=DEFAULT_TIMEOUT)
        self._raise_for_ticket(key, response)
        comment = json_or_empty(response)
        logger.info(f"Added comment {comment.get('id')} to {key}")
        return comment

    def transitions(self, ticket: str) -> List[JiraTransition]:
        """Workflow transitions currently available on ``ticket``."""
        key = self._ticket_key(ticket)
        url = f"{self.base_url}/rest/api/3/issue/{key}/transitions"
        response = requests.get(url, headers=self.headers, timeout=DEFAULT_TIMEOUT)
        self._raise_for_ticket(key, response)
        return [
            JiraTransition(id=str(t.get("id", "")), name=t.get("name", ""), to=(t.get("to") or {}).get("name", ""))
            for t in response.json().get("transitions") or []
        ]

    def transition(self, ticket: str, target: str) -> JiraTransition:
        """Move ``ticket`` through the transition whose id, name or destination status matches ``target``."""
        key = self._ticket_key(ticket)
        available = self.transitions(key)
        wanted = (target or "").strip().lower()
        match = next(
            (t for t in available if wanted in (t.id, t.name.lower(), t.to.lower())),
            None,
        )
        if match is None:
            choices = ", ".join(f"{t.name} (id {t.id}) -> {t.to}" for t in available) or "none"
            raise ValidationError(
                f"No transition to '{target}' is available for {key}",
                hint=f"Available transitions: {choices}",
            )

        url = f"{self.base_url}/rest/api/3/issue/{key}/transitions"
        response = requests.post(
            url, headers=self.headers, json={"transition": {"id": match.id}}, timeout=DEFAULT_TIMEOUT
        )
        self._raise_for_ticket(key, response)
        logger.info(f"Moved {key} via '{match.name}' to {match.to}")
        return match

    @staticmethod
    def _ticket_key(ticket: str) -> str:
        key = parse_ticket_reference(ticket)
        if key is None:
            raise ValidationError(f"Invalid Jira ticket: {ticket}", hint="Use a key like FE-1234 or its browse URL")
        return key
