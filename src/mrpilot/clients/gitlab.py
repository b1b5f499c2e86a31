"""
GitLab REST v4 client for merge requests, labels, notes and discussions.
"""

import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from loguru import logger

from mrpilot.clients.http import DEFAULT_TIMEOUT, json_or_empty, raise_for_status
from mrpilot.errors import ValidationError

MR_URL_PATTERN = re.compile(r"^(https?://[^/]+)/(.+)/-/merge_requests/(\d+)")


def parse_remote_url(url: str) -> Tuple[str, str]:
    """Split a git remote URL into ``(host, project_path)``.

    Accepts ``git@host:group/project.git``, ``ssh://git@host/group/project.git``
    and ``https://host/group/project.git``.
    """
    url = url.strip()
    match = re.match(r"^[\w.-]+@([^:/]+):(.+?)(?:\.git)?/?$", url)
    if not match:
        match = re.match(r"^(?:ssh|https?)://(?:[^@/]+@)?([^/:]+)(?::\d+)?/(.+?)(?:\.git)?/?$", url)
    if not match:
        raise ValidationError(f"Unrecognized git remote URL: {url}")
    return match.group(1), match.group(2)


def encode_project_path(project_path: str) -> str:
    return quote(project_path, safe="")


def parse_merge_request_url(url: str) -> Tuple[str, str, int]:
    """Split an MR web URL into ``(base_url, project_path, iid)``."""
    match = MR_URL_PATTERN.match(url.strip())
    if not match:
        raise ValidationError(
            f"Not a merge request URL: {url}",
            hint="Expected https://<host>/<group>/<project>/-/merge_requests/<iid>",
        )
    return match.group(1), match.group(2), int(match.group(3))


def new_merge_request_url(host: str, project_path: str, source_branch: str, target_branch: str) -> str:
    return (
        f"https://{host}/{project_path}/-/merge_requests/new"
        f"?merge_request[source_branch]={quote(source_branch, safe='')}"
        f"&merge_request[target_branch]={quote(target_branch, safe='')}"
    )


class GitLabClient:
    """
    Client scoped to one GitLab project, authenticated with a personal access token.
    """

    def __init__(self, host: str, token: str, project_path: str):
        self.host = host
        self.project_path = project_path
        self.base_url = f"https://{host}/api/v4"
        self.project_url = f"{self.base_url}/projects/{encode_project_path(project_path)}"
        self.headers = {
            "PRIVATE-TOKEN": token,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        logger.debug(f"GitLab {method} {url}")
        response = requests.request(method, url, headers=self.headers, timeout=DEFAULT_TIMEOUT, **kwargs)
        raise_for_status("GitLab", response)
        return response

    # Merge requests

    def find_open_merge_request(self, source_branch: str) -> Optional[Dict[str, Any]]:
        response = self._request(
            "GET",
            f"{self.project_url}/merge_requests",
            params={"source_branch": source_branch, "state": "opened"},
        )
        merge_requests = response.json()
        return merge_requests[0] if merge_requests else None

    def get_merge_request(self, iid: int) -> Dict[str, Any]:
        return self._request("GET", f"{self.project_url}/merge_requests/{iid}").json()

    def create_merge_request(
        self,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
        draft: bool = True,
        assignee_id: Optional[int] = None,
        reviewer_ids: Optional[List[int]] = None,
        labels: Optional[List[str]] = None,
        remove_source_branch: bool = True,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "source_branch": source_branch,
            "target_branch": target_branch,
            "title": f"Draft: {title}" if draft and not title.startswith("Draft:") else title,
            "description": description,
            "work_in_progress": draft,
            "remove_source_branch": remove_source_branch,
        }
        if assignee_id:
            payload["assignee_id"] = assignee_id
        if reviewer_ids:
            payload["reviewer_ids"] = reviewer_ids
        if labels:
            payload["labels"] = ",".join(labels)
        return self._request("POST", f"{self.project_url}/merge_requests", json=payload).json()

    def update_merge_request(self, iid: int, **fields: Any) -> Dict[str, Any]:
        payload = {key: value for key, value in fields.items() if value is not None}
        for key in ("labels", "add_labels"):
            if isinstance(payload.get(key), list):
                payload[key] = ",".join(payload[key])
        return self._request("PUT", f"{self.project_url}/merge_requests/{iid}", json=payload).json()

    # Labels and users

    def list_labels(self) -> List[Dict[str, Any]]:
        labels: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = self._request(
                "GET", f"{self.project_url}/labels", params={"per_page": 100, "page": page}
            )
            batch = response.json()
            labels.extend(batch)
            if len(batch) < 100:
                break
            page += 1
        return labels

    def find_user_id(self, username: str) -> Optional[int]:
        username = username.lstrip("@")
        users = self._request("GET", f"{self.base_url}/users", params={"username": username}).json()
        if not users:
            logger.warning(f"GitLab user @{username} not found")
            return None
        return users[0].get("id")

    def current_user(self) -> Dict[str, Any]:
        return self._request("GET", f"{self.base_url}/user").json()

    # Notes

    def list_notes(self, iid: int, per_page: int = 100) -> List[Dict[str, Any]]:
        response = self._request(
            "GET",
            f"{self.project_url}/merge_requests/{iid}/notes",
            params={"per_page": per_page, "sort": "desc", "order_by": "updated_at"},
        )
        return response.json()

    def create_note(self, iid: int, body: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"{self.project_url}/merge_requests/{iid}/notes", json={"body": body}
        ).json()

    def update_note(self, iid: int, note_id: int, body: str) -> Dict[str, Any]:
        return self._request(
            "PUT", f"{self.project_url}/merge_requests/{iid}/notes/{note_id}", json={"body": body}
        ).json()

    # Discussions

    def list_discussions(self, iid: int) -> List[Dict[str, Any]]:
        discussions: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = self._request(
                "GET",
                f"{self.project_url}/merge_requests/{iid}/discussions",
                params={"per_page": 100, "page": page},
            )
            batch = response.json()
            discussions.extend(batch)
            if len(batch) < 100:
                break
            page += 1
        return discussions

    def reply_to_discussion(self, iid: int, discussion_id: str, body: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"{self.project_url}/merge_requests/{iid}/discussions/{discussion_id}/notes",
            json={"body": body},
        ).json()

    def resolve_discussion(self, iid: int, discussion_id: str) -> Dict[str, Any]:
        response = self._request(
            "PUT",
            f"{self.project_url}/merge_requests/{iid}/discussions/{discussion_id}",
            json={"resolved": True},
        )
        return json_or_empty(response)

    # Repository files

    def get_file_raw(self, path: str, ref: str) -> Optional[str]:
        url = f"{self.project_url}/repository/files/{quote(path, safe='')}/raw"
        response = requests.get(url, headers=self.headers, params={"ref": ref}, timeout=DEFAULT_TIMEOUT)
        if response.status_code == 404:
            return None
        raise_for_status("GitLab", response)
        return response.text
