"""AI code review bookkeeping on merge requests.

The SHA of the last reviewed head is stored in an MR note so later updates can
tell whether new commits arrived since the previous review.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from mrpilot.clients.gitlab import GitLabClient
from mrpilot.signature import append_signature

MARKER_PREFIX = "PANTHEON_AI_REVIEW_SHA:"
SHA_PATTERN = re.compile(r"^[0-9a-f]{7,40}$", re.IGNORECASE)


def marker_body(head_sha: str) -> str:
    return f"{MARKER_PREFIX} {head_sha}"


def extract_review_sha(text: Optional[str]) -> Optional[str]:
    if not text or MARKER_PREFIX not in text:
        return None
    after = text.split(MARKER_PREFIX, 1)[1].strip()
    sha = after.split()[0] if after else ""
    return sha if SHA_PATTERN.match(sha) else None


def last_reviewed_sha(notes: List[Dict[str, Any]]) -> Optional[str]:
    """SHA from the most recent marker note (notes are expected newest first)."""
    for note in notes:
        sha = extract_review_sha(note.get("body"))
        if sha:
            return sha
    return None


def upsert_review_marker(
    gitlab: GitLabClient, iid: int, head_sha: str, display_name: Optional[str] = None, owner: Optional[str] = None
) -> None:
    """Update the existing marker note or create one."""
    body = append_signature(marker_body(head_sha), display_name, owner)
    for note in gitlab.list_notes(iid):
        if MARKER_PREFIX in (note.get("body") or ""):
            gitlab.update_note(iid, note["id"], body)
            logger.debug(f"Updated AI review marker note {note['id']}")
            return
    gitlab.create_note(iid, body)
    logger.debug("Created AI review marker note")


@dataclass
class ReviewComment:
    """An unresolved discussion opened by the AI review bot."""

    discussion_id: str
    note_id: int
    body: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    created_at: Optional[str] = None
    replies: List[Dict[str, Any]] = field(default_factory=list)


def filter_ai_review_comments(discussions: List[Dict[str, Any]], bot_username: str) -> List[ReviewComment]:
    comments = []
    for discussion in discussions:
        notes = discussion.get("notes") or []
        if not notes:
            continue
        first = notes[0]
        if first.get("resolved"):
            continue
        if (first.get("author") or {}).get("username") != bot_username:
            continue
        position = first.get("position") or {}
        comments.append(
            ReviewComment(
                discussion_id=discussion.get("id"),
                note_id=first.get("id"),
                body=first.get("body") or "",
                file_path=position.get("new_path") or position.get("old_path"),
                line_number=position.get("new_line") or position.get("old_line"),
                created_at=first.get("created_at"),
                replies=[
                    {
                        "note_id": note.get("id"),
                        "body": note.get("body"),
                        "author": (note.get("author") or {}).get("username"),
                        "created_at": note.get("created_at"),
                    }
                    for note in notes[1:]
                ],
            )
        )
    return comments
