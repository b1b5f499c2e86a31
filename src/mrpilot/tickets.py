"""Jira ticket keys and the branch names derived from them."""

import re
from typing import Optional

TICKET_PATTERN = re.compile(r"^[A-Z0-9]+-[0-9]+$")
BRANCH_TICKET_PATTERN = re.compile(r"(?:^|/)([A-Z0-9]+-[0-9]+)(?:$|[/_-])")
FEATURE_PREFIX = "feature/"


def validate_ticket(ticket: Optional[str]) -> bool:
    return bool(ticket) and bool(TICKET_PATTERN.fullmatch(ticket))


def extract_ticket_from_branch(branch: Optional[str]) -> Optional[str]:
    """Ticket key embedded in a branch name such as ``feature/FE-1234``."""
    match = BRANCH_TICKET_PATTERN.search(branch or "")
    return match.group(1) if match else None


def feature_branch(ticket: str) -> str:
    return f"{FEATURE_PREFIX}{ticket}"


def extract_tickets(text: str) -> list:
    """Unique ticket keys mentioned in ``text``, sorted."""
    return sorted(set(re.findall(r"\b[A-Z][A-Z0-9]*-\d+\b", text or "")))


def parse_ticket_reference(value: Optional[str]) -> Optional[str]:
    """Ticket key from ``fe-1234`` or a ``.../browse/FE-1234`` URL; None when neither."""
    text = (value or "").strip()
    if "/" not in text:
        text = text.upper()
        return text if validate_ticket(text) else None
    match = re.search(r"/browse/([A-Z0-9]+-\d+)", text) or re.search(r"([A-Z0-9]+-\d+)", text)
    return match.group(1) if match else None
