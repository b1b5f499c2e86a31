"""Signature line appended to text the agent posts on a developer's behalf."""

import re
from typing import Optional

SIGNATURE_PATTERN = re.compile(r'^— .*AI assistant ".+"$')


def signature_line(display_name: str, owner: Optional[str] = None) -> str:
    if owner:
        return f'— {owner}\'s AI assistant "{display_name}"'
    return f'— AI assistant "{display_name}"'


def _last_non_empty(lines):
    for index in range(len(lines) - 1, -1, -1):
        if lines[index].strip():
            return index
    return -1


def append_signature(message: str, display_name: Optional[str], owner: Optional[str] = None) -> str:
    """Append the signature once; without a display name the message is returned untouched."""
    if not display_name:
        return message
    line = signature_line(display_name, owner)
    base = message.rstrip("\r\n")
    if not base:
        return line
    lines = base.splitlines()
    index = _last_non_empty(lines)
    if index >= 0 and lines[index] == line:
        return base
    return f"{base}\n{line}"


def strip_signature(message: str) -> str:
    """Remove a trailing signature line, whichever agent name it carries."""
    base = message.rstrip("\r\n")
    lines = base.splitlines()
    index = _last_non_empty(lines)
    if index < 0 or not SIGNATURE_PATTERN.match(lines[index].strip()):
        return message
    return "\n".join(lines[:index]).rstrip("\r\n")
