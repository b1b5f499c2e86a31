"""Types describing a branch diff and its estimated variant impact."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class FileStatus(str, Enum):
    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"
    RENAMED = "Renamed"

    @classmethod
    def from_code(cls, code: str) -> "FileStatus":
        """Map a ``git diff --name-status`` letter to a status."""
        return {
            "A": cls.ADDED,
            "D": cls.DELETED,
            "R": cls.RENAMED,
        }.get(code.upper()[:1], cls.MODIFIED)


class LineKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass
class ChangedFile:
    """A file touched on the branch relative to its target."""

    path: str
    status: FileStatus = FileStatus.MODIFIED


@dataclass
class ChangedLine:
    """An added or removed line inside a hunk.

    ``line_number`` is the new-file line for additions and the old-file line for
    removals. ``anchor`` is always a position in the new file, so removals can
    be located in the current content. ``paired_line_number`` links a removal to
    a nearby addition (and back) when the two look like one edited line.
    """

    line_number: int
    kind: LineKind
    content: str
    anchor: int
    paired_line_number: Optional[int] = None


@dataclass
class DiffHunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    changed_lines: List[ChangedLine] = field(default_factory=list)


@dataclass(frozen=True)
class ImpactScope:
    """Which UI variants a change is believed to touch."""

    v3: bool = False
    v4: bool = False

    def __or__(self, other: "ImpactScope") -> "ImpactScope":
        return ImpactScope(v3=self.v3 or other.v3, v4=self.v4 or other.v4)

    @property
    def is_empty(self) -> bool:
        return not (self.v3 or self.v4)

    @classmethod
    def all(cls) -> "ImpactScope":
        return cls(v3=True, v4=True)

    @classmethod
    def only(cls, variant: str) -> "ImpactScope":
        return cls(v3=variant == "v3", v4=variant == "v4")

    def variants(self) -> List[str]:
        return [name for name, flag in (("v3", self.v3), ("v4", self.v4)) if flag]
