"""Best-effort estimate of which UI variant (v3 / v4) a branch diff touches.

This is text scanning, not program analysis: it looks at hunk positions, nearby
version predicates, ternaries gated on those predicates and class-list builder
calls. It is unsound by nature, so every uncertain path ends in "all variants".
"""

import re
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from loguru import logger

from mrpilot.git_ops import GitExecutor
from mrpilot.models.diff import ChangedFile, ChangedLine, DiffHunk, FileStatus, ImpactScope, LineKind

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

PAIR_WINDOW = 5
PREDICATE_WINDOW = 10
TERNARY_WINDOW = 30
HEADER_LINES = 10

VARIANTS = ("v3", "v4")
OTHER_VARIANT = {"v3": "v4", "v4": "v3"}

PATH_MARKERS = {
    variant: re.compile(rf"(?:^|[/._-]){variant}(?:[/._-]|$)", re.IGNORECASE) for variant in VARIANTS
}
HEADER_COMMENT = re.compile(r"^\s*(?://|/\*|\*|<!--|\{/\*|#)")
HEADER_MARKER = re.compile(r"\bv([34])(?:\.0)?(?:\s*ui)?[\s-]+only\b|@variant\s+v([34])\b", re.IGNORECASE)

# isV4(), isV4UI, isVersion3(), uiVersion === 4, version === '3.0'
PREDICATE = re.compile(
    r"\bis(?:Ui|UI)?V(?:ersion)?([34])\w*\b|\b\w*[vV]ersion\s*[!=]==?\s*['\"]?([34])(?:\.0)?\b"
)
BUILDER_CALL = re.compile(r"\b(?:classNames|classnames|clsx|cx|cn|twMerge)\s*\(")


class ImpactClassifier(Protocol):
    """Anything that can map one file's change to an ImpactScope."""

    def classify(
        self, path: str, diff_text: str, content: Optional[str], pre_image: Optional[str] = None
    ) -> ImpactScope: ...


# Diff parsing


def parse_hunks(diff_text: str) -> List[DiffHunk]:
    """Parse unified diff text into hunks with per-line numbering.

    The new-file counter advances on context and added lines, the old-file
    counter on context and removed lines. Text without a hunk header yields [].
    """
    hunks: List[DiffHunk] = []
    current: Optional[DiffHunk] = None
    old_no = new_no = 0

    for line in (diff_text or "").splitlines():
        if line.startswith("diff --git"):
            current = None
            continue
        match = HUNK_HEADER.match(line)
        if match:
            current = DiffHunk(
                old_start=int(match.group(1)),
                old_lines=int(match.group(2) or 1),
                new_start=int(match.group(3)),
                new_lines=int(match.group(4) or 1),
            )
            hunks.append(current)
            old_no, new_no = current.old_start, current.new_start
            continue
        if current is None or line.startswith("\\"):
            continue
        if line.startswith("+"):
            current.changed_lines.append(ChangedLine(new_no, LineKind.ADDED, line[1:], anchor=new_no))
            new_no += 1
        elif line.startswith("-"):
            current.changed_lines.append(ChangedLine(old_no, LineKind.REMOVED, line[1:], anchor=new_no))
            old_no += 1
        else:
            old_no += 1
            new_no += 1
    return hunks


def pair_changed_lines(hunk: DiffHunk, window: int = PAIR_WINDOW) -> DiffHunk:
    """Pair each added line with the nearest unpaired removed line within ``window`` scan positions."""
    lines = hunk.changed_lines
    taken = set()
    for i, line in enumerate(lines):
        if line.kind != LineKind.ADDED:
            continue
        best = None
        for j in range(max(0, i - window), min(len(lines), i + window + 1)):
            candidate = lines[j]
            if candidate.kind != LineKind.REMOVED or j in taken:
                continue
            if best is None or abs(j - i) < abs(best - i):
                best = j
        if best is not None:
            taken.add(best)
            line.paired_line_number = lines[best].line_number
            lines[best].paired_line_number = line.line_number
    return hunk


# Text scanning helpers


def string_mask(text: str) -> List[bool]:
    """Mark characters inside string literals or comments so bracket scans can skip them."""
    mask = [False] * len(text)
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in ("'", '"', "`"):
            quote = ch
            start = i
            i += 1
            while i < n and text[i] != quote:
                if text[i] == "\\":
                    i += 1
                elif quote != "`" and text[i] == "\n":
                    break
                i += 1
            for k in range(start, min(i + 1, n)):
                mask[k] = True
        elif text.startswith("//", i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            for k in range(i, end):
                mask[k] = True
            i = end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            for k in range(i, end):
                mask[k] = True
            i = end - 1
        i += 1
    return mask


def predicate_variant(text: str, match: "re.Match") -> str:
    """Variant selected by one predicate match, flipped by a leading `!` or a `!==` comparison."""
    variant = f"v{match.group(1) or match.group(2)}"
    negated = text[: match.start()].rstrip().endswith("!") or "!=" in match.group(0)
    return OTHER_VARIANT[variant] if negated else variant


def condition_variant(condition: str) -> Optional[str]:
    """The variant a boolean expression selects, or None when it names zero or both."""
    found = {predicate_variant(condition, match) for match in PREDICATE.finditer(condition)}
    return found.pop() if len(found) == 1 else None


def _window(lines: List[str], anchor: int, size: int) -> Tuple[int, int]:
    """1-based inclusive window bounds around ``anchor``."""
    return max(1, anchor - size), min(len(lines), anchor + size)


class _Ternary:
    __slots__ = ("variant", "true_span", "false_span")

    def __init__(self, variant: str, true_span: Tuple[int, int], false_span: Tuple[int, int]):
        self.variant = variant
        self.true_span = true_span
        self.false_span = false_span


def find_ternaries(text: str, mask: Optional[List[bool]] = None) -> List[_Ternary]:
    """Find ``cond ? a : b`` expressions whose condition names exactly one variant.

    The ``:`` is matched by bracket depth, ignoring string contents, optional
    chaining (``?.``), nullish operators (``??``) and optional-property ``?:``.
    """
    mask = mask if mask is not None else string_mask(text)
    n = len(text)
    ternaries = []

    for q, ch in enumerate(text):
        if ch != "?" or mask[q]:
            continue
        nxt = text[q + 1] if q + 1 < n else ""
        prev = text[q - 1] if q > 0 else ""
        if nxt in ("?", ".", ":") or prev == "?":
            continue

        colon = _scan_colon(text, mask, q + 1)
        if colon is None:
            continue
        end = _scan_branch_end(text, mask, colon + 1)
        start = _scan_condition_start(text, mask, q - 1)
        condition = re.sub(r"^\s*return\b", "", text[start:q])
        variant = condition_variant(condition)
        if variant:
            ternaries.append(_Ternary(variant, (q + 1, colon), (colon + 1, end)))
    return ternaries


def _scan_colon(text: str, mask: List[bool], pos: int) -> Optional[int]:
    depth = 0
    pending = 0
    for i in range(pos, len(text)):
        if mask[i]:
            continue
        ch = text[i]
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth < 0:
                return None
        elif depth == 0 and ch == ";":
            return None
        elif depth == 0 and ch == "?" and text[i + 1 : i + 2] not in ("?", ".", ":") and text[i - 1] != "?":
            pending += 1
        elif depth == 0 and ch == ":":
            if pending:
                pending -= 1
            else:
                return i
    return None


def _scan_branch_end(text: str, mask: List[bool], pos: int) -> int:
    depth = 0
    pending = 0
    for i in range(pos, len(text)):
        if mask[i]:
            continue
        ch = text[i]
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth < 0:
                return i
        elif depth == 0 and ch in ",;":
            return i
        elif depth == 0 and ch == "?" and text[i + 1 : i + 2] not in ("?", ".", ":") and text[i - 1] != "?":
            pending += 1
        elif depth == 0 and ch == ":":
            if not pending:
                return i
            pending -= 1
    return len(text)


def _scan_condition_start(text: str, mask: List[bool], pos: int) -> int:
    depth = 0
    for i in range(pos, -1, -1):
        if mask[i]:
            continue
        ch = text[i]
        if ch in ")]}":
            depth += 1
        elif ch in "([{":
            if depth == 0:
                return i + 1
            depth -= 1
        elif depth == 0 and ch in ",;?:":
            return i + 1
        elif depth == 0 and ch == "=" and text[i + 1 : i + 2] != "=" and text[i - 1 : i] not in ("=", "!", "<", ">"):
            return i + 1
        elif depth == 0 and ch == ">" and text[i - 1 : i] == "=":
            return i + 1
    return 0


def find_builder_calls(text: str, mask: Optional[List[bool]] = None) -> List[Tuple[int, int]]:
    """Character spans ``(open_paren, close_paren)`` of class-list builder calls."""
    mask = mask if mask is not None else string_mask(text)
    spans = []
    for match in BUILDER_CALL.finditer(text):
        if mask[match.start()]:
            continue
        open_paren = match.end() - 1
        depth = 0
        for i in range(open_paren, len(text)):
            if mask[i]:
                continue
            if text[i] in "([{":
                depth += 1
            elif text[i] in ")]}":
                depth -= 1
                if depth == 0:
                    spans.append((open_paren, i))
                    break
    return spans


def split_top_level(text: str, separator: str = ",") -> List[str]:
    mask = string_mask(text)
    parts = []
    depth = 0
    last = 0
    for i, ch in enumerate(text):
        if mask[i]:
            continue
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == separator and depth == 0:
            parts.append(text[last:i])
            last = i + 1
    parts.append(text[last:])
    return [part.strip() for part in parts if part.strip()]


def _literal_classes(expression: str) -> Optional[List[str]]:
    expression = expression.strip()
    if len(expression) >= 2 and expression[0] == expression[-1] and expression[0] in ("'", '"', "`"):
        return expression[1:-1].split()
    return None


def _evaluate(condition: str, variant: str) -> Optional[bool]:
    selected = condition_variant(condition)
    if selected is None:
        return None
    return selected == variant


def resolve_class_list(arguments: str, variant: str) -> List[str]:
    """Classes a builder call yields when ``variant`` is active.

    Conditions that do not mention a variant stay symbolic, so an edit to an
    unrelated condition still reads as a change.
    """
    classes: List[str] = []
    for arg in split_top_level(arguments):
        literal = _literal_classes(arg)
        if literal is not None:
            classes.extend(literal)
            continue

        if arg.startswith("{") and arg.endswith("}"):
            for entry in split_top_level(arg[1:-1]):
                key, sep, condition = entry.partition(":")
                if not sep:
                    classes.append(f"{key.strip()}?")
                    continue
                name = " ".join(_literal_classes(key) or [key.strip().strip("[]")])
                result = _evaluate(condition, variant)
                if result is None:
                    classes.append(f"{name}?{condition.strip()}")
                elif result:
                    classes.extend(name.split())
            continue

        ternaries = find_ternaries(arg)
        if ternaries:
            t = ternaries[0]
            branch = arg[t.true_span[0] : t.true_span[1]] if t.variant == variant else arg[t.false_span[0] : t.false_span[1]]
            classes.extend(_literal_classes(branch) or [branch.strip()])
            continue

        left, sep, right = arg.partition("&&")
        if sep:
            result = _evaluate(left, variant)
            if result is None:
                classes.append(arg)
            elif result:
                classes.extend(_literal_classes(right) or [right.strip()])
            continue

        classes.append(arg)
    return sorted(set(classes))


# Classifier


def path_scope(path: str) -> ImpactScope:
    return ImpactScope(
        v3=bool(PATH_MARKERS["v3"].search(path)),
        v4=bool(PATH_MARKERS["v4"].search(path)),
    )


def header_scope(content: Optional[str]) -> ImpactScope:
    scope = ImpactScope()
    for line in (content or "").splitlines()[:HEADER_LINES]:
        if not HEADER_COMMENT.match(line):
            continue
        for match in HEADER_MARKER.finditer(line):
            scope |= ImpactScope.only(f"v{match.group(1) or match.group(2)}")
    return scope


class HeuristicImpactClassifier:
    """Regex and proximity heuristics over the current file content."""

    def __init__(
        self,
        predicate_window: int = PREDICATE_WINDOW,
        ternary_window: int = TERNARY_WINDOW,
        suppress_restored: bool = True,
    ):
        self.predicate_window = predicate_window
        self.ternary_window = ternary_window
        self.suppress_restored = suppress_restored

    def classify(
        self, path: str, diff_text: str, content: Optional[str], pre_image: Optional[str] = None
    ) -> ImpactScope:
        explicit = path_scope(path) | header_scope(content) | header_scope(pre_image if content is None else None)
        if not explicit.is_empty:
            logger.debug(f"{path}: explicit variant marker {explicit.variants()}")
            return explicit

        hunks = parse_hunks(diff_text)
        if not hunks or not content:
            return ImpactScope()

        lines = content.splitlines()
        scope = ImpactScope()
        for hunk in hunks:
            pair_changed_lines(hunk)
            for changed in hunk.changed_lines:
                if changed.kind == LineKind.REMOVED and changed.paired_line_number is not None:
                    continue
                anchor = min(max(changed.anchor, 1), len(lines))
                line_scope = self.line_scope(lines, anchor)
                if self.suppress_restored and pre_image is not None and not line_scope.is_empty:
                    line_scope = self.drop_restored(line_scope, content, pre_image, anchor)
                scope |= line_scope
        logger.debug(f"{path}: code scan gives {scope.variants() or 'no evidence'}")
        return scope

    def line_scope(self, lines: List[str], anchor: int) -> ImpactScope:
        """Variants for one changed line; ternary evidence beats predicate proximity."""
        scope = self.ternary_scope(lines, anchor)
        if not scope.is_empty:
            return scope
        return self.proximity_scope(lines, anchor)

    def ternary_scope(self, lines: List[str], anchor: int) -> ImpactScope:
        first, last = _window(lines, anchor, self.ternary_window)
        text = "\n".join(lines[first - 1 : last])
        offset = sum(len(line) + 1 for line in lines[first - 1 : anchor - 1])
        line_text = lines[anchor - 1]
        stripped = len(line_text) - len(line_text.lstrip())
        line_span = (offset + stripped, offset + len(line_text.rstrip()))
        if line_span[0] >= line_span[1]:
            return ImpactScope()

        best: Optional[Tuple[int, ImpactScope]] = None
        for ternary in find_ternaries(text):
            hits_true = _overlaps(line_span, ternary.true_span)
            hits_false = _overlaps(line_span, ternary.false_span)
            if not (hits_true or hits_false):
                continue
            if hits_true and hits_false:
                candidate = ImpactScope.all()
            elif hits_true:
                candidate = ImpactScope.only(ternary.variant)
            else:
                candidate = ImpactScope.only(OTHER_VARIANT[ternary.variant])
            span = ternary.false_span[1] - ternary.true_span[0]
            if best is None or span < best[0]:
                best = (span, candidate)
        return best[1] if best else ImpactScope()

    def proximity_scope(self, lines: List[str], anchor: int) -> ImpactScope:
        first, last = _window(lines, anchor, self.predicate_window)
        own_line = lines[anchor - 1]
        window_text = "\n".join(lines[first - 1 : last])
        if not PREDICATE.search(own_line) and not BUILDER_CALL.search(window_text):
            return ImpactScope()

        nearest: Dict[str, int] = {}
        for number in range(first, last + 1):
            text = lines[number - 1]
            for match in PREDICATE.finditer(text):
                variant = predicate_variant(text, match)
                distance = abs(number - anchor)
                nearest[variant] = min(distance, nearest.get(variant, distance))

        if not nearest:
            return ImpactScope()
        if len(nearest) == 1:
            return ImpactScope.only(next(iter(nearest)))
        if nearest["v3"] < nearest["v4"]:
            return ImpactScope.only("v3")
        if nearest["v4"] < nearest["v3"]:
            return ImpactScope.only("v4")
        return ImpactScope.all()

    def drop_restored(self, scope: ImpactScope, content: str, pre_image: str, anchor: int) -> ImpactScope:
        """Clear variants whose builder-call output is identical before and after the change.

        Calls are matched by their order in the file; when the call count
        changed, nothing is suppressed.
        """
        after_calls = find_builder_calls(content)
        before_calls = find_builder_calls(pre_image)
        if not after_calls or len(after_calls) != len(before_calls):
            return scope

        raw_lines = content.splitlines(keepends=True)
        line_start = sum(len(line) for line in raw_lines[: anchor - 1])
        line_span = (line_start, line_start + len(raw_lines[anchor - 1]))
        for index, (start, end) in enumerate(after_calls):
            if not _overlaps(line_span, (start, end + 1)):
                continue
            b_start, b_end = before_calls[index]
            after_args = content[start + 1 : end]
            before_args = pre_image[b_start + 1 : b_end]
            kept = {
                variant: getattr(scope, variant)
                and resolve_class_list(after_args, variant) != resolve_class_list(before_args, variant)
                for variant in VARIANTS
            }
            return ImpactScope(**kept)
        return scope


def _overlaps(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]


# Repository level


class GitDiffSource:
    """Reads diffs, current content and merge-base pre-images for a target branch."""

    def __init__(self, git: GitExecutor, target: str):
        self.git = git
        self.target = target
        self._base = git.merge_base(f"{git.remote}/{target}")

    def diff(self, path: str) -> str:
        return self.git.diff_file(self.target, path)

    def content(self, path: str) -> Optional[str]:
        return self.git.read_file(path)

    def pre_image(self, path: str) -> Optional[str]:
        if not self._base:
            return None
        return self.git.show_file(self._base, path)


def analyze_file_impact(
    path: str,
    diff_text: str,
    content: Optional[str],
    pre_image: Optional[str] = None,
    classifier: Optional[ImpactClassifier] = None,
) -> ImpactScope:
    classifier = classifier or HeuristicImpactClassifier()
    return classifier.classify(path, diff_text, content, pre_image)


def analyze_impact_scope(
    files: Iterable[ChangedFile],
    source: GitDiffSource,
    classifier: Optional[ImpactClassifier] = None,
) -> ImpactScope:
    """OR the per-file scopes; a file that fails to analyze, or no evidence at all, means every variant."""
    classifier = classifier or HeuristicImpactClassifier()
    scope = ImpactScope()
    for changed in files:
        try:
            content = None if changed.status == FileStatus.DELETED else source.content(changed.path)
            pre_image = None if changed.status == FileStatus.ADDED else source.pre_image(changed.path)
            scope |= classifier.classify(changed.path, source.diff(changed.path), content, pre_image)
        except Exception as e:
            logger.warning(f"Impact analysis failed for {changed.path}, assuming all variants: {e}")
            scope |= ImpactScope.all()

    if scope.is_empty:
        logger.info("No variant-specific evidence in the diff, labeling every variant")
        return ImpactScope.all()
    return scope
