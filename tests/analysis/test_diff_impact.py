"""Tests for the diff-impact heuristics that pick the 3.0UI / 4.0UI labels."""

from mrpilot.analysis.diff_impact import (
    HeuristicImpactClassifier,
    analyze_file_impact,
    analyze_impact_scope,
    header_scope,
    pair_changed_lines,
    parse_hunks,
    path_scope,
    resolve_class_list,
)
from mrpilot.models.diff import ChangedFile, FileStatus, ImpactScope, LineKind


class FakeDiffSource:
    """In-memory stand-in for GitDiffSource."""

    def __init__(self, files):
        self.files = files

    def diff(self, path):
        return self.files[path]["diff"]

    def content(self, path):
        return self.files[path].get("content")

    def pre_image(self, path):
        return self.files[path].get("pre_image")


class BrokenDiffSource(FakeDiffSource):
    def content(self, path):
        raise OSError("disk on fire")


TERNARY_CONTENT = "const size = isV4()\n  ? 'large'\n  : 'small';\n"


def test_parse_hunks_numbers_lines():
    diff = (
        "diff --git a/x.ts b/x.ts\n"
        "--- a/x.ts\n"
        "+++ b/x.ts\n"
        "@@ -1,3 +1,3 @@\n"
        " a\n"
        "-b\n"
        "+B\n"
        " c\n"
        "\\ No newline at end of file\n"
    )
    hunks = parse_hunks(diff)
    assert len(hunks) == 1
    hunk = pair_changed_lines(hunks[0])
    removed, added = hunk.changed_lines
    assert (removed.kind, removed.line_number, removed.content) == (LineKind.REMOVED, 2, "b")
    assert (added.kind, added.line_number, added.content) == (LineKind.ADDED, 2, "B")
    assert removed.paired_line_number == 2
    assert added.paired_line_number == 2


def test_parse_hunks_without_header():
    assert parse_hunks("") == []
    assert parse_hunks("Binary files a/x.png and b/x.png differ") == []


def test_path_markers():
    assert path_scope("src/v3/Button.tsx") == ImpactScope.only("v3")
    assert path_scope("src/components/Button.v4.tsx") == ImpactScope.only("v4")
    assert path_scope("src/av3x/Button.tsx").is_empty


def test_header_marker():
    assert header_scope("// v4 only\nexport const A = 1;\n") == ImpactScope.only("v4")
    assert header_scope("/* @variant v3 */\n") == ImpactScope.only("v3")
    assert header_scope("export const note = 'v4 only';\n").is_empty


def test_true_branch_of_variant_ternary():
    diff = "@@ -1,3 +1,3 @@\n const size = isV4()\n-  ? 'medium'\n+  ? 'large'\n   : 'small';\n"
    scope = analyze_file_impact("src/Title.tsx", diff, TERNARY_CONTENT)
    assert scope == ImpactScope.only("v4")


def test_false_branch_of_variant_ternary():
    content = "const size = isV4()\n  ? 'large'\n  : 'tiny';\n"
    diff = "@@ -1,3 +1,3 @@\n const size = isV4()\n   ? 'large'\n-  : 'small';\n+  : 'tiny';\n"
    scope = analyze_file_impact("src/Title.tsx", diff, content)
    assert scope == ImpactScope.only("v3")


def test_nearest_predicate_wins():
    content = "const cls = cn(\n  isV3() && 'a',\n  'b',\n  'd',\n  isV4() && 'c',\n);\n"
    diff = "@@ -1,6 +1,6 @@\n const cls = cn(\n   isV3() && 'a',\n   'b',\n-  'e',\n+  'd',\n   isV4() && 'c',\n );\n"
    scope = analyze_file_impact("src/cls.ts", diff, content)
    assert scope == ImpactScope.only("v4")


def test_equidistant_predicates_mark_both():
    content = "const cls = cn(\n  isV3() && 'a',\n  'b',\n  isV4() && 'c',\n);\n"
    diff = "@@ -1,5 +1,5 @@\n const cls = cn(\n   isV3() && 'a',\n-  'x',\n+  'b',\n   isV4() && 'c',\n );\n"
    scope = analyze_file_impact("src/cls.ts", diff, content)
    assert scope == ImpactScope.all()


def test_negated_predicate_selects_the_other_variant():
    content = "if (!isV4()) renderLegacy();\n"
    diff = "@@ -1 +1 @@\n-if (!isV4()) renderOld();\n+if (!isV4()) renderLegacy();\n"
    assert analyze_file_impact("src/a.ts", diff, content) == ImpactScope.only("v3")


def test_change_without_evidence_is_empty_per_file():
    content = "export function add(a, b) {\n  return a + b;\n}\n"
    diff = "@@ -1,3 +1,3 @@\n export function add(a, b) {\n-  return a - b;\n+  return a + b;\n }\n"
    assert analyze_file_impact("src/math.ts", diff, content).is_empty


def test_restored_class_list_is_suppressed():
    before = "const cls = cn('btn', isV4() && 'btn-new');\n"
    after = "const cls = cn(isV4() && 'btn-new', 'btn');\n"
    diff = f"@@ -1 +1 @@\n-{before}+{after}"

    classifier = HeuristicImpactClassifier()
    assert classifier.classify("src/b.ts", diff, after) == ImpactScope.only("v4")
    assert classifier.classify("src/b.ts", diff, after, pre_image=before).is_empty


def test_changed_class_list_is_kept():
    before = "const cls = cn('btn', isV4() && 'btn-new');\n"
    after = "const cls = cn('btn', isV4() && 'btn-next');\n"
    diff = f"@@ -1 +1 @@\n-{before}+{after}"
    scope = HeuristicImpactClassifier().classify("src/b.ts", diff, after, pre_image=before)
    assert scope == ImpactScope.only("v4")


def test_resolve_class_list():
    args = "'btn', { 'btn-v4': isV4(), 'is-open': open }, isV3() ? 'old' : 'new'"
    assert resolve_class_list(args, "v4") == ["btn", "btn-v4", "is-open?open", "new"]
    assert resolve_class_list(args, "v3") == ["btn", "is-open?open", "old"]


def test_no_evidence_anywhere_means_all_variants():
    source = FakeDiffSource(
        {
            "src/math.ts": {
                "diff": "@@ -1 +1 @@\n-export const x = 1;\n+export const x = 2;\n",
                "content": "export const x = 2;\n",
            }
        }
    )
    assert analyze_impact_scope([ChangedFile("src/math.ts")], source) == ImpactScope.all()


def test_scopes_are_combined_across_files():
    source = FakeDiffSource(
        {
            "src/v3/Old.tsx": {"diff": "@@ -1 +1 @@\n-a\n+b\n", "content": "b\n"},
            "src/Title.tsx": {
                "diff": "@@ -1,3 +1,3 @@\n const size = isV4()\n-  ? 'medium'\n+  ? 'large'\n   : 'small';\n",
                "content": TERNARY_CONTENT,
            },
        }
    )
    only_v3 = analyze_impact_scope([ChangedFile("src/v3/Old.tsx")], source)
    assert only_v3 == ImpactScope.only("v3")

    both = analyze_impact_scope([ChangedFile("src/v3/Old.tsx"), ChangedFile("src/Title.tsx")], source)
    assert both == ImpactScope.all()


def test_analysis_failure_fails_open():
    source = BrokenDiffSource({"src/v4/New.tsx": {"diff": "@@ -1 +1 @@\n-a\n+b\n"}})
    assert analyze_impact_scope([ChangedFile("src/v4/New.tsx")], source) == ImpactScope.all()


def test_deleted_file_uses_pre_image_header():
    source = FakeDiffSource(
        {
            "src/Legacy.tsx": {
                "diff": "@@ -1,2 +0,0 @@\n-// v3 only\n-export const Legacy = null;\n",
                "content": "should not be read",
                "pre_image": "// v3 only\nexport const Legacy = null;\n",
            }
        }
    )
    scope = analyze_impact_scope([ChangedFile("src/Legacy.tsx", FileStatus.DELETED)], source)
    assert scope == ImpactScope.only("v3")
