from unittest.mock import MagicMock

from mrpilot.review import (
    MARKER_PREFIX,
    extract_review_sha,
    filter_ai_review_comments,
    last_reviewed_sha,
    marker_body,
    upsert_review_marker,
)

SHA = "0123456789abcdef0123456789abcdef01234567"


def test_extract_review_sha():
    assert extract_review_sha(marker_body(SHA)) == SHA
    assert extract_review_sha(f"{MARKER_PREFIX} {SHA}\n— AI assistant \"Pilot\"") == SHA
    assert extract_review_sha(f"{MARKER_PREFIX} not-a-sha") is None
    assert extract_review_sha("regular comment") is None
    assert extract_review_sha(None) is None


def test_last_reviewed_sha_takes_newest_marker():
    notes = [
        {"body": "LGTM"},
        {"body": marker_body("abcdef1")},
        {"body": marker_body("1234567")},
    ]

    assert last_reviewed_sha(notes) == "abcdef1"
    assert last_reviewed_sha([{"body": None}]) is None


def test_upsert_review_marker_updates_existing_note():
    gitlab = MagicMock()
    gitlab.list_notes.return_value = [{"id": 1, "body": "hi"}, {"id": 2, "body": marker_body("abcdef1")}]

    upsert_review_marker(gitlab, 7, SHA, "Pilot")

    gitlab.update_note.assert_called_once_with(7, 2, f'{MARKER_PREFIX} {SHA}\n— AI assistant "Pilot"')
    gitlab.create_note.assert_not_called()


def test_upsert_review_marker_creates_note():
    gitlab = MagicMock()
    gitlab.list_notes.return_value = []

    upsert_review_marker(gitlab, 7, SHA)

    gitlab.create_note.assert_called_once_with(7, marker_body(SHA))


def test_filter_ai_review_comments():
    bot = "review_bot"
    discussions = [
        {
            "id": "d1",
            "notes": [
                {
                    "id": 11,
                    "body": "Possible null dereference",
                    "author": {"username": bot},
                    "position": {"new_path": "src/a.ts", "new_line": 12},
                    "created_at": "2024-01-01T00:00:00Z",
                },
                {"id": 12, "body": "Fixed", "author": {"username": "dev"}},
            ],
        },
        {"id": "d2", "notes": [{"id": 21, "body": "resolved", "author": {"username": bot}, "resolved": True}]},
        {"id": "d3", "notes": [{"id": 31, "body": "human", "author": {"username": "dev"}}]},
        {"id": "d4", "notes": []},
    ]

    comments = filter_ai_review_comments(discussions, bot)

    assert [c.discussion_id for c in comments] == ["d1"]
    comment = comments[0]
    assert (comment.file_path, comment.line_number) == ("src/a.ts", 12)
    assert comment.replies == [{"note_id": 12, "body": "Fixed", "author": "dev", "created_at": None}]
