"""SQLite repository adapters used by the sync engine."""

from __future__ import annotations

import pytest

from bookmark_sync.domain.exceptions.domain_exceptions import (
    BookmarkNotFoundError,
    InvalidRequestError,
    VersionConflictError,
)
from bookmark_sync.infrastructure.persistence.sqlite.repositories import (
    SqliteBookmarkRepositoryAdapter,
    SqliteSyncEventRepositoryAdapter,
    SqliteSyncVersionRepositoryAdapter,
)


@pytest.fixture
def repos(session_manager):
    with session_manager.connection_context():
        yield (
            SqliteBookmarkRepositoryAdapter(session_manager),
            SqliteSyncEventRepositoryAdapter(session_manager),
            SqliteSyncVersionRepositoryAdapter(session_manager),
        )


def _create(bookmarks, user="u1", **data):
    payload = {"title": "T", "url": "https://t.example", "is_folder": False, "sort_order": 0}
    payload.update(data)
    return bookmarks.create(user, payload)


def test_ledger_starts_at_zero_and_increments(repos):
    _, _, versions = repos

    assert versions.current_version("u1") == 0
    assert versions.increment_version("u1") == 1
    assert versions.increment_version("u1") == 2
    assert versions.current_version("u1") == 2
    assert versions.current_version("u2") == 0

    versions.reset("u1")
    assert versions.current_version("u1") == 0
    versions.reset("fresh")
    assert versions.current_version("fresh") == 0


def test_bookmark_create_and_get(repos):
    bookmarks, _, _ = repos
    row = _create(bookmarks, title="Docs", parent_id=None, sort_order=2)

    assert row["sync_version"] == 1
    assert row["is_deleted"] is False
    assert row["date_added"] == row["date_modified"]
    assert bookmarks.get(row["id"], "u1") == row
    assert bookmarks.get(row["id"], "someone-else") is None


def test_update_applies_only_sent_fields(repos):
    bookmarks, _, _ = repos
    row = _create(bookmarks, favicon="data:icon")

    updated = bookmarks.update(row["id"], "u1", {"title": "New", "url": None}, 1)

    assert updated["title"] == "New"
    assert updated["url"] == "https://t.example"
    assert updated["favicon"] == "data:icon"
    assert updated["sync_version"] == 2

    cleared = bookmarks.update(row["id"], "u1", {"favicon": None}, 2)
    assert cleared["favicon"] is None


def test_update_version_mismatch_and_missing_row(repos):
    bookmarks, _, _ = repos
    row = _create(bookmarks)

    with pytest.raises(VersionConflictError) as exc_info:
        bookmarks.update(row["id"], "u1", {"title": "x"}, 5)
    assert exc_info.value.current["id"] == row["id"]
    assert exc_info.value.current["sync_version"] == 1

    with pytest.raises(BookmarkNotFoundError):
        bookmarks.move("nope", "u1", None, 0, 1)


def test_soft_delete_hides_row_from_listing(repos):
    bookmarks, _, _ = repos
    keep = _create(bookmarks, title="keep", sort_order=1)
    drop = _create(bookmarks, title="drop", sort_order=0)

    deleted = bookmarks.soft_delete(drop["id"], "u1", 1)

    assert deleted["is_deleted"] is True
    assert deleted["deleted_at"] is not None
    assert [r["id"] for r in bookmarks.list_all("u1")] == [keep["id"]]
    assert bookmarks.get(drop["id"], "u1")["is_deleted"] is True
    assert bookmarks.soft_delete(drop["id"], "u1", 2) is None
    assert bookmarks.soft_delete("missing", "u1", 0) is None


def test_list_orders_by_sort_order(repos):
    bookmarks, _, _ = repos
    second = _create(bookmarks, title="b", sort_order=5)
    first = _create(bookmarks, title="a", sort_order=1)

    assert [r["id"] for r in bookmarks.list_all("u1")] == [first["id"], second["id"]]


def test_event_log_since_and_oldest(repos):
    _, events, _ = repos
    for version in (1, 2, 3):
        events.record("u1", "update", "b1", {"title": str(version)}, "c1", version)
    events.record("u2", "create", "b9", {}, "c1", 1)

    assert events.oldest_version("u1") == 1
    assert events.oldest_version("nobody") is None
    since = events.since("u1", 1)
    assert [e["sync_version"] for e in since] == [2, 3]
    assert since[0]["data"] == {"title": "2"}
    assert events.since("u1", 3) == []

    assert events.delete_all_for_user("u1") == 3
    assert events.oldest_version("u2") == 1


def test_event_type_is_validated(repos):
    _, events, _ = repos
    with pytest.raises(ValueError):
        events.record("u1", "rename", "b1", {}, "c1", 1)


def test_update_rejects_url_that_breaks_folder_rule(repos):
    bookmarks, _, _ = repos
    folder = _create(bookmarks, title="Dir", is_folder=True, url=None)
    leaf = _create(bookmarks)

    with pytest.raises(InvalidRequestError):
        bookmarks.update(folder["id"], "u1", {"url": "https://x"}, 1)
    with pytest.raises(InvalidRequestError):
        bookmarks.update(leaf["id"], "u1", {"url": ""}, 1)

    assert bookmarks.get(folder["id"], "u1")["url"] is None
    assert bookmarks.get(leaf["id"], "u1")["sync_version"] == 1
