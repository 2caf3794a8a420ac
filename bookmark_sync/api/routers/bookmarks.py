"""
Bookmark REST endpoints.

Mutations made here carry client id ``"api"``. They are recorded in the event
log but not pushed to live WebSocket connections; devices pick them up on
their next ``sync_request``. A version conflict on update, move or delete is
answered with ``{"success": true}`` and no write; clients that need conflict
details use the WebSocket protocol.
"""

from fastapi import APIRouter, Depends, Query, status

from bookmark_sync.api.exceptions import ResourceNotFoundError, ValidationError
from bookmark_sync.api.models.requests import (
    BatchCreateRequest,
    CreateBookmarkRequest,
    MoveBookmarkRequest,
    UpdateBookmarkRequest,
)
from bookmark_sync.api.routers.auth import get_current_user, get_sync_engine
from bookmark_sync.api.services.sync_engine import MutationResult, SyncEngine
from bookmark_sync.core.logging_utils import get_logger
from bookmark_sync.domain.exceptions.domain_exceptions import BookmarkNotFoundError

logger = get_logger(__name__)
router = APIRouter()

API_CLIENT_ID = "api"


def _mutation_body(result: MutationResult) -> dict:
    if not result.applied:
        return {"success": True}
    return {"bookmark": result.bookmark, "syncVersion": result.sync_version}


@router.get("")
async def list_bookmarks(
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """All live bookmarks of the user with the current sync version."""
    bookmarks, sync_version = await engine.list_bookmarks(user_id)
    return {"bookmarks": bookmarks, "syncVersion": sync_version}


@router.post("/clear")
async def clear_bookmarks(
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Hard-delete every bookmark and event of the user and reset the version to 0."""
    await engine.clear(user_id)
    return {"success": True}


@router.post("/batch", status_code=status.HTTP_201_CREATED)
async def create_bookmarks_batch(
    body: BatchCreateRequest,
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Create many bookmarks in one transaction, mapping each ``localId`` to its new id."""
    max_items = engine.batch_max_items
    if len(body.bookmarks) > max_items:
        raise ValidationError(
            f"Batch too large (max {max_items} items)",
            details={"count": len(body.bookmarks), "max": max_items},
        )

    results = await engine.create_many(user_id, body.bookmarks, API_CLIENT_ID)
    return {
        "bookmarks": [{"id": r.bookmark_id, "localId": r.local_id} for r in results],
        "count": len(results),
    }


@router.get("/search")
async def search_bookmarks(
    q: str = Query(default=""),
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    if not q.strip():
        raise ValidationError("Search query required", details={"field": "q"})
    results = await engine.search(user_id, q.strip())
    return {"results": results, "total": len(results)}


@router.get("/{bookmark_id}")
async def get_bookmark(
    bookmark_id: str,
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    bookmark = await engine.get_bookmark(user_id, bookmark_id)
    if bookmark is None:
        raise ResourceNotFoundError("Bookmark", bookmark_id)
    return bookmark


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_bookmark(
    body: CreateBookmarkRequest,
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    result = await engine.create(user_id, body, API_CLIENT_ID)
    return _mutation_body(result)


@router.put("/{bookmark_id}")
@router.patch("/{bookmark_id}")
async def update_bookmark(
    bookmark_id: str,
    body: UpdateBookmarkRequest,
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        result = await engine.update(
            user_id, bookmark_id, body, body.expected_version, API_CLIENT_ID
        )
    except BookmarkNotFoundError:
        raise ResourceNotFoundError("Bookmark", bookmark_id) from None
    return _mutation_body(result)


@router.put("/{bookmark_id}/move")
async def move_bookmark(
    bookmark_id: str,
    body: MoveBookmarkRequest,
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    # expectedVersion is fixed to 0 on this route, so a stored row answers as a conflict.
    try:
        result = await engine.move(
            user_id, bookmark_id, body.parent_id, body.sort_order, 0, API_CLIENT_ID
        )
    except BookmarkNotFoundError:
        raise ResourceNotFoundError("Bookmark", bookmark_id) from None
    return _mutation_body(result)


@router.delete("/{bookmark_id}")
async def delete_bookmark(
    bookmark_id: str,
    expected_version: int = Query(default=0, alias="expectedVersion"),
    user_id: str = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    result = await engine.delete(user_id, bookmark_id, expected_version, API_CLIENT_ID)
    if not result.applied:
        return {"success": True}
    return {"success": True, "syncVersion": result.sync_version}
