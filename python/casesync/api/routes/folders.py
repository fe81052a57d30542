"""Remote folder browsing routes.

GET /{provider}/folders?path=&cursor=   → one page {folders, files, hasMore, cursor}
GET /{provider}/folders/search?q=       → {folders}

Both use the viewer's stored connection (refreshed if expired). Provider
failures surface through the CloudStorageError handler (e.g. 404
E_FOLDER_NOT_FOUND, 401 reconnect required).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from casesync.api.deps import get_adapter, get_db
from casesync.auth.middleware import Viewer, get_viewer
from casesync.providers.adapter import DEFAULT_SEARCH_RESULTS, CloudStorageAdapter
from casesync.responses import success_response
from casesync.services import folders as folders_service

router = APIRouter()


@router.get("/{provider}/folders/search")
async def search_folders(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    adapter: Annotated[CloudStorageAdapter, Depends(get_adapter)],
    db: Annotated[Session, Depends(get_db)],
    q: Annotated[str, Query(min_length=1, max_length=200)],
    limit: Annotated[int, Query(ge=1, le=100)] = DEFAULT_SEARCH_RESULTS,
) -> dict:
    result = await folders_service.search_folders(db, adapter, viewer.user_id, q, limit)
    return success_response(result.model_dump(mode="json", by_alias=True))


@router.get("/{provider}/folders")
async def list_folder(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    adapter: Annotated[CloudStorageAdapter, Depends(get_adapter)],
    db: Annotated[Session, Depends(get_db)],
    path: str = "",
    cursor: str | None = None,
) -> dict:
    """List one page of a folder ("" or "/" is the drive root)."""
    result = await folders_service.browse_folder(db, adapter, viewer.user_id, path, cursor)
    return success_response(result.model_dump(mode="json", by_alias=True))
