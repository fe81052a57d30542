"""Case folder mapping, sync control and processing status routes.

PUT    /cases/{case_id}/folder             → set the folder mapping
GET    /cases/{case_id}/folder             → current mapping (legacy fallback applied)
DELETE /cases/{case_id}/folder             → clear the mapping
POST   /cases/{case_id}/sync               → {syncId, status: "in_progress"}
                                             409 already running, 400 no folder mapped
GET    /cases/{case_id}/sync/history       → SyncRun[], most recent first
GET    /cases/{case_id}/sync/{sync_id}     → {status, progress 0-100, filesProcessed, totalFiles, ...}
POST   /cases/{case_id}/sync/cancel        → stop the active run (404 if none)
GET    /cases/{case_id}/processing         → queue counts plus items
DELETE /cases/{case_id}/processing         → drop pending and failed queue items

Sync runs execute as asyncio tasks in this process; POST /sync returns as
soon as the run is registered and clients poll the status endpoint.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from casesync.api.deps import get_db, get_orchestrator
from casesync.auth.middleware import Viewer, get_viewer
from casesync.responses import success_response
from casesync.schemas.folders import FolderMappingRequest
from casesync.schemas.queue import CaseProcessingOut, QueueItemOut, QueueStatsOut
from casesync.schemas.sync import SyncStartOut
from casesync.services import folders as folders_service
from casesync.services import processing_queue
from casesync.services.folders import get_owned_case
from casesync.services.orchestrator import DEFAULT_HISTORY_LIMIT, SyncOrchestrator

router = APIRouter()


# =============================================================================
# Folder mapping
# =============================================================================


@router.put("/cases/{case_id}/folder")
def set_case_folder(
    case_id: UUID,
    request: FolderMappingRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    mapping = folders_service.set_folder_mapping(
        db,
        case_id,
        viewer.user_id,
        request.provider,
        request.folder_path,
        request.folder_id,
    )
    return success_response(mapping.model_dump(mode="json", by_alias=True))


@router.get("/cases/{case_id}/folder")
def get_case_folder(
    case_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Return the mapping, or null when the case has none."""
    mapping = folders_service.get_folder_mapping(db, case_id, viewer.user_id)
    return success_response(mapping.model_dump(mode="json", by_alias=True) if mapping else None)


@router.delete("/cases/{case_id}/folder", status_code=204)
def clear_case_folder(
    case_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> None:
    folders_service.clear_folder_mapping(db, case_id, viewer.user_id)


# =============================================================================
# Sync control
# =============================================================================


@router.post("/cases/{case_id}/sync")
async def start_sync(
    case_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> dict:
    """Start a sync for the case and return immediately."""
    handle = await orchestrator.start_background(case_id, viewer.user_id)
    result = SyncStartOut(sync_id=handle.sync_id, status="in_progress")
    return success_response(result.model_dump(mode="json", by_alias=True))


# Declared before /sync/{sync_id} so "history" is not parsed as a UUID
@router.get("/cases/{case_id}/sync/history")
def get_sync_history(
    case_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    limit: Annotated[int, Query(ge=1, le=100)] = DEFAULT_HISTORY_LIMIT,
) -> dict:
    runs = orchestrator.get_sync_history(db, case_id, viewer.user_id, limit)
    return success_response([run.model_dump(mode="json", by_alias=True) for run in runs])


@router.post("/cases/{case_id}/sync/cancel")
async def cancel_sync(
    case_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> dict:
    """Signal the running sync to stop; it finalizes as cancelled."""
    await run_in_threadpool(get_owned_case, db, case_id, viewer.user_id)
    sync_id = orchestrator.cancel_sync(case_id)
    return success_response({"syncId": str(sync_id), "cancelRequested": True})


@router.get("/cases/{case_id}/sync/{sync_id}")
def get_sync_status(
    case_id: UUID,
    sync_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> dict:
    status = orchestrator.get_sync_status(db, case_id, viewer.user_id, sync_id)
    return success_response(status.model_dump(mode="json", by_alias=True))


# =============================================================================
# Processing queue
# =============================================================================


@router.get("/cases/{case_id}/processing")
def get_case_processing(
    case_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Queue counts and items for the case's documents."""
    get_owned_case(db, case_id, viewer.user_id)
    stats = processing_queue.get_case_processing_status(db, case_id)
    items = processing_queue.list_case_queue(db, case_id)
    result = CaseProcessingOut(
        case_id=case_id,
        stats=QueueStatsOut.model_validate(stats),
        items=[QueueItemOut.model_validate(item) for item in items],
    )
    return success_response(result.model_dump(mode="json", by_alias=True))


@router.delete("/cases/{case_id}/processing")
def cancel_case_processing(
    case_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Drop the case's pending and failed queue items."""
    get_owned_case(db, case_id, viewer.user_id)
    deleted = processing_queue.cancel_case_processing(db, case_id)
    return success_response({"deleted": deleted})
