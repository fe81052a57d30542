"""Case folder mappings and remote folder browsing.

Mapping rules:
- A case has at most one mapping: cloud_storage_provider / cloud_folder_path /
  cloud_folder_id
- When those are unset, the legacy dropbox_folder_path / dropbox_folder_id
  columns are read as a Dropbox mapping; they are never written
- Cases are owner-scoped: a case that does not exist or belongs to someone
  else is reported as E_CASE_NOT_FOUND (existence is masked)
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from casesync.db.models import Case
from casesync.db.session import transaction
from casesync.errors import ApiErrorCode, NotFoundError
from casesync.logging import get_logger
from casesync.providers.adapter import DEFAULT_SEARCH_RESULTS, CloudStorageAdapter
from casesync.providers.common import normalize_path
from casesync.providers.types import CloudProvider
from casesync.schemas.folders import (
    FolderContentsOut,
    FolderMappingOut,
    FolderSearchOut,
    RemoteFileOut,
    RemoteFolderOut,
)
from casesync.services import credentials

logger = get_logger(__name__)


def get_owned_case(db: Session, case_id: UUID, user_id: UUID) -> Case:
    """Load a case owned by user_id.

    Raises:
        NotFoundError(E_CASE_NOT_FOUND): Missing or owned by another user.
    """
    case = db.execute(
        select(Case).where(Case.id == case_id, Case.user_id == user_id)
    ).scalar_one_or_none()
    if case is None:
        raise NotFoundError(ApiErrorCode.E_CASE_NOT_FOUND, "Case not found")
    return case


def resolve_folder_mapping(case: Case) -> FolderMappingOut | None:
    """Return the case's effective mapping, falling back to the legacy Dropbox columns."""
    if case.cloud_folder_path:
        provider = CloudProvider(case.cloud_storage_provider or CloudProvider.dropbox.value)
        return FolderMappingOut(
            case_id=case.id,
            provider=provider,
            folder_path=case.cloud_folder_path,
            folder_id=case.cloud_folder_id,
            last_synced_at=case.last_synced_at,
        )

    if case.dropbox_folder_path:
        return FolderMappingOut(
            case_id=case.id,
            provider=CloudProvider.dropbox,
            folder_path=case.dropbox_folder_path,
            folder_id=case.dropbox_folder_id,
            last_synced_at=case.last_synced_at,
            legacy=True,
        )

    return None


def get_folder_mapping(db: Session, case_id: UUID, user_id: UUID) -> FolderMappingOut | None:
    return resolve_folder_mapping(get_owned_case(db, case_id, user_id))


def set_folder_mapping(
    db: Session,
    case_id: UUID,
    user_id: UUID,
    provider: CloudProvider,
    folder_path: str,
    folder_id: str | None = None,
) -> FolderMappingOut:
    """Bind a case to a remote folder, replacing any previous mapping.

    Changing the folder resets last_synced_at so the next sync counts as a
    first sync for queue priority.
    """
    case = get_owned_case(db, case_id, user_id)
    path = normalize_path(folder_path) or "/"

    with transaction(db):
        changed = (
            case.cloud_storage_provider != provider.value or case.cloud_folder_path != path
        )
        case.cloud_storage_provider = provider.value
        case.cloud_folder_path = path
        case.cloud_folder_id = folder_id
        if changed:
            case.last_synced_at = None

    logger.info("folder_mapping_set", case_id=str(case_id), provider=provider.value)
    return resolve_folder_mapping(case)


def clear_folder_mapping(db: Session, case_id: UUID, user_id: UUID) -> None:
    """Remove the provider-neutral mapping. Legacy columns are left untouched."""
    case = get_owned_case(db, case_id, user_id)
    with transaction(db):
        case.cloud_storage_provider = None
        case.cloud_folder_path = None
        case.cloud_folder_id = None
        case.last_synced_at = None
    logger.info("folder_mapping_cleared", case_id=str(case_id))


async def browse_folder(
    db: Session,
    adapter: CloudStorageAdapter,
    user_id: UUID,
    path: str = "",
    cursor: str | None = None,
) -> FolderContentsOut:
    """List one page of a remote folder with the user's credentials."""
    access_token = await credentials.get_valid_token(db, adapter, user_id)
    page = await adapter.list_folder(access_token, normalize_path(path), cursor)
    return FolderContentsOut(
        folders=[RemoteFolderOut.model_validate(f) for f in page.folders],
        files=[RemoteFileOut.model_validate(f) for f in page.files],
        has_more=page.has_more,
        cursor=page.cursor,
    )


async def search_folders(
    db: Session,
    adapter: CloudStorageAdapter,
    user_id: UUID,
    query: str,
    max_results: int = DEFAULT_SEARCH_RESULTS,
) -> FolderSearchOut:
    access_token = await credentials.get_valid_token(db, adapter, user_id)
    folders = await adapter.search_folders(access_token, query, max_results)
    return FolderSearchOut(folders=[RemoteFolderOut.model_validate(f) for f in folders])
