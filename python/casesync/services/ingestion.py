"""Ingestion writer: download → blob store → Document row.

A download failure (CloudStorageError) or blob write failure (StorageError)
propagates to the caller, which records it as a per-file error. When the
Document insert loses a race on the per-case unique indexes, the file is
reported as not created and the blob just written is deleted best-effort.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from casesync.db.models import Document, DocumentSource
from casesync.db.session import transaction
from casesync.logging import get_logger
from casesync.providers.adapter import CloudStorageAdapter
from casesync.providers.common import file_extension
from casesync.providers.types import RemoteFile
from casesync.storage.client import BlobStore
from casesync.storage.paths import build_document_path

logger = get_logger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest call.

    created is False when an identical document already existed (lost race);
    document_id is then None.
    """

    document_id: UUID | None
    storage_path: str
    storage_url: str
    created: bool


def insert_document(
    db: Session,
    *,
    case_id: UUID,
    user_id: UUID,
    file: RemoteFile,
    storage_path: str,
    storage_url: str,
    size: int,
    synced_at: datetime,
) -> Document | None:
    """Insert the Document row, or return None if a unique index rejects it."""
    document = Document(
        case_id=case_id,
        user_id=user_id,
        source=DocumentSource.cloud_sync.value,
        file_name=file.name,
        file_type=file_extension(file.name) or None,
        file_size=size,
        storage_path=storage_path,
        storage_url=storage_url,
        remote_provider=file.provider.value,
        remote_file_id=file.id,
        remote_path=file.path_display or file.path,
        remote_content_hash=file.content_hash,
        synced_at=synced_at,
    )
    try:
        with transaction(db):
            db.add(document)
    except IntegrityError:
        return None
    return document


class IngestionWriter:
    """Persists remote files for a case."""

    def __init__(self, blob_store: BlobStore):
        self._blob_store = blob_store

    async def ingest(
        self,
        db: Session,
        adapter: CloudStorageAdapter,
        access_token: str,
        user_id: UUID,
        case_id: UUID,
        file: RemoteFile,
    ) -> IngestResult:
        """Download one file, store it, and record it.

        Raises:
            CloudStorageError: The download failed.
            StorageError: The blob write failed.
        """
        data = await adapter.download_file(access_token, file.id)
        path = build_document_path(case_id, file.name)
        stored = await self._blob_store.put_object(path, data, file.mime_type)

        document = await run_in_threadpool(
            lambda: insert_document(
                db,
                case_id=case_id,
                user_id=user_id,
                file=file,
                storage_path=stored.path,
                storage_url=stored.url,
                size=len(data),
                synced_at=datetime.now(UTC),
            )
        )

        if document is None:
            logger.info("sync.file.already_ingested", file_name=file.name)
            await self._blob_store.delete_object(stored.path)
            return IngestResult(
                document_id=None, storage_path=stored.path, storage_url=stored.url, created=False
            )

        return IngestResult(
            document_id=document.id,
            storage_path=stored.path,
            storage_url=stored.url,
            created=True,
        )
