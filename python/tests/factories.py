"""Test data factories.

Centralizes helper functions that create database rows for tests.
Each factory knows the full schema requirements for its table,
so individual tests don't need to track NOT NULL constraints.

Factories flush and commit through the given session; under the test
savepoint isolation nothing outlives the test.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from casesync.db.models import (
    Case,
    CloudConnection,
    Document,
    ProcessingQueueItem,
    QueueStatus,
    SyncRun,
    SyncStatus,
)
from casesync.providers.types import CloudProvider
from casesync.services.crypto import seal_token


def create_test_case(
    session: Session,
    user_id: UUID,
    *,
    name: str = "Smith v. Jones",
    provider: CloudProvider | None = CloudProvider.dropbox,
    folder_path: str | None = "/Clients/Smith",
    folder_id: str | None = None,
    legacy_dropbox_path: str | None = None,
    last_synced_at: datetime | None = None,
) -> Case:
    """Create a case, mapped to provider:folder_path unless folder_path is None."""
    case = Case(
        id=uuid4(),
        user_id=user_id,
        name=name,
        cloud_storage_provider=provider.value if provider and folder_path else None,
        cloud_folder_path=folder_path,
        cloud_folder_id=folder_id,
        dropbox_folder_path=legacy_dropbox_path,
        last_synced_at=last_synced_at,
    )
    session.add(case)
    session.commit()
    return case


def create_test_connection(
    session: Session,
    user_id: UUID,
    *,
    provider: CloudProvider = CloudProvider.dropbox,
    access_token: str = "fake-access-token",
    refresh_token: str | None = "fake-refresh-token",
    expires_at: datetime | None = None,
    is_active: bool = True,
    account_email: str | None = "owner@example.com",
) -> CloudConnection:
    """Create a connection with sealed tokens (valid for an hour by default)."""
    connection = CloudConnection(
        id=uuid4(),
        user_id=user_id,
        provider=provider.value,
        access_token=seal_token(access_token),
        refresh_token=seal_token(refresh_token) if refresh_token else None,
        token_expires_at=expires_at or datetime.now(UTC) + timedelta(hours=1),
        account_id="acct-1",
        account_email=account_email,
        account_name="Case Owner",
        is_active=is_active,
    )
    session.add(connection)
    session.commit()
    return connection


def create_test_document(
    session: Session,
    case: Case,
    *,
    file_name: str = "intake.pdf",
    remote_file_id: str | None = None,
    content_hash: str | None = None,
    provider: CloudProvider = CloudProvider.dropbox,
) -> Document:
    document = Document(
        id=uuid4(),
        case_id=case.id,
        user_id=case.user_id,
        file_name=file_name,
        file_type=file_name.rpartition(".")[2] or None,
        file_size=123,
        storage_path=f"case-documents/{case.id}/{file_name}",
        storage_url=f"https://fake-storage.test/case-documents/{case.id}/{file_name}",
        remote_provider=provider.value,
        remote_file_id=remote_file_id or f"id:{uuid4().hex[:12]}",
        remote_path=f"/Clients/Smith/{file_name}",
        remote_content_hash=content_hash,
        synced_at=datetime.now(UTC),
    )
    session.add(document)
    session.commit()
    return document


def create_test_queue_item(
    session: Session,
    document: Document,
    *,
    status: QueueStatus = QueueStatus.pending,
    priority: int = 0,
    attempts: int = 0,
    max_attempts: int = 3,
    created_at: datetime | None = None,
    started_at: datetime | None = None,
    completed_at: datetime | None = None,
    next_retry_at: datetime | None = None,
) -> ProcessingQueueItem:
    item = ProcessingQueueItem(
        id=uuid4(),
        document_id=document.id,
        case_id=document.case_id,
        user_id=document.user_id,
        status=status.value,
        priority=priority,
        attempts=attempts,
        max_attempts=max_attempts,
        created_at=created_at or datetime.now(UTC),
        started_at=started_at,
        completed_at=completed_at,
        next_retry_at=next_retry_at,
    )
    session.add(item)
    session.commit()
    return item


def create_test_sync_run(
    session: Session,
    case: Case,
    *,
    status: SyncStatus = SyncStatus.completed,
    started_at: datetime | None = None,
    heartbeat_at: datetime | None = None,
    files_found: int = 0,
    files_new: int = 0,
) -> SyncRun:
    started_at = started_at or datetime.now(UTC)
    finished = status != SyncStatus.in_progress
    run = SyncRun(
        id=uuid4(),
        case_id=case.id,
        user_id=case.user_id,
        provider=case.cloud_storage_provider or CloudProvider.dropbox.value,
        status=status.value,
        files_found=files_found,
        files_new=files_new,
        errors=[],
        started_at=started_at,
        heartbeat_at=heartbeat_at,
        completed_at=started_at + timedelta(seconds=5) if finished else None,
        duration_ms=5000 if finished else None,
    )
    session.add(run)
    session.commit()
    return run
