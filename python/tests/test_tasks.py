"""Tests for the Celery queue tasks.

Tasks run eagerly through .apply(); the session factory and classifier
lookups are patched on the task modules so the tasks use the test
transaction and a FakeClassifier.
"""

import importlib
from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest
from sqlalchemy import select

from casesync.db.models import ProcessingQueueItem, QueueStatus
from casesync.tasks import (
    cleanup_processing_queue,
    process_document_queue,
    sweep_stale_queue_items,
)
from tests.factories import create_test_case, create_test_document, create_test_queue_item

process_module = importlib.import_module("casesync.tasks.process_document_queue")
maintenance_module = importlib.import_module("casesync.tasks.queue_maintenance")


@pytest.fixture
def task_db(monkeypatch, session_factory):
    monkeypatch.setattr(process_module, "get_session_factory", lambda: session_factory)
    monkeypatch.setattr(maintenance_module, "get_session_factory", lambda: session_factory)
    return session_factory


@pytest.fixture
def use_classifier(monkeypatch, classifier):
    monkeypatch.setattr(process_module, "create_classifier", lambda client, settings: classifier)
    return classifier


def reload_item(db_session, item_id: UUID) -> ProcessingQueueItem | None:
    db_session.expire_all()
    return db_session.execute(
        select(ProcessingQueueItem).where(ProcessingQueueItem.id == item_id)
    ).scalar_one_or_none()


class TestProcessDocumentQueue:
    def test_skipped_without_classifier(self, monkeypatch, task_db):
        monkeypatch.setattr(process_module, "create_classifier", lambda client, settings: None)

        result = process_document_queue.apply().get()

        assert result == {"skipped": True, "processed": 0}

    def test_processes_batch(self, db_session, user_id, task_db, use_classifier):
        case = create_test_case(db_session, user_id)
        first_id = create_test_queue_item(db_session, create_test_document(db_session, case)).id
        second_id = create_test_queue_item(
            db_session, create_test_document(db_session, case, file_name="notes.docx")
        ).id

        result = process_document_queue.apply().get()

        assert result == {"processed": 2, "succeeded": 2, "failed": 0}
        assert reload_item(db_session, first_id).status == QueueStatus.completed.value
        completed = reload_item(db_session, second_id)
        assert completed.status == QueueStatus.completed.value
        assert completed.tokens_used == 1200
        assert completed.model_used == "fake-model"
        assert len(use_classifier.requests) == 2

    def test_failure_schedules_retry(self, db_session, user_id, task_db, use_classifier):
        case = create_test_case(db_session, user_id)
        document = create_test_document(db_session, case)
        item_id = create_test_queue_item(db_session, document).id
        use_classifier.fail_document_ids.add(document.id)

        result = process_document_queue.apply().get()

        assert result == {"processed": 1, "succeeded": 0, "failed": 1}
        retried = reload_item(db_session, item_id)
        assert retried.status == QueueStatus.pending.value
        assert retried.attempts == 1
        assert retried.next_retry_at is not None
        assert retried.error_message == "Classifier failed with HTTP 503"

    def test_empty_queue(self, task_db, use_classifier):
        result = process_document_queue.apply().get()

        assert result == {"processed": 0, "succeeded": 0, "failed": 0}


class TestMaintenanceTasks:
    def test_sweep_stale(self, db_session, user_id, task_db):
        case = create_test_case(db_session, user_id)
        stale_id = create_test_queue_item(
            db_session,
            create_test_document(db_session, case),
            status=QueueStatus.processing,
            attempts=1,
            started_at=datetime.now(UTC) - timedelta(hours=2),
        ).id
        fresh_id = create_test_queue_item(
            db_session,
            create_test_document(db_session, case, file_name="fresh.pdf"),
            status=QueueStatus.processing,
            attempts=1,
            started_at=datetime.now(UTC),
        ).id

        swept = sweep_stale_queue_items.apply().get()

        assert swept == 1
        stale = reload_item(db_session, stale_id)
        assert stale.status == QueueStatus.pending.value
        assert stale.error_message == "Processing timed out"
        assert reload_item(db_session, fresh_id).status == QueueStatus.processing.value

    def test_cleanup(self, db_session, user_id, task_db):
        case = create_test_case(db_session, user_id)
        long_ago = datetime.now(UTC) - timedelta(days=30)
        old_id = create_test_queue_item(
            db_session,
            create_test_document(db_session, case),
            status=QueueStatus.completed,
            attempts=1,
            completed_at=long_ago,
        ).id
        recent_id = create_test_queue_item(
            db_session,
            create_test_document(db_session, case, file_name="recent.pdf"),
            status=QueueStatus.completed,
            attempts=1,
            completed_at=datetime.now(UTC),
        ).id
        pending_id = create_test_queue_item(
            db_session, create_test_document(db_session, case, file_name="pending.pdf")
        ).id

        deleted = cleanup_processing_queue.apply().get()

        assert deleted == 1
        assert reload_item(db_session, old_id) is None
        assert reload_item(db_session, recent_id) is not None
        assert reload_item(db_session, pending_id) is not None
