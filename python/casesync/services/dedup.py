"""Deduplication engine.

Decides, per discovered file, whether its content already exists in the case.

- Hash-bearing files are duplicates when (case, content hash) is already
  persisted, or when the same hash appeared earlier in this run.
- Files without a hash are never content duplicates. They fall back to the
  remote file id: an id already ingested for the case is skipped. This misses
  identical content re-uploaded under a new id (accepted limitation).
- A hash-bearing file whose remote id is known under a different hash is a
  changed file: it is ingested again and counted as updated.

Lookups are one bulk query per kind, never per file.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from casesync.db.models import Document
from casesync.providers.types import RemoteFile


class Decision(str, Enum):
    """What the sync loop does with one discovered file."""

    new = "new"
    updated = "updated"
    duplicate = "duplicate"
    not_downloadable = "not_downloadable"

    @property
    def ingests(self) -> bool:
        return self in (Decision.new, Decision.updated)


@dataclass(frozen=True)
class FileDecision:
    file: RemoteFile
    decision: Decision


def find_duplicates(db: Session, case_id: UUID, candidate_hashes: Iterable[str]) -> set[str]:
    """Return the subset of candidate_hashes already stored for the case."""
    hashes = {h for h in candidate_hashes if h}
    if not hashes:
        return set()
    rows = db.execute(
        select(Document.remote_content_hash).where(
            Document.case_id == case_id,
            Document.remote_content_hash.in_(hashes),
        )
    ).scalars()
    return {h for h in rows if h}


def find_known_remote_files(
    db: Session, case_id: UUID, remote_file_ids: Iterable[str]
) -> dict[str, set[str | None]]:
    """Map each already-ingested remote file id to the content hashes stored for it."""
    ids = {i for i in remote_file_ids if i}
    if not ids:
        return {}
    rows = db.execute(
        select(Document.remote_file_id, Document.remote_content_hash).where(
            Document.case_id == case_id,
            Document.remote_file_id.in_(ids),
        )
    ).all()
    known: dict[str, set[str | None]] = {}
    for remote_file_id, content_hash in rows:
        known.setdefault(remote_file_id, set()).add(content_hash)
    return known


def classify_files(
    files: Sequence[RemoteFile],
    duplicate_hashes: set[str],
    known_remote_files: dict[str, set[str | None]],
) -> list[FileDecision]:
    """Decide each file's fate, preserving enumeration order."""
    seen_hashes: set[str] = set()
    seen_ids: set[str] = set()
    decisions: list[FileDecision] = []

    for file in files:
        if not file.downloadable:
            decision = Decision.not_downloadable
        elif file.content_hash:
            if file.content_hash in duplicate_hashes or file.content_hash in seen_hashes:
                decision = Decision.duplicate
            elif file.id in known_remote_files:
                decision = Decision.updated
            else:
                decision = Decision.new
            seen_hashes.add(file.content_hash)
        elif file.id in known_remote_files or file.id in seen_ids:
            decision = Decision.duplicate
        else:
            decision = Decision.new

        seen_ids.add(file.id)
        decisions.append(FileDecision(file=file, decision=decision))

    return decisions


def plan_ingestion(db: Session, case_id: UUID, files: Sequence[RemoteFile]) -> list[FileDecision]:
    """Run both bulk lookups and classify every discovered file."""
    duplicate_hashes = find_duplicates(db, case_id, (f.content_hash for f in files))
    known_remote_files = find_known_remote_files(db, case_id, (f.id for f in files))
    return classify_files(files, duplicate_hashes, known_remote_files)
