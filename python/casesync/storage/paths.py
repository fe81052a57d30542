"""Storage path building utilities.

All document paths go through build_document_path() so the optional test
prefix is applied exactly once.

Path Invariant:
    - Production: case-documents/{case_id}/{epoch_ms}-{safe_name}
    - Test: test_runs/{run_id}/case-documents/{case_id}/{epoch_ms}-{safe_name}

Rules:
    - No leading slash
    - No user identifiers in paths
    - File names are reduced to a safe character set
"""

import os
import re
import time
from uuid import UUID

# Environment variable for test run prefix
TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"

DOCUMENT_ROOT = "case-documents"
MAX_NAME_LENGTH = 200

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _get_test_prefix() -> str:
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def sanitize_file_name(name: str) -> str:
    """Replace runs of unsafe characters with "_" and cap the length.

    Examples:
        >>> sanitize_file_name("Bank Statement (May).pdf")
        'Bank_Statement_May_.pdf'
    """
    safe = _UNSAFE_CHARS.sub("_", name).strip("._") or "file"
    if len(safe) > MAX_NAME_LENGTH:
        stem, dot, ext = safe.rpartition(".")
        if dot and len(ext) <= 10:
            safe = f"{stem[: MAX_NAME_LENGTH - len(ext) - 1]}.{ext}"
        else:
            safe = safe[:MAX_NAME_LENGTH]
    return safe


def build_document_path(case_id: UUID | str, file_name: str, epoch_ms: int | None = None) -> str:
    """Build the storage path for a synced document.

    The millisecond timestamp keeps re-ingested versions of the same name apart.
    """
    if epoch_ms is None:
        epoch_ms = int(time.time() * 1000)
    return f"{_get_test_prefix()}{DOCUMENT_ROOT}/{case_id}/{epoch_ms}-{sanitize_file_name(file_name)}"
