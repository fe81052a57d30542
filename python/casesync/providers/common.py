"""Helpers shared by both provider adapters.

Free functions rather than base-class methods: adapters compose these.
"""

from datetime import UTC, datetime

# Extension → MIME type for backends that do not report one
MIME_TYPES: dict[str, str] = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "txt": "text/plain",
    "csv": "text/csv",
    "json": "application/json",
    "xml": "application/xml",
    "html": "text/html",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "zip": "application/zip",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def mime_type_for(file_name: str) -> str:
    """Guess a MIME type from a file name's extension."""
    if "." not in file_name:
        return DEFAULT_MIME_TYPE
    ext = file_name.rsplit(".", 1)[1].lower()
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def file_extension(file_name: str) -> str:
    """Return the lowercase extension without the dot ("" when there is none)."""
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[1].lower()


def normalize_path(path: str | None) -> str:
    """Normalize a folder path.

    "" and "/" both mean the root and become "". Any other path gets exactly
    one leading slash and no trailing slash.

    Examples:
        >>> normalize_path("/")
        ''
        >>> normalize_path("Clients/Smith/")
        '/Clients/Smith'
    """
    if not path or path.strip() in ("", "/"):
        return ""
    stripped = path.strip().strip("/")
    return f"/{stripped}"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO8601 provider timestamp ("...Z" accepted) into an aware datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
