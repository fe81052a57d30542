"""Classification collaborator client.

The processing queue hands each claimed document to a DocumentClassifier.
Classification itself (text extraction, embeddings, AI labelling) runs in a
separate service; this module only knows how to call it.

Request body posted to CLASSIFIER_URL:
    {"document_id", "case_id", "user_id", "storage_url", "file_name", "file_type"}

Expected response:
    {"tokens_used": 1234, "model_used": "..."}  (both optional)

Any non-2xx response or transport failure is a ClassificationError; the
queue records it as a failed attempt.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import UUID

import httpx

from casesync.config import Settings
from casesync.logging import get_logger

logger = get_logger(__name__)


class ClassificationError(Exception):
    """The classifier could not process a document."""


@dataclass(frozen=True)
class ClassificationRequest:
    document_id: UUID
    case_id: UUID
    user_id: UUID
    storage_url: str | None
    file_name: str
    file_type: str | None

    def to_payload(self) -> dict:
        return {
            "document_id": str(self.document_id),
            "case_id": str(self.case_id),
            "user_id": str(self.user_id),
            "storage_url": self.storage_url,
            "file_name": self.file_name,
            "file_type": self.file_type,
        }


@dataclass(frozen=True)
class ClassificationResult:
    tokens_used: int | None = None
    model_used: str | None = None


class DocumentClassifier(ABC):
    """Abstract base class for classifier clients."""

    @abstractmethod
    async def classify(self, request: ClassificationRequest) -> ClassificationResult:
        """Classify one document.

        Raises:
            ClassificationError: The document could not be classified.
        """
        ...


class HttpDocumentClassifier(DocumentClassifier):
    """Posts documents to the classification service over HTTP."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        api_key: str | None = None,
        timeout_s: float = 120.0,
    ):
        self._client = client
        self._url = url
        self._timeout = timeout_s
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    async def classify(self, request: ClassificationRequest) -> ClassificationResult:
        try:
            response = await self._client.post(
                self._url,
                json=request.to_payload(),
                headers=self._headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ClassificationError("Classifier timed out") from e
        except httpx.HTTPError as e:
            raise ClassificationError(f"Classifier request failed: {type(e).__name__}") from e

        if response.status_code >= 400:
            raise ClassificationError(f"Classifier failed with HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        tokens_used = body.get("tokens_used")
        return ClassificationResult(
            tokens_used=int(tokens_used) if tokens_used is not None else None,
            model_used=body.get("model_used"),
        )


def create_classifier(client: httpx.AsyncClient, settings: Settings) -> DocumentClassifier | None:
    """Build the configured classifier, or None when CLASSIFIER_URL is unset."""
    if not settings.classifier_url:
        logger.warning("classifier_not_configured")
        return None
    return HttpDocumentClassifier(
        client,
        url=settings.classifier_url,
        api_key=settings.classifier_api_key,
        timeout_s=settings.classifier_timeout_s,
    )
