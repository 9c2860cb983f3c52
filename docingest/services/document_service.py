"""Document operations exposed to the HTTP layer and scripts."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from docingest.core.exceptions import NotFoundError, ValidationError
from docingest.models.document import (
    DeleteResult,
    Document,
    DocumentStatus,
    ProcessDocumentRequest,
    ProcessResult,
    StatusReport,
)
from docingest.services.deletion import DeletionCascade
from docingest.services.documents import DocumentRepository
from docingest.services.ingestion import IngestionPipeline
from docingest.services.status_tracker import StatusTracker

logger = logging.getLogger(__name__)


class DocumentService:
    """Facade over the pipeline, tracker and deletion cascade."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        tracker: StatusTracker,
        repository: DocumentRepository,
        cascade: DeletionCascade,
    ) -> None:
        self.pipeline = pipeline
        self.tracker = tracker
        self.repository = repository
        self.cascade = cascade

    async def process_document(self, request: ProcessDocumentRequest) -> ProcessResult:
        return await self.pipeline.process_document(request)

    async def retry_document(self, document_id: str) -> ProcessResult:
        """
        Reprocess a failed or indexed document from its stored source URL.

        Args:
            document_id: Document ID.

        Returns:
            Processing result.

        Raises:
            ValidationError: If the ID is empty.
            NotFoundError: If the document does not exist.
        """
        if not document_id:
            raise ValidationError("Document ID is required")

        document = await self.repository.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")

        logger.info(f"Retrying document {document_id} from {document.source_url}")
        request = ProcessDocumentRequest(
            document_id=document.id,
            user_id=document.user_id,
            file_path=document.file_path,
            file_name=document.name,
            file_type=document.file_type,
            file_url=document.source_url,
            file_size=document.file_size,
        )
        return await self.pipeline.process_document(request, retry=True)

    def cancel_document(self, document_id: str) -> bool:
        return self.pipeline.cancel(document_id)

    async def delete_document(self, document_id: str) -> DeleteResult:
        """
        Delete a document, stopping any run in progress for it first.

        Args:
            document_id: Document ID.

        Returns:
            Deletion result.
        """
        if self.pipeline.cancel(document_id):
            await self.pipeline.wait(document_id)
        return await self.cascade.delete_document(document_id)

    async def get_status(self, document_id: str) -> StatusReport:
        return await self.tracker.get_status(document_id)

    async def list_documents(
        self,
        user_id: Optional[str] = None,
        status: Optional[DocumentStatus] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Document], int, bool]:
        return await self.repository.list_documents(
            user_id=user_id, status=status, limit=limit, offset=offset)

    async def get_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.repository.get_stats(user_id=user_id)
