"""Cascading deletion of documents and their chunk vectors."""

import logging
from typing import Optional, Set

from docingest.core.config import Settings, settings as default_settings
from docingest.core.exceptions import ValidationError, VectorDBError
from docingest.models.document import DeleteResult
from docingest.monitoring.metrics import chunks_deleted_total, documents_deleted_total
from docingest.services.blob_storage import BlobStorageService
from docingest.services.documents import DocumentRepository
from docingest.services.retry import with_timeout
from docingest.services.vector_db import VectorStore

logger = logging.getLogger(__name__)


class DeletionCascade:
    """Removes a document record and every chunk vector derived from it."""

    def __init__(
        self,
        vector_store: VectorStore,
        repository: DocumentRepository,
        blob_storage: Optional[BlobStorageService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the cascade.

        Args:
            vector_store: Store holding document and chunk records.
            repository: Document record access.
            blob_storage: Optional blob store for uploaded files.
            config: Settings providing query limit, batch size and timeout.
        """
        config = config or default_settings
        self.vector_store = vector_store
        self.repository = repository
        self.blob_storage = blob_storage
        self.query_limit = config.delete_query_limit
        self.batch_size = config.delete_batch_size
        self.timeout = config.vector_store_timeout_seconds

    async def delete_document(self, document_id: str) -> DeleteResult:
        """
        Delete a document and all of its chunks.

        Calling this again for an already-deleted id succeeds and deletes
        nothing.

        Args:
            document_id: Document ID.

        Returns:
            Deletion result with the number of chunks removed.
        """
        if not document_id:
            raise ValidationError("Document ID is required")

        logger.info(f"Deleting document: {document_id}")
        document = await self.repository.get(document_id)

        await with_timeout(
            self.vector_store.delete([document_id]), self.timeout, "Delete document record")
        chunks_deleted = await self.purge_chunks(document_id)

        if (
            document is not None
            and self.blob_storage is not None
            and self.blob_storage.owns(document.file_path)
        ):
            try:
                await self.blob_storage.delete(document.file_path)
                logger.info(f"Deleted blob {document.file_path} for document {document_id}")
            except Exception as e:
                logger.error(
                    f"Failed to delete blob {document.file_path} "
                    f"for document {document_id}: {str(e)}"
                )

        if document is not None:
            documents_deleted_total.inc()
        logger.info(
            f"Deleted document {document_id} with {chunks_deleted} chunks "
            f"(found={document is not None})"
        )
        return DeleteResult(
            success=True,
            document_id=document_id,
            found=document is not None,
            chunks_deleted=chunks_deleted,
        )

    async def purge_chunks(self, document_id: str) -> int:
        """
        Delete every chunk record whose ``document_id`` matches.

        Args:
            document_id: Parent document ID.

        Returns:
            Number of chunk records deleted.
        """
        seen: Set[str] = set()
        while True:
            matches = await with_timeout(
                self.vector_store.query(
                    self.repository.placeholder_vector(),
                    top_k=self.query_limit,
                    include_metadata=False,
                    filter={"document_id": document_id, "record_type": "chunk"},
                ),
                self.timeout,
                "Query chunk vectors",
            )
            chunk_ids = [match.id for match in matches]
            if not chunk_ids:
                break
            if seen.intersection(chunk_ids):
                raise VectorDBError(
                    f"Chunk vectors for document {document_id} were not removed")
            seen.update(chunk_ids)

            for start in range(0, len(chunk_ids), self.batch_size):
                await with_timeout(
                    self.vector_store.delete(chunk_ids[start:start + self.batch_size]),
                    self.timeout,
                    "Delete chunk vectors",
                )
            if len(chunk_ids) < self.query_limit:
                break

        if seen:
            chunks_deleted_total.inc(len(seen))
            logger.info(f"Deleted {len(seen)} chunk vectors for document {document_id}")
        return len(seen)
