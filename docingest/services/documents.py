"""Document records stored alongside chunk vectors."""

from typing import Any, Dict, List, Optional, Tuple

from docingest.core.config import Settings, settings as default_settings
from docingest.models.document import Document, DocumentStatus
from docingest.models.record import DocumentMetadata, utc_now
from docingest.services.retry import with_timeout
from docingest.services.vector_db import VectorStore

# Documents carry no semantic vector; cosine distance rejects all-zero vectors.
PLACEHOLDER_VALUE = 1e-4
MAX_LIST_RESULTS = 1000


class DocumentRepository:
    """Reads and writes document records in the shared vector store."""

    def __init__(self, vector_store: VectorStore, config: Optional[Settings] = None) -> None:
        config = config or default_settings
        self.vector_store = vector_store
        self.dimensions = config.embedding_dimensions
        self.timeout = config.vector_store_timeout_seconds

    def placeholder_vector(self) -> List[float]:
        return [PLACEHOLDER_VALUE] * self.dimensions

    async def get(self, document_id: str) -> Optional[Document]:
        """
        Get a single document by ID.

        Args:
            document_id: Document ID.

        Returns:
            Document or None if not found.
        """
        records = await with_timeout(
            self.vector_store.fetch([document_id]), self.timeout, "Fetch document")
        for record in records:
            if record.id == document_id and record.record_type == "document":
                return Document.from_record(record)
        return None

    async def save(self, document: Document) -> Document:
        """
        Persist a document, stamping its update time.

        Args:
            document: Document to write.

        Returns:
            The document as written.
        """
        document = document.model_copy(update={"updated_at": utc_now()})
        await with_timeout(
            self.vector_store.upsert([document.to_record(self.placeholder_vector())]),
            self.timeout,
            "Save document",
        )
        return document

    async def list_documents(
        self,
        user_id: Optional[str] = None,
        status: Optional[DocumentStatus] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Document], int, bool]:
        """
        List documents, newest first.

        Args:
            user_id: Only documents owned by this user.
            status: Only documents in this status.
            limit: Page size.
            offset: Number of documents to skip.

        Returns:
            Tuple of (page of documents, total matching, whether more remain).
        """
        documents = await self._query_documents(user_id=user_id, status=status)
        documents.sort(key=lambda doc: doc.created_at, reverse=True)
        total = len(documents)
        page = documents[offset:offset + limit]
        return page, total, offset + limit < total

    async def get_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Summarize documents by status and file type.

        Args:
            user_id: Only documents owned by this user.

        Returns:
            Dictionary with total, by_status, by_type and average_chunks.
        """
        documents = await self._query_documents(user_id=user_id)
        by_status: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        total_chunks = 0
        for doc in documents:
            by_status[doc.status.value] = by_status.get(doc.status.value, 0) + 1
            file_type = doc.file_type or "unknown"
            by_type[file_type] = by_type.get(file_type, 0) + 1
            total_chunks += doc.chunk_count

        total = len(documents)
        return {
            "total": total,
            "by_status": by_status,
            "by_type": by_type,
            "average_chunks": total_chunks / total if total else 0.0,
        }

    async def _query_documents(
        self,
        user_id: Optional[str] = None,
        status: Optional[DocumentStatus] = None,
    ) -> List[Document]:
        conditions: Dict[str, Any] = {"record_type": "document"}
        if user_id:
            conditions["user_id"] = user_id
        if status:
            conditions["status"] = status.value

        matches = await with_timeout(
            self.vector_store.query(
                self.placeholder_vector(),
                top_k=MAX_LIST_RESULTS,
                include_metadata=True,
                filter=conditions,
            ),
            self.timeout,
            "List documents",
        )
        return [
            Document(id=match.id, **match.metadata.model_dump(exclude={"record_type"}))
            for match in matches
            if isinstance(match.metadata, DocumentMetadata)
        ]
