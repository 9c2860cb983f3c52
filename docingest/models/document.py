"""Document models for the ingestion pipeline."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from docingest.models.record import (
    ChunkMetadata,
    DocumentMetadata,
    DocumentStatus,
    VectorRecord,
    utc_now,
)

__all__ = [
    "Chunk",
    "DeleteResult",
    "Document",
    "DocumentStatus",
    "ProcessDocumentRequest",
    "ProcessResult",
    "StatusReport",
]


class Document(BaseModel):
    """Document model representing an ingested source document."""

    id: str
    user_id: str = ""
    name: str = ""
    file_type: str = ""
    file_size: int = 0
    file_path: str = ""
    source_url: str = ""
    status: DocumentStatus = DocumentStatus.CREATED
    processing_progress: int = Field(default=0, ge=0, le=100)
    status_message: Optional[str] = None
    error_message: Optional[str] = None
    chunk_count: int = 0
    embedding_model: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_record(cls, record: VectorRecord) -> "Document":
        """Build a document from its vector record."""
        metadata = record.as_document()
        return cls(id=record.id, **metadata.model_dump(exclude={"record_type"}))

    def to_record(self, vector: List[float]) -> VectorRecord:
        """Wrap the document in a vector record with the given vector."""
        metadata = DocumentMetadata(**self.model_dump(exclude={"id"}))
        return VectorRecord(id=self.id, vector=vector, metadata=metadata)


class Chunk(BaseModel):
    """Chunk model representing a document fragment."""

    id: str
    document_id: str
    index: int = Field(ge=0)
    content: str
    embedding: Optional[List[float]] = None
    record_type: str = "chunk"

    @staticmethod
    def make_id(document_id: str, index: int) -> str:
        return f"chunk_{document_id}_{index}"

    def to_record(
        self,
        user_id: str = "",
        document_name: str = "",
        embedding_model: Optional[str] = None,
    ) -> VectorRecord:
        """
        Wrap the chunk in a vector record.

        Args:
            user_id: Owner of the parent document.
            document_name: Display name of the parent document.
            embedding_model: Model that produced the embedding.

        Returns:
            Vector record tagged as a chunk.

        Raises:
            ValueError: If the chunk has not been embedded yet.
        """
        if self.embedding is None:
            raise ValueError(f"Chunk {self.id} has no embedding")
        return VectorRecord(
            id=self.id,
            vector=self.embedding,
            metadata=ChunkMetadata(
                document_id=self.document_id,
                index=self.index,
                content=self.content,
                user_id=user_id,
                document_name=document_name,
                embedding_model=embedding_model,
            ),
        )


class ProcessDocumentRequest(BaseModel):
    """Invocation of the ingestion pipeline for one document."""

    document_id: str = ""
    user_id: str = ""
    file_path: str = ""
    file_name: str = ""
    file_type: str = ""
    file_url: str = ""
    file_size: int = 0


class ProcessResult(BaseModel):
    """Outcome of a pipeline run."""

    success: bool
    document_id: str
    status: Optional[DocumentStatus] = None
    chunks_processed: int = 0
    vectors_inserted: int = 0
    error: Optional[str] = None


class DeleteResult(BaseModel):
    """Outcome of a cascading delete."""

    success: bool
    document_id: str
    found: bool = False
    chunks_deleted: int = 0


class StatusReport(BaseModel):
    """Point-in-time status of a document."""

    id: str
    status: DocumentStatus
    progress: int
    message: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime
