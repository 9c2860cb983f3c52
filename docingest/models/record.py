"""Tagged vector record models.

Every entity shares one physical vector store. The ``record_type`` field of
the metadata is the discriminant, so a stored payload always parses back into
exactly one metadata variant.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Lifecycle states of a document."""

    CREATED = "created"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"


class DocumentMetadata(BaseModel):
    """Metadata stored on a document's own vector record."""

    record_type: Literal["document"] = "document"
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


class ChunkMetadata(BaseModel):
    """Metadata stored on a chunk vector record."""

    record_type: Literal["chunk"] = "chunk"
    document_id: str
    index: int = Field(ge=0)
    content: str
    user_id: str = ""
    document_name: str = ""
    embedding_model: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class ConversationMetadata(BaseModel):
    """Metadata stored on a conversation record."""

    record_type: Literal["conversation"] = "conversation"
    user_id: str = ""
    title: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class MessageMetadata(BaseModel):
    """Metadata stored on a chat message record."""

    record_type: Literal["message"] = "message"
    conversation_id: str
    role: str
    content: str
    created_at: datetime = Field(default_factory=utc_now)


RecordMetadata = Annotated[
    Union[DocumentMetadata, ChunkMetadata, ConversationMetadata, MessageMetadata],
    Field(discriminator="record_type"),
]

_metadata_adapter: TypeAdapter = TypeAdapter(RecordMetadata)


def metadata_from_payload(payload: Dict[str, Any]) -> RecordMetadata:
    """
    Parse a stored payload into its metadata variant.

    Args:
        payload: Flat metadata dictionary as stored in the vector store.

    Returns:
        Metadata model selected by the payload's ``record_type``.
    """
    return _metadata_adapter.validate_python(payload)


class VectorRecord(BaseModel):
    """Physical storage unit: an id, a vector and tagged metadata."""

    id: str
    vector: List[float]
    metadata: RecordMetadata

    @property
    def record_type(self) -> str:
        return self.metadata.record_type

    def to_payload(self) -> Dict[str, Any]:
        """Serialize metadata into a flat JSON-compatible payload."""
        return self.metadata.model_dump(mode="json")

    def _expect(self, model: type) -> Any:
        if not isinstance(self.metadata, model):
            raise TypeError(
                f"Record {self.id} is a {self.record_type} record, "
                f"not {model.model_fields['record_type'].default}"
            )
        return self.metadata

    def as_document(self) -> DocumentMetadata:
        return self._expect(DocumentMetadata)

    def as_chunk(self) -> ChunkMetadata:
        return self._expect(ChunkMetadata)

    def as_conversation(self) -> ConversationMetadata:
        return self._expect(ConversationMetadata)

    def as_message(self) -> MessageMetadata:
        return self._expect(MessageMetadata)


class VectorMatch(BaseModel):
    """A single query result from the vector store."""

    id: str
    score: float = 0.0
    metadata: Optional[RecordMetadata] = None
