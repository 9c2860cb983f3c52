"""Vector store interface and its Qdrant implementation."""

import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from docingest.core.config import Settings, settings as default_settings
from docingest.core.exceptions import VectorDBError
from docingest.models.record import VectorMatch, VectorRecord, metadata_from_payload

RECORD_ID_KEY = "record_id"
INDEXED_FIELDS = ("record_type", "document_id", "user_id", "status")

_POINT_NAMESPACE = uuid.UUID("00000000-0000-0000-0000-000000000000")


class VectorStore(ABC):
    """Key/vector store shared by documents, chunks and other record types.

    ``filter`` arguments are conjunctions of equality predicates over
    metadata fields.
    """

    async def connect(self) -> None:
        """Open connections. No-op by default."""

    async def disconnect(self) -> None:
        """Close connections. No-op by default."""

    @abstractmethod
    async def upsert(self, records: List[VectorRecord]) -> int:
        """Insert or replace records, returning the number written."""

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        """Return up to ``top_k`` records nearest to ``vector`` matching ``filter``."""

    @abstractmethod
    async def fetch(self, ids: List[str]) -> List[VectorRecord]:
        """Return the records with the given ids; unknown ids are skipped."""

    @abstractmethod
    async def delete(self, ids: List[str]) -> None:
        """Delete records by id; unknown ids are ignored."""


def point_id(record_id: str) -> str:
    """
    Map a record id onto a deterministic Qdrant point id.

    Args:
        record_id: Application-level record id.

    Returns:
        UUID string for the point.
    """
    return str(uuid.uuid5(_POINT_NAMESPACE, record_id))


def build_filter(conditions: Optional[Dict[str, Any]]) -> Optional[Filter]:
    """Translate equality conditions into a Qdrant filter."""
    if not conditions:
        return None
    must = []
    for key, value in conditions.items():
        if isinstance(value, Enum):
            value = value.value
        must.append(FieldCondition(key=key, match=MatchValue(value=value)))
    return Filter(must=must)


class QdrantVectorStore(VectorStore):
    """Service for interacting with Qdrant vector database."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[AsyncQdrantClient] = None,
    ) -> None:
        """
        Initialize the vector database service.

        Args:
            config: Settings providing URL, collection and dimensions.
            client: Pre-built client, mainly for tests.
        """
        config = config or default_settings
        self.client: Optional[AsyncQdrantClient] = client
        self.url = config.qdrant_url
        self.timeout = config.vector_store_timeout_seconds
        self.collection_name = config.qdrant_collection_name
        self.dimensions = config.embedding_dimensions

    async def connect(self) -> None:
        """Connect to Qdrant."""
        try:
            if self.client is None:
                self.client = AsyncQdrantClient(
                    url=self.url,
                    timeout=int(self.timeout),
                )
            await self._ensure_collection()
        except Exception as e:
            raise VectorDBError(
                f"Failed to connect to Qdrant: {str(e)}") from e

    async def disconnect(self) -> None:
        """Disconnect from Qdrant."""
        if self.client:
            await self.client.close()

    def _require_client(self) -> AsyncQdrantClient:
        if not self.client:
            raise VectorDBError("Client not connected")
        return self.client

    async def _ensure_collection(self) -> None:
        """Ensure the collection and its payload indexes exist."""
        client = self._require_client()

        collections = await client.get_collections()
        collection_names = [col.name for col in collections.collections]

        if self.collection_name not in collection_names:
            await client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(
                    size=self.dimensions,
                    distance=Distance.COSINE,
                ),
            )
            for field in INDEXED_FIELDS:
                await client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field,
                    field_schema=PayloadSchemaType.KEYWORD,
                )

    async def upsert(self, records: List[VectorRecord]) -> int:
        """
        Upsert records into the collection.

        Args:
            records: Records to write.

        Returns:
            Number of records written.
        """
        client = self._require_client()
        if not records:
            return 0

        points = [
            PointStruct(
                id=point_id(record.id),
                vector=record.vector,
                payload={**record.to_payload(), RECORD_ID_KEY: record.id},
            )
            for record in records
        ]
        try:
            await client.upsert(
                collection_name=self.collection_name, points=points, wait=True)
        except Exception as e:
            raise VectorDBError(f"Failed to upsert vectors: {str(e)}") from e
        return len(points)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        """
        Search for records similar to a vector.

        Args:
            vector: Query vector.
            top_k: Number of results to return.
            include_metadata: Whether to parse and return metadata.
            filter: Equality conditions over metadata fields.

        Returns:
            Matching records with scores.
        """
        client = self._require_client()
        try:
            results = await client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=top_k,
                query_filter=build_filter(filter),
                with_payload=True,
            )
        except Exception as e:
            raise VectorDBError(f"Failed to query vectors: {str(e)}") from e

        matches = []
        for point in results.points:
            payload = dict(point.payload or {})
            record_id = payload.pop(RECORD_ID_KEY, str(point.id))
            matches.append(
                VectorMatch(
                    id=record_id,
                    score=point.score,
                    metadata=metadata_from_payload(payload) if include_metadata else None,
                )
            )
        return matches

    async def fetch(self, ids: List[str]) -> List[VectorRecord]:
        """
        Retrieve records by id.

        Args:
            ids: Record ids to look up.

        Returns:
            Records found, in no particular order.
        """
        client = self._require_client()
        if not ids:
            return []
        try:
            points = await client.retrieve(
                collection_name=self.collection_name,
                ids=[point_id(record_id) for record_id in ids],
                with_payload=True,
                with_vectors=True,
            )
        except Exception as e:
            raise VectorDBError(f"Failed to fetch vectors: {str(e)}") from e

        records = []
        for point in points:
            payload = dict(point.payload or {})
            record_id = payload.pop(RECORD_ID_KEY, str(point.id))
            records.append(
                VectorRecord(
                    id=record_id,
                    vector=point.vector or [],
                    metadata=metadata_from_payload(payload),
                )
            )
        return records

    async def delete(self, ids: List[str]) -> None:
        """
        Delete records by id.

        Args:
            ids: Record ids to delete.
        """
        client = self._require_client()
        if not ids:
            return
        try:
            await client.delete(
                collection_name=self.collection_name,
                points_selector=PointIdsList(
                    points=[point_id(record_id) for record_id in ids]),
                wait=True,
            )
        except Exception as e:
            raise VectorDBError(f"Failed to delete vectors: {str(e)}") from e
