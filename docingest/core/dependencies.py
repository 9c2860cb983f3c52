"""Dependency injection for services."""

from typing import Optional

from docingest.core.config import Settings, settings as default_settings
from docingest.services.batch import EmbeddingBatcher, EmbeddingProvider
from docingest.services.blob_storage import BlobStorageService
from docingest.services.chunking import ChunkingService
from docingest.services.deletion import DeletionCascade
from docingest.services.document_service import DocumentService
from docingest.services.documents import DocumentRepository
from docingest.services.embedding import EmbeddingService
from docingest.services.ingestion import IngestionPipeline
from docingest.services.source import SourceFetcher
from docingest.services.status_tracker import StatusTracker
from docingest.services.vector_db import QdrantVectorStore, VectorStore


class ServiceContainer:
    """Container for service instances.

    Collaborators default to their production implementations and can be
    replaced through the constructor.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        vector_store: Optional[VectorStore] = None,
        embedding_service: Optional[EmbeddingProvider] = None,
        source_fetcher: Optional[SourceFetcher] = None,
        blob_storage: Optional[BlobStorageService] = None,
    ) -> None:
        """Initialize service container."""
        self.config = config or default_settings
        self.vector_store = vector_store or QdrantVectorStore(self.config)
        self.embedding_service = embedding_service or EmbeddingService(self.config)
        self.source_fetcher = source_fetcher or SourceFetcher(self.config)
        self.blob_storage = blob_storage or BlobStorageService(self.config)

        self.repository = DocumentRepository(self.vector_store, self.config)
        self.tracker = StatusTracker(self.repository)
        self.chunking_service = ChunkingService(self.config)
        self.batcher = EmbeddingBatcher(self.embedding_service, self.config)
        self.cascade = DeletionCascade(
            self.vector_store, self.repository, self.blob_storage, self.config)
        self.pipeline = IngestionPipeline(
            tracker=self.tracker,
            fetcher=self.source_fetcher,
            chunker=self.chunking_service,
            batcher=self.batcher,
            vector_store=self.vector_store,
            cascade=self.cascade,
            config=self.config,
        )
        self.documents = DocumentService(
            self.pipeline, self.tracker, self.repository, self.cascade)

    async def initialize(self) -> None:
        """Initialize all services."""
        await self.vector_store.connect()
        await self.source_fetcher.connect()
        if self.blob_storage.enabled:
            await self.blob_storage.connect()

    async def shutdown(self) -> None:
        """Shutdown all services."""
        if self.blob_storage.enabled:
            await self.blob_storage.disconnect()
        await self.source_fetcher.disconnect()
        await self.vector_store.disconnect()
        close = getattr(self.embedding_service, "close", None)
        if close is not None:
            await close()
