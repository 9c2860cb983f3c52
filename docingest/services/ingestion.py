"""Document ingestion pipeline: fetch, chunk, embed, store."""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from docingest.core.config import Settings, settings as default_settings
from docingest.core.exceptions import (
    ChunkingError,
    InvalidStatusTransitionError,
    NotFoundError,
    PipelineCancelledError,
    UpstreamError,
    ValidationError,
)
from docingest.models.document import (
    Chunk,
    Document,
    DocumentStatus,
    ProcessDocumentRequest,
    ProcessResult,
)
from docingest.models.record import VectorRecord
from docingest.monitoring.metrics import (
    document_processing_duration,
    documents_cancelled_total,
    documents_failed_total,
    documents_processed_total,
    vectors_upserted_total,
)
from docingest.services.batch import EmbeddingBatcher
from docingest.services.chunking import ChunkingService
from docingest.services.deletion import DeletionCascade
from docingest.services.retry import retry_with_backoff, with_timeout
from docingest.services.source import SourceFetcher
from docingest.services.status_tracker import StatusTracker
from docingest.services.vector_db import VectorStore

logger = logging.getLogger(__name__)

FETCH_PROGRESS = 10
CHUNK_PROGRESS = 30
EMBED_START_PROGRESS = 50
EMBED_END_PROGRESS = 90

ALREADY_PROCESSING_MESSAGE = "Document is already being processed"
CANCELLED_MESSAGE = "Processing cancelled"


class _ActiveRun:
    """Bookkeeping for a pipeline run in progress."""

    def __init__(self) -> None:
        self.cancel_event = asyncio.Event()
        self.finished = asyncio.Event()
        self.finalizing = False


class IngestionPipeline:
    """Drives one document at a time through fetch, chunk, embed and store.

    At most one run per document id is active at any time. A run never
    raises once it has started: every failure, including cancellation, ends
    with the document in ``failed``.
    """

    def __init__(
        self,
        tracker: StatusTracker,
        fetcher: SourceFetcher,
        chunker: ChunkingService,
        batcher: EmbeddingBatcher,
        vector_store: VectorStore,
        cascade: DeletionCascade,
        config: Optional[Settings] = None,
    ) -> None:
        config = config or default_settings
        self.tracker = tracker
        self.fetcher = fetcher
        self.chunker = chunker
        self.batcher = batcher
        self.vector_store = vector_store
        self.cascade = cascade
        self.embedding_model = config.embedding_model
        self.upsert_batch_size = config.upsert_batch_size
        self.store_timeout = config.vector_store_timeout_seconds
        self.purge_on_failure = config.purge_chunks_on_failure
        self.max_retries = config.max_retries
        self.retry_delay = config.retry_delay_seconds
        self.backoff_multiplier = config.retry_backoff_multiplier
        self._active: Dict[str, _ActiveRun] = {}
        self._registry_lock = asyncio.Lock()

    @staticmethod
    def validate(request: ProcessDocumentRequest) -> None:
        """
        Check the invocation before anything is written.

        Raises:
            ValidationError: If a required identifier is missing or the
                source URL is not an HTTP(S) URL.
        """
        if not request.document_id:
            raise ValidationError("Document ID is required")
        if not request.user_id:
            raise ValidationError("User ID is required")
        if not request.file_url:
            raise ValidationError("File URL is required")
        if not request.file_url.startswith(("http://", "https://")):
            raise ValidationError(f"File URL must be an HTTP(S) URL: {request.file_url}")

    def is_running(self, document_id: str) -> bool:
        return document_id in self._active

    def cancel(self, document_id: str) -> bool:
        """
        Request cancellation of the active run for a document.

        Returns:
            True if a run was active and has been signalled. False if no
            run is active or the run is already recording its result.
        """
        run = self._active.get(document_id)
        if run is None:
            return False
        if run.finalizing:
            logger.info(f"Document {document_id} is already finishing, cancellation ignored")
            return False
        logger.info(f"Cancellation requested for document {document_id}")
        run.cancel_event.set()
        return True

    async def wait(self, document_id: str) -> None:
        """Wait until the active run for a document, if any, has finished."""
        run = self._active.get(document_id)
        if run is not None:
            await run.finished.wait()

    async def process_document(
        self, request: ProcessDocumentRequest, retry: bool = False
    ) -> ProcessResult:
        """
        Run the ingestion pipeline for one document.

        Args:
            request: Document identifiers and source location.
            retry: Restart a failed or indexed document from scratch.

        Returns:
            Processing result. Stage failures are reported here, not raised.

        Raises:
            ValidationError: If the request is malformed.
        """
        self.validate(request)
        document_id = request.document_id

        async with self._registry_lock:
            if document_id in self._active:
                logger.warning(f"Document {document_id} is already being processed, skipping")
                return ProcessResult(
                    success=False,
                    document_id=document_id,
                    status=DocumentStatus.PROCESSING,
                    error=ALREADY_PROCESSING_MESSAGE,
                )
            run = _ActiveRun()
            self._active[document_id] = run

        try:
            return await self._run(request, retry, run)
        finally:
            async with self._registry_lock:
                if self._active.get(document_id) is run:
                    del self._active[document_id]
            run.finished.set()

    async def _begin(self, request: ProcessDocumentRequest, retry: bool) -> None:
        document_id = request.document_id
        if retry:
            await self.tracker.reset_for_retry(document_id)
            return

        await self.tracker.create(
            Document(
                id=document_id,
                user_id=request.user_id,
                name=request.file_name,
                file_type=request.file_type,
                file_size=request.file_size,
                file_path=request.file_path,
                source_url=request.file_url,
            )
        )
        await self.tracker.start(document_id)

    async def _run(
        self,
        request: ProcessDocumentRequest,
        retry: bool,
        run: _ActiveRun,
    ) -> ProcessResult:
        document_id = request.document_id
        try:
            await self._begin(request, retry)
        except (InvalidStatusTransitionError, NotFoundError) as e:
            logger.warning(f"Could not start processing document {document_id}: {str(e)}")
            return ProcessResult(success=False, document_id=document_id, error=str(e))
        except asyncio.CancelledError:
            await self._abandon(document_id, CANCELLED_MESSAGE, cancelled=True)
            raise
        except UpstreamError as e:
            message = str(e)
            logger.error(f"Could not start processing document {document_id}: {message}")
            failed = await self._abandon(document_id, message)
            return ProcessResult(
                success=False,
                document_id=document_id,
                status=DocumentStatus.FAILED if failed else None,
                error=message,
            )

        start_time = time.time()
        try:
            return await self._execute(request, retry, run)
        except asyncio.CancelledError:
            await self._fail(document_id, CANCELLED_MESSAGE, cancelled=True)
            raise
        except PipelineCancelledError:
            await self._fail(document_id, CANCELLED_MESSAGE, cancelled=True)
            return ProcessResult(
                success=False,
                document_id=document_id,
                status=DocumentStatus.FAILED,
                error=CANCELLED_MESSAGE,
            )
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"Document processing failed: {document_id}: {message}")
            await self._fail(document_id, message)
            return ProcessResult(
                success=False,
                document_id=document_id,
                status=DocumentStatus.FAILED,
                error=message,
            )
        finally:
            document_processing_duration.observe(time.time() - start_time)

    async def _execute(
        self,
        request: ProcessDocumentRequest,
        retry: bool,
        run: _ActiveRun,
    ) -> ProcessResult:
        cancel_event = run.cancel_event
        document_id = request.document_id

        await self._checkpoint(
            document_id, FETCH_PROGRESS, "Fetching document content", cancel_event)
        text = await self.fetcher.fetch_text(request.file_url)

        await self._checkpoint(
            document_id, CHUNK_PROGRESS, "Chunking document content", cancel_event)
        chunks = self.chunker.chunk_document(text, document_id)
        if not chunks:
            raise ChunkingError("No valid content chunks could be extracted from document")
        logger.info(f"Document {document_id} split into {len(chunks)} chunks")

        await self._checkpoint(
            document_id,
            EMBED_START_PROGRESS,
            f"Generating embeddings for {len(chunks)} chunks",
            cancel_event,
        )
        if retry:
            await self.cascade.purge_chunks(document_id)

        inserted = await self._embed_and_store(request, chunks, cancel_event)
        self._raise_if_cancelled(cancel_event)
        # cancel() is refused once the final transition has begun.
        run.finalizing = True

        await self.tracker.mark_indexed(document_id, len(chunks), self.embedding_model)
        documents_processed_total.inc()
        logger.info(
            f"Document {document_id} indexed: {inserted} vectors from {len(chunks)} chunks")
        return ProcessResult(
            success=True,
            document_id=document_id,
            status=DocumentStatus.INDEXED,
            chunks_processed=len(chunks),
            vectors_inserted=inserted,
        )

    async def _embed_and_store(
        self,
        request: ProcessDocumentRequest,
        chunks: List[Chunk],
        cancel_event: asyncio.Event,
    ) -> int:
        """Embed chunks window by window, upserting each window once embedded."""
        document_id = request.document_id
        total = len(chunks)
        window = self.batcher.batch_size * self.batcher.concurrency_limit
        inserted = 0

        for window_start in range(0, total, window):
            window_chunks = chunks[window_start:window_start + window]

            async def report(completed: int, _window_total: int, offset: int = window_start) -> None:
                done = offset + completed
                await self._checkpoint(
                    document_id,
                    self._embedding_progress(done, total),
                    f"Generating embeddings: {done}/{total} chunks",
                    cancel_event,
                )

            vectors = await self.batcher.embed(
                [chunk.content for chunk in window_chunks],
                on_batch_complete=report,
                cancel_event=cancel_event,
            )
            self._raise_if_cancelled(cancel_event)

            records = [
                chunk.model_copy(update={"embedding": vector}).to_record(
                    user_id=request.user_id,
                    document_name=request.file_name,
                    embedding_model=self.embedding_model,
                )
                for chunk, vector in zip(window_chunks, vectors)
            ]
            inserted += await self._upsert(records)

        return inserted

    @staticmethod
    def _embedding_progress(done: int, total: int) -> int:
        span = EMBED_END_PROGRESS - EMBED_START_PROGRESS
        return EMBED_START_PROGRESS + (span * done) // total

    async def _upsert(self, records: List[VectorRecord]) -> int:
        inserted = 0
        for start in range(0, len(records), self.upsert_batch_size):
            batch = records[start:start + self.upsert_batch_size]
            inserted += await retry_with_backoff(
                lambda batch=batch: with_timeout(
                    self.vector_store.upsert(batch), self.store_timeout, "Upsert chunk vectors"),
                max_retries=self.max_retries,
                delay=self.retry_delay,
                backoff_multiplier=self.backoff_multiplier,
                exceptions=(UpstreamError,),
                operation="Upsert chunk vectors",
            )
        vectors_upserted_total.inc(inserted)
        return inserted

    async def _checkpoint(
        self,
        document_id: str,
        progress: int,
        message: str,
        cancel_event: asyncio.Event,
    ) -> None:
        self._raise_if_cancelled(cancel_event)
        accepted = await self.tracker.checkpoint(document_id, progress, message)
        if not accepted:
            raise InvalidStatusTransitionError(
                f"Document {document_id} is no longer accepting progress updates")

    @staticmethod
    def _raise_if_cancelled(cancel_event: asyncio.Event) -> None:
        if cancel_event.is_set():
            raise PipelineCancelledError(CANCELLED_MESSAGE)

    async def _abandon(self, document_id: str, message: str, cancelled: bool = False) -> bool:
        """
        Fail a document whose start was interrupted, if the start write landed.

        Returns:
            True if the document was found in ``processing`` and marked failed.
        """
        try:
            report = await retry_with_backoff(
                lambda: self.tracker.get_status(document_id),
                max_retries=self.max_retries,
                delay=self.retry_delay,
                backoff_multiplier=self.backoff_multiplier,
                exceptions=(UpstreamError,),
                operation="Read document status",
            )
        except NotFoundError:
            return False
        except Exception as e:
            logger.error(f"Could not read document {document_id} after interrupted start: {str(e)}")
            return False

        if report.status != DocumentStatus.PROCESSING:
            return False
        await self._fail(document_id, message, cancelled=cancelled)
        return True

    async def _fail(self, document_id: str, message: str, cancelled: bool = False) -> None:
        """Record a terminal failure, then drop any chunk vectors already written."""
        if cancelled:
            documents_cancelled_total.inc()
            logger.warning(f"Document {document_id} processing cancelled")
        documents_failed_total.inc()

        try:
            await retry_with_backoff(
                lambda: self.tracker.mark_failed(document_id, message),
                max_retries=self.max_retries,
                delay=self.retry_delay,
                backoff_multiplier=self.backoff_multiplier,
                exceptions=(UpstreamError,),
                operation="Mark document failed",
            )
        except Exception as e:
            logger.error(f"Failed to update document status after error: {document_id}: {str(e)}")

        if self.purge_on_failure:
            try:
                await self.cascade.purge_chunks(document_id)
            except Exception as e:
                logger.error(
                    f"Failed to purge partial chunks for document {document_id}: {str(e)}")
