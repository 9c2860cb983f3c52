"""Document status state machine."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Iterable, Optional

from docingest.core.exceptions import InvalidStatusTransitionError, NotFoundError
from docingest.models.document import Document, DocumentStatus, StatusReport
from docingest.services.documents import DocumentRepository

logger = logging.getLogger(__name__)

START_PROGRESS = 10

TransitionObserver = Callable[[Document], None]


class StatusTracker:
    """Owns document status and progress.

    Transitions:
        created -> processing(10)          start
        failed | indexed -> processing(0)  reset_for_retry
        processing(p) -> processing(p'>=p) checkpoint
        processing -> indexed(100)         mark_indexed
        processing -> failed               mark_failed

    Every transition reads and writes the document under a per-document
    lock, so concurrent writers cannot interleave.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        on_transition: Optional[TransitionObserver] = None,
    ) -> None:
        self.repository = repository
        self.on_transition = on_transition
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, document_id: str) -> AsyncIterator[None]:
        """Hold the document's lock, dropping it once no holder or waiter is left."""
        lock = self._locks.get(document_id)
        if lock is None:
            lock = self._locks[document_id] = asyncio.Lock()
        self._lock_users[document_id] = self._lock_users.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[document_id] -= 1
            if not self._lock_users[document_id]:
                del self._lock_users[document_id]
                del self._locks[document_id]

    async def _require(self, document_id: str) -> Document:
        document = await self.repository.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def _write(self, document: Document) -> Document:
        saved = await self.repository.save(document)
        if self.on_transition is not None:
            self.on_transition(saved)
        return saved

    async def _transition(
        self,
        document_id: str,
        allowed_from: Iterable[DocumentStatus],
        to_status: DocumentStatus,
        **updates,
    ) -> Document:
        async with self._locked(document_id):
            document = await self._require(document_id)
            if document.status not in allowed_from:
                raise InvalidStatusTransitionError(
                    f"Cannot move document {document_id} from "
                    f"{document.status.value} to {to_status.value}"
                )
            logger.info(
                f"Document {document_id}: {document.status.value} -> {to_status.value}")
            return await self._write(
                document.model_copy(update={"status": to_status, **updates}))

    async def create(self, document: Document) -> Document:
        """
        Register a document in the ``created`` state if it does not exist.

        Args:
            document: Document fields to store.

        Returns:
            The stored document, or the existing one if already present.
        """
        async with self._locked(document.id):
            existing = await self.repository.get(document.id)
            if existing is not None:
                return existing
            return await self._write(
                document.model_copy(
                    update={
                        "status": DocumentStatus.CREATED,
                        "processing_progress": 0,
                        "error_message": None,
                    }
                )
            )

    async def start(self, document_id: str) -> Document:
        """Move a freshly created document into processing."""
        return await self._transition(
            document_id,
            (DocumentStatus.CREATED,),
            DocumentStatus.PROCESSING,
            processing_progress=START_PROGRESS,
            status_message="Starting document processing",
            error_message=None,
        )

    async def reset_for_retry(self, document_id: str) -> Document:
        """Restart a failed or indexed document from zero progress."""
        return await self._transition(
            document_id,
            (DocumentStatus.FAILED, DocumentStatus.INDEXED),
            DocumentStatus.PROCESSING,
            processing_progress=0,
            status_message="Retrying document processing",
            error_message=None,
            chunk_count=0,
        )

    async def checkpoint(
        self, document_id: str, progress: int, message: Optional[str] = None
    ) -> bool:
        """
        Record stage progress for a processing document.

        Args:
            document_id: Document ID.
            progress: New progress value, clamped to 0-100.
            message: Human-readable stage description.

        Returns:
            True if written, False if rejected because the document is not
            processing or the progress would go backwards.
        """
        progress = max(0, min(100, progress))
        async with self._locked(document_id):
            document = await self._require(document_id)
            if document.status != DocumentStatus.PROCESSING:
                logger.warning(
                    f"Rejected progress {progress} for document {document_id} "
                    f"in status {document.status.value}"
                )
                return False
            if progress < document.processing_progress:
                logger.warning(
                    f"Rejected progress {progress} for document {document_id}: "
                    f"already at {document.processing_progress}"
                )
                return False
            await self._write(
                document.model_copy(
                    update={
                        "processing_progress": progress,
                        "status_message": message or document.status_message,
                    }
                )
            )
            return True

    async def mark_indexed(
        self,
        document_id: str,
        chunk_count: int,
        embedding_model: Optional[str] = None,
    ) -> Document:
        """Finish a processing document successfully."""
        return await self._transition(
            document_id,
            (DocumentStatus.PROCESSING,),
            DocumentStatus.INDEXED,
            processing_progress=100,
            chunk_count=chunk_count,
            embedding_model=embedding_model,
            status_message=f"Document processed successfully: {chunk_count} chunks indexed",
            error_message=None,
        )

    async def mark_failed(self, document_id: str, message: str) -> Document:
        """Finish a processing document with an error."""
        return await self._transition(
            document_id,
            (DocumentStatus.PROCESSING,),
            DocumentStatus.FAILED,
            processing_progress=0,
            status_message="Processing failed",
            error_message=message,
        )

    async def get_status(self, document_id: str) -> StatusReport:
        """
        Read the current status of a document.

        Raises:
            NotFoundError: If the document does not exist.
        """
        document = await self._require(document_id)
        return StatusReport(
            id=document.id,
            status=document.status,
            progress=document.processing_progress,
            message=document.status_message,
            error=document.error_message if document.status == DocumentStatus.FAILED else None,
            updated_at=document.updated_at,
        )
