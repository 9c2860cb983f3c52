"""Ingestion Service: HTTP surface over the document ingestion pipeline."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from docingest.api.health import check_all_dependencies
from docingest.core.dependencies import ServiceContainer
from docingest.core.exceptions import NotFoundError, UpstreamError, ValidationError
from docingest.models.document import (
    DeleteResult,
    DocumentStatus,
    ProcessDocumentRequest,
    ProcessResult,
    StatusReport,
)
from docingest.models.document_api import (
    CancelResponse,
    DocumentListResponse,
    DocumentStatsResponse,
    RetryRequest,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _container(request: Request) -> ServiceContainer:
    return request.app.state.container


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Service container; a default one is built when omitted.

    Returns:
        Configured application.
    """
    container = container or ServiceContainer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        await container.initialize()
        logger.info("Ingestion Service started")
        yield
        await container.shutdown()
        logger.info("Ingestion Service stopped")

    app = FastAPI(title="Ingestion Service", lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/api/documents/process", response_model=ProcessResult)
    async def process_document(
        body: ProcessDocumentRequest, request: Request
    ) -> ProcessResult:
        """
        Run the ingestion pipeline for a document.

        Args:
            body: Document identifiers and source URL.

        Returns:
            Processing result.
        """
        try:
            return await _container(request).documents.process_document(body)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/api/documents/retry", response_model=ProcessResult)
    async def retry_document(body: RetryRequest, request: Request) -> ProcessResult:
        """
        Reprocess a failed or indexed document.

        Args:
            body: Retry request with the document ID.

        Returns:
            Processing result.
        """
        try:
            return await _container(request).documents.retry_document(body.document_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except UpstreamError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.post("/api/documents/{document_id}/cancel", response_model=CancelResponse)
    async def cancel_document(document_id: str, request: Request) -> CancelResponse:
        """Signal cancellation of a document's active run."""
        success = _container(request).documents.cancel_document(document_id)
        return CancelResponse(success=success, document_id=document_id)

    @app.get("/api/documents/stats", response_model=DocumentStatsResponse)
    async def get_document_stats(
        request: Request, user_id: Optional[str] = Query(None)
    ) -> DocumentStatsResponse:
        """Summarize documents by status and file type."""
        try:
            stats = await _container(request).documents.get_stats(user_id=user_id)
        except UpstreamError as e:
            logger.error(f"Failed to get document stats: {str(e)}")
            raise HTTPException(status_code=502, detail=str(e))
        return DocumentStatsResponse(**stats)

    @app.get("/api/documents/{document_id}/status", response_model=StatusReport)
    async def get_document_status(document_id: str, request: Request) -> StatusReport:
        """
        Get the processing status of a document.

        Args:
            document_id: Document ID.

        Returns:
            Status, progress and error of the document.
        """
        try:
            return await _container(request).documents.get_status(document_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except UpstreamError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.get("/api/documents", response_model=DocumentListResponse)
    async def list_documents(
        request: Request,
        user_id: Optional[str] = Query(None),
        status: Optional[DocumentStatus] = Query(None),
        limit: int = Query(10, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ) -> DocumentListResponse:
        """
        List documents, newest first.

        Args:
            user_id: Only documents owned by this user.
            status: Only documents in this status.
            limit: Maximum number of documents to return.
            offset: Number of documents to skip.

        Returns:
            Page of documents.
        """
        try:
            documents, total, has_more = await _container(request).documents.list_documents(
                user_id=user_id, status=status, limit=limit, offset=offset)
        except UpstreamError as e:
            logger.error(f"Failed to list documents: {str(e)}")
            raise HTTPException(status_code=502, detail=str(e))
        return DocumentListResponse(
            documents=documents,
            total=total,
            has_more=has_more,
            limit=limit,
            offset=offset,
        )

    @app.delete("/api/documents/{document_id}", response_model=DeleteResult)
    async def delete_document(document_id: str, request: Request) -> DeleteResult:
        """
        Delete a document and all of its chunks.

        Args:
            document_id: Document ID.
        """
        try:
            return await _container(request).documents.delete_document(document_id)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except UpstreamError as e:
            logger.error(f"Failed to delete document {document_id}: {str(e)}")
            raise HTTPException(status_code=502, detail=str(e))

    @app.get("/health")
    async def health(request: Request) -> dict:
        """
        Health check endpoint with dependency verification.

        Returns:
            Health status with service dependencies.
        """
        container = _container(request)
        result = await check_all_dependencies(
            container.vector_store, container.embedding_service, container.config)
        return {"service": container.config.service_name, **result}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
