"""Pydantic models for document API."""

from typing import Dict

from pydantic import BaseModel, Field

from docingest.models.document import Document


class RetryRequest(BaseModel):
    """Model for retrying a document."""

    document_id: str = Field(..., min_length=1)


class CancelResponse(BaseModel):
    """Model for cancellation response."""

    success: bool
    document_id: str


class DocumentListResponse(BaseModel):
    """Model for document list response."""

    documents: list[Document]
    total: int
    has_more: bool
    limit: int
    offset: int


class DocumentStatsResponse(BaseModel):
    """Model for document statistics response."""

    total: int
    by_status: Dict[str, int]
    by_type: Dict[str, int]
    average_chunks: float
