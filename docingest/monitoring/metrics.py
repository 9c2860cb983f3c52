"""Prometheus metrics for monitoring."""

from prometheus_client import Counter, Histogram

documents_processed_total = Counter(
    "ingest_documents_processed_total", "Total number of documents indexed successfully")
documents_failed_total = Counter(
    "ingest_documents_failed_total", "Total number of document runs that ended failed")
documents_cancelled_total = Counter(
    "ingest_documents_cancelled_total", "Total number of document runs cancelled")
document_processing_duration = Histogram(
    "ingest_document_processing_duration_seconds", "Document pipeline duration", buckets=[
        0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0])

embedding_batches_total = Counter(
    "ingest_embedding_batches_total", "Total number of embedding batch calls")
embedding_batch_errors_total = Counter(
    "ingest_embedding_batch_errors_total", "Total number of failed embedding batch calls")
embedding_batch_duration = Histogram(
    "ingest_embedding_batch_duration_seconds", "Embedding batch call duration", buckets=[0.1, 0.5, 1.0, 2.0, 5.0])

vectors_upserted_total = Counter(
    "ingest_vectors_upserted_total", "Total number of chunk vectors upserted")
documents_deleted_total = Counter(
    "ingest_documents_deleted_total", "Total number of document delete cascades")
chunks_deleted_total = Counter(
    "ingest_chunks_deleted_total", "Total number of chunk vectors deleted")
