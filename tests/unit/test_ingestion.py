"""Unit tests for the ingestion pipeline.

Every test drives the real pipeline against the in-memory vector store, a
scripted embedding provider and an httpx mock transport for the source.
"""

import asyncio

import pytest

from conftest import SOURCE_URL, InMemoryVectorStore, ScriptedProvider, make_text, wait_for_calls
from docingest.core.exceptions import ValidationError
from docingest.models.document import Document, DocumentStatus, ProcessDocumentRequest
from docingest.services.chunking import ChunkingService


def _request(document_id: str = "doc-1", **overrides) -> ProcessDocumentRequest:
    fields = {
        "document_id": document_id,
        "user_id": "user-1",
        "file_path": f"documents/user-1/{document_id}.txt",
        "file_name": "handbook.txt",
        "file_type": "txt",
        "file_url": SOURCE_URL,
    }
    fields.update(overrides)
    return ProcessDocumentRequest(**fields)


def _observe(container) -> list:
    history = []
    container.tracker.on_transition = history.append
    return history


class _StallingStore(InMemoryVectorStore):
    """Sleeps once, right after a document has been written as processing."""

    def __init__(self, stall_seconds: float = 10.0) -> None:
        super().__init__()
        self.stall_seconds = stall_seconds
        self.stalled = asyncio.Event()

    async def upsert(self, records):
        written = await super().upsert(records)
        starting = any(
            record.record_type == "document"
            and Document.from_record(record).status == DocumentStatus.PROCESSING
            for record in records
        )
        if starting and not self.stalled.is_set():
            self.stalled.set()
            await asyncio.sleep(self.stall_seconds)
        return written


def test_successful_run_indexes_every_chunk(make_container, store, test_settings) -> None:
    container = make_container()
    expected = ChunkingService(test_settings).chunk_document(make_text(), "doc-1")

    result = asyncio.run(container.pipeline.process_document(_request()))
    status = asyncio.run(container.tracker.get_status("doc-1"))

    assert result.success is True
    assert result.status == DocumentStatus.INDEXED
    assert result.chunks_processed == len(expected)
    assert result.vectors_inserted == len(expected)
    assert status.status == DocumentStatus.INDEXED
    assert status.progress == 100
    assert store.chunk_ids("doc-1") == sorted(chunk.id for chunk in expected)

    chunk = store.records[expected[0].id].as_chunk()
    assert chunk.document_id == "doc-1"
    assert chunk.user_id == "user-1"
    assert chunk.content == expected[0].content


def test_progress_never_decreases_during_a_run(make_container) -> None:
    container = make_container()
    history = _observe(container)

    asyncio.run(container.pipeline.process_document(_request()))

    progress = [doc.processing_progress for doc in history if doc.status == DocumentStatus.PROCESSING]
    assert progress == sorted(progress)
    assert progress[0] == 10
    assert 50 in progress
    assert progress[-1] == 90
    assert history[-1].status == DocumentStatus.INDEXED


def test_second_batch_failure_ends_failed_and_never_indexed(
    make_container, source, store
) -> None:
    source.serve(SOURCE_URL, make_text(8))
    provider = ScriptedProvider(fail_on_calls={2})
    container = make_container(provider_override=provider)
    history = _observe(container)

    result = asyncio.run(container.pipeline.process_document(_request()))
    status = asyncio.run(container.tracker.get_status("doc-1"))

    assert len(provider.calls) == 2
    assert result.success is False
    assert "provider unavailable" in result.error
    assert status.status == DocumentStatus.FAILED
    assert "provider unavailable" in status.error
    assert all(doc.status != DocumentStatus.INDEXED for doc in history)
    assert store.chunk_ids("doc-1") == []


def test_failure_after_partial_upsert_purges_written_chunks(make_container, store) -> None:
    provider = ScriptedProvider(fail_on_calls={3})
    container = make_container(provider_override=provider)

    result = asyncio.run(container.pipeline.process_document(_request()))

    assert result.success is False
    assert len(provider.calls) >= 3
    assert store.chunk_ids("doc-1") == []


def test_partial_chunks_kept_when_purge_disabled(make_container, store) -> None:
    provider = ScriptedProvider(fail_on_calls={3})
    container = make_container(provider_override=provider, purge_chunks_on_failure=False)

    result = asyncio.run(container.pipeline.process_document(_request()))

    assert result.success is False
    assert len(store.chunk_ids("doc-1")) == 4


def test_transient_upsert_failure_is_retried(make_container, store) -> None:
    container = make_container()
    store.fail_chunk_upserts = 1

    result = asyncio.run(container.pipeline.process_document(_request()))

    assert result.success is True
    assert store.fail_chunk_upserts == 0
    assert len(store.chunk_ids("doc-1")) == result.chunks_processed


def test_persistent_upsert_failure_fails_the_run(make_container, store) -> None:
    container = make_container()
    store.fail_chunk_upserts = 100

    result = asyncio.run(container.pipeline.process_document(_request()))
    status = asyncio.run(container.tracker.get_status("doc-1"))

    assert result.success is False
    assert status.status == DocumentStatus.FAILED
    assert status.error == "upsert rejected"


def test_fetch_error_is_recorded(make_container, source) -> None:
    source.serve(SOURCE_URL, "", status_code=404)
    container = make_container()

    result = asyncio.run(container.pipeline.process_document(_request()))
    status = asyncio.run(container.tracker.get_status("doc-1"))

    assert result.success is False
    assert status.status == DocumentStatus.FAILED
    assert status.error == "Failed to fetch document: 404 Not Found"


def test_document_without_informative_text_fails(make_container, source) -> None:
    source.serve(SOURCE_URL, "ok")
    container = make_container()

    result = asyncio.run(container.pipeline.process_document(_request()))

    assert result.success is False
    assert "No valid content chunks" in result.error


@pytest.mark.parametrize(
    "overrides",
    [
        {"document_id": ""},
        {"user_id": ""},
        {"file_url": ""},
        {"file_url": "ftp://files.example.com/handbook.txt"},
    ],
)
def test_invalid_request_raises_without_writes(make_container, store, overrides) -> None:
    container = make_container()
    request = _request(**overrides)

    with pytest.raises(ValidationError):
        asyncio.run(container.pipeline.process_document(request))
    assert store.records == {}


def test_cancel_ends_run_failed(make_container, store) -> None:
    async def scenario():
        gate = asyncio.Event()
        provider = ScriptedProvider(gate=gate)
        container = make_container(provider_override=provider)

        task = asyncio.ensure_future(container.pipeline.process_document(_request()))
        await wait_for_calls(provider)
        assert container.pipeline.is_running("doc-1")
        assert container.pipeline.cancel("doc-1") is True

        result = await task
        status = await container.tracker.get_status("doc-1")
        return container, result, status

    container, result, status = asyncio.run(scenario())

    assert result.success is False
    assert result.error == "Processing cancelled"
    assert status.status == DocumentStatus.FAILED
    assert status.error == "Processing cancelled"
    assert not container.pipeline.is_running("doc-1")
    assert store.chunk_ids("doc-1") == []


def test_task_cancellation_marks_failed_and_propagates(make_container) -> None:
    async def scenario():
        gate = asyncio.Event()
        provider = ScriptedProvider(gate=gate)
        container = make_container(provider_override=provider)

        task = asyncio.ensure_future(container.pipeline.process_document(_request()))
        await wait_for_calls(provider)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return await container.tracker.get_status("doc-1")

    status = asyncio.run(scenario())
    assert status.status == DocumentStatus.FAILED
    assert status.error == "Processing cancelled"


def test_cancel_without_active_run_returns_false(make_container) -> None:
    assert make_container().pipeline.cancel("doc-1") is False


def test_concurrent_run_for_same_document_is_rejected(make_container) -> None:
    async def scenario():
        gate = asyncio.Event()
        provider = ScriptedProvider(gate=gate)
        container = make_container(provider_override=provider)

        first = asyncio.ensure_future(container.pipeline.process_document(_request()))
        await wait_for_calls(provider)
        second = await container.pipeline.process_document(_request())
        retry = await container.pipeline.process_document(_request(), retry=True)
        gate.set()
        return await first, second, retry

    first, second, retry = asyncio.run(scenario())

    assert first.success is True
    assert second.success is False
    assert second.error == "Document is already being processed"
    assert retry.success is False


def test_reprocessing_indexed_document_without_retry_is_rejected(make_container) -> None:
    container = make_container()

    async def scenario():
        await container.pipeline.process_document(_request())
        again = await container.pipeline.process_document(_request())
        return again, await container.tracker.get_status("doc-1")

    again, status = asyncio.run(scenario())

    assert again.success is False
    assert status.status == DocumentStatus.INDEXED


def test_retry_replaces_previous_chunks(make_container, source, store, test_settings) -> None:
    container = make_container()
    shorter = make_text(6)
    expected = ChunkingService(test_settings).chunk_document(shorter, "doc-1")

    async def scenario():
        await container.pipeline.process_document(_request())
        before = store.chunk_ids("doc-1")
        source.serve(SOURCE_URL, shorter)
        result = await container.pipeline.process_document(_request(), retry=True)
        return before, result

    before, result = asyncio.run(scenario())

    assert len(before) > len(expected)
    assert result.success is True
    assert result.chunks_processed == len(expected)
    assert store.chunk_ids("doc-1") == sorted(chunk.id for chunk in expected)


def test_retry_of_failed_document_succeeds(make_container, source) -> None:
    source.serve(SOURCE_URL, "", status_code=500)
    container = make_container()

    async def scenario():
        failed = await container.pipeline.process_document(_request())
        source.serve(SOURCE_URL, make_text())
        retried = await container.pipeline.process_document(_request(), retry=True)
        return failed, retried, await container.tracker.get_status("doc-1")

    failed, retried, status = asyncio.run(scenario())

    assert failed.success is False
    assert retried.success is True
    assert status.status == DocumentStatus.INDEXED
    assert status.error is None


def test_request_file_size_is_stored(make_container) -> None:
    container = make_container()

    async def scenario():
        await container.pipeline.process_document(_request(file_size=48213))
        first = await container.repository.get("doc-1")
        await container.documents.retry_document("doc-1")
        return first, await container.repository.get("doc-1")

    first, retried = asyncio.run(scenario())

    assert first.file_size == 48213
    assert retried.file_size == 48213


def test_cancellation_during_start_write_leaves_document_failed(make_container) -> None:
    async def scenario():
        stalling = _StallingStore()
        container = make_container(store_override=stalling)

        task = asyncio.ensure_future(container.pipeline.process_document(_request()))
        await stalling.stalled.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        cancelled = await container.tracker.get_status("doc-1")
        retried = await container.documents.retry_document("doc-1")
        return container, cancelled, retried

    container, cancelled, retried = asyncio.run(scenario())

    assert cancelled.status == DocumentStatus.FAILED
    assert cancelled.error == "Processing cancelled"
    assert retried.success is True
    assert not container.pipeline.is_running("doc-1")


def test_timed_out_start_write_leaves_document_failed(make_container) -> None:
    stalling = _StallingStore(stall_seconds=1.0)
    container = make_container(store_override=stalling, vector_store_timeout_seconds=0.05)

    async def scenario():
        result = await container.pipeline.process_document(_request())
        failed = await container.tracker.get_status("doc-1")
        retried = await container.documents.retry_document("doc-1")
        return result, failed, retried

    result, failed, retried = asyncio.run(scenario())

    assert result.success is False
    assert result.status == DocumentStatus.FAILED
    assert "timed out" in result.error
    assert failed.status == DocumentStatus.FAILED
    assert failed.error == result.error
    assert retried.success is True


def test_cancel_before_final_check_wins(make_container, store) -> None:
    container = make_container()
    replies = []

    def cancel_at_last_checkpoint(document) -> None:
        if document.status == DocumentStatus.PROCESSING and document.processing_progress == 90:
            replies.append(container.pipeline.cancel("doc-1"))

    container.tracker.on_transition = cancel_at_last_checkpoint
    result = asyncio.run(container.pipeline.process_document(_request()))

    assert replies == [True]
    assert result.success is False
    assert result.error == "Processing cancelled"
    assert store.chunk_ids("doc-1") == []


def test_cancel_during_final_transition_is_refused(make_container) -> None:
    container = make_container()
    replies = []

    def cancel_when_indexed(document) -> None:
        if document.status == DocumentStatus.INDEXED:
            replies.append(container.pipeline.cancel("doc-1"))

    container.tracker.on_transition = cancel_when_indexed
    result = asyncio.run(container.pipeline.process_document(_request()))
    status = asyncio.run(container.tracker.get_status("doc-1"))

    assert replies == [False]
    assert result.success is True
    assert status.status == DocumentStatus.INDEXED
