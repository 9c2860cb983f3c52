"""Unit tests for the embedding batcher."""

import asyncio

import pytest

from conftest import ScriptedProvider, wait_for_calls
from docingest.core.exceptions import (
    EmbeddingError,
    EmbeddingValidationError,
    PipelineCancelledError,
)
from docingest.services.batch import EmbeddingBatcher


def _texts(n: int) -> list[str]:
    return [f"chunk text number {i}" for i in range(n)]


def test_results_keep_input_order_when_batches_finish_out_of_order(test_settings) -> None:
    provider = ScriptedProvider(delays={1: 0.05})
    batcher = EmbeddingBatcher(provider, test_settings, batch_size=2, concurrency_limit=3)
    texts = _texts(6)
    progress = []

    async def on_batch_complete(completed: int, total: int) -> None:
        progress.append((completed, total))

    vectors = asyncio.run(batcher.embed(texts, on_batch_complete=on_batch_complete))

    assert vectors == [provider.vector_for(text) for text in texts]
    assert progress == [(2, 6), (4, 6), (6, 6)]


def test_25_texts_with_batch_size_20_use_two_concurrent_calls(test_settings) -> None:
    provider = ScriptedProvider(delays={1: 0.02, 2: 0.02})
    batcher = EmbeddingBatcher(provider, test_settings, batch_size=20, concurrency_limit=2)
    texts = _texts(25)

    vectors = asyncio.run(batcher.embed(texts))

    assert [len(call) for call in provider.calls] == [20, 5]
    assert provider.max_in_flight == 2
    assert len(vectors) == 25
    assert vectors == [provider.vector_for(text) for text in texts]


def test_concurrency_limit_bounds_in_flight_calls(test_settings) -> None:
    provider = ScriptedProvider(delays={n: 0.01 for n in range(1, 6)})
    batcher = EmbeddingBatcher(provider, test_settings, batch_size=1, concurrency_limit=2)

    asyncio.run(batcher.embed(_texts(5)))

    assert len(provider.calls) == 5
    assert provider.max_in_flight <= 2


def test_empty_input_makes_no_calls(test_settings) -> None:
    provider = ScriptedProvider()
    batcher = EmbeddingBatcher(provider, test_settings)

    assert asyncio.run(batcher.embed([])) == []
    assert provider.calls == []


def test_empty_text_is_rejected_before_dispatch(test_settings) -> None:
    provider = ScriptedProvider()
    batcher = EmbeddingBatcher(provider, test_settings)

    with pytest.raises(EmbeddingValidationError, match="index 1"):
        asyncio.run(batcher.embed(["valid text", "   ", "more text"]))
    assert provider.calls == []


def test_oversized_text_is_rejected_before_dispatch(test_settings) -> None:
    provider = ScriptedProvider()
    config = test_settings.model_copy(update={"embedding_max_input_bytes": 16})
    batcher = EmbeddingBatcher(provider, config)

    with pytest.raises(EmbeddingValidationError, match="limit is 16"):
        asyncio.run(batcher.embed(["short", "this text is longer than the limit"]))
    assert provider.calls == []


def test_any_failed_batch_fails_the_whole_call(test_settings) -> None:
    provider = ScriptedProvider(fail_on_calls={2})
    batcher = EmbeddingBatcher(provider, test_settings, batch_size=2, concurrency_limit=2)

    with pytest.raises(EmbeddingError, match="provider unavailable"):
        asyncio.run(batcher.embed(_texts(4)))


def test_wrong_dimension_is_an_error(test_settings) -> None:
    provider = ScriptedProvider(dimensions=4)
    batcher = EmbeddingBatcher(provider, test_settings)

    with pytest.raises(EmbeddingError, match="dimension mismatch"):
        asyncio.run(batcher.embed(_texts(2)))


def test_slow_provider_times_out(test_settings) -> None:
    provider = ScriptedProvider(delays={1: 1.0})
    batcher = EmbeddingBatcher(provider, test_settings, timeout=0.01)

    with pytest.raises(EmbeddingError, match="timed out"):
        asyncio.run(batcher.embed(_texts(1)))


def test_cancel_event_abandons_outstanding_batches(test_settings) -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        cancel_event = asyncio.Event()
        provider = ScriptedProvider(gate=gate)
        batcher = EmbeddingBatcher(provider, test_settings, batch_size=2, concurrency_limit=2)

        task = asyncio.ensure_future(batcher.embed(_texts(6), cancel_event=cancel_event))
        await wait_for_calls(provider, 2)
        cancel_event.set()

        with pytest.raises(PipelineCancelledError):
            await task
        assert len(provider.calls) == 2
        assert provider.in_flight == 0

    asyncio.run(scenario())


def test_negative_concurrency_limit_is_rejected(test_settings) -> None:
    batcher = EmbeddingBatcher(ScriptedProvider(), test_settings)
    with pytest.raises(ValueError):
        asyncio.run(batcher.embed(_texts(2), concurrency_limit=-1))
