"""Bounded-concurrency batch embedding."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Protocol

from docingest.core.config import Settings, settings as default_settings
from docingest.core.exceptions import (
    EmbeddingError,
    EmbeddingValidationError,
    PipelineCancelledError,
)
from docingest.monitoring.metrics import (
    embedding_batch_duration,
    embedding_batch_errors_total,
    embedding_batches_total,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


class EmbeddingProvider(Protocol):
    """Anything that turns a list of texts into a list of vectors."""

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        ...


class EmbeddingBatcher:
    """Embed texts in batches with bounded concurrency, preserving order."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: Optional[Settings] = None,
        batch_size: Optional[int] = None,
        concurrency_limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the batcher.

        Args:
            provider: Embedding provider to call once per batch.
            config: Settings supplying defaults for the other arguments.
            batch_size: Maximum texts per provider call.
            concurrency_limit: Maximum provider calls in flight.
            timeout: Timeout in seconds for a single provider call.
        """
        config = config or default_settings
        self.provider = provider
        self.batch_size = batch_size or config.embedding_batch_size
        self.concurrency_limit = concurrency_limit or config.embedding_concurrency
        self.timeout = timeout or config.embedding_timeout_seconds
        self.max_input_bytes = config.embedding_max_input_bytes
        self.dimensions = config.embedding_dimensions

    def validate(self, texts: List[str]) -> None:
        """
        Check every text against provider limits.

        Raises:
            EmbeddingValidationError: If a text is empty or too long.
        """
        for idx, text in enumerate(texts):
            if not text or not text.strip():
                raise EmbeddingValidationError(
                    f"Cannot embed empty text at index {idx}")
            size = len(text.encode("utf-8"))
            if size > self.max_input_bytes:
                raise EmbeddingValidationError(
                    f"Text at index {idx} is {size} bytes, "
                    f"limit is {self.max_input_bytes}"
                )

    async def embed(
        self,
        texts: List[str],
        batch_size: Optional[int] = None,
        concurrency_limit: Optional[int] = None,
        on_batch_complete: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[List[float]]:
        """
        Embed texts, returning vectors aligned with the input order.

        Either every batch succeeds and all vectors are returned, or the call
        raises and nothing is returned.

        Args:
            texts: Texts to embed.
            batch_size: Override for the configured batch size.
            concurrency_limit: Override for the configured concurrency.
            on_batch_complete: Awaited with ``(completed, total)`` item counts
                after each batch finishes.
            cancel_event: When set, outstanding batches are abandoned.

        Returns:
            One vector per input text, in input order.

        Raises:
            EmbeddingValidationError: If any input is invalid.
            EmbeddingError: If any batch fails.
            PipelineCancelledError: If ``cancel_event`` is set mid-flight.
        """
        batch_size = batch_size or self.batch_size
        concurrency_limit = concurrency_limit or self.concurrency_limit
        if batch_size <= 0 or concurrency_limit <= 0:
            raise ValueError("batch_size and concurrency_limit must be positive")

        self.validate(texts)
        if not texts:
            return []

        total = len(texts)
        results: List[Optional[List[float]]] = [None] * total
        semaphore = asyncio.Semaphore(concurrency_limit)

        async def run_batch(number: int, offset: int, batch: List[str]):
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    raise PipelineCancelledError("Embedding cancelled")
                vectors = await self._call_provider(number, batch)
                return offset, vectors

        tasks = [
            asyncio.ensure_future(
                run_batch(number, offset, texts[offset:offset + batch_size]))
            for number, offset in enumerate(range(0, total, batch_size), start=1)
        ]
        logger.info(
            f"Embedding {total} texts in {len(tasks)} batches "
            f"(batch_size={batch_size}, concurrency={concurrency_limit})"
        )

        cancel_waiter = (
            asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        )
        pending = set(tasks)
        completed = 0
        try:
            while pending:
                waiting = (
                    pending | {cancel_waiter} if cancel_waiter is not None else pending
                )
                done, _ = await asyncio.wait(
                    waiting, return_when=asyncio.FIRST_COMPLETED)
                if cancel_event is not None and cancel_event.is_set():
                    raise PipelineCancelledError("Embedding cancelled")

                for task in done:
                    pending.discard(task)
                    offset, vectors = task.result()
                    results[offset:offset + len(vectors)] = vectors
                    completed += len(vectors)
                    if on_batch_complete is not None:
                        await on_batch_complete(completed, total)
        finally:
            for task in pending:
                task.cancel()
            leftovers = list(tasks)
            if cancel_waiter is not None:
                cancel_waiter.cancel()
                leftovers.append(cancel_waiter)
            await asyncio.gather(*leftovers, return_exceptions=True)

        return results

    async def _call_provider(self, number: int, batch: List[str]) -> List[List[float]]:
        """Call the provider for one batch and check the response shape."""
        embedding_batches_total.inc()
        start_time = time.time()
        try:
            vectors = await asyncio.wait_for(
                self.provider.generate_embeddings(batch), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            embedding_batch_errors_total.inc()
            raise EmbeddingError(
                f"Embedding batch {number} timed out after {self.timeout:.1f}s") from e
        except EmbeddingError:
            embedding_batch_errors_total.inc()
            raise
        except Exception as e:
            embedding_batch_errors_total.inc()
            raise EmbeddingError(
                f"Embedding batch {number} failed: {str(e)}") from e
        finally:
            embedding_batch_duration.observe(time.time() - start_time)

        self._check_vectors(number, batch, vectors)
        logger.debug(f"Embedding batch {number} returned {len(vectors)} vectors")
        return vectors

    def _check_vectors(
        self, number: int, batch: List[str], vectors: List[List[float]]
    ) -> None:
        if not isinstance(vectors, list) or len(vectors) != len(batch):
            count = len(vectors) if isinstance(vectors, list) else type(vectors).__name__
            raise EmbeddingError(
                f"Embedding batch {number} returned {count} vectors "
                f"for {len(batch)} inputs"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"Vector dimension mismatch in batch {number}: "
                    f"expected {self.dimensions}, got {len(vector)}"
                )
            if not any(vector):
                raise EmbeddingError(
                    f"Embedding batch {number} returned an all-zero vector")
