"""Shared pytest configuration and fixtures."""

import asyncio
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
import pytest

from docingest.core.config import Settings
from docingest.core.dependencies import ServiceContainer
from docingest.core.exceptions import VectorDBError
from docingest.models.record import VectorMatch, VectorRecord
from docingest.services.source import SourceFetcher
from docingest.services.vector_db import VectorStore

SOURCE_URL = "https://files.example.com/handbook.txt"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


def make_text(sentences: int = 25) -> str:
    """Return plain prose of roughly 70 characters per sentence."""
    return " ".join(
        f"Sentence number {i} describes how the ingestion pipeline handles documents."
        for i in range(sentences)
    )


class InMemoryVectorStore(VectorStore):
    """Dictionary-backed vector store with equality filtering."""

    def __init__(self) -> None:
        self.records: Dict[str, VectorRecord] = {}
        self.fail_chunk_upserts = 0
        self.upsert_calls = 0

    async def upsert(self, records: List[VectorRecord]) -> int:
        self.upsert_calls += 1
        if self.fail_chunk_upserts and any(r.record_type == "chunk" for r in records):
            self.fail_chunk_upserts -= 1
            raise VectorDBError("upsert rejected")
        for record in records:
            self.records[record.id] = record.model_copy(deep=True)
        return len(records)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        include_metadata: bool = True,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        matches = []
        for record in self.records.values():
            payload = record.to_payload()
            if filter and any(
                payload.get(key) != (value.value if isinstance(value, Enum) else value)
                for key, value in filter.items()
            ):
                continue
            matches.append(
                VectorMatch(
                    id=record.id,
                    score=1.0,
                    metadata=record.metadata if include_metadata else None,
                )
            )
            if len(matches) >= top_k:
                break
        return matches

    async def fetch(self, ids: List[str]) -> List[VectorRecord]:
        return [self.records[record_id] for record_id in ids if record_id in self.records]

    async def delete(self, ids: List[str]) -> None:
        for record_id in ids:
            self.records.pop(record_id, None)

    def chunk_ids(self, document_id: str) -> List[str]:
        return sorted(
            record.id
            for record in self.records.values()
            if record.record_type == "chunk" and record.metadata.document_id == document_id
        )


class ScriptedProvider:
    """Embedding provider whose per-call delay and failure are scripted.

    Calls are numbered from 1 in the order they reach the provider.
    """

    def __init__(
        self,
        dimensions: int = 8,
        delays: Optional[Dict[int, float]] = None,
        fail_on_calls: Iterable[int] = (),
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.dimensions = dimensions
        self.delays = delays or {}
        self.fail_on_calls = set(fail_on_calls)
        self.error = error or RuntimeError("provider unavailable")
        self.gate = gate
        self.calls: List[List[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def vector_for(self, text: str) -> List[float]:
        seed = sum(ord(c) for c in text) % 97 + 1
        return [float(seed)] + [0.5] * (self.dimensions - 1)

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        number = len(self.calls)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delays.get(number, 0))
            if number in self.fail_on_calls:
                raise self.error
            return [self.vector_for(text) for text in texts]
        finally:
            self.in_flight -= 1


class FakeSource:
    """Serves document bodies through an httpx mock transport."""

    def __init__(self) -> None:
        self.routes: Dict[str, Tuple[int, str]] = {}
        self.requests: List[str] = []

    def serve(self, url: str, body: str, status_code: int = 200) -> None:
        self.routes[url] = (status_code, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        status_code, body = self.routes.get(url, (404, ""))
        return httpx.Response(status_code, text=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


async def wait_for_calls(provider: ScriptedProvider, count: int = 1) -> None:
    """Yield to the loop until the provider has received ``count`` calls."""
    while len(provider.calls) < count:
        await asyncio.sleep(0.001)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="",
        embedding_dimensions=8,
        embedding_batch_size=2,
        embedding_concurrency=2,
        chunk_size=200,
        chunk_overlap=20,
        upsert_batch_size=3,
        delete_batch_size=2,
        delete_query_limit=5,
        max_retries=2,
        retry_delay_seconds=0.0,
        fetch_timeout_seconds=5.0,
        embedding_timeout_seconds=5.0,
        vector_store_timeout_seconds=5.0,
        blob_api_url="",
    )


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider(dimensions=8)


@pytest.fixture
def source() -> FakeSource:
    fake = FakeSource()
    fake.serve(SOURCE_URL, make_text())
    return fake


@pytest.fixture
def make_container(test_settings, store, provider, source):
    """Factory for containers wired to the in-memory doubles."""

    def _make(
        provider_override: Optional[ScriptedProvider] = None,
        store_override: Optional[VectorStore] = None,
        **overrides,
    ) -> ServiceContainer:
        config = test_settings.model_copy(update=overrides) if overrides else test_settings
        return ServiceContainer(
            config,
            vector_store=store_override or store,
            embedding_service=provider_override or provider,
            source_fetcher=SourceFetcher(config, client=source.client()),
        )

    return _make
