"""Health check utilities."""

import time
from typing import Any, Dict

from docingest.core.config import Settings
from docingest.services.vector_db import VectorStore


async def check_qdrant(vector_store: VectorStore) -> Dict[str, Any]:
    """
    Check Qdrant connectivity and health.

    Args:
        vector_store: Vector store whose client is probed.

    Returns:
        Health status dictionary.
    """
    client = getattr(vector_store, "client", None)
    if client is None:
        return {"status": "unhealthy", "error": "Not connected", "latency_ms": 0}

    try:
        start_time = time.time()
        collections = await client.get_collections()
        latency_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
            "collections": len(collections.collections),
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e), "latency_ms": 0}


async def check_openai(embedding_service: Any, config: Settings) -> Dict[str, Any]:
    """
    Check OpenAI API connectivity.

    Args:
        embedding_service: Embedding provider; probed only if it wraps an
            OpenAI client.
        config: Settings holding the API key.

    Returns:
        Health status dictionary.
    """
    if not config.openai_api_key:
        return {"status": "not_configured", "error": "API key not set"}

    client = getattr(embedding_service, "client", None)
    if client is None:
        return {"status": "not_configured", "error": "No OpenAI client"}

    try:
        start_time = time.time()
        await client.models.list()
        latency_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(latency_ms, 2)}
    except Exception as e:
        error_msg = str(e).lower()
        if "api key" in error_msg or "authentication" in error_msg:
            return {"status": "unhealthy", "error": "Invalid API key"}
        return {"status": "unhealthy", "error": str(e), "latency_ms": 0}


async def check_all_dependencies(
    vector_store: VectorStore, embedding_service: Any, config: Settings
) -> Dict[str, Any]:
    """
    Check all service dependencies.

    Returns:
        Dictionary with overall status and individual service statuses.
    """
    services = {
        "qdrant": await check_qdrant(vector_store),
        "openai": await check_openai(embedding_service, config),
    }
    overall_status = "healthy"
    if services["qdrant"].get("status") != "healthy":
        overall_status = "unhealthy"
    if services["openai"].get("status") == "unhealthy":
        overall_status = "unhealthy"
    return {"status": overall_status, "services": services}
