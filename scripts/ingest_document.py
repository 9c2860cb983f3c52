"""Script to ingest a single document from a URL."""

import argparse
import asyncio
import sys
from pathlib import Path
from uuid import uuid4

sys.path.insert(0, str(Path(__file__).parent.parent))

from docingest.core.dependencies import ServiceContainer
from docingest.models.document import ProcessDocumentRequest


async def ingest_document(url: str, user_id: str, document_id: str, name: str) -> bool:
    """Run the ingestion pipeline once and report the outcome."""
    container = ServiceContainer()
    await container.initialize()
    try:
        result = await container.documents.process_document(
            ProcessDocumentRequest(
                document_id=document_id,
                user_id=user_id,
                file_name=name,
                file_type=Path(name).suffix.lstrip(".") or "txt",
                file_url=url,
            )
        )
        if result.success:
            print(f"Indexed document {document_id}: {result.chunks_processed} chunks")
        else:
            print(f"Failed to index document {document_id}: {result.error}")

        status = await container.documents.get_status(document_id)
        print(f"Status: {status.status.value} ({status.progress}%)")
        return result.success
    finally:
        await container.shutdown()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ingest one document by URL")
    parser.add_argument("url", help="HTTP(S) URL of the document text")
    parser.add_argument("--user-id", default="cli")
    parser.add_argument("--document-id", default=None)
    parser.add_argument("--name", default=None)
    args = parser.parse_args()

    document_id = args.document_id or str(uuid4())
    name = args.name or args.url.rstrip("/").rsplit("/", 1)[-1]
    ok = asyncio.run(ingest_document(args.url, args.user_id, document_id, name))
    sys.exit(0 if ok else 1)
