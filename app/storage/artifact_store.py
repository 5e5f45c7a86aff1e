"""
Artifact store for bid documents and training exports.
Local filesystem; documents stored elsewhere are fetched over HTTP.
"""

from pathlib import Path
from typing import Optional

import httpx
import structlog

from app.config import settings
from app.errors import DocumentError
from app.storage.paths import ensure_parent_dirs, is_remote_uri

logger = structlog.get_logger(__name__)


class ArtifactStore:
    """
    Save and load artifacts. Relative paths resolve under ARTIFACT_ROOT;
    http(s) URIs are downloaded.
    """

    def __init__(self, root: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.root = Path(root or settings.ARTIFACT_ROOT)
        self.http_client = http_client

    def save_bytes(self, relative_path: str, data: bytes) -> str:
        """Save raw bytes. Returns the relative path."""
        full_path = ensure_parent_dirs(str(self.root), relative_path)
        full_path.write_bytes(data)
        logger.info("artifact_saved", path=relative_path, size_bytes=len(data))
        return relative_path

    def save_text(self, relative_path: str, text: str) -> str:
        full_path = ensure_parent_dirs(str(self.root), relative_path)
        full_path.write_text(text, encoding="utf-8")
        logger.info("artifact_saved_text", path=relative_path)
        return relative_path

    def exists(self, relative_path: str) -> bool:
        return (self.root / relative_path).exists()

    async def load_document(self, doc_id: str, uri: str) -> bytes:
        """Load a bid document's bytes, raising DocumentError on any failure."""
        if not uri:
            raise DocumentError(doc_id, "Document has no stored file", "ERR_FILE_MISSING")
        if is_remote_uri(uri):
            return await self._fetch(doc_id, uri)

        full_path = self.root / uri
        if not full_path.exists():
            raise DocumentError(doc_id, f"Artifact not found: {uri}", "ERR_FILE_MISSING")
        return full_path.read_bytes()

    async def _fetch(self, doc_id: str, url: str) -> bytes:
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url)
            else:
                async with httpx.AsyncClient(
                    timeout=settings.DOCUMENT_FETCH_TIMEOUT_SECONDS, follow_redirects=True,
                ) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("document_fetch_failed", doc_id=doc_id, error=str(e))
            raise DocumentError(doc_id, f"Failed to fetch document: {e}", "ERR_FETCH") from e

        return response.content
