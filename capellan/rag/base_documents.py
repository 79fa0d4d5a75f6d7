"""
Base documents loader.

Seeds operator-maintained knowledge from markdown files laid out as
`<BASE_DOCUMENTS_PATH>/<collection>/<name>.md`. A collection that already
holds base documents is skipped, so loading on every start is cheap.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    wait_none,
    retry_if_exception_type,
    before_sleep_log,
)

from capellan import config
from capellan.models.document import TextMetadata
from capellan.rag.errors import EmbeddingFailure
from capellan.rag.rag_system import RAGSystem

logger = logging.getLogger(__name__)

BASE_COLLECTIONS = ["heresy-analysis", "sermons", "general-lore"]

# Retry configuration for embedding failures while seeding
EMBEDDING_MAX_RETRIES = 3
EMBEDDING_MIN_WAIT = 2  # seconds
EMBEDDING_MAX_WAIT = 10  # seconds


class BaseDocumentsLoader:
    """Loads base documents into their collections through a RAGSystem."""

    def __init__(self, rag_system: RAGSystem, base_path: Optional[str] = None, retry_wait: bool = True):
        self.rag_system = rag_system
        self.base_path = Path(base_path or config.BASE_DOCUMENTS_PATH)
        self._retry_wait = retry_wait

    async def initialize_base_documents(self) -> Dict[str, int]:
        """Load every base collection that has no base documents yet.

        Returns:
            Number of documents loaded per collection (0 when skipped).
        """
        logger.info("[BASE_DOCS] Initializing base documents...")

        if not self.base_path.is_dir():
            logger.warning(f"[BASE_DOCS] Base documents directory not found: {self.base_path}")
            return {}

        loaded = {}
        for collection in BASE_COLLECTIONS:
            loaded[collection] = await self.load_collection_documents(collection)

        logger.info(f"[BASE_DOCS] Base documents initialization completed: {loaded}")
        return loaded

    async def _add_with_retry(self, content: str, metadata: TextMetadata, collection: str) -> int:
        wait = (
            wait_exponential(multiplier=1, min=EMBEDDING_MIN_WAIT, max=EMBEDDING_MAX_WAIT)
            if self._retry_wait else wait_none()
        )

        @retry(
            stop=stop_after_attempt(EMBEDDING_MAX_RETRIES),
            wait=wait,
            retry=retry_if_exception_type(EmbeddingFailure),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _add():
            return await self.rag_system.add_document(content, metadata, collection, is_base_document=True)

        return await _add()

    async def load_collection_documents(self, collection: str) -> int:
        """Load the .md files of one collection.

        Returns:
            Number of files loaded; 0 if the directory is missing or the
            collection is already seeded.

        Raises:
            EmbeddingFailure: When a file still fails after the retries.
            StoreFailure: When chunks of a file could not be stored.
        """
        collection_path = self.base_path / collection
        if not collection_path.is_dir():
            logger.warning(f"[BASE_DOCS] Collection directory not found: {collection}")
            return 0

        if self.rag_system.has_base_documents(collection):
            stats = self.rag_system.get_collection_stats(collection)
            logger.info(
                f"[BASE_DOCS] Base documents already exist for collection {collection} "
                f"({stats.document_count} chunks, {len(stats.sources)} sources), skipping"
            )
            return 0

        logger.info(f"[BASE_DOCS] Loading base documents for collection: {collection}")
        loaded_count = 0

        for file_path in sorted(collection_path.glob("*.md")):
            content = file_path.read_text(encoding="utf-8")
            if not content.strip():
                logger.warning(f"[BASE_DOCS] Skipping empty base document: {file_path.name}")
                continue

            metadata = TextMetadata(
                source=f"base-{collection}-{file_path.stem}",
                added_by="system",
                file_path=str(file_path),
            )
            await self._add_with_retry(content, metadata, collection)
            loaded_count += 1
            logger.debug(f"[BASE_DOCS] Loaded base document {file_path.name} into {collection}")

        logger.info(f"[BASE_DOCS] Loaded {loaded_count} base documents for collection: {collection}")
        return loaded_count

    def check_status(self) -> Dict[str, dict]:
        """Chunk counts per base collection."""
        status = {}
        for collection in BASE_COLLECTIONS:
            stats = self.rag_system.get_collection_stats(collection)
            status[collection] = {
                "has_documents": stats.document_count > 0,
                "count": stats.document_count,
            }
        return status

    async def reload_base_documents(self, collection: Optional[str] = None) -> Dict[str, int]:
        """Clear and reload one base collection, or all of them."""
        collections = [collection] if collection else BASE_COLLECTIONS
        logger.info(f"[BASE_DOCS] Reloading base documents for: {', '.join(collections)}")

        loaded = {}
        for name in collections:
            self.rag_system.clear_collection(name)
            loaded[name] = await self.load_collection_documents(name)
        return loaded

    def list_available(self) -> Dict[str, List[str]]:
        """Names of the .md files available per base collection."""
        available = {}
        for collection in BASE_COLLECTIONS:
            collection_path = self.base_path / collection
            if collection_path.is_dir():
                available[collection] = sorted(
                    os.path.splitext(name)[0]
                    for name in os.listdir(collection_path)
                    if name.endswith(".md")
                )
            else:
                available[collection] = []
        return available
