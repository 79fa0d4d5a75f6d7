#!/usr/bin/env python3
"""
Purge the knowledge index: deletes every chunk and embedding.
IRREVERSIBLE. Base documents are reloaded on the next service start;
user documents must be ingested again.
"""

import logging
import os
import sys
import time

from capellan import config
from capellan.rag.rag_system import RAGSystem
from capellan.rag.vector_store import VectorStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONFIRMATION_WORD = "PURGAR"


def purge_index(db_path: str = None, confirmation: str = None) -> bool:
    """
    Clear the vector store after an explicit confirmation.

    Args:
        db_path: Vector store file, defaults to config.SQLITE_PATH.
        confirmation: Must equal CONFIRMATION_WORD; asked on stdin when None.

    Returns:
        True if the index was purged.
    """
    db_path = db_path or config.SQLITE_PATH
    if not os.path.exists(db_path):
        logger.error(f"Vector database not found: {db_path}")
        return False

    logger.warning("⚠️  This operation is IRREVERSIBLE: every embedding will be deleted")
    if confirmation is None:
        confirmation = input(f'Type "{CONFIRMATION_WORD}" to confirm: ')
    if confirmation.strip() != CONFIRMATION_WORD:
        logger.info("❌ Purge cancelled")
        return False

    start = time.time()
    try:
        # Only the store is touched, no provider client is needed
        rag_system = RAGSystem(vector_store=VectorStore(db_path))
        deleted = rag_system.rebuild_index()
    except Exception as e:
        logger.exception(f"❌ Purge failed: {e}")
        return False

    logger.info(f"✅ Purge completed: {deleted} chunks deleted in {time.time() - start:.1f}s")
    return True


if __name__ == "__main__":
    success = purge_index(sys.argv[1] if len(sys.argv) > 1 else None)
    exit(0 if success else 1)
