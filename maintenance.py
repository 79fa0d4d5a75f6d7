#!/usr/bin/env python3
"""
Vector store maintenance: VACUUM, ANALYZE/optimize and an integrity report.
Opening the store also applies any pending schema migration.
"""

import logging
import os
import sys

from capellan import config
from capellan.rag.vector_store import VectorStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_maintenance(db_path: str = None) -> bool:
    """
    Optimize the vector store and report integrity problems.

    Returns:
        True if the database is consistent after maintenance.
    """
    db_path = db_path or config.SQLITE_PATH

    if not os.path.exists(db_path):
        logger.error(f"Vector database not found: {db_path}")
        return False

    try:
        store = VectorStore(db_path)
        size_before = os.path.getsize(db_path)
        logger.info(f"Documents: {store.count()}")
        logger.info(f"Size before: {size_before / (1024 * 1024):.2f} MB")

        store.vacuum()
        store.optimize()

        size_after = os.path.getsize(db_path)
        logger.info(f"Size after: {size_after / (1024 * 1024):.2f} MB")
        if size_before > size_after:
            logger.info(f"Space freed: {(size_before - size_after) / (1024 * 1024):.2f} MB")

        report = store.integrity_report()
        logger.info(f"Integrity report: {report}")

        healthy = (
            report["integrity_check"] == "ok"
            and report["orphaned_vectors"] == 0
            and report["documents_without_vectors"] == 0
        )
        if healthy:
            logger.info("✅ Vector database optimized, no integrity problems detected")
        else:
            logger.warning("⚠️  Integrity problems detected, consider purging and re-ingesting")
        return healthy

    except Exception as e:
        logger.exception(f"❌ Maintenance failed: {e}")
        return False


if __name__ == "__main__":
    success = run_maintenance(sys.argv[1] if len(sys.argv) > 1 else None)
    exit(0 if success else 1)
