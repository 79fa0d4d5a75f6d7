#!/usr/bin/env python3
"""
Tests for seeding base documents from markdown files
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from capellan.rag.base_documents import EMBEDDING_MAX_RETRIES, BaseDocumentsLoader
from capellan.rag.errors import EmbeddingFailure
from test_rag_system import SERMON_TEXT, XENOS_TEXT, make_client, make_rag


@pytest.fixture
def base_dir(tmp_path):
    base = tmp_path / "base-documents"
    (base / "heresy-analysis").mkdir(parents=True)
    (base / "sermons").mkdir()
    (base / "heresy-analysis" / "xenos.md").write_text(XENOS_TEXT, encoding="utf-8")
    (base / "sermons" / "batalla.md").write_text(SERMON_TEXT, encoding="utf-8")
    (base / "sermons" / "vacio.md").write_text("   \n", encoding="utf-8")
    (base / "sermons" / "notas.txt").write_text(SERMON_TEXT, encoding="utf-8")
    return base


def test_initialize_loads_markdown_per_collection(tmp_path, base_dir):
    rag = make_rag(tmp_path)
    loader = BaseDocumentsLoader(rag, str(base_dir), retry_wait=False)

    loaded = asyncio.run(loader.initialize_base_documents())

    assert loaded == {"heresy-analysis": 1, "sermons": 1, "general-lore": 0}
    assert rag.get_collection_stats("heresy-analysis").sources == ["base-heresy-analysis-xenos"]
    assert rag.get_collection_stats("sermons").sources == ["base-sermons-batalla"]
    assert rag.has_base_documents("sermons")

    result = rag.vector_store.search([0.0, 1.0, 1.0, 0.1], 5, 0.5, collections=["sermons"])[0]
    assert result.chunk.is_base_document
    assert result.chunk.metadata.added_by == "system"
    assert result.chunk.metadata.file_path.endswith("batalla.md")


def test_initialize_skips_seeded_collections(tmp_path, base_dir):
    client = make_client()
    rag = make_rag(tmp_path, client)
    loader = BaseDocumentsLoader(rag, str(base_dir), retry_wait=False)

    asyncio.run(loader.initialize_base_documents())
    calls = client.embeddings.create.call_count

    loaded = asyncio.run(loader.initialize_base_documents())
    assert loaded == {"heresy-analysis": 0, "sermons": 0, "general-lore": 0}
    assert client.embeddings.create.call_count == calls


def test_missing_base_directory(tmp_path):
    loader = BaseDocumentsLoader(make_rag(tmp_path), str(tmp_path / "nowhere"))
    assert asyncio.run(loader.initialize_base_documents()) == {}


def test_embedding_failures_are_retried(tmp_path, base_dir):
    client = make_client()
    working = client.embeddings.create.side_effect
    attempts = {"count": 0}

    async def flaky(model, input):
        attempts["count"] += 1
        if attempts["count"] < EMBEDDING_MAX_RETRIES:
            raise RuntimeError("temporarily unavailable")
        return await working(model=model, input=input)

    client.embeddings.create = AsyncMock(side_effect=flaky)
    rag = make_rag(tmp_path, client)
    loader = BaseDocumentsLoader(rag, str(base_dir), retry_wait=False)

    assert asyncio.run(loader.load_collection_documents("heresy-analysis")) == 1
    assert attempts["count"] == EMBEDDING_MAX_RETRIES


def test_persistent_embedding_failure_propagates(tmp_path, base_dir):
    client = make_client()
    client.embeddings.create = AsyncMock(side_effect=RuntimeError("provider down"))
    rag = make_rag(tmp_path, client)
    loader = BaseDocumentsLoader(rag, str(base_dir), retry_wait=False)

    with pytest.raises(EmbeddingFailure):
        asyncio.run(loader.load_collection_documents("heresy-analysis"))
    assert client.embeddings.create.call_count == EMBEDDING_MAX_RETRIES
    assert not rag.has_base_documents("heresy-analysis")


def test_reload_status_and_listing(tmp_path, base_dir):
    rag = make_rag(tmp_path)
    loader = BaseDocumentsLoader(rag, str(base_dir), retry_wait=False)
    asyncio.run(loader.initialize_base_documents())

    (base_dir / "sermons" / "fe.md").write_text(SERMON_TEXT, encoding="utf-8")
    loaded = asyncio.run(loader.reload_base_documents("sermons"))
    assert loaded == {"sermons": 2}
    assert sorted(rag.get_collection_stats("sermons").sources) == ["base-sermons-batalla", "base-sermons-fe"]

    status = loader.check_status()
    assert status["sermons"]["has_documents"] is True
    assert status["general-lore"] == {"has_documents": False, "count": 0}

    assert loader.list_available() == {
        "heresy-analysis": ["xenos"],
        "sermons": ["batalla", "fe", "vacio"],
        "general-lore": [],
    }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
