#!/usr/bin/env python3
"""
Tests for the SQLite vector store: search, collections, deletes and schema migration
"""
import json
import sqlite3
import threading

import pytest

from capellan.models.document import Chunk, PdfMetadata, TextMetadata, chunk_id, metadata_from_dict
from capellan.rag.errors import StoreFailure
from capellan.rag.vector_store import VectorStore, cosine_similarity


def make_chunk(source, index, embedding, collection="user", content=None, is_base=False):
    return Chunk(
        id=chunk_id(source, index),
        content=content or f"Contenido {index} de {source}",
        embedding=embedding,
        metadata=TextMetadata(source=source, added_by="tester"),
        chunk_index=index,
        collection=collection,
        is_base_document=is_base,
    )


@pytest.fixture
def store(tmp_path):
    return VectorStore(str(tmp_path / "vectors.sqlite"))


# --- cosine similarity ---

def test_cosine_similarity_properties():
    a = [0.3, -1.2, 4.0]
    b = [2.0, 0.5, -0.7]
    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)


def test_cosine_similarity_degenerate_inputs():
    assert cosine_similarity([1, 0, 0], [1, 0]) == 0.0
    assert cosine_similarity([0, 0, 0], [1, 0, 0]) == 0.0
    assert cosine_similarity([], []) == 0.0


# --- search ---

def test_single_chunk_exact_match(store):
    store.add(make_chunk("X", 0, [1.0, 0.0, 0.0]))
    results = store.search([1.0, 0.0, 0.0], 5, 0.5)
    assert len(results) == 1
    assert results[0].similarity == pytest.approx(1.0)
    assert results[0].source == "X"


def test_search_threshold_order_and_limit(store):
    store.add_batch([
        make_chunk("a", 0, [1.0, 0.0]),
        make_chunk("b", 0, [0.8, 0.6]),
        make_chunk("c", 0, [0.6, 0.8]),
        make_chunk("d", 0, [0.0, 1.0]),
    ])
    results = store.search([1.0, 0.0], limit=2, threshold=0.5)
    assert [r.source for r in results] == ["a", "b"]

    results = store.search([1.0, 0.0], limit=10, threshold=0.5)
    assert [r.source for r in results] == ["a", "b", "c"]
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)
    assert all(s >= 0.5 for s in similarities)

    assert store.search([1.0, 0.0], limit=0, threshold=0.0) == []


def test_search_ties_keep_insertion_order(store):
    store.add(make_chunk("first", 0, [0.0, 1.0]))
    store.add(make_chunk("second", 0, [0.0, 2.0]))
    results = store.search([0.0, 1.0], 5, 0.9)
    assert [r.source for r in results] == ["first", "second"]


def test_search_restricted_to_collections(store):
    store.add(make_chunk("lore", 0, [1.0, 0.0], collection="general-lore"))
    store.add(make_chunk("sermon", 0, [1.0, 0.0], collection="sermons"))

    results = store.search([1.0, 0.0], 5, 0.5, collections=["sermons"])
    assert [r.source for r in results] == ["sermon"]
    assert results[0].chunk.collection == "sermons"

    assert len(store.search([1.0, 0.0], 5, 0.5)) == 2
    assert store.search([1.0, 0.0], 5, 0.5, collections=[]) == []


def test_search_ignores_mismatched_dimensions(store):
    store.add(make_chunk("small", 0, [1.0, 0.0]))
    assert store.search([1.0, 0.0, 0.0], 5, 0.1) == []


def test_search_skips_undecodable_embeddings(store):
    store.add(make_chunk("good", 0, [1.0, 0.0]))
    store.add(make_chunk("broken", 0, [1.0, 0.0]))
    with store.get_conn() as conn:
        conn.execute("UPDATE vectors SET embedding = 'not json' WHERE document_id = ?", (chunk_id("broken", 0),))
        conn.commit()

    results = store.search([1.0, 0.0], 5, 0.5)
    assert [r.source for r in results] == ["good"]


def test_metadata_variant_survives_storage(store):
    chunk = Chunk(
        id=chunk_id("codex.pdf", 0),
        content="Codex Astartes",
        embedding=[1.0, 0.0],
        metadata=PdfMetadata(source="codex.pdf", added_by="tester", file_path="/tmp/codex.pdf", page_count=12),
        chunk_index=0,
    )
    store.add(chunk)
    result = store.search([1.0, 0.0], 1, 0.5)[0]
    assert isinstance(result.chunk.metadata, PdfMetadata)
    assert result.chunk.metadata.page_count == 12


# --- writes and deletes ---

def test_add_is_an_idempotent_upsert(store):
    store.add(make_chunk("X", 0, [1.0, 0.0], content="primera versión"))
    store.add(make_chunk("X", 0, [0.0, 1.0], content="segunda versión"))
    assert store.count() == 1

    results = store.search([0.0, 1.0], 5, 0.9)
    assert results[0].chunk.content == "segunda versión"
    assert store.integrity_report()["orphaned_vectors"] == 0


def test_collection_stats_counts_chunks_and_sources(store):
    store.add_batch([
        make_chunk("X", 0, [1.0, 0.0]),
        make_chunk("X", 1, [0.0, 1.0]),
        make_chunk("Y", 0, [1.0, 1.0]),
    ], collection="lore")

    stats = store.collection_stats("lore")
    assert stats.document_count == 3
    assert set(stats.sources) == {"X", "Y"}
    assert store.get_collections() == ["lore"]

    overall = store.stats()
    assert overall.document_count == 3
    assert overall.sources == ["X", "Y"]
    assert overall.types == {"text": 3}


def test_add_batch_continues_past_bad_chunks(store):
    bad = make_chunk("bad", 0, [object()])
    result = store.add_batch([
        make_chunk("ok", 0, [1.0, 0.0]),
        bad,
        make_chunk("ok", 1, [0.0, 1.0]),
    ])
    assert result.inserted == 2
    assert [failed_id for failed_id, _ in result.failed] == [bad.id]
    assert not result.ok
    assert store.count() == 2
    assert store.integrity_report()["documents_without_vectors"] == 0


def test_delete_by_source_removes_embeddings(store):
    store.add_batch([
        make_chunk("X", 0, [1.0, 0.0]),
        make_chunk("X", 1, [1.0, 0.1]),
        make_chunk("Y", 0, [1.0, 0.2]),
    ])
    assert store.delete_by_source("X") == 2
    assert store.count() == 1
    assert [r.source for r in store.search([1.0, 0.0], 5, 0.5)] == ["Y"]

    report = store.integrity_report()
    assert report["orphaned_vectors"] == 0
    assert report["integrity_check"] == "ok"


def test_clear_collection_and_clear_all(store):
    store.add(make_chunk("a", 0, [1.0], collection="sermons"))
    store.add(make_chunk("b", 0, [1.0], collection="general-lore"))
    store.add(make_chunk("c", 0, [1.0], collection="general-lore"))

    assert store.clear_collection("general-lore") == 2
    assert store.get_collections() == ["sermons"]
    assert store.clear_all() == 1
    assert store.count() == 0


def test_has_base_documents(store):
    assert not store.has_base_documents()
    store.add(make_chunk("base", 0, [1.0], collection="sermons", is_base=True))
    store.add(make_chunk("user", 0, [1.0], collection="user"))

    assert store.has_base_documents()
    assert store.has_base_documents("sermons")
    assert not store.has_base_documents("user")


def test_add_overrides_collection_and_base_flag(store):
    chunk = make_chunk("X", 0, [1.0])
    store.add(chunk, collection="heresy-analysis", is_base_document=True)
    assert chunk.collection == "heresy-analysis"
    assert store.has_base_documents("heresy-analysis")


# --- schema and maintenance ---

def test_migrates_old_schema_without_data_loss(tmp_path):
    db_path = tmp_path / "old.sqlite"
    conn = sqlite3.connect(str(db_path))
    conn.execute("""
        CREATE TABLE documents (
            id TEXT PRIMARY KEY,
            content TEXT NOT NULL,
            metadata TEXT NOT NULL,
            chunk_index INTEGER NOT NULL,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
    """)
    conn.execute("""
        CREATE TABLE vectors (
            document_id TEXT PRIMARY KEY,
            embedding TEXT NOT NULL,
            FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE
        )
    """)
    # Metadata as the first version of the bot wrote it
    legacy_rows = [
        ("legacy_chunk_0", [1.0, 0.0], {
            "source": "legacy", "addedBy": "tester", "addedAt": "2024-01-01T00:00:00",
            "filePath": "", "type": "text", "processed": True,
        }),
        ("codex.pdf_chunk_0", [0.9, 0.1], {
            "source": "codex.pdf", "addedBy": "u1", "addedAt": "2024-01-02T00:00:00",
            "filePath": "/docs/codex.pdf", "title": "Codex", "type": "pdf", "processed": True,
        }),
        ("https://wh40k.lexicanum.com/wiki/Horus_chunk_0", [0.8, 0.2], {
            "source": "https://wh40k.lexicanum.com/wiki/Horus", "addedBy": "u2",
            "addedAt": "2024-01-03T00:00:00", "type": "web", "processed": True,
        }),
    ]
    for doc_id, embedding, metadata in legacy_rows:
        conn.execute(
            "INSERT INTO documents (id, content, metadata, chunk_index) VALUES (?, ?, ?, ?)",
            (doc_id, "Texto antiguo", json.dumps(metadata), 0),
        )
        conn.execute("INSERT INTO vectors (document_id, embedding) VALUES (?, ?)", (doc_id, json.dumps(embedding)))
    conn.commit()
    conn.close()

    store = VectorStore(str(db_path))
    # A second open must be a no-op
    store = VectorStore(str(db_path))

    results = store.search([1.0, 0.0], 5, 0.5)
    assert [r.source for r in results] == ["legacy", "codex.pdf", "https://wh40k.lexicanum.com/wiki/Horus"]
    assert all(r.chunk.collection == "user" for r in results)
    assert all(r.chunk.is_base_document is False for r in results)

    text, pdf, web = (r.chunk.metadata for r in results)
    assert text.added_by == "tester"
    assert text.added_at == "2024-01-01T00:00:00"
    assert isinstance(pdf, PdfMetadata)
    assert pdf.file_path == "/docs/codex.pdf"
    assert pdf.added_by == "u1"
    assert web.url == "https://wh40k.lexicanum.com/wiki/Horus"
    assert store.collection_stats("user").document_count == 3


def test_legacy_pdf_metadata_without_path_falls_back_to_source():
    metadata = metadata_from_dict({"source": "viejo.pdf", "addedBy": "u1", "type": "pdf"})
    assert metadata.file_path == "viejo.pdf"
    assert metadata.added_by == "u1"


def test_unopenable_path_raises_store_failure(tmp_path):
    with pytest.raises(StoreFailure):
        VectorStore(str(tmp_path))


def test_vacuum_and_optimize_keep_data(store):
    store.add(make_chunk("X", 0, [1.0, 0.0]))
    store.vacuum()
    store.optimize()
    assert store.count() == 1
    assert store.integrity_report() == {
        "orphaned_vectors": 0,
        "documents_without_vectors": 0,
        "integrity_check": "ok",
    }


def test_concurrent_writers_and_readers_keep_store_consistent(store):
    errors = []
    failed = []
    start = threading.Barrier(8)

    def writer(n):
        try:
            start.wait()
            chunks = [make_chunk(f"writer-{n}", i, [1.0, float(i)]) for i in range(10)]
            failed.extend(store.add_batch(chunks).failed)
        except Exception as e:
            errors.append(e)

    def reader():
        try:
            start.wait()
            for _ in range(20):
                results = store.search([1.0, 0.0], 5, 0.0)
                assert len(results) <= 5
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    assert failed == []
    assert store.count() == 40
    report = store.integrity_report()
    assert report["orphaned_vectors"] == 0
    assert report["documents_without_vectors"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
