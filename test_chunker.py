#!/usr/bin/env python3
"""
Tests for sentence-aware chunking with word overlap
"""
import pytest

from capellan.rag.chunker import chunk_text, split_sentences

LORE = (
    "El Emperador protege a la humanidad desde el Trono Dorado. "
    "Los Adeptus Astartes son Sus ángeles de la muerte! "
    "Cada capítulo guarda sus propias tradiciones y reliquias. "
    "¿Quién osaría dudar de Su voluntad? "
    "Los xenos acechan en cada rincón de la galaxia. "
    "La herejía comienza con una pequeña duda y termina en condenación. "
    "Los capellanes mantienen la fe de sus hermanos en la batalla. "
    "El Adeptus Mechanicus custodia los espíritus de la máquina. "
)


def test_blank_input_gives_no_chunks():
    assert chunk_text("", 100, 20) == []
    assert chunk_text("   \n\t ", 100, 20) == []


def test_short_text_is_a_single_chunk():
    assert chunk_text("Hola mundo. Ave Imperator!", 100, 20) == ["Hola mundo. Ave Imperator."]


def test_sentence_terminators_collapse():
    assert split_sentences("Uno... Dos?! Tres") == ["Uno", " Dos", " Tres"]


def test_chunks_respect_size():
    """No chunk exceeds the configured size and nothing is empty"""
    chunks = chunk_text(LORE * 3, 120, 30)
    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.strip()
        assert len(chunk) <= 120


def test_oversized_sentence_is_truncated_to_size():
    chunks = chunk_text("A" * 50 + ".", 20, 5)
    assert chunks == ["A" * 20]


def test_new_chunk_is_seeded_with_trailing_words():
    text = "uno dos tres cuatro cinco. seis siete ocho nueve diez."
    chunks = chunk_text(text, 45, 10)
    assert chunks == [
        "uno dos tres cuatro cinco.",
        "cuatro cinco. seis siete ocho nueve diez.",
    ]


def test_overlap_dropped_when_it_would_overflow():
    text = "uno dos tres cuatro cinco. seis siete ocho nueve diez."
    chunks = chunk_text(text, 40, 10)
    assert chunks == ["uno dos tres cuatro cinco.", "seis siete ocho nueve diez."]


def test_zero_overlap():
    text = "uno dos tres cuatro cinco. seis siete ocho nueve diez."
    chunks = chunk_text(text, 30, 0)
    assert chunks == ["uno dos tres cuatro cinco.", "seis siete ocho nueve diez."]


def test_only_terminators_still_produces_a_chunk():
    assert chunk_text("...!!!", 2, 0) == [".."]


@pytest.mark.parametrize("size,overlap", [(0, 10), (-5, 10), (100, -1)])
def test_invalid_arguments(size, overlap):
    with pytest.raises(ValueError):
        chunk_text("Texto válido.", size, overlap)


if __name__ == "__main__":
    test_blank_input_gives_no_chunks()
    test_short_text_is_a_single_chunk()
    test_sentence_terminators_collapse()
    test_chunks_respect_size()
    test_oversized_sentence_is_truncated_to_size()
    test_new_chunk_is_seeded_with_trailing_words()
    test_overlap_dropped_when_it_would_overflow()
    test_zero_overlap()
    test_only_terminators_still_produces_a_chunk()
    print("✅ Chunker tests passed")
