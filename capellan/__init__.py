"""Capellán bot core: knowledge store, RAG answers and the AI concurrency gate."""

__version__ = "1.0.0"
