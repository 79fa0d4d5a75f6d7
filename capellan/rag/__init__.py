"""
RAG (Retrieval Augmented Generation) module for the Capellán bot.

This package stores lore, sermons and user-contributed documents as embedded
chunks in a local SQLite file and answers questions in character using the
chunks most similar to the query.

Components:
    - chunker: Splits document text into bounded, overlapping passages
    - embedder: Generates embeddings via OpenAI text-embedding-3-small
    - generator: Chat completions with a hard timeout
    - vector_store: SQLite chunk store with cosine similarity search
    - prompts: Persona prompts and static fallback answers per command
    - rag_system: Collection routing, context assembly, answers and ingestion
    - base_documents: Seeds operator knowledge from markdown files
    - document_processor: Ingests text, PDF files and allowed web pages
"""
