"""
Error types for the RAG core.

ProviderFailure and its subclasses are recovered inside the orchestrator
(fallback answers). StoreFailure always reaches the ingestion caller.
"""


class ProviderFailure(Exception):
    """An external AI provider call failed, timed out or returned malformed output."""
    pass


class EmbeddingFailure(ProviderFailure):
    """The embedding provider could not produce a vector."""
    pass


class GenerationFailure(ProviderFailure):
    """The generation provider could not produce an answer."""
    pass


class StoreFailure(Exception):
    """A read or write against the vector store file failed."""
    pass


class DocumentRejected(ValueError):
    """A document was refused before ingestion (bad domain, empty text, ...)."""
    pass
