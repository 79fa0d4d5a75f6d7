"""
RAG orchestrator for the Capellán.

Routes a command to its collections, retrieves the closest chunks, assembles
a bounded context and asks the chat model for an answer. Provider failures
never escape `answer`: the caller always gets a response, falling back to a
static in-character message.

Also owns document ingestion (chunk, embed, store) and forwards the
maintenance operations of the vector store.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Union

from openai import AsyncOpenAI

from capellan import config
from capellan.models.command import CommandType
from capellan.models.document import (
    DEFAULT_COLLECTION,
    Chunk,
    CollectionStats,
    DocumentMetadata,
    RAGResponse,
    SearchResult,
    StoreStats,
    chunk_id,
)
from capellan.rag import prompts
from capellan.rag.chunker import chunk_text
from capellan.rag.embedder import embed_query, embed_texts
from capellan.rag.errors import StoreFailure
from capellan.rag.generator import complete
from capellan.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)

RAG_COLLECTIONS: Dict[CommandType, List[str]] = {
    CommandType.HERESY_ANALYSIS: ["heresy-analysis"],
    CommandType.DAILY_SERMON: ["sermons"],
    CommandType.KNOWLEDGE_SEARCH: ["general-lore", "user"],
    CommandType.QUESTIONS: ["general-lore", "heresy-analysis", "sermons", "user"],
    CommandType.GENERAL: ["user"],
}

CONTEXT_SEPARATOR = "\n\n---\n\n"


def collections_for(command: Union[CommandType, str, None]) -> List[str]:
    """Collections searched for a command; unknown identifiers use `general`."""
    return list(RAG_COLLECTIONS[CommandType.parse(command)])


def format_result(result: SearchResult) -> str:
    return (
        f"Fuente: {result.source}\n"
        f"Contenido: {result.chunk.content}\n"
        f"Relevancia: {round(result.similarity * 100)}%"
    )


def build_context(results: Sequence[SearchResult], max_length: int) -> str:
    """Join formatted results and cut the text to max_length characters.

    Results arrive most relevant first, so truncation always drops the
    least relevant content.
    """
    if not results:
        return ""
    return CONTEXT_SEPARATOR.join(format_result(r) for r in results)[:max_length]


@dataclass
class RAGSettings:
    """Retrieval and generation knobs, snapshotted from capellan.config."""
    chunk_size: int = 1000
    chunk_overlap: int = 200
    max_context_length: int = 8000
    similarity_threshold: float = 0.7
    max_results: int = 5
    max_completion_tokens: int = 300
    temperature: float = 0.7
    generation_timeout_seconds: float = 60
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4o-mini"

    @classmethod
    def from_config(cls) -> "RAGSettings":
        return cls(
            chunk_size=config.CHUNK_SIZE,
            chunk_overlap=config.CHUNK_OVERLAP,
            max_context_length=config.MAX_CONTEXT_LENGTH,
            similarity_threshold=config.SIMILARITY_THRESHOLD,
            max_results=config.MAX_RESULTS,
            max_completion_tokens=config.MAX_COMPLETION_TOKENS,
            temperature=config.GENERATION_TEMPERATURE,
            generation_timeout_seconds=config.GENERATION_TIMEOUT_SECONDS,
            embedding_model=config.EMBEDDING_MODEL,
            chat_model=config.CHAT_MODEL,
        )


class RAGSystem:
    """Retrieval-augmented answers and knowledge ingestion over one VectorStore."""

    def __init__(
        self,
        vector_store: Optional[VectorStore] = None,
        openai_client: Optional[AsyncOpenAI] = None,
        settings: Optional[RAGSettings] = None,
    ):
        self.vector_store = vector_store or VectorStore(config.SQLITE_PATH)
        self.openai_client = openai_client
        self.settings = settings or RAGSettings.from_config()

    async def answer(self, query: str, command: Union[CommandType, str, None] = CommandType.GENERAL) -> RAGResponse:
        """Answer a query in character using knowledge from the command's collections.

        Args:
            query: The user's message or question.
            command: Command type (or its identifier) selecting collections and prompts.

        Returns:
            RAGResponse. On any failure the response is the command's static
            fallback with no sources and zero tokens; this method does not raise.
        """
        command = CommandType.parse(command)
        try:
            logger.debug(f"[RAG] Generating response for {command.value}: {query[:100]}")

            query_embedding = await embed_query(
                query, client=self.openai_client, model=self.settings.embedding_model
            )
            results = self.vector_store.search(
                query_embedding,
                limit=self.settings.max_results,
                threshold=self.settings.similarity_threshold,
                collections=collections_for(command),
            )

            context = build_context(results, self.settings.max_context_length)
            completion = await complete(
                prompts.get_system_prompt(command),
                prompts.build_user_prompt(query, context, command),
                client=self.openai_client,
                model=self.settings.chat_model,
                max_tokens=self.settings.max_completion_tokens,
                temperature=self.settings.temperature,
                timeout_seconds=self.settings.generation_timeout_seconds,
            )

            logger.info(
                f"[RAG] Response generated for {command.value}: {completion.tokens_used} tokens, "
                f"{len(results)} context sources, query length {len(query)}"
            )
            return RAGResponse(response=completion.text, sources=results, tokens_used=completion.tokens_used)

        except Exception as e:
            logger.error(f"[RAG] Failed to generate response ({type(e).__name__}): {e} | query: {query[:100]}")
            return RAGResponse(response=prompts.get_fallback_response(command), sources=[], tokens_used=0)

    async def add_document(
        self,
        content: str,
        metadata: DocumentMetadata,
        collection: str = DEFAULT_COLLECTION,
        is_base_document: bool = False,
    ) -> int:
        """Chunk, embed and store a document.

        Args:
            content: Full document text.
            metadata: Tagged metadata; stored on every chunk with processed=True.
            collection: Target collection.
            is_base_document: Mark the chunks as operator-seeded knowledge.

        Returns:
            Number of chunks stored.

        Raises:
            ValueError: If the content produces no chunks.
            EmbeddingFailure: If the embedding provider fails; nothing is stored.
            StoreFailure: If any chunk could not be written. The message names
                how many were stored so the caller can retry.
        """
        pieces = chunk_text(content, self.settings.chunk_size, self.settings.chunk_overlap)
        if not pieces:
            raise ValueError(f"Document {metadata.source} has no text to index")

        embeddings = await embed_texts(pieces, client=self.openai_client, model=self.settings.embedding_model)
        processed = replace(metadata, processed=True)

        chunks = [
            Chunk(
                id=chunk_id(metadata.source, i),
                content=piece,
                embedding=embedding,
                metadata=processed,
                chunk_index=i,
                collection=collection,
                is_base_document=is_base_document,
            )
            for i, (piece, embedding) in enumerate(zip(pieces, embeddings))
        ]

        result = self.vector_store.add_batch(chunks)
        if result.failed:
            failed_ids = ", ".join(failed_id for failed_id, _ in result.failed)
            raise StoreFailure(
                f"Stored {result.inserted} of {len(chunks)} chunks for {metadata.source}; "
                f"failed: {failed_ids}"
            )

        logger.info(
            f"[RAG] Document added: {metadata.source} ({len(chunks)} chunks, type={metadata.type.value}, "
            f"collection={collection}, base={is_base_document})"
        )
        return len(chunks)

    def delete_documents_by_source(self, source: str) -> int:
        deleted = self.vector_store.delete_by_source(source)
        logger.info(f"[RAG] Documents deleted for source {source}: {deleted}")
        return deleted

    def rebuild_index(self) -> int:
        """Drop every stored chunk; documents must be ingested again afterwards."""
        logger.info("[RAG] Rebuilding index...")
        deleted = self.vector_store.clear_all()
        logger.info(f"[RAG] Index cleared ({deleted} chunks), documents need to be re-added")
        return deleted

    def has_base_documents(self, collection: Optional[str] = None) -> bool:
        return self.vector_store.has_base_documents(collection)

    def get_collections(self) -> List[str]:
        return self.vector_store.get_collections()

    def clear_collection(self, collection: str) -> int:
        deleted = self.vector_store.clear_collection(collection)
        logger.info(f"[RAG] Collection cleared: {collection} ({deleted} chunks)")
        return deleted

    def get_collection_stats(self, collection: str) -> CollectionStats:
        return self.vector_store.collection_stats(collection)

    def get_stats(self) -> StoreStats:
        return self.vector_store.stats()
