"""Data models shared by the RAG core, the gate and the HTTP layer."""
from capellan.models.command import CommandContext, CommandType
from capellan.models.document import (
    DEFAULT_COLLECTION,
    Chunk,
    CollectionStats,
    DocumentMetadata,
    DocumentType,
    PdfMetadata,
    RAGResponse,
    SearchResult,
    StoreStats,
    TextMetadata,
    WebMetadata,
    chunk_id,
    metadata_from_dict,
    metadata_to_dict,
)
