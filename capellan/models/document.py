"""Document, chunk and search models for the knowledge store.

`DocumentMetadata` is a closed set of variants tagged by `DocumentType`.
Each variant carries only the fields that make sense for its origin, and
`metadata_from_dict` is the single place that turns stored JSON back into
one of them.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


DEFAULT_COLLECTION = "user"


class DocumentType(Enum):
    """Origin of an ingested document."""
    PDF = "pdf"
    WEB = "web"
    TEXT = "text"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TextMetadata:
    """Plain text or markdown, usually operator-seeded base documents."""
    source: str
    added_by: str
    added_at: str = field(default_factory=utc_now_iso)
    title: Optional[str] = None
    processed: bool = False
    file_path: Optional[str] = None

    @property
    def type(self) -> DocumentType:
        return DocumentType.TEXT


@dataclass
class PdfMetadata:
    """Text extracted from a PDF file."""
    source: str
    added_by: str
    file_path: str
    added_at: str = field(default_factory=utc_now_iso)
    title: Optional[str] = None
    processed: bool = False
    page_count: Optional[int] = None

    @property
    def type(self) -> DocumentType:
        return DocumentType.PDF


@dataclass
class WebMetadata:
    """Text extracted from an HTML page on an allowed domain."""
    source: str
    added_by: str
    url: str
    added_at: str = field(default_factory=utc_now_iso)
    title: Optional[str] = None
    processed: bool = False
    file_path: Optional[str] = None

    @property
    def type(self) -> DocumentType:
        return DocumentType.WEB


DocumentMetadata = Union[TextMetadata, PdfMetadata, WebMetadata]

_METADATA_CLASSES = {
    DocumentType.TEXT: TextMetadata,
    DocumentType.PDF: PdfMetadata,
    DocumentType.WEB: WebMetadata,
}


def metadata_to_dict(metadata: DocumentMetadata) -> Dict[str, Any]:
    """Serialize metadata with its `type` tag, dropping unset optional fields."""
    data = {k: v for k, v in asdict(metadata).items() if v is not None}
    data["type"] = metadata.type.value
    return data


# Keys written by the first, camelCase version of the store
_LEGACY_KEYS = {
    "addedBy": "added_by",
    "addedAt": "added_at",
    "filePath": "file_path",
    "pageCount": "page_count",
}


def _normalize_legacy_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(data)
    for old, new in _LEGACY_KEYS.items():
        if old in normalized:
            value = normalized.pop(old)
            normalized.setdefault(new, value)
    return normalized


def metadata_from_dict(data: Dict[str, Any]) -> DocumentMetadata:
    """Rebuild a metadata variant from its tagged dict form.

    Rows from older databases use camelCase keys and may lack the PDF path
    or the page URL; both fall back to `source`.

    Raises:
        ValueError: If the tag is unknown or required fields are missing.
    """
    data = _normalize_legacy_keys(data)
    try:
        doc_type = DocumentType(data.get("type", DocumentType.TEXT.value))
    except ValueError:
        raise ValueError(f"Unknown document type: {data.get('type')!r}")

    if doc_type is DocumentType.PDF and not data.get("file_path"):
        data["file_path"] = data.get("source")
    elif doc_type is DocumentType.WEB and not data.get("url"):
        data["url"] = data.get("source")

    cls = _METADATA_CLASSES[doc_type]
    fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    try:
        return cls(**fields)
    except TypeError as e:
        raise ValueError(f"Invalid {doc_type.value} metadata: {e}") from e


@dataclass
class Chunk:
    """A stored passage of a source document together with its embedding.

    Attributes:
        id: Unique id, `<source>_chunk_<chunk_index>`.
        content: Passage text.
        embedding: Vector produced by the embedding model.
        metadata: Tagged metadata of the source document.
        chunk_index: Position of the passage within its source.
        collection: Retrieval partition the chunk belongs to.
        is_base_document: True for operator-seeded knowledge.
    """
    id: str
    content: str
    embedding: List[float]
    metadata: DocumentMetadata
    chunk_index: int
    collection: str = DEFAULT_COLLECTION
    is_base_document: bool = False

    @property
    def source(self) -> str:
        return self.metadata.source


def chunk_id(source: str, index: int) -> str:
    return f"{source}_chunk_{index}"


@dataclass
class SearchResult:
    chunk: Chunk
    similarity: float

    @property
    def source(self) -> str:
        return self.chunk.source


@dataclass
class RAGResponse:
    """Answer returned by the orchestrator; `tokens_used` is the cost metric."""
    response: str
    sources: List[SearchResult] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def cost(self) -> int:
        return self.tokens_used


@dataclass
class StoreStats:
    document_count: int
    sources: List[str]
    types: Dict[str, int]


@dataclass
class CollectionStats:
    document_count: int
    sources: List[str]
