"""
Document processor: turns raw text, PDF files and web pages into ingested
knowledge.

Web pages are only fetched from ALLOWED_DOMAINS. PDFs (local or downloaded)
are read with PyMuPDF, HTML pages are flattened with BeautifulSoup. Anything
whose extracted text is shorter than MIN_DOCUMENT_LENGTH is rejected before
touching the embedding provider.
"""

import json
import logging
import re
import time
from dataclasses import replace
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

import fitz  # PyMuPDF
import httpx
from bs4 import BeautifulSoup

from capellan import config
from capellan.models.document import (
    DEFAULT_COLLECTION,
    DocumentMetadata,
    PdfMetadata,
    TextMetadata,
    WebMetadata,
    metadata_to_dict,
)
from capellan.rag.errors import DocumentRejected
from capellan.rag.rag_system import RAGSystem

logger = logging.getLogger(__name__)

USER_AGENT = "CapellanBot/1.0 (Warhammer40k Knowledge Collector)"
UNTITLED = "Documento sin título"


def validate_domain(url: str) -> str:
    """Return the lowercased hostname of url if it belongs to an allowed domain.

    A host matches an allowed domain when it is that domain or a subdomain of it.

    Raises:
        DocumentRejected: For non-http(s) URLs or hosts outside ALLOWED_DOMAINS.
    """
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        raise DocumentRejected(f"URL no válida: {url}")

    for allowed in config.ALLOWED_DOMAINS:
        if host == allowed or host.endswith("." + allowed):
            return host

    raise DocumentRejected(
        f"Dominio no permitido: {host}. Solo se permiten: {', '.join(config.ALLOWED_DOMAINS)}"
    )


def safe_filename(url: str) -> str:
    name = urlparse(url).path.rstrip("/").split("/")[-1] or "document"
    name = re.sub(r"\.[^.]*$", "", name)
    name = re.sub(r"[^a-zA-Z0-9_-]", "_", name)[:50]
    return name or "document"


def clean_extracted_text(text: str) -> str:
    """Normalize whitespace, typographic quotes and dashes, and drop PDF artifacts."""
    text = text.replace("\ufffd", "").replace("\ufeff", "")
    text = re.sub(r"[\u201c\u201d]", '"', text)
    text = re.sub(r"[\u2018\u2019]", "'", text)
    text = re.sub(r"[\u2013\u2014]", "-", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def _looks_like_title(line: str) -> bool:
    return 10 <= len(line) <= 100 and "." not in line


def extract_title_from_text(text: str) -> str:
    """Pick a title-like line from the start of a document.

    Prefers one of the first five non-empty lines that is 10-100 characters
    long, has no period and does not mention "page". Falls back to the first
    50 characters of the first line.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return UNTITLED

    for line in lines[:5]:
        if _looks_like_title(line) and "page" not in line.lower():
            return line

    first = lines[0]
    return first[:50] + ("..." if len(first) > 50 else "")


def extract_pdf_text(source) -> Tuple[str, str, int]:
    """Read a PDF from a path or raw bytes.

    Returns:
        (cleaned text, title guess, page count)

    Raises:
        DocumentRejected: If the file cannot be parsed.
    """
    try:
        if isinstance(source, (bytes, bytearray)):
            doc = fitz.open(stream=bytes(source), filetype="pdf")
        else:
            doc = fitz.open(str(source))
    except Exception as e:
        logger.error(f"[DOCUMENTS] Failed to open PDF: {e}")
        raise DocumentRejected(f"Error extrayendo texto del PDF: {e}") from e

    try:
        page_count = doc.page_count
        raw = "\n".join(page.get_text() for page in doc)
    finally:
        doc.close()

    return clean_extracted_text(raw), extract_title_from_text(raw), page_count


def extract_html_text(html: str) -> Tuple[str, Optional[str]]:
    """Flatten an HTML page to text, dropping scripts, styles and navigation.

    Returns:
        (cleaned text, page title or None)
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "footer"]):
        tag.decompose()

    title = soup.title.get_text(strip=True) if soup.title else None
    text = soup.get_text(separator="\n")
    return clean_extracted_text(text), title or None


class DocumentProcessor:
    """Validates, extracts and ingests documents through a RAGSystem."""

    def __init__(
        self,
        rag_system: RAGSystem,
        documents_path: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.rag_system = rag_system
        self.documents_path = Path(documents_path or config.DOCUMENTS_PATH)
        self.metadata_path = self.documents_path / "metadata"
        self.http_client = http_client
        self.metadata_path.mkdir(parents=True, exist_ok=True)

    def _check_length(self, text: str, source: str):
        if len(text) < config.MIN_DOCUMENT_LENGTH:
            logger.warning(f"[DOCUMENTS] Rejected {source}: only {len(text)} characters of text")
            raise DocumentRejected(
                "El documento parece estar vacío o ser demasiado corto "
                f"({len(text)} caracteres, mínimo {config.MIN_DOCUMENT_LENGTH})"
            )

    def _save_metadata(self, metadata: DocumentMetadata, stem: str):
        path = self.metadata_path / f"{stem}_metadata.json"
        path.write_text(json.dumps(metadata_to_dict(metadata), ensure_ascii=False, indent=2), encoding="utf-8")

    async def _ingest(self, text: str, metadata: DocumentMetadata, collection: str, stem: str) -> int:
        self._save_metadata(metadata, stem)
        chunks = await self.rag_system.add_document(text, metadata, collection)
        self._save_metadata(replace(metadata, processed=True), stem)
        logger.info(
            f"[DOCUMENTS] Processed {metadata.source} ({metadata.type.value}): "
            f"{len(text):,} chars, {chunks} chunks, added by {metadata.added_by}"
        )
        return chunks

    async def ingest_text(
        self,
        text: str,
        source: str,
        added_by: str,
        title: Optional[str] = None,
        collection: str = DEFAULT_COLLECTION,
    ) -> int:
        """Ingest text supplied directly by a caller.

        Returns:
            Number of chunks stored.

        Raises:
            DocumentRejected: If the text is too short.
        """
        logger.info(f"[DOCUMENTS] Processing text document {source} from {added_by} ({len(text)} chars)")
        cleaned = clean_extracted_text(text)
        self._check_length(cleaned, source)

        metadata = TextMetadata(
            source=source,
            added_by=added_by,
            title=title or extract_title_from_text(text),
        )
        return await self._ingest(cleaned, metadata, collection, f"text_{int(time.time() * 1000)}")

    async def ingest_pdf(
        self,
        file_path: str,
        added_by: str,
        source: Optional[str] = None,
        collection: str = DEFAULT_COLLECTION,
    ) -> int:
        """Ingest a PDF file that is already on disk."""
        path = Path(file_path)
        source = source or path.name
        text, title, page_count = extract_pdf_text(path)
        self._check_length(text, source)

        metadata = PdfMetadata(
            source=source,
            added_by=added_by,
            file_path=str(path),
            title=title,
            page_count=page_count,
        )
        return await self._ingest(text, metadata, collection, f"{path.stem}_{int(time.time() * 1000)}")

    async def _download(self, url: str) -> httpx.Response:
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/pdf;q=0.9,*/*;q=0.8",
        }
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url, headers=headers, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=config.DOWNLOAD_TIMEOUT_SECONDS) as client:
                    response = await client.get(url, headers=headers, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[DOCUMENTS] Failed to download {url}: {e}")
            raise DocumentRejected(f"Error descargando contenido web: {e}") from e
        return response

    async def ingest_url(self, url: str, added_by: str, collection: str = DEFAULT_COLLECTION) -> int:
        """Download a page or PDF from an allowed domain and ingest it.

        PDFs are kept under DOCUMENTS_PATH; HTML pages are ingested as web documents.

        Raises:
            DocumentRejected: Disallowed domain, download error or too little text.
        """
        logger.info(f"[DOCUMENTS] Starting URL processing: {url} (added by {added_by})")
        validate_domain(url)

        response = await self._download(url)
        stem = f"{safe_filename(url)}_{int(time.time() * 1000)}"
        content_type = response.headers.get("content-type", "").lower()

        if "application/pdf" in content_type or urlparse(url).path.lower().endswith(".pdf"):
            pdf_path = self.documents_path / f"{stem}.pdf"
            pdf_path.write_bytes(response.content)
            text, title, page_count = extract_pdf_text(response.content)
            self._check_length(text, url)
            metadata = PdfMetadata(
                source=url,
                added_by=added_by,
                file_path=str(pdf_path),
                title=title,
                page_count=page_count,
            )
        else:
            text, title = extract_html_text(response.text)
            self._check_length(text, url)
            metadata = WebMetadata(
                source=url,
                added_by=added_by,
                url=url,
                title=title or extract_title_from_text(text),
            )

        return await self._ingest(text, metadata, collection, stem)
