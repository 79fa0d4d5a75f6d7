# Entry point for the FastAPI app
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
import logging

from capellan import __version__, config, security
from capellan.command_gate import CommandGate
from capellan.models.command import CommandContext, CommandType
from capellan.rag.base_documents import BaseDocumentsLoader
from capellan.rag.document_processor import DocumentProcessor
from capellan.rag.errors import DocumentRejected, EmbeddingFailure, StoreFailure
from capellan.rag.rag_system import RAGSystem
from capellan.rag.vector_store import VectorStore
from capellan.rate_limiter import RateLimiter
from capellan.task_registry import TaskRegistry
from capellan.utils.periodic import PeriodicTask

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Capellán", version=__version__)

# Process-local gate state; reset on every restart
task_registry = TaskRegistry()
rate_limiter = RateLimiter(config.RATE_LIMIT_WINDOW_SECONDS, config.RATE_LIMIT_MAX_REQUESTS)
command_gate = CommandGate(task_registry, rate_limiter)

# Built on startup
rag_system = None
document_processor = None
base_documents_loader = None
sweepers = []

ADMIN_USER_ID = "admin"

default_message = {
    "message": "Capellán RAG service running. El Emperador protege.",
    "version": __version__,
}


@app.on_event("startup")
async def startup_event():
    global rag_system, document_processor, base_documents_loader, sweepers

    security.check_security_config()

    logger.info(f"[STARTUP] Opening vector store at {config.SQLITE_PATH}")
    rag_system = RAGSystem(VectorStore(config.SQLITE_PATH))
    document_processor = DocumentProcessor(rag_system)
    base_documents_loader = BaseDocumentsLoader(rag_system)

    try:
        loaded = await base_documents_loader.initialize_base_documents()
        if loaded:
            logger.info(f"[STARTUP] Base documents loaded: {loaded}")
    except (EmbeddingFailure, StoreFailure) as e:
        # Serve anyway; the next start (or an admin reload) retries the seeding
        logger.error(f"[STARTUP] Base documents could not be loaded: {e}")

    sweepers = [
        PeriodicTask(
            "task-sweeper",
            config.TASK_SWEEP_INTERVAL_SECONDS,
            lambda: task_registry.sweep(config.TASK_MAX_AGE_SECONDS),
        ),
        PeriodicTask(
            "rate-limit-sweeper",
            config.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
            rate_limiter.sweep,
        ),
    ]
    for sweeper in sweepers:
        sweeper.start()

    stats = rag_system.get_stats()
    logger.info(
        f"[STARTUP] Initialization complete: {stats.document_count} chunks, "
        f"collections={rag_system.get_collections()}"
    )


@app.on_event("shutdown")
def shutdown_event():
    global sweepers

    for sweeper in sweepers:
        sweeper.stop()
    sweepers = []

    released = task_registry.clear()
    rate_limiter.clear()
    logger.info(f"[SHUTDOWN] Sweepers stopped, {released} active tasks dropped")


async def _read_json(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return payload


def _context_from_payload(payload: dict) -> CommandContext:
    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    return CommandContext(
        user_id=str(user_id),
        username=str(payload.get("username") or user_id),
        channel_id=str(payload.get("channel_id") or "api"),
        is_privileged=bool(payload.get("is_privileged", False)),
        guild_id=payload.get("guild_id"),
    )


def _rejection(decision) -> JSONResponse:
    return JSONResponse(status_code=429, content=decision.to_dict())


def _source_to_dict(result) -> dict:
    return {
        "source": result.source,
        "similarity": round(result.similarity, 4),
        "collection": result.chunk.collection,
        "chunk_index": result.chunk.chunk_index,
        "title": result.chunk.metadata.title,
    }


@app.get("/")
def root():
    return default_message


@app.post("/ask")
async def ask(request: Request):
    """Answer a question in character, gated by the single-flight AI slot."""
    payload = await _read_json(request)
    security.validate_webhook_auth(request, payload)

    query = (payload.get("query") or "").strip()
    if not query:
        raise HTTPException(status_code=400, detail="query is required")
    command = CommandType.parse(payload.get("command"))
    context = _context_from_payload(payload)

    call = await command_gate.run(context, command, lambda: rag_system.answer(query, command))
    if not call.allowed:
        return _rejection(call.decision)

    answer = call.value
    return {
        "response": answer.response,
        "command": command.value,
        "sources": [_source_to_dict(r) for r in answer.sources],
        "tokens_used": answer.tokens_used,
    }


@app.post("/knowledge")
async def add_knowledge(request: Request):
    """Ingest a document from `text`, `url` or a local `file_path` (PDF)."""
    payload = await _read_json(request)
    security.validate_webhook_auth(request, payload)

    collection = payload.get("collection") or "user"
    payload.setdefault("user_id", payload.get("added_by"))
    context = _context_from_payload(payload)
    added_by = str(payload.get("added_by") or context.username)

    if payload.get("text"):
        source = payload.get("source")
        if not source:
            raise HTTPException(status_code=400, detail="source is required for text documents")

        def operation():
            return document_processor.ingest_text(
                payload["text"], source, added_by, title=payload.get("title"), collection=collection
            )
    elif payload.get("url"):
        source = payload["url"]

        def operation():
            return document_processor.ingest_url(source, added_by, collection=collection)
    elif payload.get("file_path"):
        source = payload.get("source") or payload["file_path"]

        def operation():
            return document_processor.ingest_pdf(
                payload["file_path"], added_by, source=payload.get("source"), collection=collection
            )
    else:
        raise HTTPException(status_code=400, detail="One of text, url or file_path is required")

    try:
        call = await command_gate.run(context, "knowledge", operation)
    except DocumentRejected as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmbeddingFailure as e:
        logger.error(f"[KNOWLEDGE] Embedding provider failed for {source}: {e}")
        raise HTTPException(status_code=502, detail="Embedding provider unavailable, try again later")
    except StoreFailure as e:
        logger.error(f"[KNOWLEDGE] Store failure for {source}: {e}")
        raise HTTPException(status_code=500, detail=f"Document could not be fully stored, retry: {e}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not call.allowed:
        return _rejection(call.decision)

    return {"status": "ok", "source": source, "collection": collection, "chunks": call.value}


@app.delete("/knowledge")
async def delete_knowledge(request: Request):
    """Delete every chunk of a `source`, or a whole `collection`."""
    payload = await _read_json(request)
    security.validate_webhook_auth(request, payload)

    try:
        if payload.get("source"):
            deleted = rag_system.delete_documents_by_source(payload["source"])
        elif payload.get("collection"):
            deleted = rag_system.clear_collection(payload["collection"])
        else:
            raise HTTPException(status_code=400, detail="source or collection is required")
    except StoreFailure as e:
        raise HTTPException(status_code=500, detail=f"Delete failed, retry: {e}")

    return {"status": "ok", "deleted": deleted}


@app.get("/knowledge/stats")
async def knowledge_stats(request: Request, passkey: str = None, collection: str = None):
    security.validate_passkey(request, passkey)

    if collection:
        stats = rag_system.get_collection_stats(collection)
        return {
            "collection": collection,
            "document_count": stats.document_count,
            "sources": stats.sources,
        }

    stats = rag_system.get_stats()
    return {
        "document_count": stats.document_count,
        "sources": stats.sources,
        "types": stats.types,
        "collections": rag_system.get_collections(),
        "base_documents": base_documents_loader.check_status(),
        "available_base_documents": base_documents_loader.list_available(),
    }


@app.get("/admin/tasks")
async def admin_tasks(request: Request, passkey: str = None):
    security.validate_passkey(request, passkey)
    return {
        "active_tasks": [
            {
                "user_id": task.user_id,
                "username": task.username,
                "command": task.command,
                "channel_id": task.channel_id,
            }
            for task in task_registry.get_active_tasks()
        ],
        "rate_limiter": rate_limiter.stats(),
    }


@app.post("/admin/tasks/release")
async def admin_release_task(request: Request):
    payload = await _read_json(request)
    security.validate_webhook_auth(request, payload)

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    return {"status": "ok", "released": task_registry.force_release(str(user_id))}


@app.post("/admin/rate-limit/reset")
async def admin_reset_rate_limit(request: Request):
    payload = await _read_json(request)
    security.validate_webhook_auth(request, payload)

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    return {"status": "ok", "had_window": rate_limiter.reset(str(user_id))}


@app.post("/admin/base-documents/reload")
async def admin_reload_base_documents(request: Request):
    """Re-embed base documents; holds the AI slot like any other provider call."""
    payload = await _read_json(request)
    security.validate_webhook_auth(request, payload)

    # Admins skip the rate limiter but still wait for the AI slot
    context = CommandContext(
        user_id=str(payload.get("user_id") or ADMIN_USER_ID),
        username=str(payload.get("username") or ADMIN_USER_ID),
        channel_id="admin",
        is_privileged=True,
    )
    collection = payload.get("collection")

    try:
        call = await command_gate.run(
            context,
            "base_documents_reload",
            lambda: base_documents_loader.reload_base_documents(collection),
        )
    except EmbeddingFailure as e:
        raise HTTPException(status_code=502, detail=f"Embedding provider unavailable: {e}")
    except StoreFailure as e:
        raise HTTPException(status_code=500, detail=f"Reload failed, retry: {e}")

    if not call.allowed:
        return _rejection(call.decision)

    return {"status": "ok", "loaded": call.value}
