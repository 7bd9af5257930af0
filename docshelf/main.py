# docshelf/main.py
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, List, Optional, TypeVar

import httpx
from fastapi import Depends, FastAPI, File, Form, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from docshelf.ai import AiTextClient
from docshelf.config import Settings, get_settings
from docshelf.db import build_engine, build_sessionmaker, close_engine, init_models
from docshelf.documents import UNSET, DocumentLibrary
from docshelf.errors import DocshelfError, UpstreamError, ValidationError
from docshelf.metadata import MetadataStore
from docshelf.models import build_documents_table
from docshelf.storage import MinioObjectStore, ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Prometheus counters
uploads_total = Counter("docshelf_uploads_total", "Total uploads")
summaries_total = Counter("docshelf_summaries_total", "Total summaries generated")
translations_total = Counter("docshelf_translations_total", "Total translation requests")
deletes_total = Counter("docshelf_deletes_total", "Total deletes")
operation_failures = Counter("docshelf_operation_failures_total", "Failed operations", ["operation"])


class FilePatch(BaseModel):
    path: Any = None
    documentName: Any = None
    tag: Any = None
    tags: Any = None
    note_taking: Any = None


class PathBody(BaseModel):
    path: Any = None


class TranslateBody(BaseModel):
    text: Any = None
    targetLanguages: Any = None
    targetLanguage: Any = None


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


async def run_operation(operation: str, awaitable: Awaitable[T]) -> T:
    """Operation boundary: known errors pass through, anything else is logged and becomes a 500."""
    try:
        return await awaitable
    except DocshelfError as e:
        operation_failures.labels(operation=operation).inc()
        if e.status_code >= 500:
            logger.error("%s failed: %s", operation, e.message)
        raise
    except Exception as e:
        operation_failures.labels(operation=operation).inc()
        logger.exception("%s failed unexpectedly", operation)
        raise DocshelfError("Internal server error.") from e


def get_library(request: Request) -> DocumentLibrary:
    return request.app.state.library


def create_app(
    settings: Optional[Settings] = None,
    *,
    object_store: Optional[ObjectStore] = None,
    metadata_store: Optional[MetadataStore] = None,
    ai_client: Optional[AiTextClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or get_settings()

    owned_http = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(follow_redirects=True)

    engine = None
    table = None
    if metadata_store is None:
        engine = build_engine(settings)
        table = build_documents_table(settings.documents_table)
        metadata_store = MetadataStore(build_sessionmaker(engine), table)

    if object_store is None:
        object_store = MinioObjectStore.from_settings(settings)

    if ai_client is None:
        ai_client = AiTextClient(settings, http_client)
    if not ai_client.configured:
        logger.warning("AI_TOKEN is not set; /summarize and /translate will fail until set in env.")

    library = DocumentLibrary(settings, object_store, metadata_store, ai_client, http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(object_store, MinioObjectStore):
            try:
                await object_store.ensure_bucket()
            except UpstreamError:
                logger.exception("Could not ensure bucket %s exists", settings.storage_bucket)
        if engine is not None and settings.create_tables:
            await init_models(engine, table.metadata)
        yield
        if owned_http:
            try:
                await http_client.aclose()
            except Exception:
                logger.exception("Failed to close httpx client on shutdown")
        if engine is not None:
            await close_engine(engine)

    app = FastAPI(title="Docshelf", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.library = library

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DocshelfError)
    async def docshelf_error_handler(request: Request, exc: DocshelfError):
        return _error(exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request.") if errors else "Invalid request."
        return _error(message, 400)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(str(exc.detail), exc.status_code)

    # ---------------- files ----------------
    @app.get("/files")
    async def list_or_link(download: Optional[str] = None, library: DocumentLibrary = Depends(get_library)):
        if download:
            url = await run_operation("download", library.signed_link(download))
            return {"ok": True, "url": url}
        documents = await run_operation("list", library.list_documents())
        return {"ok": True, "items": [d.to_dict() for d in documents]}

    @app.post("/files")
    async def upload(
        file: Optional[UploadFile] = File(None),
        documentName: Optional[str] = Form(None),
        tags: Optional[str] = Form(None),
        library: DocumentLibrary = Depends(get_library),
    ):
        data = None
        if file is not None:
            limit = settings.max_upload_size
            if file.size is not None and file.size > limit:
                operation_failures.labels(operation="upload").inc()
                raise ValidationError("File is too large.")
            # one byte past the limit is enough for the library to reject it
            data = await file.read(limit + 1)
        result = await run_operation(
            "upload",
            library.upload(
                filename=file.filename if file is not None else None,
                data=data,
                content_type=file.content_type if file is not None else None,
                document_name=documentName,
                tags=tags,
            ),
        )
        uploads_total.inc()
        return {
            "ok": True,
            "path": result.path,
            "documentId": str(result.document_id) if result.document_id is not None else None,
        }

    @app.patch("/files")
    async def patch_file(body: FilePatch, library: DocumentLibrary = Depends(get_library)):
        sent = body.model_fields_set
        is_edit = bool({"documentName", "tag", "tags"} & sent)
        if not is_edit and "note_taking" not in sent:
            operation_failures.labels(operation="update").inc()
            return _error("Nothing to update.", 400)

        if is_edit:
            if "tag" in sent:
                tags = body.tag
            elif "tags" in sent:
                tags = body.tags
            else:
                tags = UNSET
            await run_operation("edit", library.edit(body.path, body.documentName, tags))
        if "note_taking" in sent:
            await run_operation("note", library.update_note(body.path, body.note_taking))
        return {"ok": True}

    @app.delete("/files")
    async def delete_file(body: PathBody, library: DocumentLibrary = Depends(get_library)):
        await run_operation("delete", library.delete(body.path))
        deletes_total.inc()
        return {"ok": True}

    # ---------------- AI ----------------
    @app.post("/summarize")
    async def summarize(body: PathBody, library: DocumentLibrary = Depends(get_library)):
        result = await run_operation("summarize", library.summarize(body.path))
        summaries_total.inc()
        return {"ok": True, "summary": result.summary}

    @app.post("/translate")
    async def translate(body: TranslateBody, library: DocumentLibrary = Depends(get_library)):
        if isinstance(body.targetLanguages, list):
            languages: List[str] = [lang for lang in body.targetLanguages if isinstance(lang, str)]
        elif isinstance(body.targetLanguage, str):
            languages = [body.targetLanguage]
        else:
            languages = []
        translations = await run_operation("translate", library.translate(body.text, languages))
        translations_total.inc()
        return {"ok": True, "translations": translations}

    # ---------------- ops ----------------
    @app.get("/healthz")
    async def healthz(library: DocumentLibrary = Depends(get_library)):
        ok = {"database": False, "storage": False}
        try:
            ok["database"] = await library.metadata_store.ping()
        except Exception:
            logger.exception("Database health check failed")
        try:
            ok["storage"] = bool(await library.object_store.ping())
        except Exception:
            logger.exception("Storage health check failed")
        status = 200 if all(ok.values()) else 503
        return JSONResponse(ok, status_code=status)

    if settings.prometheus_enabled:
        @app.get("/metrics")
        def metrics():
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level)
