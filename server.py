from __future__ import annotations

import asyncio
import html as html_module
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from mdpresent_backend.access import SessionAccessCache
from mdpresent_backend.config import (
    ACCESS_PURGE_INTERVAL_SECONDS,
    ACCESS_TTL_HOURS,
    DEFAULT_PORT,
    DELETE_PLAINTEXT_ON_LOCK,
    LOCKS_FILENAME,
    MAX_UPLOAD_BYTES,
    PACKAGE_DIR,
    PBKDF2_ITERATIONS,
    RELOAD_POLL_SECONDS,
    SESSION_COOKIE_MAX_AGE,
    SESSION_COOKIE_NAME,
    STORAGE_ROOT,
    TEMPLATE_PATH,
)
from mdpresent_backend.errors import LockError, ValidationError
from mdpresent_backend.live_reload import ReloadHub, watch_storage
from mdpresent_backend.lock_manager import FileLockManager
from mdpresent_backend.lock_store import LockMetadataStore
from mdpresent_backend.pdf import html_to_pdf
from mdpresent_backend.rendering import (
    BODY_CLASS_HTML,
    BODY_CLASS_PDF,
    build_export_html,
    fill_template,
    load_template,
    render_markdown,
)
from mdpresent_backend.security import generate_session_id, is_document_filename, normalize_session_id
from mdpresent_backend.storage import DocumentStorage

logger = logging.getLogger(__name__)


class FilenameRequest(BaseModel):
    filename: str


class PasswordRequest(BaseModel):
    filename: str
    password: str


class SaveRequest(BaseModel):
    content: str
    file: str


class RenderRequest(BaseModel):
    markdown: str


class ExportRequest(BaseModel):
    markdown: str
    file: Optional[str] = None


def _attachment(filename: str) -> str:
    """Content-Disposition value with an ASCII fallback and the RFC 5987 UTF-8 name."""
    def ascii_only(text: str) -> str:
        return "".join(c for c in text if 32 <= ord(c) < 127 and c not in '"\\;')

    name = Path(filename)
    fallback = (ascii_only(name.stem).strip() or "download") + ascii_only(name.suffix)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _session_id(request: Request) -> str:
    return request.state.session_id


def _manager(request: Request) -> FileLockManager:
    return request.app.state.lock_manager


async def _purge_worker(access: SessionAccessCache) -> None:
    while True:
        await asyncio.sleep(max(30, ACCESS_PURGE_INTERVAL_SECONDS))
        purged = access.purge_expired()
        if purged:
            logger.info("Purged %d expired temporary access grants", purged)


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage: DocumentStorage = app.state.storage
    storage.ensure_root()

    tasks = [
        asyncio.create_task(
            watch_storage(storage, app.state.reload_hub, RELOAD_POLL_SECONDS, storage.snapshot())
        ),
        asyncio.create_task(_purge_worker(app.state.access)),
    ]
    logger.info("Serving presentations from %s", storage.root)
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(
    storage_root: Optional[Path] = None,
    template_path: Optional[Path] = None,
    iterations: int = PBKDF2_ITERATIONS,
    access_ttl_hours: float = ACCESS_TTL_HOURS,
    delete_plaintext_on_lock: bool = DELETE_PLAINTEXT_ON_LOCK,
) -> FastAPI:
    storage = DocumentStorage(Path(storage_root or STORAGE_ROOT).resolve())
    storage.ensure_root()
    access = SessionAccessCache(ttl_seconds=max(0.0, access_ttl_hours) * 3600.0)
    manager = FileLockManager(
        storage,
        LockMetadataStore(storage.root / LOCKS_FILENAME),
        access,
        iterations=iterations,
        delete_plaintext_on_lock=delete_plaintext_on_lock,
    )

    app = FastAPI(lifespan=lifespan)
    app.state.storage = storage
    app.state.access = access
    app.state.lock_manager = manager
    app.state.reload_hub = ReloadHub()
    app.state.template_path = Path(template_path or TEMPLATE_PATH)

    _install_handlers(app)
    _install_routes(app)
    app.mount("/static", StaticFiles(directory=str(PACKAGE_DIR / "static")), name="static")
    return app


def _install_handlers(app: FastAPI) -> None:
    @app.middleware("http")
    async def _session_cookie(request: Request, call_next):
        # Anonymous sessions: the cookie only scopes temporary access grants.
        is_new = False
        try:
            sid = normalize_session_id(request.cookies.get(SESSION_COOKIE_NAME))
        except ValueError:
            sid = generate_session_id()
            is_new = True
        request.state.session_id = sid

        response = await call_next(request)
        if is_new:
            response.set_cookie(
                SESSION_COOKIE_NAME,
                sid,
                max_age=SESSION_COOKIE_MAX_AGE,
                httponly=True,
                samesite="lax",
            )
        return response

    @app.middleware("http")
    async def _no_cache_static_assets(request: Request, call_next):
        response = await call_next(request)
        path = (request.url.path or "").lower()
        if path.endswith((".css", ".js", ".html")) and not path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.exception_handler(LockError)
    async def _lock_error(request: Request, exc: LockError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
        else:
            logger.debug("%s %s rejected: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            {"success": False, "message": exc.message, "error": type(exc).__name__},
            status_code=exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            {"success": False, "message": "Invalid request.", "error": ValidationError.__name__},
            status_code=400,
        )


def _index_html(documents: list[str], locked: set[str]) -> str:
    items = []
    for name in documents:
        label = html_module.escape(name) + (" &#128274;" if name in locked else "")
        items.append(f'<li><a href="/view?file={quote(name)}">{label}</a></li>')
    file_list = "".join(items)
    return f"""<!DOCTYPE html>
<html>
<head><title>Presentations</title>
  <style>
    body {{ font-family: sans-serif; padding: 2em; }} .container {{ max-width: 800px; margin: auto; }}
    ul {{ list-style: none; padding: 0; }} li {{ padding: 0.5em; border-bottom: 1px solid #eee; }}
    a {{ text-decoration: none; color: #0366d6; }} .actions {{ margin-top: 2em; display: flex; gap: 1em; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>Presentations</h1><ul>{file_list}</ul>
    <div class="actions">
      <form action="/upload" method="post" enctype="multipart/form-data">
        <input type="file" name="markdown" accept=".md" required><button type="submit">Upload</button>
      </form>
      <form action="/create" method="post">
        <input type="text" name="filename" placeholder="new-presentation.md" required><button type="submit">Create New</button>
      </form>
    </div>
  </div>
</body>
</html>
"""


def _list_page(manager: FileLockManager) -> str:
    locked = set(manager.locked_documents())
    documents = sorted(set(manager.storage.list_documents()) | locked)
    return _index_html(documents, locked)


def _document_known(manager: FileLockManager, filename: str) -> bool:
    try:
        return manager.storage.exists(filename) or manager.is_locked(filename)
    except ValidationError:
        return False


def _install_routes(app: FastAPI) -> None:
    # ------------------------------------------------------------------
    # Presentation list / viewer
    # ------------------------------------------------------------------

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        page = await asyncio.to_thread(_list_page, _manager(request))
        return HTMLResponse(page)

    @app.get("/view", response_class=HTMLResponse)
    async def view(request: Request, file: str = "") -> Response:
        if not await asyncio.to_thread(_document_known, _manager(request), file):
            return PlainTextResponse("File not found.", status_code=404)
        # Content is loaded client-side through /api/get-file so locks apply.
        template = await asyncio.to_thread(load_template, request.app.state.template_path)
        return HTMLResponse(fill_template(template))

    @app.post("/upload")
    async def upload(request: Request, markdown: UploadFile = File(...)) -> Response:
        name = Path(markdown.filename or "").name
        if not is_document_filename(name):
            raise HTTPException(status_code=400, detail="Only .md files can be uploaded")
        data = await markdown.read(MAX_UPLOAD_BYTES + 1)
        if len(data) > MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=413, detail="File too large")
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="File is not valid UTF-8")

        # Uploading over a locked document is a save and obeys the lock.
        await asyncio.to_thread(_manager(request).save_file, _session_id(request), name, text)
        logger.info("Uploaded: %s", name)
        return RedirectResponse("/", status_code=303)

    @app.post("/create")
    async def create(request: Request, filename: str = Form(...)) -> Response:
        await asyncio.to_thread(_manager(request).create_file, filename)
        return RedirectResponse("/", status_code=303)

    # ------------------------------------------------------------------
    # Rendering / export
    # ------------------------------------------------------------------

    @app.post("/api/render")
    async def render(payload: RenderRequest) -> JSONResponse:
        try:
            result = render_markdown(payload.markdown)
        except Exception:
            logger.exception("Error in /api/render")
            raise HTTPException(status_code=500, detail="Server failed to render markdown.")
        return JSONResponse({"contentHtml": result.content_html, "tocHtml": result.toc_html})

    @app.post("/export-html")
    async def export_html(payload: ExportRequest, request: Request) -> Response:
        template = await asyncio.to_thread(load_template, request.app.state.template_path)
        page = build_export_html(template, payload.markdown, BODY_CLASS_HTML, "IS_EXPORTED")
        filename = f"{Path(payload.file).stem}.html" if payload.file else "presentation.html"
        headers = {"Content-Disposition": _attachment(filename)}
        return Response(content=page, media_type="text/html; charset=utf-8", headers=headers)

    @app.post("/export-pdf")
    async def export_pdf(payload: ExportRequest, request: Request) -> Response:
        template = await asyncio.to_thread(load_template, request.app.state.template_path)
        page = build_export_html(template, payload.markdown, BODY_CLASS_PDF, "IS_PDF_EXPORT")
        try:
            pdf_bytes = await html_to_pdf(page)
        except Exception:
            logger.exception("Error exporting PDF")
            raise HTTPException(status_code=500, detail="Error generating PDF.")
        headers = {
            "Content-Disposition": 'attachment; filename="presentation.pdf"',
            "Cache-Control": "no-store",
        }
        return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)

    # ------------------------------------------------------------------
    # File locks
    # ------------------------------------------------------------------

    @app.get("/api/check-file-lock")
    async def check_file_lock(request: Request, filename: str = "") -> JSONResponse:
        locked = await asyncio.to_thread(_manager(request).is_locked, filename)
        return JSONResponse({"isLocked": locked})

    @app.post("/api/set-file-lock")
    async def set_file_lock(payload: PasswordRequest, request: Request) -> JSONResponse:
        await asyncio.to_thread(_manager(request).set_lock, payload.filename, payload.password)
        return JSONResponse({"success": True, "message": f"{payload.filename} is now locked."})

    @app.post("/api/remove-file-lock")
    async def remove_file_lock(payload: FilenameRequest, request: Request) -> JSONResponse:
        removed = await asyncio.to_thread(_manager(request).remove_lock, payload.filename)
        message = "Lock removed." if removed else "File was not locked."
        return JSONResponse({"success": True, "message": message})

    @app.post("/api/unlock-file")
    async def unlock_file(payload: PasswordRequest, request: Request) -> JSONResponse:
        await asyncio.to_thread(_manager(request).unlock_file, payload.filename, payload.password)
        return JSONResponse({"success": True, "message": "File content restored."})

    @app.post("/api/temporary-access")
    async def temporary_access(payload: PasswordRequest, request: Request) -> JSONResponse:
        await asyncio.to_thread(
            _manager(request).grant_temporary_access, _session_id(request), payload.filename, payload.password
        )
        return JSONResponse({"success": True, "message": "Access granted for this session."})

    @app.get("/api/get-file")
    async def get_file(request: Request, filename: str = "") -> JSONResponse:
        view = await asyncio.to_thread(_manager(request).get_file, _session_id(request), filename)
        return JSONResponse(view.to_dict())

    @app.post("/save-md")
    async def save_md(payload: SaveRequest, request: Request) -> JSONResponse:
        await asyncio.to_thread(_manager(request).save_file, _session_id(request), payload.file, payload.content)
        return JSONResponse({"success": True, "message": "File saved."})

    # ------------------------------------------------------------------
    # Live reload
    # ------------------------------------------------------------------

    @app.websocket("/ws")
    async def live_reload(websocket: WebSocket) -> None:
        hub: ReloadHub = websocket.app.state.reload_hub
        await hub.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            hub.disconnect(websocket)


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    from mdpresent_backend.config import DEBUG, LOG_DIR
    from mdpresent_backend.logging_config import setup_logging

    setup_logging(LOG_DIR, debug_mode=DEBUG)
    port = int(os.environ.get("PORT", str(DEFAULT_PORT)))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
