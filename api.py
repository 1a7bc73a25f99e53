"""FastAPI HTTP surface for the movies catalog.

Endpoints (all under /api/v1, ids passed as ?id=...):
- POST   /movie          : add a movie {"title", "description", "tags"} -> id (text)
- GET    /movie          : catalog entry JSON
- PATCH  /movie          : change title / description / tags
- DELETE /movie          : remove the entry and its stored files
- GET    /movie/search   : [{id, title}] (sorting_field, sorting_order, title, tags, start_index, num_results)
- GET    /movie/tags     : [[tag, count], ...]
- POST   /movie/file     : multipart media upload (video/*), queues preview generation
- GET    /movie/file     : media download
- POST   /movie/preview  : multipart preview upload (image/*)
- GET    /movie/preview  : preview download
- GET    /health         : liveness + pending preview jobs

The app builds its CatalogService from the environment (see mediadb.Options)
on startup unless one was installed with configure(); tests do the latter.
"""
from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from catalog import (
    CatalogEntry,
    CatalogError,
    InvalidArgument,
    Movie,
    NotFound,
    NotReady,
    SearchQuery,
    SortField,
    SortOrder,
)
from logs import configure_logging, log_event
from service import CatalogService, UnsupportedMediaType

logger = logging.getLogger(__name__)

_SERVICE: Optional[CatalogService] = None
_OWNED = False


def configure(service: Optional[CatalogService]) -> None:
    """Install the service used by the app (None resets to env-based startup)."""
    global _SERVICE, _OWNED
    _SERVICE = service
    _OWNED = False


def get_service() -> CatalogService:
    if _SERVICE is None:
        raise HTTPException(503, "service not started")
    return _SERVICE


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _SERVICE, _OWNED
    if _SERVICE is None:
        from mediadb import Options

        options = Options.from_env()
        configure_logging(options.log_level, options.event_log)
        _SERVICE = CatalogService.from_options(options)
        _OWNED = True
    service = _SERVICE
    service.start()
    try:
        yield
    finally:
        service.stop()
        if _OWNED:
            service.close()
            _SERVICE = None
            _OWNED = False


app = FastAPI(title="Movies DB API", version="0.1", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logger(request: Request, call_next):  # noqa: D401
    req_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = req_id
    start = time.time()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
    except Exception as e:  # noqa: BLE001
        log_event("exception", request_id=req_id, path=request.url.path, method=request.method, error=str(e))
        raise
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log_event("request", request_id=req_id, path=request.url.path, method=request.method, status=status, duration_ms=dur_ms)
    response.headers["X-Request-ID"] = req_id
    return response


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def status_for(err: CatalogError) -> int:
    if isinstance(err, UnsupportedMediaType):
        return 415
    if isinstance(err, InvalidArgument):
        return 400
    if isinstance(err, NotFound):
        return 404
    if isinstance(err, NotReady):
        return 409
    return 500


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, err: CatalogError):
    status = status_for(err)
    if status == 500:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, err)
        return JSONResponse({"detail": "internal error"}, status_code=500)
    logger.info("%s on %s %s: %s", type(err).__name__, request.method, request.url.path, err)
    return JSONResponse({"detail": str(err)}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, err: RequestValidationError):
    return JSONResponse({"detail": jsonable_encoder(err.errors())}, status_code=400)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

class MovieUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


router = APIRouter(prefix="/api/v1")


@router.get("/health")
def health():
    return {"ok": True, "time": time.time(), "pending_previews": get_service().pending_previews()}


@router.post("/movie", response_class=PlainTextResponse)
def add_movie(movie: Movie):
    return get_service().add_movie(movie)


@router.get("/movie", response_model=CatalogEntry)
def get_movie(id: str = Query(...)):
    return get_service().get_movie(id)


@router.patch("/movie", response_model=CatalogEntry)
def update_movie(payload: MovieUpdate, id: str = Query(...)):
    return get_service().update_movie(id, payload.title, payload.description, payload.tags)


@router.delete("/movie")
def delete_movie(id: str = Query(...)):
    get_service().remove_movie(id)
    return {"ok": True}


@router.get("/movie/search")
def search_movies(
    sorting_field: SortField = Query(SortField.CREATED_AT),
    sorting_order: SortOrder = Query(SortOrder.DESCENDING),
    title: Optional[str] = Query(None),
    tags: List[str] = Query([]),
    start_index: Optional[int] = Query(None, ge=0),
    num_results: Optional[int] = Query(None, ge=1),
):
    query = SearchQuery(
        sort_field=sorting_field,
        sort_order=sorting_order,
        title_pattern=title,
        tags=tags,
        offset=start_index,
        limit=num_results,
    )
    return get_service().search(query)


@router.get("/movie/tags")
def tag_counts():
    return [[tag, count] for tag, count in get_service().tag_counts()]


@router.post("/movie/file")
def upload_movie(id: str = Query(...), file: UploadFile = File(...)):
    info = get_service().upload_media(id, file.filename, file.content_type, file.file)
    return info


@router.get("/movie/file")
def download_movie(id: str = Query(...)):
    info, reader = get_service().open_media(id)
    headers = {"Content-Length": str(reader.size)}
    return StreamingResponse(reader.iter_chunks(), media_type=info.mime_type, headers=headers)


@router.post("/movie/preview")
def upload_preview(id: str = Query(...), file: UploadFile = File(...)):
    return get_service().upload_preview(id, file.filename, file.content_type, file.file)


@router.get("/movie/preview")
def download_preview(id: str = Query(...)):
    info, reader = get_service().open_preview(id)
    headers = {"Content-Length": str(reader.size)}
    return StreamingResponse(reader.iter_chunks(), media_type=info.mime_type, headers=headers)


app.include_router(router)


# Run: python mediadb.py serve  (or uvicorn api:app)
if __name__ == "__main__":  # pragma: no cover
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3030)
