"""FastAPI OPDS server for Shelf.

Exposes:
- GET /catalog                        (root navigation feed)
- GET /catalog/directory/{entry_id}   (directory feed)
- GET /catalog/file/{entry_id}        (whole archive)
- GET /catalog/file/{entry_id}/{page} (one page image, OPDS-PSE)
- GET /catalog/thumbnail/{entry_id}   (first page of the representative file)

Handlers are plain ``def`` routes, so Starlette runs each one in its
threadpool and a slow page render never blocks other requests.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import FileResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from .archive import read_page
from .catalog import Catalog, CatalogHolder
from .config import RenderConfig, ShelfConfig
from .errors import NotFoundError, ShelfError
from .logging_config import get_logger
from .models import Directory, File, PageImage, ROOT_ID
from .thumbnails import get_thumbnail

logger = get_logger(__name__)

NAVIGATION_TYPE = "application/atom+xml;profile=opds-catalog;kind=navigation"
REL_THUMBNAIL = "http://opds-spec.org/image/thumbnail"
REL_IMAGE = "http://opds-spec.org/image"
REL_ACQUISITION = "http://opds-spec.org/acquisition"
REL_PSE_STREAM = "http://vaemendis.net/opds-pse/stream"


class FeedEntry(BaseModel):
    """One child row in a directory feed."""

    id: str
    name: str
    updated_at: datetime
    image_type: Optional[str] = None
    is_directory: bool
    # directories
    issue_count: Optional[int] = None
    # files
    size: Optional[int] = None
    media_type: Optional[str] = None
    page_count: Optional[int] = None


class DirectoryFeed(BaseModel):
    id: str
    name: str
    updated_at: datetime
    entries: List[FeedEntry]


def build_directory_feed(directory: Directory) -> DirectoryFeed:
    """Collect exactly the fields a directory feed needs."""
    entries = []
    for child in directory.children:
        if isinstance(child, Directory):
            entries.append(
                FeedEntry(
                    id=child.id,
                    name=child.name,
                    updated_at=child.updated_at,
                    image_type=child.image_type,
                    is_directory=True,
                    issue_count=child.file_count,
                )
            )
        elif isinstance(child, File):
            entries.append(
                FeedEntry(
                    id=child.id,
                    name=child.name,
                    updated_at=child.updated_at,
                    image_type=child.image_type,
                    is_directory=False,
                    size=child.size,
                    media_type=child.media_type,
                    page_count=child.page_count,
                )
            )
    return DirectoryFeed(
        id=directory.id,
        name=directory.name,
        updated_at=directory.updated_at,
        entries=entries,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the first client to connect, with full URL for debugging."""

    async def dispatch(self, request, call_next):
        if not getattr(request.app.state, "logged_first_request", False):
            request_logger = logging.getLogger("shelf.request")
            user_agent = request.headers.get("user-agent", "")
            client_name = user_agent.split("/")[0] if user_agent else "unknown"
            client_ip = request.client.host if request.client else "unknown"
            request_logger.info(
                'client_connected="%s" ip="%s" url="%s %s" ua="%s"'
                % (client_name, client_ip, request.method, str(request.url), user_agent)
            )
            request.app.state.logged_first_request = True
        return await call_next(request)


def _get_lan_ip() -> Optional[str]:
    """Return this machine's LAN IP (for the OPDS URL when binding to 0.0.0.0)."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return None


@asynccontextmanager
async def _lifespan(app: FastAPI):
    async def _print_startup_messages():
        await asyncio.sleep(0.1)
        logger.info("Started server process [" + str(os.getpid()) + "]")
        logger.info("Application startup complete. (Press CTRL+C to quit)")
        opds_url = getattr(app.state, "opds_url_public", None)
        if opds_url:
            logger.info("OPDS catalog available at: " + opds_url)
        if getattr(app.state, "monitoring_enabled", False):
            logger.info("File monitoring enabled")

    asyncio.create_task(_print_startup_messages())
    yield


app = FastAPI(title="Shelf OPDS", lifespan=_lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.state.catalog_holder = CatalogHolder()
app.state.library_name = "Shelf Library"
app.state.render = RenderConfig()


def configure_app(
    holder: CatalogHolder,
    library_name: str = "Shelf Library",
    render: Optional[RenderConfig] = None,
) -> FastAPI:
    """Point the app at a catalog holder and its library settings."""
    app.state.catalog_holder = holder
    app.state.library_name = library_name
    app.state.render = render or RenderConfig()
    return app


@app.get("/favicon.ico", include_in_schema=False)
def favicon() -> Response:
    return Response(status_code=204)


def _catalog(request: Request) -> Catalog:
    try:
        return request.app.state.catalog_holder.get()
    except RuntimeError:
        raise HTTPException(status_code=503, detail="Catalog not ready")


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="seconds")
        .replace("+00:00", "Z")
    )


def _escape_xml(s: str) -> str:
    """Escape &, <, >, ", ' for XML text/attributes."""
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _root_href() -> str:
    return "/catalog/"


def _directory_href(entry_id: str) -> str:
    return f"/catalog/directory/{entry_id}"


def _file_href(entry_id: str) -> str:
    return f"/catalog/file/{entry_id}"


def _page_href(entry_id: str) -> str:
    return f"/catalog/file/{entry_id}/{{pageNumber}}"


def _thumbnail_href(entry_id: str) -> str:
    return f"/catalog/thumbnail/{entry_id}"


def _absolute_href(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + path


def _entry_xml(entry: FeedEntry, base_url: str) -> str:
    image_type = _escape_xml(entry.image_type or "image/jpeg")
    thumb_href = _absolute_href(base_url, _thumbnail_href(entry.id))
    links = [
        f'    <link rel="{REL_THUMBNAIL}" href="{thumb_href}" type="{image_type}" />',
        f'    <link rel="{REL_IMAGE}" href="{thumb_href}" type="{image_type}" />',
    ]
    content = ""
    if entry.is_directory:
        links.append(
            f'    <link rel="subsection"'
            f' href="{_absolute_href(base_url, _directory_href(entry.id))}"'
            f' type="{NAVIGATION_TYPE}" />'
        )
        content = f'\n    <content type="text">{entry.issue_count} issues</content>'
    else:
        links.append(
            f'    <link rel="{REL_ACQUISITION}"'
            f' href="{_absolute_href(base_url, _file_href(entry.id))}"'
            f' type="{entry.media_type}" length="{entry.size}" />'
        )
        links.append(
            f'    <link rel="{REL_PSE_STREAM}"'
            f' href="{_absolute_href(base_url, _page_href(entry.id))}"'
            f' type="{image_type}" pse:count="{entry.page_count}" />'
        )
    links_str = "\n".join(links)
    return f"""
  <entry>
    <title>{_escape_xml(entry.name)}</title>
    <id>urn:shelf:{entry.id}</id>
    <updated>{_format_ts(entry.updated_at)}</updated>
{links_str}{content}
  </entry>"""


def render_feed_xml(feed: DirectoryFeed, base_url: str, library_name: str) -> str:
    """Serialize a directory feed as an OPDS (Atom + PSE) document."""
    title = library_name if feed.id == ROOT_ID else feed.name
    self_href = _absolute_href(
        base_url, _root_href() if feed.id == ROOT_ID else _directory_href(feed.id)
    )
    start_href = _absolute_href(base_url, _root_href())
    entries = "".join(_entry_xml(entry, base_url) for entry in feed.entries)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<feed xmlns="http://www.w3.org/2005/Atom"'
        ' xmlns:opds="http://opds-spec.org/2010/catalog"'
        ' xmlns:dc="http://purl.org/dc/terms/"'
        ' xmlns:pse="http://vaemendis.net/opds-pse/ns">\n'
        f"  <id>urn:shelf:{feed.id}</id>\n"
        f"  <title>{_escape_xml(title)}</title>\n"
        f"  <updated>{_format_ts(feed.updated_at)}</updated>\n"
        f"  <author><name>{_escape_xml(library_name)}</name></author>\n"
        f"  <link rel=\"self\" href=\"{self_href}\" type=\"{NAVIGATION_TYPE}\" />\n"
        f"  <link rel=\"start\" href=\"{start_href}\" type=\"{NAVIGATION_TYPE}\" />\n"
        f"{entries}\n"
        "</feed>"
    )


def _xml_response(xml: str) -> Response:
    return Response(
        content=xml,
        media_type="application/atom+xml;profile=opds-catalog",
    )


def _directory_response(request: Request, entry_id: str) -> Response:
    catalog = _catalog(request)
    try:
        directory = catalog.get_directory(entry_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Directory not found")
    feed = build_directory_feed(directory)
    xml = render_feed_xml(feed, str(request.base_url), request.app.state.library_name)
    return _xml_response(xml)


def _image_response(load: Callable[[], PageImage], context: str) -> Response:
    try:
        image = load()
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (ShelfError, OSError) as exc:
        logger.error(f"✗ {context}: {exc!r} (cause: {exc.__cause__!r})")
        raise HTTPException(status_code=500, detail="Unable to read archive")
    return Response(content=image.data, media_type=image.mime_type)


@app.get("/catalog")
def catalog_root_no_slash(request: Request) -> Response:
    return catalog_root(request)


@app.get("/catalog/")
def catalog_root(request: Request) -> Response:
    """Navigation feed for the library root."""
    return _directory_response(request, ROOT_ID)


@app.get("/catalog/directory/{entry_id}")
def catalog_directory(entry_id: str, request: Request) -> Response:
    """Feed for one directory: subdirectories first, then files."""
    return _directory_response(request, entry_id)


@app.get("/catalog/file/{entry_id}")
def download_file(entry_id: str, request: Request):
    """Return the original archive."""
    catalog = _catalog(request)
    try:
        file_entry = catalog.get_file(entry_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    if not file_entry.path.exists():
        logger.error(f"✗ File missing on disk: {file_entry.path}")
        raise HTTPException(status_code=404, detail="File missing on disk")

    return FileResponse(
        file_entry.path,
        media_type=file_entry.media_type,
        filename=file_entry.path.name,
    )


@app.get("/catalog/file/{entry_id}/{page}")
def file_page(entry_id: str, page: int, request: Request) -> Response:
    """Return a single page image (zero-based)."""
    catalog = _catalog(request)
    try:
        file_entry = catalog.get_file(entry_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    render = request.app.state.render
    return _image_response(
        lambda: read_page(file_entry.path, file_entry.archive_format, page, render),
        f"page {page} of {file_entry.path}",
    )


@app.get("/catalog/thumbnail/{entry_id}")
def thumbnail(entry_id: str, request: Request) -> Response:
    """Return the first page of the entry's representative file."""
    catalog = _catalog(request)
    try:
        entry = catalog.lookup(entry_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")

    render = request.app.state.render
    return _image_response(
        lambda: get_thumbnail(entry, render),
        f"thumbnail for {entry.path}",
    )


class _AccessLogFilter(logging.Filter):
    """Hide access log lines for successful requests; keep 4xx/5xx visible."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        return not any(
            pattern in msg
            for pattern in (' 200 OK', '" 200', ' 204 No Content', '" 204', ' 304 Not Modified', '" 304')
        )


class _UvicornStartupFilter(logging.Filter):
    """Suppress uvicorn startup messages; we print our own in lifespan."""

    _PATTERNS = (
        "Started server process",
        "Waiting for application startup",
        "Application startup complete",
        "running on",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("shelf"):
            return True
        try:
            msg = record.getMessage()
        except Exception:
            return True
        return not any(pattern in msg for pattern in self._PATTERNS)


def run_server(
    config: ShelfConfig,
    holder: CatalogHolder,
    host: Optional[str] = None,
    port: Optional[int] = None,
    monitoring_enabled: bool = False,
) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    configure_app(holder, config.library.name, config.render)
    app.state.monitoring_enabled = monitoring_enabled

    # Show the LAN address when binding to 0.0.0.0 so clients know where to connect
    if effective_host == "0.0.0.0":
        lan_ip = _get_lan_ip()
        opds_host = lan_ip if lan_ip else "0.0.0.0"
    else:
        opds_host = effective_host
    app.state.opds_url_public = f"http://{opds_host}:{effective_port}/catalog/"

    startup_filter = _UvicornStartupFilter()
    for name in ("uvicorn", "uvicorn.error", "uvicorn.lifespan"):
        logging.getLogger(name).addFilter(startup_filter)
    logging.getLogger("uvicorn.access").addFilter(_AccessLogFilter())

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
