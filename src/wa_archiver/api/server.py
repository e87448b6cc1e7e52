"""FastAPI REST surface over the archive, served by uvicorn."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from wa_archiver import __version__
from wa_archiver.config import ApiConfig
from wa_archiver.core.types import ConnectionStatus, SortOrder
from wa_archiver.exceptions import EmailNotConfiguredError
from wa_archiver.log import get_logger
from wa_archiver.services.base import Service
from wa_archiver.services.error_log import ErrorLog
from wa_archiver.services.event_log import EventLog
from wa_archiver.services.export import ExportService
from wa_archiver.services.reports import ReportService
from wa_archiver.storage.message_repo import MAX_PAGE_SIZE, MessageRepository
from wa_archiver.storage.models import MessageFilter
from wa_archiver.whatsapp.manager import SessionManager

logger = get_logger(__name__)


@dataclass
class ApiContext:
    messages: MessageRepository
    export: ExportService
    reports: ReportService
    session: SessionManager
    errors: ErrorLog
    events: EventLog
    tz: tzinfo


class SendReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: Optional[str] = None
    include_all: bool = Field(default=False, alias="includeAll")


class SendConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    remote_jid: str = Field(default="", alias="remoteJid")
    search_text: Optional[str] = Field(default=None, alias="searchText")


def _ctx(request: Request) -> ApiContext:
    return request.app.state.ctx


def _ok(data=None, **extra) -> dict:
    body = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": -(-total // limit) if limit else 0,
    }


def _page_args(page: int, limit: int) -> tuple[int, int]:
    return max(1, page), max(1, min(limit, MAX_PAGE_SIZE))


# ── Messages ─────────────────────────────────────────────────────

router = APIRouter(prefix="/api")


@router.get("/health")
async def health(ctx: ApiContext = Depends(_ctx)):
    return _ok(
        status="healthy",
        whatsapp=str(ctx.session.status),
        timestamp=ctx.export.local_now().isoformat(),
    )


@router.get("/conversations")
async def conversations(ctx: ApiContext = Depends(_ctx)):
    return _ok([c.to_dict() for c in await ctx.messages.conversations()])


@router.get("/latest-timestamp")
async def latest_timestamp(ctx: ApiContext = Depends(_ctx)):
    return _ok(timestamp=await ctx.messages.latest_timestamp())


@router.get("/messages")
async def messages(
    ctx: ApiContext = Depends(_ctx),
    since: Optional[int] = Query(None, alias="from"),
    until: Optional[int] = Query(None, alias="to"),
    page: int = Query(1),
    limit: int = Query(50),
    remote_jid: Optional[str] = Query(None, alias="remoteJid"),
    search: Optional[str] = Query(None),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
):
    page, limit = _page_args(page, limit)
    order = SortOrder(sort_order) if sort_order in ("asc", "desc") else None
    result = await ctx.messages.query(
        MessageFilter(
            remote_jid=remote_jid,
            search_text=search,
            since=since,
            until=until,
            page=page,
            limit=limit,
            sort_order=order,
        )
    )
    return _ok(
        [m.to_dict() for m in result.messages],
        pagination=_pagination(result.page, result.limit, result.total),
        sort_order=str(result.sort_order),
    )


@router.get("/export-csv")
async def export_csv(
    ctx: ApiContext = Depends(_ctx),
    since: Optional[int] = Query(None, alias="from"),
    until: Optional[int] = Query(None, alias="to"),
):
    if since is not None and until is not None:
        csv_text = await ctx.export.range_csv(since, until)
    else:
        csv_text = await ctx.export.all_csv()
    filename = f"whatsapp_messages_{ctx.export.today_label()}.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/send-report")
async def send_report(body: SendReportRequest, ctx: ApiContext = Depends(_ctx)):
    recipient = await ctx.reports.send_manual_report(to=body.to, include_all=body.include_all)
    return _ok(message=f"Report sent to {recipient}")


@router.post("/send-conversation")
async def send_conversation(body: SendConversationRequest, ctx: ApiContext = Depends(_ctx)):
    if not body.remote_jid:
        raise HTTPException(status_code=400, detail="remoteJid is required")
    recipient = await ctx.reports.send_conversation(body.remote_jid, body.search_text or None)
    return _ok(message=f"Conversation sent to {recipient}")


# ── WhatsApp session ─────────────────────────────────────────────


@router.get("/whatsapp/status")
async def whatsapp_status(ctx: ApiContext = Depends(_ctx)):
    return _ok(status=str(ctx.session.status), logged_out=ctx.session.logged_out)


@router.get("/whatsapp/qr")
async def whatsapp_qr(ctx: ApiContext = Depends(_ctx)):
    status = ctx.session.status
    if status != ConnectionStatus.QR_READY:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "QR code not available", "status": str(status)},
        )
    qr = ctx.session.get_qr_data_url()
    if not qr:
        raise HTTPException(status_code=400, detail="Failed to generate QR code")
    return _ok(qr=qr)


@router.post("/whatsapp/reset")
async def whatsapp_reset(ctx: ApiContext = Depends(_ctx)):
    await ctx.session.reset_session()
    return _ok(message="Session reset initiated. Scan QR code to reconnect.")


# ── Error and event logs ─────────────────────────────────────────


@router.get("/errors")
async def errors(
    ctx: ApiContext = Depends(_ctx),
    page: int = Query(1),
    limit: int = Query(50),
    error_type: Optional[str] = Query(None),
    since: Optional[str] = Query(None, alias="from"),
    until: Optional[str] = Query(None, alias="to"),
):
    page, limit = _page_args(page, limit)
    items, total = await ctx.errors.list_errors(page, limit, error_type, since, until)
    return _ok([e.to_dict() for e in items], pagination=_pagination(page, limit, total))


@router.get("/errors/types")
async def error_types(ctx: ApiContext = Depends(_ctx)):
    return _ok(await ctx.errors.types())


@router.get("/errors/today")
async def errors_today(ctx: ApiContext = Depends(_ctx)):
    items = await ctx.errors.today(ctx.tz)
    return _ok([e.to_dict() for e in items], count=len(items))


@router.get("/errors/{error_id}")
async def error_by_id(error_id: int, ctx: ApiContext = Depends(_ctx)):
    item = await ctx.errors.get(error_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Error not found")
    return _ok(item.to_dict())


@router.get("/events")
async def events(
    ctx: ApiContext = Depends(_ctx),
    page: int = Query(1),
    limit: int = Query(50),
    event_type: Optional[str] = Query(None),
    remote_jid: Optional[str] = Query(None),
    since: Optional[str] = Query(None, alias="from"),
    until: Optional[str] = Query(None, alias="to"),
):
    page, limit = _page_args(page, limit)
    items, total = await ctx.events.list_events(page, limit, event_type, remote_jid, since, until)
    return _ok([e.to_dict() for e in items], pagination=_pagination(page, limit, total))


@router.get("/events/types")
async def event_types(ctx: ApiContext = Depends(_ctx)):
    return _ok(await ctx.events.types())


@router.get("/events/today")
async def events_today(ctx: ApiContext = Depends(_ctx)):
    items = await ctx.events.today(ctx.tz)
    return _ok([e.to_dict() for e in items], count=len(items))


@router.get("/events/{event_id}")
async def event_by_id(event_id: int, ctx: ApiContext = Depends(_ctx)):
    item = await ctx.events.get(event_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return _ok(item.to_dict())


# ── App factory ──────────────────────────────────────────────────


def create_app(ctx: ApiContext, media_dir: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="wa-archiver", version=__version__)
    app.state.ctx = ctx
    app.include_router(router)

    @app.exception_handler(EmailNotConfiguredError)
    async def _email_not_configured(_request: Request, exc: EmailNotConfiguredError):
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    @app.exception_handler(HTTPException)
    async def _http_error(_request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code, content={"success": False, "error": exc.detail}
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("api_request_failed", path=request.url.path, error=str(exc))
        await ctx.errors.record_exception(
            exc, location="api", context={"path": request.url.path, "method": request.method}
        )
        return JSONResponse(
            status_code=500, content={"success": False, "error": "Internal server error"}
        )

    if media_dir:
        Path(media_dir).mkdir(parents=True, exist_ok=True)
        app.mount("/media", StaticFiles(directory=media_dir), name="media")

    return app


class ApiServer(Service):
    """Runs the REST app on uvicorn inside the application's event loop."""

    def __init__(self, config: ApiConfig, app: FastAPI):
        self._config = config
        self._app = app
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @property
    def service_name(self) -> str:
        return "api"

    async def start(self) -> None:
        server_config = uvicorn.Config(
            self._app,
            host=self._config.host,
            port=self._config.port,
            log_config=None,
            access_log=False,
        )
        self._server = uvicorn.Server(server_config)
        self._task = asyncio.create_task(self._server.serve(), name="api-server")
        logger.info("api_server_started", host=self._config.host, port=self._config.port)

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        await self._task
        self._server = None
        self._task = None
        logger.info("api_server_stopped")

    async def health_check(self) -> bool:
        return self._server is not None and self._server.started
