"""FastAPI-based web interface for the tool wear tracker."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.templating import Jinja2Templates
from sse_starlette.sse import EventSourceResponse

from ..config import Settings, parse_delimiter
from ..demo import ensure_demo_data
from ..domain import User, to_payload
from ..events import EventBroadcaster
from ..reports import ExportKind, ReportPeriod, export_filename
from ..repository import (
    DuplicateRecordError,
    InMemoryStore,
    RecordNotFoundError,
    ReferentialIntegrityError,
)
from ..security import AuthenticationError, TokenIssuer
from ..services import (
    AlertOptions,
    DashboardSnapshot,
    FailureRow,
    RecordRow,
    Store,
    ToolTrackingService,
)
from ..storage import ToolwearDatabase
from ..validation import ValidationError
from ..wear import ToolHealth
from .schemas import (
    AlertOptionsUpdate,
    FailureCreate,
    LoginRequest,
    RecordCreate,
    RegisterRequest,
    ToolCreate,
    ToolUpdate,
)

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

bearer_scheme = HTTPBearer(auto_error=False)


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    seed_demo = False
    if store is None:
        if settings.in_memory:
            store = InMemoryStore()
            seed_demo = True
        else:
            store = ToolwearDatabase(settings.database_path)
    store.initialize()

    broadcaster = EventBroadcaster()
    service = ToolTrackingService(
        store,
        tokens=TokenIssuer(settings.jwt_secret, ttl_hours=settings.token_ttl_hours),
        broadcaster=broadcaster,
        alert_options=AlertOptions(
            warning_threshold=settings.warning_threshold,
            record_alert_threshold=settings.record_alert_threshold,
            record_row_threshold=settings.record_row_threshold,
        ),
    )
    if seed_demo:
        ensure_demo_data(service)
    logger.info("Using %s store", store.kind)

    app = FastAPI(title="Tool Wear Tracker")
    app.state.settings = settings
    app.state.service = service
    app.state.broadcaster = broadcaster
    app.state.store = store

    register_exception_handlers(app)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        store.close()

    def get_service(request: Request) -> ToolTrackingService:
        return request.app.state.service

    async def current_user(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> User:
        if credentials is None or not credentials.credentials:
            raise AuthenticationError("Token not provided")
        return get_service(request).user_from_token(credentials.credentials)

    @app.get("/")
    async def dashboard_page(request: Request):
        service = get_service(request)
        snapshot = service.dashboard()
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {
                "snapshot": snapshot,
                "tools": service.list_tools(),
                "warning_threshold": service.alert_options.warning_threshold,
            },
        )

    @app.get("/api/health")
    async def health(request: Request):
        return {"status": "ok", "store": get_service(request).store.kind}

    @app.api_route("/api/initialize-db", methods=["GET", "POST"])
    async def initialize_db(
        request: Request,
        force: bool = False,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ):
        service = get_service(request)
        if force:
            if credentials is None:
                raise AuthenticationError("Token not provided")
            user = service.user_from_token(credentials.credentials)
            logger.warning("User %s requested a forced schema reset", user.id)
        service.initialize_store(drop_existing=force)
        return {"message": "Database initialized", "dropped": force}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    @app.post("/api/register", status_code=201)
    async def register(payload: RegisterRequest, request: Request):
        service = get_service(request)
        user = service.register_user(payload.name, payload.cpf, payload.password)
        return {"user": service.user_payload(user), "token": service.issue_token(user)}

    @app.post("/api/login")
    async def login(payload: LoginRequest, request: Request):
        service = get_service(request)
        user = service.authenticate(payload.cpf, payload.password)
        return {"user": service.user_payload(user), "token": service.issue_token(user)}

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------
    @app.get("/api/tools")
    async def list_tools(request: Request):
        return [to_payload(tool) for tool in get_service(request).list_tools()]

    @app.get("/api/tools/{tool_id}")
    async def get_tool(tool_id: str, request: Request):
        return to_payload(get_service(request).get_tool(tool_id))

    @app.post("/api/tools", status_code=201)
    async def create_tool(
        payload: ToolCreate, request: Request, user: User = Depends(current_user)
    ):
        attributes = payload.model_dump(exclude_none=True)
        code = attributes.pop("code")
        description = attributes.pop("description")
        tool = get_service(request).create_tool(code, description, **attributes)
        return to_payload(tool)

    @app.put("/api/tools/{tool_id}")
    async def update_tool(
        tool_id: str, payload: ToolUpdate, request: Request, user: User = Depends(current_user)
    ):
        changes = payload.model_dump(exclude_unset=True)
        return to_payload(get_service(request).update_tool(tool_id, **changes))

    @app.delete("/api/tools/{tool_id}")
    async def delete_tool(tool_id: str, request: Request, user: User = Depends(current_user)):
        get_service(request).delete_tool(tool_id)
        return {"message": "Tool deleted", "id": tool_id}

    # ------------------------------------------------------------------
    # Production records
    # ------------------------------------------------------------------
    @app.get("/api/records")
    async def list_records(
        request: Request,
        id: Optional[str] = None,
        machine: Optional[str] = None,
        tool_id: Optional[str] = None,
        threshold: Optional[int] = Query(default=None, ge=0),
    ):
        rows = get_service(request).record_rows(
            threshold=threshold, record_id=id, machine=machine, tool_id=tool_id
        )
        return [record_row_payload(row) for row in rows]

    @app.post("/api/records", status_code=201)
    async def create_record(
        payload: RecordCreate, request: Request, user: User = Depends(current_user)
    ):
        record = get_service(request).record_production(
            payload.tool_id,
            payload.machine,
            payload.pieces,
            entry_datetime=payload.entry_datetime,
            exit_datetime=payload.exit_datetime,
        )
        return to_payload(record)

    @app.delete("/api/records/{record_id}")
    async def delete_record(
        record_id: str, request: Request, user: User = Depends(current_user)
    ):
        get_service(request).delete_record(record_id)
        return {"message": "Record deleted", "id": record_id}

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------
    @app.get("/api/failures")
    async def list_failures(request: Request):
        return [failure_row_payload(row) for row in get_service(request).failure_rows()]

    @app.post("/api/failures", status_code=201)
    async def create_failure(
        payload: FailureCreate, request: Request, user: User = Depends(current_user)
    ):
        details = payload.model_dump()
        tool_id = details.pop("tool_id")
        service = get_service(request)
        failure = service.report_failure(tool_id, operator_id=user.id, **details)
        return failure_row_payload(service.failure_row(failure))

    # ------------------------------------------------------------------
    # Dashboard and reports
    # ------------------------------------------------------------------
    @app.get("/api/dashboard")
    async def dashboard_data(request: Request):
        return dashboard_payload(get_service(request).dashboard())

    @app.get("/api/alert-options")
    async def get_alert_options(request: Request):
        return alert_options_payload(get_service(request).alert_options)

    @app.put("/api/alert-options")
    async def update_alert_options(
        payload: AlertOptionsUpdate, request: Request, user: User = Depends(current_user)
    ):
        options = get_service(request).update_alert_options(**payload.model_dump())
        logger.info("User %s changed alert thresholds", user.id)
        return alert_options_payload(options)

    @app.get("/api/reports/summary")
    async def report_summary(
        request: Request,
        period: str = "day",
        tool_id: Optional[str] = None,
        user: User = Depends(current_user),
    ):
        summary = get_service(request).summary(ReportPeriod.parse(period), tool_id=tool_id)
        return summary.to_dict()

    @app.get("/api/reports/export")
    async def report_export(
        request: Request,
        period: str = "day",
        type: str = "records",
        tool_id: Optional[str] = None,
        delimiter: Optional[str] = None,
        user: User = Depends(current_user),
    ):
        report_period = ReportPeriod.parse(period)
        kind = ExportKind.parse(type)
        separator = request_delimiter(delimiter, request.app.state.settings.csv_delimiter)
        content = get_service(request).export_csv(
            kind, report_period, tool_id=tool_id, delimiter=separator
        )
        filename = export_filename(kind, report_period)
        return Response(
            content="\ufeff" + content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------
    @app.get("/api/stream")
    async def stream(request: Request):
        broadcaster: EventBroadcaster = request.app.state.broadcaster
        subscription = broadcaster.subscribe()

        async def event_source():
            try:
                async for event in subscription.events():
                    yield event.to_sse()
            finally:
                broadcaster.unsubscribe(subscription)
                subscription.close(wake_consumer=False)

        return EventSourceResponse(event_source())

    return app


def register_exception_handlers(app: FastAPI) -> None:
    def error(status_code: int, message: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": message})

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in problem['loc'][1:]) or 'body'}: {problem['msg']}"
            for problem in exc.errors()
        )
        return error(400, problems or "Invalid request")

    @app.exception_handler(DuplicateRecordError)
    async def duplicate_error(request: Request, exc: DuplicateRecordError):
        return error(400, str(exc))

    @app.exception_handler(RecordNotFoundError)
    async def not_found_error(request: Request, exc: RecordNotFoundError):
        return error(404, str(exc))

    @app.exception_handler(ReferentialIntegrityError)
    async def integrity_error(request: Request, exc: ReferentialIntegrityError):
        return error(409, str(exc))

    @app.exception_handler(AuthenticationError)
    async def authentication_error(request: Request, exc: AuthenticationError):
        return error(401, str(exc))

    @app.exception_handler(sqlite3.Error)
    async def database_error(request: Request, exc: sqlite3.Error):
        logger.error("Database error while serving %s", request.url.path, exc_info=exc)
        return error(500, "Database error")


def request_delimiter(value: Optional[str], default: str) -> str:
    if value is None:
        return default
    try:
        return parse_delimiter(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def record_row_payload(row: RecordRow) -> Dict[str, Any]:
    payload = to_payload(row.record)
    payload.update(
        {
            "tool_code": row.tool.code if row.tool else None,
            "tool_description": row.tool.description if row.tool else None,
            "accumulated": row.accumulated,
            "row_status": row.row_status,
        }
    )
    return payload


def failure_row_payload(row: FailureRow) -> Dict[str, Any]:
    payload = to_payload(row.failure)
    payload.update(
        {
            "tool_code": row.tool_code,
            "tool_description": row.tool_description,
            "operator_name": row.operator_name,
        }
    )
    return payload


def alert_options_payload(options: AlertOptions) -> Dict[str, Any]:
    return {
        "warning_threshold": options.warning_threshold,
        "record_alert_threshold": options.record_alert_threshold,
        "record_row_threshold": options.record_row_threshold,
    }


def tool_health_payload(health: ToolHealth) -> Dict[str, Any]:
    return {
        "tool_id": health.tool_id,
        "code": health.code,
        "description": health.description,
        "accumulated": health.accumulated,
        "severity": health.severity.value,
        "state": health.state,
        "last_failure_at": health.last_failure_at.isoformat() if health.last_failure_at else None,
    }


def dashboard_payload(snapshot: DashboardSnapshot) -> Dict[str, Any]:
    return {
        "generated_at": snapshot.generated_at.isoformat(),
        "tools": [tool_health_payload(entry) for entry in snapshot.tools],
        "stats": {
            "total_records": snapshot.total_records,
            "total_pieces": snapshot.total_pieces,
            "today_records": snapshot.today_records,
            "pieces_by_tool": snapshot.pieces_by_tool,
            "recent_records": [to_payload(record) for record in snapshot.recent_records],
        },
        "alerts": [
            {
                "severity": alert.severity.value,
                "message": alert.message,
                "tool_id": alert.tool_id,
                "record_id": alert.record_id,
                "at": alert.at.isoformat(),
            }
            for alert in snapshot.alerts
        ],
    }


__all__ = ["create_app"]
