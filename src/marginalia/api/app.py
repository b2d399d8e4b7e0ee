"""FastAPI application for the marginalia local JSON API."""

import secrets
from contextlib import asynccontextmanager
from datetime import date
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .. import __version__
from ..core.coordinator import DrainLoop
from ..core.errors import NoteNotFound, StoreIOFailure, TemplateError, TemplateNotFound
from ..core.model import Note, ResolvedLink, Template


class NoteCreate(BaseModel):
    title: str
    body: str = ""
    template: str | None = None


class NoteUpdate(BaseModel):
    title: str | None = None
    body: str | None = None


class ResolveRequest(BaseModel):
    target: str


class TemplateCreate(BaseModel):
    name: str
    content: str = ""
    description: str = ""


class TemplateUpdate(BaseModel):
    name: str | None = None
    content: str | None = None
    description: str | None = None


def _template_json(template: Template) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "content": template.content,
        "is_default": template.is_default,
    }


def _note_json(note: Note) -> dict[str, Any]:
    return {
        "id": note.id,
        "title": note.title,
        "kind": note.kind.value,
        "date": note.date_key,
        "created": note.created_at.isoformat() if note.created_at else None,
        "updated": note.updated_at.isoformat() if note.updated_at else None,
        "body": note.body,
    }


def _link_json(link: ResolvedLink) -> dict[str, Any]:
    return {
        "target": link.target_note_id,
        "raw_target": link.raw_target,
        "dangling": link.dangling,
    }


def create_app(
    runtime: Any,
    token: str | None = None,
    enable_cors: bool = False,
    drain_interval: float | None = 0.1,
) -> FastAPI:
    """
    Create FastAPI application with runtime injected.

    Args:
        runtime: Runtime instance with a bootstrapped coordinator
        token: Bearer token for authentication (None to disable auth)
        enable_cors: Enable CORS middleware
        drain_interval: Seconds between background drains (None: only POST /flush)

    Returns:
        FastAPI application instance
    """
    coordinator = runtime.coordinator

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = None
        if drain_interval is not None:
            loop = DrainLoop(coordinator, drain_interval)
            loop.start()
        try:
            yield
        finally:
            if loop is not None:
                loop.stop()

    app = FastAPI(
        title="Marginalia API",
        description="Local JSON API for the marginalia note graph",
        version=__version__,
        docs_url="/docs" if token is None else None,
        redoc_url="/redoc" if token is None else None,
        lifespan=lifespan,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(NoteNotFound)
    async def not_found(request: Request, exc: NoteNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StoreIOFailure)
    async def store_failure(request: Request, exc: StoreIOFailure) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(TemplateNotFound)
    async def template_not_found(request: Request, exc: TemplateNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(TemplateError)
    async def template_error(request: Request, exc: TemplateError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    # Security setup
    if token:
        security_scheme = HTTPBearer(auto_error=False)

        async def verify_token(
            credentials: HTTPAuthorizationCredentials | None = Security(security_scheme),  # noqa: B008
        ) -> None:
            """Verify bearer token."""
            if credentials is None or credentials.credentials != token:
                raise HTTPException(status_code=401, detail="Invalid or missing token")
    else:

        async def verify_token() -> None:
            """No-op when auth is disabled."""
            return None

    @app.get("/health")
    async def health(auth: None = Depends(verify_token)) -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "notes": len(coordinator.catalog),
            "dirty": len(coordinator.dirty_ids()),
            "pending": len(coordinator.pending()),
        }

    @app.get("/notes")
    def list_notes(auth: None = Depends(verify_token)) -> list[dict[str, Any]]:
        return [
            {"id": m.id, "title": m.title, "kind": m.kind.value, "date": m.date_key}
            for m in coordinator.catalog.all()
        ]

    @app.post("/notes", status_code=201)
    def create_note(payload: NoteCreate, auth: None = Depends(verify_token)) -> dict[str, Any]:
        try:
            note = coordinator.create_note(payload.title, payload.body, template=payload.template)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return _note_json(note)

    @app.get("/notes/{note_id}")
    def get_note(note_id: str, auth: None = Depends(verify_token)) -> dict[str, Any]:
        """Get note metadata and body."""
        note = coordinator.get_note(note_id)
        out = _note_json(note)
        out["state"] = coordinator.state(note_id).value
        return out

    @app.put("/notes/{note_id}")
    def update_note(
        note_id: str, payload: NoteUpdate, auth: None = Depends(verify_token)
    ) -> dict[str, Any]:
        try:
            note = coordinator.update_note(note_id, title=payload.title, body=payload.body)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return _note_json(note)

    @app.delete("/notes/{note_id}", status_code=204)
    def delete_note(note_id: str, auth: None = Depends(verify_token)) -> None:
        coordinator.delete_note(note_id)

    @app.get("/notes/{note_id}/links")
    def outbound(note_id: str, auth: None = Depends(verify_token)) -> list[dict[str, Any]]:
        return [_link_json(link) for link in coordinator.get_outbound_links(note_id)]

    @app.get("/notes/{note_id}/backlinks")
    def backlinks(
        note_id: str,
        context: bool = Query(True, description="Include text around each link"),
        auth: None = Depends(verify_token),
    ) -> list[dict[str, Any]]:
        """Get incoming links, dangling ones included."""
        return [
            {
                "source": b.source_note_id,
                "title": b.source_title,
                "raw_target": b.raw_target,
                "dangling": b.dangling,
                "context": b.context,
            }
            for b in coordinator.get_backlinks(note_id, context=context)
        ]

    @app.get("/resolve")
    def resolve(
        target: str = Query(..., description="Link text, as inside [[...]]"),
        auth: None = Depends(verify_token),
    ) -> dict[str, Any]:
        """Preview: find the note a link points at, never creating one."""
        if not target.strip():
            raise HTTPException(status_code=400, detail="Empty link target")
        nid = coordinator.resolve_link_click(target, create=False)
        if nid is None:
            raise HTTPException(status_code=404, detail=f"No note titled {target!r}")
        return {"id": nid}

    @app.post("/resolve")
    def resolve_or_create(
        payload: ResolveRequest, auth: None = Depends(verify_token)
    ) -> dict[str, Any]:
        """Click: find the note a link points at, creating it when missing."""
        if not payload.target.strip():
            raise HTTPException(status_code=400, detail="Empty link target")
        return {"id": coordinator.resolve_link_click(payload.target, create=True)}

    @app.get("/daily/{day}")
    def daily(day: date, auth: None = Depends(verify_token)) -> dict[str, Any]:
        note = runtime.daily.find_daily(day)
        if note is None:
            raise HTTPException(status_code=404, detail=f"No daily note for {day.isoformat()}")
        return _note_json(note)

    @app.post("/daily/{day}")
    def open_daily(day: date, auth: None = Depends(verify_token)) -> dict[str, Any]:
        """Get or create the daily note of a date."""
        return _note_json(runtime.daily.get_or_create_daily(day))

    @app.get("/templates")
    def list_templates(auth: None = Depends(verify_token)) -> list[dict[str, Any]]:
        return [_template_json(t) for t in runtime.templates.list()]

    @app.post("/templates", status_code=201)
    def save_template(
        payload: TemplateCreate, auth: None = Depends(verify_token)
    ) -> dict[str, Any]:
        return _template_json(
            runtime.templates.save(payload.name, payload.content, payload.description)
        )

    @app.get("/templates/{template_id}")
    def get_template(template_id: str, auth: None = Depends(verify_token)) -> dict[str, Any]:
        return _template_json(runtime.templates.get(template_id))

    @app.put("/templates/{template_id}")
    def update_template(
        template_id: str, payload: TemplateUpdate, auth: None = Depends(verify_token)
    ) -> dict[str, Any]:
        template = runtime.templates.update(
            template_id,
            name=payload.name,
            content=payload.content,
            description=payload.description,
        )
        return _template_json(template)

    @app.delete("/templates/{template_id}", status_code=204)
    def delete_template(template_id: str, auth: None = Depends(verify_token)) -> None:
        runtime.templates.delete(template_id)

    @app.get("/pending")
    def pending(auth: None = Depends(verify_token)) -> dict[str, str]:
        """Notes whose links could not be resolved yet."""
        return coordinator.pending()

    @app.post("/flush")
    def flush(auth: None = Depends(verify_token)) -> dict[str, int]:
        return coordinator.flush()

    return app


def generate_token() -> str:
    """Generate a random bearer token."""
    return secrets.token_urlsafe(32)
