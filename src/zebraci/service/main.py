from __future__ import annotations

import hashlib
import hmac
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from ..dispatch import GcloudBuildService
from ..errors import PipelineError
from ..runner import load_pipeline
from ..trigger import derive_substitution_identifier, event_from_payload
from .db import make_engine, make_sessionmaker
from .dispatcher import Dispatcher
from .models import Base, Run
from .settings import ServiceSettings

# -------------------- Schemas --------------------

class RepositoryInfo(BaseModel):
    full_name: str
    clone_url: Optional[str] = None


class PushPayload(BaseModel):
    ref: str
    after: Optional[str] = None
    deleted: bool = False
    repository: RepositoryInfo


class WebhookResponse(BaseModel):
    run_id: str
    identifier: str
    collides_with: list[str] = Field(default_factory=list)


class RunResponse(BaseModel):
    id: str
    repository: str
    ref: str
    sha: Optional[str]
    identifier: str
    status: str
    build_id: Optional[str]
    error: Optional[str]
    created_at: datetime


def _run_response(run: Run) -> RunResponse:
    return RunResponse(
        id=str(run.id),
        repository=run.repository,
        ref=run.ref,
        sha=run.sha,
        identifier=run.identifier,
        status=run.status,
        build_id=run.build_id,
        error=run.error,
        created_at=run.created_at,
    )


def signature_valid(secret: str, body: bytes, header: Optional[str]) -> bool:
    """GitHub X-Hub-Signature-256: 'sha256=' + HMAC-SHA256(secret, body)."""
    if not header:
        return False
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header)


# -------------------- App --------------------

def create_app(
    settings: Optional[ServiceSettings] = None,
    dispatcher: Optional[Dispatcher] = None,
) -> FastAPI:
    settings = settings or ServiceSettings.from_env()
    if dispatcher is None:
        config = load_pipeline(settings.pipeline_file)
        dispatcher = Dispatcher(config, GcloudBuildService(config.dispatch), settings.work_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(settings.database_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        app.state.sessions = make_sessionmaker(engine)
        yield
        await engine.dispose()

    app = FastAPI(title="zebra-ci push dispatcher", lifespan=lifespan)
    app.state.dispatcher = dispatcher

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.post("/webhooks/github", response_model=WebhookResponse)
    async def github_webhook(
        request: Request,
        background: BackgroundTasks,
        x_github_event: str = Header(default=""),
        x_hub_signature_256: Optional[str] = Header(default=None),
    ):
        body = await request.body()
        if settings.webhook_secret and not signature_valid(settings.webhook_secret, body, x_hub_signature_256):
            raise HTTPException(status_code=401, detail="Invalid signature")

        if x_github_event == "ping":
            return JSONResponse({"ok": True})
        if x_github_event != "push":
            return JSONResponse({"status": "ignored", "event": x_github_event}, status_code=202)

        try:
            payload = PushPayload.model_validate_json(body)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors(include_url=False))
        if payload.deleted:
            return JSONResponse({"status": "ignored", "reason": "branch deleted"}, status_code=202)

        try:
            event = event_from_payload(payload.model_dump())
            identifier = derive_substitution_identifier(event, dispatcher.config.dispatch.branch_mode)
        except PipelineError as e:
            raise HTTPException(status_code=422, detail=e.message)

        sessions = request.app.state.sessions
        async with sessions() as s:
            async with s.begin():
                q = (
                    sa.select(Run.ref)
                    .where(
                        Run.identifier == identifier,
                        Run.repository == event.repository,
                        Run.ref != event.ref,
                    )
                    .distinct()
                )
                collides_with = sorted((await s.execute(q)).scalars().all())

                run = Run(
                    repository=event.repository,
                    ref=event.ref,
                    sha=event.sha,
                    identifier=identifier,
                    status="queued",
                )
                s.add(run)
                await s.flush()
                run_id = run.id

        clone_url = payload.repository.clone_url or f"https://github.com/{event.repository}.git"
        background.add_task(dispatcher.run, sessions, run_id, event, clone_url)
        return WebhookResponse(run_id=str(run_id), identifier=identifier, collides_with=collides_with)

    @app.get("/runs/{run_id}", response_model=RunResponse)
    async def get_run(run_id: str, request: Request):
        try:
            key = uuid.UUID(run_id)
        except ValueError:
            raise HTTPException(status_code=404, detail="Run not found")
        async with request.app.state.sessions() as s:
            run = await s.get(Run, key)
            if not run:
                raise HTTPException(status_code=404, detail="Run not found")
            return _run_response(run)

    @app.get("/runs", response_model=list[RunResponse])
    async def list_runs(request: Request, identifier: Optional[str] = None, limit: int = 50):
        q = sa.select(Run).order_by(Run.created_at.desc()).limit(max(1, min(limit, 500)))
        if identifier:
            q = q.where(Run.identifier == identifier.lower())
        async with request.app.state.sessions() as s:
            runs = (await s.execute(q)).scalars().all()
            return [_run_response(r) for r in runs]

    return app
