from __future__ import annotations

import shutil
import uuid
from pathlib import Path
from typing import Callable

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..dispatch import RemoteBuildService, dispatch_push
from ..errors import PipelineError
from ..git_facts.git import clone_at
from ..model import PipelineConfig, PushEvent
from ..ui.console import get_console
from .models import Run

Checkout = Callable[[str, str, Path], Path]


class Dispatcher:
    """Checks out a pushed commit into its own directory and hands it to the remote build service."""

    def __init__(
        self,
        config: PipelineConfig,
        service: RemoteBuildService,
        work_dir: Path,
        checkout: Checkout = clone_at,
    ):
        self.config = config
        self.service = service
        self.work_dir = Path(work_dir)
        self.checkout = checkout

    def _dispatch_blocking(self, run_id: uuid.UUID, event: PushEvent, clone_url: str):
        dest = self.work_dir / str(run_id)
        try:
            source = self.checkout(clone_url, event.sha or event.ref, dest)
            return dispatch_push(event, self.config, self.service, source)
        finally:
            shutil.rmtree(dest, ignore_errors=True)

    async def run(
        self,
        sessions: async_sessionmaker[AsyncSession],
        run_id: uuid.UUID,
        event: PushEvent,
        clone_url: str,
    ) -> None:
        console = get_console()
        async with sessions() as s:
            async with s.begin():
                run = await s.get(Run, run_id)
                if run is None:
                    return
                run.status = "running"

        status, error, build_id = "ok", None, None
        try:
            result = await run_in_threadpool(self._dispatch_blocking, run_id, event, clone_url)
            build_id = result.build_id
        except Exception as e:
            status = "failed"
            error = str(e) if isinstance(e, PipelineError) else f"{type(e).__name__}: {e}"
            console.print_error("Dispatch failed", f"{event.repository} {event.ref}", details=[error])

        async with sessions() as s:
            async with s.begin():
                run = await s.get(Run, run_id)
                if run is None:
                    return
                run.status = status
                run.error = error
                run.build_id = build_id
