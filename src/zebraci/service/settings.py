from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./.zebraci/runs.db"


@dataclass(frozen=True)
class ServiceSettings:
    database_url: str = DEFAULT_DATABASE_URL
    webhook_secret: Optional[str] = None
    work_dir: Path = Path(".zebraci/checkouts")
    pipeline_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceSettings":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("ZEBRACI_DATABASE_URL", DEFAULT_DATABASE_URL),
            webhook_secret=env.get("ZEBRACI_WEBHOOK_SECRET") or None,
            work_dir=Path(env.get("ZEBRACI_WORK_DIR", ".zebraci/checkouts")),
            pipeline_file=env.get("ZEBRACI_CONFIG") or None,
        )
