# dispatch.py
from __future__ import annotations

import base64
import binascii
import json
import os
import re
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from .errors import DispatchError, tool_hint
from .model import DispatchConfig, PipelineConfig, PushEvent
from .trigger import collapsed_branch, derive_substitution_identifier
from .ui.console import get_console


@dataclass
class DispatchResult:
    """Outcome of handing a checkout to the remote build service."""
    project: str
    substitutions: Dict[str, str]
    build_id: Optional[str] = None
    log: str = ""
    identifier: Optional[str] = None
    details: Dict[str, str] = field(default_factory=dict)


class RemoteBuildService(ABC):
    """
    The remote build/test/publish service.

    Its own retry and isolation guarantees are assumed; submit() either returns
    a result or raises DispatchError.
    """

    def prepare(self) -> None:
        """Authenticate and check tooling before anything is submitted."""

    @abstractmethod
    def submit(self, repository: Path, substitutions: Mapping[str, str]) -> DispatchResult:
        ...


CommandRunner = Callable[..., subprocess.CompletedProcess]

_BUILD_ID_RE = re.compile(r"/builds/(?P<id>[\w-]+)\]")


def decode_credential(raw: str) -> dict:
    """
    Parse a service-account key stored either as JSON or as base64-encoded JSON.

    Raises:
        DispatchError: If the value is neither
    """
    text = raw.strip()
    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise DispatchError(kind="auth", message="credential is neither JSON nor base64 JSON")
    try:
        key = json.loads(text)
    except json.JSONDecodeError as e:
        raise DispatchError(kind="auth", message=f"credential is not valid JSON: {e}")
    if not isinstance(key, dict) or "client_email" not in key:
        raise DispatchError(kind="auth", message="credential has no client_email")
    return key


class GcloudBuildService(RemoteBuildService):
    """Google Cloud Build through a pinned gcloud CLI."""

    def __init__(
        self,
        config: DispatchConfig,
        *,
        environ: Optional[Mapping[str, str]] = None,
        runner: CommandRunner = subprocess.run,
    ):
        """
        Args:
            config: Project, build config, pinned tool version, credential env var
            environ: Environment to read the credential from (defaults to os.environ)
            runner: subprocess.run-compatible callable
        """
        self.config = config
        self.environ = os.environ if environ is None else environ
        self._run = runner

    def _gcloud(self, args: list[str], *, kind: str) -> subprocess.CompletedProcess:
        cmd = [self.config.tool, *args]
        try:
            proc = self._run(cmd, text=True, capture_output=True)
        except FileNotFoundError:
            raise DispatchError(
                kind=kind,
                message=f"{self.config.tool} is not available",
                details={"hint": tool_hint(self.config.tool)},
            )
        if proc.returncode != 0:
            raise DispatchError(
                kind=kind,
                message=f"{' '.join(cmd[:3])} failed (exit={proc.returncode})",
                details={"stderr": (proc.stderr or "").strip()[-2000:]},
            )
        return proc

    def installed_version(self) -> str:
        proc = self._gcloud(["version", "--format=json"], kind="tool_version")
        try:
            versions = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError:
            raise DispatchError(kind="tool_version", message="cannot parse gcloud version output")
        return str(versions.get("Google Cloud SDK", ""))

    def check_version(self) -> None:
        installed = self.installed_version()
        if installed != self.config.tool_version:
            raise DispatchError(
                kind="tool_version",
                message=f"{self.config.tool} {installed or '<unknown>'} installed, "
                        f"{self.config.tool_version} required",
                details={"hint": tool_hint(self.config.tool)},
            )

    def authenticate(self) -> None:
        raw = self.environ.get(self.config.credential_env, "")
        if not raw.strip():
            raise DispatchError(
                kind="auth",
                message=f"credential variable {self.config.credential_env} is not set",
            )
        key = decode_credential(raw)

        fd, key_path = tempfile.mkstemp(prefix="zebraci-key-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(key, f)
            self._gcloud(
                ["auth", "activate-service-account", key["client_email"], f"--key-file={key_path}"],
                kind="auth",
            )
        finally:
            Path(key_path).unlink(missing_ok=True)

    def prepare(self) -> None:
        self.check_version()
        self.authenticate()

    def submit_command(self, repository: Path, substitutions: Mapping[str, str]) -> list[str]:
        subs = ",".join(f"{k}={v}" for k, v in substitutions.items())
        return [
            "builds", "submit", str(repository),
            "--config", self.config.build_config,
            "--project", self.config.project,
            "--substitutions", subs,
        ]

    def submit(self, repository: Path, substitutions: Mapping[str, str]) -> DispatchResult:
        proc = self._gcloud(self.submit_command(repository, substitutions), kind="dispatch")
        log = "\n".join(part for part in (proc.stdout, proc.stderr) if part)
        match = _BUILD_ID_RE.search(log)
        return DispatchResult(
            project=self.config.project,
            substitutions=dict(substitutions),
            build_id=match.group("id") if match else None,
            log=log,
        )


def dispatch_push(
    event: PushEvent,
    config: PipelineConfig,
    service: RemoteBuildService,
    source: Path,
) -> DispatchResult:
    """
    Derive the substitution identifier for `event` and submit `source` with it.

    prepare() runs first, so an authentication failure means nothing is submitted.
    """
    console = get_console()
    mode = config.dispatch.branch_mode
    identifier = derive_substitution_identifier(event, mode)

    full = collapsed_branch(event, mode)
    if full is not None:
        console.print_warning(
            f"ref '{full}' collapses to identifier '{identifier}'; "
            f"other refs ending in the same segment share it (use branch_mode='full-path' to avoid this)"
        )

    substitutions = {config.dispatch.substitution_key: identifier}
    service.prepare()
    console.print_dispatch(config.dispatch.project, substitutions)
    result = service.submit(source, substitutions)
    result.identifier = identifier
    return result
