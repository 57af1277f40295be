# image.py
from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List

from .errors import PipelineError, StepFailure, tool_hint
from .model import ASSEMBLE, PUBLISH, PipelineConfig
from .recipe import render_dockerfile, render_dockerignore, render_runtime_dockerfile
from .ui.console import get_console


# ---------------------------------------------------------------------
# Docker CLI helpers
# ---------------------------------------------------------------------

def _check_docker_available() -> None:
    """Check if Docker is available, raise helpful error if not."""
    try:
        subprocess.run(
            ["docker", "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise PipelineError(
            kind="docker_unavailable",
            message="Docker is not available",
            details={"hint": tool_hint("docker")},
        )


def _docker(
    args: List[str],
    *,
    kind: str,
    stage: str,
    step: str,
    stdin: str | None = None,
) -> subprocess.CompletedProcess:
    proc = subprocess.run(
        ["docker", *args],
        input=stdin,
        text=True,
        capture_output=True,
    )
    if proc.returncode != 0:
        raise StepFailure(
            kind=kind,
            stage=stage,
            step=step,
            cmd="docker " + " ".join(args),
            exit_code=proc.returncode,
            stdout=proc.stdout[-4000:],
            stderr=proc.stderr[-4000:],
        )
    return proc


# ---------------------------------------------------------------------
# Image build
# ---------------------------------------------------------------------

def build_image(config: PipelineConfig, repo_root: Path, tag: str) -> str:
    """
    Build the full two-stage recipe against a source checkout. Tests run inside the build.

    A checkout without a .dockerignore gets the rendered one first.
    """
    _check_docker_available()
    ignore = repo_root / ".dockerignore"
    if not ignore.exists():
        ignore.write_text(render_dockerignore(config), encoding="utf-8")
        get_console().print_info(f"Wrote {ignore}")
    _docker(
        ["build", "-t", tag, "-f", "-", str(repo_root.resolve())],
        kind="image",
        stage="image",
        step="Build image",
        stdin=render_dockerfile(config),
    )
    return tag


def artifact_file(config: PipelineConfig, repo_root: Path) -> Path:
    return (repo_root / config.build.artifact_path).resolve()


def assemble_runtime_image(config: PipelineConfig, repo_root: Path, tag: str) -> str:
    """
    Build the runtime image from an already compiled artifact.

    The build context is a fresh directory holding only the binary, so nothing
    else from the checkout can reach the image.
    """
    artifact = artifact_file(config, repo_root)
    if not artifact.is_file():
        raise StepFailure(
            kind=ASSEMBLE,
            stage="runtime",
            step="Assemble runtime image",
            cmd=f"COPY {config.build.artifact_path}",
            exit_code=1,
            stderr=f"artifact not found: {artifact}",
        )

    _check_docker_available()
    with tempfile.TemporaryDirectory(prefix="zebraci-runtime-") as ctx:
        ctx_path = Path(ctx)
        shutil.copy2(artifact, ctx_path / config.runtime.artifact_name)
        (ctx_path / "Dockerfile").write_text(render_runtime_dockerfile(config), encoding="utf-8")
        _docker(
            ["build", "-t", tag, str(ctx_path)],
            kind=ASSEMBLE,
            stage="runtime",
            step="Assemble runtime image",
        )
    return tag


def publish_image(tag: str) -> None:
    _check_docker_available()
    _docker(["push", tag], kind=PUBLISH, stage="runtime", step="Push image")


# ---------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------

def inspect_image(ref: str) -> dict:
    proc = subprocess.run(
        ["docker", "image", "inspect", ref],
        text=True,
        capture_output=True,
    )
    if proc.returncode != 0:
        raise PipelineError(
            kind="image_not_found",
            message=f"Cannot inspect image {ref}",
            details={"stderr": proc.stderr.strip()},
        )
    data = json.loads(proc.stdout)
    if not data:
        raise PipelineError(kind="image_not_found", message=f"No image data for {ref}")
    return data[0]


def _layers(info: dict) -> List[str]:
    return list((info.get("RootFS") or {}).get("Layers") or [])


def verify_runtime_image(config: PipelineConfig, tag: str, *, inspect=inspect_image) -> List[str]:
    """
    Check the built image against the runtime descriptor.

    Returns a list of problems; empty means the image holds the base layers plus
    exactly one layer (the artifact), and carries the expected command and port.
    """
    rt = config.runtime
    problems: List[str] = []

    info = inspect(tag)
    cfg = info.get("Config") or {}

    cmd = list(cfg.get("Cmd") or [])
    if cmd != list(rt.command):
        problems.append(f"command is {cmd}, expected {list(rt.command)}")

    env = list(cfg.get("Env") or [])
    if f"PORT={rt.port}" not in env:
        problems.append(f"PORT={rt.port} not declared in image env")

    exposed = cfg.get("ExposedPorts") or {}
    if f"{rt.port}/tcp" not in exposed:
        problems.append(f"port {rt.port}/tcp not exposed")

    base_layers = _layers(inspect(rt.base_image))
    layers = _layers(info)
    if layers[: len(base_layers)] != base_layers:
        problems.append(f"image is not built on {rt.base_image}")
    elif len(layers) - len(base_layers) != 1:
        problems.append(
            f"expected exactly 1 layer on top of {rt.base_image}, found {len(layers) - len(base_layers)}"
        )

    return problems
