# recipe.py
"""
Render the container build recipe from the same stages the local runner executes.

The builder stage gets one RUN per shell step so a failing step stops the
image build exactly where the local runner would stop. The runtime stage only
ever copies the compiled artifact.
"""
from __future__ import annotations

import json
from typing import Dict, List

from .dsl import build_stage
from .model import CACHE, PipelineConfig


def _env_lines(env: Dict[str, str]) -> List[str]:
    return [f"ENV {k}={v}" for k, v in env.items()]


def _runtime_lines(config: PipelineConfig, copy_source: str) -> List[str]:
    rt = config.runtime
    return [
        f"FROM {rt.base_image}",
        f"COPY {copy_source} .",
        f"ENV PORT={rt.port}",
        f"EXPOSE {rt.port}",
        f"CMD {json.dumps(list(rt.command))}",
    ]


def render_dockerfile(config: PipelineConfig) -> str:
    """Two-stage recipe: build + test in the toolchain image, copy the binary into the runtime image."""
    b = config.build
    stg = build_stage(config)
    workdir = b.workdir.rstrip("/") or "/"

    lines = [f"FROM {b.base_image} AS {b.stage_name}"]
    for step in stg.steps:
        if step.kind == CACHE:
            lines.append(f"WORKDIR {workdir}")
            lines.extend(_env_lines(stg.env))
            lines.append(f"RUN mkdir -p {b.cache_home}")
            # Source enters the builder once the cache location exists.
            lines.append("COPY . .")
            continue
        lines.append(f"RUN {step.run}")

    lines.append("")
    artifact = f"{workdir}/{b.artifact_path.lstrip('/')}"
    lines.extend(_runtime_lines(config, f"--from={b.stage_name} {artifact}"))
    return "\n".join(lines) + "\n"


def render_dockerignore(config: PipelineConfig) -> str:
    """
    Keep local build state out of the builder context.

    `COPY . .` would otherwise carry host build state (dependency cache,
    compiled output) into the builder stage.
    """
    b = config.build
    artifact_root = b.artifact_path.strip("/").split("/", 1)[0]
    entries = [b.cache_dir.strip("/"), artifact_root, ".zebraci"]
    return "\n".join(dict.fromkeys(e for e in entries if e)) + "\n"


def render_runtime_dockerfile(config: PipelineConfig) -> str:
    """Runtime half only, for a build context that contains nothing but the artifact."""
    return "\n".join(_runtime_lines(config, config.runtime.artifact_name)) + "\n"


def image_repository(config: PipelineConfig) -> str:
    d = config.dispatch
    return f"{d.registry}/$PROJECT_ID/${{{d.substitution_key}}}/{config.image_name}"


def render_cloudbuild(config: PipelineConfig) -> dict:
    """
    Remote build configuration: build the full recipe (which runs the tests) and push.

    Cloud Build substitutes $PROJECT_ID, $BUILD_ID and the branch substitution
    at submit time. The identifier is lowercase, so it is always a valid image path.
    The result is JSON, which gcloud accepts as a build config.
    """
    repo = image_repository(config)
    tag = f"{repo}:$BUILD_ID"
    latest = f"{repo}:latest"
    return {
        "steps": [
            {
                "name": "gcr.io/cloud-builders/docker",
                "args": ["build", "-t", tag, "-t", latest, "."],
            },
        ],
        "images": [tag, latest],
        "options": {"substitution_option": "ALLOW_LOOSE"},
    }
