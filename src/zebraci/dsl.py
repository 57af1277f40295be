# dsl.py
from __future__ import annotations

from typing import Dict, List, Optional

from .model import (
    ASSEMBLE,
    CACHE,
    COMPILE,
    FETCH,
    PROVISION,
    PUBLISH,
    TEST,
    TOOLCHAIN,
    VERIFY,
    PipelineConfig,
    Stage,
    Step,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, kind: str, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, kind=kind, run=cmd, cwd=cwd)


def builtin(name: str, kind: str) -> Step:
    """Create a step the runner executes itself (cache restore, image assembly, ...)."""
    return Step(name=name, kind=kind)


def stage(name: str, *steps: Step, env: Optional[Dict[str, str]] = None) -> Stage:
    if not steps:
        raise ValueError(f"stage({name!r}) must have at least one step")
    names = [s.name for s in steps]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ValueError(f"Duplicate step names in stage {name!r}: {dupes}")
    return Stage(name=name, steps=tuple(steps), env=dict(env or {}))


# ---------------------------------------------------------------------
# The two stages of the zebrad recipe
# ---------------------------------------------------------------------

def provision_command(config: PipelineConfig) -> str:
    packages = " ".join(config.build.packages)
    return (
        "apt-get update && "
        f"apt-get install -y --no-install-recommends {packages}"
    )


def toolchain_command(config: PipelineConfig) -> str:
    return "; ".join(config.build.toolchain_commands)


def build_stage(config: PipelineConfig, *, cache_home: str | None = None) -> Stage:
    """
    Compile-and-test stage.

    Order matters: provision -> cache -> fetch -> toolchain -> test -> compile.
    `cache_home` overrides the container CARGO_HOME for local runs.
    """
    b = config.build
    return stage(
        config.build.stage_name,
        sh("Install build tools", provision_command(config), kind=PROVISION),
        builtin("Prepare dependency cache", CACHE),
        sh("Fetch dependencies", b.fetch_command, kind=FETCH),
        sh("Toolchain versions", toolchain_command(config), kind=TOOLCHAIN),
        sh("Run tests", b.test_command, kind=TEST),
        sh("Build release binary", b.build_command, kind=COMPILE),
        env=b.env(cache_home),
    )


def runtime_stage(config: PipelineConfig, *, verify: bool = False, publish: bool = False) -> Stage:
    steps: List[Step] = [builtin("Assemble runtime image", ASSEMBLE)]
    if verify:
        steps.append(builtin("Verify runtime image", VERIFY))
    if publish:
        steps.append(builtin("Push image", PUBLISH))
    return stage("runtime", *steps)


def default_pipeline() -> PipelineConfig:
    """The zebrad pipeline: rust:stretch builder, debian:buster-slim runtime, seed mode on 8233."""
    return PipelineConfig()
