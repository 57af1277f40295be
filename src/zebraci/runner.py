# runner.py
from __future__ import annotations

import os
import runpy
import subprocess
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .cache import DEFAULT_CACHE_DIR, DependencyCache, compute_cache_key, toolchain_version
from .dsl import build_stage, default_pipeline, runtime_stage
from .errors import PipelineError, StepFailure
from .image import assemble_runtime_image, publish_image, verify_runtime_image
from .model import (
    ASSEMBLE,
    CACHE,
    FETCH,
    PROVISION,
    PUBLISH,
    SHELL_KINDS,
    TOOLCHAIN,
    VERIFY,
    PipelineConfig,
    Stage,
    Step,
)
from .ui.console import get_console

# checkout ---> build stage (fetch, test, compile) ---> runtime stage ---> registry

DEFAULT_PIPELINE_FILE = "zebraci_pipeline.py"
OUTPUT_TAIL_LINES = 200


# ----------------------------------------------------------------------
# Pipeline loading (local file)
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path | None = None) -> PipelineConfig:
    """
    Load a pipeline configuration from a python file path.

    The file must define either:
      - pipeline() -> PipelineConfig
      - PIPELINE = PipelineConfig(...)

    With no path, ./zebraci_pipeline.py is used when present, otherwise the
    built-in zebrad pipeline.
    """
    if path is None:
        default = Path(DEFAULT_PIPELINE_FILE)
        if not default.exists():
            return default_pipeline()
        path = default

    pl_path = Path(path).expanduser().resolve()
    if not pl_path.exists():
        raise FileNotFoundError(f"Pipeline file not found: {pl_path}")
    if pl_path.suffix != ".py":
        raise ValueError(f"Pipeline must be a .py file, got: {pl_path.name}")

    globals_dict = runpy.run_path(str(pl_path), run_name=f"zebraci_pipeline_{pl_path.stem}")

    config = None
    if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        config = globals_dict["pipeline"]()
    elif "PIPELINE" in globals_dict:
        config = globals_dict["PIPELINE"]

    if not isinstance(config, PipelineConfig):
        raise PipelineError(
            kind="invalid_pipeline",
            message="Pipeline file must return/define a PipelineConfig.",
            details={"file": str(pl_path)},
        )
    return config


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

@dataclass
class _RunContext:
    config: PipelineConfig
    repo_root: Path
    cache_home: Path
    cache: Optional[DependencyCache]
    cache_keep: int
    image_tag: Optional[str]
    cache_key: Optional[str] = None
    cache_manifest: Optional[dict] = None


def _run_shell(stage: Stage, step: Step, repo_root: Path) -> List[str]:
    """
    Run a shell step, echoing its output into the build log as it arrives.

    Returns the output lines; raises StepFailure with the output tail on a
    non-zero exit.
    """
    cwd = (repo_root / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise FileNotFoundError(f"[{stage.name}] step '{step.name}' cwd not found: {cwd}")

    env = os.environ.copy()
    env.update(stage.env)

    console = get_console()
    tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
    proc = subprocess.Popen(
        step.run,
        shell=True,
        cwd=str(cwd),
        env=env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    assert proc.stdout is not None
    with proc.stdout:
        for line in proc.stdout:
            line = line.rstrip("\n")
            tail.append(line)
            if step.kind != TOOLCHAIN:
                console.print_output(line)
    exit_code = proc.wait()

    if exit_code != 0:
        raise StepFailure(
            kind=step.kind,
            stage=stage.name,
            step=step.name,
            cmd=step.run,
            exit_code=exit_code,
            stdout="\n".join(tail),
        )
    return list(tail)


def _prepare_cache(ctx: _RunContext) -> None:
    console = get_console()
    ctx.cache_home.mkdir(parents=True, exist_ok=True)
    if ctx.cache is None:
        console.print_cache("disabled")
        return
    ctx.cache_key, ctx.cache_manifest = compute_cache_key(
        ctx.config, repo_root=ctx.repo_root, toolchain=toolchain_version()
    )
    hit = ctx.cache.restore(ctx.cache_key, ctx.cache_home)
    console.print_cache(hit.reason)


def _save_cache(ctx: _RunContext) -> None:
    if ctx.cache is None or ctx.cache_key is None:
        return
    ctx.cache.save(ctx.cache_key, ctx.cache_manifest or {}, ctx.cache_home)
    ctx.cache.prune(keep=ctx.cache_keep)
    get_console().print_cache_saved(ctx.cache_key)


def _require_tag(ctx: _RunContext) -> str:
    if not ctx.image_tag:
        raise PipelineError(kind="missing_tag", message="Runtime stage needs an image tag")
    return ctx.image_tag


def _verify(ctx: _RunContext, stage: Stage, step: Step) -> None:
    problems = verify_runtime_image(ctx.config, _require_tag(ctx))
    if problems:
        raise StepFailure(
            kind=VERIFY,
            stage=stage.name,
            step=step.name,
            cmd=f"docker image inspect {ctx.image_tag}",
            exit_code=1,
            stderr="\n".join(problems),
        )


def _run_step(ctx: _RunContext, stage: Stage, step: Step) -> None:
    console = get_console()
    if step.kind in SHELL_KINDS:
        output = _run_shell(stage, step, ctx.repo_root)
        if step.kind == TOOLCHAIN:
            console.print_toolchain(output)
        elif step.kind == FETCH:
            _save_cache(ctx)
        return

    handlers: Dict[str, Callable[[], object]] = {
        CACHE: lambda: _prepare_cache(ctx),
        ASSEMBLE: lambda: assemble_runtime_image(ctx.config, ctx.repo_root, _require_tag(ctx)),
        VERIFY: lambda: _verify(ctx, stage, step),
        PUBLISH: lambda: publish_image(_require_tag(ctx)),
    }
    handler = handlers.get(step.kind)
    if handler is None:
        raise PipelineError(kind="unknown_step", message=f"No handler for step kind {step.kind!r}")
    handler()


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def plan_stages(
    config: PipelineConfig,
    *,
    cache_home: Path,
    image_tag: str | None = None,
    verify: bool = False,
    publish: bool = False,
) -> List[Stage]:
    stages = [build_stage(config, cache_home=str(cache_home))]
    if image_tag:
        stages.append(runtime_stage(config, verify=verify, publish=publish))
    return stages


def run_pipeline(
    config: PipelineConfig,
    *,
    repo_root: str | Path = ".",
    cache_root: str | Path = DEFAULT_CACHE_DIR,
    use_cache: bool = True,
    cache_keep: int = 3,
    provision: bool = False,
    image_tag: str | None = None,
    verify: bool = False,
    publish: bool = False,
) -> Dict[str, str]:
    """
    Run the build stage (and the runtime stage when `image_tag` is given) in order.

    The first failing step stops the run; every later step is reported as
    "not-run". Returns {step name: "ok" | "failed" | "skipped" | "not-run"}.
    """
    if cache_keep < 1:
        raise ValueError(f"cache_keep must be at least 1, got {cache_keep}")
    console = get_console()
    root = Path(repo_root).resolve()
    cache_home = (root / config.build.cache_dir).resolve()

    stages = plan_stages(
        config, cache_home=cache_home, image_tag=image_tag, verify=verify, publish=publish
    )
    results: Dict[str, str] = {}
    for stg in stages:
        for step in stg.steps:
            if step.name in results:
                raise ValueError(f"Duplicate step name across stages: {step.name}")
            results[step.name] = "not-run"

    ctx = _RunContext(
        config=config,
        repo_root=root,
        cache_home=cache_home,
        cache=DependencyCache(cache_root) if use_cache else None,
        cache_keep=cache_keep,
        image_tag=image_tag,
    )

    for stg in stages:
        console.print_stage_start(stg.name)
        for step in stg.steps:
            if step.kind == PROVISION and not provision:
                console.print_step_skipped(stg.name, step.name, "host provisioning disabled")
                results[step.name] = "skipped"
                continue

            console.print_step(stg.name, step.name)
            try:
                _run_step(ctx, stg, step)
            except StepFailure as e:
                results[step.name] = "failed"
                console.print_failure(
                    step.name,
                    str(e),
                    exit_code=e.exit_code,
                    output=e.output_tail(),
                )
                return results
            except FileNotFoundError as e:
                results[step.name] = "failed"
                console.print_failure(step.name, str(e))
                return results
            except PipelineError as e:
                results[step.name] = "failed"
                console.print_failure(step.name, str(e), hint=e.details.get("hint"))
                return results
            results[step.name] = "ok"

    return results


def failed(results: Dict[str, str]) -> bool:
    return any(v == "failed" for v in results.values())
