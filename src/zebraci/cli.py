# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from dataclasses import replace
from pathlib import Path

import click

from zebraci.dispatch import GcloudBuildService, dispatch_push
from zebraci.errors import PipelineError, StepFailure
from zebraci.git_facts.git import current_ref, head_sha, remote_url, repository_slug
from zebraci.image import build_image, publish_image, verify_runtime_image
from zebraci.model import BRANCH_MODES, PushEvent
from zebraci.recipe import render_cloudbuild, render_dockerfile, render_dockerignore, render_runtime_dockerfile
from zebraci.runner import failed, load_pipeline, plan_stages, run_pipeline
from zebraci.trigger import collapsed_branch, derive_substitution_identifier, event_from_env
from zebraci.ui.console import Console, get_console, set_console


def _fail(ctx: click.Context, exc: Exception, title: str = "Pipeline failed") -> None:
    console = get_console()
    if isinstance(exc, PipelineError):
        details = [f"{k}={v}" for k, v in exc.details.items() if k != "hint"]
        console.print_error(title, f"{exc.kind}: {exc.message}", details=details or None,
                            suggestion=exc.details.get("hint"))
    elif isinstance(exc, StepFailure):
        console.print_error(title, str(exc), details=[exc.output_tail()] if exc.output_tail() else None)
    else:
        console.print_error(title, str(exc))
    if console.debug:
        console.print_exception(exc)
    sys.exit(1)


def _resolve_event(repository: str | None, ref: str | None) -> PushEvent:
    """
    Explicit options win, then the GitHub Actions environment, then the local checkout.
    """
    if repository and ref:
        return PushEvent(repository=repository, ref=ref)
    try:
        event = event_from_env()
        return PushEvent(repository=repository or event.repository, ref=ref or event.ref, sha=event.sha)
    except PipelineError:
        pass
    try:
        return PushEvent(
            repository=repository or repository_slug(remote_url("origin")),
            ref=ref or current_ref(),
            sha=head_sha(),
        )
    except (subprocess.CalledProcessError, FileNotFoundError, ValueError) as e:
        raise PipelineError(
            kind="invalid_event",
            message="Could not determine repository and ref",
            details={"reason": str(e), "hint": "Pass --repository and --ref explicitly."},
        )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--config", "config_path", default=None, help="Pipeline file (defaults to zebraci_pipeline.py if present)")
@click.pass_context
def cli(ctx, debug, config_path):
    """zebra-ci: build, package and dispatch zebrad."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = config_path


def _config(ctx: click.Context):
    try:
        return load_pipeline(ctx.obj.get("config_path"))
    except (FileNotFoundError, ValueError, PipelineError) as e:
        _fail(ctx, e, title="Failed to load pipeline")


# ----------------------------------------------------------------------
# render
# ----------------------------------------------------------------------

@cli.command()
@click.argument("what", type=click.Choice(["dockerfile", "dockerignore", "runtime-dockerfile", "cloudbuild"]))
@click.option("--out", default=None, type=click.Path(dir_okay=False), help="Write to a file instead of stdout")
@click.pass_context
def render(ctx, what, out):
    """Render the container recipe or the remote build config."""
    config = _config(ctx)
    if what == "dockerfile":
        text = render_dockerfile(config)
    elif what == "dockerignore":
        text = render_dockerignore(config)
    elif what == "runtime-dockerfile":
        text = render_runtime_dockerfile(config)
    else:
        text = json.dumps(render_cloudbuild(config), indent=2) + "\n"

    if out:
        Path(out).write_text(text, encoding="utf-8")
        get_console().print_info(f"Wrote {out}")
    else:
        click.echo(text, nl=False)


# ----------------------------------------------------------------------
# build
# ----------------------------------------------------------------------

@cli.command()
@click.option("--repo-root", default=".", show_default=True, help="Source checkout")
@click.option("--provision/--no-provision", default=False, show_default=True,
              help="Install native build tools on this host first")
@click.option("--cache/--no-cache", "use_cache", default=True, show_default=True, help="Reuse the dependency cache")
@click.option("--cache-dir", default=".zebraci/cache", show_default=True, help="Dependency cache directory")
@click.option("--cache-keep", default=3, show_default=True, type=click.IntRange(min=1), help="Cache archives to keep")
@click.option("--image", "image_tag", default=None, help="Assemble the runtime image with this tag")
@click.option("--verify/--no-verify", default=True, show_default=True, help="Inspect the assembled image")
@click.option("--push/--no-push", "push", default=False, show_default=True, help="Push the assembled image")
@click.pass_context
def build(ctx, repo_root, provision, use_cache, cache_dir, cache_keep, image_tag, verify, push):
    """Fetch, test and compile locally, then optionally assemble the runtime image."""
    console = get_console()
    config = _config(ctx)
    root = Path(repo_root).resolve()
    verify = bool(image_tag) and verify
    push = bool(image_tag) and push
    stages = plan_stages(
        config, cache_home=root / config.build.cache_dir, image_tag=image_tag, verify=verify, publish=push
    )

    try:
        console.print_pipeline_started(
            repository=root.name,
            pipeline=ctx.obj.get("config_path") or "built-in",
            step_count=sum(len(s.steps) for s in stages),
        )
        results = run_pipeline(
            config,
            repo_root=root,
            cache_root=cache_dir,
            use_cache=use_cache,
            cache_keep=cache_keep,
            provision=provision,
            image_tag=image_tag,
            verify=verify,
            publish=push,
        )
        console.print_results(results)
        if failed(results):
            sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (PipelineError, ValueError, OSError) as e:
        _fail(ctx, e)


# ----------------------------------------------------------------------
# image
# ----------------------------------------------------------------------

@cli.group()
def image():
    """Build, verify or push the container image with docker."""


@image.command("build")
@click.argument("tag")
@click.option("--repo-root", default=".", show_default=True)
@click.option("--verify/--no-verify", default=True, show_default=True)
@click.pass_context
def image_build(ctx, tag, repo_root, verify):
    """Build the full two-stage recipe (tests run inside the build)."""
    console = get_console()
    config = _config(ctx)
    try:
        build_image(config, Path(repo_root), tag)
        console.print_info(f"Built {tag}")
        if verify:
            problems = verify_runtime_image(config, tag)
            if problems:
                console.print_error("Image verification failed", tag, details=problems)
                sys.exit(1)
            console.print_info("Verified: one artifact layer, command and port as declared")
    except (PipelineError, StepFailure) as e:
        _fail(ctx, e, title="Image build failed")


@image.command("verify")
@click.argument("tag")
@click.pass_context
def image_verify(ctx, tag):
    """Check an image carries only the artifact layer, the seed command and the port."""
    console = get_console()
    config = _config(ctx)
    try:
        problems = verify_runtime_image(config, tag)
    except PipelineError as e:
        _fail(ctx, e, title="Image verification failed")
    if problems:
        console.print_error("Image verification failed", tag, details=problems)
        sys.exit(1)
    console.print_info(f"{tag}: OK")


@image.command("push")
@click.argument("tag")
@click.pass_context
def image_push(ctx, tag):
    """Push an image to its registry."""
    try:
        publish_image(tag)
        get_console().print_info(f"Pushed {tag}")
    except (PipelineError, StepFailure) as e:
        _fail(ctx, e, title="Push failed")


# ----------------------------------------------------------------------
# identifier / dispatch
# ----------------------------------------------------------------------

@cli.command()
@click.option("--repository", default=None, help="owner/name (defaults to $GITHUB_REPOSITORY or git remote)")
@click.option("--ref", default=None, help="Full ref (defaults to $GITHUB_REF or current branch)")
@click.option("--mode", type=click.Choice(BRANCH_MODES), default=None, help="Branch extraction mode")
@click.pass_context
def identifier(ctx, repository, ref, mode):
    """Print the substitution identifier for a push."""
    config = _config(ctx)
    mode = mode or config.dispatch.branch_mode
    try:
        event = _resolve_event(repository, ref)
        ident = derive_substitution_identifier(event, mode)
    except PipelineError as e:
        _fail(ctx, e, title="Cannot derive identifier")
    full = collapsed_branch(event, mode)
    if full is not None:
        get_console().print_warning(f"ref '{full}' collapsed to identifier '{ident}'")
    click.echo(ident)


@cli.command()
@click.option("--repository", default=None, help="owner/name (defaults to $GITHUB_REPOSITORY or git remote)")
@click.option("--ref", default=None, help="Full ref (defaults to $GITHUB_REF or current branch)")
@click.option("--source", default=".", show_default=True, help="Checkout to submit")
@click.option("--mode", type=click.Choice(BRANCH_MODES), default=None, help="Branch extraction mode")
@click.pass_context
def dispatch(ctx, repository, ref, source, mode):
    """Authenticate, then submit the checkout to the remote build with its identifier."""
    console = get_console()
    config = _config(ctx)
    if mode:
        config = replace(config, dispatch=replace(config.dispatch, branch_mode=mode))

    try:
        event = _resolve_event(repository, ref)
        result = dispatch_push(event, config, GcloudBuildService(config.dispatch), Path(source))
    except PipelineError as e:
        _fail(ctx, e, title="Dispatch failed")

    console.print_info(f"\nSubmitted {result.identifier} to {result.project}")
    if result.build_id:
        console.print_info(f"  Build ID: {result.build_id}")
    console.print_debug(result.log)


# ----------------------------------------------------------------------
# serve
# ----------------------------------------------------------------------

@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.pass_context
def serve(ctx, host, port):
    """Run the push webhook receiver."""
    import uvicorn

    from zebraci.service.main import create_app
    from zebraci.service.settings import ServiceSettings

    settings = ServiceSettings.from_env()
    if ctx.obj.get("config_path"):
        settings = replace(settings, pipeline_file=ctx.obj["config_path"])
    uvicorn.run(create_app(settings), host=host, port=port)


if __name__ == "__main__":
    cli()
