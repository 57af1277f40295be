# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# Step kinds double as failure kinds: a failed "fetch" step is a fetch failure.
PROVISION = "provision"
CACHE = "cache"
FETCH = "fetch"
TOOLCHAIN = "toolchain"
TEST = "test"
COMPILE = "compile"
ASSEMBLE = "assemble"
VERIFY = "verify"
PUBLISH = "publish"

SHELL_KINDS = (PROVISION, FETCH, TOOLCHAIN, TEST, COMPILE)

LAST_SEGMENT = "last-segment"
FULL_PATH = "full-path"
BRANCH_MODES = (LAST_SEGMENT, FULL_PATH)


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a pipeline stage."""
    name: str
    kind: str
    run: str = ""
    cwd: str | None = None


@dataclass(frozen=True)
class Stage:
    """An ordered list of steps plus the environment they run with."""
    name: str
    steps: Tuple[Step, ...]
    env: Dict[str, str] = field(default_factory=dict)

    def step_names(self) -> List[str]:
        return [s.name for s in self.steps]


@dataclass(frozen=True)
class BuildEnvironment:
    """
    Descriptor of the compile-and-test environment.

    `cache_dir` is relative to `workdir` so the same value maps to
    /zebra/.cargo inside the container and <repo>/.cargo on a local checkout.
    """
    base_image: str = "rust:stretch"
    stage_name: str = "builder"
    packages: Tuple[str, ...] = ("make", "cmake", "g++", "gcc")
    workdir: str = "/zebra"
    cache_dir: str = ".cargo"
    backtrace: str = "1"

    fetch_command: str = "cargo fetch --verbose"
    toolchain_commands: Tuple[str, ...] = ("rustc -V", "cargo -V", "rustup -V")
    test_command: str = "cargo test --all"
    build_command: str = "cargo build --release"

    artifact_path: str = "target/release/zebrad"
    lock_files: Tuple[str, ...] = ("Cargo.lock", "Cargo.toml")

    @property
    def cache_home(self) -> str:
        """CARGO_HOME inside the build container."""
        return f"{self.workdir.rstrip('/')}/{self.cache_dir.strip('/')}/"

    def env(self, cache_home: str | None = None) -> Dict[str, str]:
        return {
            "RUST_BACKTRACE": self.backtrace,
            "CARGO_HOME": cache_home or self.cache_home,
        }


@dataclass(frozen=True)
class RuntimeImage:
    """Descriptor of the minimal image that receives the compiled artifact."""
    base_image: str = "debian:buster-slim"
    artifact_name: str = "zebrad"
    port: int = 8233
    command: Tuple[str, ...] = ("./zebrad", "seed")


@dataclass(frozen=True)
class DispatchConfig:
    """Where and how pushes are handed to the remote build service."""
    project: str = "zealous-zebra"
    build_config: str = "cloudbuild.yaml"
    tool: str = "gcloud"
    tool_version: str = "295.0.0"
    credential_env: str = "GCLOUD_AUTH"
    substitution_key: str = "BRANCH_NAME"
    branch_mode: str = LAST_SEGMENT
    registry: str = "gcr.io"


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a pipeline run needs; built once and passed to every stage."""
    build: BuildEnvironment = field(default_factory=BuildEnvironment)
    runtime: RuntimeImage = field(default_factory=RuntimeImage)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    image_name: str = "zebrad"

    def __post_init__(self) -> None:
        if self.dispatch.branch_mode not in BRANCH_MODES:
            raise ValueError(
                f"Unknown branch_mode {self.dispatch.branch_mode!r}; expected one of {BRANCH_MODES}"
            )
        if not self.runtime.command:
            raise ValueError("runtime.command must not be empty")


@dataclass(frozen=True)
class PushEvent:
    """A push notification: repository (owner/name) and the full ref pushed."""
    repository: str
    ref: str
    sha: Optional[str] = None
