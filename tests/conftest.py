from __future__ import annotations

from dataclasses import replace

import pytest

from zebraci.model import BuildEnvironment, PipelineConfig
from zebraci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def fresh_console():
    set_console(Console())
    yield
    set_console(Console())


@pytest.fixture
def shell_config():
    """A pipeline whose build commands are plain shell, so the runner can execute it anywhere."""
    build = BuildEnvironment(
        fetch_command="mkdir -p \"$CARGO_HOME/registry\" && echo fetched > \"$CARGO_HOME/registry/index\"",
        toolchain_commands=("echo rustc 1.0.0", "echo cargo 1.0.0"),
        test_command="test \"$RUST_BACKTRACE\" = 1 && echo tests passed",
        build_command="mkdir -p target/release && printf bin > target/release/zebrad",
    )
    return PipelineConfig(build=build)


@pytest.fixture
def make_config(shell_config):
    def _make(**build_overrides) -> PipelineConfig:
        return replace(shell_config, build=replace(shell_config.build, **build_overrides))
    return _make
