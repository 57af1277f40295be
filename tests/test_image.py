from __future__ import annotations

import subprocess

import pytest

from zebraci import image
from zebraci.errors import StepFailure
from zebraci.image import assemble_runtime_image, verify_runtime_image
from zebraci.model import PipelineConfig

BASE_LAYERS = ["sha256:base1", "sha256:base2"]


def _inspector(cmd=("./zebrad", "seed"), env=("PATH=/usr/bin", "PORT=8233"),
               exposed=("8233/tcp",), layers=(*BASE_LAYERS, "sha256:zebrad")):
    images = {
        "debian:buster-slim": {"RootFS": {"Layers": list(BASE_LAYERS)}},
        "zebrad:test": {
            "Config": {
                "Cmd": list(cmd),
                "Env": list(env),
                "ExposedPorts": {p: {} for p in exposed},
            },
            "RootFS": {"Layers": list(layers)},
        },
    }
    return lambda ref: images[ref]


def test_runtime_image_passes():
    assert verify_runtime_image(PipelineConfig(), "zebrad:test", inspect=_inspector()) == []


def test_wrong_command():
    problems = verify_runtime_image(PipelineConfig(), "zebrad:test", inspect=_inspector(cmd=("./zebrad", "start")))
    assert problems == ["command is ['./zebrad', 'start'], expected ['./zebrad', 'seed']"]


def test_missing_port_metadata():
    problems = verify_runtime_image(PipelineConfig(), "zebrad:test", inspect=_inspector(env=(), exposed=()))
    assert len(problems) == 2


def test_extra_layers_flagged():
    layers = (*BASE_LAYERS, "sha256:toolchain", "sha256:zebrad")
    problems = verify_runtime_image(PipelineConfig(), "zebrad:test", inspect=_inspector(layers=layers))
    assert problems == ["expected exactly 1 layer on top of debian:buster-slim, found 2"]


def test_wrong_base_flagged():
    layers = ("sha256:other", "sha256:zebrad")
    problems = verify_runtime_image(PipelineConfig(), "zebrad:test", inspect=_inspector(layers=layers))
    assert problems == ["image is not built on debian:buster-slim"]


def test_assemble_requires_artifact(tmp_path):
    with pytest.raises(StepFailure) as exc:
        assemble_runtime_image(PipelineConfig(), tmp_path, "zebrad:test")
    assert exc.value.kind == "assemble"


def test_assemble_context_holds_only_the_binary(tmp_path, monkeypatch):
    (tmp_path / "target/release").mkdir(parents=True)
    (tmp_path / "target/release/zebrad").write_bytes(b"\x7fELF")
    (tmp_path / "src").mkdir()
    (tmp_path / "src/main.rs").write_text("fn main() {}")

    seen = {}

    def fake_run(cmd, **kwargs):
        if cmd[:2] == ["docker", "build"]:
            ctx = cmd[-1]
            from pathlib import Path
            seen["files"] = sorted(p.name for p in Path(ctx).iterdir())
            seen["dockerfile"] = (Path(ctx) / "Dockerfile").read_text()
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(image.subprocess, "run", fake_run)
    assert assemble_runtime_image(PipelineConfig(), tmp_path, "zebrad:test") == "zebrad:test"
    assert seen["files"] == ["Dockerfile", "zebrad"]
    assert "COPY zebrad ." in seen["dockerfile"]


def _fake_docker(seen):
    def fake_run(cmd, **kwargs):
        seen.append(list(cmd))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
    return fake_run


def test_build_image_writes_dockerignore(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(image.subprocess, "run", _fake_docker(calls))

    image.build_image(PipelineConfig(), tmp_path, "zebrad:full")

    assert (tmp_path / ".dockerignore").read_text().splitlines() == [".cargo", "target", ".zebraci"]
    assert calls[-1][:6] == ["docker", "build", "-t", "zebrad:full", "-f", "-"]


def test_build_image_keeps_existing_dockerignore(tmp_path, monkeypatch):
    monkeypatch.setattr(image.subprocess, "run", _fake_docker([]))
    (tmp_path / ".dockerignore").write_text("custom\n")

    image.build_image(PipelineConfig(), tmp_path, "zebrad:full")

    assert (tmp_path / ".dockerignore").read_text() == "custom\n"
