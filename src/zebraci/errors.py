# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PipelineError(Exception):
    """
    Structured pipeline error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class DispatchError(PipelineError):
    """Authentication, tool pinning or submission to the remote build service failed."""


@dataclass
class StepFailure(Exception):
    kind: str
    stage: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.stage}] {self.kind} step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"

    def output_tail(self, lines: int = 20) -> str:
        text = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return "\n".join(text.splitlines()[-lines:])


TOOL_HINTS = {
    "cargo": "Install Rust via rustup or fix PATH.",
    "rustc": "Install Rust via rustup or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "gcloud": "Install the Google Cloud SDK at the pinned version or fix PATH.",
    "git": "Install Git or fix PATH.",
}


def tool_hint(tool: str) -> str:
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
