# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-job result reporting
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class PipelineDefinitionError(ValueError):
    """Raised when a pipeline definition cannot be loaded or is inconsistent."""

    def __init__(self, message: str, *, source: Optional[str] = None):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class CoverageParseError(ValueError):
    """The documentation coverage report had no usable total line."""


class ReportError(Exception):
    """Raised when an external reporting endpoint rejects or cannot be reached."""


class ArtifactExistsError(FileExistsError):
    pass


class AmbiguousArtifactError(LookupError):
    pass


TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "cargo-tarpaulin": "Install tarpaulin (cargo install cargo-tarpaulin).",
    "docker": "Install Docker and ensure the daemon is running.",
    "git": "Install Git or fix PATH.",
    "bash": "Install bash or fix PATH.",
}
