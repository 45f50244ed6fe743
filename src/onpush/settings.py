# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from tempfile import gettempdir
from typing import Mapping, Optional

DEFAULT_ARTIFACT_DIR = ".onpush/artifacts"
DEFAULT_CODECOV_URL = "https://codecov.io"
DEFAULT_DOC_METRICS_URL = "https://4yvh5mu5bk.execute-api.us-west-2.amazonaws.com/test"
DEFAULT_SECRET_ENV = ("CODECOV_TOKEN", "GITHUB_TOKEN")


def _default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    work_dir: Path = field(default_factory=lambda: Path(gettempdir()) / "onpush")
    artifact_dir: Path = Path(DEFAULT_ARTIFACT_DIR)
    workers: int = field(default_factory=_default_workers)
    keep_workspace: bool = False
    codecov_url: str = DEFAULT_CODECOV_URL
    doc_metrics_url: str = DEFAULT_DOC_METRICS_URL
    secret_env: tuple[str, ...] = DEFAULT_SECRET_ENV

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        s = cls()
        if env.get("ONPUSH_WORK_DIR"):
            s = replace(s, work_dir=Path(env["ONPUSH_WORK_DIR"]))
        if env.get("ONPUSH_ARTIFACT_DIR"):
            s = replace(s, artifact_dir=Path(env["ONPUSH_ARTIFACT_DIR"]))
        if env.get("ONPUSH_WORKERS"):
            s = replace(s, workers=max(1, int(env["ONPUSH_WORKERS"])))
        if "ONPUSH_KEEP_WORKSPACE" in env:
            s = replace(s, keep_workspace=_flag(env["ONPUSH_KEEP_WORKSPACE"]))
        if env.get("CODECOV_URL"):
            s = replace(s, codecov_url=env["CODECOV_URL"].rstrip("/"))
        if env.get("DOC_METRICS_URL"):
            s = replace(s, doc_metrics_url=env["DOC_METRICS_URL"])
        if "ONPUSH_SECRET_ENV" in env:
            names = tuple(n.strip() for n in env["ONPUSH_SECRET_ENV"].split(",") if n.strip())
            s = replace(s, secret_env=names)
        return s

    def with_overrides(self, **overrides) -> Settings:
        """Apply CLI overrides, ignoring options the user did not pass."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
