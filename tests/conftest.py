"""Pytest configuration for onpush tests."""

import json
import stat
from pathlib import Path

import pytest

from onpush.artifacts import ArtifactStore
from onpush.context import JobContext
from onpush.dsl import job, sh
from onpush.model import TriggerEvent
from onpush.reporting import ReportClient
from onpush.secrets import SecretStore
from onpush.settings import Settings
from onpush.ui.console import Console, set_console

FAKE_CARGO = r"""#!/bin/sh
echo "$1 ${RUSTUP_TOOLCHAIN:-none}" >> "$FAKE_TOOL_LOG"
case "$1" in
  build|test)
    echo "cargo $1 ok"
    ;;
  tarpaulin)
    echo '<?xml version="1.0"?><coverage line-rate="0.9"></coverage>' > cobertura.xml
    echo "tarpaulin: 90.00% coverage"
    ;;
  doc)
    case "$RUSTDOCFLAGS" in
      *--show-coverage*) ;;
      *) echo "missing coverage flags" >&2; exit 3 ;;
    esac
    if [ -n "$FAKE_DOC_BROKEN" ]; then
      echo "warning: nothing to report"
      exit 0
    fi
    echo "+-------------------------------------+------------+------------+------------+"
    echo "| File                                | Documented | Percentage | Examples   |"
    echo "+-------------------------------------+------------+------------+------------+"
    echo "| src/lib.rs                          |          8 |      80.0% |          0 |"
    echo "+-------------------------------------+------------+------------+------------+"
    echo "| Total | 10 | 8 | 80.0% |"
    ;;
  clippy)
    echo '{"reason":"compiler-artifact","target":{"name":"toolbelt"}}'
    echo '{"reason":"compiler-message","message":{"level":"warning","rendered":"warning: unused variable"}}'
    if [ -n "$FAKE_CLIPPY_ERROR" ]; then
      echo '{"reason":"compiler-message","message":{"level":"error","rendered":"error: this looks like a bug"}}'
    fi
    ;;
esac
"""

FAKE_RUSTUP = r"""#!/bin/sh
echo "rustup $*" >> "$FAKE_TOOL_LOG"
exit 0
"""


@pytest.fixture(autouse=True)
def reset_console():
    """Every test starts from a fresh global console."""
    set_console(None)
    yield
    set_console(None)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        work_dir=tmp_path / "work",
        artifact_dir=tmp_path / "artifacts",
        workers=4,
        codecov_url="https://codecov.test",
        doc_metrics_url="https://metrics.test/doc",
    )


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small crate outside of any git repository."""
    root = tmp_path / "source"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text('[package]\nname = "toolbelt"\nversion = "0.1.0"\n')
    (root / "src" / "lib.rs").write_text("/// Adds.\npub fn add(a: i32, b: i32) -> i32 { a + b }\n")
    return root


@pytest.fixture
def fake_tools(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Put fake cargo and rustup first on PATH. Returns the invocation log file."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name, body in (("cargo", FAKE_CARGO), ("rustup", FAKE_RUSTUP)):
        p = bin_dir / name
        p.write_text(body)
        p.chmod(p.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)
    log = tmp_path / "tools.log"
    log.write_text("")
    monkeypatch.setenv("PATH", f"{bin_dir}:{Path('/usr/bin')}:{Path('/bin')}")
    monkeypatch.setenv("FAKE_TOOL_LOG", str(log))
    return log


class FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"ok"):
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeOpener:
    """Records requests instead of sending them."""

    def __init__(self, status: int = 200, body: bytes = b"ok", error: Exception = None):
        self.status = status
        self.body = body
        self.error = error
        self.requests = []

    def __call__(self, req, timeout=None):
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status, self.body)

    def json_bodies(self):
        return [
            json.loads(r.data.decode("utf-8"))
            for r in self.requests
            if r.get_header("Content-type") == "application/json"
        ]


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def reporter(opener: FakeOpener) -> ReportClient:
    return ReportClient(opener=opener)


@pytest.fixture
def make_ctx(tmp_path: Path, settings: Settings, reporter: ReportClient):
    """Build a JobContext on a fresh workspace directory."""

    def _make(the_job=None, secrets=None, event=None):
        the_job = the_job or job("unit", sh("noop", "true"))
        workspace = tmp_path / "ws" / the_job.name
        workspace.mkdir(parents=True, exist_ok=True)
        return JobContext(
            job=the_job,
            run_id="run-1",
            workspace=workspace,
            source_root=tmp_path,
            event=event or TriggerEvent("push", ref="refs/heads/main", sha="abc123"),
            settings=settings,
            secrets=secrets or SecretStore(),
            artifacts=ArtifactStore(settings.artifact_dir, "run-1"),
            console=Console(),
            reporter=reporter,
        )

    return _make
