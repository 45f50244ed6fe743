# context.py
from __future__ import annotations

import os
import re
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from .artifacts import ArtifactStore
from .errors import TOOL_HINTS, CIError, StepFailure
from .model import Job, Step, TriggerEvent
from .reporting import ReportClient
from .secrets import SecretMasker, SecretStore, resolve_expressions
from .settings import Settings
from .ui.console import Console, get_console

OUTPUT_TAIL_LINES = 30
TOOLCHAIN_FILES = ("rust-toolchain", "rust-toolchain.toml")
_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class CommandResult:
    argv: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def tail(self, lines: int = OUTPUT_TAIL_LINES) -> str:
        return "\n".join(self.output.strip().splitlines()[-lines:])


# ---------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------

class Workspace:
    """Fresh directory per job, removed on exit unless `keep` is set."""

    def __init__(self, base: str | Path, run_id: str, job_name: str, *, keep: bool = False):
        self.base = Path(base) / run_id
        self.job_name = job_name
        self.keep = keep
        self.path: Optional[Path] = None

    def __enter__(self) -> Path:
        self.base.mkdir(parents=True, exist_ok=True)
        prefix = _SAFE_NAME.sub("_", self.job_name) + "-"
        self.path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(self.base))).resolve()
        return self.path

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.path is not None and not self.keep:
            shutil.rmtree(self.path, ignore_errors=True)


# ---------------------------------------------------------------------
# Job context
# ---------------------------------------------------------------------

@dataclass
class JobContext:
    """Everything a step needs while its job runs. One instance per job."""
    job: Job
    run_id: str
    workspace: Path
    source_root: Path
    event: TriggerEvent
    settings: Settings
    secrets: SecretStore
    artifacts: ArtifactStore
    console: Console = field(default_factory=get_console)
    masker: SecretMasker = field(default_factory=SecretMasker)
    reporter: ReportClient = field(default_factory=ReportClient)
    env: Dict[str, str] = field(default_factory=dict)
    toolchain: Optional[str] = None
    toolchain_overridden: bool = False
    _log_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        for value in self.secrets.values():
            self.masker.add(value)
        self.env.setdefault("CI", "true")
        self.env.setdefault("ONPUSH_RUN_ID", self.run_id)
        self.env.setdefault("ONPUSH_JOB", self.job.name)
        self.env.setdefault("ONPUSH_WORKSPACE", str(self.workspace))
        self.env.setdefault("ONPUSH_REF", self.event.ref)
        self.env.setdefault("ONPUSH_SHA", self.event.sha)
        for k, v in (self.job.env or {}).items():
            self.env[k] = self.resolve(v, step=None)

    # --- expressions / env -------------------------------------------

    def resolve(self, value: str, step: Optional[Step]) -> str:
        """Resolve ${{ secrets.X }} / ${{ env.X }} in a definition value."""
        resolved, _used, missing = resolve_expressions(str(value), self.secrets, self.env)
        for name in sorted(missing):
            where = f"step '{step.name}'" if step else "job env"
            self.console.print_warning(f"[{self.job.name}] secret {name} is not set ({where}); using empty value")
        return resolved

    def resolve_with(self, step: Step) -> Dict[str, str]:
        return {k: self.resolve(v, step) for k, v in (step.with_ or {}).items()}

    def step_env(self, step: Step, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Process env + job env + toolchain + step env. Step-level secrets stay local to the step."""
        env = os.environ.copy()
        env.update(self.env)
        for k, v in (step.env or {}).items():
            env[k] = self.resolve(v, step)
        if extra:
            env.update(extra)
        return env

    # --- toolchain ----------------------------------------------------

    def set_toolchain(self, name: str, *, override: bool) -> None:
        """
        Make `name` the active toolchain for the remaining steps.

        With override it wins over any toolchain file in the workspace.
        Without it, it only applies when nothing more specific is in place.
        """
        if override:
            self.toolchain = name
            self.toolchain_overridden = True
            self.env["RUSTUP_TOOLCHAIN"] = name
            return
        if self.toolchain_overridden:
            return
        self.toolchain = name
        if not any((self.workspace / f).exists() for f in TOOLCHAIN_FILES):
            self.env["RUSTUP_TOOLCHAIN"] = name

    # --- commands -----------------------------------------------------

    def run_command(
        self,
        argv: Sequence[str],
        step: Step,
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        check: bool = False,
    ) -> CommandResult:
        """
        Run a program in the workspace and capture its output.

        Output is masked before it is stored, logged or returned.
        """
        workdir = self._workdir(step, cwd)
        full_env = self.step_env(step, env)
        timeout = step.timeout_minutes * 60 if step.timeout_minutes else None
        argv = [str(a) for a in argv]

        try:
            proc = subprocess.run(
                argv,
                cwd=str(workdir),
                env=full_env,
                encoding="utf-8",
                errors="replace",
                capture_output=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            tool = Path(argv[0]).name
            raise CIError(
                kind="tool_unavailable",
                job=self.job.name,
                step=step.name,
                message=f"{tool} is not available",
                details={"hint": TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."), "tool": tool},
            )
        except subprocess.TimeoutExpired:
            raise CIError(
                kind="timeout",
                job=self.job.name,
                step=step.name,
                message=f"step exceeded timeout of {step.timeout_minutes} minute(s)",
                details={},
            )

        result = CommandResult(
            argv=argv,
            exit_code=proc.returncode,
            stdout=self.masker.mask(proc.stdout or ""),
            stderr=self.masker.mask(proc.stderr or ""),
        )
        self.log(f"$ {self.masker.mask(' '.join(argv))}\n{result.output}\n[exit {result.exit_code}]")

        if check and not result.ok:
            raise StepFailure(
                job=self.job.name,
                step=step.name,
                cmd=self.masker.mask(" ".join(argv)),
                exit_code=result.exit_code,
                output=result.tail(),
            )
        return result

    def run_script(self, script: str, step: Step, *, env: Optional[Mapping[str, str]] = None) -> CommandResult:
        """Run an inline `run:` script in the job's shell (or container)."""
        if self.job.container:
            from .docker import docker_command

            argv = docker_command(self, step, script, env=self.step_env(step, env))
            return self.run_command(argv, step)
        return self.run_command([*shell_argv(), script], step, env=env)

    def _workdir(self, step: Step, cwd: Optional[str]) -> Path:
        rel = cwd or step.cwd or "."
        p = (self.workspace / rel).resolve()
        if not p.is_dir():
            raise CIError(
                kind="bad_working_directory",
                job=self.job.name,
                step=step.name,
                message="Step cwd does not exist",
                details={"cwd": rel},
            )
        return p

    # --- logs ---------------------------------------------------------

    def log(self, text: str) -> None:
        with self._log_lock:
            with self.artifacts.log_path(self.job.name).open("a", encoding="utf-8") as f:
                f.write(self.masker.mask(text).rstrip() + "\n")


def shell_argv() -> List[str]:
    """`bash -e -c` when bash exists, else POSIX `sh -e -c`."""
    shell = shutil.which("bash") or "sh"
    return [shell, "-e", "-c"]

