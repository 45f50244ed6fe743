# actions/clippy.py
from __future__ import annotations

import json
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from ..errors import StepFailure
from ..model import Step
from .base import Action, ActionResult

ERROR_LEVELS = ("error", "error: internal compiler error")


@dataclass
class DiagnosticSummary:
    counts: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(n for level, n in self.counts.items() if level in ERROR_LEVELS)

    def describe(self) -> str:
        if not self.counts:
            return "no diagnostics"
        return ", ".join(f"{n} {level}" for level, n in sorted(self.counts.items()))


def summarize_diagnostics(stdout: str) -> DiagnosticSummary:
    """
    Count compiler messages in `cargo --message-format=json` output.

    Lines that are not JSON (build progress, plain text) are ignored.
    """
    summary = DiagnosticSummary()
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            continue
        if msg.get("reason") != "compiler-message":
            continue
        message = msg.get("message") or {}
        level = message.get("level", "unknown")
        summary.counts[level] = summary.counts.get(level, 0) + 1
        if level in ERROR_LEVELS:
            summary.errors.append((message.get("rendered") or message.get("message") or "").rstrip())
    return summary


class ClippyCheck(Action):
    """
    Stand-in for actions-rs/clippy-check.

    Inputs: args (e.g. "--all-features --all-targets"), token (exported as
    GITHUB_TOKEN for the cargo process only). Any error-level diagnostic or
    a non-zero exit fails the step.
    """

    name = "actions-rs/clippy-check"

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        argv = ["cargo", "clippy", "--message-format=json", *shlex.split(with_.get("args") or "")]
        extra_env = {}
        token = with_.get("token")
        if token:
            ctx.masker.add(token)
            extra_env["GITHUB_TOKEN"] = token

        result = ctx.run_command(argv, step, env=extra_env)
        summary = summarize_diagnostics(result.stdout)
        ctx.log(f"clippy: {summary.describe()}")

        if summary.error_count or not result.ok:
            details = "\n".join(summary.errors[-10:]) or result.tail()
            raise StepFailure(
                job=ctx.job.name,
                step=step.name,
                cmd=" ".join(argv),
                exit_code=result.exit_code if not result.ok else 1,
                output=f"clippy: {summary.describe()}\n{details}".strip(),
            )
        outputs = {level: str(n) for level, n in summary.counts.items()}
        return ActionResult(exit_code=result.exit_code, output=f"clippy: {summary.describe()}", outputs=outputs)
