# actions/coverage.py
from __future__ import annotations

import shlex
from pathlib import Path
from typing import Mapping, Optional

from ..coverage import extract_total_percent, relocate
from ..errors import CIError, CoverageParseError, ReportError, StepFailure
from ..model import Step
from .base import Action, ActionResult

COVERAGE_REPORTS = ("cobertura.xml", "coverage.xml", "lcov.info")
RUSTDOC_COVERAGE_FLAGS = "-Z unstable-options --show-coverage"


class Tarpaulin(Action):
    """
    Stand-in for actions-rs/tarpaulin: an instrumented test pass that
    leaves a cobertura.xml report in the workspace.

    Inputs: args (extra arguments, e.g. "-- --test-threads 1"),
            out-type (default Xml), version (recorded only).
    """

    name = "actions-rs/tarpaulin"

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        out_type = with_.get("out-type") or "Xml"
        argv = ["cargo", "tarpaulin", "--out", out_type, *shlex.split(with_.get("args") or "")]
        if with_.get("version"):
            ctx.log(f"tarpaulin: requested version {with_['version']}")
        result = ctx.run_command(argv, step, check=True)

        if out_type.lower() == "xml" and not (ctx.workspace / "cobertura.xml").exists():
            raise CIError(
                kind="missing_report",
                job=ctx.job.name,
                step=step.name,
                message="tarpaulin finished but produced no cobertura.xml",
                details={"workspace": str(ctx.workspace)},
            )
        return ActionResult(exit_code=result.exit_code, output=result.tail(), outputs={"report": "cobertura.xml"})


def find_report(workspace: Path, explicit: Optional[str] = None) -> Optional[Path]:
    if explicit:
        p = workspace / explicit
        return p if p.is_file() else None
    for name in COVERAGE_REPORTS:
        p = workspace / name
        if p.is_file():
            return p
    return None


class CodecovUpload(Action):
    """
    Stand-in for codecov/codecov-action: HTTP upload of the coverage report.

    Inputs: token, file (default: first of cobertura.xml, coverage.xml,
    lcov.info), url (default from settings). No retry; any network or HTTP
    failure fails the step.
    """

    name = "codecov/codecov-action"

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        token = with_.get("token", "")
        if token:
            ctx.masker.add(token)
        report = find_report(ctx.workspace, with_.get("file"))
        if report is None:
            raise CIError(
                kind="missing_report",
                job=ctx.job.name,
                step=step.name,
                message="no coverage report found to upload",
                details={"looked_for": with_.get("file") or ", ".join(COVERAGE_REPORTS)},
            )

        url = (with_.get("url") or ctx.settings.codecov_url).rstrip("/")
        try:
            ctx.reporter.upload_coverage(
                url,
                token,
                report,
                commit=ctx.event.sha,
                branch=ctx.event.branch,
            )
        except ReportError as e:
            raise CIError(
                kind="upload_failed",
                job=ctx.job.name,
                step=step.name,
                message=ctx.masker.mask(str(e)),
                details={"report": report.name, "endpoint": url},
            )
        ctx.log(f"codecov: uploaded {report.name} to {url}")
        return ActionResult(output=f"uploaded {report.name}")


class Rename(Action):
    """
    Move files inside the workspace. `with` is the mapping itself:

        uses: onpush/rename
        with:
          cobertura.xml: test-coverage.xml
    """

    name = "onpush/rename"

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        if not with_:
            raise CIError(
                kind="missing_input",
                job=ctx.job.name,
                step=step.name,
                message="onpush/rename needs at least one source: destination pair",
                details={},
            )
        try:
            moves = relocate(ctx.workspace, with_)
        except (FileNotFoundError, ValueError) as e:
            raise StepFailure(job=ctx.job.name, step=step.name, cmd=f"rename {dict(with_)}", exit_code=1, output=str(e))
        return ActionResult(output=", ".join(f"{m['from']} -> {m['to']}" for m in moves))


class DocCoverage(Action):
    """
    Documentation coverage: run rustdoc with --show-coverage, keep the
    table as a file, extract the total percentage and report it.

    Inputs:
      name      metric name sent to the endpoint (required)
      endpoint  metrics URL (default from settings)
      output    report file in the workspace (default doc-coverage.txt)
      args      extra `cargo doc` arguments
    """

    name = "onpush/doc-coverage"
    required = ("name",)

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        output = with_.get("output") or "doc-coverage.txt"
        argv = ["cargo", "doc", "--no-deps", *shlex.split(with_.get("args") or "")]
        result = ctx.run_command(argv, step, env={"RUSTDOCFLAGS": RUSTDOC_COVERAGE_FLAGS}, check=True)

        report = ctx.workspace / output
        report.parent.mkdir(parents=True, exist_ok=True)
        report.write_text(result.stdout, encoding="utf-8")

        try:
            percent = extract_total_percent(result.stdout)
        except CoverageParseError as e:
            raise CIError(
                kind="parse_failed",
                job=ctx.job.name,
                step=step.name,
                message=str(e),
                details={"report": output},
            )

        endpoint = with_.get("endpoint") or ctx.settings.doc_metrics_url
        try:
            ctx.reporter.post_metric(endpoint, with_["name"], percent)
        except ReportError as e:
            raise CIError(
                kind="upload_failed",
                job=ctx.job.name,
                step=step.name,
                message=str(e),
                details={"endpoint": endpoint},
            )
        ctx.log(f"doc-coverage: {with_['name']} = {percent}")
        return ActionResult(exit_code=result.exit_code, output=f"documentation coverage {percent}", outputs={"percent": percent})
