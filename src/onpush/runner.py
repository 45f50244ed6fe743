# runner.py
from __future__ import annotations

import time
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Set

from .actions import ActionRegistry, default_registry
from .artifacts import ArtifactStore
from .context import JobContext, Workspace
from .dag import build_dag, validate_pipeline
from .errors import CIError, StepFailure
from .model import (
    Job,
    JobResult,
    JobStatus,
    Pipeline,
    PipelineResult,
    Step,
    StepResult,
    StepStatus,
    TriggerEvent,
)
from .reporting import ReportClient
from .secrets import SecretStore
from .settings import Settings
from .ui.console import Console, get_console

# push ---> select jobs ---> one workspace per job ---> steps in order ---> AND of results


def new_run_id() -> str:
    """Run ids sort by start time: 20260101-120000-1a2b3c4d."""
    return f"{time.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------

def select_jobs(jobs: List[Job], only: Optional[Iterable[str]] = None) -> List[Job]:
    """
    Jobs to run: all of them, or the `only` jobs plus everything they need.
    Definition order is preserved.
    """
    if not only:
        return list(jobs)

    by_name = {j.name: j for j in jobs}
    wanted = list(only)
    missing = [n for n in wanted if n not in by_name]
    if missing:
        raise CIError(
            kind="unknown_job",
            job="<planner>",
            step=None,
            message=f"Unknown job(s) requested: {', '.join(missing)}",
            details={"known_jobs": sorted(by_name)},
        )

    keep: Set[str] = set()
    stack = list(wanted)
    while stack:
        name = stack.pop()
        if name in keep:
            continue
        keep.add(name)
        stack.extend(by_name[name].needs or [])
    return [j for j in jobs if j.name in keep]


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def run_step(ctx: JobContext, step: Step, registry: ActionRegistry) -> StepResult:
    """Run one step. Never raises for step-level failures; they come back as a FAILED result."""
    ctx.console.print_step(ctx.job.name, step.name)
    start = time.monotonic()
    try:
        if step.is_action:
            action = registry.resolve(step.uses, job=ctx.job.name, step=step.name)
            outcome = action(ctx, step, ctx.resolve_with(step))
            return StepResult(
                name=step.name,
                status=StepStatus.SUCCEEDED,
                exit_code=outcome.exit_code,
                output=ctx.masker.mask(outcome.output),
                duration=time.monotonic() - start,
            )

        proc = ctx.run_script(step.run, step)
        if not proc.ok:
            raise StepFailure(
                job=ctx.job.name,
                step=step.name,
                cmd=ctx.masker.mask(step.describe()),
                exit_code=proc.exit_code,
                output=proc.tail(),
            )
        return StepResult(
            name=step.name,
            status=StepStatus.SUCCEEDED,
            exit_code=proc.exit_code,
            output=proc.tail(),
            duration=time.monotonic() - start,
        )

    except StepFailure as e:
        ctx.console.print_failure(f"{ctx.job.name} / {step.name}", str(e), exit_code=e.exit_code, output=e.output)
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED,
            exit_code=e.exit_code,
            output=e.output,
            duration=time.monotonic() - start,
            error=str(e),
        )
    except CIError as e:
        hint = e.details.get("hint")
        exit_code = e.details.get("exit_code", 1)
        ctx.console.print_failure(f"{ctx.job.name} / {step.name}", str(e), exit_code=exit_code, hint=hint)
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED,
            exit_code=exit_code,
            output=ctx.masker.mask(str(e.details.get("log_tail", ""))),
            duration=time.monotonic() - start,
            error=ctx.masker.mask(f"{e.kind}: {e.message}"),
        )
    except Exception as e:
        # a broken action or runtime error fails the step, not the whole job
        message = ctx.masker.mask(f"{type(e).__name__}: {e}")
        ctx.console.print_failure(f"{ctx.job.name} / {step.name}", message, exit_code=1)
        if ctx.console.debug:
            ctx.console.print_exception(e)
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED,
            exit_code=1,
            duration=time.monotonic() - start,
            error=f"step_error: {message}",
        )


def run_job(
    job: Job,
    result: JobResult,
    *,
    run_id: str,
    event: TriggerEvent,
    settings: Settings,
    secrets: SecretStore,
    artifacts: ArtifactStore,
    registry: ActionRegistry,
    console: Console,
    source_root: Path,
    reporter: Optional[ReportClient] = None,
) -> JobResult:
    """
    Run a job in a fresh workspace. Steps run in order; after the first
    failure only `always` steps run, everything else is skipped.
    """
    result.transition(JobStatus.RUNNING)
    console.print_job_start(job.title)
    start = time.monotonic()

    try:
        with Workspace(settings.work_dir, run_id, job.name, keep=settings.keep_workspace) as ws:
            ctx = JobContext(
                job=job,
                run_id=run_id,
                workspace=ws,
                source_root=source_root,
                event=event,
                settings=settings,
                secrets=secrets,
                artifacts=artifacts,
                console=console,
                reporter=reporter or ReportClient(),
            )
            failed = False
            for step in job.steps:
                if failed and not step.always:
                    console.print_step_skipped(job.name, step.name)
                    result.steps.append(StepResult(name=step.name, status=StepStatus.SKIPPED))
                    continue
                step_result = run_step(ctx, step, registry)
                result.steps.append(step_result)
                if step_result.status is StepStatus.FAILED and not failed:
                    failed = True
                    result.error = step_result.error
    except OSError as e:
        # workspace setup or teardown
        failed = True
        result.error = f"{type(e).__name__}: {e}"
        console.print_exception(e)

    # exit code of the last step that actually ran; the status carries pass/fail
    executed = [s for s in result.steps if s.status is not StepStatus.SKIPPED and s.exit_code is not None]
    result.exit_code = executed[-1].exit_code if executed else (1 if failed else None)
    result.artifacts = [a for a in artifacts.list() if a.job == job.name]
    result.duration = time.monotonic() - start
    result.transition(JobStatus.FAILED if failed else JobStatus.SUCCEEDED)
    console.print_job_finished(job.name, result.status.value, result.duration)
    return result


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    pipeline: Pipeline,
    event: TriggerEvent,
    *,
    settings: Optional[Settings] = None,
    secrets: Optional[SecretStore] = None,
    registry: Optional[ActionRegistry] = None,
    source_root: str | Path = ".",
    max_workers: Optional[int] = None,
    fail_fast: bool = False,
    only: Optional[Iterable[str]] = None,
    console: Optional[Console] = None,
    reporter: Optional[ReportClient] = None,
    run_id: Optional[str] = None,
) -> PipelineResult:
    """
    Run every job of `pipeline` triggered by `event`.

    Jobs with satisfied dependencies run concurrently on a bounded pool.
    A failed job never cancels its siblings; jobs that need it are skipped.
    With fail_fast, no new job starts after the first failure. The result
    is succeeded only if every job succeeded.
    """
    settings = settings or Settings.from_env()
    console = console or get_console()
    secrets = secrets or SecretStore()
    registry = registry or default_registry()
    run_id = run_id or new_run_id()
    # secrets of this run mask only this run's output
    console = console.with_secrets(secrets.values())

    validate_pipeline(pipeline)
    result = PipelineResult(run_id=run_id, event=event)

    if not pipeline.is_triggered_by(event):
        result.triggered = False
        console.print_not_triggered(pipeline.name, event.name, event.ref)
        return result

    jobs = select_jobs(pipeline.jobs, only)
    by_name: Dict[str, Job] = {j.name: j for j in jobs}
    for j in jobs:
        result.jobs[j.name] = JobResult(name=j.name)

    store = ArtifactStore(settings.artifact_dir, run_id)
    console.print_run_started(
        pipeline=pipeline.name,
        event=event.name,
        ref=event.ref,
        run_id=run_id,
        job_count=len(jobs),
    )

    adj, indeg = build_dag(jobs)
    ready: Deque[str] = deque(j.name for j in jobs if indeg[j.name] == 0)
    workers = max(1, max_workers or settings.workers)
    stopped = False
    in_flight: Dict = {}
    root = Path(source_root).resolve()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        while ready or in_flight:
            # schedule ready jobs up to the worker limit
            while ready and not stopped and len(in_flight) < workers:
                name = ready.popleft()
                fut = pool.submit(
                    run_job,
                    by_name[name],
                    result.jobs[name],
                    run_id=run_id,
                    event=event,
                    settings=settings,
                    secrets=secrets,
                    artifacts=store,
                    registry=registry,
                    console=console,
                    source_root=root,
                    reporter=reporter,
                )
                in_flight[fut] = name

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            name = in_flight.pop(fut)
            job_result = result.jobs[name]

            exc = fut.exception()
            if exc is not None:
                console.print_exception(exc)
                job_result.error = str(exc)
                if job_result.status is JobStatus.RUNNING:
                    job_result.transition(JobStatus.FAILED)
                elif job_result.status is JobStatus.PENDING:
                    job_result.transition(JobStatus.SKIPPED)

            if job_result.ok:
                for nxt in sorted(adj[name]):
                    indeg[nxt] -= 1
                    if indeg[nxt] == 0:
                        ready.append(nxt)
            elif fail_fast:
                stopped = True

    for name, job_result in result.jobs.items():
        if job_result.status is JobStatus.PENDING:
            job_result.transition(JobStatus.SKIPPED)
            job_result.error = "not started: fail-fast" if stopped else "not started: a needed job did not succeed"
            console.print_job_finished(name, job_result.status.value)

    console.print_results(result)
    return result
