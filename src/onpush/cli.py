# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from .artifacts import ArtifactStore
from .coverage import extract_total_percent
from .dag import validate_pipeline
from .errors import CIError, CoverageParseError, PipelineDefinitionError
from .events import make_event
from .git_facts import git
from .loader import discover_pipeline, load_pipeline
from .runner import run_pipeline
from .secrets import SecretStore
from .settings import Settings
from .ui.console import Console, get_console, set_console


def _fail(ctx: click.Context, exc: Exception) -> None:
    console = get_console()
    console.print_exception(exc)
    ctx.exit(1)


def _source_root(workflow_path: Path, source: str | None) -> Path:
    """The tree a run checks out: --source, the workflow's git repository, or the cwd."""
    if source:
        return Path(source).resolve()
    try:
        return git.repo_root(workflow_path.resolve().parent)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()


def _load(workflow: str | None):
    """Discover and load the workflow, printing a structured error on failure."""
    console = get_console()
    try:
        path = discover_pipeline(workflow)
        return path, load_pipeline(path)
    except (PipelineDefinitionError, FileNotFoundError) as e:
        console.print_error(
            "Failed to load workflow",
            str(e),
            suggestion="Create onpush_workflow.py or specify one explicitly:\n  onpush run --workflow my_workflow.py",
        )
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """onpush: run a push-triggered CI pipeline on this machine."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or .yml); discovered when omitted")
@click.option("--event", default="push", show_default=True, help="Event that triggers the run")
@click.option("--ref", default=None, help="Git ref of the event (defaults to the current branch)")
@click.option("--sha", default=None, help="Commit sha of the event (defaults to HEAD)")
@click.option("--workers", default=None, type=int, help="Number of parallel jobs")
@click.option("--fail-fast/--no-fail-fast", default=False, show_default=True, help="Stop starting jobs after the first failure")
@click.option("--artifact-dir", default=None, type=click.Path(file_okay=False), help="Where artifacts and logs are kept")
@click.option("--work-dir", default=None, type=click.Path(file_okay=False), help="Where job workspaces are created")
@click.option("--keep-workspace", is_flag=True, default=False, help="Do not delete job workspaces afterwards")
@click.option("--secret", "secret_pairs", multiple=True, metavar="NAME=VALUE", help="Secret for this run (repeatable)")
@click.option("--secrets-file", default=None, type=click.Path(exists=True, dir_okay=False), help="dotenv-style secrets file")
@click.option("--job", "only", multiple=True, help="Run only this job and what it needs (repeatable)")
@click.option("--source", default=None, type=click.Path(exists=True, file_okay=False), help="Tree that actions/checkout copies (defaults to the workflow's git repository, else the current directory)")
@click.pass_context
def run(ctx, workflow, event, ref, sha, workers, fail_fast, artifact_dir, work_dir, keep_workspace, secret_pairs, secrets_file, only, source):
    """Run the pipeline for an event."""
    console = get_console()
    workflow_path, pipeline = _load(workflow)

    try:
        settings = Settings.from_env().with_overrides(
            workers=workers,
            artifact_dir=Path(artifact_dir) if artifact_dir else None,
            work_dir=Path(work_dir) if work_dir else None,
            keep_workspace=keep_workspace or None,
        )

        secrets = SecretStore.from_environ(settings.secret_env)
        if secrets_file:
            secrets.load_file(secrets_file)
        secrets.load_pairs(secret_pairs)
        for value in secrets.values():
            console.masker.add(value)

        source_root = _source_root(workflow_path, source)

        trigger = make_event(event, source_root, ref=ref, sha=sha)
        console.print_debug(f"Loaded {len(pipeline.jobs)} job(s) from {workflow_path}")

        result = run_pipeline(
            pipeline,
            trigger,
            settings=settings,
            secrets=secrets,
            source_root=source_root,
            fail_fast=fail_fast,
            only=list(only) or None,
            console=console,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (CIError, PipelineDefinitionError, ValueError, OSError) as e:
        _fail(ctx, e)
        return

    if not result.ok:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or .yml); discovered when omitted")
def validate(workflow):
    """Check a workflow and print its stages."""
    console = get_console()
    workflow_path, pipeline = _load(workflow)
    try:
        levels = validate_pipeline(pipeline)
    except PipelineDefinitionError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)

    events = ", ".join(
        t.event + (f" [{', '.join(t.branches)}]" if t.branches else "") for t in pipeline.triggers
    )
    console.print_header(f"{pipeline.name} ({workflow_path})")
    console.print_info(f"on: {events}")
    console.print_plan(levels)


@cli.group()
def artifacts():
    """Inspect artifacts of previous runs."""


def _open_store(artifact_dir: str | None, run_id: str | None) -> ArtifactStore:
    root = Path(artifact_dir) if artifact_dir else Settings.from_env().artifact_dir
    if run_id is None:
        return ArtifactStore.open_latest(root)
    if run_id not in ArtifactStore.runs(root):
        raise FileNotFoundError(f"run {run_id} not found under {root}")
    return ArtifactStore(root, run_id)


@artifacts.command("list")
@click.option("--run", "run_id", default=None, help="Run id (defaults to the latest run)")
@click.option("--artifact-dir", default=None, help="Artifact root directory")
@click.pass_context
def artifacts_list(ctx, run_id, artifact_dir):
    """List the artifacts of a run."""
    console = get_console()
    try:
        store = _open_store(artifact_dir, run_id)
    except FileNotFoundError as e:
        _fail(ctx, e)
        return

    console.print_info(f"Run {store.run_id}")
    items = store.list()
    if not items:
        console.print_info("  (no artifacts)")
    for a in items:
        console.print_info(f"  {a.job}/{a.name}: {', '.join(a.files)}")


@artifacts.command("path")
@click.argument("name")
@click.option("--job", default=None, help="Job that uploaded the artifact")
@click.option("--run", "run_id", default=None, help="Run id (defaults to the latest run)")
@click.option("--artifact-dir", default=None, help="Artifact root directory")
@click.pass_context
def artifacts_path(ctx, name, job, run_id, artifact_dir):
    """Print where an artifact is stored."""
    try:
        store = _open_store(artifact_dir, run_id)
        artifact = store.get(name, job=job)
    except (FileNotFoundError, LookupError) as e:
        _fail(ctx, e)
        return
    click.echo(artifact.path)


@cli.command("doc-percent")
@click.argument("report", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def doc_percent(ctx, report):
    """Print the total documentation coverage from a rustdoc coverage table."""
    try:
        percent = extract_total_percent(Path(report).read_text(encoding="utf-8"))
    except CoverageParseError as e:
        _fail(ctx, e)
        return
    click.echo(percent)


if __name__ == "__main__":
    cli()
