# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .model import Job, Pipeline, Step, Trigger


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    always: bool = False,
    timeout_minutes: Optional[float] = None,
) -> Step:
    """Create an inline shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=env or {}, always=always, timeout_minutes=timeout_minutes)


def uses(
    action: str,
    name: Optional[str] = None,
    *,
    with_: Optional[Dict[str, str]] = None,
    env: Optional[Dict[str, str]] = None,
    always: bool = False,
    **inputs: str,
) -> Step:
    """
    Create a step that invokes an action.

        uses("actions-rs/toolchain@v1", toolchain="stable", override="true")

    Inputs can be passed as keywords or, for keys that are not valid
    identifiers (out-type), through `with_`.
    """
    merged = {k: _as_input(v) for k, v in (with_ or {}).items()}
    merged.update({k: _as_input(v) for k, v in inputs.items()})
    return Step(name=name or action, uses=action, with_=merged, env=env or {}, always=always)


def _as_input(value) -> str:
    # YAML-style booleans so `override=True` reads like `override: true`
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------
# Job / pipeline helpers
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    runs_on: str = "ubuntu-latest",
    container: Optional[str] = None,
    display_name: Optional[str] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    if not steps:
        raise ValueError(f"job({name!r}) must have at least one step")

    steps_final = list(steps)
    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        env={k: str(v) for k, v in (env or {}).items()},
        runs_on=runs_on,
        container=container,
        display_name=display_name,
    )


def on(event: str, *, branches: Optional[Sequence[str]] = None) -> Trigger:
    return Trigger(event=event, branches=list(branches) if branches else None)


def pipeline(
    name: str,
    *jobs: Job,
    on: Iterable[Union[str, Trigger]] = ("push",),
) -> Pipeline:
    """
    Pipeline definition helper:

        def pipeline_definition():
            return pipeline("build", job(...), job(...), on=["push"])
    """
    triggers = [t if isinstance(t, Trigger) else Trigger(event=t) for t in on]
    return Pipeline(name=name, jobs=list(jobs), triggers=triggers)


def wf(*jobs: Job) -> List[Job]:
    """Bare job list; the loader wraps it in a push-triggered pipeline named after the file."""
    return list(jobs)
