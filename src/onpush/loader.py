# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import PipelineDefinitionError
from .model import Job, Pipeline, Step, Trigger

DEFAULT_WORKFLOW = "onpush_workflow.py"
YAML_SUFFIXES = (".yml", ".yaml")


# -------------------- YAML schema --------------------

def _scalar(value: Any) -> str:
    # YAML turns `override: true` into a bool and `version: 1.0` into a float
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


class StepSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    id: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, str] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = Field(default_factory=dict)
    if_: Optional[str] = Field(default=None, alias="if")
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes")

    @field_validator("with_", "env", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): _scalar(val) for k, val in v.items()}
        return v

    @property
    def always(self) -> bool:
        return (self.if_ or "").replace("${{", "").replace("}}", "").strip() == "always()"

    def to_step(self, index: int) -> Step:
        name = self.name or self.uses or (self.run or "").strip().split("\n")[0] or f"step-{index + 1}"
        return Step(
            name=name,
            run=self.run,
            uses=self.uses,
            with_=dict(self.with_),
            env=dict(self.env),
            always=self.always,
            cwd=self.working_directory,
            id=self.id,
            timeout_minutes=self.timeout_minutes,
        )


class JobSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    runs_on: Union[str, List[str]] = Field(default="ubuntu-latest", alias="runs-on")
    needs: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    container: Optional[str] = None
    steps: List[StepSpec]

    @field_validator("needs", mode="before")
    @classmethod
    def _needs_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("env", mode="before")
    @classmethod
    def _env(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): _scalar(val) for k, val in v.items()}
        return v or {}

    @field_validator("container", mode="before")
    @classmethod
    def _container_image(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return v.get("image")
        return v

    def to_job(self, key: str) -> Job:
        runs_on = self.runs_on if isinstance(self.runs_on, str) else ",".join(self.runs_on)
        return Job(
            name=key,
            steps=[s.to_step(i) for i, s in enumerate(self.steps)],
            needs=list(self.needs),
            env=dict(self.env),
            runs_on=runs_on,
            container=self.container,
            display_name=self.name,
        )


class WorkflowSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    on: Any = "push"
    env: Dict[str, str] = Field(default_factory=dict)
    jobs: Dict[str, JobSpec]

    def triggers(self) -> List[Trigger]:
        on = self.on
        if isinstance(on, str):
            return [Trigger(event=on)]
        if isinstance(on, list):
            return [Trigger(event=str(e)) for e in on]
        if isinstance(on, dict):
            out = []
            for event, cfg in on.items():
                branches = None
                if isinstance(cfg, dict) and cfg.get("branches"):
                    b = cfg["branches"]
                    branches = [b] if isinstance(b, str) else [str(x) for x in b]
                out.append(Trigger(event=str(event), branches=branches))
            return out
        raise PipelineDefinitionError(f"unsupported 'on' value: {on!r}")


# -------------------- Loading --------------------

def _location(err: dict) -> str:
    return ".".join(str(p) for p in err.get("loc", ())) or "<root>"


def load_yaml_pipeline(path: Path) -> Pipeline:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise PipelineDefinitionError(f"invalid YAML: {e}", source=str(path)) from e

    if not isinstance(raw, dict):
        raise PipelineDefinitionError("workflow must be a mapping", source=str(path))

    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in raw:
        raw["on"] = raw.pop(True)

    try:
        workflow = WorkflowSpec.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(f"{_location(err)}: {err['msg']}" for err in e.errors())
        raise PipelineDefinitionError(problems, source=str(path)) from e

    jobs: List[Job] = []
    for key, job_spec in workflow.jobs.items():
        try:
            job = job_spec.to_job(key)
        except ValueError as e:
            raise PipelineDefinitionError(f"jobs.{key}: {e}", source=str(path)) from e
        if workflow.env:
            job.env = {**workflow.env, **job.env}
        jobs.append(job)

    return Pipeline(name=workflow.name or path.stem, jobs=jobs, triggers=workflow.triggers())


def load_python_pipeline(path: Path) -> Pipeline:
    """
    Run a python workflow file and collect its pipeline.

    The file defines one of:
      - pipeline_definition() -> Pipeline | List[Job]
      - PIPELINE = Pipeline(...)
      - JOBS = [Job, ...]
    """
    found: Any = None
    try:
        globals_dict = runpy.run_path(str(path), run_name=f"onpush_workflow_{path.stem}")
        if callable(globals_dict.get("pipeline_definition")):
            found = globals_dict["pipeline_definition"]()
        elif isinstance(globals_dict.get("PIPELINE"), Pipeline):
            found = globals_dict["PIPELINE"]
        elif "JOBS" in globals_dict:
            found = globals_dict["JOBS"]
    except PipelineDefinitionError:
        raise
    except Exception as e:
        # syntax errors, failed imports, bad DSL arguments
        raise PipelineDefinitionError(f"{type(e).__name__}: {e}", source=str(path)) from e

    if isinstance(found, Pipeline):
        return found
    if isinstance(found, list) and found and all(isinstance(j, Job) for j in found):
        return Pipeline(name=path.stem, jobs=found)
    raise PipelineDefinitionError(
        "workflow must define pipeline_definition() -> Pipeline | List[Job], PIPELINE = Pipeline(...) "
        "or JOBS = [Job, ...]",
        source=str(path),
    )


def load_pipeline(path: str | Path) -> Pipeline:
    """Load a pipeline from a .py or .yml/.yaml workflow file."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml_pipeline(wf_path)
    if wf_path.suffix == ".py":
        return load_python_pipeline(wf_path)
    raise PipelineDefinitionError(
        f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}",
        source=str(wf_path),
    )


# -------------------- Discovery --------------------

def find_workflow_files(root: str | Path = ".") -> List[Path]:
    root = Path(root)
    found: List[Path] = []

    default = root / DEFAULT_WORKFLOW
    if default.exists():
        found.append(default)
    found.extend(p for p in sorted(root.glob("*_workflow.py")) if p != default)

    gh = root / ".github" / "workflows"
    if gh.is_dir():
        found.extend(sorted(p for p in gh.iterdir() if p.suffix in YAML_SUFFIXES))
    return found


def discover_pipeline(arg: Optional[str], root: str | Path = ".") -> Path:
    """
    Resolve the workflow file to run: `arg` when given, otherwise the one
    workflow found under `root`. Raises PipelineDefinitionError when none
    or more than one is found.
    """
    if arg:
        p = Path(arg)
        if not p.exists() and not p.suffix:
            p = Path(f"{arg}.py")
        if not p.exists():
            raise PipelineDefinitionError(f"Could not find workflow file: {arg}")
        return p

    candidates = find_workflow_files(root)
    if not candidates:
        raise PipelineDefinitionError(
            f"No workflow file found. Looked for {DEFAULT_WORKFLOW}, *_workflow.py and .github/workflows/*.yml"
        )
    if len(candidates) > 1:
        listing = ", ".join(str(c) for c in candidates)
        raise PipelineDefinitionError(f"Multiple workflow files found, pick one with --workflow: {listing}")
    return candidates[0]
