# actions/artifact.py
from __future__ import annotations

from typing import Mapping

from ..errors import ArtifactExistsError, CIError
from ..model import Step
from .base import Action, ActionResult


class UploadArtifact(Action):
    """Stand-in for actions/upload-artifact. Inputs: name (default "artifact"), path (required)."""

    name = "actions/upload-artifact"
    required = ("path",)

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        artifact_name = with_.get("name") or "artifact"
        path = ctx.workspace / with_["path"]
        try:
            artifact = ctx.artifacts.put(ctx.job.name, artifact_name, path)
        except FileNotFoundError:
            raise CIError(
                kind="artifact_missing",
                job=ctx.job.name,
                step=step.name,
                message=f"path not found: {with_['path']}",
                details={"artifact": artifact_name},
            )
        except ArtifactExistsError as e:
            raise CIError(
                kind="artifact_exists",
                job=ctx.job.name,
                step=step.name,
                message=str(e),
                details={"artifact": artifact_name},
            )
        ctx.console.print_artifact(ctx.job.name, artifact_name, with_["path"])
        return ActionResult(output=f"stored {len(artifact.files)} file(s) as {artifact_name}", artifacts=[artifact])
