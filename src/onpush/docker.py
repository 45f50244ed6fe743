# docker.py
from __future__ import annotations

import os
import posixpath
import subprocess
from typing import TYPE_CHECKING, List, Mapping, Optional

from .errors import TOOL_HINTS, CIError
from .model import Step

if TYPE_CHECKING:
    from .context import JobContext

CONTAINER_WORKDIR = "/workspace"


# ---------------------------------------------------------------------
# Container isolation for jobs that declare `container:`
# ---------------------------------------------------------------------

def check_docker_available(job: str = "") -> None:
    """Check if Docker is available, raise helpful error if not."""
    try:
        subprocess.run(
            ["docker", "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise CIError(
            kind="docker_unavailable",
            job=job,
            step=None,
            message="Docker is not available",
            details={"hint": TOOL_HINTS["docker"]},
        )


def docker_command(
    ctx: JobContext,
    step: Step,
    script: str,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """
    Build the `docker run` argv for an inline step.

    The job workspace is mounted at /workspace. Only variables that differ
    from the host environment are forwarded, so host PATH and friends do not
    leak into the image.
    """
    check_docker_available(ctx.job.name)
    image = ctx.job.container
    if not image:
        raise ValueError(f"job {ctx.job.name!r} has no container image")

    cmd = ["docker", "run", "--rm"]
    cmd.extend(["-v", f"{ctx.workspace}:{CONTAINER_WORKDIR}"])

    container_cwd = posixpath.normpath(f"{CONTAINER_WORKDIR}/{step.cwd or '.'}")
    cmd.extend(["-w", container_cwd])

    for key, value in sorted(container_env(env or {}).items()):
        cmd.extend(["-e", f"{key}={value}"])

    cmd.append(image)
    cmd.extend(["sh", "-e", "-c", script])
    return cmd


def container_env(env: Mapping[str, str], host: Optional[Mapping[str, str]] = None) -> dict:
    host_env = os.environ if host is None else host
    out = {k: v for k, v in env.items() if host_env.get(k) != v}
    out.pop("PATH", None)
    out["ONPUSH_WORKSPACE"] = CONTAINER_WORKDIR
    return out
