# actions/toolchain.py
from __future__ import annotations

from typing import List, Mapping

from ..errors import CIError
from ..model import Step
from .base import Action, ActionResult, truthy


def install_argv(toolchain: str, *, profile: str = "minimal", components: List[str] | None = None) -> List[str]:
    argv = ["rustup", "toolchain", "install", toolchain, "--profile", profile, "--no-self-update"]
    for c in components or []:
        argv.extend(["--component", c])
    return argv


class Toolchain(Action):
    """
    Stand-in for actions-rs/toolchain.

    Inputs:
      toolchain   stable | nightly | <version>   (required)
      override    "true" makes it win over rust-toolchain files
      profile     rustup profile (default minimal)
      components  comma separated, e.g. "clippy, rustfmt"

    A failed install fails the job; there is no fallback toolchain.
    """

    name = "actions-rs/toolchain"
    required = ("toolchain",)

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        toolchain = with_["toolchain"].strip()
        override = truthy(with_.get("override"))
        components = [c.strip() for c in (with_.get("components") or "").split(",") if c.strip()]

        argv = install_argv(toolchain, profile=with_.get("profile") or "minimal", components=components)
        result = ctx.run_command(argv, step)
        if not result.ok:
            raise CIError(
                kind="toolchain_install_failed",
                job=ctx.job.name,
                step=step.name,
                message=f"could not install toolchain {toolchain}",
                details={"exit_code": result.exit_code, "log_tail": result.tail()},
            )

        ctx.set_toolchain(toolchain, override=override)
        mode = "override" if override else "default"
        return ActionResult(
            exit_code=result.exit_code,
            output=f"toolchain {toolchain} active ({mode})",
            outputs={"toolchain": toolchain},
        )
