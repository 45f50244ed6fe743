# actions/checkout.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import List, Mapping

from ..git_facts import git
from ..model import Step
from .base import Action, ActionResult

IGNORED_DIRS = {".git", ".onpush"}


def checkout_tree(source: Path, dest: Path) -> List[str]:
    """
    Copy the source tree into `dest`.

    Inside a git repository only files git knows about (tracked plus
    untracked-but-not-ignored) are copied. Otherwise the whole directory is
    copied minus IGNORED_DIRS. Returns the copied relative paths.
    """
    source = source.resolve()
    dest.mkdir(parents=True, exist_ok=True)

    if git.is_repo(source):
        copied = []
        for rel in git.tracked_files(source):
            src = source / rel
            if not src.is_file():
                # deleted in the working tree
                continue
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, target)
            copied.append(rel)
        return copied

    dest_resolved = dest.resolve()

    def _ignore(directory: str, names: List[str]) -> List[str]:
        skip = [n for n in names if n in IGNORED_DIRS]
        # never copy the workspace into itself
        skip.extend(n for n in names if (Path(directory) / n).resolve() == dest_resolved)
        return skip

    shutil.copytree(source, dest, ignore=_ignore, dirs_exist_ok=True)
    return sorted(
        str(p.relative_to(dest)).replace("\\", "/") for p in dest.rglob("*") if p.is_file()
    )


class Checkout(Action):
    """Stand-in for actions/checkout: populate the workspace from the local source tree."""

    name = "actions/checkout"

    def run(self, ctx, step: Step, with_: Mapping[str, str]) -> ActionResult:
        dest = (ctx.workspace / with_.get("path", ".")).resolve()
        files = checkout_tree(ctx.source_root, dest)
        ctx.log(f"checkout: {len(files)} file(s) from {ctx.source_root} at {ctx.event.sha or ctx.event.ref}")
        return ActionResult(output=f"checked out {len(files)} file(s)")
