# events.py
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional

from .git_facts import git
from .model import TriggerEvent

LOCAL_REF = "refs/heads/local"
NULL_SHA = "0" * 40


def push_event(
    source_root: str | Path = ".",
    *,
    ref: Optional[str] = None,
    sha: Optional[str] = None,
) -> TriggerEvent:
    """
    Build a push event for the working tree at `source_root`.

    Explicit ref/sha win; otherwise they come from git. Outside a git
    repository the event falls back to refs/heads/local and a null sha.
    """
    if ref is not None and not ref.startswith("refs/") and len(ref) != 40:
        ref = f"refs/heads/{ref}"

    if ref is None or sha is None:
        try:
            if ref is None:
                ref = git.current_ref(source_root)
            if sha is None:
                sha = git.head_sha(source_root)
        except (subprocess.CalledProcessError, FileNotFoundError):
            ref = ref or LOCAL_REF
            sha = sha or NULL_SHA

    return TriggerEvent(name="push", ref=ref, sha=sha)


def make_event(name: str, source_root: str | Path = ".", *, ref: Optional[str] = None, sha: Optional[str] = None) -> TriggerEvent:
    """Event by name; ref and sha are resolved the same way as for push."""
    pushed = push_event(source_root, ref=ref, sha=sha)
    return TriggerEvent(name=name, ref=pushed.ref, sha=pushed.sha)
