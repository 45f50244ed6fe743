# coverage.py
from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import Dict, List, Mapping

from .errors import CoverageParseError

TOTAL_MARKER = "| Total"
TOTAL_FIELD = 5  # 1-based, as in `cut -d '|' -f 5`

_PERCENT = re.compile(r"^\d+(\.\d+)?%$")


def extract_total_percent(
    text: str,
    *,
    marker: str = TOTAL_MARKER,
    field: int = TOTAL_FIELD,
    delimiter: str = "|",
) -> str:
    """
    Pull the total percentage out of a rustdoc `--show-coverage` table.

    The first line starting with `marker` is split on `delimiter`, the
    1-based `field` is taken and all whitespace is removed:

        | Total | 10 | 8 | 80.0% |   ->   80.0%

    Raises CoverageParseError when no line matches or the field is not a
    percentage.
    """
    for line in text.splitlines():
        if not line.startswith(marker):
            continue
        parts = line.split(delimiter)
        if len(parts) < field:
            raise CoverageParseError(
                f"total line has {len(parts)} fields, expected at least {field}: {line.strip()!r}"
            )
        value = "".join(parts[field - 1].split())
        if not value:
            raise CoverageParseError(f"field {field} of total line is empty: {line.strip()!r}")
        if not _PERCENT.match(value):
            raise CoverageParseError(f"field {field} of total line is not a percentage: {value!r}")
        return value
    raise CoverageParseError(f"no line starting with {marker!r} in coverage report")


def relocate(workspace: str | Path, mapping: Mapping[str, str]) -> List[Dict[str, str]]:
    """
    Rename files inside `workspace` per `mapping` (source -> destination).

    Paths are relative to the workspace and may not escape it. Returns the
    list of moves performed. A missing source raises FileNotFoundError.
    """
    root = Path(workspace).resolve()
    moves = []
    for src_rel, dst_rel in mapping.items():
        src = _inside(root, src_rel)
        dst = _inside(root, dst_rel)
        if not src.exists():
            raise FileNotFoundError(f"cannot rename {src_rel}: no such file in workspace")
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(src), str(dst))
        moves.append({"from": src_rel, "to": dst_rel})
    return moves


def _inside(root: Path, rel: str) -> Path:
    p = (root / rel).resolve()
    if p != root and root not in p.parents:
        raise ValueError(f"path escapes workspace: {rel}")
    return p
