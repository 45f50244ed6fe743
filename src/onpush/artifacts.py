# artifacts.py
from __future__ import annotations

import json
import shutil
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import AmbiguousArtifactError, ArtifactExistsError
from .model import Artifact

# ---------------------------------------------------------------------
# File-based artifact store
# ---------------------------------------------------------------------
#   root/
#     <run_id>/
#       manifest.json
#       logs/<job>.log
#       <job>/<artifact name>/<files...>
#
# Artifacts are write-once per (job, name). Two jobs may upload the same
# name; they are kept side by side and `get()` needs the job to pick one.
# ---------------------------------------------------------------------

MANIFEST = "manifest.json"


class ArtifactStore:
    def __init__(self, root: str | Path, run_id: str):
        self.root = Path(root).resolve()
        self.run_id = run_id
        self.run_dir = self.root / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._index: Dict[Tuple[str, str], Artifact] = {}
        self._load_manifest()

    # --- write --------------------------------------------------------

    def put(self, job: str, name: str, source: str | Path) -> Artifact:
        """
        Copy `source` (file or directory) into the store under (job, name).

        Raises ArtifactExistsError if this job already uploaded `name`,
        FileNotFoundError if `source` does not exist.
        """
        src = Path(source)
        if not src.exists():
            raise FileNotFoundError(f"artifact path not found: {src}")
        _check_name(name)

        key = (job, name)
        with self._lock:
            if key in self._index:
                raise ArtifactExistsError(f"artifact {name!r} already uploaded by job {job!r}")
            dest = self.run_dir / job / name
            dest.mkdir(parents=True, exist_ok=True)
            if src.is_dir():
                shutil.copytree(src, dest, dirs_exist_ok=True)
            else:
                shutil.copy2(src, dest / src.name)
            files = sorted(
                str(p.relative_to(dest)).replace("\\", "/") for p in dest.rglob("*") if p.is_file()
            )
            artifact = Artifact(run_id=self.run_id, job=job, name=name, path=str(dest), files=files)
            self._index[key] = artifact
            self._write_manifest()
        return artifact

    # --- read ---------------------------------------------------------

    def get(self, name: str, job: Optional[str] = None) -> Artifact:
        matches = self.find(name)
        if job is not None:
            matches = [a for a in matches if a.job == job]
        if not matches:
            where = f" from job {job!r}" if job else ""
            raise KeyError(f"no artifact named {name!r}{where} in run {self.run_id}")
        if len(matches) > 1:
            jobs = ", ".join(sorted(a.job for a in matches))
            raise AmbiguousArtifactError(
                f"artifact {name!r} was uploaded by several jobs ({jobs}); pass job= to choose"
            )
        return matches[0]

    def find(self, name: str) -> List[Artifact]:
        with self._lock:
            return sorted((a for a in self._index.values() if a.name == name), key=lambda a: a.job)

    def list(self) -> List[Artifact]:
        with self._lock:
            return sorted(self._index.values(), key=lambda a: (a.job, a.name))

    def file_names(self, name: str, job: Optional[str] = None) -> List[str]:
        return list(self.get(name, job=job).files)

    # --- logs ---------------------------------------------------------

    def log_path(self, job: str) -> Path:
        p = self.run_dir / "logs" / f"{job}.log"
        p.parent.mkdir(parents=True, exist_ok=True)
        return p

    # --- manifest -----------------------------------------------------

    def _write_manifest(self) -> None:
        payload = {
            "run_id": self.run_id,
            "updated_at_unix": int(time.time()),
            "artifacts": [
                {"job": a.job, "name": a.name, "path": a.path, "files": a.files}
                for a in sorted(self._index.values(), key=lambda a: (a.job, a.name))
            ],
        }
        tmp = self.run_dir / (MANIFEST + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.run_dir / MANIFEST)

    def _load_manifest(self) -> None:
        man = self.run_dir / MANIFEST
        if not man.exists():
            return
        data = json.loads(man.read_text(encoding="utf-8"))
        for entry in data.get("artifacts", []):
            a = Artifact(
                run_id=self.run_id,
                job=entry["job"],
                name=entry["name"],
                path=entry["path"],
                files=list(entry.get("files", [])),
            )
            self._index[(a.job, a.name)] = a

    # --- runs ---------------------------------------------------------

    @staticmethod
    def runs(root: str | Path) -> List[str]:
        """Run ids under `root`, oldest first (run ids sort by start time)."""
        r = Path(root)
        if not r.exists():
            return []
        return sorted(p.name for p in r.iterdir() if (p / MANIFEST).exists() or (p / "logs").exists())

    @classmethod
    def open_latest(cls, root: str | Path) -> ArtifactStore:
        runs = cls.runs(root)
        if not runs:
            raise FileNotFoundError(f"no runs found under {root}")
        return cls(root, runs[-1])


def _check_name(name: str) -> None:
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ValueError(f"invalid artifact name: {name!r}")
