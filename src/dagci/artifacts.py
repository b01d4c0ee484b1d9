# artifacts.py
from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ArtifactNotFound
from .model import ArtifactRef

DEFAULT_RETENTION_DAYS = 90
MANIFEST_NAME = "manifest.json"


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


def _check_name(name: str) -> None:
    # names become directory names under the export root
    if not name:
        raise ValueError("Artifact name must not be empty")
    if "/" in name or "\\" in name or name in (".", "..") or name == MANIFEST_NAME:
        raise ValueError(f"Invalid artifact name {name!r}: must be a plain file name other than {MANIFEST_NAME}")


@dataclass(frozen=True)
class _Entry:
    ref: ArtifactRef
    data: bytes


class ArtifactStore:
    """
    In-memory, versioned artifact store for one run.

    Every put() appends a new version; nothing is ever overwritten, so a ref
    handed out earlier keeps resolving to the same bytes.
    """

    def __init__(self, run_id: str = "", *, retention_days: int = DEFAULT_RETENTION_DAYS):
        self.run_id = run_id
        self.retention_days = retention_days
        self._lock = threading.Lock()
        self._versions: Dict[str, List[_Entry]] = {}

    def put(self, name: str, data: bytes, job: str, *, retention_days: Optional[int] = None) -> ArtifactRef:
        _check_name(name)
        if isinstance(data, str):
            data = data.encode("utf-8")
        payload = bytes(data)
        with self._lock:
            versions = self._versions.setdefault(name, [])
            ref = ArtifactRef(
                name=name,
                version=len(versions) + 1,
                job=job,
                run_id=self.run_id,
                size=len(payload),
                sha256=_sha256_bytes(payload),
                retention_days=retention_days if retention_days is not None else self.retention_days,
                created_at=datetime.now(timezone.utc),
            )
            versions.append(_Entry(ref, payload))
        return ref

    def get(self, ref: ArtifactRef) -> bytes:
        if ref.run_id != self.run_id:
            raise ArtifactNotFound(ref.name, ref.version)
        with self._lock:
            versions = self._versions.get(ref.name, [])
            if not 1 <= ref.version <= len(versions):
                raise ArtifactNotFound(ref.name, ref.version)
            return versions[ref.version - 1].data

    def latest(self, name: str) -> ArtifactRef:
        with self._lock:
            versions = self._versions.get(name)
            if not versions:
                raise ArtifactNotFound(name)
            return versions[-1].ref

    def versions(self, name: str) -> List[ArtifactRef]:
        with self._lock:
            return [e.ref for e in self._versions.get(name, [])]

    def refs(self) -> List[ArtifactRef]:
        with self._lock:
            return [e.ref for entries in self._versions.values() for e in entries]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._versions.values())


class DirectorySink:
    """
    Export a finished run's artifacts to disk:

        <root>/<name>/v<version>
        <root>/manifest.json
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def collect(self, store: ArtifactStore) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        manifest = {"run_id": store.run_id, "artifacts": []}
        for ref in store.refs():
            target = self.root / ref.name / f"v{ref.version}"
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(store.get(ref))
            entry = ref.to_dict()
            entry["path"] = str(target.relative_to(self.root))
            manifest["artifacts"].append(entry)

        manifest_path = self.root / MANIFEST_NAME
        manifest_path.write_text(_json_dumps_stable(manifest), encoding="utf-8")
        return manifest_path
