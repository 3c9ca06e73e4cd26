# cache.py
from __future__ import annotations

import functools
import hashlib
import json
import os
import shutil
import subprocess
import tarfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .model import ConfigTag, ExecutionRecord, RecordKey, RecordStatus

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Record-level caching:
#   fingerprint = hash(
#       action name + configuration tag + build variant,
#       tool identity + tool version,
#       resolved arguments (workspace-relative),
#       environment passed to the tool,
#       declared outputs,
#       contents of every input file (and of a generated tool),
#   )
#
# Cache entry (content-addressed, never expires by time):
#   root/<fp[:2]>/<fp>.tar.gz          declared outputs, arcname = declared path
#   root/<fp[:2]>/<fp>.manifest.json   what produced it, for explainability
# ---------------------------------------------------------------------

FINGERPRINT_VERSION = 1


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _hash_path(path: Path) -> object:
    """File -> digest, directory -> {relpath: digest}, missing -> None."""
    if path.is_file():
        return hash_file_contents(path)
    if path.is_dir():
        return {
            str(f.relative_to(path)).replace("\\", "/"): hash_file_contents(f)
            for f in _iter_files_under(path)
        }
    return None


@functools.lru_cache(maxsize=None)
def tool_version(tool: str, cwd: Optional[str] = None) -> Optional[str]:
    """
    Best-effort version discovery, run from `cwd` like the tool itself.
    Keep it simple and stable.
    """
    for cmd in ([tool, "--version"], [tool, "-V"], [tool, "version"]):
        try:
            completed = subprocess.run(
                cmd, cwd=cwd, text=True, capture_output=True, check=False, timeout=30
            )
        except (OSError, subprocess.SubprocessError):
            continue
        out = (completed.stdout or "").strip()
        err = (completed.stderr or "").strip()
        text = out if out else err
        if completed.returncode == 0 and text:
            # Normalize whitespace to make hashing stable
            return " ".join(text.split())
    return None


def compute_fingerprint(
    *,
    action: str,
    tag: ConfigTag,
    variant: str,
    tool: str,
    tool_version: Optional[str],
    args: List[str],
    env: Mapping[str, str],
    inputs: Mapping[str, Path],
    outputs: Iterable[str],
) -> Tuple[str, Dict]:
    """
    Returns (fingerprint, manifest_bits). `inputs` maps declared paths
    (including a generated tool) to the files to hash.
    """
    input_hashes = {declared: _hash_path(Path(p)) for declared, p in sorted(inputs.items())}
    payload = {
        "v": FINGERPRINT_VERSION,  # bump this if you change hashing format
        "action": action,
        "tag": tag.value,
        "variant": variant,
        "tool": tool,
        "tool_version": tool_version,
        "args": list(args),
        "env": dict(env),
        "inputs": input_hashes,
        "outputs": sorted(outputs),
    }
    return _sha256_str(_json_dumps_stable(payload)), payload


@dataclass(frozen=True)
class CacheUsage:
    entries: int
    bytes: int

    @property
    def megabytes(self) -> float:
        return self.bytes / (1024 * 1024)


class CacheStore:
    """
    Content-addressed store of record outputs, shared by all workers.

    get()/put() are safe to call concurrently. put() is first-writer-wins.
    single_flight(fp) lets at most one caller compute a given fingerprint
    at a time; the others wait and then find the entry in the cache.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._guard = threading.Lock()
        self._flights: Dict[str, Tuple[threading.Lock, int]] = {}

    def _entry_dir(self, fingerprint: str) -> Path:
        return self.root / fingerprint[:2]

    def artifact_path(self, fingerprint: str) -> Path:
        return self._entry_dir(fingerprint) / f"{fingerprint}.tar.gz"

    def manifest_path(self, fingerprint: str) -> Path:
        return self._entry_dir(fingerprint) / f"{fingerprint}.manifest.json"

    def contains(self, fingerprint: str) -> bool:
        return self.artifact_path(fingerprint).exists() and self.manifest_path(fingerprint).exists()

    # ------------------------------------------------------------------
    # lookup / store
    # ------------------------------------------------------------------

    def get(self, fingerprint: str) -> Optional[ExecutionRecord]:
        """
        Return a Succeeded record describing the cached entry, or None.
        Outputs in the returned record are declared (relative) paths; use
        restore() to materialize them.
        """
        if not self.contains(fingerprint):
            return None
        try:
            manifest = json.loads(self.manifest_path(fingerprint).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None

        key = RecordKey(manifest["action"], ConfigTag(manifest["tag"]))
        return ExecutionRecord(
            key=key,
            status=RecordStatus.SUCCEEDED,
            outputs={p: Path(p) for p in manifest.get("outputs", [])},
            fingerprint=fingerprint,
            cached=True,
        )

    def put(self, fingerprint: str, record: ExecutionRecord, details: Optional[Dict] = None) -> bool:
        """
        Store the record's outputs. Returns False when an entry for this
        fingerprint already exists (the first writer wins).
        """
        with self._guard:
            if self.contains(fingerprint):
                return False
            self._entry_dir(fingerprint).mkdir(parents=True, exist_ok=True)

        art = self.artifact_path(fingerprint)
        man = self.manifest_path(fingerprint)
        manifest = {
            "fingerprint": fingerprint,
            "action": record.key.action,
            "tag": record.key.tag.value,
            "outputs": sorted(record.outputs),
            "details": details or {},
            "stored_at_unix": int(time.time()),
        }

        tmp = art.with_name(f"{art.name}.{threading.get_ident()}.tmp")
        tmp_man = man.with_name(f"{man.name}.{threading.get_ident()}.tmp")
        try:
            # Build tar.gz in tmp, then atomic rename
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for declared, path in sorted(record.outputs.items()):
                    tar.add(str(path), arcname=declared, recursive=False)
            tmp_man.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")

            with self._guard:
                if self.contains(fingerprint):
                    return False
                tmp.replace(art)
                tmp_man.replace(man)
        finally:
            tmp.unlink(missing_ok=True)
            tmp_man.unlink(missing_ok=True)
        return True

    def restore(self, fingerprint: str, destinations: Mapping[str, Path]) -> bool:
        """
        Copy cached outputs into their expected locations. Returns False
        if the entry is missing or does not cover every destination.
        """
        art = self.artifact_path(fingerprint)
        if not art.exists():
            return False
        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                members = {m.name: m for m in tar.getmembers() if m.isfile()}
                if not set(destinations) <= set(members):
                    return False
                for declared, dest in destinations.items():
                    member = members[declared]
                    src = tar.extractfile(member)
                    if src is None:
                        return False
                    dest = Path(dest)
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    with src, dest.open("wb") as out:
                        shutil.copyfileobj(src, out)
                    os.chmod(dest, member.mode & 0o777)
        except (OSError, tarfile.TarError):
            return False
        return True

    def invalidate(self, fingerprint: str) -> None:
        with self._guard:
            self.artifact_path(fingerprint).unlink(missing_ok=True)
            self.manifest_path(fingerprint).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # coalescing
    # ------------------------------------------------------------------

    @contextmanager
    def single_flight(self, fingerprint: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._flights.get(fingerprint, (threading.Lock(), 0))
            self._flights[fingerprint] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, users = self._flights[fingerprint]
                if users <= 1:
                    del self._flights[fingerprint]
                else:
                    self._flights[fingerprint] = (lock, users - 1)

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    def _artifacts(self) -> List[Path]:
        return sorted(self.root.glob("*/*.tar.gz"))

    def usage(self) -> CacheUsage:
        entries = 0
        total = 0
        for art in self._artifacts():
            entries += 1
            total += art.stat().st_size
            man = art.with_name(art.name[: -len(".tar.gz")] + ".manifest.json")
            if man.exists():
                total += man.stat().st_size
        return CacheUsage(entries=entries, bytes=total)

    def trim(self, max_entry_bytes: int) -> List[str]:
        """
        Drop every entry whose artifact is larger than max_entry_bytes.
        Returns the removed fingerprints.
        """
        removed: List[str] = []
        for art in self._artifacts():
            if art.stat().st_size > max_entry_bytes:
                fp = art.name[: -len(".tar.gz")]
                self.invalidate(fp)
                removed.append(fp)
        return removed
