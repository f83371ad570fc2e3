"""
Artifact Lifecycle Management.

Adapters produce ephemeral files: synthesized audio, recognition JSON.
Every such file is registered here as an ``Artifact`` and is guaranteed
to be deleted, by one of two routes:

    1. Explicit: the response that carries it finishes sending
       (``release``), or the request fails / consumes it (``discard``).
    2. Backstop: a periodic ``sweep`` removes anything in the artifact
       directories older than ``max_age_s``. This catches files whose
       request crashed before cleanup, and files left by a previous
       process.

States:
    pending  -> registered, file may still be written
    ready    -> file complete
    served   -> response transmission started; deletion scheduled
    deleted  -> file removed, entry dropped from the registry

File names:
    Artifacts are named with a uuid4 (``new_path``), never a timestamp,
    so two requests in the same clock tick cannot collide.

Sweep safety:
    A file older than ``max_age_s`` is left alone only if its registry
    entry is ``served`` and was served less than ``max_age_s`` ago; the
    transmission that owns it will delete it.

Deletion failures are logged and otherwise ignored; they never reach the
response path.

Usage:
    manager = ArtifactLifecycleManager(["/tmp/miniAiApi"], max_age_s=3600)
    path = manager.new_path("/tmp/miniAiApi", "speech", "mp3")
    artifact = manager.register(path, owner=request_id, fmt="mp3", kind="speech")
    manager.mark_ready(artifact.id)
    manager.mark_served(artifact.id)
    background = BackgroundTask(manager.release, artifact.id)
"""
from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from ai_gateway.core.config import Defaults
from ai_gateway.core.logging import error, get_logger, info, verbose, warn
from ai_gateway.core.metrics import GatewayMetrics

_LOG = get_logger("ai-gateway.artifacts")


class ArtifactState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    SERVED = "served"
    DELETED = "deleted"


@dataclass
class Artifact:
    """One ephemeral file owned by one request."""
    id: str
    path: Path
    owner: str
    fmt: str
    kind: str
    created_at: float
    state: ArtifactState = ArtifactState.PENDING
    served_at: Optional[float] = None

    @property
    def live(self) -> bool:
        return self.state is not ArtifactState.DELETED


def remove_file(path: Path | str) -> bool:
    """
    Delete a file, logging instead of raising.

    Returns:
        True if the file was removed or was already gone.
    """
    p = Path(path)
    try:
        p.unlink()
        return True
    except FileNotFoundError:
        return True
    except OSError as e:
        warn(_LOG, "file_delete_failed", path=str(p), error=str(e))
        return False


class ArtifactLifecycleManager:
    """
    Registry of live artifacts plus the periodic sweep.

    The registry is guarded by a ``threading.Lock`` because sweeps run in
    a worker thread while requests register and release on the event
    loop.
    """

    def __init__(
        self,
        directories: Sequence[str],
        max_age_s: float = Defaults.ARTIFACT_MAX_AGE_S,
        sweep_interval_s: float = Defaults.ARTIFACT_SWEEP_INTERVAL_S,
        grace_s: float = Defaults.ARTIFACT_GRACE_S,
        metrics: Optional[GatewayMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._directories = [Path(d) for d in directories]
        self._max_age_s = max_age_s
        self._sweep_interval_s = sweep_interval_s
        self._grace_s = grace_s
        self._metrics = metrics
        self._clock = clock

        self._lock = threading.Lock()
        self._artifacts: Dict[str, Artifact] = {}
        self._by_owner: Dict[str, str] = {}

        self._sweep_task: Optional[asyncio.Task] = None

        # Stats
        self._deleted: Dict[str, int] = {}
        self._sweeps_run = 0

    @property
    def directories(self) -> List[Path]:
        return list(self._directories)

    @property
    def max_age_s(self) -> float:
        return self._max_age_s

    @property
    def grace_s(self) -> float:
        return self._grace_s

    # ─────────────────────────────────────────────────────────────────────
    # Registration and state transitions
    # ─────────────────────────────────────────────────────────────────────

    @staticmethod
    def new_path(directory: str | Path, prefix: str, ext: str) -> Path:
        """Unique file path ``<directory>/<prefix>_<uuid4hex>.<ext>``."""
        return Path(directory) / f"{prefix}_{uuid.uuid4().hex}.{ext.lstrip('.')}"

    def register(self, path: Path | str, owner: str, fmt: str, kind: str) -> Artifact:
        """
        Record a new artifact in ``pending`` state.

        Raises:
            ValueError: If ``owner`` already holds a live artifact.
        """
        artifact = Artifact(
            id=uuid.uuid4().hex,
            path=Path(path),
            owner=owner,
            fmt=fmt,
            kind=kind,
            created_at=self._clock(),
        )
        with self._lock:
            existing = self._by_owner.get(owner)
            if existing is not None:
                raise ValueError(f"request {owner} already owns live artifact {existing}")
            self._artifacts[artifact.id] = artifact
            self._by_owner[owner] = artifact.id

        if self._metrics is not None:
            self._metrics.artifact_created(kind)
        verbose(_LOG, "artifact_registered", id=artifact.id[:8], kind=kind, path=str(artifact.path))
        return artifact

    def get(self, artifact_id: str) -> Optional[Artifact]:
        with self._lock:
            return self._artifacts.get(artifact_id)

    def mark_ready(self, artifact_id: str) -> Artifact:
        return self._transition(artifact_id, ArtifactState.READY)

    def mark_served(self, artifact_id: str) -> Artifact:
        """Transmission is about to start; the sweep must now leave it alone."""
        return self._transition(artifact_id, ArtifactState.SERVED)

    def _transition(self, artifact_id: str, state: ArtifactState) -> Artifact:
        with self._lock:
            artifact = self._artifacts.get(artifact_id)
            if artifact is None:
                raise KeyError(f"unknown artifact {artifact_id}")
            artifact.state = state
            if state is ArtifactState.SERVED:
                artifact.served_at = self._clock()
            return artifact

    # ─────────────────────────────────────────────────────────────────────
    # Deletion
    # ─────────────────────────────────────────────────────────────────────

    def discard(self, artifact_id: str, reason: str = "discarded") -> bool:
        """
        Delete an artifact's file now and drop it from the registry.

        Returns:
            True if the file is gone afterwards. Unknown ids return False.
        """
        with self._lock:
            artifact = self._artifacts.pop(artifact_id, None)
            if artifact is None:
                return False
            if self._by_owner.get(artifact.owner) == artifact_id:
                del self._by_owner[artifact.owner]
            artifact.state = ArtifactState.DELETED

        removed = remove_file(artifact.path)
        self._count_deleted(reason)
        verbose(_LOG, "artifact_deleted", id=artifact_id[:8], reason=reason, removed=removed)
        return removed

    async def release(self, artifact_id: str) -> None:
        """
        Delete a served artifact after the grace delay.

        Intended as a Starlette background task: it runs after the
        response body has been sent.
        """
        try:
            if self._grace_s > 0:
                await asyncio.sleep(self._grace_s)
            self.discard(artifact_id, reason="served")
        except Exception:
            # The sweep will pick the file up; never fail the response for this
            error(_LOG, "artifact_release_failed", exc_info=True, id=artifact_id[:8])

    def _count_deleted(self, reason: str, was_live: bool = True) -> None:
        with self._lock:
            self._deleted[reason] = self._deleted.get(reason, 0) + 1
        if self._metrics is not None:
            self._metrics.artifact_deleted(reason, was_live=was_live)

    # ─────────────────────────────────────────────────────────────────────
    # Sweep
    # ─────────────────────────────────────────────────────────────────────

    def sweep(self, directory: Path | str, max_age_s: Optional[float] = None) -> Dict[str, int]:
        """
        Delete every file in ``directory`` older than ``max_age_s`` (by mtime).

        Served artifacts still inside their transmission window are
        skipped. Sub-directories are not descended into.

        Returns:
            Dict with files_removed, bytes_freed, skipped, errors.
        """
        base = Path(directory)
        max_age = self._max_age_s if max_age_s is None else max_age_s
        stats = {"files_removed": 0, "bytes_freed": 0, "skipped": 0, "errors": 0}
        if not base.is_dir():
            return stats

        now = self._clock()
        cutoff = now - max_age

        with self._lock:
            by_path = {a.path.resolve(): a for a in self._artifacts.values()}

        for entry in base.iterdir():
            try:
                if not entry.is_file():
                    continue
                st = entry.stat()
                if st.st_mtime >= cutoff:
                    continue

                artifact = by_path.get(entry.resolve())
                if (
                    artifact is not None
                    and artifact.state is ArtifactState.SERVED
                    and artifact.served_at is not None
                    and now - artifact.served_at < max_age
                ):
                    stats["skipped"] += 1
                    continue

                entry.unlink()
                stats["files_removed"] += 1
                stats["bytes_freed"] += st.st_size
            except FileNotFoundError:
                continue
            except OSError as e:
                stats["errors"] += 1
                warn(_LOG, "sweep_delete_failed", path=str(entry), error=str(e))
                continue

            if artifact is not None:
                self._forget(artifact.id)
            else:
                self._count_deleted("sweep", was_live=False)

        if stats["files_removed"] or stats["errors"]:
            info(_LOG, "sweep_done", directory=str(base), **stats)
        return stats

    def _forget(self, artifact_id: str) -> None:
        with self._lock:
            artifact = self._artifacts.pop(artifact_id, None)
            if artifact is None:
                return
            if self._by_owner.get(artifact.owner) == artifact_id:
                del self._by_owner[artifact.owner]
            artifact.state = ArtifactState.DELETED
        self._count_deleted("sweep")

    def sweep_all(self, max_age_s: Optional[float] = None) -> Dict[str, int]:
        """Sweep every artifact directory; returns summed stats."""
        total = {"files_removed": 0, "bytes_freed": 0, "skipped": 0, "errors": 0}
        for directory in self._directories:
            for key, value in self.sweep(directory, max_age_s).items():
                total[key] += value
        with self._lock:
            self._sweeps_run += 1
        return total

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.sweep_all)
            except Exception:
                error(_LOG, "sweep_failed", exc_info=True)
            await asyncio.sleep(self._sweep_interval_s)

    def start(self) -> None:
        """Start the periodic sweep on the running loop (first pass runs immediately)."""
        for directory in self._directories:
            directory.mkdir(parents=True, exist_ok=True)
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
            info(_LOG, "sweep_started", interval_s=self._sweep_interval_s, max_age_s=self._max_age_s)

    async def stop(self) -> None:
        """Cancel the sweep task."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ─────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────

    def live_count(self) -> int:
        with self._lock:
            return len(self._artifacts)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "live": len(self._artifacts),
                "deleted": dict(self._deleted),
                "sweeps_run": self._sweeps_run,
            }
