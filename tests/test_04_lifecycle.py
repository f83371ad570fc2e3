"""
Tests for ArtifactLifecycleManager.

Tests cover:
- registration and state transitions
- one live artifact per owner
- discard and delayed release
- sweep age threshold and served-artifact protection
- sweep_all across directories and the periodic task
- deletion failures are logged, never raised
"""
from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from ai_gateway.artifacts.lifecycle import ArtifactLifecycleManager, ArtifactState, remove_file
from ai_gateway.core.metrics import GatewayMetrics


def make_file(directory: Path, name: str, age_seconds: float = 0, content: bytes = b"data") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(content)
    if age_seconds:
        then = time.time() - age_seconds
        os.utime(path, (then, then))
    return path


@pytest.fixture
def manager(tmp_path):
    return ArtifactLifecycleManager([str(tmp_path / "a"), str(tmp_path / "b")], max_age_s=60, grace_s=0)


class TestRegistration:
    """Register and transition artifacts."""

    def test_new_path_is_unique(self, tmp_path):
        a = ArtifactLifecycleManager.new_path(tmp_path, "speech", "mp3")
        b = ArtifactLifecycleManager.new_path(tmp_path, "speech", ".mp3")
        assert a != b
        assert a.name.startswith("speech_") and a.suffix == ".mp3"
        assert b.suffix == ".mp3"

    def test_register_pending(self, manager, tmp_path):
        path = make_file(tmp_path / "a", "x.mp3")
        artifact = manager.register(path, owner="req1", fmt="mp3", kind="speech")
        assert artifact.state is ArtifactState.PENDING
        assert artifact.live
        assert manager.get(artifact.id) is artifact
        assert manager.live_count() == 1

    def test_one_live_artifact_per_owner(self, manager, tmp_path):
        manager.register(make_file(tmp_path / "a", "x.mp3"), owner="req1", fmt="mp3", kind="speech")
        with pytest.raises(ValueError):
            manager.register(make_file(tmp_path / "a", "y.mp3"), owner="req1", fmt="mp3", kind="speech")

    def test_owner_free_after_discard(self, manager, tmp_path):
        first = manager.register(make_file(tmp_path / "a", "x.mp3"), owner="req1", fmt="mp3", kind="speech")
        manager.discard(first.id)
        manager.register(make_file(tmp_path / "a", "y.mp3"), owner="req1", fmt="mp3", kind="speech")

    def test_mark_served_sets_timestamp(self, manager, tmp_path):
        artifact = manager.register(make_file(tmp_path / "a", "x.mp3"), owner="r", fmt="mp3", kind="speech")
        manager.mark_ready(artifact.id)
        assert artifact.state is ArtifactState.READY
        manager.mark_served(artifact.id)
        assert artifact.state is ArtifactState.SERVED
        assert artifact.served_at is not None

    def test_unknown_id_raises(self, manager):
        with pytest.raises(KeyError):
            manager.mark_ready("missing")


class TestDeletion:
    """discard / release."""

    def test_discard_removes_file(self, manager, tmp_path):
        path = make_file(tmp_path / "a", "x.mp3")
        artifact = manager.register(path, owner="r", fmt="mp3", kind="speech")
        assert manager.discard(artifact.id) is True
        assert not path.exists()
        assert artifact.state is ArtifactState.DELETED
        assert manager.get(artifact.id) is None
        assert manager.stats()["deleted"] == {"discarded": 1}

    def test_discard_unknown_returns_false(self, manager):
        assert manager.discard("nope") is False

    def test_discard_missing_file_is_fine(self, manager, tmp_path):
        artifact = manager.register(tmp_path / "a" / "never.mp3", owner="r", fmt="mp3", kind="speech")
        assert manager.discard(artifact.id) is True

    def test_release_after_grace(self, tmp_path):
        manager = ArtifactLifecycleManager([str(tmp_path)], grace_s=0.01)
        path = make_file(tmp_path, "x.mp3")
        artifact = manager.register(path, owner="r", fmt="mp3", kind="speech")
        manager.mark_served(artifact.id)

        asyncio.run(manager.release(artifact.id))
        assert not path.exists()
        assert manager.stats()["deleted"] == {"served": 1}

    def test_delete_failure_is_logged_not_raised(self, tmp_path):
        path = make_file(tmp_path, "x.mp3")
        with patch.object(Path, "unlink", side_effect=PermissionError("denied")):
            assert remove_file(path) is False
        assert path.exists()

    def test_metrics_track_live_artifacts(self, tmp_path):
        metrics = GatewayMetrics()
        manager = ArtifactLifecycleManager([str(tmp_path)], metrics=metrics)
        artifact = manager.register(make_file(tmp_path, "x.mp3"), owner="r", fmt="mp3", kind="speech")
        assert metrics.registry.get_sample_value("gateway_live_artifacts") == 1.0
        manager.discard(artifact.id)
        assert metrics.registry.get_sample_value("gateway_live_artifacts") == 0.0
        assert metrics.registry.get_sample_value(
            "gateway_artifacts_deleted_total", {"reason": "discarded"}
        ) == 1.0


class TestSweep:
    """Age-based sweep."""

    def test_old_files_removed_young_kept(self, manager, tmp_path):
        old = make_file(tmp_path / "a", "old.mp3", age_seconds=120, content=b"12345")
        young = make_file(tmp_path / "a", "young.mp3", age_seconds=5)

        stats = manager.sweep(tmp_path / "a")
        assert stats == {"files_removed": 1, "bytes_freed": 5, "skipped": 0, "errors": 0}
        assert not old.exists()
        assert young.exists()

    def test_explicit_max_age(self, manager, tmp_path):
        path = make_file(tmp_path / "a", "x.mp3", age_seconds=10)
        manager.sweep(tmp_path / "a", max_age_s=1)
        assert not path.exists()

    def test_recently_served_artifact_skipped(self, manager, tmp_path):
        path = make_file(tmp_path / "a", "x.mp3", age_seconds=120)
        artifact = manager.register(path, owner="r", fmt="mp3", kind="speech")
        manager.mark_served(artifact.id)

        stats = manager.sweep(tmp_path / "a")
        assert stats["skipped"] == 1
        assert path.exists()

    def test_stale_registered_artifact_swept_and_forgotten(self, manager, tmp_path):
        path = make_file(tmp_path / "a", "x.mp3", age_seconds=120)
        artifact = manager.register(path, owner="r", fmt="mp3", kind="speech")
        manager.mark_ready(artifact.id)

        manager.sweep(tmp_path / "a")
        assert not path.exists()
        assert manager.get(artifact.id) is None
        assert artifact.state is ArtifactState.DELETED

    def test_subdirectories_ignored(self, manager, tmp_path):
        sub = tmp_path / "a" / "nested"
        sub.mkdir(parents=True)
        stats = manager.sweep(tmp_path / "a")
        assert stats["files_removed"] == 0
        assert sub.exists()

    def test_missing_directory(self, manager, tmp_path):
        assert manager.sweep(tmp_path / "missing")["files_removed"] == 0

    def test_sweep_all_sums_directories(self, manager, tmp_path):
        make_file(tmp_path / "a", "1.mp3", age_seconds=120)
        make_file(tmp_path / "b", "2.json", age_seconds=120)
        stats = manager.sweep_all()
        assert stats["files_removed"] == 2
        assert manager.stats()["sweeps_run"] == 1

    def test_start_runs_initial_sweep(self, tmp_path):
        manager = ArtifactLifecycleManager([str(tmp_path / "a")], max_age_s=60, sweep_interval_s=3600)
        old = make_file(tmp_path / "a", "leftover.aiff", age_seconds=600)

        async def scenario():
            manager.start()
            for _ in range(100):
                if not old.exists():
                    break
                await asyncio.sleep(0.01)
            await manager.stop()

        asyncio.run(scenario())
        assert not old.exists()
        assert manager.stats()["sweeps_run"] >= 1

    def test_start_creates_directories(self, tmp_path):
        manager = ArtifactLifecycleManager([str(tmp_path / "new")])

        async def scenario():
            manager.start()
            await manager.stop()

        asyncio.run(scenario())
        assert (tmp_path / "new").is_dir()
