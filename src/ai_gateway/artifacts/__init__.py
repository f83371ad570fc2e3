"""
Ephemeral artifact tracking.

    - lifecycle.py: ArtifactLifecycleManager (registry, release, sweep)
"""
from .lifecycle import Artifact, ArtifactLifecycleManager, ArtifactState, remove_file

__all__ = ["Artifact", "ArtifactLifecycleManager", "ArtifactState", "remove_file"]
